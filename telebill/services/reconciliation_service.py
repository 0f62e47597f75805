"""
Scheduled Billing Reconciler
Debits due billing records against the gateway and records the outcome
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import redis
from flask import current_app, has_app_context
from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError

from telebill.exceptions import (
    ConfigurationError, GatewayDebitFailure, GatewayError, GatewayFault, PersistenceError
)
from telebill.extensions import db, get_redis
from telebill.models import CronExecution, PhoneNumberBilling
from telebill.services import billing_lifecycle
from telebill.services.debit_classifier import classify_debit_result, should_suspend


@dataclass
class ReconciliationSummary:
    run_id: str
    triggered_by: str
    status: str = 'success'
    total_due: int = 0
    processed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    processed: List[Dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0
    message: str = ''
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'status': self.status,
            'triggered_by': self.triggered_by,
            'total_due': self.total_due,
            'processed_count': self.processed_count,
            'failed_count': self.failed_count,
            'skipped_count': self.skipped_count,
            'error_count': self.error_count,
            'errors': self.errors,
            'processed': self.processed,
            'duration_ms': self.duration_ms,
            'message': self.message,
            'dry_run': self.dry_run
        }


class ScheduledBillingReconciler:
    """
    Runs one reconciliation pass over pending, due monthly and setup fees.

    Records are processed one at a time in billing_date/id order. Each record
    is claimed with a short lease before the gateway is called, so two
    overlapping runs never debit the same record. A Redis run lock (when
    Redis is configured) refuses overlapping runs outright.
    """

    JOB_NAME = 'Scheduled Billing'
    PROCESSED_BY = 'cron_scheduled_billing'
    RUN_LOCK_KEY = 'telebill:billing:run-lock'

    def __init__(self, gateway=None, gateway_factory=None, redis_client=None,
                 lease_seconds: int = None, lock_seconds: int = None,
                 error_preview_limit: int = None):
        settings = current_app.config if has_app_context() else {}
        self.gateway = gateway
        self.gateway_factory = gateway_factory
        self.redis_client = redis_client
        self.lease_seconds = lease_seconds or settings.get('BILLING_LEASE_SECONDS', 600)
        self.lock_seconds = lock_seconds or settings.get('BILLING_RUN_LOCK_SECONDS', 1800)
        self.error_preview_limit = error_preview_limit or settings.get('BILLING_ERROR_PREVIEW_LIMIT', 10)
        self.logger = logging.getLogger(__name__)

    # =========================================================================
    # RUN
    # =========================================================================

    def run(self, trigger_type: str = 'scheduled', dry_run: bool = False,
            now: datetime = None) -> ReconciliationSummary:
        started = time.monotonic()
        now = now or datetime.utcnow()
        summary = ReconciliationSummary(run_id=uuid.uuid4().hex, triggered_by=trigger_type, dry_run=dry_run)

        self.logger.info(f"Billing run {summary.run_id} started ({trigger_type}{', dry run' if dry_run else ''})")

        if dry_run:
            due = self.select_due_records(now)
            summary.total_due = len(due)
            summary.processed = [self._preview_entry(record) for record in due[:self.error_preview_limit]]
            summary.message = f"{len(due)} billing record(s) due"
            summary.duration_ms = self._elapsed_ms(started)
            return summary

        redis_client = self.redis_client if self.redis_client is not None else get_redis()
        if not self._acquire_run_lock(redis_client, summary.run_id):
            summary.status = 'skipped'
            summary.message = 'Another billing run is in progress'
            self.logger.warning(f"Billing run {summary.run_id} skipped: run lock held")
            summary.duration_ms = self._elapsed_ms(started)
            self._record_execution(summary)
            return summary

        try:
            try:
                gateway = self._resolve_gateway()
                due_ids = [record.id for record in self.select_due_records(now)]
                if due_ids:
                    self._preflight(gateway, due_ids[0])
            except (ConfigurationError, GatewayError) as e:
                summary.status = 'failed'
                summary.message = f"Billing run aborted: {e}"
                kind = 'configuration_error' if isinstance(e, ConfigurationError) else 'gateway_unreachable'
                self._add_error(summary, None, None, kind, str(e))
                self.logger.error(f"Billing run {summary.run_id} aborted before processing: {e}")
                return summary

            summary.total_due = len(due_ids)
            self.logger.info(f"Found {len(due_ids)} pending billing records due for processing")

            for record_id in due_ids:
                self._process_record(record_id, gateway, summary, now)

            summary.status = self._final_status(summary)
            summary.message = (
                f"Processed {summary.total_due} billing records: {summary.processed_count} successful, "
                f"{summary.failed_count} failed, {summary.skipped_count} skipped"
            )
            return summary
        finally:
            summary.duration_ms = self._elapsed_ms(started)
            self._release_run_lock(redis_client, summary.run_id)
            self._record_execution(summary)
            self.logger.info(f"Billing run {summary.run_id} finished in {summary.duration_ms}ms: {summary.message}")

    def select_due_records(self, now: datetime = None) -> List[PhoneNumberBilling]:
        """Pending monthly/setup fees billed on or before today (UTC)"""
        now = now or datetime.utcnow()
        start_of_tomorrow = datetime(now.year, now.month, now.day) + timedelta(days=1)
        return PhoneNumberBilling.query.filter(
            PhoneNumberBilling.status == 'pending',
            PhoneNumberBilling.billing_date < start_of_tomorrow,
            PhoneNumberBilling.transaction_type.in_(PhoneNumberBilling.AUTO_PROCESSED_TYPES),
            PhoneNumberBilling.anomaly_transaction_id.is_(None)
        ).order_by(PhoneNumberBilling.billing_date, PhoneNumberBilling.id).all()

    # =========================================================================
    # PER-RECORD PROCESSING
    # =========================================================================

    def _process_record(self, record_id: int, gateway, summary: ReconciliationSummary, now: datetime):
        record = None
        try:
            if not self.claim_lease(record_id, summary.run_id, now):
                summary.skipped_count += 1
                self.logger.info(f"Billing {record_id} skipped: leased by another run or no longer pending")
                return

            record = db.session.get(PhoneNumberBilling, record_id)
            phone_number = record.phone_number
            user = record.user

            if phone_number is None or user is None:
                raise ConfigurationError('Missing phone number or user data')
            if not user.gateway_account_id:
                raise ConfigurationError(f"User {user.email} has no gateway account")

            payment_notes = f"Monthly charge for Number: {phone_number.number} ({record.transaction_type})"
            self.logger.info(
                f"Debiting {record.amount} {record.currency} from account {user.gateway_account_id} "
                f"for {phone_number.number}"
            )

            try:
                result = gateway.account_debit(
                    user.gateway_account_id, record.amount, record.currency, payment_notes
                )
                outcome = classify_debit_result(result)
                if not outcome.success:
                    raise GatewayDebitFailure(outcome.failure_reason, result)
            except GatewayFault as e:
                self._finalize_failure(record, e.fault_string, summary)
                return
            except GatewayError as e:
                self._finalize_failure(record, str(e), summary)
                return
            except GatewayDebitFailure as e:
                self._finalize_failure(record, e.reason, summary)
                return

            self._finalize_success(record, outcome.transaction_id, outcome.rule, summary, now)

        except ConfigurationError as e:
            db.session.rollback()
            summary.skipped_count += 1
            self._add_error(summary, record_id, self._number_of(record), 'configuration_error', str(e))
            self.logger.warning(f"Billing {record_id} left pending: {e}")
            self.release_lease(record_id, summary.run_id)
        except Exception as e:
            db.session.rollback()
            summary.failed_count += 1
            self._add_error(summary, record_id, self._number_of(record), 'processing_error', str(e))
            self.logger.error(f"Error processing billing {record_id}: {e}", exc_info=True)

    def _finalize_success(self, record: PhoneNumberBilling, transaction_id: str, rule: str,
                          summary: ReconciliationSummary, now: datetime):
        record_id = record.id
        number = self._number_of(record)
        try:
            billing_lifecycle.mark_paid(record, transaction_id, self.PROCESSED_BY, now=now)
            record.phone_number.last_billed_date = now
            record.lease_owner = None
            record.lease_expires_at = None
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            anomaly = PersistenceError(record_id, transaction_id, e)
            summary.failed_count += 1
            self._add_error(summary, record_id, number, 'persistence_error', str(anomaly))
            self.logger.critical(f"RECONCILIATION ANOMALY: {anomaly}")
            self.hold_record(record_id, transaction_id)
            return

        summary.processed_count += 1
        if len(summary.processed) < self.error_preview_limit:
            summary.processed.append({
                'billing_id': record.id,
                'phone_number': self._number_of(record),
                'amount': float(record.amount),
                'currency': record.currency,
                'transaction_id': transaction_id
            })
        self.logger.info(f"Billing {record.id} paid ({transaction_id}, matched {rule})")

    def _finalize_failure(self, record: PhoneNumberBilling, reason: str, summary: ReconciliationSummary):
        # Billing status and suspension share one transaction
        suspended = False
        try:
            billing_lifecycle.mark_failed(record, reason, self.PROCESSED_BY)
            if should_suspend(record.failure_reason) and record.phone_number is not None:
                suspended = record.phone_number.suspend(record.failure_reason)
            record.lease_owner = None
            record.lease_expires_at = None
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            summary.failed_count += 1
            self._add_error(summary, record.id, self._number_of(record), 'persistence_error',
                            f"Could not record failure '{reason}': {e}")
            self.logger.error(f"Failed to persist failure for billing {record.id}: {e}")
            return

        summary.failed_count += 1
        self._add_error(summary, record.id, self._number_of(record), 'debit_failed', record.failure_reason)
        self.logger.warning(f"Billing {record.id} failed: {record.failure_reason}")
        if suspended:
            self.logger.warning(f"Phone number {self._number_of(record)} suspended due to insufficient funds")

    # =========================================================================
    # LEASES AND RUN LOCK
    # =========================================================================

    def claim_lease(self, record_id: int, owner: str, now: datetime = None) -> bool:
        """Atomically lease a pending record; False when another run holds it"""
        now = now or datetime.utcnow()
        table = PhoneNumberBilling.__table__
        stmt = (
            update(table)
            .where(
                table.c.id == record_id,
                table.c.status == 'pending',
                table.c.anomaly_transaction_id.is_(None),
                or_(
                    table.c.lease_owner.is_(None),
                    table.c.lease_expires_at.is_(None),
                    table.c.lease_expires_at < now
                )
            )
            .values(lease_owner=owner, lease_expires_at=now + timedelta(seconds=self.lease_seconds))
        )
        result = db.session.execute(stmt)
        db.session.commit()
        return result.rowcount == 1

    def release_lease(self, record_id: int, owner: str):
        table = PhoneNumberBilling.__table__
        try:
            db.session.execute(
                update(table)
                .where(table.c.id == record_id, table.c.lease_owner == owner)
                .values(lease_owner=None, lease_expires_at=None)
            )
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            self.logger.error(f"Could not release lease on billing {record_id}: {e}")

    def hold_record(self, record_id: int, transaction_id: str) -> bool:
        """
        Park a record debited on the gateway whose ledger write failed.
        Held records are never selected or leased again until an admin
        resolves them.
        """
        table = PhoneNumberBilling.__table__
        try:
            db.session.execute(
                update(table)
                .where(table.c.id == record_id)
                .values(anomaly_transaction_id=str(transaction_id))
            )
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            self.logger.critical(
                f"Could not hold billing {record_id} after gateway transaction {transaction_id}; "
                f"it is protected only until its lease expires: {e}"
            )
            return False
        self.logger.warning(f"Billing {record_id} held for review (gateway transaction {transaction_id})")
        return True

    def _acquire_run_lock(self, redis_client, run_id: str) -> bool:
        if redis_client is None:
            return True
        try:
            return bool(redis_client.set(self.RUN_LOCK_KEY, run_id, nx=True, ex=self.lock_seconds))
        except redis.RedisError as e:
            self.logger.warning(f"Run lock unavailable, relying on record leases: {e}")
            return True

    def _release_run_lock(self, redis_client, run_id: str):
        if redis_client is None:
            return
        try:
            if redis_client.get(self.RUN_LOCK_KEY) == run_id:
                redis_client.delete(self.RUN_LOCK_KEY)
        except redis.RedisError as e:
            self.logger.warning(f"Could not release run lock: {e}")

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_status(self, now: datetime = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        start_of_today = datetime(now.year, now.month, now.day)
        start_of_tomorrow = start_of_today + timedelta(days=1)

        base = PhoneNumberBilling.query.filter(
            PhoneNumberBilling.transaction_type.in_(PhoneNumberBilling.AUTO_PROCESSED_TYPES)
        )
        pending = base.filter(
            PhoneNumberBilling.status == 'pending',
            PhoneNumberBilling.anomaly_transaction_id.is_(None)
        )

        last_run = CronExecution.query.filter_by(job_name=self.JOB_NAME) \
            .order_by(CronExecution.started_at.desc(), CronExecution.id.desc()).first()

        return {
            'pending_due': pending.filter(PhoneNumberBilling.billing_date < start_of_tomorrow).count(),
            'pending_future': pending.filter(PhoneNumberBilling.billing_date >= start_of_tomorrow).count(),
            'processed_today': base.filter(
                PhoneNumberBilling.status == 'paid',
                PhoneNumberBilling.paid_date >= start_of_today
            ).count(),
            'failed_today': base.filter(
                PhoneNumberBilling.status == 'failed',
                PhoneNumberBilling.updated_at >= start_of_today
            ).count(),
            'on_hold': PhoneNumberBilling.query.filter(
                PhoneNumberBilling.anomaly_transaction_id.isnot(None)
            ).count(),
            'last_execution': last_run.to_dict() if last_run else None
        }

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _resolve_gateway(self):
        if self.gateway is None:
            if self.gateway_factory is None:
                from telebill.utils.gateway_client import get_gateway_client
                self.gateway_factory = get_gateway_client
            self.gateway = self.gateway_factory()
        return self.gateway

    def _preflight(self, gateway, first_record_id: int):
        """Raise when the gateway cannot be reached at all; faults mean it answered"""
        record = db.session.get(PhoneNumberBilling, first_record_id)
        account = record.user.gateway_account_id if record is not None and record.user else None
        gateway.ping(account)

    def _add_error(self, summary: ReconciliationSummary, billing_id, phone_number, kind: str, message: str):
        summary.error_count += 1
        if len(summary.errors) < self.error_preview_limit:
            summary.errors.append({
                'billing_id': billing_id,
                'phone_number': phone_number,
                'kind': kind,
                'error': message
            })

    @staticmethod
    def _final_status(summary: ReconciliationSummary) -> str:
        if summary.error_count == 0:
            return 'success'
        if summary.processed_count > 0:
            return 'partial'
        return 'failed'

    @staticmethod
    def _number_of(record: Optional[PhoneNumberBilling]) -> Optional[str]:
        if record is None or record.phone_number is None:
            return None
        return record.phone_number.number

    @staticmethod
    def _preview_entry(record: PhoneNumberBilling) -> Dict[str, Any]:
        return {
            'billing_id': record.id,
            'phone_number': record.phone_number.number if record.phone_number else None,
            'amount': float(record.amount),
            'currency': record.currency,
            'transaction_type': record.transaction_type,
            'billing_date': record.billing_date.isoformat()
        }

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def _record_execution(self, summary: ReconciliationSummary):
        try:
            db.session.add(CronExecution(
                run_id=summary.run_id,
                job_name=self.JOB_NAME,
                trigger_type=summary.triggered_by,
                status=summary.status,
                total_due=summary.total_due,
                processed=summary.processed_count,
                failed=summary.failed_count,
                skipped=summary.skipped_count,
                error_details=summary.errors,
                notes=summary.message[:500] if summary.message else None,
                duration_ms=summary.duration_ms
            ))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            self.logger.error(f"Failed to record billing run {summary.run_id}: {e}")
