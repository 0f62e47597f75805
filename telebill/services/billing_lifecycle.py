"""
Billing record lifecycle

    pending -> paid | failed | cancelled
    failed  -> pending (admin retry) | cancelled
    paid    -> refunded | cancelled

paid_date and gateway_transaction_id are set only while a record is paid;
failure_reason only while it is failed. A pending record with
anomaly_transaction_id set is held: it was debited but never recorded, and
only resolve_hold or cancel release it.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from telebill.exceptions import InvalidBillingTransition
from telebill.extensions import db
from telebill.models import PhoneNumber, PhoneNumberBilling, User

logger = logging.getLogger(__name__)

MAX_BILLING_DAY = 28

ALLOWED_TRANSITIONS = {
    'pending': {'paid', 'failed', 'cancelled'},
    'failed': {'pending', 'cancelled'},
    'paid': {'refunded', 'cancelled'},
    'cancelled': set(),
    'refunded': set(),
}


def can_transition(current_status: str, target_status: str) -> bool:
    return target_status in ALLOWED_TRANSITIONS.get(current_status, set())


def _check(record: PhoneNumberBilling, target_status: str):
    if not can_transition(record.status, target_status):
        raise InvalidBillingTransition(record.status, target_status)


def _append_note(record: PhoneNumberBilling, note: Optional[str]):
    if note:
        record.notes = f"{record.notes}\n{note}" if record.notes else note


def mark_paid(record: PhoneNumberBilling, transaction_id: str, processed_by: str,
              now: datetime = None) -> PhoneNumberBilling:
    _check(record, 'paid')
    record.status = 'paid'
    record.paid_date = now or datetime.utcnow()
    record.gateway_transaction_id = transaction_id
    record.failure_reason = None
    record.processed_by = processed_by
    return record


def mark_failed(record: PhoneNumberBilling, reason: str, processed_by: str) -> PhoneNumberBilling:
    _check(record, 'failed')
    record.status = 'failed'
    record.failure_reason = (reason or 'Unknown failure')[:500]
    record.paid_date = None
    record.gateway_transaction_id = None
    record.processed_by = processed_by
    return record


def retry(record: PhoneNumberBilling, processed_by: str, notes: str = None) -> PhoneNumberBilling:
    """Return a failed record to pending so the next run attempts it again"""
    _check(record, 'pending')
    _append_note(record, f"Retry requested (previous failure: {record.failure_reason})")
    _append_note(record, notes)
    record.status = 'pending'
    record.failure_reason = None
    record.processed_by = processed_by
    record.lease_owner = None
    record.lease_expires_at = None
    return record


def cancel(record: PhoneNumberBilling, processed_by: str, notes: str = None) -> PhoneNumberBilling:
    _check(record, 'cancelled')
    if record.gateway_transaction_id:
        _append_note(record, f"Cancelled after payment (gateway transaction {record.gateway_transaction_id})")
    if record.anomaly_transaction_id:
        _append_note(record, f"Cancelled while held (gateway transaction {record.anomaly_transaction_id})")
        record.anomaly_transaction_id = None
    _append_note(record, notes)
    record.status = 'cancelled'
    record.paid_date = None
    record.gateway_transaction_id = None
    record.failure_reason = None
    record.processed_by = processed_by
    return record


def refund(record: PhoneNumberBilling, processed_by: str, notes: str = None) -> PhoneNumberBilling:
    _check(record, 'refunded')
    _append_note(record, f"Refunded (gateway transaction {record.gateway_transaction_id})")
    _append_note(record, notes)
    record.status = 'refunded'
    record.paid_date = None
    record.gateway_transaction_id = None
    record.processed_by = processed_by
    return record


def resolve_hold(record: PhoneNumberBilling, processed_by: str, notes: str = None,
                 now: datetime = None) -> PhoneNumberBilling:
    """
    Settle a record held after its gateway debit could not be recorded.
    The held gateway transaction becomes the record's payment.
    """
    if not record.anomaly_transaction_id:
        raise ValueError(f"Billing {record.id} is not held")
    transaction_id = record.anomaly_transaction_id
    mark_paid(record, transaction_id, processed_by, now=now)
    _append_note(record, f"Held debit confirmed (gateway transaction {transaction_id})")
    _append_note(record, notes)
    record.anomaly_transaction_id = None
    record.lease_owner = None
    record.lease_expires_at = None
    return record


# =============================================================================
# RECORD CREATION
# =============================================================================

def _add_month(value: datetime) -> datetime:
    # Only called with days <= 28, which exist in every month
    if value.month == 12:
        return value.replace(year=value.year + 1, month=1)
    return value.replace(month=value.month + 1)


def compute_next_billing_date(billing_day_of_month: int, today: datetime = None) -> datetime:
    """
    Next billing date for day D: this month's D if today is before it,
    otherwise next month's D. D is capped at 28.
    """
    today = today or datetime.utcnow()
    day = min(max(int(billing_day_of_month or 1), 1), MAX_BILLING_DAY)
    target = datetime(today.year, today.month, day)
    if today.day >= day:
        target = _add_month(target)
    return target


def create_assignment_billing_records(phone_number: PhoneNumber, user: User,
                                      monthly_rate, setup_fee=0, currency: str = 'USD',
                                      now: datetime = None, commit: bool = True) -> List[PhoneNumberBilling]:
    """
    Create the pending records for a fresh assignment: a setup fee due
    immediately (when non-zero) and the first full monthly fee.
    """
    now = now or datetime.utcnow()
    monthly_rate = Decimal(str(monthly_rate or 0))
    setup_fee = Decimal(str(setup_fee or 0))
    records = []

    if setup_fee > 0:
        records.append(PhoneNumberBilling(
            phone_number_id=phone_number.id,
            user_id=user.id,
            billing_period_start=now,
            billing_period_end=now,
            amount=setup_fee,
            currency=currency,
            status='pending',
            billing_date=now,
            transaction_type='setup_fee',
            payment_type='debit'
        ))

    if monthly_rate > 0:
        billing_date = compute_next_billing_date(phone_number.billing_day_of_month, now)
        records.append(PhoneNumberBilling(
            phone_number_id=phone_number.id,
            user_id=user.id,
            billing_period_start=billing_date,
            billing_period_end=_add_month(billing_date),
            amount=monthly_rate,
            currency=currency,
            status='pending',
            billing_date=billing_date,
            transaction_type='monthly_fee',
            payment_type='debit',
            notes='Full monthly charge - no proration'
        ))
        phone_number.next_billing_date = billing_date

    try:
        for record in records:
            db.session.add(record)
        if commit:
            db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Created {len(records)} billing record(s) for {phone_number.number} (user {user.id})")
    return records
