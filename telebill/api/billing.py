from flask import Blueprint, request, jsonify, current_app, g
from marshmallow import Schema, fields, validate

from telebill.exceptions import ConfigurationError, GatewayError, InvalidBillingTransition
from telebill.extensions import db
from telebill.models import PhoneNumberBilling
from telebill.services import billing_lifecycle, get_reconciliation_service
from telebill.services.debit_classifier import classify_debit_result
from telebill.utils.auth import admin_required, admin_or_internal_key
from telebill.utils.gateway_client import get_gateway_client
from telebill.utils.validators import sanitize_string, validate_request_json

billing_bp = Blueprint('billing', __name__)


class ProcessBillingSchema(Schema):
    dry_run = fields.Bool(load_default=False)


class BillingActionSchema(Schema):
    notes = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=1000))


class RefundSchema(BillingActionSchema):
    credit_gateway = fields.Bool(load_default=False)


def _admin_name():
    user = g.get('current_user')
    return f"admin:{user.email}" if user else 'admin'


@billing_bp.route('/process-scheduled', methods=['POST'])
@admin_or_internal_key
@validate_request_json(ProcessBillingSchema(), optional=True)
def process_scheduled_billing():
    """Run scheduled billing now"""
    data = request.validated_data
    try:
        reconciler = get_reconciliation_service()
        summary = reconciler.run(trigger_type=g.trigger_type, dry_run=data['dry_run'])
    except Exception as e:
        current_app.logger.error(f"Scheduled billing run error: {str(e)}", exc_info=True)
        return jsonify({
            'success': False,
            'error': 'Failed to run scheduled billing'
        }), 500

    if summary.status == 'skipped':
        return jsonify({
            'success': False,
            'error': summary.message,
            'summary': summary.to_dict()
        }), 409

    # A failed run with nothing selected was aborted before processing
    aborted = summary.status == 'failed' and summary.total_due == 0
    return jsonify({
        'success': summary.status != 'failed',
        'message': summary.message,
        'summary': summary.to_dict()
    }), 503 if aborted else 200


@billing_bp.route('/process-scheduled', methods=['GET'])
@admin_required
def scheduled_billing_status():
    """Due/processed counts and the last run"""
    try:
        status = get_reconciliation_service().get_status()
        return jsonify({
            'success': True,
            'status': status
        }), 200
    except Exception as e:
        current_app.logger.error(f"Scheduled billing status error: {str(e)}")
        return jsonify({
            'success': False,
            'error': 'Failed to fetch billing status'
        }), 500


def _apply_action(billing_id, action, **kwargs):
    record = db.session.get(PhoneNumberBilling, billing_id)
    if record is None:
        return jsonify({'success': False, 'error': 'Billing record not found'}), 404

    notes = sanitize_string(request.validated_data.get('notes'), max_length=1000)
    try:
        action(record, _admin_name(), notes=notes, **kwargs)
        db.session.commit()
    except InvalidBillingTransition as e:
        db.session.rollback()
        return jsonify({
            'success': False,
            'error': str(e),
            'current_status': e.current_status
        }), 409
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Billing action on {billing_id} failed: {str(e)}")
        return jsonify({
            'success': False,
            'error': 'Failed to update billing record'
        }), 500

    current_app.logger.info(f"Billing {billing_id} -> {record.status} by {_admin_name()}")
    return jsonify({
        'success': True,
        'billing': record.to_dict()
    }), 200


@billing_bp.route('/<int:billing_id>/cancel', methods=['POST'])
@admin_required
@validate_request_json(BillingActionSchema(), optional=True)
def cancel_billing(billing_id):
    return _apply_action(billing_id, billing_lifecycle.cancel)


@billing_bp.route('/<int:billing_id>/retry', methods=['POST'])
@admin_required
@validate_request_json(BillingActionSchema(), optional=True)
def retry_billing(billing_id):
    """Return a failed record to pending for the next run"""
    return _apply_action(billing_id, billing_lifecycle.retry)


@billing_bp.route('/<int:billing_id>/refund', methods=['POST'])
@admin_required
@validate_request_json(RefundSchema(), optional=True)
def refund_billing(billing_id):
    """
    Mark a paid record refunded. With credit_gateway the amount is
    credited back to the user's gateway account first.
    """
    record = db.session.get(PhoneNumberBilling, billing_id)
    if record is None:
        return jsonify({'success': False, 'error': 'Billing record not found'}), 404
    if not billing_lifecycle.can_transition(record.status, 'refunded'):
        return jsonify({
            'success': False,
            'error': f"Cannot refund a {record.status} billing record",
            'current_status': record.status
        }), 409

    if request.validated_data['credit_gateway']:
        user = record.user
        if not user or not user.gateway_account_id:
            return jsonify({'success': False, 'error': 'User has no gateway account'}), 400
        try:
            number = record.phone_number.number if record.phone_number else record.phone_number_id
            result = get_gateway_client().account_credit(
                user.gateway_account_id, record.amount, record.currency,
                f"Refund for Number: {number} ({record.transaction_type})"
            )
        except (ConfigurationError, GatewayError) as e:
            current_app.logger.error(f"Gateway refund credit for billing {billing_id} failed: {str(e)}")
            return jsonify({
                'success': False,
                'error': 'Gateway credit failed'
            }), 502

        # Credits answer in the same result shape as debits
        outcome = classify_debit_result(result)
        if not outcome.success:
            reason = (result or {}).get('error') or (result or {}).get('tx_error') or 'rejected'
            current_app.logger.error(f"Gateway refund credit for billing {billing_id} rejected: {reason}")
            return jsonify({
                'success': False,
                'error': 'Gateway credit failed',
                'reason': reason
            }), 502

    return _apply_action(billing_id, billing_lifecycle.refund)


@billing_bp.route('/<int:billing_id>/resolve-hold', methods=['POST'])
@admin_required
@validate_request_json(BillingActionSchema(), optional=True)
def resolve_held_billing(billing_id):
    """Mark a held record paid with the gateway transaction that debited it"""
    record = db.session.get(PhoneNumberBilling, billing_id)
    if record is None:
        return jsonify({'success': False, 'error': 'Billing record not found'}), 404
    if not record.anomaly_transaction_id:
        return jsonify({
            'success': False,
            'error': 'Billing record is not held',
            'current_status': record.status
        }), 409

    return _apply_action(billing_id, billing_lifecycle.resolve_hold)
