from datetime import datetime
from decimal import Decimal

import pytest

from telebill.exceptions import ConfigurationError, GatewayTransportError
from telebill.extensions import db
from telebill.models import PhoneNumberBilling
from telebill.services.reconciliation_service import ScheduledBillingReconciler
from telebill.tasks.billing_tasks import run_scheduled_billing

from billing_test_utils import BillingTestUtils, StubGateway


INTERNAL_HEADERS = {'Authorization': 'Bearer test-internal-key'}


@pytest.fixture
def stub_gateway(monkeypatch):
    stub = StubGateway()

    def factory(gateway=None, redis_client=None):
        return ScheduledBillingReconciler(gateway=stub, redis_client=redis_client)

    monkeypatch.setattr('telebill.api.billing.get_reconciliation_service', factory)
    monkeypatch.setattr('telebill.cli.get_reconciliation_service', factory)
    monkeypatch.setattr('telebill.tasks.billing_tasks.get_reconciliation_service', factory)
    return stub


# =============================================================================
# POST /api/billing/process-scheduled
# =============================================================================

def test_internal_key_triggers_scheduled_run(client, stub_gateway):
    setup = BillingTestUtils.create_due_billing_setup()

    response = client.post('/api/billing/process-scheduled', headers=INTERNAL_HEADERS)

    assert response.status_code == 200
    data = response.get_json()
    assert data['success'] is True
    assert data['summary']['triggered_by'] == 'scheduled'
    assert data['summary']['processed_count'] == 1
    assert db.session.get(PhoneNumberBilling, setup['billing'].id).status == 'paid'


def test_admin_triggers_manual_run(client, admin_headers, stub_gateway):
    BillingTestUtils.create_due_billing_setup()

    response = client.post('/api/billing/process-scheduled', headers=admin_headers)

    assert response.status_code == 200
    assert response.get_json()['summary']['triggered_by'] == 'manual'


def test_dry_run_over_http_charges_nothing(client, admin_headers, stub_gateway):
    BillingTestUtils.create_due_billing_setup()

    response = client.post('/api/billing/process-scheduled', headers=admin_headers, json={'dry_run': True})

    assert response.status_code == 200
    assert response.get_json()['summary']['total_due'] == 1
    assert stub_gateway.debits == []


def test_run_with_failures_still_returns_summary(client, admin_headers, stub_gateway):
    BillingTestUtils.create_due_billing_setup()
    stub_gateway.responses.append({'error': 'Insufficient funds'})

    response = client.post('/api/billing/process-scheduled', headers=admin_headers)

    data = response.get_json()
    assert response.status_code == 200
    assert data['success'] is False
    assert data['summary']['failed_count'] == 1
    assert data['summary']['errors'][0]['error'] == 'Insufficient funds'


def test_missing_gateway_credentials_return_503(client, monkeypatch):
    def broken():
        raise ConfigurationError('Missing required gateway credentials')

    monkeypatch.setattr('telebill.api.billing.get_reconciliation_service',
                        lambda: ScheduledBillingReconciler(gateway_factory=broken))

    response = client.post('/api/billing/process-scheduled', headers=INTERNAL_HEADERS)

    assert response.status_code == 503
    assert response.get_json()['summary']['status'] == 'failed'


def test_unreachable_gateway_returns_503(client, stub_gateway):
    setup = BillingTestUtils.create_due_billing_setup()
    stub_gateway.ping_error = GatewayTransportError('getAccountInfo request failed: connection refused')

    response = client.post('/api/billing/process-scheduled', headers=INTERNAL_HEADERS)

    assert response.status_code == 503
    assert response.get_json()['summary']['total_due'] == 0
    assert stub_gateway.debits == []
    assert db.session.get(PhoneNumberBilling, setup['billing'].id).status == 'pending'


def test_wrong_internal_key_is_rejected(client, stub_gateway):
    response = client.post('/api/billing/process-scheduled', headers={'Authorization': 'Bearer nope'})
    assert response.status_code in (401, 422)


def test_missing_auth_is_rejected(client, stub_gateway):
    assert client.post('/api/billing/process-scheduled').status_code == 401


def test_non_admin_is_forbidden(client, auth_headers, stub_gateway):
    user = BillingTestUtils.create_test_user()
    response = client.post('/api/billing/process-scheduled', headers=auth_headers(user))
    assert response.status_code == 403


def test_invalid_body_is_rejected(client, admin_headers, stub_gateway):
    response = client.post('/api/billing/process-scheduled', headers=admin_headers,
                           json={'dry_run': 'sometimes'})
    assert response.status_code == 400


def test_status_endpoint(client, admin_headers, stub_gateway):
    BillingTestUtils.create_due_billing_setup()
    client.post('/api/billing/process-scheduled', headers=INTERNAL_HEADERS)

    response = client.get('/api/billing/process-scheduled', headers=admin_headers)

    status = response.get_json()['status']
    assert response.status_code == 200
    assert status['processed_today'] == 1
    assert status['last_execution']['trigger_type'] == 'scheduled'


def test_status_endpoint_refuses_internal_key(client):
    response = client.get('/api/billing/process-scheduled', headers=INTERNAL_HEADERS)
    assert response.status_code in (401, 422)


# =============================================================================
# Admin actions
# =============================================================================

def test_retry_failed_record(client, admin_headers, admin_user):
    setup = BillingTestUtils.create_due_billing_setup(status='failed', failure_reason='Insufficient funds')

    response = client.post(f"/api/billing/{setup['billing'].id}/retry", headers=admin_headers,
                           json={'notes': 'customer topped up'})

    billing = response.get_json()['billing']
    assert response.status_code == 200
    assert billing['status'] == 'pending'
    assert billing['failure_reason'] is None
    assert billing['processed_by'] == f'admin:{admin_user.email}'
    assert 'customer topped up' in billing['notes']


def test_retry_paid_record_conflicts(client, admin_headers):
    setup = BillingTestUtils.create_due_billing_setup(status='paid', paid_date=datetime.utcnow(),
                                                      gateway_transaction_id='tx1')

    response = client.post(f"/api/billing/{setup['billing'].id}/retry", headers=admin_headers)

    assert response.status_code == 409
    assert response.get_json()['current_status'] == 'paid'
    assert db.session.get(PhoneNumberBilling, setup['billing'].id).status == 'paid'


def test_cancel_pending_record(client, admin_headers):
    setup = BillingTestUtils.create_due_billing_setup()

    response = client.post(f"/api/billing/{setup['billing'].id}/cancel", headers=admin_headers)

    assert response.status_code == 200
    assert response.get_json()['billing']['status'] == 'cancelled'


def test_cancel_unknown_record_is_404(client, admin_headers):
    assert client.post('/api/billing/9999/cancel', headers=admin_headers).status_code == 404


def test_refund_pending_record_conflicts(client, admin_headers):
    setup = BillingTestUtils.create_due_billing_setup()
    response = client.post(f"/api/billing/{setup['billing'].id}/refund", headers=admin_headers)
    assert response.status_code == 409


def test_refund_paid_record_with_gateway_credit(client, admin_headers, monkeypatch):
    setup = BillingTestUtils.create_due_billing_setup(status='paid', paid_date=datetime.utcnow(),
                                                      gateway_transaction_id='tx-7',
                                                      amount=Decimal('4.25'))
    gateway = StubGateway()
    monkeypatch.setattr('telebill.api.billing.get_gateway_client', lambda: gateway)

    response = client.post(f"/api/billing/{setup['billing'].id}/refund", headers=admin_headers,
                           json={'credit_gateway': True})

    assert response.status_code == 200
    assert response.get_json()['billing']['status'] == 'refunded'
    [credit] = gateway.credits
    assert credit['i_account'] == 1001
    assert credit['amount'] == Decimal('4.25')
    assert setup['phone_number'].number in credit['payment_notes']


def test_refund_gateway_failure_leaves_record_paid(client, admin_headers, monkeypatch):
    setup = BillingTestUtils.create_due_billing_setup(status='paid', paid_date=datetime.utcnow(),
                                                      gateway_transaction_id='tx-8')

    class DownGateway(StubGateway):
        def account_credit(self, *args, **kwargs):
            raise GatewayTransportError('accountCredit request failed: connection refused')

    monkeypatch.setattr('telebill.api.billing.get_gateway_client', lambda: DownGateway())

    response = client.post(f"/api/billing/{setup['billing'].id}/refund", headers=admin_headers,
                           json={'credit_gateway': True})

    assert response.status_code == 502
    assert db.session.get(PhoneNumberBilling, setup['billing'].id).status == 'paid'


def test_refund_rejected_credit_leaves_record_paid(client, admin_headers, monkeypatch):
    setup = BillingTestUtils.create_due_billing_setup(status='paid', paid_date=datetime.utcnow(),
                                                      gateway_transaction_id='tx-9')
    gateway = StubGateway(credit_response={'result': 'failed', 'error': 'Account locked'})
    monkeypatch.setattr('telebill.api.billing.get_gateway_client', lambda: gateway)

    response = client.post(f"/api/billing/{setup['billing'].id}/refund", headers=admin_headers,
                           json={'credit_gateway': True})

    assert response.status_code == 502
    assert response.get_json()['reason'] == 'Account locked'
    assert len(gateway.credits) == 1
    billing = db.session.get(PhoneNumberBilling, setup['billing'].id)
    assert billing.status == 'paid'
    assert billing.gateway_transaction_id == 'tx-9'


def test_resolve_hold_marks_record_paid(client, admin_headers):
    setup = BillingTestUtils.create_due_billing_setup(anomaly_transaction_id='tx-held')

    response = client.post(f"/api/billing/{setup['billing'].id}/resolve-hold", headers=admin_headers,
                           json={'notes': 'seen in switch payments'})

    billing = response.get_json()['billing']
    assert response.status_code == 200
    assert billing['status'] == 'paid'
    assert billing['gateway_transaction_id'] == 'tx-held'
    assert billing['anomaly_transaction_id'] is None


def test_resolve_hold_on_unheld_record_conflicts(client, admin_headers):
    setup = BillingTestUtils.create_due_billing_setup()

    response = client.post(f"/api/billing/{setup['billing'].id}/resolve-hold", headers=admin_headers)

    assert response.status_code == 409
    assert db.session.get(PhoneNumberBilling, setup['billing'].id).status == 'pending'


def test_admin_actions_require_admin(client, auth_headers):
    setup = BillingTestUtils.create_due_billing_setup(status='failed', failure_reason='x')
    response = client.post(f"/api/billing/{setup['billing'].id}/retry", headers=auth_headers(setup['user']))
    assert response.status_code == 403


# =============================================================================
# Phone numbers and health
# =============================================================================

def test_available_numbers_are_priced_from_rate_deck(client, auth_headers):
    user = BillingTestUtils.create_test_user()
    deck = BillingTestUtils.create_test_rate_deck(rates=[
        {'prefix': '1212', 'country': 'United States', 'number_type': 'Mobile',
         'rate': Decimal('2.00'), 'setup_fee': Decimal('1.00'), 'description': 'New York'},
    ])
    BillingTestUtils.assign_rate_deck(user, deck)
    BillingTestUtils.create_test_phone_number(number='+12125550100')
    BillingTestUtils.create_test_phone_number(number='+13125550101')

    response = client.get('/api/phone-numbers/available?per_page=5', headers=auth_headers(user))

    data = response.get_json()
    assert response.status_code == 200
    assert data['success'] is True
    assert [item['number'] for item in data['phone_numbers']] == ['+12125550100']
    assert data['phone_numbers'][0]['monthly_rate'] == 2.0
    assert data['phone_numbers'][0]['rate_deck_name'] == deck.name
    assert data['per_page'] == 5


def test_available_numbers_rejects_bad_paging(client, auth_headers):
    user = BillingTestUtils.create_test_user()
    response = client.get('/api/phone-numbers/available?per_page=500', headers=auth_headers(user))
    assert response.status_code == 400


def test_health_check(client):
    response = client.get('/api/health')
    data = response.get_json()
    assert response.status_code == 200
    assert data['checks']['database'] == 'healthy'
    assert data['checks']['redis'] == 'not_configured'


# =============================================================================
# CLI and task entry points
# =============================================================================

def test_cli_dry_run_lists_due_records(app, stub_gateway):
    setup = BillingTestUtils.create_due_billing_setup()

    result = app.test_cli_runner().invoke(args=['process-billing', '--dry-run'])

    assert result.exit_code == 0
    assert '1 billing record(s) due' in result.output
    assert setup['phone_number'].number in result.output
    assert stub_gateway.debits == []


def test_cli_run_and_status(app, stub_gateway):
    BillingTestUtils.create_due_billing_setup()
    runner = app.test_cli_runner()

    result = runner.invoke(args=['process-billing'])
    assert result.exit_code == 0
    assert 'Paid:      1' in result.output

    result = runner.invoke(args=['billing-status'])
    assert 'Paid today:        1' in result.output
    assert '(cli) -> success' in result.output


def test_task_body_returns_summary_dict(app, stub_gateway):
    BillingTestUtils.create_due_billing_setup()

    result = run_scheduled_billing(trigger_type='scheduled')

    assert result['status'] == 'success'
    assert result['processed_count'] == 1
    assert len(stub_gateway.debits) == 1
