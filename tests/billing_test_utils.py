# tests/billing_test_utils.py
"""
Testing utilities for phone number billing
Provides factories, a stub gateway and canned XML-RPC responses
"""

import itertools
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List

from telebill.extensions import db
from telebill.models import (
    User, PhoneNumber, NumberRateDeck, NumberRate,
    RateDeckAssignment, PhoneNumberBilling
)
from telebill.utils.xmlrpc import encode_fault, encode_method_response

_number_sequence = itertools.count(1000)


class BillingTestUtils:
    """Utilities for testing billing functionality"""

    @staticmethod
    def create_test_user(email: str = None, **kwargs) -> User:
        """Create a test user with a gateway account"""
        user_data = {
            'email': email or f'test_{uuid.uuid4().hex[:8]}@example.com',
            'name': 'Test User',
            'role': 'user',
            'is_active': True,
            'gateway_account_id': 1001,
            **kwargs
        }

        user = User(**user_data)
        db.session.add(user)
        db.session.commit()
        return user

    @staticmethod
    def create_test_admin(**kwargs) -> User:
        return BillingTestUtils.create_test_user(
            email=f'admin_{uuid.uuid4().hex[:8]}@example.com', role='admin', **kwargs
        )

    @staticmethod
    def create_test_phone_number(user: User = None, **kwargs) -> PhoneNumber:
        """Create a phone number, assigned to ``user`` when given"""
        number_data = {
            'number': f'+1212555{next(_number_sequence):04d}',
            'country': 'United States',
            'country_code': '1',
            'number_type': 'Mobile',
            'status': 'assigned' if user else 'available',
            'monthly_rate': Decimal('10.00'),
            'setup_fee': Decimal('0'),
            'currency': 'USD',
            'assigned_to': user.id if user else None,
            'assigned_at': datetime.utcnow() if user else None,
            'billing_day_of_month': 1,
            **kwargs
        }

        phone_number = PhoneNumber(**number_data)
        db.session.add(phone_number)
        db.session.commit()
        return phone_number

    @staticmethod
    def create_test_rate_deck(rates: List[Dict[str, Any]] = None, **kwargs) -> NumberRateDeck:
        """Create a rate deck with rows added in the given order"""
        deck = NumberRateDeck(
            name=kwargs.pop('name', f'Deck {uuid.uuid4().hex[:6]}'),
            currency=kwargs.pop('currency', 'USD'),
            **kwargs
        )
        db.session.add(deck)
        db.session.flush()

        for row in rates or []:
            db.session.add(NumberRate(rate_deck_id=deck.id, **row))

        db.session.commit()
        return deck

    @staticmethod
    def assign_rate_deck(user: User, deck: NumberRateDeck, deck_type: str = 'number') -> RateDeckAssignment:
        assignment = RateDeckAssignment(
            user_id=user.id,
            rate_deck_id=deck.id,
            rate_deck_type=deck_type,
            is_active=True
        )
        db.session.add(assignment)
        db.session.commit()
        return assignment

    @staticmethod
    def create_test_billing(phone_number: PhoneNumber, user: User, **kwargs) -> PhoneNumberBilling:
        """Create a pending monthly fee billed yesterday"""
        billing_date = kwargs.pop('billing_date', datetime.utcnow() - timedelta(days=1))
        billing_data = {
            'phone_number_id': phone_number.id,
            'user_id': user.id,
            'amount': Decimal('10.00'),
            'currency': 'USD',
            'status': 'pending',
            'billing_date': billing_date,
            'billing_period_start': billing_date,
            'billing_period_end': billing_date + timedelta(days=30),
            'transaction_type': 'monthly_fee',
            'payment_type': 'debit',
            **kwargs
        }

        billing = PhoneNumberBilling(**billing_data)
        db.session.add(billing)
        db.session.commit()
        return billing

    @staticmethod
    def create_due_billing_setup(**billing_kwargs) -> Dict[str, Any]:
        """User, assigned number and one due billing record"""
        user = BillingTestUtils.create_test_user()
        phone_number = BillingTestUtils.create_test_phone_number(user)
        billing = BillingTestUtils.create_test_billing(phone_number, user, **billing_kwargs)
        return {
            'user': user,
            'phone_number': phone_number,
            'billing': billing
        }


class StubGateway:
    """
    Stands in for GatewayClient. Each debit pops the next queued response;
    exceptions in the queue are raised. ``ping_error`` makes the
    reachability check fail and ``credit_response`` is returned (or raised)
    by credits.
    """

    def __init__(self, *responses, default=None, ping_error=None, credit_response=None):
        self.responses = list(responses)
        self.default = default if default is not None else {'result': 'success', 'tx_id': 'tx_default'}
        self.ping_error = ping_error
        self.credit_response = credit_response if credit_response is not None else {'result': 'OK'}
        self.pings = []
        self.debits = []
        self.credits = []

    def ping(self, i_account=None):
        self.pings.append(i_account)
        if self.ping_error is not None:
            raise self.ping_error
        return True

    def account_debit(self, i_account, amount, currency, payment_notes=None):
        self.debits.append({
            'i_account': i_account,
            'amount': amount,
            'currency': currency,
            'payment_notes': payment_notes
        })
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        return response

    def account_credit(self, i_account, amount, currency, payment_notes=None):
        self.credits.append({
            'i_account': i_account,
            'amount': amount,
            'currency': currency,
            'payment_notes': payment_notes
        })
        if isinstance(self.credit_response, Exception):
            raise self.credit_response
        return self.credit_response


class FakeTransport:
    """Transport callable returning canned XML-RPC text and recording payloads"""

    def __init__(self, *bodies):
        self.bodies = list(bodies)
        self.calls = []

    def __call__(self, method, payload):
        self.calls.append((method, payload))
        body = self.bodies.pop(0)
        if isinstance(body, Exception):
            raise body
        return body


class FakeRedis:
    """Just enough of redis.Redis for the run lock"""

    def __init__(self):
        self.store = {}
        self.expiries = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.expiries[key] = ex
        return True

    def get(self, key):
        return self.store.get(key)

    def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

    def ping(self):
        return True


def xmlrpc_response(value) -> str:
    return encode_method_response(value)


def xmlrpc_fault(code: int, message: str) -> str:
    return encode_fault(code, message)
