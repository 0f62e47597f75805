from decimal import Decimal

import pytest

from telebill.models import RateDeckAssignment
from telebill.services.rate_service import RateService, find_matching_rate, normalize_number

from billing_test_utils import BillingTestUtils


ROWS = [
    {'prefix': '1', 'country': 'US', 'number_type': 'Mobile', 'rate': 1},
    {'prefix': '1212', 'country': 'US', 'number_type': 'Mobile', 'rate': 2},
]


def test_normalize_strips_plus_and_whitespace():
    assert normalize_number('+1 212 555 1234') == '12125551234'
    assert normalize_number(' +44\t7700 900') == '447700900'
    assert normalize_number(None) == ''


def test_longest_prefix_wins():
    match = find_matching_rate('+12125551234', 'US', 'Mobile', ROWS)
    assert match['rate'] == 2


def test_country_match_is_case_insensitive():
    match = find_matching_rate('+12125551234', 'us', 'Mobile', ROWS)
    assert match['rate'] == 2


def test_falls_back_to_prefix_only_when_country_differs():
    rows = [
        {'prefix': '1', 'country': 'Canada', 'number_type': 'Mobile', 'rate': 1},
        {'prefix': '1212', 'country': 'Canada', 'number_type': 'Mobile', 'rate': 2},
    ]
    match = find_matching_rate('+12125551234', 'US', 'Mobile', rows)
    assert match['rate'] == 2


def test_falls_back_when_filtered_rows_have_no_matching_prefix():
    rows = [
        {'prefix': '44', 'country': 'US', 'number_type': 'Mobile', 'rate': 9},
        {'prefix': '121', 'country': 'Other', 'number_type': 'Local', 'rate': 3},
    ]
    match = find_matching_rate('+12125551234', 'US', 'Mobile', rows)
    assert match['rate'] == 3


def test_no_match_returns_none():
    rows = [{'prefix': '44', 'country': 'UK', 'number_type': 'Mobile', 'rate': 5}]
    assert find_matching_rate('+12125551234', 'US', 'Mobile', rows) is None
    assert find_matching_rate('+12125551234', 'US', 'Mobile', []) is None


def test_empty_prefix_is_catch_all_only_without_longer_match():
    rows = [
        {'prefix': '', 'country': 'US', 'number_type': 'Mobile', 'rate': 7},
        {'prefix': '1', 'country': 'US', 'number_type': 'Mobile', 'rate': 1},
    ]
    assert find_matching_rate('+12125551234', 'US', 'Mobile', rows)['rate'] == 1
    assert find_matching_rate('+4420', 'US', 'Mobile', rows)['rate'] == 7


def test_ties_resolve_to_first_row():
    rows = [
        {'prefix': '1212', 'country': 'US', 'number_type': 'Mobile', 'rate': 4},
        {'prefix': '+1 212', 'country': 'US', 'number_type': 'Mobile', 'rate': 5},
    ]
    assert find_matching_rate('+12125551234', 'US', 'Mobile', rows)['rate'] == 4


def test_type_must_match_for_filtered_pass():
    rows = [
        {'prefix': '1', 'country': 'US', 'number_type': 'Mobile', 'rate': 1},
        {'prefix': '1212', 'country': 'US', 'number_type': 'Toll-free', 'rate': 8},
    ]
    assert find_matching_rate('+12125551234', 'US', 'Mobile', rows)['rate'] == 1


# =============================================================================
# RateService (database backed)
# =============================================================================

@pytest.fixture
def priced_user(app):
    user = BillingTestUtils.create_test_user()
    deck = BillingTestUtils.create_test_rate_deck(rates=[
        {'prefix': '1', 'country': 'United States', 'number_type': 'Mobile',
         'rate': Decimal('1.00'), 'setup_fee': Decimal('0')},
        {'prefix': '1212', 'country': 'United States', 'number_type': 'Mobile',
         'rate': Decimal('2.50'), 'setup_fee': Decimal('5.00')},
        {'prefix': '44', 'country': 'United Kingdom', 'number_type': 'Mobile',
         'rate': Decimal('0'), 'setup_fee': Decimal('0')},
    ], currency='EUR')
    BillingTestUtils.assign_rate_deck(user, deck)
    return user, deck


def test_find_rate_for_number_uses_deck_rows(priced_user):
    user, deck = priced_user
    number = BillingTestUtils.create_test_phone_number(number='+12125550001')

    rate = RateService().find_rate_for_number(number, deck)
    assert rate.rate == Decimal('2.50')


def test_list_purchasable_numbers_prices_and_filters(priced_user):
    user, deck = priced_user
    BillingTestUtils.create_test_phone_number(number='+12125550002', setup_fee=Decimal('9.00'))
    BillingTestUtils.create_test_phone_number(number='+13105550003', setup_fee=Decimal('3.00'))
    BillingTestUtils.create_test_phone_number(number='+447700900004', country='United Kingdom')
    BillingTestUtils.create_test_phone_number(number='+12125550005', status='assigned')

    result = RateService().list_purchasable_numbers(user.id)
    by_number = {item['number']: item for item in result['phone_numbers']}

    assert set(by_number) == {'+12125550002', '+13105550003'}
    assert by_number['+12125550002']['monthly_rate'] == 2.5
    assert by_number['+12125550002']['setup_fee'] == 5.0
    # Row without a setup fee falls back to the number's own
    assert by_number['+13105550003']['monthly_rate'] == 1.0
    assert by_number['+13105550003']['setup_fee'] == 3.0
    assert by_number['+13105550003']['currency'] == 'EUR'
    assert result['original_total'] == 3


def test_list_purchasable_numbers_without_deck_is_empty(app):
    user = BillingTestUtils.create_test_user()
    BillingTestUtils.create_test_phone_number(number='+12125550006')

    result = RateService().list_purchasable_numbers(user.id)
    assert result['phone_numbers'] == []


def test_assign_rate_deck_keeps_one_active_per_type(priced_user):
    user, first_deck = priced_user
    second_deck = BillingTestUtils.create_test_rate_deck(name='Second')
    sms_deck = BillingTestUtils.create_test_rate_deck(name='SMS')
    service = RateService()

    service.assign_rate_deck(user.id, sms_deck.id, deck_type='sms')
    service.assign_rate_deck(user.id, second_deck.id, assigned_by='admin@example.com')

    active = RateDeckAssignment.query.filter_by(user_id=user.id, is_active=True).all()
    assert sorted((a.rate_deck_type, a.rate_deck_id) for a in active) == [
        ('number', second_deck.id), ('sms', sms_deck.id)
    ]
    assert service.get_user_assigned_rate_deck(user.id).id == second_deck.id


def test_assign_rate_deck_rejects_unknown_type(priced_user):
    user, deck = priced_user
    with pytest.raises(ValueError):
        RateService().assign_rate_deck(user.id, deck.id, deck_type='voice')
