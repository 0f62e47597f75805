import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import or_

from telebill.extensions import db
from telebill.models import NumberRate, NumberRateDeck, PhoneNumber, RateDeckAssignment, User


def normalize_number(value: Optional[str]) -> str:
    """Strip a leading '+' and every whitespace character"""
    if not value:
        return ''
    value = value.strip()
    if value.startswith('+'):
        value = value[1:]
    return ''.join(value.split())


def _field(row, name):
    if isinstance(row, dict):
        return row.get(name)
    return getattr(row, name, None)


def _longest_prefix_match(normalized: str, rows: Iterable):
    best = None
    best_length = -1
    for row in rows:
        prefix = normalize_number(_field(row, 'prefix'))
        # Strict '>' keeps the first row on equal lengths
        if normalized.startswith(prefix) and len(prefix) > best_length:
            best = row
            best_length = len(prefix)
    return best


def find_matching_rate(number: str, country: Optional[str], number_type: Optional[str], rows):
    """
    Resolve the price row for a number.

    Rows matching country (case-insensitive) and number type are tried
    first; if none of their prefixes match, every row is considered.
    Returns None when no prefix matches at all.
    """
    rows = list(rows)
    normalized = normalize_number(number)
    country_key = (country or '').lower()

    candidates = [
        row for row in rows
        if (_field(row, 'country') or '').lower() == country_key
        and _field(row, 'number_type') == number_type
    ]
    match = _longest_prefix_match(normalized, candidates)
    if match is None:
        match = _longest_prefix_match(normalized, rows)
    return match


class RateService:
    """Rate deck lookups and price resolution for phone numbers"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    # =========================================================================
    # RATE DECK ASSIGNMENT
    # =========================================================================

    def get_user_assigned_rate_deck(self, user_id: int, deck_type: str = 'number') -> Optional[NumberRateDeck]:
        assignment = RateDeckAssignment.query.filter_by(
            user_id=user_id,
            rate_deck_type=deck_type,
            is_active=True
        ).first()
        if assignment is None:
            return None
        return assignment.rate_deck

    def assign_rate_deck(self, user_id: int, rate_deck_id: int, deck_type: str = 'number',
                         assigned_by: str = None) -> RateDeckAssignment:
        """Activate a deck for a user, deactivating any other active deck of that type"""
        if deck_type not in RateDeckAssignment.DECK_TYPES:
            raise ValueError(f"Unknown rate deck type '{deck_type}'")
        if db.session.get(User, user_id) is None:
            raise ValueError(f"User {user_id} not found")
        if db.session.get(NumberRateDeck, rate_deck_id) is None:
            raise ValueError(f"Rate deck {rate_deck_id} not found")

        now = datetime.utcnow()
        try:
            current = RateDeckAssignment.query.filter_by(
                user_id=user_id, rate_deck_type=deck_type, is_active=True
            ).all()
            for existing in current:
                if existing.rate_deck_id == rate_deck_id:
                    return existing
                existing.is_active = False
                existing.unassigned_at = now

            assignment = RateDeckAssignment(
                user_id=user_id,
                rate_deck_id=rate_deck_id,
                rate_deck_type=deck_type,
                is_active=True,
                assigned_by=assigned_by,
                assigned_at=now
            )
            db.session.add(assignment)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        self.logger.info(f"Assigned {deck_type} rate deck {rate_deck_id} to user {user_id}")
        return assignment

    # =========================================================================
    # PRICE RESOLUTION
    # =========================================================================

    def find_rate_for_number(self, phone_number: PhoneNumber, rate_deck: NumberRateDeck) -> Optional[NumberRate]:
        if rate_deck is None:
            return None
        rows = NumberRate.query.filter_by(rate_deck_id=rate_deck.id).order_by(NumberRate.id).all()
        rate = find_matching_rate(phone_number.number, phone_number.country, phone_number.number_type, rows)
        if rate is None:
            self.logger.debug(f"No rate for {phone_number.number} in deck {rate_deck.name}")
        return rate

    def price_number(self, phone_number: PhoneNumber, rate_deck: NumberRateDeck) -> Optional[Dict[str, Any]]:
        """Monthly rate and setup fee for a number, or None when it cannot be sold"""
        rate = self.find_rate_for_number(phone_number, rate_deck)
        if rate is None or not rate.rate or Decimal(rate.rate) <= 0:
            return None
        setup_fee = rate.setup_fee if rate.setup_fee else (phone_number.setup_fee or Decimal('0'))
        return {
            'monthly_rate': Decimal(rate.rate),
            'setup_fee': Decimal(setup_fee),
            'currency': rate_deck.currency or 'USD',
            'rate_prefix': rate.prefix,
            'rate_description': rate.description,
        }

    def list_purchasable_numbers(self, user_id: int, page: int = 1, per_page: int = 12,
                                 country: str = None, number_type: str = None,
                                 search: str = None) -> Dict[str, Any]:
        """
        Available numbers the user can buy, priced from their number deck.
        Numbers without a rate (or with a zero rate) are left out.
        """
        rate_deck = self.get_user_assigned_rate_deck(user_id)

        query = PhoneNumber.query.filter_by(status='available')
        if country:
            query = query.filter(PhoneNumber.country == country)
        if number_type:
            query = query.filter(PhoneNumber.number_type == number_type)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                PhoneNumber.number.ilike(pattern),
                PhoneNumber.country.ilike(pattern),
                PhoneNumber.description.ilike(pattern)
            ))

        total = query.count()
        numbers = query.order_by(PhoneNumber.id).offset((page - 1) * per_page).limit(per_page).all()

        phone_numbers = []
        if rate_deck is not None:
            for number in numbers:
                price = self.price_number(number, rate_deck)
                if price is None:
                    continue
                item = number.to_dict()
                item.update({
                    'monthly_rate': float(price['monthly_rate']),
                    'setup_fee': float(price['setup_fee']),
                    'currency': price['currency'],
                    'rate_prefix': price['rate_prefix'],
                    'rate_description': price['rate_description'],
                    'rate_deck_name': rate_deck.name,
                })
                phone_numbers.append(item)
        else:
            self.logger.info(f"User {user_id} has no number rate deck assigned")

        return {
            'phone_numbers': phone_numbers,
            'total': len(phone_numbers),
            'original_total': total,
            'page': page,
            'per_page': per_page,
            'pages': (total + per_page - 1) // per_page if per_page else 0,
        }
