# telebill/models/__init__.py
"""
Model registry - import every model so relationships resolve
"""
from telebill.models.user import User
from telebill.models.phone_number import PhoneNumber
from telebill.models.rate_deck import NumberRateDeck, NumberRate, RateDeckAssignment
from telebill.models.billing import PhoneNumberBilling, CronExecution

__all__ = [
    'User',
    'PhoneNumber',
    'NumberRateDeck',
    'NumberRate',
    'RateDeckAssignment',
    'PhoneNumberBilling',
    'CronExecution',
]
