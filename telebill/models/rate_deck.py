from datetime import datetime
from telebill.extensions import db


class NumberRateDeck(db.Model):
    """Named pricing table for phone numbers"""
    __tablename__ = 'number_rate_decks'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.Text)
    currency = db.Column(db.String(3), default='USD')
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Rows keep storage order; resolution tie-breaks on it
    rates = db.relationship('NumberRate', back_populates='rate_deck', lazy='dynamic',
                            order_by='NumberRate.id')
    assignments = db.relationship('RateDeckAssignment', back_populates='rate_deck', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'currency': self.currency,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class NumberRate(db.Model):
    """One prefix row of a number rate deck"""
    __tablename__ = 'number_rates'

    id = db.Column(db.Integer, primary_key=True)
    rate_deck_id = db.Column(db.Integer, db.ForeignKey('number_rate_decks.id'), nullable=False, index=True)
    prefix = db.Column(db.String(32), nullable=False, default='')
    country = db.Column(db.String(100), nullable=False)
    number_type = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(255))
    rate = db.Column(db.Numeric(10, 4), nullable=False)
    setup_fee = db.Column(db.Numeric(10, 4), default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    rate_deck = db.relationship('NumberRateDeck', back_populates='rates')

    def to_dict(self):
        return {
            'id': self.id,
            'rate_deck_id': self.rate_deck_id,
            'prefix': self.prefix,
            'country': self.country,
            'number_type': self.number_type,
            'description': self.description,
            'rate': float(self.rate),
            'setup_fee': float(self.setup_fee) if self.setup_fee else 0.0
        }


class RateDeckAssignment(db.Model):
    """Links a user to a rate deck; one active assignment per deck type"""
    __tablename__ = 'rate_deck_assignments'

    DECK_TYPES = ('number', 'sms')

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    rate_deck_id = db.Column(db.Integer, db.ForeignKey('number_rate_decks.id'), nullable=False, index=True)
    rate_deck_type = db.Column(db.String(10), nullable=False, default='number')
    is_active = db.Column(db.Boolean, default=True, index=True)
    assigned_by = db.Column(db.String(255))
    assigned_at = db.Column(db.DateTime, default=datetime.utcnow)
    unassigned_at = db.Column(db.DateTime)

    user = db.relationship('User', back_populates='rate_deck_assignments')
    rate_deck = db.relationship('NumberRateDeck', back_populates='assignments')

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'rate_deck_id': self.rate_deck_id,
            'rate_deck_type': self.rate_deck_type,
            'is_active': self.is_active,
            'assigned_by': self.assigned_by,
            'assigned_at': self.assigned_at.isoformat() if self.assigned_at else None
        }
