from datetime import datetime
from telebill.extensions import db


class User(db.Model):
    """Customer or administrator holding a prepaid gateway account"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100))
    company = db.Column(db.String(100))
    role = db.Column(db.String(20), default='user')  # user, admin
    is_active = db.Column(db.Boolean, default=True)

    # Gateway account (i_account); numbers cannot be billed without it
    gateway_account_id = db.Column(db.Integer, index=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    phone_numbers = db.relationship('PhoneNumber', back_populates='assigned_user', lazy='dynamic')
    billing_records = db.relationship('PhoneNumberBilling', back_populates='user', lazy='dynamic')
    rate_deck_assignments = db.relationship('RateDeckAssignment', back_populates='user', lazy='dynamic')

    @property
    def is_admin(self):
        return self.role == 'admin'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'company': self.company,
            'role': self.role,
            'is_active': self.is_active,
            'gateway_account_id': self.gateway_account_id,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<User {self.email}>'
