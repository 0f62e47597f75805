from datetime import datetime
from telebill.extensions import db


class PhoneNumber(db.Model):
    """Telecom resource that can be assigned to a user and billed monthly"""
    __tablename__ = 'phone_numbers'

    STATUSES = ('available', 'assigned', 'reserved', 'suspended', 'cancelled')
    NUMBER_TYPES = (
        'Geographic/Local', 'Mobile', 'National', 'Toll-free',
        'Shared Cost', 'NPV (Verified Numbers)', 'Premium'
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(32), unique=True, nullable=False, index=True)
    country = db.Column(db.String(100), nullable=False)
    country_code = db.Column(db.String(8))
    number_type = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(255))
    status = db.Column(db.String(20), nullable=False, default='available', index=True)
    backorder_only = db.Column(db.Boolean, default=False)

    # Fallback pricing when the user's rate deck has no setup fee
    monthly_rate = db.Column(db.Numeric(10, 4))
    setup_fee = db.Column(db.Numeric(10, 4), default=0)
    currency = db.Column(db.String(3), default='USD')

    # Assignment
    assigned_to = db.Column(db.Integer, db.ForeignKey('users.id'), index=True)
    assigned_at = db.Column(db.DateTime)

    # Billing
    billing_day_of_month = db.Column(db.Integer, nullable=False, default=1)  # 1-28
    next_billing_date = db.Column(db.DateTime)
    last_billed_date = db.Column(db.DateTime)

    notes = db.Column(db.Text)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    assigned_user = db.relationship('User', back_populates='phone_numbers')
    billing_records = db.relationship('PhoneNumberBilling', back_populates='phone_number', lazy='dynamic')

    __table_args__ = (
        db.Index('ix_phone_numbers_country_type', 'country', 'number_type'),
    )

    def suspend(self, reason):
        """Suspend the number; suspending twice leaves a single note"""
        if self.status == 'suspended':
            return False
        self.status = 'suspended'
        note = f"Suspended due to insufficient funds: {reason}"
        self.notes = f"{self.notes}\n{note}" if self.notes else note
        return True

    def to_dict(self):
        return {
            'id': self.id,
            'number': self.number,
            'country': self.country,
            'country_code': self.country_code,
            'number_type': self.number_type,
            'description': self.description,
            'status': self.status,
            'backorder_only': self.backorder_only,
            'monthly_rate': float(self.monthly_rate) if self.monthly_rate is not None else None,
            'setup_fee': float(self.setup_fee) if self.setup_fee else 0.0,
            'currency': self.currency,
            'assigned_to': self.assigned_to,
            'billing_day_of_month': self.billing_day_of_month,
            'next_billing_date': self.next_billing_date.isoformat() if self.next_billing_date else None,
            'last_billed_date': self.last_billed_date.isoformat() if self.last_billed_date else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<PhoneNumber {self.number} ({self.status})>'
