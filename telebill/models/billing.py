from datetime import datetime
from telebill.extensions import db


class PhoneNumberBilling(db.Model):
    """One charge obligation for an assigned phone number"""
    __tablename__ = 'phone_number_billing'

    STATUSES = ('pending', 'paid', 'failed', 'cancelled', 'refunded')
    TRANSACTION_TYPES = ('monthly_fee', 'setup_fee', 'prorated_fee', 'refund')
    # Refunds and prorated fees are never debited automatically
    AUTO_PROCESSED_TYPES = ('monthly_fee', 'setup_fee')

    id = db.Column(db.Integer, primary_key=True)
    phone_number_id = db.Column(db.Integer, db.ForeignKey('phone_numbers.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    # Billing details
    billing_period_start = db.Column(db.DateTime)
    billing_period_end = db.Column(db.DateTime)
    amount = db.Column(db.Numeric(10, 4), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='USD')

    # Payment details
    status = db.Column(db.String(20), nullable=False, default='pending', index=True)
    billing_date = db.Column(db.DateTime, nullable=False, index=True)
    paid_date = db.Column(db.DateTime)
    failure_reason = db.Column(db.String(500))

    # Transaction details
    transaction_type = db.Column(db.String(20), nullable=False, index=True)
    payment_type = db.Column(db.String(10), nullable=False, default='debit')  # debit, credit
    gateway_transaction_id = db.Column(db.String(100), index=True)

    # Admin fields
    processed_by = db.Column(db.String(100))
    notes = db.Column(db.Text)

    # Reconciliation lease
    lease_owner = db.Column(db.String(64))
    lease_expires_at = db.Column(db.DateTime)
    # Gateway transaction of a debit whose ledger write failed; blocks reselection
    anomaly_transaction_id = db.Column(db.String(100), index=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    phone_number = db.relationship('PhoneNumber', back_populates='billing_records')
    user = db.relationship('User', back_populates='billing_records')

    __table_args__ = (
        db.Index('ix_billing_status_date', 'status', 'billing_date'),
        db.Index('ix_billing_user_status', 'user_id', 'status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'phone_number_id': self.phone_number_id,
            'user_id': self.user_id,
            'amount': float(self.amount),
            'currency': self.currency,
            'status': self.status,
            'transaction_type': self.transaction_type,
            'payment_type': self.payment_type,
            'billing_date': self.billing_date.isoformat() if self.billing_date else None,
            'billing_period_start': self.billing_period_start.isoformat() if self.billing_period_start else None,
            'billing_period_end': self.billing_period_end.isoformat() if self.billing_period_end else None,
            'paid_date': self.paid_date.isoformat() if self.paid_date else None,
            'failure_reason': self.failure_reason,
            'gateway_transaction_id': self.gateway_transaction_id,
            'processed_by': self.processed_by,
            'notes': self.notes,
            'anomaly_transaction_id': self.anomaly_transaction_id,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<PhoneNumberBilling {self.id} {self.transaction_type} {self.status}>'


class CronExecution(db.Model):
    """Audit row for one scheduled billing run"""
    __tablename__ = 'cron_executions'

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.String(64), nullable=False, index=True)
    job_name = db.Column(db.String(100), nullable=False)
    trigger_type = db.Column(db.String(20), nullable=False)  # scheduled, manual, cli
    status = db.Column(db.String(20), nullable=False)  # success, partial, failed, skipped
    total_due = db.Column(db.Integer, default=0)
    processed = db.Column(db.Integer, default=0)
    failed = db.Column(db.Integer, default=0)
    skipped = db.Column(db.Integer, default=0)
    error_details = db.Column(db.JSON)
    notes = db.Column(db.String(500))
    duration_ms = db.Column(db.Integer)
    started_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'run_id': self.run_id,
            'job_name': self.job_name,
            'trigger_type': self.trigger_type,
            'status': self.status,
            'total_due': self.total_due,
            'processed': self.processed,
            'failed': self.failed,
            'skipped': self.skipped,
            'error_details': self.error_details,
            'notes': self.notes,
            'duration_ms': self.duration_ms,
            'started_at': self.started_at.isoformat() if self.started_at else None
        }
