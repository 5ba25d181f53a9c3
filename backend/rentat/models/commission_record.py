from datetime import datetime

from rentat.extensions import db


class CommissionRecord(db.Model):
    __tablename__ = "commission_records"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)

    # Idempotency key of commission processing
    rental_id = db.Column(
        db.Integer,
        db.ForeignKey("rentals.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    owner_id = db.Column(db.Integer, nullable=False, index=True)

    tier = db.Column(db.String(20), nullable=False)
    commission_rate = db.Column(db.Numeric(5, 4), nullable=False)
    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    platform_fee = db.Column(db.Numeric(10, 2), nullable=False)
    net_earnings = db.Column(db.Numeric(10, 2), nullable=False)
    minimum_fee_applied = db.Column(db.Boolean, nullable=False, default=False)
    maximum_fee_applied = db.Column(db.Boolean, nullable=False, default=False)

    # True when a dispute resolution already decided the owner's payout
    settled_by_dispute = db.Column(db.Boolean, nullable=False, default=False)
    ledger_entry_id = db.Column(
        db.Integer,
        db.ForeignKey("wallet_transactions.id", ondelete="RESTRICT"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<CommissionRecord rental={self.rental_id} tier={self.tier} fee={self.platform_fee}>"
