from datetime import datetime

from rentat.extensions import db


class Deposit(db.Model):
    __tablename__ = "deposits"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)

    rental_id = db.Column(
        db.Integer,
        db.ForeignKey("rentals.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True,
    )
    # Depositor (the renter)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    # held | released | partial_refund
    status = db.Column(db.String(20), nullable=False, default="held")
    partial_amount = db.Column(db.Numeric(10, 2), nullable=True)

    hold_reason = db.Column(db.String(300), nullable=True)
    release_reason = db.Column(db.String(300), nullable=True)
    settled_by = db.Column(db.String(60), nullable=True)
    settled_at = db.Column(db.DateTime, nullable=True)

    ledger_entry_id = db.Column(
        db.Integer,
        db.ForeignKey("wallet_transactions.id", ondelete="RESTRICT"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    rental = db.relationship("Rental", back_populates="deposit")

    def __repr__(self) -> str:
        return f"<Deposit id={self.id} rental={self.rental_id} status={self.status}>"
