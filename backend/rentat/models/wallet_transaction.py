from datetime import datetime

from sqlalchemy import event, inspect

from rentat.extensions import db


class WalletTransaction(db.Model):
    """One immutable line of the wallet ledger.

    Only ``availability_status`` (and its timestamp) may change after insert.
    Balances are always derived by summing entries, never cached.
    """

    __tablename__ = "wallet_transactions"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)

    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Signed: credits positive, debits negative
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    type = db.Column(db.String(30), nullable=False)

    # PENDING | LOCKED | AVAILABLE; NULL on legacy rows, read as AVAILABLE
    availability_status = db.Column(db.String(10), nullable=True, index=True)
    status_changed_at = db.Column(db.DateTime, nullable=True)

    related_rental_id = db.Column(
        db.Integer,
        db.ForeignKey("rentals.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    related_deposit_id = db.Column(db.Integer, nullable=True)

    description = db.Column(db.String(300), nullable=True)

    # Natural key of the business event that produced the entry (exactly-once postings)
    idempotency_key = db.Column(db.String(120), nullable=True, unique=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return (
            f"<WalletTransaction id={self.id} user={self.user_id} "
            f"type={self.type} amount={self.amount} status={self.availability_status}>"
        )


IMMUTABLE_COLUMNS = ("user_id", "amount", "currency", "type", "related_rental_id", "idempotency_key")


@event.listens_for(WalletTransaction, "before_update")
def _entry_is_immutable(mapper, connection, target):
    state = inspect(target)
    for name in IMMUTABLE_COLUMNS:
        # Expired attributes carry no old value; any set counts as a change.
        if state.attrs[name].history.has_changes():
            raise ValueError(f"Ledger entries are immutable ({name}).")
