from datetime import datetime

from rentat.extensions import db


class Dispute(db.Model):
    __tablename__ = "disputes"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)

    # A rental has at most one dispute over its lifetime
    rental_id = db.Column(
        db.Integer,
        db.ForeignKey("rentals.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    # open | resolved
    status = db.Column(db.String(20), nullable=False, default="open", index=True)
    initiated_by = db.Column(db.String(10), nullable=False)  # owner | renter
    initiator_id = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text, nullable=False)
    evidence = db.Column(db.JSON, nullable=False, default=list)  # storage URLs
    # Status the rental was in when the dispute was raised (active | completed)
    raised_from = db.Column(db.String(30), nullable=False)
    initiated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # Resolution
    decision = db.Column(db.Text, nullable=True)
    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)
    owner_compensation = db.Column(db.Numeric(10, 2), nullable=True)
    resolved_by = db.Column(db.Integer, nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)

    rental = db.relationship("Rental", back_populates="dispute")

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} rental={self.rental_id} status={self.status}>"
