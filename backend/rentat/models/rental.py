from datetime import datetime

from sqlalchemy import event, inspect

from rentat.extensions import db


PRICING_COLUMNS = (
    "daily_rate",
    "total_days",
    "subtotal",
    "platform_fee",
    "security_deposit",
    "delivery_fee",
    "total",
    "currency",
)


class Rental(db.Model):
    __tablename__ = "rentals"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)

    item_id = db.Column(
        db.Integer,
        db.ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    owner_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    renter_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # pending | approved | rejected | awaiting_handover | active | completed | cancelled | disputed
    status = db.Column(db.String(30), nullable=False, default="pending", index=True)

    # Optimistic concurrency: every UPDATE is conditioned on the version that was read.
    version = db.Column(db.Integer, nullable=False)

    # Dates
    requested_start = db.Column(db.DateTime, nullable=False)
    requested_end = db.Column(db.DateTime, nullable=False)
    confirmed_start = db.Column(db.DateTime, nullable=True)
    confirmed_end = db.Column(db.DateTime, nullable=True)
    actual_start = db.Column(db.DateTime, nullable=True)
    actual_end = db.Column(db.DateTime, nullable=True)

    # Pricing snapshot, written once at request time
    daily_rate = db.Column(db.Numeric(10, 2), nullable=False)
    total_days = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    platform_fee = db.Column(db.Numeric(10, 2), nullable=False)
    security_deposit = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    delivery_fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    delivery_method = db.Column(db.String(30), nullable=True)  # pickup | delivery | meet-in-middle
    request_message = db.Column(db.Text, nullable=True)

    # Payment: pending | succeeded | failed | refunded
    payment_intent_id = db.Column(db.String(120), nullable=True, index=True)
    payment_status = db.Column(db.String(20), nullable=True)
    # held | released | claimed
    deposit_status = db.Column(db.String(20), nullable=True)
    # pending | processing | completed
    payout_status = db.Column(db.String(20), nullable=True)
    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)

    # Handover (dual confirmation + operator override)
    owner_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    owner_confirmed_at = db.Column(db.DateTime, nullable=True)
    renter_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    renter_confirmed_at = db.Column(db.DateTime, nullable=True)
    manual_override = db.Column(db.Boolean, nullable=False, default=False)
    override_by = db.Column(db.Integer, nullable=True)
    override_reason = db.Column(db.String(300), nullable=True)
    override_at = db.Column(db.DateTime, nullable=True)

    # Completion (dual confirmation)
    owner_completed = db.Column(db.Boolean, nullable=False, default=False)
    owner_completed_at = db.Column(db.DateTime, nullable=True)
    renter_completed = db.Column(db.Boolean, nullable=False, default=False)
    renter_completed_at = db.Column(db.DateTime, nullable=True)

    # Cancellation
    cancelled_by = db.Column(db.String(20), nullable=True)  # owner | renter | admin
    cancellation_reason = db.Column(db.String(300), nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    __mapper_args__ = {"version_id_col": version}

    item = db.relationship("Item", lazy="joined")
    owner = db.relationship("User", foreign_keys=[owner_id], lazy="joined")
    renter = db.relationship("User", foreign_keys=[renter_id], lazy="joined")
    timeline = db.relationship(
        "RentalEvent",
        back_populates="rental",
        order_by="RentalEvent.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    dispute = db.relationship("Dispute", back_populates="rental", uselist=False, lazy="selectin")
    deposit = db.relationship("Deposit", back_populates="rental", uselist=False, lazy="selectin")

    @property
    def both_confirmed(self) -> bool:
        return bool(self.owner_confirmed and self.renter_confirmed)

    def party_of(self, user_id) -> str | None:
        if user_id == self.owner_id:
            return "owner"
        if user_id == self.renter_id:
            return "renter"
        return None

    def __repr__(self) -> str:
        return f"<Rental id={self.id} item={self.item_id} status={self.status}>"


class RentalEvent(db.Model):
    __tablename__ = "rental_events"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    rental_id = db.Column(
        db.Integer,
        db.ForeignKey("rentals.id", ondelete="CASCADE"),
        nullable=False,
    )
    position = db.Column(db.Integer, nullable=False)

    event = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(60), nullable=False)  # user id or "system"
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    rental = db.relationship("Rental", back_populates="timeline")

    __table_args__ = (
        db.UniqueConstraint("rental_id", "position", name="uq_rental_events_position"),
    )

    def __repr__(self) -> str:
        return f"<RentalEvent rental={self.rental_id} #{self.position} {self.event}>"


@event.listens_for(Rental, "before_update")
def _pricing_is_immutable(mapper, connection, target):
    state = inspect(target)
    for name in PRICING_COLUMNS:
        # Expired attributes carry no old value; any set counts as a change.
        if state.attrs[name].history.has_changes():
            raise ValueError(f"Rental pricing snapshot is immutable ({name}).")
