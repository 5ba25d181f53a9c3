"""Owner commission: the tier calculator and the exactly-once posting around it."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app

from rentat.extensions import db
from rentat.models.commission_record import CommissionRecord
from rentat.models.rental import Rental
from rentat.services import ledger_service
from rentat.services import rental_state as rs
from rentat.services.collaborators import get_commission_calculator
from rentat.services.unit_of_work import run_atomic
from rentat.utils.errors import InvalidState, NotFound, ValidationError


CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CommissionTier:
    name: str
    min_rentals: int
    rate: Decimal


@dataclass(frozen=True)
class CommissionResult:
    tier: str
    commission_rate: Decimal
    subtotal: Decimal
    platform_fee: Decimal
    net_earnings: Decimal
    minimum_fee_applied: bool = False
    maximum_fee_applied: bool = False

    def to_dict(self) -> dict:
        return {
            "tier": self.tier,
            "commission_rate": float(self.commission_rate),
            "subtotal": float(self.subtotal),
            "platform_fee": float(self.platform_fee),
            "net_earnings": float(self.net_earnings),
            "minimum_fee_applied": self.minimum_fee_applied,
            "maximum_fee_applied": self.maximum_fee_applied,
        }


class CommissionCalculator:
    """Deterministic, side-effect-free commission math.

    Built once from configuration by ``create_app`` and injected; tests may
    build their own with different tiers.
    """

    def __init__(self, tiers, minimum_fee=None, maximum_fee=None, category_rates=None):
        parsed = [
            t if isinstance(t, CommissionTier)
            else CommissionTier(str(t["tier"]), int(t["min_rentals"]), Decimal(str(t["rate"])))
            for t in tiers
        ]
        if not parsed:
            raise ValueError("At least one commission tier is required.")
        self.tiers = sorted(parsed, key=lambda t: t.min_rentals)
        if self.tiers[0].min_rentals != 0:
            raise ValueError("The lowest commission tier must start at 0 rentals.")
        self.minimum_fee = _money(minimum_fee) if minimum_fee not in (None, "") else None
        self.maximum_fee = _money(maximum_fee) if maximum_fee not in (None, "") else None
        self.category_rates = {
            str(k).lower(): Decimal(str(v)) for k, v in (category_rates or {}).items()
        }

    @classmethod
    def from_config(cls, config) -> "CommissionCalculator":
        return cls(
            tiers=config["COMMISSION_TIERS"],
            minimum_fee=config.get("COMMISSION_MINIMUM_FEE"),
            maximum_fee=config.get("COMMISSION_MAXIMUM_FEE"),
            category_rates=config.get("COMMISSION_CATEGORY_RATES"),
        )

    def tier_for(self, completed_rentals: int) -> CommissionTier:
        current = self.tiers[0]
        for tier in self.tiers:
            if completed_rentals >= tier.min_rentals:
                current = tier
        return current

    def rate_for(self, completed_rentals: int, category: str | None = None) -> Decimal:
        rate = self.tier_for(completed_rentals).rate
        category_rate = self.category_rates.get((category or "").lower())
        if category_rate is not None:
            rate = min(rate, category_rate)
        return rate

    def calculate(self, subtotal, completed_rentals: int, category: str | None = None) -> CommissionResult:
        amount = _money(subtotal)
        if amount < 0:
            raise ValidationError("Subtotal cannot be negative.", field="subtotal")

        tier = self.tier_for(completed_rentals)
        rate = self.rate_for(completed_rentals, category)
        fee = _money(amount * rate)

        minimum_applied = False
        maximum_applied = False
        if self.minimum_fee is not None and fee < self.minimum_fee:
            fee = self.minimum_fee
            minimum_applied = True
        if self.maximum_fee is not None and fee > self.maximum_fee:
            fee = self.maximum_fee
            maximum_applied = True
        # Owner never ends up owing the platform.
        fee = min(fee, amount)

        return CommissionResult(
            tier=tier.name,
            commission_rate=rate,
            subtotal=amount,
            platform_fee=fee,
            net_earnings=amount - fee,
            minimum_fee_applied=minimum_applied,
            maximum_fee_applied=maximum_applied,
        )

    def preview(self, daily_rate, days: int, completed_rentals: int, category: str | None = None) -> dict:
        if int(days) <= 0:
            raise ValidationError("days must be positive.", field="days")
        subtotal = _money(daily_rate) * int(days)
        result = self.calculate(subtotal, completed_rentals, category)

        next_tier_benefit = None
        current = self.tier_for(completed_rentals)
        idx = self.tiers.index(current)
        if idx + 1 < len(self.tiers):
            nxt = self.tiers[idx + 1]
            nxt_fee = self.calculate(subtotal, nxt.min_rentals, category).platform_fee
            next_tier_benefit = {
                "next_tier": nxt.name,
                "rentals_needed": max(0, nxt.min_rentals - completed_rentals),
                "potential_savings": float(max(Decimal("0"), result.platform_fee - nxt_fee)),
            }

        return {**result.to_dict(), "next_tier_benefit": next_tier_benefit}


def owner_completed_count(owner_id: int, exclude_rental_id: int | None = None) -> int:
    q = Rental.query.filter(Rental.owner_id == owner_id, Rental.status == rs.COMPLETED)
    if exclude_rental_id is not None:
        q = q.filter(Rental.id != exclude_rental_id)
    return q.count()


def _process(uow, rental_id: int) -> dict:
    rental = db.session.get(Rental, rental_id, with_for_update=True)
    if rental is None:
        raise NotFound("rental", rental_id)

    existing = CommissionRecord.query.filter_by(rental_id=rental_id).first()
    if existing is not None:
        return {"applied": False, "commission": record_to_dict(existing)}

    rs.require_status(rental, rs.COMPLETED, "process_commission")

    calculator = get_commission_calculator()
    result = calculator.calculate(
        rental.subtotal,
        owner_completed_count(rental.owner_id, exclude_rental_id=rental.id),
        rental.item.category if rental.item else None,
    )

    settled_by_dispute = rental.dispute is not None
    record = CommissionRecord(
        rental_id=rental.id,
        owner_id=rental.owner_id,
        tier=result.tier,
        commission_rate=result.commission_rate,
        subtotal=result.subtotal,
        platform_fee=result.platform_fee,
        net_earnings=result.net_earnings,
        minimum_fee_applied=result.minimum_fee_applied,
        maximum_fee_applied=result.maximum_fee_applied,
        settled_by_dispute=settled_by_dispute,
        created_at=uow.now,
    )

    if not settled_by_dispute and result.net_earnings > 0:
        entry = ledger_service.append(
            rental.owner_id,
            result.net_earnings,
            "rental_income",
            currency=rental.currency,
            availability_status=ledger_service.PENDING,
            related_rental_id=rental.id,
            description=f"Earnings for rental #{rental.id} ({result.tier})",
            idempotency_key=f"rental_income:{rental.id}",
        )
        record.ledger_entry_id = entry.id
        rental.payout_status = "processing"

    db.session.add(record)

    current_app.logger.info(
        "[commission] rental=%s owner=%s tier=%s fee=%s net=%s dispute=%s",
        rental.id,
        rental.owner_id,
        result.tier,
        result.platform_fee,
        result.net_earnings,
        settled_by_dispute,
    )
    return {"applied": True, "commission": record_to_dict(record)}


def process_commission(rental_id: int) -> dict:
    """Compute and post the commission of a completed rental once.

    A second call for the same rental returns the stored record with
    ``applied`` false.
    """
    return run_atomic(_process, rental_id)


def try_process_commission(rental_id: int) -> None:
    """Post-completion hook: never lets a commission failure reach the caller."""
    try:
        process_commission(rental_id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "[commission] deferred rental=%s; left for the pending sweep", rental_id
        )


def process_pending_commissions(limit: int = 100) -> dict:
    pending = (
        db.session.query(Rental.id)
        .outerjoin(CommissionRecord, CommissionRecord.rental_id == Rental.id)
        .filter(Rental.status == rs.COMPLETED, CommissionRecord.id.is_(None))
        .order_by(Rental.id)
        .limit(max(1, min(int(limit), 500)))
        .all()
    )

    processed, failed = [], []
    for (rental_id,) in pending:
        try:
            process_commission(rental_id)
            processed.append(rental_id)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("[commission] sweep failed rental=%s", rental_id)
            failed.append(rental_id)

    current_app.logger.info("[commission] sweep processed=%s failed=%s", len(processed), len(failed))
    return {"processed": processed, "failed": failed}


def _release(uow, rental_id: int) -> dict:
    rental = db.session.get(Rental, rental_id, with_for_update=True)
    if rental is None:
        raise NotFound("rental", rental_id)
    rs.require_status(rental, rs.COMPLETED, "release_earnings")
    if rental.dispute is not None and rental.dispute.status == "open":
        raise InvalidState(
            "Earnings cannot be released while a dispute is open.",
            current_status=rental.status,
            action="release_earnings",
        )

    moved = ledger_service.transition_rental_entries(
        rental.id, ledger_service.PENDING, ledger_service.AVAILABLE, user_id=rental.owner_id
    )
    amount = sum((Decimal(str(e.amount)) for e in moved), Decimal("0.00"))
    rental.payout_status = "completed"

    if moved:
        uow.notify(
            rental.owner_id,
            "earnings_available",
            {"rental_id": rental.id, "amount": float(amount)},
        )
    current_app.logger.info(
        "[commission] earnings released rental=%s owner=%s entries=%s amount=%s",
        rental.id,
        rental.owner_id,
        len(moved),
        amount,
    )
    return {"rental_id": rental.id, "released_entries": len(moved), "amount": float(amount)}


def release_owner_earnings(rental_id: int) -> dict:
    return run_atomic(_release, rental_id)


def record_to_dict(record: CommissionRecord) -> dict:
    return {
        "rental_id": record.rental_id,
        "owner_id": record.owner_id,
        "tier": record.tier,
        "commission_rate": float(record.commission_rate),
        "subtotal": float(record.subtotal),
        "platform_fee": float(record.platform_fee),
        "net_earnings": float(record.net_earnings),
        "minimum_fee_applied": bool(record.minimum_fee_applied),
        "maximum_fee_applied": bool(record.maximum_fee_applied),
        "settled_by_dispute": bool(record.settled_by_dispute),
        "ledger_entry_id": record.ledger_entry_id,
    }
