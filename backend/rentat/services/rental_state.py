"""Rental lifecycle: the single transition table and the timeline log.

Every status change goes through ``apply_transition``; anything outside
``TRANSITIONS`` is rejected with ``InvalidState``.
"""

from datetime import datetime

from rentat.models.rental import Rental, RentalEvent
from rentat.utils.errors import InvalidState


PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
AWAITING_HANDOVER = "awaiting_handover"
ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"
DISPUTED = "disputed"

STATUSES = frozenset(
    {PENDING, APPROVED, REJECTED, AWAITING_HANDOVER, ACTIVE, COMPLETED, CANCELLED, DISPUTED}
)
TERMINAL_STATUSES = frozenset({COMPLETED, REJECTED, CANCELLED})

# Statuses that block the item's calendar for new requests
OCCUPYING_STATUSES = (APPROVED, AWAITING_HANDOVER, ACTIVE)

# (from_status, action) -> to_status
TRANSITIONS = {
    (PENDING, "approve"): APPROVED,
    (PENDING, "reject"): REJECTED,
    (APPROVED, "payment_succeeded"): AWAITING_HANDOVER,
    (APPROVED, "cancel"): CANCELLED,
    (AWAITING_HANDOVER, "activate"): ACTIVE,
    (AWAITING_HANDOVER, "cancel"): CANCELLED,
    (ACTIVE, "complete"): COMPLETED,
    (ACTIVE, "raise_dispute"): DISPUTED,
    (ACTIVE, "cancel"): CANCELLED,
    # A completed rental admits exactly one post-completion dispute.
    (COMPLETED, "raise_dispute"): DISPUTED,
    (DISPUTED, "resolve_dispute"): COMPLETED,
}

# Timeline event written for each action
ACTION_EVENTS = {
    "approve": "rental_approved",
    "reject": "rental_rejected",
    "payment_succeeded": "payment_completed",
    "activate": "rental_activated",
    "cancel": "rental_cancelled",
    "complete": "rental_completed",
    "raise_dispute": "dispute_raised",
    "resolve_dispute": "dispute_resolved",
}
EVENT_ACTIONS = {event: action for action, event in ACTION_EVENTS.items()}

REQUEST_EVENT = "rental_requested"
SYSTEM_ACTOR = "system"


def allowed_from(action: str) -> frozenset:
    return frozenset(src for (src, act) in TRANSITIONS if act == action)


def next_status(current: str, action: str) -> str:
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        expected = allowed_from(action)
        raise InvalidState(
            f"Action '{action}' is not allowed from status '{current}'.",
            current_status=current,
            expected_status=expected,
            action=action,
        ) from None


def require_status(rental: Rental, expected, action: str) -> None:
    """Guard for operations that must see a given status but do not change it."""
    expected_set = {expected} if isinstance(expected, str) else set(expected)
    if rental.status not in expected_set:
        raise InvalidState(
            f"Rental must be {' or '.join(sorted(expected_set))} to {action.replace('_', ' ')}.",
            current_status=rental.status,
            expected_status=expected_set,
            action=action,
        )


def append_event(
    rental: Rental,
    event: str,
    actor,
    details: dict | None = None,
    now: datetime | None = None,
) -> RentalEvent:
    entry = RentalEvent(
        position=len(rental.timeline),
        event=event,
        actor=str(actor),
        details=details or {},
        created_at=now or datetime.utcnow(),
    )
    rental.timeline.append(entry)
    return entry


def apply_transition(
    rental: Rental,
    action: str,
    actor,
    details: dict | None = None,
    now: datetime | None = None,
) -> str:
    """Move ``rental`` along ``action`` and log it. Returns the new status."""
    target = next_status(rental.status, action)
    rental.status = target
    append_event(rental, ACTION_EVENTS[action], actor, details, now)
    return target


def replay_status(events) -> str | None:
    """Rebuild the status from a timeline (event names in order)."""
    status = None
    for event in events:
        name = getattr(event, "event", event)
        if name == REQUEST_EVENT:
            status = PENDING
            continue
        action = EVENT_ACTIONS.get(name)
        if action is None:
            continue
        status = next_status(status, action)
    return status
