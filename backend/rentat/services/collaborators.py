"""External collaborators consumed by the rental engine.

The engine only talks to these interfaces. ``create_app`` builds the default
implementations and stores them in ``app.extensions["rentat"]``; callers
(tests, other deployments) may pass their own.
"""

import uuid
from decimal import Decimal

from flask import current_app

from rentat.extensions import db
from rentat.models.user import User


class PaymentGateway:
    def create_intent(self, rental_id: int, amount: Decimal, currency: str) -> str:
        raise NotImplementedError


class SimulatedPaymentGateway(PaymentGateway):
    """Issues local intent ids; results arrive later through the payment webhook."""

    def create_intent(self, rental_id: int, amount: Decimal, currency: str) -> str:
        intent_id = f"pi_{uuid.uuid4().hex[:24]}"
        current_app.logger.info(
            "[payments] simulated intent=%s rental=%s amount=%s %s",
            intent_id,
            rental_id,
            amount,
            currency,
        )
        return intent_id


class IdentityService:
    def is_verified(self, user_id: int) -> bool:
        raise NotImplementedError


class UserFlagIdentityService(IdentityService):
    """Reads the KYC flag mirrored onto the users table by the identity platform."""

    def is_verified(self, user_id: int) -> bool:
        user = db.session.get(User, user_id)
        return bool(user is not None and user.is_verified)


class Notifier:
    def notify(self, user_id: int, event_type: str, payload: dict | None = None) -> None:
        raise NotImplementedError


class DatabaseNotifier(Notifier):
    """Stores notifications; push/email delivery reads from that table."""

    def notify(self, user_id: int, event_type: str, payload: dict | None = None) -> None:
        from rentat.services import notification_service

        notification_service.create_notification(user_id, event_type, payload or {})


def _registry() -> dict:
    return current_app.extensions["rentat"]


def get_payment_gateway() -> PaymentGateway:
    return _registry()["payment_gateway"]


def get_identity() -> IdentityService:
    return _registry()["identity"]


def get_notifier() -> Notifier:
    return _registry()["notifier"]


def get_commission_calculator():
    return _registry()["commission_calculator"]
