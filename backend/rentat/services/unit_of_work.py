from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from rentat.extensions import db
from rentat.services.collaborators import get_notifier
from rentat.utils.errors import ApiError, DependencyFailure


class UnitOfWork:
    """State shared by one attempt of an atomic operation."""

    def __init__(self):
        self.session = db.session
        self.now = datetime.utcnow()
        self.outbox: list[tuple[int, str, dict]] = []

    def notify(self, user_id: int, event_type: str, payload: dict | None = None) -> None:
        self.outbox.append((user_id, event_type, dict(payload or {})))


def _dispatch(outbox: list[tuple[int, str, dict]]) -> None:
    notifier = get_notifier()
    for user_id, event_type, payload in outbox:
        try:
            notifier.notify(user_id, event_type, payload)
        except Exception:
            # Delivery is fire-and-forget; the committed transition stands.
            db.session.rollback()
            current_app.logger.exception(
                "[notifications] dispatch failed user=%s type=%s", user_id, event_type
            )


def run_atomic(operation, *args, **kwargs):
    """Run ``operation(uow, *args, **kwargs)`` as one transaction.

    Everything the operation writes is committed together or not at all.
    Optimistic version conflicts re-run the whole operation on fresh state.
    Notifications queued on the unit of work go out only after the commit.
    """

    retries = int(current_app.config.get("ATOMIC_RETRIES", 3))
    attempt = 0
    while True:
        uow = UnitOfWork()
        try:
            result = operation(uow, *args, **kwargs)
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            attempt += 1
            if attempt > retries:
                current_app.logger.warning(
                    "[uow] %s gave up after %s version conflicts", operation.__name__, attempt
                )
                raise DependencyFailure("The record was modified concurrently; retry the request.")
            current_app.logger.info("[uow] %s version conflict, retry %s", operation.__name__, attempt)
            continue
        except ApiError:
            db.session.rollback()
            raise
        except SQLAlchemyError as err:
            db.session.rollback()
            current_app.logger.exception("[uow] %s failed, rolled back", operation.__name__)
            raise DependencyFailure() from err
        except Exception:
            db.session.rollback()
            raise
        break

    _dispatch(uow.outbox)
    return result
