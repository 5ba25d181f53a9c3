import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from sqlalchemy.pool import StaticPool
from flask_jwt_extended import create_access_token

from rentat import create_app
from rentat.config import TestConfig as BaseTestConfig
from rentat.extensions import db

# Import models so SQLAlchemy registers mappers/tables
import rentat.models  # noqa: F401
from rentat.models.user import User
from rentat.models.item import Item
from rentat.models.rental import Rental
from rentat.services import dispute_service, handover_service, rental_service
from rentat.services.collaborators import Notifier


class PytestConfig(BaseTestConfig):
	SQLALCHEMY_DATABASE_URI = "sqlite://"
	SQLALCHEMY_ENGINE_OPTIONS = {
		"connect_args": {"check_same_thread": False},
		"poolclass": StaticPool,
	}
	JWT_SECRET_KEY = "test-secret"
	PAYMENT_WEBHOOK_SECRET = ""


class RecordingNotifier(Notifier):
	"""Keeps every dispatched notification in memory."""

	def __init__(self):
		self.sent = []

	def notify(self, user_id, event_type, payload=None):
		self.sent.append((user_id, event_type, dict(payload or {})))

	def events_for(self, user_id):
		return [event for uid, event, _ in self.sent if uid == user_id]


@pytest.fixture(scope="session")
def app():
	app = create_app(PytestConfig)
	with app.app_context():
		db.create_all()
		yield app
		db.session.remove()
		db.drop_all()


@pytest.fixture()
def client(app):
	return app.test_client()


@pytest.fixture()
def db_session(app):
	with app.app_context():
		yield db.session
		db.session.rollback()


@pytest.fixture()
def notifier(app, monkeypatch):
	recorder = RecordingNotifier()
	monkeypatch.setitem(app.extensions["rentat"], "notifier", recorder)
	return recorder


@pytest.fixture()
def make_user(db_session):
	def _make_user(email: str | None = None, verified: bool = True, name: str = "Test User"):
		u = User(
			display_name=name,
			email=email or f"user_{uuid.uuid4().hex[:10]}@test.com",
			phone="01000000000",
			is_verified=verified,
			verified_at=datetime.utcnow() if verified else None,
			account_status="active",
		)
		db_session.add(u)
		db_session.commit()
		return u

	return _make_user


@pytest.fixture()
def make_item(db_session):
	def _make_item(
		owner_id: int,
		daily_rate=100,
		security_deposit=50,
		weekly_rate=None,
		monthly_rate=None,
		delivery_fee=0,
		category: str = "other",
	):
		item = Item(
			owner_id=owner_id,
			title="Camera",
			category=category,
			daily_rate=daily_rate,
			weekly_rate=weekly_rate,
			monthly_rate=monthly_rate,
			security_deposit=security_deposit,
			delivery_fee=delivery_fee,
			currency="EGP",
			is_available=True,
		)
		db_session.add(item)
		db_session.commit()
		return item

	return _make_item


@pytest.fixture()
def make_token(app):
	def _make_token(user_id: int, roles: list[str] | None = None) -> str:
		roles = roles or []
		with app.app_context():
			return create_access_token(identity=str(user_id), additional_claims={"roles": roles})

	return _make_token


@pytest.fixture()
def auth_header(make_token):
	def _auth_header(user_id: int, roles: list[str] | None = None) -> dict:
		token = make_token(user_id, roles=roles)
		return {"Authorization": f"Bearer {token}"}

	return _auth_header


@pytest.fixture()
def pay_rental(db_session):
	"""Simulates the gateway reporting a successful payment of the full total."""

	def _pay_rental(rental_id: int):
		rental = db_session.get(Rental, rental_id)
		return rental_service.on_payment_result(rental_id, rental.payment_intent_id, "succeeded", rental.total)

	return _pay_rental


@pytest.fixture()
def rental_in_status(make_user, make_item, pay_rental):
	"""Drives a fresh rental through the real operations up to ``status``.

	Default pricing: 2 days at 100/day, deposit 50 -> subtotal 200,
	service fee 20, total 270.
	"""

	def _rental_in_status(status: str = "pending", deposit=50, daily_rate=100, days: int = 2, category="other"):
		owner = make_user()
		renter = make_user()
		item = make_item(owner.id, daily_rate=daily_rate, security_deposit=deposit, category=category)
		ctx = SimpleNamespace(owner_id=owner.id, renter_id=renter.id, item_id=item.id, id=None)

		start = datetime.utcnow() + timedelta(days=1)
		ctx.id = rental_service.request_rental(renter.id, item.id, start, start + timedelta(days=days))["id"]
		if status == "pending":
			return ctx
		if status == "rejected":
			rental_service.reject(ctx.id, owner.id)
			return ctx

		rental_service.approve(ctx.id, owner.id)
		if status == "approved":
			return ctx

		pay_rental(ctx.id)
		if status == "awaiting_handover":
			return ctx
		if status == "cancelled":
			rental_service.cancel(ctx.id, renter.id)
			return ctx

		handover_service.confirm_by_renter(ctx.id, renter.id)
		handover_service.confirm_by_owner(ctx.id, owner.id)
		if status == "active":
			return ctx
		if status == "disputed":
			dispute_service.raise_dispute(ctx.id, renter.id, "Item arrived damaged")
			return ctx

		rental_service.confirm_completion(ctx.id, renter.id)
		rental_service.confirm_completion(ctx.id, owner.id)
		if status == "completed":
			return ctx

		raise ValueError(f"unsupported status {status}")

	return _rental_in_status


@pytest.fixture()
def get_rental(db_session):
	def _get_rental(rental_id: int) -> Rental:
		db_session.expire_all()
		return db_session.get(Rental, rental_id)

	return _get_rental
