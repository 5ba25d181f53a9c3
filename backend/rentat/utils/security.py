from flask_jwt_extended import get_jwt, get_jwt_identity

from rentat.utils.errors import ApiError, Unauthorized


ADMIN_ROLES = ("ADMIN", "ADMINISTRATOR")
MODERATOR_ROLES = ADMIN_ROLES + ("MODERATOR",)


def current_user_id() -> int:
	"""User id from the `sub` claim of the identity platform's token."""
	user_id = get_jwt_identity()
	try:
		return int(user_id)
	except (TypeError, ValueError):
		raise ApiError("Invalid token", 401)


def current_roles() -> list[str]:
	claims = get_jwt() or {}
	return [str(r).upper() for r in (claims.get("roles") or [])]


def is_admin() -> bool:
	return any(r in ADMIN_ROLES for r in current_roles())


def require_admin() -> None:
	if not is_admin():
		raise Unauthorized("Not authorized (admin)", rule="admin_only")


def require_moderator() -> None:
	# Dispute resolution is open to moderators as well as admins.
	if not any(r in MODERATOR_ROLES for r in current_roles()):
		raise Unauthorized("Not authorized (moderator)", rule="moderator_only")
