from flask import jsonify
from werkzeug.exceptions import HTTPException
from marshmallow import ValidationError as SchemaValidationError


class ApiError(Exception):
    """
    Base class for business errors surfaced to the caller.
    """
    code = "API_ERROR"
    default_status = 400

    def __init__(self, message, status_code=None, errors=None, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code or self.default_status
        self.errors = errors or {}
        self.payload = {"code": self.code}
        self.payload.update(payload or {})


class NotFound(ApiError):
    code = "NOT_FOUND"
    default_status = 404

    def __init__(self, resource: str, resource_id=None, message: str | None = None):
        super().__init__(
            message or f"{resource.capitalize()} not found.",
            payload={"resource": resource, "id": resource_id},
        )


class Unauthorized(ApiError):
    code = "UNAUTHORIZED"
    default_status = 403

    def __init__(self, message: str, rule: str | None = None, code: str | None = None):
        payload = {"rule": rule}
        if code:
            payload["code"] = code
        super().__init__(message, payload=payload)


class InvalidState(ApiError):
    code = "INVALID_STATE"
    default_status = 409

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        expected_status=None,
        action: str | None = None,
        **extra,
    ):
        if isinstance(expected_status, (set, frozenset, tuple)):
            expected_status = sorted(expected_status)
        payload = {
            "current_status": current_status,
            "expected_status": expected_status,
            "action": action,
        }
        payload.update(extra)
        super().__init__(message, payload=payload)


class AlreadyConfirmed(InvalidState):
    code = "ALREADY_CONFIRMED"

    def __init__(self, party: str, current_status: str | None = None):
        super().__init__(
            f"The {party} has already confirmed.",
            current_status=current_status,
            party=party,
        )


class ValidationError(ApiError):
    code = "VALIDATION_ERROR"
    default_status = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, payload={"field": field})


class DependencyFailure(ApiError):
    code = "DEPENDENCY_FAILURE"
    default_status = 503

    def __init__(self, message: str = "A dependency failed; the operation was not applied."):
        super().__init__(message, payload={"retryable": True})


def register_error_handlers(app):

    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        response = {
            "success": False,
            "message": err.message,
        }
        if err.errors:
            response["errors"] = err.errors
        if getattr(err, "payload", None):
            response["payload"] = err.payload

        return jsonify(response), err.status_code

    @app.errorhandler(SchemaValidationError)
    def handle_marshmallow_validation(err: SchemaValidationError):
        response = {
            "success": False,
            "message": "Invalid data",
            "errors": err.messages if hasattr(err, "messages") else str(err),
        }
        return jsonify(response), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        response = {
            "success": False,
            "message": err.description or "HTTP error",
        }
        return jsonify(response), err.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(err: Exception):
        app.logger.exception(err)

        response = {
            "success": False,
            "message": "Internal server error",
        }
        return jsonify(response), 500
