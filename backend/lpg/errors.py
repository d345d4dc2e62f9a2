# Overview: Typed error taxonomy and the single HTTP error translation point.

"""
API error taxonomy.

Services raise these; routes never build error responses by hand.
register_error_handlers() maps each kind to its HTTP status and the
standard envelope:

    {"success": false, "error": "<kind>", "message": "...", "details": {...}}
"""

from __future__ import annotations

import traceback

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """Base class for errors that are safe to show to API clients."""
    status_code = 500
    kind = "Internal"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {
            "success": False,
            "error": self.kind,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(ApiError):
    """Malformed or missing input, or a business rule rejecting the input."""
    status_code = 400
    kind = "ValidationFailed"


class Unauthorized(ApiError):
    status_code = 401
    kind = "Unauthorized"


class Forbidden(ApiError):
    status_code = 403
    kind = "Forbidden"


class NotFound(ApiError):
    """Referenced entity is absent or not owned by the caller's tenant."""
    status_code = 404
    kind = "NotFound"


class InsufficientInventory(ApiError):
    """Stock or cylinder shortfall. Carries requested vs available counts."""
    status_code = 409
    kind = "InsufficientInventory"

    def __init__(self, message: str, *, product_id: int, product_name: str | None,
                 requested: int, available: int):
        super().__init__(message, details={
            "product_id": product_id,
            "product_name": product_name,
            "requested": requested,
            "available": available,
            "shortfall": max(requested - available, 0),
        })
        self.product_id = product_id
        self.requested = requested
        self.available = available


class Conflict(ApiError):
    """Concurrent-mutation retries exhausted, or a uniqueness clash."""
    status_code = 409
    kind = "Conflict"


class Internal(ApiError):
    status_code = 500
    kind = "Internal"


class RetryableConflict(Exception):
    """
    Raised inside a transaction when a conditional write lost a race.

    Never reaches the client: run_with_retry() rolls back and retries,
    converting to Conflict once attempts are exhausted.
    """


def register_error_handlers(app) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        if exc.status_code >= 500:
            current_app.logger.error("API error %s: %s", exc.kind, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        kinds = {400: "ValidationFailed", 401: "Unauthorized", 403: "Forbidden",
                 404: "NotFound", 409: "Conflict"}
        body = {
            "success": False,
            "error": kinds.get(exc.code, exc.name.replace(" ", "")),
            "message": exc.description,
        }
        return jsonify(body), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        current_app.logger.exception("Unhandled error")
        body = Internal("Internal server error").to_dict()
        if current_app.config.get("EXPOSE_ERROR_DETAILS"):
            body["details"] = {
                "exception": repr(exc),
                "stack": traceback.format_exc(),
            }
        return jsonify(body), 500
