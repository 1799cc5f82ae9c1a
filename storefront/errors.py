# storefront/errors.py
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

log = logging.getLogger("shop")


class ApiError(Exception):
    """Raised inside a handler to short-circuit with a JSON error body."""

    def __init__(self, message, status=400, **extra):
        super().__init__(message)
        self.message = message
        self.status = status
        self.extra = extra

    def to_response(self):
        body = {"error": self.message}
        body.update(self.extra)
        return jsonify(body), self.status


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def api_error(e):
        if e.status >= 500:
            log.error(f"{e.status} {e.message}")
        return e.to_response()

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def unhandled(e):
        log.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500
