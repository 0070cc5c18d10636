# Overview: Maps service-layer exceptions to JSON error responses.

from flask import jsonify

from ..validation import ValidationError, NotFoundError, ConflictError, DeadlineExceededError

DOMAIN_ERRORS = (ValidationError, NotFoundError, ConflictError, DeadlineExceededError)


def error_response(e: Exception):
    """
    400 ValidationError, 404 NotFoundError, 409 ConflictError (with details),
    503 DeadlineExceededError.
    """
    if isinstance(e, NotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, ConflictError):
        body = {"error": str(e)}
        if e.details:
            body["details"] = e.details
        return jsonify(body), 409
    if isinstance(e, DeadlineExceededError):
        return jsonify({"error": str(e)}), 503
    return jsonify({"error": str(e)}), 400
