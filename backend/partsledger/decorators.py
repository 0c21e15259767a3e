# Overview: Request decorators for API routes: operator attribution and error translation.

from functools import wraps
from flask import current_app, g, jsonify, request

from .errors import LedgerError
from .extensions import db

OPERATOR_HEADER = "X-Operator"
MAX_OPERATOR_LENGTH = 255


def with_operator(f):
    """
    Attach the operator name for audit attribution.

    Sets g.operator from the X-Operator header (None when absent). The
    value is an opaque label written to actor/received_by/processed_by
    columns; it is not an authentication mechanism.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        operator = (request.headers.get(OPERATOR_HEADER) or "").strip()
        if len(operator) > MAX_OPERATOR_LENGTH:
            return jsonify({
                "error": f"{OPERATOR_HEADER} exceeds max length {MAX_OPERATOR_LENGTH}",
                "code": "validation_error",
            }), 400
        g.operator = operator or None
        return f(*args, **kwargs)

    return decorated_function


def ledger_errors(action: str):
    """
    Translate service errors into JSON responses.

    - LedgerError subclasses -> their status_code and to_dict() body
    - anything else -> logged with traceback, generic 500
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except LedgerError as e:
                return jsonify(e.to_dict()), e.status_code
            except Exception:
                db.session.rollback()
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function

    return decorator
