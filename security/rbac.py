from functools import wraps
from flask import g, jsonify


def current_gate():
    return getattr(g, "console_gate", None)


def console_session_required(fn):
    """
    Usage: @console_session_required
    Rejects requests from a tab that has no authenticated admin session.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        gate = current_gate()
        if gate is None or not gate.is_authenticated:
            return jsonify(error="Admin session required"), 401
        return fn(*args, **kwargs)
    return wrapper
