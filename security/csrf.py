import secrets
from flask import request, jsonify, current_app

CSRF_COOKIE = "console_csrf"
CSRF_HEADER = "X-CSRF-Token"
CSRF_FIELD = "csrf_token"


def ensure_csrf_token() -> str:
    """
    Token for the page being rendered: reuse the cookie value when present.
    """
    return request.cookies.get(CSRF_COOKIE) or secrets.token_urlsafe(32)


def attach_csrf_cookie(resp, token: str):
    resp.set_cookie(
        CSRF_COOKIE,
        token,
        httponly=False,  # page script echoes it in the header
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    return resp


def require_csrf():
    cookie_token = request.cookies.get(CSRF_COOKIE)
    sent_token = request.headers.get(CSRF_HEADER) or request.form.get(CSRF_FIELD)
    if not cookie_token or not sent_token or not secrets.compare_digest(cookie_token, sent_token):
        return jsonify(error="CSRF validation failed"), 403
    return None
