import json
import re
import secrets

from flask import Blueprint, current_app, g, jsonify, redirect, request, url_for

from models.audit_log import AuditLog
from routes.console_pages import render_console_page
from security.csrf import attach_csrf_cookie, ensure_csrf_token, require_csrf
from security.login_gate import (
    AUTHENTICATED,
    BACKEND_ERROR,
    FORBIDDEN,
    INVALID_CREDENTIALS,
    LOCKED,
    RATE_LIMITED,
)
from security.rbac import console_session_required, current_gate
from utils.audit import log_event
from utils.geolocation import client_ip_from_headers

console_bp = Blueprint("console", __name__, url_prefix="/console")

DEFAULT_TAB = "main"
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")

_STATUS_CODES = {
    AUTHENTICATED: 200,
    INVALID_CREDENTIALS: 401,
    BACKEND_ERROR: 401,
    FORBIDDEN: 403,
    LOCKED: 429,
    RATE_LIMITED: 429,
}

_AUDIT_ACTIONS = {
    AUTHENTICATED: "CONSOLE_LOGIN_SUCCESS",
    INVALID_CREDENTIALS: "CONSOLE_LOGIN_FAIL",
    BACKEND_ERROR: "CONSOLE_LOGIN_ERROR",
    FORBIDDEN: "CONSOLE_LOGIN_FORBIDDEN",
    LOCKED: "CONSOLE_LOGIN_LOCKED",
    RATE_LIMITED: "CONSOLE_LOGIN_RATE_LIMIT",
}


def _registry():
    return current_app.extensions["admin_console"]


def _wants_json() -> bool:
    return request.is_json or request.accept_mimetypes.best == "application/json"


def _text(value) -> str:
    return value if isinstance(value, str) else ""


def _tab_id() -> str:
    tab = request.headers.get("X-Console-Tab") or request.args.get("tab") or DEFAULT_TAB
    return tab if _TOKEN_RE.match(tab) else DEFAULT_TAB


@console_bp.before_request
def _load_gate():
    cookie_name = current_app.config.get("CONSOLE_PROFILE_COOKIE", "console_profile")
    profile = request.cookies.get(cookie_name)
    g.new_profile = None
    if not profile or not _TOKEN_RE.match(profile):
        profile = secrets.token_urlsafe(16)
        g.new_profile = profile

    g.console_profile = profile
    g.console_tab = _tab_id()
    if g.new_profile and request.method in ("GET", "HEAD"):
        # nothing is stored for a profile we just minted
        g.console_gate = _registry().transient_gate()
    else:
        g.console_gate = _registry().gate_for(profile, g.console_tab)


@console_bp.after_request
def _issue_profile_cookie(resp):
    if getattr(g, "new_profile", None):
        resp.set_cookie(
            current_app.config.get("CONSOLE_PROFILE_COOKIE", "console_profile"),
            g.new_profile,
            httponly=True,
            secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
            samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
            max_age=current_app.config.get("CONSOLE_PROFILE_MAX_AGE_SECONDS", 365 * 24 * 60 * 60),
            path="/",
        )
    return resp


def _page(status_code=200):
    token = ensure_csrf_token()
    resp = current_app.make_response(
        (render_console_page(current_gate().snapshot(), g.console_tab, token), status_code)
    )
    return attach_csrf_cookie(resp, token)


@console_bp.get("")
def index():
    return _page()


@console_bp.get("/status")
def status():
    return jsonify(current_gate().snapshot()), 200


@console_bp.post("/login")
def login():
    data = request.get_json(silent=True)
    if data is None:
        data = request.form
    elif not isinstance(data, dict):
        return jsonify(error="Expected a JSON object"), 400
    username = _text(data.get("username")) or _text(data.get("email"))
    username = username.strip()
    password = _text(data.get("password"))

    gate = current_gate()
    # private and loopback addresses fall back to provider-side detection
    client_ip = client_ip_from_headers(request.headers, request.remote_addr)
    outcome = gate.submit(username, password, client_ip=client_ip)

    session = outcome.session
    log_event(
        _AUDIT_ACTIONS[outcome.status],
        user_id=outcome.user_id,
        email=username.lower() or None,
        session_id=session.session_id if session else None,
        metadata={
            "tab": g.console_tab,
            "failed_attempts": gate.security.failed_attempts,
            "country": session.country if session else None,
        },
    )

    code = _STATUS_CODES[outcome.status]
    if _wants_json():
        body = {"status": outcome.status, "message": outcome.message, "state": gate.snapshot()}
        if not outcome.ok:
            body["error"] = outcome.message
        return jsonify(body), code
    return _page(code)


@console_bp.post("/logout")
def logout():
    gate = current_gate()
    if gate.is_authenticated:
        failure = require_csrf()
        if failure:
            return failure

    session_id = gate.security.session_id or None
    ended = gate.logout()
    if ended:
        log_event("CONSOLE_LOGOUT", session_id=session_id, metadata={"tab": g.console_tab})

    if _wants_json():
        return jsonify(message="Logged out", ended=ended), 200
    return redirect(url_for("console.index", tab=g.console_tab))


@console_bp.post("/activity")
@console_session_required
def activity():
    failure = require_csrf()
    if failure:
        return failure
    gate = current_gate()
    gate.on_user_activity()
    return jsonify(remaining_seconds=gate.snapshot()["remaining_seconds"]), 200


@console_bp.get("/login-history")
@console_session_required
def login_history():
    limit = request.args.get("limit", type=int) or 50
    limit = max(1, min(limit, 200))

    rows = (
        AuditLog.query
        .filter(AuditLog.action.like("CONSOLE_%"))
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify(
        items=[
            {
                "id": r.id,
                "action": r.action,
                "email": r.email,
                "session_id": r.session_id,
                "ip": r.ip,
                "timestamp": r.timestamp.isoformat(),
                "metadata": json.loads(r.metadata_json) if r.metadata_json else None,
            }
            for r in rows
        ]
    ), 200
