"""Auth blueprint — /auth/*

JSON session login and logout. Registration lives outside this service.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from fleamarket.extensions import limiter
from fleamarket.models.user import User

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    """Standard email + password login."""
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""
    remember = bool(data.get("remember"))

    if not email or not password:
        return jsonify({"error": "Email and password are required.", "code": "validation_error"}), 400

    user = User.query.filter_by(email=email).first()

    if user is None or not check_password_hash(user.password_hash, password):
        return jsonify({"error": "Invalid email or password.", "code": "invalid_credentials"}), 401

    if not user.is_active:
        return jsonify({"error": "Your account has been deactivated.", "code": "account_disabled"}), 403

    login_user(user, remember=remember)
    return jsonify({"id": user.id, "email": user.email, "name": user.name, "is_admin": user.is_admin})


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"status": "logged_out"})


# ──────────────────────────────────────────────
# GET /auth/csrf-token
# ──────────────────────────────────────────────

@auth_bp.route("/csrf-token")
def csrf_token():
    """Token for the X-CSRFToken header on state-changing requests."""
    return jsonify({"csrf_token": generate_csrf(), "authenticated": current_user.is_authenticated})
