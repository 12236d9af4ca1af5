# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/retailops/routes/auth.py
"""
Authentication API routes

- Customers may self-register; staff, managers and suppliers are created via the CLI
- Session management with bearer tokens
"""

from flask import Blueprint, request, g

from ..models.auth import ROLE_CUSTOMER
from ..services import auth_service
from ..services import session_service
from ..decorators import json_errors, require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
@json_errors
def register_route():
    """Customer self-registration."""
    data = request.get_json(silent=True) or {}

    user = auth_service.create_user(
        username=data.get("username"),
        email=data.get("email"),
        password=data.get("password") or "",
        role=ROLE_CUSTOMER,
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
    )
    return {"user": user.to_dict()}, 201


@auth_bp.post("/login")
@json_errors
def login_route():
    """
    Authenticate and create a session token.

    The token must be sent as `Authorization: Bearer <token>` on protected routes.
    """
    data = request.get_json(silent=True) or {}
    identifier = data.get("username") or data.get("email") or data.get("identifier")
    password = data.get("password")

    if not all([identifier, password]):
        return {"error": "username/email and password required"}, 400

    user = auth_service.authenticate(identifier, password)
    if not user:
        return {"error": "Invalid credentials"}, 401

    session, token = session_service.create_session(user.id)
    return {
        "user": user.to_dict(),
        "token": token,
        "expires_at": session.expires_at.isoformat() + "Z",
    }, 200


@auth_bp.post("/logout")
@require_auth
@json_errors
def logout_route():
    session_service.revoke_session(g.auth_token)
    return {"message": "Logged out"}, 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return {"user": g.current_user.to_dict()}, 200
