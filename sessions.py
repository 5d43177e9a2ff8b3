"""
Server-side sessions and the admin guard.

The client only ever holds an opaque token in an HttpOnly cookie; the
identity it maps to lives in the "session" collection.
"""

import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, Response
from passlib.hash import bcrypt
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, parse_object_id, store_errors
from schemas import Session, User

logger = logging.getLogger(__name__)


def cookie_name() -> str:
    return os.getenv("SESSION_COOKIE_NAME", "sid")


def session_ttl() -> timedelta:
    return timedelta(hours=float(os.getenv("SESSION_TTL_HOURS", "24")))


def env_flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() in ("1", "true", "yes")


# ---------- Passwords ----------
def hash_password(password: str) -> str:
    rounds = int(os.getenv("BCRYPT_ROUNDS", "10"))
    return bcrypt.using(rounds=rounds).hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.verify(password, password_hash)
    except (ValueError, TypeError):
        # malformed or missing stored hash
        return False


# ---------- Lifecycle ----------
def start_session(db, request: Request, response: Response, user: dict) -> dict:
    """Create a session for ``user`` and hand its token to the client.

    A token the client already holds is destroyed first so that a login
    never reuses an identifier issued before authentication.
    """
    previous = request.cookies.get(cookie_name())
    token = secrets.token_urlsafe(32)
    ttl = session_ttl()
    session = Session(
        token=token,
        user_id=str(user["_id"]),
        username=user["username"],
        is_admin=bool(user.get("is_admin", False)),
        expires_at=datetime.now(timezone.utc) + ttl,
    )
    with store_errors("Error creating session"):
        if previous:
            db["session"].delete_one({"token": previous})
        create_document("session", session)

    response.set_cookie(
        cookie_name(),
        token,
        max_age=int(ttl.total_seconds()),
        httponly=True,
        samesite="lax",
        secure=env_flag("SESSION_COOKIE_SECURE"),
    )
    return {"user_id": session.user_id, "username": session.username, "is_admin": session.is_admin}


def end_session(db, request: Request, response: Response):
    token = request.cookies.get(cookie_name())
    if token:
        with store_errors("Error during logout"):
            db["session"].delete_one({"token": token})
    response.delete_cookie(cookie_name())


def _expired(doc: dict) -> bool:
    expires_at = doc.get("expires_at")
    if expires_at is None:
        return True
    # pymongo hands back naive UTC datetimes
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= datetime.now(timezone.utc)


def current_session(request: Request, db=Depends(get_db)) -> Optional[dict]:
    """Resolve the request's session cookie to an identity, or None."""
    token = request.cookies.get(cookie_name())
    if not token:
        return None

    with store_errors("Error reading session"):
        doc = db["session"].find_one({"token": token})
        if not doc:
            return None
        if _expired(doc):
            db["session"].delete_one({"_id": doc["_id"]})
            return None
        user_id = parse_object_id(doc["user_id"], "User not found")
        if not db["user"].find_one({"_id": user_id}, {"_id": 1}):
            logger.info("Dropping session of deleted user %s", doc["username"])
            db["session"].delete_one({"_id": doc["_id"]})
            return None

    return {"user_id": doc["user_id"], "username": doc["username"], "is_admin": bool(doc.get("is_admin"))}


# ---------- Guards ----------
def require_login(identity: Optional[dict] = Depends(current_session)) -> dict:
    if not identity:
        raise HTTPException(status_code=401, detail="Not logged in")
    return identity


def require_admin(request: Request, identity: Optional[dict] = Depends(current_session)) -> dict:
    if not identity or not identity["is_admin"]:
        logger.warning("Forbidden admin request to %s by %s", request.url.path,
                       identity["username"] if identity else "anonymous")
        raise HTTPException(status_code=403, detail="Unauthorized")
    return identity


# ---------- Bootstrap administrator ----------
def seed_admin(db):
    """Create the administrator named by ADMIN_USERNAME/ADMIN_PASSWORD if it is missing."""
    username = os.getenv("ADMIN_USERNAME")
    password = os.getenv("ADMIN_PASSWORD")
    if not username or not password:
        logger.info("No bootstrap administrator configured")
        return

    existing = db["user"].find_one({"username": username})
    if existing:
        # an ordinary account is never promoted; its password is not the operator's
        if not existing.get("is_admin"):
            logger.error("ADMIN_USERNAME %s belongs to a regular account, not seeding an administrator", username)
        return

    admin = User(
        username=username,
        email=os.getenv("ADMIN_EMAIL") or f"{username}@admin.local",
        password_hash=hash_password(password),
        is_admin=True,
    )
    try:
        create_document("user", admin)
    except DuplicateKeyError:
        logger.exception("Could not seed administrator %s, email %s is taken", username, admin.email)
        return
    logger.info("Seeded bootstrap administrator %s", username)
