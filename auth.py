from __future__ import annotations
import hashlib
import hmac
import logging
import secrets
from typing import Literal, Optional
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from config import settings
from database import USERS, DocumentStore

logger = logging.getLogger("uvicorn.error")

PBKDF2_ROUNDS = 200_000


class AuthError(Exception):
    pass


class Identity(BaseModel):
    uid: str
    email: str
    display_name: str
    role: Literal["customer", "admin"] = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Credentials(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)


class Registration(Credentials):
    name: str = Field(..., min_length=1)
    phone: str = ""


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt, _, _ = stored.partition("$")
    return hmac.compare_digest(hash_password(password, salt), stored)


def identity_from_user(doc: dict) -> Identity:
    return Identity(
        uid=doc["id"],
        email=doc["email"],
        display_name=doc.get("name") or doc["email"],
        role="admin" if doc.get("role") == "admin" else "customer",
    )


class SessionRegistry:
    """Bearer tokens issued at login, mapped to the identity they stand for.

    Tokens live for the lifetime of the process.
    """

    def __init__(self):
        self._tokens: dict[str, Identity] = {}

    def issue(self, identity: Identity) -> str:
        token = secrets.token_urlsafe(32)
        self._tokens[token] = identity
        return token

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        return self._tokens.get(token)

    def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)


async def register_user(store: DocumentStore, registration: Registration) -> Identity:
    email = registration.email.strip().lower()
    if await store.find_one(USERS, {"email": email}):
        raise AuthError("An account with this email already exists")
    doc = await store.create(USERS, {
        "email": email,
        "name": registration.name.strip(),
        "phone": registration.phone.strip(),
        "password_hash": hash_password(registration.password),
        "role": "admin" if email in settings.admin_emails else "customer",
    })
    logger.info(f"Registered user {email}")
    return identity_from_user(doc)


async def authenticate(store: DocumentStore, credentials: Credentials) -> Identity:
    email = credentials.email.strip().lower()
    doc = await store.find_one(USERS, {"email": email})
    if not doc or not verify_password(credentials.password, doc.get("password_hash", "")):
        raise AuthError("Invalid credentials")
    return identity_from_user(doc)


async def ensure_default_admin(store: DocumentStore) -> None:
    """Create an admin account for each configured admin email that has none.

    Only runs when ADMIN_PASSWORD is set.
    """
    if not settings.ADMIN_PASSWORD:
        return
    for email in sorted(settings.admin_emails):
        if await store.find_one(USERS, {"email": email}):
            continue
        await store.create(USERS, {
            "email": email,
            "name": "Admin",
            "phone": "",
            "password_hash": hash_password(settings.ADMIN_PASSWORD),
            "role": "admin",
        })
        logger.info(f"Default admin {email} created")


# ------------------------------- Dependencies -------------------------------
bearer_scheme = HTTPBearer(auto_error=False)


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def bearer_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Optional[str]:
    return credentials.credentials if credentials else None


def current_identity(
    token: Optional[str] = Depends(bearer_token),
    sessions: SessionRegistry = Depends(get_sessions),
) -> Optional[Identity]:
    return sessions.resolve(token)


def require_user(identity: Optional[Identity] = Depends(current_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return identity


def require_admin(identity: Identity = Depends(require_user)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity
