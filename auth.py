"""
Identity provider and request authentication.

Identities (email + bcrypt hash) live in their own collection and are the
only thing tokens vouch for. Profile data and role are read from the
users:{id} record on every request and handed to handlers as an
AuthContext.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from database import identities, kv_get
from errors import AuthenticationError, AuthorizationError, ValidationError

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 12))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


@dataclass
class Identity:
    id: str
    email: str


@dataclass
class AuthContext:
    identity: Identity
    user: Optional[dict]

    @property
    def user_id(self) -> str:
        return self.identity.id

    @property
    def is_admin(self) -> bool:
        return bool(self.user) and self.user.get("role") == "admin"

    def can_manage(self, product: dict) -> bool:
        return product.get("sellerId") == self.user_id or self.is_admin


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_identity(email: str, password: str, name: str, role: str) -> Identity:
    """Register credentials. Raises ValidationError when the email is taken."""
    email = email.lower()
    col = identities()
    if col.find_one({"email": email}):
        raise ValidationError("A user with this email address has already been registered")
    identity_id = str(uuid.uuid4())
    try:
        col.insert_one({
            "_id": identity_id,
            "email": email,
            "password_hash": get_password_hash(password),
            "user_metadata": {"name": name, "role": role},
            "created_at": datetime.now(timezone.utc),
        })
    except DuplicateKeyError:
        raise ValidationError("A user with this email address has already been registered")
    return Identity(id=identity_id, email=email)


def authenticate(email: str, password: str) -> Optional[Identity]:
    doc = identities().find_one({"email": email.lower()})
    if not doc or not verify_password(password, doc["password_hash"]):
        return None
    return Identity(id=doc["_id"], email=doc["email"])


def create_access_token(identity: Identity, expires_delta: timedelta | None = None):
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": identity.id, "email": identity.email, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")
    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError("Invalid or expired token")
    return Identity(id=user_id, email=payload.get("email", ""))


async def get_identity(token: str | None = Depends(oauth2_scheme)) -> Identity:
    if not token:
        raise AuthenticationError("No access token provided")
    return verify_token(token)


def get_auth_context(identity: Identity = Depends(get_identity)) -> AuthContext:
    return AuthContext(identity=identity, user=kv_get(f"users:{identity.id}"))


def get_current_admin(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not ctx.is_admin:
        raise AuthorizationError("Admin access required")
    return ctx
