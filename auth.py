import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Cookie, Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, serialize_doc, to_object_id
from errors import Conflict, Forbidden, Unauthenticated
from schemas import User as UserSchema, UserIdentity

logger = logging.getLogger(__name__)

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days

SESSION_COOKIE = "auth-token"
SESSION_COOKIE_SECURE = os.getenv("ENV", "development") == "production"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # unknown or malformed hash
        return False


def create_access_token(identity: UserIdentity, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": identity.id, "email": identity.email, "role": identity.role, "exp": expire}
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def resolve_session(token: Optional[str]) -> Optional[UserIdentity]:
    """Verify a session token and return the identity it carries.

    Returns None for a missing, tampered, malformed or expired token; an
    anonymous visitor is the common case, not an error.
    """
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in ("customer", "admin"):
        return None
    return UserIdentity(id=user_id, email=payload.get("email", ""), role=role)


def require_user(identity: Optional[UserIdentity]) -> UserIdentity:
    if identity is None:
        raise Unauthenticated()
    return identity


def require_admin(identity: Optional[UserIdentity]) -> UserIdentity:
    identity = require_user(identity)
    if not identity.is_admin:
        raise Forbidden()
    return identity


def identity_for(user: dict) -> UserIdentity:
    return UserIdentity(id=str(user["_id"]), email=user["email"], role=user.get("role", "customer"))


def authenticate(db: Database, email: str, password: str) -> UserIdentity:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        logger.warning("Failed login for %s", email)
        raise Unauthenticated("Invalid credentials")
    logger.info("User %s logged in", user["_id"])
    return identity_for(user)


def register_user(db: Database, name: str, email: str, password: str, role: str = "customer") -> dict:
    email = email.lower()
    if db["user"].find_one({"email": email}):
        raise Conflict("Email already registered")
    user_model = UserSchema(name=name, email=email, password_hash=hash_password(password), role=role)
    try:
        user_id = create_document(db, "user", user_model)
    except DuplicateKeyError:
        raise Conflict("Email already registered")
    logger.info("Registered user %s", user_id)
    return db["user"].find_one({"_id": to_object_id(user_id)})


def public_user(user: dict) -> dict:
    # Never send password hash
    return serialize_doc(user)


# Dependencies

def session_token(
    auth_token: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    authorization: Optional[str] = Header(default=None),
) -> Optional[str]:
    if auth_token:
        return auth_token
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1]
    return None


def current_user(token: Optional[str] = Depends(session_token)) -> Optional[UserIdentity]:
    return resolve_session(token)


def get_current_user(identity: Optional[UserIdentity] = Depends(current_user)) -> UserIdentity:
    return require_user(identity)


def get_current_admin(identity: Optional[UserIdentity] = Depends(current_user)) -> UserIdentity:
    return require_admin(identity)


def load_user(db: Database, identity: UserIdentity) -> dict:
    user = db["user"].find_one({"_id": to_object_id(identity.id)})
    if not user:
        raise Unauthenticated("User not found")
    return user
