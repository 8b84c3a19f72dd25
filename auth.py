"""
Authentication: bcrypt password hashes in the users collection and HS256
JWT access tokens. Sign-out revokes the token id; password reset hands out a
short-lived single-use token.
"""
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import database
from logging_config import get_logger
from schemas import User

logger = get_logger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))
RESET_TOKEN_EXPIRE_MINUTES = int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", 30))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def get_db():
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


def verify_password(plain_password, hashed_password):
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None, purpose: str = "access"):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "jti": uuid.uuid4().hex, "purpose": purpose})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_token(token: str, purpose: str = "access") -> dict:
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    if payload.get("purpose", "access") != purpose:
        raise JWTError("Wrong token purpose")
    return payload


def public_user(user: dict) -> dict:
    return User.from_doc(user).to_public()


# -----------------------------
# Auth operations
# -----------------------------

def sign_up(db, email: str, password: str, name: str = "", phone: str = "") -> dict:
    email = email.strip().lower()
    if db["users"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    now = datetime.now(timezone.utc)
    doc = {
        "email": email,
        "name": name,
        "phone": phone,
        "role": "user",
        "avatarUrl": "",
        "isBlocked": False,
        "passwordHash": get_password_hash(password),
        "createdAt": now,
        "updatedAt": now,
    }
    result = db["users"].insert_one(doc)
    doc["_id"] = result.inserted_id
    logger.info("user_registered", user_id=str(result.inserted_id))
    return doc


def sign_in(db, email: str, password: str) -> str:
    user = db["users"].find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("passwordHash", "")):
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    if user.get("isBlocked"):
        raise HTTPException(status_code=403, detail="Account is blocked")
    logger.info("user_signed_in", user_id=str(user["_id"]), role=user.get("role", "user"))
    return create_access_token({"sub": str(user["_id"]), "role": user.get("role", "user")})


def sign_out(db, token: str):
    try:
        payload = decode_token(token)
    except JWTError:
        return
    db["revoked_tokens"].insert_one({
        "jti": payload.get("jti"),
        "expiresAt": datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    })
    logger.info("user_signed_out", user_id=payload.get("sub"))


def send_password_reset(db, email: str) -> Optional[str]:
    """
    Issue a reset token for the account, if there is one.

    Returns the token so the caller can hand it to a mail sender, or None
    when the email is not registered.
    """
    user = db["users"].find_one({"email": email.strip().lower()})
    if not user:
        logger.info("password_reset_unknown_email")
        return None
    token = create_access_token({"sub": str(user["_id"])},
                                timedelta(minutes=RESET_TOKEN_EXPIRE_MINUTES), purpose="reset")
    db["password_resets"].insert_one({
        "userId": str(user["_id"]),
        "jti": decode_token(token, purpose="reset")["jti"],
        "used": False,
        "createdAt": datetime.now(timezone.utc),
    })
    logger.info("password_reset_issued", user_id=str(user["_id"]))
    return token


def confirm_password_reset(db, token: str, new_password: str):
    try:
        payload = decode_token(token, purpose="reset")
    except JWTError:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    record = db["password_resets"].find_one({"jti": payload.get("jti"), "used": False})
    if not record:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    db["password_resets"].update_one({"_id": record["_id"]}, {"$set": {"used": True}})
    _set_password(db, payload["sub"], new_password)


def reauthenticate(user: dict, password: str):
    if not verify_password(password, user.get("passwordHash", "")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")


def update_password(db, user: dict, current_password: str, new_password: str):
    reauthenticate(user, current_password)
    _set_password(db, str(user["_id"]), new_password)


def update_email(db, user: dict, current_password: str, new_email: str) -> str:
    reauthenticate(user, current_password)
    new_email = new_email.strip().lower()
    if db["users"].find_one({"email": new_email, "_id": {"$ne": user["_id"]}}):
        raise HTTPException(status_code=400, detail="Email already registered")
    db["users"].update_one({"_id": user["_id"]},
                           {"$set": {"email": new_email, "updatedAt": datetime.now(timezone.utc)}})
    return new_email


def _set_password(db, user_id: str, new_password: str):
    oid = database.to_object_id(user_id)
    db["users"].update_one({"_id": oid}, {"$set": {
        "passwordHash": get_password_hash(new_password),
        "updatedAt": datetime.now(timezone.utc),
    }})
    logger.info("password_changed", user_id=user_id)


# -----------------------------
# Dependencies
# -----------------------------

def get_current_user(token: str = Depends(oauth2_scheme), db=Depends(get_db)) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    if db["revoked_tokens"].find_one({"jti": payload.get("jti")}):
        raise credentials_exception

    oid = database.to_object_id(user_id)
    user = db["users"].find_one({"_id": oid}) if oid else None
    if not user:
        raise credentials_exception
    if user.get("isBlocked"):
        raise HTTPException(status_code=403, detail="Account is blocked")
    return user


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admins only")
    return user
