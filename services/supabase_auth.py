# services/supabase_auth.py
"""
Resolve the calling owner from a Supabase access token.

Every ledger call takes the owner id explicitly; this dependency is the only
place that turns a request into that id. Owners seen for the first time are
provisioned with DEFAULT_ACCOUNTING_MODE / DEFAULT_CURRENCY.
"""
import logging
import os

from dotenv import load_dotenv
from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from database import get_db
from models.enums import AccountingMode
from models.user import User

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_PROJECT_URL = os.getenv("SUPABASE_PROJECT_URL", "").rstrip("/")
SUPABASE_JWT_AUD = os.getenv("SUPABASE_JWT_AUD", "authenticated")
DEFAULT_ACCOUNTING_MODE = os.getenv("DEFAULT_ACCOUNTING_MODE", AccountingMode.aggregated.value)
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD").upper()


def _jwt_secret() -> str:
    secret = os.getenv("SUPABASE_JWT_SECRET")
    if not secret:
        raise RuntimeError("SUPABASE_JWT_SECRET is not set in environment variables")
    return secret


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return token.strip()


async def get_current_supabase_user(request: Request) -> dict:
    try:
        return jwt.decode(
            _bearer_token(request),
            _jwt_secret(),
            algorithms=["HS256"],
            audience=SUPABASE_JWT_AUD,
            issuer=f"{SUPABASE_PROJECT_URL}/auth/v1",
        )
    except JWTError as e:
        logger.info("rejected bearer token: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def _claimed_email(claims: dict):
    return claims.get("email") or (claims.get("user_metadata") or {}).get("email")


def provision_owner(db: Session, supabase_user_id: str, email: str) -> User:
    try:
        mode = AccountingMode(DEFAULT_ACCOUNTING_MODE)
    except ValueError:
        logger.warning("unknown DEFAULT_ACCOUNTING_MODE %r, using aggregated", DEFAULT_ACCOUNTING_MODE)
        mode = AccountingMode.aggregated

    owner = User(
        supabase_user_id=supabase_user_id,
        email=email,
        currency=DEFAULT_CURRENCY,
        accounting_mode=mode,
    )
    db.add(owner)
    db.commit()
    db.refresh(owner)
    logger.info("provisioned owner %s (%s)", owner.id, mode.value)
    return owner


def get_current_db_user(
    db: Session = Depends(get_db),
    claims: dict = Depends(get_current_supabase_user),
) -> User:
    subject = claims.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid auth token")

    owner = db.query(User).filter(User.supabase_user_id == str(subject)).first()
    if owner is not None:
        return owner

    email = _claimed_email(claims)
    if not email:
        raise HTTPException(
            status_code=400,
            detail="Cannot create user: email missing from Supabase token",
        )
    return provision_owner(db, str(subject), email)
