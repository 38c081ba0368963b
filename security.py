"""
Security primitives shared by HTTP routes and the chat gateway.

1. Password hashing (bcrypt)
2. JWT issue / decode (one signing secret for both transports)
3. Mercado Pago x-signature validation
4. FastAPI auth dependencies
"""

import hashlib
import hmac
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database import get_db
from errors import AuthenticationError, ForbiddenError
from models import User
from schemas import WebhookValidationResult

logger = structlog.get_logger("security")
settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# PASSWORDS
# =============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB
        return False


# =============================================================================
# JWT
# =============================================================================

def issue_token(user: User, expires_in: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "userId": user.id,
        "email": user.email,
        "role": user.role,
        "iat": now,
        "exp": now + (expires_in or timedelta(hours=settings.JWT_EXPIRES_HOURS)),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: Optional[str]) -> Dict[str, Any]:
    """
    Decode and verify a bearer token.

    Raises AuthenticationError for missing, malformed, badly signed or
    expired tokens, and for tokens without a userId claim.
    """
    if not token:
        raise AuthenticationError("Token requerido")

    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expirado")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Token inválido")

    if not isinstance(claims.get("userId"), int):
        raise AuthenticationError("Token inválido")

    claims.setdefault("role", "customer")
    return claims


# =============================================================================
# MERCADO PAGO WEBHOOK SIGNATURE
# =============================================================================

def _parse_signature_header(x_signature: str) -> Dict[str, str]:
    """`ts=1704910000,v1=abc123` -> {"ts": "1704910000", "v1": "abc123"}"""
    parts = {}
    for chunk in x_signature.split(","):
        key, sep, value = chunk.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def build_manifest(data_id: str, x_request_id: str, ts: str) -> str:
    return f"id:{data_id};request-id:{x_request_id};ts:{ts};"


def sign_manifest(manifest: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()


def validate_mercadopago_webhook(
    x_signature: Optional[str],
    x_request_id: Optional[str],
    data_id: Optional[str],
    secret: Optional[str] = None,
    now: Optional[float] = None,
    max_age: Optional[int] = None,
) -> WebhookValidationResult:
    """
    Check that a webhook really comes from Mercado Pago.

    Fails closed on every problem; the caller decides what to answer the
    provider (always 200 for the webhook route).
    """
    secret = secret if secret is not None else settings.MP_WEBHOOK_SECRET
    max_age = max_age if max_age is not None else settings.WEBHOOK_MAX_AGE_SECONDS

    if not x_signature:
        return WebhookValidationResult(is_valid=False, error="Header x-signature faltante")
    if not x_request_id:
        return WebhookValidationResult(is_valid=False, error="Header x-request-id faltante")
    if not data_id:
        return WebhookValidationResult(is_valid=False, error="data.id faltante en el body")
    if not secret:
        return WebhookValidationResult(is_valid=False, error="MP_WEBHOOK_SECRET no configurado")

    parts = _parse_signature_header(x_signature)
    ts = parts.get("ts")
    received_hash = parts.get("v1")

    # Headers arrive latin-1 decoded; hex digest and epoch seconds are ASCII only
    well_formed = bool(ts) and bool(received_hash) and ts.isascii() and ts.isdigit() and received_hash.isascii()
    if not well_formed:
        return WebhookValidationResult(is_valid=False, error="Formato de x-signature inválido")

    expected_hash = sign_manifest(build_manifest(data_id, x_request_id, ts), secret)

    if not hmac.compare_digest(expected_hash, received_hash):
        return WebhookValidationResult(
            is_valid=False,
            error="Firma HMAC inválida - webhook potencialmente falso"
        )

    current = now if now is not None else time.time()
    if current - int(ts) > max_age:
        return WebhookValidationResult(
            is_valid=False,
            error="Webhook expirado (más de 5 minutos de antigüedad)"
        )

    return WebhookValidationResult(is_valid=True)


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None:
        raise AuthenticationError("Token requerido")

    claims = decode_token(credentials.credentials)

    user = await db.get(User, claims["userId"])
    if user is None:
        raise AuthenticationError("Usuario no encontrado")
    if not user.is_active:
        raise ForbiddenError("Usuario desactivado")

    return user


async def require_provider(user: User = Depends(get_current_user)) -> User:
    if user.role != "provider":
        raise ForbiddenError("Solo proveedores pueden realizar esta acción")
    return user
