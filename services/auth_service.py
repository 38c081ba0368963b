"""
Auth Service - registration and credential checks.
"""

import structlog
from typing import Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from errors import AuthenticationError, ConflictError, ForbiddenError, ValidationError
from models import ServiceProvider, User
from schemas import RegisterProviderRequest, RegisterRequest
from security import hash_password, verify_password
from services.credit_service import CreditLedger

logger = structlog.get_logger("auth")
settings = get_settings()


class AuthService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str):
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()

    def _validate(self, name: str, email: str, password: str):
        if not name or len(name.strip()) < 2:
            raise ValidationError("Nombre inválido")
        if not email or "@" not in email:
            raise ValidationError("Email inválido")
        if not password or len(password) < 6:
            raise ValidationError("La contraseña debe tener al menos 6 caracteres")

    async def _create_user(self, name: str, email: str, password: str, role: str) -> User:
        email = (email or "").strip().lower()
        self._validate(name, email, password)

        if await self.get_by_email(email):
            raise ConflictError("El email ya está registrado")

        user = User(
            name=name.strip(),
            email=email,
            password_hash=hash_password(password),
            role=role,
            is_active=True,
        )
        self.db.add(user)
        await self.db.flush()
        return user

    async def register(self, data: RegisterRequest) -> User:
        user = await self._create_user(data.name, data.email, data.password, data.role)
        await self._commit()
        logger.info("User registered", user_id=user.id, role=user.role)
        return user

    async def register_provider(self, data: RegisterProviderRequest) -> Tuple[User, ServiceProvider]:
        """Provider user + profile + welcome credits in one transaction."""
        user = await self._create_user(data.name, data.email, data.password, "provider")

        profile = ServiceProvider(
            user_id=user.id,
            business_name=data.business_name,
            city=data.city,
            phone_number=data.phone,
        )
        self.db.add(profile)
        await self.db.flush()

        if settings.WELCOME_CREDITS > 0:
            await CreditLedger(self.db).add_credits(profile.id, settings.WELCOME_CREDITS, kind="bonus")

        await self._commit()
        logger.info("Provider registered", user_id=user.id, provider_id=profile.id)
        return user, profile

    async def authenticate(self, email: str, password: str) -> User:
        if not email or not password:
            raise ValidationError("Email y contraseña son obligatorios")

        user = await self.get_by_email(email.strip().lower())
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Login rejected", reason="bad_credentials")
            raise AuthenticationError("Credenciales inválidas")
        if not user.is_active:
            raise ForbiddenError("Usuario desactivado")

        return user

    async def _commit(self):
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("El email ya está registrado")
