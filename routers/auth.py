import structlog
from fastapi import APIRouter, Depends
from fastapi_limiter.depends import RateLimiter
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models import User
from schemas import (
    AuthResponse, LoginRequest, RegisterProviderRequest, RegisterRequest, TokenResponse, UserOut,
)
from security import get_current_user, issue_token
from services.auth_service import AuthService

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = structlog.get_logger("auth_routes")


@router.post("/register", response_model=AuthResponse)
async def register(data: RegisterRequest, db: AsyncSession = Depends(get_db)):
    user = await AuthService(db).register(data)
    return AuthResponse(message="Registro exitoso", user=UserOut.model_validate(user), token=issue_token(user))


@router.post("/register-provider", response_model=AuthResponse, status_code=201)
async def register_provider(data: RegisterProviderRequest, db: AsyncSession = Depends(get_db)):
    user, _ = await AuthService(db).register_provider(data)
    return AuthResponse(message="Proveedor registrado", user=UserOut.model_validate(user), token=issue_token(user))


@router.post(
    "/login",
    response_model=AuthResponse,
    dependencies=[Depends(RateLimiter(times=10, minutes=1))]
)
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await AuthService(db).authenticate(data.email, data.password)
    logger.info("Login", user_id=user.id)
    return AuthResponse(message="Inicio de sesión exitoso", user=UserOut.model_validate(user), token=issue_token(user))


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    return user


@router.post("/refresh", response_model=TokenResponse)
async def refresh(user: User = Depends(get_current_user)):
    return TokenResponse(token=issue_token(user))


@router.post("/logout")
async def logout():
    # Stateless JWT: the client drops the token
    return {"message": "Logout exitoso"}
