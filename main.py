"""
ServiciosHogar API

HTTP (FastAPI) and Socket.IO chat served from one ASGI app.
Run: uvicorn main:asgi_app
"""

import uuid
from contextlib import asynccontextmanager

import redis.asyncio as redis
import sentry_sdk
import socketio
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_limiter import FastAPILimiter
from prometheus_client import make_asgi_app

from config import get_settings
from database import init_db
from errors import ServiceError, http_status_for
from logger_config import bind_context, configure_logger
from routers import auth, conversations, credits, payments, webhook
from services.chat_gateway import ChatGateway
from services.mercadopago import MercadoPagoClient

settings = get_settings()
logger = structlog.get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logger()

    if settings.SENTRY_DSN:
        sentry_sdk.init(dsn=settings.SENTRY_DSN, environment=settings.APP_ENV)

    app.state.redis = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    await FastAPILimiter.init(app.state.redis)

    app.state.mercadopago = MercadoPagoClient()

    if settings.DB_AUTO_CREATE:
        await init_db()

    logger.info("🚀 API started", env=settings.APP_ENV, port=settings.PORT)
    yield

    await app.state.mercadopago.close()
    await app.state.redis.close()
    logger.info("API stopped")


app = FastAPI(title="ServiciosHogar API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    bind_context(
        request_id=request.headers.get("x-request-id") or uuid.uuid4().hex[:12],
        path=request.url.path,
    )
    return await call_next(request)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=http_status_for(exc), content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Datos inválidos") if errors else "Datos inválidos"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", path=request.url.path, error=str(exc), exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Error interno del servidor"})


@app.get("/health")
async def health():
    return {"status": "ok"}


app.mount("/metrics", make_asgi_app())

app.include_router(auth.router)
app.include_router(conversations.router)
app.include_router(conversations.messages_router)
app.include_router(credits.router)
app.include_router(payments.router)
app.include_router(webhook.router)


# Socket.IO shares the HTTP port; Redis fan-out when running several workers
sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.cors_origins,
    client_manager=socketio.AsyncRedisManager(settings.REDIS_URL) if settings.SOCKETIO_USE_REDIS else None,
)
gateway = ChatGateway(sio)

asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:asgi_app", host="0.0.0.0", port=settings.PORT)
