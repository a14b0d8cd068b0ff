# shopcheckout/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Конфигурация и ядро
from shopcheckout.clients.marketplace import market_client
from shopcheckout.core.config import settings as config
from shopcheckout.core.limiter import limiter
from shopcheckout.core.logging_config import setup_logging
from shopcheckout.core.redis import redis_client
from shopcheckout.routers import checkout
from shopcheckout.services.session import session_registry

# --- Инициализация ---
logger = logging.getLogger(__name__)


# --- Обработчик критических ошибок ---
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Глобальный обработчик для всех необработанных исключений."""
    logger.critical(f"Unhandled exception for request: {request.method} {request.url}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error."},
    )


# --- Lifespan Manager (запуск и остановка приложения) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application lifespan startup...")

    yield

    logger.info("Application shutting down...")
    await session_registry.close_all()
    await market_client.aclose()
    await redis_client.aclose()
    logger.info("HTTP client and Redis connection closed.")


# --- Создание FastAPI приложения ---
app = FastAPI(
    title="Shop Checkout Service",
    description="Backend for Frontend pricing service for multi-store checkout",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Лимитер запросов ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Регистрация обработчика исключений ---
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Подключение роутеров FastAPI ---
api_router = APIRouter(prefix="/api/v1")
api_router.include_router(checkout.router, tags=["Checkout"])


@api_router.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


app.include_router(api_router)
