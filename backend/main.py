import logging
import logging.config
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ------------------------------------------------------------
# 1. CONFIG & LOGGING
# ------------------------------------------------------------
from veaportal.core.config import settings

LOG_LEVEL = "INFO" if settings.ENVIRONMENT == "production" else "DEBUG"

logging_config = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["console"], "level": LOG_LEVEL},
        "uvicorn.error": {"handlers": ["console"], "level": LOG_LEVEL},
        "uvicorn.access": {"handlers": ["console"], "level": LOG_LEVEL},
        "vea": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

logging.config.dictConfig(logging_config)
logger = logging.getLogger("vea")


# ------------------------------------------------------------
# 2. FASTAPI APP
# ------------------------------------------------------------
app = FastAPI(
    title="VEA Portal Payments API",
    description="Paystack verification, fee ledger, receipts and payment notifications for the school portal.",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# ------------------------------------------------------------
# 3. CORS
# ------------------------------------------------------------
origins = [
    settings.FRONTEND_URL,
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------------------------------------------------------
# 4. ROUTERS (API ROUTES)
# ------------------------------------------------------------
from veaportal.routers import (
    payment_router,
    receipt_router,
    webhooks,
    notifications_router,
)

app.include_router(payment_router.router, prefix="/api", tags=["Payments"])
app.include_router(receipt_router.router, prefix="/api", tags=["Receipts"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(notifications_router.router, prefix="/api", tags=["Notifications"])


# ------------------------------------------------------------
# 5. SYSTEM ROUTES
# ------------------------------------------------------------
@app.get("/health", tags=["System"])
async def health_check():
    return {"status": "healthy", "storage": settings.STORAGE_BACKEND}


# ------------------------------------------------------------
# 6. GLOBAL EXCEPTION HANDLER
# ------------------------------------------------------------
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"status": False, "message": "Internal server error"},
    )


# ------------------------------------------------------------
# 7. STARTUP
# ------------------------------------------------------------
@app.on_event("startup")
async def startup_event():
    logger.info(f"🚀 VEA Portal payments started | Env: {settings.ENVIRONMENT} | Debug: {settings.DEBUG}")
    logger.info(f"💾 Storage backend: {settings.STORAGE_BACKEND}")
    logger.info(f"💸 Platform revenue share: {settings.DEVELOPER_REVENUE_SHARE_PERCENTAGE}%")


# ------------------------------------------------------------
# 8. REQUEST LOGGING MIDDLEWARE
# ------------------------------------------------------------
@app.middleware("http")
async def log_requests(request: Request, call_next):
    client = request.client.host if request.client else "-"
    logger.info(f"➡️ {client} {request.method} {request.url.path}")
    response = await call_next(request)
    logger.info(f"⬅️ {request.method} {request.url.path} → {response.status_code}")
    return response
