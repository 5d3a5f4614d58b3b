"""
Main FastAPI application for the Eacon billing API.
Serves health, admin auth, payments, token balance, admin and metrics.
"""
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from eacon.api.routes import admin, auth, health, payments, users
from eacon.core.config import settings
from eacon.core.errors import (
    BillingError,
    billing_error_handler,
    request_validation_handler,
    unhandled_error_handler,
)
from eacon.core.logging import configure_logging, request_id_var
from eacon.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger("eacon.http")

app = FastAPI(
    title="Eacon Billing API",
    description="Token purchases, settlement and ledger for Eacon",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Errors
app.add_exception_handler(BillingError, billing_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_error_handler)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(payments.router)
app.include_router(users.router)
app.include_router(admin.router)
app.include_router(metrics_router)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid4().hex
    token = request_id_var.set(request_id)
    start = time.time()
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers[settings.request_id_header] = request_id
    logger.info(
        "request",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "latency_ms": int((time.time() - start) * 1000),
        },
    )
    return response
