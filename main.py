#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging

# ============================================================================
# MODULAR IMPORTS - Configuration and Core Dependencies
# ============================================================================
import config  # noqa: F401  (configures logging before anything else logs)

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware

# Middleware
from request_id_middleware import RequestIDMiddleware

# Rate limiting
from rate_limit import limiter, rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from lifespan import lifespan

# Routers
from user_routes import router as user_router
from event_routes import router as event_router
from activity_routes import router as activity_router, event_activities_router
from ticket_routes import router as ticket_router
from calification_routes import router as calification_router
from witness_routes import router as witness_router
from file_routes import router as file_router
from main_routes import router as main_router, audit_router

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Event Management API",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Initialize rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


# ============================================================================
# Error responses: every error is {"message": ...} with the status code
# ============================================================================
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
        message = f"Field '{field}': {first.get('msg')}"
    else:
        message = "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": message})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and return the standard error body."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error"},
    )


# ============================================================================
# Middleware Setup
# ============================================================================
app.add_middleware(RequestIDMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)


# ============================================================================
# Routes
# ============================================================================
app.include_router(user_router)
app.include_router(event_router)
app.include_router(event_activities_router)
app.include_router(activity_router)
app.include_router(ticket_router)
app.include_router(calification_router)
app.include_router(witness_router)
app.include_router(file_router)
app.include_router(main_router)
app.include_router(audit_router)


@app.get("/", name="health")
async def health():
    return {"message": "Event API running"}
