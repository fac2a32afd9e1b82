# /gottadoit/main.py

import os
import time
import uvicorn
import asyncio
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from gottadoit.config.settings import settings
from gottadoit.errors import (
    FlowNotFound, FlowVersionConflict, NodeNotFound, StoreUnavailable, ValidationRejected, VersionConflict
)
from gottadoit.utils.lifecycle import lifespan
from gottadoit.utils.metrics import response_time_histogram
from gottadoit.utils.rate_limiter import limiter
from gottadoit.routes import onboarding, public

app = FastAPI(
    title="Gotta Do It Now Onboarding",
    version="1.0.0",
    description="Onboarding flow engine: flow trees, user progress, runtime and editor",
    lifespan=lifespan,
    openapi_url=f"/api/{settings.api_version}/openapi.json" if settings.environment != "production" else None,
    docs_url=f"/api/{settings.api_version}/docs" if settings.environment != "production" else None,
    redoc_url=f"/api/{settings.api_version}/redoc" if settings.environment != "production" else None,
)

# --- Rate Limiting ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Domain errors ---
@app.exception_handler(NodeNotFound)
async def node_not_found_handler(request: Request, exc: NodeNotFound):
    return JSONResponse({"detail": str(exc), "errorCode": "NODE_NOT_FOUND", "nodeId": exc.node_id}, status_code=404)

@app.exception_handler(FlowNotFound)
async def flow_not_found_handler(request: Request, exc: FlowNotFound):
    return JSONResponse({"detail": str(exc), "errorCode": "FLOW_NOT_FOUND"}, status_code=404)

@app.exception_handler(ValidationRejected)
async def validation_rejected_handler(request: Request, exc: ValidationRejected):
    return JSONResponse({"detail": exc.message, "errorCode": exc.error_code}, status_code=422)

@app.exception_handler(VersionConflict)
async def version_conflict_handler(request: Request, exc: VersionConflict):
    return JSONResponse({"detail": str(exc), "errorCode": "VERSION_CONFLICT"}, status_code=409)

@app.exception_handler(FlowVersionConflict)
async def flow_version_conflict_handler(request: Request, exc: FlowVersionConflict):
    return JSONResponse({"detail": str(exc), "errorCode": "FLOW_VERSION_CONFLICT"}, status_code=409)

@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    return JSONResponse(
        {"detail": "Storage temporarily unavailable, please retry", "errorCode": "STORE_UNAVAILABLE"},
        status_code=503,
        headers={"Retry-After": "5"}
    )

# --- Middleware ---
cors_origins = [origin.strip() for origin in settings.cors_allowed_origins if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.environment != "test":
    allowed_hosts = [host.strip() for host in settings.allowed_hosts.split(",") if host.strip()]
    if allowed_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SlowAPIMiddleware)

@app.middleware("http")
async def performance_middleware(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response_time_histogram.labels(endpoint=request.url.path).observe(process_time)
    response.headers["X-Process-Time"] = str(process_time)
    return response

@app.middleware("http")
async def timeout_middleware(request: Request, call_next):
    try:
        return await asyncio.wait_for(call_next(request), timeout=30.0)
    except asyncio.TimeoutError:
        return JSONResponse({"detail": "Request timed out"}, status_code=504)

# --- API Routers ---
app.include_router(public.router)
app.include_router(onboarding.router, prefix=f"/api/{settings.api_version}")

# --- Main Entry Point for Uvicorn (for local development) ---
if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "127.0.0.1")

    uvicorn.run(
        "gottadoit.main:app",
        host=host,
        port=port,
        reload=True if settings.environment == "development" else False,
        workers=settings.workers if settings.environment == "production" else 1
    )
