# /gottadoit/routes/public.py

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest
from datetime import datetime

from gottadoit.config.settings import settings
from gottadoit.utils.dependencies import verify_metrics_access
from gottadoit.services.db_service import db_service

# Unauthenticated endpoints: service banner and health checks. The /metrics
# endpoint is protected by an API key when one is configured.

router = APIRouter()

@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Gotta Do It Now Onboarding",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment
    }

@router.get("/health", summary="Basic Health Check")
async def health_check():
    """Basic health check for load balancers."""
    return {"status": "healthy", "timestamp": datetime.utcnow()}

@router.get("/health/ready", summary="Readiness Probe")
async def readiness_check():
    """Readiness check; the progress store must answer a ping."""
    if not await db_service.health_check():
        raise HTTPException(status_code=503, detail="Service not ready: database unreachable")
    return {"status": "ready"}

@router.get("/metrics", tags=["Monitoring"])
async def metrics(request: Request, _: bool = Depends(verify_metrics_access)):
    """Secured Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type="text/plain")
