# /gottadoit/utils/dependencies.py

import secrets
import structlog
from fastapi import Request, HTTPException

from gottadoit.config.settings import settings

log = structlog.get_logger(__name__)

async def verify_metrics_access(request: Request):
    """Protects /metrics with X-API-KEY when an API key is configured."""
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            log.warning("Rejected metrics request with invalid API key.")
            raise HTTPException(status_code=403, detail="Invalid or missing API key")
