# /gottadoit/utils/rate_limiter.py

from slowapi import Limiter
from gottadoit.utils.request_utils import get_remote_address
from gottadoit.config.settings import settings

# Shared limiter instance; imported by main.py and by the routers that decorate
# write endpoints, which avoids a circular import through main.

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    enabled=settings.environment != "test"
)

EDITOR_LIMIT = f"{settings.editor_rate_limit_per_minute}/minute"
