# /gottadoit/services/effect_service.py

import httpx
import logging
import tenacity
from typing import Any, Dict, Mapping, Optional

from gottadoit.config.settings import settings
from gottadoit.models.onboarding import DbAction, Effect, EffectKind
from gottadoit.utils.circuit_breaker import CircuitBreaker
from gottadoit.utils.metrics import effect_counter
from gottadoit.workflows import validator

logger = logging.getLogger(__name__)


class EffectService:
    """
    Executes the external side effects requested by onboarding actions.

    Effects are best-effort: every failure is logged, counted and swallowed so
    it can never block or alter the user's navigation state. Downloads are
    opened by the client; this service only records that they were handed over.
    """

    def __init__(
        self,
        timeout: float,
        db_proxy_url: Optional[str],
        db_operations: Mapping[str, Any],
        allow_free_text: bool
    ):
        self.http_client = httpx.AsyncClient(timeout=timeout)
        self.db_proxy_url = db_proxy_url
        self.db_operations = db_operations
        self.allow_free_text = allow_free_text
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}

    def breaker_for(self, url: str) -> CircuitBreaker:
        """One breaker per target host, so a dead endpoint only silences itself."""
        host = httpx.URL(url).host or url
        if host not in self.circuit_breakers:
            self.circuit_breakers[host] = CircuitBreaker(f"effects:{host}")
        return self.circuit_breakers[host]

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type(httpx.TransportError),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=0.5, min=0.5, max=4),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def resilient_request(self, method: str, url: str, **kwargs) -> httpx.Response:
        return await self.breaker_for(url).call(self.http_client.request, method, url, **kwargs)

    async def execute(self, effect: Effect) -> bool:
        """Run an effect. Returns True if it was delivered; never raises."""
        try:
            if effect.kind == EffectKind.DOWNLOAD:
                delivered = bool(effect.url)
                logger.info(f"Download of {effect.url} handed to client (action {effect.action_id})")
            elif effect.kind == EffectKind.HTTP:
                delivered = await self._call_api(effect)
            elif effect.kind == EffectKind.DB_PROXY:
                delivered = await self._forward_db_query(effect)
            else:
                raise TypeError(f"Unhandled effect kind: {effect.kind}")
        except Exception as e:
            logger.warning(f"Effect {effect.kind.value} for action {effect.action_id} failed: {type(e).__name__}: {e}")
            effect_counter.labels(kind=effect.kind.value, status="failed").inc()
            return False

        effect_counter.labels(kind=effect.kind.value, status="delivered" if delivered else "skipped").inc()
        return delivered

    async def _call_api(self, effect: Effect) -> bool:
        if not effect.url:
            logger.warning(f"API action {effect.action_id} has no target URL; skipping")
            return False
        response = await self.resilient_request(effect.method or "GET", effect.url, headers=effect.headers)
        if response.status_code >= 400:
            logger.warning(f"API action {effect.action_id} got HTTP {response.status_code} from {effect.url}")
            return False
        return True

    def build_db_payload(self, effect: Effect) -> Optional[Dict[str, Any]]:
        """
        Request body for the database proxy, or None if the action may not be forwarded.
        Registered operations are resolved to their stored query; free-text
        queries pass through only when explicitly allowed.
        """
        action = DbAction(
            id=effect.action_id,
            db_type=effect.db_type or "mongo",
            query=effect.query,
            operation=effect.operation,
            params=effect.params
        )
        result = validator.validate_db_action(action, self.db_operations, self.allow_free_text)
        if not result["is_valid"]:
            logger.warning(f"Not forwarding db action {effect.action_id}: {result['message']}")
            return None
        if action.operation:
            operation = self.db_operations[action.operation]
            return {
                "dbType": operation.db_type,
                "operation": action.operation,
                "query": operation.query,
                "params": action.params,
            }
        payload = {"dbType": action.db_type, "query": action.query}
        if action.params:
            payload["params"] = action.params
        return payload

    async def _forward_db_query(self, effect: Effect) -> bool:
        if not self.db_proxy_url:
            logger.warning(f"No database proxy configured; dropping db action {effect.action_id}")
            return False
        payload = self.build_db_payload(effect)
        if payload is None:
            return False
        response = await self.resilient_request("POST", self.db_proxy_url, json=payload)
        if response.status_code >= 400:
            logger.warning(f"Database proxy rejected action {effect.action_id}: HTTP {response.status_code}")
            return False
        return True

    async def cleanup(self):
        await self.http_client.aclose()


# Globally accessible instance
effect_service = EffectService(
    timeout=settings.effect_http_timeout,
    db_proxy_url=settings.db_proxy_url,
    db_operations=settings.db_proxy_operations,
    allow_free_text=settings.db_proxy_allow_free_text
)
