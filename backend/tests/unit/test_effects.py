# backend/tests/unit/test_effects.py
import httpx
import pytest
import tenacity
from unittest.mock import AsyncMock, MagicMock

from gottadoit.config.settings import DbOperation
from gottadoit.models.onboarding import Effect, EffectKind
from gottadoit.services.effect_service import EffectService
from gottadoit.utils.circuit_breaker import CircuitState

OPERATIONS = {"log_read": DbOperation(db_type="postgres", query="INSERT INTO reads(doc) VALUES (:doc)")}


def _service(allow_free_text=False, db_proxy_url="http://db-proxy.test/execute"):
    return EffectService(timeout=1.0, db_proxy_url=db_proxy_url, db_operations=OPERATIONS, allow_free_text=allow_free_text)


@pytest.mark.asyncio
async def test_api_effect_success(mocker):
    service = _service()
    mock_request = mocker.patch.object(
        service, "resilient_request", new_callable=AsyncMock, return_value=MagicMock(status_code=200)
    )
    effect = Effect(kind=EffectKind.HTTP, action_id="ping", url="https://hooks.test/read", method="POST",
                    headers={"X-Token": "t"})

    assert await service.execute(effect) is True
    mock_request.assert_awaited_once_with("POST", "https://hooks.test/read", headers={"X-Token": "t"})


@pytest.mark.asyncio
async def test_api_effect_failure_is_swallowed(mocker):
    service = _service()
    mocker.patch.object(
        service, "resilient_request", new_callable=AsyncMock, side_effect=httpx.ConnectError("refused")
    )
    effect = Effect(kind=EffectKind.HTTP, action_id="ping", url="https://hooks.test/read")
    assert await service.execute(effect) is False


@pytest.mark.asyncio
async def test_api_effect_http_error_status(mocker):
    service = _service()
    mocker.patch.object(service, "resilient_request", new_callable=AsyncMock, return_value=MagicMock(status_code=500))
    assert await service.execute(Effect(kind=EffectKind.HTTP, action_id="ping", url="https://hooks.test")) is False


@pytest.mark.asyncio
async def test_download_is_handed_to_client(mocker):
    service = _service()
    mock_request = mocker.patch.object(service, "resilient_request", new_callable=AsyncMock)
    effect = Effect(kind=EffectKind.DOWNLOAD, action_id="handbook", url="https://cdn.test/handbook.pdf")
    assert await service.execute(effect) is True
    mock_request.assert_not_awaited()


@pytest.mark.asyncio
async def test_db_effect_forwards_registered_operation(mocker):
    service = _service()
    mock_request = mocker.patch.object(
        service, "resilient_request", new_callable=AsyncMock, return_value=MagicMock(status_code=200)
    )
    effect = Effect(kind=EffectKind.DB_PROXY, action_id="log", db_type="mongo", operation="log_read",
                    params={"doc": "handbook"})

    assert await service.execute(effect) is True
    mock_request.assert_awaited_once_with("POST", "http://db-proxy.test/execute", json={
        "dbType": "postgres",
        "operation": "log_read",
        "query": "INSERT INTO reads(doc) VALUES (:doc)",
        "params": {"doc": "handbook"},
    })


@pytest.mark.asyncio
async def test_db_effect_free_text_blocked_by_default(mocker):
    service = _service()
    mock_request = mocker.patch.object(service, "resilient_request", new_callable=AsyncMock)
    effect = Effect(kind=EffectKind.DB_PROXY, action_id="raw", db_type="mongo", query="db.users.find()")
    assert await service.execute(effect) is False
    mock_request.assert_not_awaited()


def test_db_payload_free_text_when_allowed():
    service = _service(allow_free_text=True)
    effect = Effect(kind=EffectKind.DB_PROXY, action_id="raw", db_type="mysql", query="SELECT 1")
    assert service.build_db_payload(effect) == {"dbType": "mysql", "query": "SELECT 1"}


@pytest.mark.asyncio
async def test_db_effect_without_proxy_is_skipped(mocker):
    service = _service(db_proxy_url=None)
    mock_request = mocker.patch.object(service, "resilient_request", new_callable=AsyncMock)
    effect = Effect(kind=EffectKind.DB_PROXY, action_id="log", operation="log_read")
    assert await service.execute(effect) is False
    mock_request.assert_not_awaited()


def test_db_payload_free_text_keeps_params():
    service = _service(allow_free_text=True)
    effect = Effect(kind=EffectKind.DB_PROXY, action_id="raw", query="SELECT * FROM t WHERE id = :id", params={"id": 3})
    assert service.build_db_payload(effect)["params"] == {"id": 3}


@pytest.mark.asyncio
async def test_dead_api_host_does_not_block_db_proxy(mocker):
    service = _service(allow_free_text=True)
    mocker.patch.object(EffectService.resilient_request.retry, "wait", tenacity.wait_none())

    async def request(method, url, **kwargs):
        if httpx.URL(url).host == "dead.test":
            raise httpx.ConnectError("refused")
        return MagicMock(status_code=200)

    mock_request = mocker.patch.object(service.http_client, "request", new_callable=AsyncMock, side_effect=request)
    dead = Effect(kind=EffectKind.HTTP, action_id="ping", url="https://dead.test/hook")

    assert await service.execute(dead) is False
    assert await service.execute(dead) is False
    assert service.breaker_for("https://dead.test/other").state == CircuitState.OPEN

    log = Effect(kind=EffectKind.DB_PROXY, action_id="log", db_type="postgres", query="SELECT 1")
    assert await service.execute(log) is True
    assert service.breaker_for("http://db-proxy.test/execute").state == CircuitState.CLOSED
    mock_request.assert_awaited_with("POST", "http://db-proxy.test/execute", json={"dbType": "postgres", "query": "SELECT 1"})


def test_breakers_are_per_host():
    service = _service()
    first = service.breaker_for("https://hooks.test/read")
    assert service.breaker_for("https://hooks.test/other?x=1") is first
    assert service.breaker_for("https://api.test/read") is not first
    assert first.name == "effects:hooks.test"
