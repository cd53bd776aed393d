from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

import httpx
import pytest

from disputesync.adapters.http_resilience import ResilientClient
from disputesync.adapters.providers import CHARGEBACKS911, CLOUDBEDS, MEWS, STRIPE, VERIFI
from disputesync.adapters.runner import GenericAdapter, parse_retry_after
from disputesync.adapters.schema import parse_token_response
from disputesync.config.http_resilience import RetryPolicy
from disputesync.domain.errors import (
    AuthError,
    CapabilityError,
    MalformedPayload,
    TransientNetworkError,
)
from disputesync.domain.model import (
    Connection,
    CredentialState,
    Entity,
    OutboundAction,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from disputesync.domain.providers import ProviderDescriptor

type Handler = Callable[[httpx.Request], httpx.Response]

NO_BACKOFF = RetryPolicy(total=2, backoff_factor=0.0, backoff_jitter=0.0)
OAUTH_SECRETS = {"client_id": "cid", "client_secret": "csecret"}


def _connection(descriptor: ProviderDescriptor, connection_id: str = "conn-1") -> Connection:
    return Connection(
        connection_id=connection_id,
        adapter_kind=descriptor.kind,
        base_url=descriptor.base_url,
        credentials=CredentialState(auth_scheme=descriptor.auth_scheme),
        rate_limit=descriptor.rate_limit,
    )


class Recorder:
    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        template = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(
            template.status_code, headers=template.headers, content=template.content
        )


def _adapter(
    descriptor: ProviderDescriptor, handler: Handler, *, retry: RetryPolicy = NO_BACKOFF
) -> GenericAdapter:
    return GenericAdapter(
        descriptor,
        retry=retry,
        client_factory=lambda config: ResilientClient(
            config, transport=httpx.MockTransport(handler)
        ),
    )


def _run(adapter: GenericAdapter, call: Callable[[], Any]) -> Any:
    async def scenario() -> Any:
        try:
            return await call()
        finally:
            await adapter.aclose()

    return asyncio.run(scenario())


# reads ----------------------------------------------------------------------------------


def test_fetch_sends_token_and_watermark() -> None:
    recorder = Recorder(
        httpx.Response(200, json={"Reservations": [{"Id": "res-1"}, "junk", {"Id": "res-2"}]})
    )
    adapter = _adapter(MEWS, recorder)
    since = datetime(2026, 2, 10, 12, 0, tzinfo=UTC)

    rows = _run(
        adapter,
        lambda: adapter.fetch(_connection(MEWS), "mews-token", Entity.RESERVATIONS, since=since),
    )

    assert rows == [{"Id": "res-1"}, {"Id": "res-2"}]
    (request,) = recorder.requests
    assert request.method == "GET"
    assert request.url.path == "/api/connector/v1/reservations/getAll"
    assert request.url.params["UpdatedUtc.StartUtc"] == "2026-02-10T12:00:00Z"
    assert request.headers["Authorization"] == "Bearer mews-token"
    assert request.headers["Accept"] == "application/json"


def test_fetch_uses_the_descriptor_auth_header() -> None:
    recorder = Recorder(httpx.Response(200, json={"cases": []}))
    adapter = _adapter(CHARGEBACKS911, recorder)

    rows = _run(adapter, lambda: adapter.fetch(_connection(CHARGEBACKS911), "k", Entity.DISPUTES))

    assert rows == []
    (request,) = recorder.requests
    assert request.headers["X-API-Key"] == "k"
    assert "Authorization" not in request.headers


def test_fetch_without_route_is_a_capability_error() -> None:
    adapter = _adapter(STRIPE, Recorder(httpx.Response(200, json={})))

    with pytest.raises(CapabilityError, match="no read route"):
        _run(adapter, lambda: adapter.fetch(_connection(STRIPE), "k", Entity.RESERVATIONS))


@pytest.mark.parametrize(
    ("response", "error", "match"),
    [
        (httpx.Response(401), AuthError, "HTTP 401"),
        (httpx.Response(403), AuthError, "HTTP 403"),
        (httpx.Response(404), CapabilityError, "HTTP 404"),
        (httpx.Response(200, content=b"<html>"), MalformedPayload, "not JSON"),
        (httpx.Response(200, json={"items": []}), MalformedPayload, "no list"),
    ],
)
def test_fetch_failures_are_classified(
    response: httpx.Response, error: type[Exception], match: str
) -> None:
    adapter = _adapter(STRIPE, Recorder(response))

    with pytest.raises(error, match=match):
        _run(adapter, lambda: adapter.fetch(_connection(STRIPE), "k", Entity.DISPUTES))


def test_fetch_retries_server_errors_in_the_transport() -> None:
    recorder = Recorder(
        httpx.Response(503),
        httpx.Response(200, json={"data": [{"id": "dp_1"}]}),
    )
    adapter = _adapter(STRIPE, recorder)

    rows = _run(adapter, lambda: adapter.fetch(_connection(STRIPE), "k", Entity.DISPUTES))

    assert rows == [{"id": "dp_1"}]
    assert len(recorder.requests) == 2


def test_fetch_reports_exhausted_retries_as_transient() -> None:
    recorder = Recorder(httpx.Response(429, headers={"Retry-After": "7"}))
    adapter = _adapter(STRIPE, recorder, retry=RetryPolicy(total=0))

    with pytest.raises(TransientNetworkError) as excinfo:
        _run(adapter, lambda: adapter.fetch(_connection(STRIPE), "k", Entity.DISPUTES))

    assert excinfo.value.status_code == 429
    assert excinfo.value.retry_after == 7.0


def test_connection_errors_are_transient() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    adapter = _adapter(STRIPE, refuse, retry=RetryPolicy(total=0))

    with pytest.raises(TransientNetworkError, match="refused"):
        _run(adapter, lambda: adapter.fetch(_connection(STRIPE), "k", Entity.DISPUTES))


def test_one_client_per_base_url() -> None:
    configs: list[str | None] = []
    recorder = Recorder(httpx.Response(200, json={"data": []}))

    def factory(config):  # noqa: ANN001, ANN202
        configs.append(config.base_url)
        return ResilientClient(config, transport=httpx.MockTransport(recorder))

    adapter = GenericAdapter(STRIPE, retry=NO_BACKOFF, client_factory=factory)
    sandbox = _connection(STRIPE, "stripe-sandbox")
    sandbox.base_url = "https://sandbox.stripe.test"

    async def scenario() -> None:
        for connection in (_connection(STRIPE), _connection(STRIPE, "stripe-2"), sandbox):
            await adapter.fetch(connection, "k", Entity.DISPUTES)
        await adapter.aclose()

    asyncio.run(scenario())

    assert configs == ["https://api.stripe.com", "https://sandbox.stripe.test"]
    assert recorder.requests[-1].url.host == "sandbox.stripe.test"


# writes ---------------------------------------------------------------------------------


def test_send_renders_path_and_nested_body() -> None:
    recorder = Recorder(httpx.Response(200, json={"id": "dp_1"}))
    adapter = _adapter(STRIPE, recorder)
    payload = {"dispute_id": "dp_1", "case_id": "case-9", "note": "Evidence under review"}

    response = _run(
        adapter,
        lambda: adapter.send(_connection(STRIPE), "sk_1", OutboundAction.PUSH_NOTE, payload),
    )

    assert response.status_code == 200
    assert response.retry_after is None
    (request,) = recorder.requests
    assert (request.method, request.url.path) == ("POST", "/v1/disputes/dp_1")
    assert request.headers["Authorization"] == "Bearer sk_1"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {
        "metadata": {"disputesync_case": "case-9", "disputesync_note": "Evidence under review"}
    }


def test_send_adds_static_fields_and_skips_blank_values() -> None:
    recorder = Recorder(httpx.Response(200))
    adapter = _adapter(MEWS, recorder)

    _run(
        adapter,
        lambda: adapter.send(
            _connection(MEWS),
            "mews-token",
            OutboundAction.PUSH_FLAG,
            {"guest_ref": "", "dispute_id": "dp_1"},
        ),
    )

    (request,) = recorder.requests
    assert request.url.path == "/api/connector/v1/customers/addClassification"
    assert json.loads(request.content) == {"Classification": "Chargeback", "Reference": "dp_1"}


def test_send_returns_failures_without_retrying_writes() -> None:
    recorder = Recorder(httpx.Response(503, headers={"Retry-After": "3"}, text="busy"))
    adapter = _adapter(STRIPE, recorder)

    response = _run(
        adapter,
        lambda: adapter.send(
            _connection(STRIPE), "sk_1", OutboundAction.PUSH_OUTCOME, {"dispute_id": "dp_1"}
        ),
    )

    assert (response.status_code, response.retry_after, response.body) == (503, 3.0, "busy")
    assert len(recorder.requests) == 1


def test_send_without_path_variable_is_a_capability_error() -> None:
    adapter = _adapter(STRIPE, Recorder(httpx.Response(200)))

    with pytest.raises(CapabilityError, match="dispute_id"):
        _run(
            adapter,
            lambda: adapter.send(_connection(STRIPE), "sk_1", OutboundAction.PUSH_NOTE, {}),
        )


def test_send_without_route_is_a_capability_error() -> None:
    adapter = _adapter(STRIPE, Recorder(httpx.Response(200)))

    with pytest.raises(CapabilityError, match="no write route"):
        _run(
            adapter,
            lambda: adapter.send(_connection(STRIPE), "sk_1", OutboundAction.PUSH_FLAG, {}),
        )


# tokens ---------------------------------------------------------------------------------


def test_refresh_posts_a_form_to_the_token_endpoint() -> None:
    recorder = Recorder(
        httpx.Response(
            200, json={"access_token": "at-1", "refresh_token": "rt-2", "expires_in": 3600}
        )
    )
    adapter = _adapter(CLOUDBEDS, recorder)

    grant = _run(
        adapter, lambda: adapter.refresh(_connection(CLOUDBEDS), OAUTH_SECRETS, "rt-1")
    )

    assert (grant.access_token, grant.refresh_token, grant.expires_in_seconds) == (
        "at-1",
        "rt-2",
        3600,
    )
    (request,) = recorder.requests
    assert str(request.url) == "https://hotels.cloudbeds.com/api/v1.1/access_token"
    assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert parse_qs(request.content.decode()) == {
        "grant_type": ["refresh_token"],
        "refresh_token": ["rt-1"],
        "client_id": ["cid"],
        "client_secret": ["csecret"],
    }


def test_client_credentials_grant_carries_the_scope() -> None:
    recorder = Recorder(httpx.Response(200, json={"accessToken": "at-1", "expiresIn": 60}))
    adapter = _adapter(VERIFI, recorder)

    grant = _run(adapter, lambda: adapter.primary_grant(_connection(VERIFI), OAUTH_SECRETS))

    assert (grant.access_token, grant.expires_in_seconds) == ("at-1", 60)
    (request,) = recorder.requests
    assert request.url.path == "/v3/oauth/token"
    sent_fields = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
    assert sent_fields["grant_type"] == "client_credentials"
    assert sent_fields["scope"] == "alerts"


@pytest.mark.parametrize(
    ("response", "error", "match"),
    [
        (httpx.Response(401), AuthError, "rejected refresh_token grant"),
        (httpx.Response(400, json={"error": "invalid_grant"}), AuthError, "HTTP 400"),
        (httpx.Response(502), TransientNetworkError, "HTTP 502"),
        (httpx.Response(200, json={"access_token": "  "}), TransientNetworkError, "malformed"),
        (httpx.Response(200, content=b"nope"), TransientNetworkError, "malformed"),
    ],
)
def test_grant_failures_are_classified(
    response: httpx.Response, error: type[Exception], match: str
) -> None:
    adapter = _adapter(CLOUDBEDS, Recorder(response))

    with pytest.raises(error, match=match):
        _run(adapter, lambda: adapter.refresh(_connection(CLOUDBEDS), OAUTH_SECRETS, "rt-1"))


def test_grant_requires_an_endpoint_and_client_secrets() -> None:
    stripe = _adapter(STRIPE, Recorder(httpx.Response(200)))
    with pytest.raises(AuthError, match="issues no tokens"):
        _run(stripe, lambda: stripe.primary_grant(_connection(STRIPE), OAUTH_SECRETS))

    cloudbeds = _adapter(CLOUDBEDS, Recorder(httpx.Response(200)))
    with pytest.raises(AuthError, match="client_id/client_secret"):
        _run(cloudbeds, lambda: cloudbeds.refresh(_connection(CLOUDBEDS), {"client_id": "c"}, "r"))


# helpers --------------------------------------------------------------------------------


def test_parse_retry_after() -> None:
    now = datetime(2026, 2, 10, 12, 0, tzinfo=UTC)

    assert parse_retry_after("5") == 5.0
    assert parse_retry_after("-3") == 0.0
    assert parse_retry_after("Tue, 10 Feb 2026 12:00:30 GMT", now=now) == 30.0
    assert parse_retry_after("Tue, 10 Feb 2026 11:00:00 GMT", now=now) == 0.0
    assert parse_retry_after("soon") is None
    assert parse_retry_after(None) is None


def test_token_response_shapes() -> None:
    snake = parse_token_response({"access_token": "a", "refresh_token": " ", "expires_in": 5})
    camel = parse_token_response({"accessToken": "a", "refreshToken": "r"})

    assert (snake.access_token, snake.refresh_token, snake.expires_in) == ("a", None, 5)
    assert (camel.access_token, camel.refresh_token, camel.expires_in) == ("a", "r", None)
    with pytest.raises(ValueError, match="access_token"):
        parse_token_response({"access_token": ""})
