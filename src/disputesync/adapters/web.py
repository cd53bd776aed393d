"""Inbound HTTP surface: provider webhooks are persisted before they are acknowledged."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Annotated

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from disputesync.domain.errors import InvalidSignature, MalformedPayload, UnknownConnection

if TYPE_CHECKING:
    from disputesync.domain.orchestrator import SyncOrchestrator

log = getLogger(__name__)


class WebhookAck(BaseModel):
    outcome: str
    connection_id: str
    event_id: str
    event_type: str
    sequence: int | None = None


def create_app(orchestrator: SyncOrchestrator) -> FastAPI:
    app = FastAPI(title="disputesync", description="Provider webhook intake")

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:  # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.post("/webhooks/{adapter_kind}")
    async def receive_webhook(  # pyright: ignore[reportUnusedFunction]
        adapter_kind: str,
        request: Request,
        connection: Annotated[str | None, Query()] = None,
    ) -> WebhookAck:
        raw_body = await request.body()
        headers = dict(request.headers.items())
        try:
            result = await run_in_threadpool(
                orchestrator.handle_webhook,
                adapter_kind,
                raw_body,
                headers,
                connection_id=connection,
            )
        except UnknownConnection as exc:
            raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except InvalidSignature as exc:
            log.warning("Rejected %s webhook: %s", adapter_kind, exc)
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="invalid signature") from exc
        except MalformedPayload as exc:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except SQLAlchemyError as exc:
            log.exception("Could not persist %s webhook", adapter_kind)
            raise HTTPException(
                status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage unavailable; retry later"
            ) from exc
        return WebhookAck(
            outcome=result.outcome,
            connection_id=result.connection_id,
            event_id=result.event_id,
            event_type=result.event_type,
            sequence=result.sequence,
        )

    return app
