"""Outbound dispatch of case updates to connected systems.

Tasks are planned inside the case's unit of work and executed later, one at a
time per ``(case, target connection)`` pair and strictly in creation order.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING, Any

from disputesync.domain.alerts import raise_alert
from disputesync.domain.clock import Clock, utcnow
from disputesync.domain.errors import (
    AuthError,
    CapabilityError,
    RateLimitExceeded,
    TransientNetworkError,
    UnknownCase,
)
from disputesync.domain.model import (
    AlertLevel,
    AlertScope,
    CaseStatus,
    ConnectionStatus,
    Operation,
    OutboundAction,
    OutboundTask,
    TaskStatus,
)
from disputesync.domain.providers import ACTION_ENTITIES

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from disputesync.domain.capabilities import CapabilityRegistry
    from disputesync.domain.credentials import TokenManager
    from disputesync.domain.model import Connection, DisputeCase
    from disputesync.domain.ports import SyncRepositories, SyncUnitOfWork, Writer, WriteResponse
    from disputesync.domain.rate_limit import RateLimiter
    from disputesync.domain.state_machine import CaseTransition

log = getLogger(__name__)

_AUTH_STATUSES = frozenset({401, 403})
_RETRY_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True, slots=True)
class DispatchPolicy:
    max_attempts: int = 6
    backoff_base_seconds: float = 2.0
    backoff_max_seconds: float = 600.0


def actions_for(item: CaseTransition) -> tuple[OutboundAction, ...]:
    """Which outbound actions a case transition fans out as."""

    if item.from_status is None:
        return (OutboundAction.PUSH_FLAG, OutboundAction.PUSH_ALERT)
    if item.to_status.is_terminal:
        return (OutboundAction.PUSH_OUTCOME,)
    return (OutboundAction.PUSH_NOTE,)


def case_payload(case: DisputeCase, item: CaseTransition | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "case_id": str(case.id),
        "dispute_id": case.external_dispute_id,
        "reservation_id": case.reservation_ref,
        "guest_ref": case.guest_ref,
        "guest_name": case.guest_name,
        "amount": case.amount,
        "currency": case.currency,
        "reason_code": case.reason_code,
        "due_date": case.due_date,
        "status": case.status.value,
        "confidence_score": case.confidence_score,
        "recommendation": case.recommendation.value if case.recommendation else None,
    }
    if item is not None:
        previous = item.from_status.value if item.from_status else None
        payload["previous_status"] = previous
        payload["note"] = (
            f"Chargeback {case.external_dispute_id}: {previous or 'new'} -> "
            f"{item.to_status.value} ({item.reason})"
        )
        if item.to_status.is_terminal:
            payload["outcome"] = item.to_status.value.lower()
    return payload


@dataclass(frozen=True, slots=True)
class _Result:
    status: TaskStatus
    error: str | None = None
    retry_after: float | None = None


class OutboundDispatcher:
    def __init__(
        self,
        *,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        registry: CapabilityRegistry,
        writers: Mapping[str, Writer],
        tokens: TokenManager,
        limiter: RateLimiter,
        policy: DispatchPolicy | None = None,
        clock: Clock = utcnow,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._registry = registry
        self._writers = writers
        self._tokens = tokens
        self._limiter = limiter
        self._policy = policy or DispatchPolicy()
        self._clock = clock
        self._jitter = jitter

    # planning -------------------------------------------------------------------

    def plan(
        self, repositories: SyncRepositories, case: DisputeCase, item: CaseTransition
    ) -> list[OutboundTask]:
        """Outbox hook: add fan-out tasks for ``item`` to the current unit of work."""

        exclude = (item.source_connection_id,) if item.source_connection_id else ()
        payload = case_payload(case, item)
        tasks: list[OutboundTask] = []
        for action in actions_for(item):
            tasks.extend(
                self._plan_action(repositories, case, action, payload, exclude=exclude)
            )
        return tasks

    def enqueue(
        self,
        case_id: UUID,
        action: OutboundAction,
        payload: Mapping[str, Any] | None = None,
        *,
        exclude: Iterable[str] = (),
    ) -> list[OutboundTask]:
        """Queue ``action`` for every connection that declares write support for it."""

        with self._uow_factory() as uow:
            repositories = uow.repositories
            case = repositories.cases.get(case_id)
            if case is None:
                raise UnknownCase(f"Unknown case: {case_id}")
            body = dict(payload) if payload is not None else case_payload(case)
            tasks = self._plan_action(repositories, case, action, body, exclude=tuple(exclude))
            uow.commit()
        return tasks

    def _plan_action(
        self,
        repositories: SyncRepositories,
        case: DisputeCase,
        action: OutboundAction,
        payload: dict[str, Any],
        *,
        exclude: tuple[str, ...],
    ) -> list[OutboundTask]:
        now = self._clock()
        tasks: list[OutboundTask] = []
        for connection in repositories.connections.list():
            if connection.connection_id in exclude:
                continue
            if connection.status is ConnectionStatus.DISCONNECTED:
                continue
            if not self._registry.supports_action(connection, action):
                continue
            task = OutboundTask(
                case_id=case.id,
                target_connection_id=connection.connection_id,
                action=action,
                payload=dict(payload),
                case_status_at_enqueue=case.status,
                status=(
                    TaskStatus.PAUSED
                    if connection.status is ConnectionStatus.UNAUTHENTICATED
                    else TaskStatus.QUEUED
                ),
                next_attempt_at=now,
                created_at=now,
            )
            repositories.tasks.add(task)
            tasks.append(task)
        if tasks:
            log.debug(
                "Planned %s for case %s -> %s",
                action,
                case.id,
                ", ".join(task.target_connection_id for task in tasks),
            )
        return tasks

    # execution ------------------------------------------------------------------

    def due(self, *, limit: int) -> Sequence[OutboundTask]:
        with self._uow_factory() as uow:
            return list(uow.repositories.tasks.due(now=self._clock(), limit=limit))

    async def run_task(self, task_id: UUID) -> TaskStatus | None:
        """Run one attempt and return the resulting status (None when not runnable)."""

        claimed = self._claim(task_id)
        if claimed is None:
            return None
        if isinstance(claimed, TaskStatus):
            return claimed
        task, connection = claimed

        result = await self._attempt(task, connection)
        return self._settle(task.task_id, result)

    def _claim(self, task_id: UUID) -> tuple[OutboundTask, Connection] | TaskStatus | None:
        now = self._clock()
        with self._uow_factory() as uow:
            repositories = uow.repositories
            task = repositories.tasks.get(task_id)
            if task is None or task.status not in {TaskStatus.QUEUED, TaskStatus.FAILED}:
                return None

            case = repositories.cases.get(task.case_id)
            connection = repositories.connections.get(task.target_connection_id)
            verdict: TaskStatus | None = None
            if case is None:
                task.finish(TaskStatus.CANCELLED, at=now, error="case no longer exists")
                verdict = TaskStatus.CANCELLED
            elif self._is_stale(task, case.status):
                task.finish(
                    TaskStatus.CANCELLED,
                    at=now,
                    error=f"case became {case.status} after {task.action} was queued",
                )
                verdict = TaskStatus.CANCELLED
            elif connection is None or connection.status is ConnectionStatus.DISCONNECTED:
                task.finish(TaskStatus.CANCELLED, at=now, error="target connection removed")
                verdict = TaskStatus.CANCELLED
            elif connection.status is ConnectionStatus.UNAUTHENTICATED:
                task.status = TaskStatus.PAUSED
                verdict = TaskStatus.PAUSED
            else:
                try:
                    self._registry.require_for(
                        connection, ACTION_ENTITIES[task.action], Operation.WRITE
                    )
                except CapabilityError as exc:
                    task.finish(TaskStatus.DEAD, at=now, error=str(exc))
                    self._alert_dead(repositories, task, str(exc))
                    verdict = TaskStatus.DEAD

            if verdict is None:
                task.status = TaskStatus.IN_FLIGHT
                task.attempt += 1
            uow.commit()
        if verdict is not None:
            log.info("Task %s (%s) %s before sending", task_id, task.action, verdict)
            return verdict
        assert connection is not None
        return task, connection

    @staticmethod
    def _is_stale(task: OutboundTask, current: CaseStatus) -> bool:
        if task.action is OutboundAction.PUSH_OUTCOME:
            return False
        return current.is_terminal and current is not task.case_status_at_enqueue

    async def _attempt(self, task: OutboundTask, connection: Connection) -> _Result:
        writer = self._writers.get(connection.adapter_kind)
        if writer is None:
            return _Result(TaskStatus.DEAD, f"no writer for {connection.adapter_kind}")
        try:
            await self._limiter.acquire(connection)
            token = await self._tokens.get_valid_token(connection.connection_id)
            response = await writer.send(connection, token, task.action, task.payload)
            if response.status_code in _AUTH_STATUSES:
                log.info(
                    "%s rejected token for task %s (%d); refreshing once",
                    connection.connection_id,
                    task.task_id,
                    response.status_code,
                )
                token = await self._tokens.force_refresh(
                    connection.connection_id, stale_token=token
                )
                await self._limiter.acquire(connection)
                response = await writer.send(connection, token, task.action, task.payload)
                if response.status_code in _AUTH_STATUSES:
                    error = f"HTTP {response.status_code} after token refresh"
                    self._tokens.reject(connection.connection_id, error)
                    return _Result(TaskStatus.PAUSED, error)
        except AuthError as exc:
            return _Result(TaskStatus.PAUSED, str(exc))
        except CapabilityError as exc:
            return _Result(TaskStatus.DEAD, str(exc))
        except RateLimitExceeded as exc:
            return _Result(TaskStatus.FAILED, str(exc))
        except TransientNetworkError as exc:
            return _Result(TaskStatus.FAILED, str(exc), retry_after=exc.retry_after)
        return self._classify(response)

    @staticmethod
    def _classify(response: WriteResponse) -> _Result:
        if response.ok:
            return _Result(TaskStatus.SUCCEEDED)
        error = f"HTTP {response.status_code}: {response.body[:200]}".rstrip(": ")
        if response.status_code in _RETRY_STATUSES or response.status_code >= 500:  # noqa: PLR2004
            return _Result(TaskStatus.FAILED, error, retry_after=response.retry_after)
        return _Result(TaskStatus.DEAD, error)

    def backoff(self, attempt: int, retry_after: float | None = None) -> float:
        """Capped exponential delay with jitter, never shorter than ``retry_after``."""

        policy = self._policy
        delay = min(
            policy.backoff_base_seconds * 2 ** max(attempt - 1, 0), policy.backoff_max_seconds
        )
        delay *= 0.5 + self._jitter() / 2
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay

    def _settle(self, task_id: UUID, result: _Result) -> TaskStatus:
        now = self._clock()
        with self._uow_factory() as uow:
            repositories = uow.repositories
            task = repositories.tasks.get(task_id)
            if task is None:
                return result.status
            status = result.status
            if status is TaskStatus.SUCCEEDED:
                task.finish(status, at=now)
                log.info(
                    "Task %s (%s -> %s) delivered", task_id, task.action, task.target_connection_id
                )
            elif status is TaskStatus.PAUSED:
                task.status = TaskStatus.PAUSED
                task.last_error = result.error
                log.warning("Task %s paused: %s", task_id, result.error)
            elif status is TaskStatus.FAILED and task.attempt < self._policy.max_attempts:
                delay = self.backoff(task.attempt, result.retry_after)
                task.schedule_retry(at=now + timedelta(seconds=delay), error=result.error or "")
                log.warning(
                    "Task %s attempt %d failed (%s); retrying in %.1fs",
                    task_id,
                    task.attempt,
                    result.error,
                    delay,
                )
            else:
                error = result.error or "failed"
                if status is TaskStatus.FAILED:
                    error = f"{error} (gave up after {task.attempt} attempts)"
                status = TaskStatus.DEAD
                task.finish(status, at=now, error=error)
                self._alert_dead(repositories, task, error)
            uow.commit()
            return task.status

    @staticmethod
    def _alert_dead(repositories: SyncRepositories, task: OutboundTask, error: str) -> None:
        raise_alert(
            repositories,
            AlertScope.TASK,
            str(task.task_id),
            f"{task.action} to {task.target_connection_id} dead-lettered: {error}",
            at=task.completed_at or utcnow(),
            level=AlertLevel.ERROR,
        )

