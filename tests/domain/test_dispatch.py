from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING
from uuid import UUID

import pytest

from disputesync.domain.dispatch import DispatchPolicy, actions_for
from disputesync.domain.errors import AuthError, TransientNetworkError
from disputesync.domain.model import (
    AlertLevel,
    AlertScope,
    CanonicalPayload,
    CaseStatus,
    ConnectionStatus,
    DisputeDetails,
    ManualDecision,
    OutboundAction,
    OutboundTask,
    SyncEventType,
    TaskStatus,
)
from disputesync.domain.ports import WriteResponse
from disputesync.domain.state_machine import CaseTransition
from tests.helpers.harness import MEWS_SECRETS, STRIPE_SECRETS, SyncHarness, build_harness

if TYPE_CHECKING:
    from collections.abc import Callable

    from disputesync.adapters.vault import FernetSecretVault
    from disputesync.domain.ports import SyncUnitOfWork
    from tests.helpers.providers import MutableClock


def _open_case(harness: SyncHarness, dispute_id: str = "dp_1") -> UUID:
    payload = CanonicalPayload(
        dispute=DisputeDetails(
            dispute_id=dispute_id,
            amount=10000,
            currency="USD",
            reason_code="fraudulent",
            due_date="2026-03-01",
            guest_ref="cust-5",
        )
    )
    update = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, payload)
    assert update.case is not None
    return update.case.id


def _tasks(harness: SyncHarness, case_id: UUID) -> list[OutboundTask]:
    with harness.unit_of_work_factory() as uow:
        return list(uow.repositories.tasks.list_for_case(case_id))


def _dispatch(harness: SyncHarness) -> dict[TaskStatus, int]:
    return asyncio.run(harness.orchestrator.dispatch_due())


@pytest.fixture
def connected(harness: SyncHarness) -> SyncHarness:
    harness.connect("stripe-1", "stripe", STRIPE_SECRETS)
    harness.connect("mews-1", "mews", MEWS_SECRETS)
    return harness


def _transition(source: CaseStatus | None, target: CaseStatus) -> CaseTransition:
    return CaseTransition(
        case_id=UUID(int=1),
        connection_id="c",
        external_dispute_id="d",
        from_status=source,
        to_status=target,
        actor="system",
        reason="r",
    )


def test_actions_per_transition() -> None:
    assert actions_for(_transition(None, CaseStatus.PENDING)) == (
        OutboundAction.PUSH_FLAG,
        OutboundAction.PUSH_ALERT,
    )
    assert actions_for(_transition(CaseStatus.PENDING, CaseStatus.IN_REVIEW)) == (
        OutboundAction.PUSH_NOTE,
    )
    assert actions_for(_transition(CaseStatus.SUBMITTED, CaseStatus.LOST)) == (
        OutboundAction.PUSH_OUTCOME,
    )


def test_tasks_for_one_pair_run_in_creation_order(connected: SyncHarness) -> None:
    harness = connected
    case_id = _open_case(harness)
    mews = harness.providers["mews"]

    assert _dispatch(harness) == {TaskStatus.SUCCEEDED: 1}
    assert _dispatch(harness) == {TaskStatus.SUCCEEDED: 1}
    assert _dispatch(harness) == {}

    assert [request.action for request in mews.sent] == [
        OutboundAction.PUSH_FLAG,
        OutboundAction.PUSH_ALERT,
    ]
    assert mews.sent[0].token == "mews-token"
    assert mews.sent[0].payload["dispute_id"] == "dp_1"
    assert mews.sent[0].payload["guest_ref"] == "cust-5"
    assert {task.status for task in _tasks(harness, case_id)} == {TaskStatus.SUCCEEDED}
    assert harness.providers["stripe"].sent == []


def test_disabled_capability_is_never_planned(harness: SyncHarness) -> None:
    harness.connect("stripe-1", "stripe", STRIPE_SECRETS)
    harness.connect(
        "mews-1", "mews", MEWS_SECRETS, capability_overrides={"notes": {"write": False}}
    )
    case_id = _open_case(harness)

    harness.cases.submit_manual_override(case_id, ManualDecision.SUBMIT)

    planned = [(task.target_connection_id, task.action) for task in _tasks(harness, case_id)]
    assert ("mews-1", OutboundAction.PUSH_NOTE) not in planned
    assert planned.count(("stripe-1", OutboundAction.PUSH_NOTE)) == 2


def test_enqueue_targets_every_writer_except_excluded(connected: SyncHarness) -> None:
    case_id = _open_case(connected)

    tasks = connected.dispatcher.enqueue(case_id, OutboundAction.PUSH_NOTE, {"note": "hello"})
    only_mews = connected.dispatcher.enqueue(
        case_id, OutboundAction.PUSH_NOTE, exclude=("stripe-1",)
    )

    assert sorted(task.target_connection_id for task in tasks) == ["mews-1", "stripe-1"]
    assert tasks[0].payload == {"note": "hello"}
    assert [task.target_connection_id for task in only_mews] == ["mews-1"]
    assert only_mews[0].payload["case_id"] == str(case_id)


def test_backoff_is_exponential_capped_and_honours_retry_after(connected: SyncHarness) -> None:
    dispatcher = connected.dispatcher

    assert dispatcher.backoff(1) == 2.0
    assert dispatcher.backoff(3) == 8.0
    assert dispatcher.backoff(20) == 600.0
    assert dispatcher.backoff(1, retry_after=30.0) == 30.0


def test_retryable_failure_is_rescheduled(connected: SyncHarness) -> None:
    harness = connected
    case_id = _open_case(harness)
    mews = harness.providers["mews"]
    mews.responses.extend([WriteResponse(status_code=503, body="busy")])

    assert _dispatch(harness) == {TaskStatus.FAILED: 1}
    flag = _tasks(harness, case_id)[0]
    assert flag.attempt == 1
    assert flag.last_error == "HTTP 503: busy"
    assert flag.next_attempt_at == harness.clock() + timedelta(seconds=2)

    # nothing is due until the backoff elapses and the alert waits behind the flag
    assert _dispatch(harness) == {}
    harness.clock.advance(seconds=2)
    assert _dispatch(harness) == {TaskStatus.SUCCEEDED: 1}
    assert [request.action for request in mews.sent] == [
        OutboundAction.PUSH_FLAG,
        OutboundAction.PUSH_FLAG,
    ]


def test_transient_network_error_waits_for_retry_after(connected: SyncHarness) -> None:
    harness = connected
    case_id = _open_case(harness)
    harness.providers["mews"].responses.append(
        TransientNetworkError("timeout", status_code=429, retry_after=30.0)
    )

    assert _dispatch(harness) == {TaskStatus.FAILED: 1}
    harness.clock.advance(seconds=29)
    assert _dispatch(harness) == {}
    harness.clock.advance(seconds=1)
    assert _dispatch(harness) == {TaskStatus.SUCCEEDED: 1}
    assert _tasks(harness, case_id)[0].attempt == 2


def test_exhausted_retries_dead_letter_with_an_alert(
    sqlite_unit_of_work: Callable[[], SyncUnitOfWork],
    vault: FernetSecretVault,
    clock: MutableClock,
) -> None:
    harness = build_harness(
        sqlite_unit_of_work, vault, clock, policy=DispatchPolicy(max_attempts=2)
    )
    harness.connect("stripe-1", "stripe", STRIPE_SECRETS)
    harness.connect("mews-1", "mews", MEWS_SECRETS)
    case_id = _open_case(harness)
    harness.providers["mews"].responses.extend(
        [WriteResponse(status_code=500), WriteResponse(status_code=500)]
    )

    assert _dispatch(harness) == {TaskStatus.FAILED: 1}
    clock.advance(seconds=2)
    assert _dispatch(harness) == {TaskStatus.DEAD: 1}

    flag, _ = _tasks(harness, case_id)
    assert flag.status is TaskStatus.DEAD
    assert flag.last_error == "HTTP 500 (gave up after 2 attempts)"
    with harness.unit_of_work_factory() as uow:
        alerts = [a for a in uow.repositories.alerts.list() if a.scope is AlertScope.TASK]
    assert [(alert.ref, alert.level) for alert in alerts] == [
        (str(flag.task_id), AlertLevel.ERROR)
    ]

    # a dead task no longer blocks the rest of its pair
    assert _dispatch(harness) == {TaskStatus.SUCCEEDED: 1}
    assert _tasks(harness, case_id)[1].status is TaskStatus.SUCCEEDED


def test_client_errors_are_not_retried(connected: SyncHarness) -> None:
    case_id = _open_case(connected)
    connected.providers["mews"].responses.append(WriteResponse(status_code=422, body="bad field"))

    assert _dispatch(connected) == {TaskStatus.DEAD: 1}
    assert _tasks(connected, case_id)[0].last_error == "HTTP 422: bad field"


def test_rejected_token_is_refreshed_once(connected: SyncHarness) -> None:
    harness = connected
    _open_case(harness)
    mews = harness.providers["mews"]
    mews.responses.extend([WriteResponse(status_code=401), WriteResponse(status_code=200)])

    assert _dispatch(harness) == {TaskStatus.SUCCEEDED: 1}
    assert len(mews.sent) == 2

    mews.responses.extend([WriteResponse(status_code=403), WriteResponse(status_code=401)])
    assert _dispatch(harness) == {TaskStatus.PAUSED: 1}
    assert len(mews.sent) == 4


def test_token_rejected_after_refresh_requires_reauthorization(connected: SyncHarness) -> None:
    harness = connected
    case_id = _open_case(harness)
    mews = harness.providers["mews"]
    mews.responses.extend([WriteResponse(status_code=401), WriteResponse(status_code=403)])

    assert _dispatch(harness) == {TaskStatus.PAUSED: 1}
    flag, alert = _tasks(harness, case_id)
    assert flag.status is TaskStatus.PAUSED
    assert flag.last_error == "HTTP 403 after token refresh"
    assert alert.status is TaskStatus.PAUSED
    with harness.unit_of_work_factory() as uow:
        connection = uow.repositories.connections.get("mews-1")
        alerts = [a for a in uow.repositories.alerts.list() if a.scope is AlertScope.CONNECTION]
    assert connection is not None
    assert connection.status is ConnectionStatus.UNAUTHENTICATED
    assert [(a.ref, a.level) for a in alerts] == [("mews-1", AlertLevel.ERROR)]

    # nothing is sent until an operator re-authorizes
    assert _dispatch(harness) == {}
    assert len(mews.sent) == 2
    assert harness.tokens.reauthorize("mews-1") == 2
    assert _dispatch(harness) == {TaskStatus.SUCCEEDED: 1}
    assert _dispatch(harness) == {TaskStatus.SUCCEEDED: 1}
    assert len(mews.sent) == 4


def test_auth_failure_pauses_the_task(connected: SyncHarness) -> None:
    harness = connected
    case_id = _open_case(harness)
    harness.providers["mews"].responses.append(AuthError("revoked", connection_id="mews-1"))

    assert _dispatch(harness) == {TaskStatus.PAUSED: 1}
    assert _tasks(harness, case_id)[0].status is TaskStatus.PAUSED
    assert _dispatch(harness) == {}


def test_unauthenticated_target_gets_paused_tasks_until_reauthorized(
    connected: SyncHarness,
) -> None:
    harness = connected
    harness.connect("cloudbeds-1", "cloudbeds", {"client_id": "cid", "refresh_token": "rt-0"})
    with pytest.raises(AuthError):
        asyncio.run(harness.tokens.get_valid_token("cloudbeds-1"))

    case_id = _open_case(harness)

    cloudbeds = [t for t in _tasks(harness, case_id) if t.target_connection_id == "cloudbeds-1"]
    assert [(task.action, task.status) for task in cloudbeds] == [
        (OutboundAction.PUSH_FLAG, TaskStatus.PAUSED)
    ]
    assert harness.orchestrator.reauthorize("cloudbeds-1", refresh_token="rt-1") == 1


def test_tasks_for_a_closed_case_are_cancelled(connected: SyncHarness) -> None:
    harness = connected
    case_id = _open_case(harness)
    harness.cases.submit_manual_override(case_id, ManualDecision.CANCEL)

    totals: dict[TaskStatus, int] = {}
    while summary := _dispatch(harness):
        for status, count in summary.items():
            totals[status] = totals.get(status, 0) + count

    assert totals == {TaskStatus.CANCELLED: 2, TaskStatus.SUCCEEDED: 1}
    assert harness.providers["mews"].sent == []
    (outcome,) = harness.providers["stripe"].sent
    assert outcome.action is OutboundAction.PUSH_OUTCOME
    assert outcome.payload["outcome"] == "cancelled"


def test_capability_withdrawn_after_planning_dead_letters(connected: SyncHarness) -> None:
    harness = connected
    case_id = _open_case(harness)
    harness.connect(
        "mews-1", "mews", MEWS_SECRETS, capability_overrides={"flags": {"write": False}}
    )

    assert _dispatch(harness) == {TaskStatus.DEAD: 1}
    assert "disabled" in (_tasks(harness, case_id)[0].last_error or "")


def test_disconnect_cancels_open_tasks(connected: SyncHarness) -> None:
    case_id = _open_case(connected)

    assert connected.orchestrator.disconnect("mews-1") == 2
    assert {task.status for task in _tasks(connected, case_id)} == {TaskStatus.CANCELLED}
    assert _dispatch(connected) == {}


def test_recover_requeues_in_flight_tasks(connected: SyncHarness) -> None:
    case_id = _open_case(connected)
    with connected.unit_of_work_factory() as uow:
        task = uow.repositories.tasks.list_for_case(case_id)[0]
        task.status = TaskStatus.IN_FLIGHT
        uow.commit()

    assert connected.orchestrator.recover() == 1
    assert _tasks(connected, case_id)[0].status is TaskStatus.QUEUED
