from __future__ import annotations

import threading
from typing import Any

from audit_market.access import AccessControl, require_external
from audit_market.bank import Bank, escrow_account
from audit_market.clock import Clock, SystemClock
from audit_market.errors import (
    AgentNotValid,
    BountyMismatch,
    DuplicateFindings,
    DuplicateSubmission,
    DuplicateTask,
    EmptyFindings,
    EmptyReference,
    EmptyTaskId,
    FindingsExist,
    InvalidState,
    NoFindings,
    NoSubmissionOnRecord,
    SubmitterCannotSubmit,
    SubmitterExcluded,
    TaskNotFound,
    TransferFailed,
    Unauthorized,
    ValueMismatchError,
)
from audit_market.findings import normalize_hash
from audit_market.ledger import EventEntry, Ledger
from audit_market.registry import AgentValidator
from audit_market.schemas import (
    ZERO_HASH,
    EventType,
    PayoutPlan,
    TaskInfo,
    TaskRecord,
    TaskStatus,
)
from audit_market.settlement import SettlementPolicy, plan_payouts


class TaskLedger:
    """Task records, submissions, findings and bounty escrow.

    Every mutating call validates all of its preconditions before it touches
    anything and runs under one lock (calls are totally ordered). Fund
    movements and the event record share one `Bank.atomic()` scope; the task
    record changes only after both have succeeded. A failed transfer or event
    write therefore leaves balances, task state and the log as they were.
    """

    def __init__(
        self,
        *,
        registry: AgentValidator,
        owner: str,
        bank: Bank,
        ledger: Ledger,
        market_id: str,
        clock: Clock | None = None,
        settlement: SettlementPolicy | None = None,
    ) -> None:
        if registry is None:
            raise ValueError("registry must be provided")
        self._registry = registry
        self._access = AccessControl(owner)
        self._bank = bank
        self._ledger = ledger
        self._market_id = market_id
        self._clock = clock or SystemClock()
        self._settlement = settlement or SettlementPolicy()
        self._tasks: dict[str, TaskRecord] = {}
        self._lock = threading.RLock()

    @property
    def registry(self) -> AgentValidator:
        return self._registry

    @property
    def owner(self) -> str:
        return self._access.owner

    @property
    def settlement(self) -> SettlementPolicy:
        return self._settlement

    @property
    def recorders(self) -> list[str]:
        return self._access.members()

    # Recorder role

    def grant_recorder(self, caller: str, recorder: str) -> None:
        with self._lock:
            self._access.require_owner(caller, action="grant_recorder")
            require_external(recorder, role="recorder")
            if self._access.is_member(recorder):
                raise InvalidState(f"{recorder!r} is already a recorder")
            self._emit(EventType.RECORDER_GRANTED, {"recorder": recorder})
            self._access.grant(recorder)

    def revoke_recorder(self, caller: str, recorder: str) -> None:
        with self._lock:
            self._access.require_owner(caller, action="revoke_recorder")
            if not self._access.is_member(recorder):
                raise InvalidState(f"{recorder!r} is not a recorder")
            self._emit(EventType.RECORDER_REVOKED, {"recorder": recorder})
            self._access.revoke(recorder)

    # Lifecycle

    def create_task(
        self,
        caller: str,
        task_id: str,
        repo_reference: str,
        bounty: int,
        escrowed_amount: int,
    ) -> TaskInfo:
        with self._lock:
            require_external(caller, role="submitter")
            if not task_id or not task_id.strip():
                raise EmptyTaskId("Task ID cannot be empty")
            existing = self._tasks.get(task_id)
            if existing is not None and existing.submitter is not None:
                raise DuplicateTask(f"task {task_id!r} already exists")
            reference = ZERO_HASH
            if repo_reference:
                reference = _parse_hash(repo_reference, what="repo reference")
            if reference == ZERO_HASH:
                raise EmptyReference("repo reference cannot be empty")
            if bounty <= 0:
                raise BountyMismatch("bounty must be > 0")
            if escrowed_amount != bounty:
                raise BountyMismatch("escrowed amount must match bounty")

            with self._bank.atomic():
                if not self._bank.transfer(caller, escrow_account(task_id), bounty):
                    raise TransferFailed(f"could not escrow {bounty} from {caller!r}")
                self._emit(
                    EventType.TASK_CREATED,
                    {
                        "task_id": task_id,
                        "repo_reference": reference,
                        "bounty": bounty,
                        "submitter": caller,
                    },
                )

            task = TaskRecord(
                task_id=task_id,
                repo_reference=reference,
                bounty=bounty,
                submitter=caller,
                status=TaskStatus.CREATED,
            )
            self._tasks[task_id] = task
            return self._info(task)

    def submit_work(self, task_id: str, agent_id: str, work_hash: str) -> None:
        with self._lock:
            task = self._require_task(task_id)
            if task.status != TaskStatus.CREATED:
                raise InvalidState(f"task {task_id!r} is {task.status.name}, expected CREATED")
            if not self._registry.is_valid(agent_id, self._clock.now()):
                raise AgentNotValid("Agent is not registered")
            if agent_id in task.submissions:
                raise DuplicateSubmission("Agent has already submitted")
            if agent_id == task.submitter:
                raise SubmitterCannotSubmit("submitter cannot submit work on their own task")

            work = _parse_hash(work_hash, what="work hash")
            self._emit(
                EventType.WORK_SUBMITTED,
                {"task_id": task_id, "agent_id": agent_id, "work_hash": work},
            )
            task.submissions[agent_id] = work

    def record_findings(
        self, caller: str, task_id: str, agent_id: str, findings_value: str
    ) -> TaskInfo:
        with self._lock:
            self._access.require_privileged(caller, action="record_findings")
            task = self._require_task(task_id)
            if task.status not in (TaskStatus.CREATED, TaskStatus.SUBMITTED):
                raise InvalidState(f"task {task_id!r} is {task.status.name}, findings are closed")
            if agent_id == task.submitter:
                raise SubmitterExcluded("submitter cannot hold findings on their own task")
            if not self._registry.is_valid(agent_id, self._clock.now()):
                raise AgentNotValid("Agent is not registered")
            if agent_id not in task.submissions:
                raise NoSubmissionOnRecord(f"agent {agent_id!r} has no submission on {task_id!r}")
            value = _parse_hash(findings_value, what="findings value")
            if value == ZERO_HASH:
                raise EmptyFindings("findings value cannot be empty")
            if agent_id in task.findings:
                raise DuplicateFindings(f"findings already recorded for {agent_id!r}")

            self._emit(
                EventType.FINDINGS_RECORDED,
                {"task_id": task_id, "agent_id": agent_id, "findings_value": value},
            )
            task.findings[agent_id] = value
            task.total_findings_count += 1
            if task.status == TaskStatus.CREATED:
                task.status = TaskStatus.SUBMITTED
            return self._info(task)

    def cancel_task(self, caller: str, task_id: str) -> int:
        """Refund the whole escrow to the submitter; returns the refunded amount."""
        with self._lock:
            task = self._require_task(task_id)
            self._require_submitter(task, caller, action="cancel_task")
            if task.total_findings_count > 0:
                raise FindingsExist(f"task {task_id!r} already has findings")
            if task.status != TaskStatus.CREATED:
                raise InvalidState(f"task {task_id!r} is {task.status.name}, expected CREATED")

            submitter = str(task.submitter)
            escrow = escrow_account(task_id)
            amount = task.bounty
            with self._bank.atomic():
                if not self._bank.transfer(escrow, submitter, amount):
                    raise TransferFailed(f"refund to {submitter!r} failed")
                if self._bank.balance_of(escrow) != 0:
                    raise TransferFailed(f"escrow for {task_id!r} not fully released")
                self._emit(
                    EventType.TASK_CANCELLED,
                    {"task_id": task_id, "submitter": submitter, "refund": amount},
                )
            task.status = TaskStatus.CANCELLED
            return amount

    def close_task(self, caller: str, task_id: str) -> PayoutPlan:
        """Distribute the escrow across findings holders and close the task."""
        with self._lock:
            task = self._require_task(task_id)
            self._require_submitter(task, caller, action="close_task")
            if task.status != TaskStatus.SUBMITTED:
                raise InvalidState(f"task {task_id!r} is {task.status.name}, expected SUBMITTED")
            if task.total_findings_count == 0:
                raise NoFindings(f"task {task_id!r} has no findings to pay out")

            submitter = str(task.submitter)
            plan = plan_payouts(
                bounty=task.bounty,
                findings=task.findings,
                weighting=self._settlement.weighting,
            )
            escrow = escrow_account(task_id)
            events: list[EventEntry] = [
                (
                    EventType.PAYMENT_MADE,
                    {
                        "task_id": task_id,
                        "agent_id": payout.agent_id,
                        "amount": payout.amount,
                        "weight": payout.weight,
                    },
                )
                for payout in plan.payouts
            ]
            events.append(
                (
                    EventType.TASK_CLOSED,
                    {
                        "task_id": task_id,
                        "weighting": plan.weighting.value,
                        "distributed": plan.distributed,
                        "remainder": plan.remainder,
                        "submitter": submitter,
                    },
                )
            )
            with self._bank.atomic():
                for payout in plan.payouts:
                    if not self._bank.transfer(escrow, payout.agent_id, payout.amount):
                        raise TransferFailed(f"payout to {payout.agent_id!r} failed")
                if plan.remainder and not self._bank.transfer(
                    escrow, submitter, plan.remainder
                ):
                    raise TransferFailed(f"remainder refund to {submitter!r} failed")
                if self._bank.balance_of(escrow) != 0:
                    raise TransferFailed(f"escrow for {task_id!r} not fully released")
                self._ledger.append_batch(events, market_id=self._market_id)
            task.status = TaskStatus.CLOSED
            return plan

    # Queries

    def get_task_info(self, task_id: str) -> TaskInfo:
        task = self._tasks.get(task_id)
        return self._info(task if task is not None else TaskRecord.empty(task_id))

    def get_findings(self, task_id: str, agent_id: str) -> str:
        task = self._tasks.get(task_id)
        if task is None:
            return ZERO_HASH
        return task.findings.get(agent_id, ZERO_HASH)

    def has_submitted(self, task_id: str, agent_id: str) -> bool:
        task = self._tasks.get(task_id)
        return task is not None and agent_id in task.submissions

    def findings_holders(self, task_id: str) -> list[str]:
        task = self._tasks.get(task_id)
        return list(task.findings) if task is not None else []

    def escrow_balance(self, task_id: str) -> int:
        return self._bank.balance_of(escrow_account(task_id))

    def task_ids(self) -> list[str]:
        return sorted(self._tasks)

    # Internals

    def _require_task(self, task_id: str) -> TaskRecord:
        task = self._tasks.get(task_id)
        if task is None or task.submitter is None:
            raise TaskNotFound(f"task {task_id!r} not found")
        return task

    def _require_submitter(self, task: TaskRecord, caller: str, *, action: str) -> None:
        if caller != task.submitter:
            raise Unauthorized(f"{action}: only the submitter of {task.task_id!r} may do this")

    def _info(self, task: TaskRecord) -> TaskInfo:
        return TaskInfo(
            task_id=task.task_id,
            repo_reference=task.repo_reference,
            bounty=task.bounty,
            submitter=task.submitter,
            status=task.status,
            total_findings_count=task.total_findings_count,
        )

    def _emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        self._ledger.append(event_type, market_id=self._market_id, payload=payload)


def _parse_hash(value: str, *, what: str) -> str:
    try:
        return normalize_hash(value)
    except ValueError as e:
        raise ValueMismatchError(f"{what}: {e}") from e
