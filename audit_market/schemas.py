from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, Field

ZERO_HASH = "0x" + "00" * 32


class EventType(str, Enum):
    MARKET_DEPLOYED = "market_deployed"

    AGENT_REGISTERED = "agent_registered"
    AGENT_DEREGISTERED = "agent_deregistered"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    AGENT_SUSPENDED = "agent_suspended"
    AGENT_REACTIVATED = "agent_reactivated"

    ADMIN_ADDED = "admin_added"
    ADMIN_REMOVED = "admin_removed"
    FEE_UPDATED = "fee_updated"
    DURATION_UPDATED = "duration_updated"
    FEES_WITHDRAWN = "fees_withdrawn"

    RECORDER_GRANTED = "recorder_granted"
    RECORDER_REVOKED = "recorder_revoked"

    TASK_CREATED = "task_created"
    WORK_SUBMITTED = "work_submitted"
    FINDINGS_RECORDED = "findings_recorded"
    PAYMENT_MADE = "payment_made"
    TASK_CANCELLED = "task_cancelled"
    TASK_CLOSED = "task_closed"


class ValidityMode(str, Enum):
    SUBSCRIPTION = "subscription"
    SUSPENSION = "suspension"


class PayoutWeighting(str, Enum):
    EQUAL = "equal"
    PROPORTIONAL = "proportional"


class TaskStatus(IntEnum):
    CREATED = 0
    SUBMITTED = 1
    CANCELLED = 2
    CLOSED = 3

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.CANCELLED, TaskStatus.CLOSED)


class LedgerEvent(BaseModel):
    schema_version: int = Field(default=1, ge=1)
    # Position in the market's log, starting at 0 with `market_deployed`.
    seq: int = Field(ge=0)
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    prev_hash: str | None = None
    hash: str = ""
    ts: datetime
    market_id: str
    type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)


class AgentRecord(BaseModel):
    agent_id: str = ""
    registered: bool = False
    # Subscription model: unix seconds after which the agent is no longer valid.
    expires_at: int = 0
    # Suspension model.
    active: bool = False


class TaskRecord(BaseModel):
    """Stored task. Unknown ids are answered with the zero record from `empty()`."""

    task_id: str
    repo_reference: str = ZERO_HASH
    bounty: int = Field(default=0, ge=0)
    submitter: str | None = None
    status: TaskStatus = TaskStatus.CREATED
    total_findings_count: int = Field(default=0, ge=0)
    submissions: dict[str, str] = Field(default_factory=dict)
    findings: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def empty(cls, task_id: str = "") -> "TaskRecord":
        return cls(task_id=task_id)


class TaskInfo(BaseModel):
    task_id: str
    repo_reference: str
    bounty: int
    submitter: str | None
    status: TaskStatus
    total_findings_count: int


class Payout(BaseModel):
    agent_id: str
    findings_value: str
    weight: int = Field(ge=0)
    amount: int = Field(ge=0)


class PayoutPlan(BaseModel):
    bounty: int = Field(ge=0)
    weighting: PayoutWeighting
    payouts: list[Payout] = Field(default_factory=list)
    remainder: int = Field(default=0, ge=0)

    @property
    def distributed(self) -> int:
        return sum(p.amount for p in self.payouts)


class TaskSummary(BaseModel):
    task_id: str
    submitter: str | None = None
    bounty: int = 0
    status: TaskStatus = TaskStatus.CREATED
    submitters: list[str] = Field(default_factory=list)
    findings: dict[str, str] = Field(default_factory=dict)
    paid: dict[str, int] = Field(default_factory=dict)
    refunded: int = 0

    @property
    def released(self) -> int:
        return sum(self.paid.values()) + self.refunded


class AgentSummary(BaseModel):
    agent_id: str
    registered: bool = True
    expires_at: int | None = None
    active: bool | None = None
    earned: int = 0


class MarketState(BaseModel):
    market_id: str
    owner: str | None = None
    validity_mode: ValidityMode = ValidityMode.SUBSCRIPTION
    fee: int | None = None
    duration: int | None = None
    agents: dict[str, AgentSummary] = Field(default_factory=dict)
    tasks: dict[str, TaskSummary] = Field(default_factory=dict)
    fees_collected: int = 0
