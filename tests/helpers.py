from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from audit_market.bank import InMemoryBank
from audit_market.clock import ManualClock
from audit_market.config import MarketSettings
from audit_market.deploy import Market, deploy_market
from audit_market.findings import content_hash, encode_findings
from audit_market.ledger import EventEntry, InMemoryLedger, Ledger
from audit_market.schemas import EventType, LedgerEvent, PayoutWeighting, ValidityMode

FEE = 10
DURATION = 30 * 24 * 60 * 60
REPO = content_hash("repo-url")
WORK = content_hash("work-submission")


def build_market(
    *,
    weighting: PayoutWeighting = PayoutWeighting.EQUAL,
    mode: ValidityMode = ValidityMode.SUBSCRIPTION,
    fee: int | None = FEE,
    balances: dict[str, int] | None = None,
    ledger: Ledger | None = None,
) -> Market:
    """Fresh market with a manual clock, an in-memory ledger and funded wallets."""
    settings = MarketSettings(
        market_id="m1",
        owner="owner",
        validity_mode=mode,
        registration_fee=fee,
        subscription_duration=DURATION,
        payout_weighting=weighting,
    )
    bank = InMemoryBank(
        balances
        if balances is not None
        else {"submitter": 1_000, "agent1": 100, "agent2": 100, "agent3": 100}
    )
    return deploy_market(
        settings,
        bank=bank,
        ledger=ledger if ledger is not None else InMemoryLedger(),
        clock=ManualClock(),
    )


def register_agents(market: Market, *agent_ids: str) -> None:
    for agent_id in agent_ids:
        market.registry.register(agent_id, market.registry.fee or 0)


def open_task(market: Market, task_id: str = "TASK-001", *, bounty: int = 100) -> None:
    market.tasks.create_task("submitter", task_id, REPO, bounty, bounty)


def judged_task(
    market: Market,
    task_id: str = "TASK-001",
    *,
    bounty: int = 100,
    findings: dict[str, int] | None = None,
) -> None:
    """Create a task, have each agent submit, and record their findings counts."""
    findings = findings if findings is not None else {"agent1": 5}
    register_agents(market, *(a for a in findings if not market.registry.is_registered(a)))
    open_task(market, task_id, bounty=bounty)
    for agent_id, count in findings.items():
        market.tasks.submit_work(task_id, agent_id, content_hash(f"{agent_id}-work"))
        market.tasks.record_findings("owner", task_id, agent_id, encode_findings(count))


def event_types(market: Market) -> list[EventType]:
    return [e.type for e in market.ledger.iter_events()]


class FailingLedger(InMemoryLedger):
    """In-memory ledger whose writes raise OSError while `failing` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = False

    def append_batch(
        self,
        entries: Sequence[EventEntry],
        *,
        market_id: str,
        ts: datetime | None = None,
    ) -> list[LedgerEvent]:
        if self.failing:
            raise OSError("disk full")
        return super().append_batch(entries, market_id=market_id, ts=ts)
