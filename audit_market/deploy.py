from __future__ import annotations

from dataclasses import dataclass

from audit_market.bank import Bank, InMemoryBank
from audit_market.clock import Clock, SystemClock
from audit_market.config import MarketSettings
from audit_market.ledger import HashChainedLedger, InMemoryLedger, Ledger
from audit_market.registry import AgentRegistry, SubscriptionRegistry, SuspensionRegistry
from audit_market.schemas import EventType, ValidityMode
from audit_market.settlement import SettlementPolicy
from audit_market.tasks import TaskLedger


@dataclass(frozen=True)
class Market:
    settings: MarketSettings
    bank: Bank
    ledger: Ledger
    clock: Clock
    registry: AgentRegistry
    tasks: TaskLedger


def build_registry(
    settings: MarketSettings, *, bank: Bank, ledger: Ledger, clock: Clock
) -> AgentRegistry:
    if settings.validity_mode == ValidityMode.SUSPENSION:
        return SuspensionRegistry(
            owner=settings.owner,
            bank=bank,
            ledger=ledger,
            market_id=settings.market_id,
            clock=clock,
            fee=settings.registration_fee,
        )
    return SubscriptionRegistry(
        owner=settings.owner,
        bank=bank,
        ledger=ledger,
        market_id=settings.market_id,
        clock=clock,
        fee=settings.registration_fee,
        duration=settings.subscription_duration,
    )


def deploy_market(
    settings: MarketSettings | None = None,
    *,
    bank: Bank | None = None,
    ledger: Ledger | None = None,
    clock: Clock | None = None,
) -> Market:
    """Deploy the registry first, then the task ledger bound to it."""
    settings = settings or MarketSettings()
    bank = bank if bank is not None else InMemoryBank()
    if ledger is None:
        ledger = (
            HashChainedLedger(settings.ledger_path)
            if settings.ledger_path is not None
            else InMemoryLedger()
        )
    clock = clock or SystemClock()

    ledger.append(
        EventType.MARKET_DEPLOYED,
        market_id=settings.market_id,
        payload={
            "owner": settings.owner,
            "validity_mode": settings.validity_mode.value,
            "fee": settings.registration_fee,
            "duration": (
                settings.subscription_duration
                if settings.validity_mode == ValidityMode.SUBSCRIPTION
                else None
            ),
            "payout_weighting": settings.payout_weighting.value,
        },
    )
    registry = build_registry(settings, bank=bank, ledger=ledger, clock=clock)
    tasks = TaskLedger(
        registry=registry,
        owner=settings.owner,
        bank=bank,
        ledger=ledger,
        market_id=settings.market_id,
        clock=clock,
        settlement=SettlementPolicy(weighting=settings.payout_weighting),
    )
    return Market(
        settings=settings,
        bank=bank,
        ledger=ledger,
        clock=clock,
        registry=registry,
        tasks=tasks,
    )
