from __future__ import annotations

from audit_market.bank import Bank, InMemoryBank, escrow_account
from audit_market.clock import Clock, ManualClock, SystemClock
from audit_market.config import MarketSettings, load_settings
from audit_market.deploy import Market, deploy_market
from audit_market.findings import content_hash, decode_findings, encode_findings
from audit_market.ledger import HashChainedLedger, InMemoryLedger, Ledger
from audit_market.registry import (
    AgentRegistry,
    AgentValidator,
    SubscriptionRegistry,
    SuspensionRegistry,
)
from audit_market.scenario import ScenarioSpec, load_scenario, run_scenario
from audit_market.schemas import (
    AgentRecord,
    EventType,
    LedgerEvent,
    MarketState,
    PayoutPlan,
    PayoutWeighting,
    TaskInfo,
    TaskStatus,
    ValidityMode,
)
from audit_market.settlement import SettlementPolicy, plan_payouts
from audit_market.state import replay_ledger
from audit_market.tasks import TaskLedger

__all__ = [
    "__version__",
    # Deployment
    "deploy_market",
    "Market",
    "MarketSettings",
    "load_settings",
    # Registry
    "AgentRegistry",
    "AgentValidator",
    "SubscriptionRegistry",
    "SuspensionRegistry",
    # Tasks
    "TaskLedger",
    "SettlementPolicy",
    "plan_payouts",
    # Funds and time
    "Bank",
    "InMemoryBank",
    "escrow_account",
    "Clock",
    "ManualClock",
    "SystemClock",
    # Ledger
    "Ledger",
    "HashChainedLedger",
    "InMemoryLedger",
    # Schemas
    "AgentRecord",
    "EventType",
    "LedgerEvent",
    "MarketState",
    "PayoutPlan",
    "PayoutWeighting",
    "TaskInfo",
    "TaskStatus",
    "ValidityMode",
    # Findings
    "content_hash",
    "decode_findings",
    "encode_findings",
    # State
    "replay_ledger",
    # Scenario
    "load_scenario",
    "run_scenario",
    "ScenarioSpec",
]

__version__ = "0.1.0"
