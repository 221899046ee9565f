from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from audit_market import errors
from audit_market.bank import InMemoryBank
from audit_market.clock import ManualClock
from audit_market.config import MarketSettings
from audit_market.deploy import Market, deploy_market
from audit_market.findings import coerce_hash
from audit_market.ledger import Ledger
from audit_market.schemas import PayoutWeighting, ValidityMode

OPS = frozenset(
    {
        "advance",
        "refuse_deposits",
        "register",
        "renew",
        "suspend",
        "reactivate",
        "deregister",
        "set_admin",
        "remove_admin",
        "update_fee",
        "update_duration",
        "withdraw_fees",
        "grant_recorder",
        "revoke_recorder",
        "create_task",
        "submit_work",
        "record_findings",
        "cancel_task",
        "close_task",
    }
)


class ScenarioStep(BaseModel):
    model_config = ConfigDict(extra="allow")

    op: str
    expect_error: str | None = None

    @field_validator("op")
    @classmethod
    def _known_op(cls, v: str) -> str:
        if v not in OPS:
            raise ValueError(f"unknown scenario op: {v!r}")
        return v

    @field_validator("expect_error")
    @classmethod
    def _known_error(cls, v: str | None) -> str | None:
        if v is None:
            return v
        err = getattr(errors, v, None)
        if not (isinstance(err, type) and issubclass(err, errors.MarketError)):
            raise ValueError(f"unknown error type: {v!r}")
        return v

    @property
    def args(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class ScenarioSettings(BaseModel):
    market_id: str | None = None
    owner: str | None = None
    validity_mode: ValidityMode | None = None
    registration_fee: int | None = Field(default=None, ge=0)
    no_fee: bool = False
    subscription_duration: int | None = Field(default=None, ge=1)
    payout_weighting: PayoutWeighting | None = None


@dataclass(frozen=True)
class ScenarioSpec:
    scenario_id: str
    title: str
    settings: ScenarioSettings
    start_time: int
    accounts: dict[str, int]
    steps: list[ScenarioStep]


@dataclass
class StepOutcome:
    index: int
    op: str
    ok: bool
    error: str | None = None
    result: Any = None


@dataclass
class ScenarioResult:
    market: Market
    outcomes: list[StepOutcome] = field(default_factory=list)


def load_scenario(path: Path) -> ScenarioSpec:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("scenario must be a YAML mapping")

    scenario_id = str(data.get("scenario_id") or data.get("id") or "scenario")
    title = str(data.get("title") or scenario_id)

    raw_settings = data.get("settings") or {}
    if not isinstance(raw_settings, dict):
        raise ValueError("scenario.settings must be a mapping")

    raw_accounts = data.get("accounts") or {}
    if not isinstance(raw_accounts, dict):
        raise ValueError("scenario.accounts must be a mapping of account -> balance")

    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise ValueError("scenario.steps must be a non-empty list")
    steps: list[ScenarioStep] = []
    for raw in raw_steps:
        if not isinstance(raw, dict):
            raise ValueError("each step must be a mapping")
        steps.append(ScenarioStep.model_validate(raw))

    return ScenarioSpec(
        scenario_id=scenario_id,
        title=title,
        settings=ScenarioSettings.model_validate(raw_settings),
        start_time=int(data.get("start_time") or 1_700_000_000),
        accounts={str(k): int(v) for k, v in raw_accounts.items()},
        steps=steps,
    )


def scenario_market_settings(spec: ScenarioSpec, *, base: MarketSettings) -> MarketSettings:
    s = spec.settings
    overrides: dict[str, Any] = {
        k: v
        for k, v in {
            "market_id": s.market_id,
            "owner": s.owner,
            "validity_mode": s.validity_mode,
            "registration_fee": s.registration_fee,
            "subscription_duration": s.subscription_duration,
            "payout_weighting": s.payout_weighting,
        }.items()
        if v is not None
    }
    if s.no_fee:
        overrides["registration_fee"] = None
    elif s.validity_mode == ValidityMode.SUSPENSION and s.registration_fee is None:
        overrides["registration_fee"] = None
    return dataclasses.replace(base, **overrides)


def run_scenario(
    spec: ScenarioSpec,
    *,
    settings: MarketSettings | None = None,
    ledger: Ledger | None = None,
) -> ScenarioResult:
    """Deploy a fresh market and play the scenario steps against it.

    A step with `expect_error` must raise exactly that error type; any other
    outcome (success, or a different error) stops the run with ValueError.
    """
    market_settings = scenario_market_settings(spec, base=settings or MarketSettings())
    bank = InMemoryBank(spec.accounts)
    clock = ManualClock(spec.start_time)
    market = deploy_market(market_settings, bank=bank, ledger=ledger, clock=clock)
    result = ScenarioResult(market=market)

    for index, step in enumerate(spec.steps):
        try:
            value = _apply_step(market, step)
        except errors.MarketError as e:
            name = type(e).__name__
            if step.expect_error is None or not isinstance(e, getattr(errors, step.expect_error)):
                raise ValueError(f"step {index} ({step.op}) failed: {name}: {e}") from e
            result.outcomes.append(StepOutcome(index=index, op=step.op, ok=False, error=name))
            continue
        if step.expect_error is not None:
            raise ValueError(
                f"step {index} ({step.op}) succeeded but expected {step.expect_error}"
            )
        result.outcomes.append(StepOutcome(index=index, op=step.op, ok=True, result=value))

    return result


def _apply_step(market: Market, step: ScenarioStep) -> Any:
    a = step.args
    reg = market.registry
    tasks = market.tasks
    owner = market.settings.owner

    op = step.op
    if op == "advance":
        clock = market.clock
        if not isinstance(clock, ManualClock):
            raise ValueError("advance requires a manual clock")
        return clock.advance(int(a["seconds"]))
    if op == "refuse_deposits":
        bank = market.bank
        if not isinstance(bank, InMemoryBank):
            raise ValueError("refuse_deposits requires an in-memory bank")
        bank.refuse_deposits(str(a["account"]), bool(a.get("refuse", True)))
        return None
    if op == "register":
        return reg.register(str(a["agent"]), int(a.get("payment", _default_fee(market))))
    if op == "renew":
        return reg.renew(str(a["agent"]), int(a.get("payment", _default_fee(market))))
    if op == "suspend":
        return reg.suspend(str(a.get("caller", owner)), str(a["agent"]))
    if op == "reactivate":
        return reg.reactivate(str(a.get("caller", owner)), str(a["agent"]))
    if op == "deregister":
        return reg.deregister(str(a.get("caller", owner)), str(a["agent"]))
    if op == "set_admin":
        return reg.set_admin(str(a.get("caller", owner)), str(a["admin"]))
    if op == "remove_admin":
        return reg.remove_admin(str(a.get("caller", owner)), str(a["admin"]))
    if op == "update_fee":
        fee = a.get("fee")
        return reg.update_fee(str(a.get("caller", owner)), None if fee is None else int(fee))
    if op == "update_duration":
        return reg.update_duration(str(a.get("caller", owner)), int(a["duration"]))
    if op == "withdraw_fees":
        return reg.withdraw_fees(str(a.get("caller", owner)), str(a.get("to", owner)))
    if op == "grant_recorder":
        return tasks.grant_recorder(str(a.get("caller", owner)), str(a["recorder"]))
    if op == "revoke_recorder":
        return tasks.revoke_recorder(str(a.get("caller", owner)), str(a["recorder"]))
    if op == "create_task":
        bounty = int(a["bounty"])
        return tasks.create_task(
            str(a["caller"]),
            str(a.get("task_id", "")),
            coerce_hash(a["repo"]) if a.get("repo") else "",
            bounty,
            int(a.get("escrowed", bounty)),
        )
    if op == "submit_work":
        return tasks.submit_work(
            str(a["task_id"]), str(a["agent"]), coerce_hash(a.get("work", "work"))
        )
    if op == "record_findings":
        return tasks.record_findings(
            str(a.get("caller", owner)),
            str(a["task_id"]),
            str(a["agent"]),
            coerce_hash(a["findings"]),
        )
    if op == "cancel_task":
        return tasks.cancel_task(str(a["caller"]), str(a["task_id"]))
    if op == "close_task":
        return tasks.close_task(str(a["caller"]), str(a["task_id"]))
    raise AssertionError(f"unhandled op: {step.op}")


def _default_fee(market: Market) -> int:
    return market.registry.fee or 0
