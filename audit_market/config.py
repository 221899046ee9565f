from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TypeVar

from dotenv import find_dotenv, load_dotenv

from audit_market.registry import DEFAULT_DURATION, DEFAULT_FEE
from audit_market.schemas import PayoutWeighting, ValidityMode

E = TypeVar("E", bound=Enum)


def repo_root() -> Path:
    # Project root is the directory that contains the `audit_market/` package.
    return Path(__file__).resolve().parents[1]


def load_env() -> None:
    # Prefer a project-local `.env` so the CLI behaves the same from any working
    # directory. Fall back to searching from CWD.
    root_env = repo_root() / ".env"
    env_path = str(root_env) if root_env.exists() else (find_dotenv(usecwd=True) or str(root_env))
    load_dotenv(env_path)


@dataclass(frozen=True)
class MarketSettings:
    market_id: str = "market"
    owner: str = "owner"
    validity_mode: ValidityMode = ValidityMode.SUBSCRIPTION
    # None disables the registration fee (suspension registries usually run without one).
    registration_fee: int | None = DEFAULT_FEE
    subscription_duration: int = DEFAULT_DURATION
    payout_weighting: PayoutWeighting = PayoutWeighting.EQUAL
    ledger_path: Path | None = None


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer") from e
    if value < 0:
        raise ValueError(f"{name} must be >= 0")
    return value


def _fee_env(name: str, default: int | None) -> int | None:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in {"none", "off"}:
        return None
    return _int_env(name, 0)


def _choice_env(name: str, enum_cls: type[E], default: E) -> E:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    try:
        return enum_cls(raw)
    except ValueError as e:
        choices = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"{name} must be one of: {choices}") from e


def load_settings() -> MarketSettings:
    load_env()
    mode = _choice_env("AM_VALIDITY_MODE", ValidityMode, ValidityMode.SUBSCRIPTION)
    default_fee = DEFAULT_FEE if mode == ValidityMode.SUBSCRIPTION else None
    duration = _int_env("AM_SUBSCRIPTION_DURATION", DEFAULT_DURATION)
    if duration <= 0:
        raise ValueError("AM_SUBSCRIPTION_DURATION must be > 0")
    ledger_raw = (os.getenv("AM_LEDGER_PATH") or "").strip()
    return MarketSettings(
        market_id=(os.getenv("AM_MARKET_ID") or "market").strip(),
        owner=(os.getenv("AM_OWNER") or "owner").strip(),
        validity_mode=mode,
        registration_fee=_fee_env("AM_REGISTRATION_FEE", default_fee),
        subscription_duration=duration,
        payout_weighting=_choice_env(
            "AM_PAYOUT_WEIGHTING", PayoutWeighting, PayoutWeighting.EQUAL
        ),
        ledger_path=Path(ledger_raw) if ledger_raw else None,
    )
