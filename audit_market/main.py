from __future__ import annotations

import argparse
from pathlib import Path

from audit_market.config import MarketSettings, load_settings, repo_root
from audit_market.ledger import HashChainedLedger
from audit_market.scenario import load_scenario, run_scenario
from audit_market.schemas import MarketState, TaskStatus
from audit_market.state import replay_ledger, unbalanced_tasks


def _existing_path(value: str) -> Path:
    p = Path(value)
    if not p.exists():
        raise argparse.ArgumentTypeError(f"path not found: {value}")
    return p


def _scenario_path(value: str) -> Path:
    p = _existing_path(value)
    if p.suffix.lower() not in {".yml", ".yaml"}:
        raise argparse.ArgumentTypeError(f"scenario must be YAML: {value}")
    return p


def _task_status_counts(*, state: MarketState) -> dict[TaskStatus, int]:
    counts: dict[TaskStatus, int] = {}
    for t in state.tasks.values():
        counts[t.status] = counts.get(t.status, 0) + 1
    return counts


def _print_report(*, state: MarketState) -> None:
    counts = _task_status_counts(state=state)
    print(
        f"market_id={state.market_id} owner={state.owner} mode={state.validity_mode.value} "
        f"fee={state.fee} fees_collected={state.fees_collected} "
        + " ".join(f"tasks_{s.name.lower()}={counts.get(s, 0)}" for s in TaskStatus)
    )
    print("\nTasks:")
    for tid, t in sorted(state.tasks.items()):
        paid = ", ".join(f"{a}={amt}" for a, amt in sorted(t.paid.items())) or "-"
        print(
            f"- {tid}: {t.status.name} bounty={t.bounty} submitter={t.submitter} "
            f"submissions={len(t.submitters)} findings={len(t.findings)} "
            f"paid=[{paid}] refunded={t.refunded}"
        )
    print("\nAgents:")
    for aid, a in sorted(state.agents.items()):
        if a.expires_at is not None:
            validity = f"expires_at={a.expires_at}"
        else:
            validity = f"active={a.active}"
        print(f"- {aid}: registered={a.registered} {validity} earned={a.earned}")


def _print_settings(settings: MarketSettings) -> None:
    print(f"market_id={settings.market_id}")
    print(f"owner={settings.owner}")
    print(f"validity_mode={settings.validity_mode.value}")
    print(f"registration_fee={settings.registration_fee}")
    print(f"subscription_duration={settings.subscription_duration}")
    print(f"payout_weighting={settings.payout_weighting.value}")
    print(f"ledger_path={settings.ledger_path}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="audit-market")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sim_p = sub.add_parser("simulate", help="play a YAML scenario against a fresh market")
    sim_p.add_argument("--scenario", type=_scenario_path, required=True)
    sim_p.add_argument(
        "--ledger",
        type=Path,
        default=None,
        help="write the event ledger to this JSONL file (default: keep in memory)",
    )
    sim_p.add_argument("--overwrite", action="store_true")

    report_p = sub.add_parser("report", help="replay an event ledger and print market state")
    report_p.add_argument("--ledger", type=_existing_path, required=True)

    verify_p = sub.add_parser("verify", help="verify ledger hash chain and escrow conservation")
    verify_p.add_argument("--ledger", type=_existing_path, required=True)

    config_p = sub.add_parser("config", help="configuration utilities")
    config_sub = config_p.add_subparsers(dest="config_cmd", required=True)
    validate_p = config_sub.add_parser("validate", help="validate configuration")
    validate_p.add_argument(
        "--scenario",
        type=Path,
        default=None,
        help="scenario YAML to validate",
    )

    args = parser.parse_args(argv)
    settings = load_settings()

    if args.cmd == "config":
        if args.config_cmd == "validate":
            issues: list[str] = []
            checks_passed = 0

            env_path = repo_root() / ".env"
            if env_path.exists():
                print(f"✓ .env file found: {env_path}")
                checks_passed += 1
            else:
                print(f"- no .env at {env_path}, using environment/defaults")

            _print_settings(settings)
            checks_passed += 1

            if args.scenario:
                scenario_path = Path(args.scenario)
                if not scenario_path.exists():
                    issues.append(f"✗ Scenario file not found: {scenario_path}")
                else:
                    try:
                        scenario = load_scenario(scenario_path)
                        print(f"✓ Scenario file valid: {scenario.scenario_id}")
                        print(f"  - {len(scenario.steps)} steps, {len(scenario.accounts)} accounts")
                        checks_passed += 1
                    except ValueError as e:
                        issues.append(f"✗ Scenario file invalid: {e}")

            print()
            if issues:
                print("Issues found:")
                for issue in issues:
                    print(f"  {issue}")
                print(f"\n{checks_passed} checks passed, {len(issues)} issues found")
                return 1
            print(f"✓ All {checks_passed} checks passed")
            return 0
        raise AssertionError(f"unhandled config_cmd: {args.config_cmd}")

    if args.cmd == "simulate":
        scenario = load_scenario(Path(args.scenario))
        ledger = None
        if args.ledger is not None:
            ledger_path = Path(args.ledger)
            if ledger_path.exists() and ledger_path.stat().st_size > 0 and not args.overwrite:
                raise SystemExit(f"ledger already exists: {ledger_path} (pass --overwrite)")
            ledger = HashChainedLedger(ledger_path, overwrite=True)
        try:
            result = run_scenario(scenario, settings=settings, ledger=ledger)
        except ValueError as e:
            print(f"✗ {scenario.scenario_id}: {e}")
            return 1

        rejected = sum(1 for o in result.outcomes if not o.ok)
        print(
            f"✓ {scenario.scenario_id}: {len(result.outcomes)} steps "
            f"({rejected} expected rejections)"
        )
        result.market.ledger.verify_chain()
        state = replay_ledger(events=list(result.market.ledger.iter_events()))
        print()
        _print_report(state=state)
        if args.ledger is not None:
            print(f"\nLedger: {args.ledger}")
            print(f"Full report: audit-market report --ledger {args.ledger}")
        return 0

    if args.cmd == "report":
        ledger = HashChainedLedger(Path(args.ledger))
        state = replay_ledger(events=list(ledger.iter_events()))
        _print_report(state=state)
        return 0

    if args.cmd == "verify":
        ledger = HashChainedLedger(Path(args.ledger))
        try:
            ledger.verify_chain()
        except ValueError as e:
            print(f"✗ {e}")
            return 1
        events = list(ledger.iter_events())
        if not events:
            print("✓ empty ledger")
            return 0
        state = replay_ledger(events=events)
        bad = unbalanced_tasks(state)
        if bad:
            print(f"✗ escrow not conserved for: {', '.join(bad)}")
            return 1
        print(f"✓ {len(events)} events verified, {len(state.tasks)} tasks balanced")
        return 0

    raise AssertionError(f"unhandled cmd: {args.cmd}")
