from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from audit_market.findings import decode_findings
from audit_market.schemas import Payout, PayoutPlan, PayoutWeighting


@dataclass(frozen=True)
class SettlementPolicy:
    weighting: PayoutWeighting = PayoutWeighting.EQUAL


def payout_weight(findings_value: str, *, weighting: PayoutWeighting) -> int:
    if weighting == PayoutWeighting.EQUAL:
        return 1
    return decode_findings(findings_value)


def plan_payouts(
    *,
    bounty: int,
    findings: Mapping[str, str],
    weighting: PayoutWeighting = PayoutWeighting.EQUAL,
) -> PayoutPlan:
    """Split `bounty` across the recorded findings holders.

    Holders are paid in recording order. EQUAL pays every holder
    ``bounty // len(findings)``; PROPORTIONAL pays ``bounty * w // sum(w)``
    where ``w`` is the count encoded in the findings value. Integer division
    leaves a remainder (< number of holders) that the caller returns to the
    task submitter, so ``distributed + remainder == bounty`` always holds.
    """
    if bounty < 0:
        raise ValueError("bounty must be >= 0")
    if not findings:
        raise ValueError("cannot plan payouts without findings")

    weights = {
        agent_id: payout_weight(value, weighting=weighting) for agent_id, value in findings.items()
    }
    total_weight = sum(weights.values())
    if total_weight <= 0:
        raise ValueError("findings carry no payout weight")

    payouts: list[Payout] = []
    if weighting == PayoutWeighting.EQUAL:
        share = bounty // len(findings)
        for agent_id, value in findings.items():
            payouts.append(Payout(agent_id=agent_id, findings_value=value, weight=1, amount=share))
    else:
        for agent_id, value in findings.items():
            w = weights[agent_id]
            payouts.append(
                Payout(
                    agent_id=agent_id,
                    findings_value=value,
                    weight=w,
                    amount=bounty * w // total_weight,
                )
            )

    distributed = sum(p.amount for p in payouts)
    return PayoutPlan(
        bounty=bounty,
        weighting=weighting,
        payouts=payouts,
        remainder=bounty - distributed,
    )
