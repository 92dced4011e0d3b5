"""
Decision orchestrator

Runs the review checks over one submitted claim in a fixed order

    flight_time -> premium_pay -> compliance -> final decision

and folds their results into a single FinalDecision.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from claim_checks import amount_check, compliance_check, eligibility_check
from crew_models import AgentResult, FinalDecision, ReviewInput


Check = Callable[[ReviewInput, Optional[Dict]], AgentResult]

DEFAULT_CHECKS: List[Tuple[str, Check]] = [
    ("flight_time", eligibility_check),
    ("premium_pay", amount_check),
    ("compliance", compliance_check),
]

FLAG_CONFIDENCE = 0.7

RECOMMENDATIONS = {
    "approved": "APPROVE - All validation checks passed",
    "flagged": "RECOMMEND: Request Additional Information",
    "rejected": "REJECT - Validation failed",
}

STAGE_ICONS = {"flight_time": "🔍", "premium_pay": "💰", "compliance": "🛡️"}


@dataclass
class OrchestratorState:
    input: ReviewInput
    results: Dict[str, AgentResult] = field(default_factory=dict)
    all_results: List[AgentResult] = field(default_factory=list)
    final_decision: Optional[FinalDecision] = None


def aggregate_results(
    claim_id: str,
    results: Sequence[AgentResult],
    contract_references: Sequence[str] = (),
    flag_confidence: float = FLAG_CONFIDENCE,
) -> FinalDecision:
    """any error -> rejected; any flagged or mean confidence below the bar -> flagged."""
    confidences = [r.confidence for r in results if r.confidence is not None]
    overall_confidence = sum(confidences) / len(confidences) if confidences else 0.5

    if any(r.status == "error" for r in results):
        overall_status = "rejected"
    elif any(r.status == "flagged" for r in results) or overall_confidence < flag_confidence:
        overall_status = "flagged"
    else:
        overall_status = "approved"

    issues = [issue for r in results for issue in (r.issues or [])]

    return FinalDecision(
        claim_id=claim_id,
        overall_status=overall_status,
        confidence=overall_confidence,
        processing_time=sum(r.duration for r in results),
        recommendation=RECOMMENDATIONS[overall_status],
        agent_results=list(results),
        issues=issues,
        contract_references=list(dict.fromkeys(contract_references)),
    )


class DecisionOrchestrator:
    """Runs a fixed, ordered list of checks and aggregates their results."""

    def __init__(self, checks: Sequence[Tuple[str, Check]] = None, cfg: Optional[Dict] = None):
        self.checks = list(checks if checks is not None else DEFAULT_CHECKS)
        self.cfg = cfg
        review_cfg = (cfg or {}).get("review") or {}
        self.flag_confidence = review_cfg.get("flag_confidence", FLAG_CONFIDENCE)

    def _run_check(self, state: OrchestratorState, name: str, check: Check) -> OrchestratorState:
        print(f"{STAGE_ICONS.get(name, '▶️')} Running {name} check...")
        result = check(state.input, self.cfg)
        if not isinstance(result, AgentResult):
            raise TypeError(f"check '{name}' returned {type(result).__name__}, expected AgentResult")
        state.results[name] = result
        state.all_results.append(result)
        return state

    def _final_decision(self, state: OrchestratorState) -> OrchestratorState:
        print("⚖️ Making final decision...")
        references = [
            ref
            for r in state.all_results
            for ref in (r.data or {}).get("contract_references", [])
        ]
        state.final_decision = aggregate_results(
            state.input.claim.id, state.all_results, references, self.flag_confidence
        )
        return state

    def orchestrate(self, review: ReviewInput) -> FinalDecision:
        """Never raises: an internal failure becomes a rejected decision."""
        claim_label = review.claim.claim_number or review.claim.id
        print(f"\n🚀 Starting claim validation for {claim_label}...")
        started = time.perf_counter()

        try:
            state = OrchestratorState(input=review)
            for name, check in self.checks:
                state = self._run_check(state, name, check)
            state = self._final_decision(state)

            decision = state.final_decision
            print(f"✅ Validation complete in {time.perf_counter() - started:.2f}s")
            print(f"📊 Decision: {decision.overall_status.upper()}")
            print(f"🎯 Confidence: {decision.confidence * 100:.1f}%")
            return decision
        except Exception as e:
            print(f"❌ Orchestrator error: {e}")
            return FinalDecision(
                claim_id=review.claim.id,
                overall_status="rejected",
                confidence=0.0,
                processing_time=time.perf_counter() - started,
                recommendation="ERROR - Failed to process claim",
                agent_results=[
                    AgentResult(
                        agent_type="orchestrator",
                        agent_name="Orchestrator",
                        status="error",
                        confidence=0.0,
                        summary="Orchestration failed",
                        details=[str(e) or type(e).__name__],
                    )
                ],
            )


def orchestrate_claim_validation(review: ReviewInput, cfg: Optional[Dict] = None) -> FinalDecision:
    return DecisionOrchestrator(cfg=cfg).orchestrate(review)
