import sys
import os
from datetime import date

import pytest

# add src to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from crew_models import AgentResult, ReviewInput, SubmittedClaim, Trip
from decision_orchestrator import DecisionOrchestrator, aggregate_results, orchestrate_claim_validation


CLAIM = SubmittedClaim(
    id="CLM-1",
    crew_id="FA001",
    claim_type="Per Diem",
    amount=15.90,
    claim_date=date(2025, 3, 11),
    trip_id="T100",
    contract_reference="CBA Section 8.A",
    notes="Per diem for ORD-LAX",
)

TRIP = Trip(
    id="T100",
    trip_date=date(2025, 3, 10),
    route="ORD-LAX",
    departure_time="08:00",
    arrival_time="12:00",
    flight_time_hours=4.0,
    senior_fa_id="FA001",
)


def result(status, confidence, name="check"):
    return AgentResult(agent_type=name, agent_name=name, status=status, confidence=confidence, summary=status)


def fixed(status, confidence, name):
    return lambda review, cfg: result(status, confidence, name)


def test_flagged_result_flags_the_decision():
    decision = aggregate_results(
        "CLM-1",
        [result("approved", 0.9), result("approved", 0.95), result("flagged", 0.6)],
    )
    assert decision.overall_status == "flagged"
    assert decision.confidence == pytest.approx(0.8167, abs=1e-4)


def test_any_error_rejects_regardless_of_confidence():
    decision = aggregate_results("CLM-1", [result("approved", 1.0), result("error", 0.99)])
    assert decision.overall_status == "rejected"


def test_low_mean_confidence_flags():
    decision = aggregate_results("CLM-1", [result("approved", 0.6), result("approved", 0.7)])
    assert decision.overall_status == "flagged"


def test_all_approved():
    decision = aggregate_results("CLM-1", [result("approved", 0.9)], ["CBA 8.A", "CBA 8.A"])
    assert decision.overall_status == "approved"
    assert decision.contract_references == ["CBA 8.A"]


def test_no_results_defaults_to_half_confidence():
    decision = aggregate_results("CLM-1", [])
    assert decision.confidence == 0.5
    assert decision.overall_status == "flagged"


def test_checks_run_in_order():
    checks = [
        ("flight_time", fixed("approved", 0.9, "flight_time")),
        ("premium_pay", fixed("approved", 0.95, "premium_pay")),
        ("compliance", fixed("flagged", 0.6, "compliance")),
    ]
    decision = DecisionOrchestrator(checks).orchestrate(ReviewInput(claim=CLAIM))

    assert [r.agent_type for r in decision.agent_results] == ["flight_time", "premium_pay", "compliance"]
    assert decision.overall_status == "flagged"


def test_check_exception_becomes_degraded_rejection():
    def broken(review, cfg):
        raise RuntimeError("calculator crashed")

    checks = [("flight_time", fixed("approved", 0.9, "flight_time")), ("premium_pay", broken)]
    decision = DecisionOrchestrator(checks).orchestrate(ReviewInput(claim=CLAIM))

    assert decision.overall_status == "rejected"
    assert decision.confidence == 0.0
    assert len(decision.agent_results) == 1
    assert decision.agent_results[0].agent_type == "orchestrator"
    assert decision.agent_results[0].status == "error"
    assert decision.agent_results[0].details == ["calculator crashed"]


def test_check_returning_wrong_type_is_degraded():
    checks = [("flight_time", lambda review, cfg: {"status": "approved"})]
    decision = DecisionOrchestrator(checks).orchestrate(ReviewInput(claim=CLAIM))
    assert decision.overall_status == "rejected"
    assert "expected AgentResult" in decision.agent_results[0].details[0]


def test_default_checks_on_a_clean_claim():
    decision = orchestrate_claim_validation(ReviewInput(claim=CLAIM, trip=TRIP, as_of=date(2025, 3, 20)))

    assert decision.overall_status == "approved"
    assert [r.agent_type for r in decision.agent_results] == ["flight_time", "premium_pay", "compliance"]
    assert decision.contract_references == ["CBA Section 8.A - Per Diem"]
    assert decision.to_dict()["claim_id"] == "CLM-1"


def test_default_checks_reject_zero_amount():
    claim = SubmittedClaim(id="CLM-2", crew_id="FA001", claim_type="Per Diem", amount=0, claim_date=date(2025, 3, 11), trip_id="T100")
    decision = orchestrate_claim_validation(ReviewInput(claim=claim, trip=TRIP, as_of=date(2025, 3, 20)))
    assert decision.overall_status == "rejected"
