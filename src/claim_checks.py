"""
Claim review checks

Three independent checks run over one submitted claim at review time:

* flight time  - is the crew member eligible for this claim on this trip
* premium pay  - is the amount what the pay rules produce
* compliance   - high-value, duplicate and policy checks

Each returns an AgentResult with status approved / flagged / error and a
confidence in 0.0-1.0.
"""

import time
from datetime import date
from functools import wraps
from typing import Callable, Dict, List, Optional

from rapidfuzz.distance import JaroWinkler

from claim_detectors import (
    HOLIDAY_PREMIUM,
    INTERNATIONAL_PREMIUM,
    IROP_EXTENDED_DUTY,
    PER_DIEM,
    detect_extended_duty,
    detect_holiday_premium,
    detect_international_premium,
    detect_per_diem,
    holiday_name,
)
from config_loader import DEFAULTS
from crew_models import AgentResult, ReviewInput


RECALCULATORS = {
    PER_DIEM: detect_per_diem,
    INTERNATIONAL_PREMIUM: detect_international_premium,
    IROP_EXTENDED_DUTY: detect_extended_duty,
    HOLIDAY_PREMIUM: detect_holiday_premium,
}

CONTRACT_REFERENCES = {
    PER_DIEM: ["CBA Section 8.A - Per Diem"],
    INTERNATIONAL_PREMIUM: ["CBA Section 3.D - International Override"],
    IROP_EXTENDED_DUTY: ["CBA Section 12.C - Extended Duty Premium"],
    HOLIDAY_PREMIUM: ["CBA Section 3.H - Holiday Pay"],
}

ROLE_CLAIM_TYPES = {
    "Captain": [INTERNATIONAL_PREMIUM, PER_DIEM, "Layover Premium", HOLIDAY_PREMIUM, IROP_EXTENDED_DUTY],
    "First Officer": [INTERNATIONAL_PREMIUM, PER_DIEM, "Layover Premium", HOLIDAY_PREMIUM, IROP_EXTENDED_DUTY],
    "Senior Flight Attendant": [PER_DIEM, "Layover Premium", "Lead Premium", HOLIDAY_PREMIUM, INTERNATIONAL_PREMIUM, IROP_EXTENDED_DUTY],
    "Flight Attendant": [PER_DIEM, "Layover Premium", HOLIDAY_PREMIUM, IROP_EXTENDED_DUTY],
}

BLOCKING = ("critical", "high", "medium")


def _review_cfg(cfg: Optional[Dict]) -> Dict:
    return (cfg or DEFAULTS).get("review") or DEFAULTS["review"]


def _issue(agent: str, severity: str, message: str) -> Dict:
    return {"agent": agent, "severity": severity, "message": message}


def _status(issues: List[Dict]) -> str:
    if any(i["severity"] == "critical" for i in issues):
        return "error"
    if any(i["severity"] in BLOCKING for i in issues):
        return "flagged"
    return "approved"


def _clamp(confidence: float) -> float:
    return round(max(0.0, min(1.0, confidence)), 4)


def timed_check(func: Callable[[ReviewInput, Optional[Dict]], AgentResult]):
    """Record the check's wall-clock duration (seconds) on its result."""

    @wraps(func)
    def wrapper(review: ReviewInput, cfg: Optional[Dict] = None) -> AgentResult:
        started = time.perf_counter()
        result = func(review, cfg)
        result.duration = round(time.perf_counter() - started, 6)
        return result

    return wrapper


@timed_check
def eligibility_check(review: ReviewInput, cfg: Optional[Dict] = None) -> AgentResult:
    agent = "flight_time"
    claim, trip = review.claim, review.trip
    rcfg = _review_cfg(cfg)
    issues: List[Dict] = []
    details: List[str] = []
    confidence = 0.95

    if trip is None:
        if claim.claim_type in RECALCULATORS or claim.trip_id:
            issues.append(_issue(agent, "high", f"Trip {claim.trip_id or '(none)'} not found for {claim.claim_type}"))
            confidence -= 0.3
    else:
        details.append(f"Trip {trip.id} {trip.route} on {trip.trip_date.isoformat()}")
        if trip.status != "completed":
            issues.append(_issue(agent, "high", f"Trip {trip.id} is {trip.status}, not completed"))
            confidence -= 0.3

        crew = {trip.captain_id, trip.first_officer_id, trip.senior_fa_id, trip.junior_fa_id} - {None}
        if crew and claim.crew_id not in crew:
            issues.append(_issue(agent, "high", f"Crew {claim.crew_id} was not assigned to trip {trip.id}"))
            confidence -= 0.25

        if claim.claim_type == INTERNATIONAL_PREMIUM and not trip.is_international:
            issues.append(_issue(agent, "high", "International premium claimed on a domestic trip"))
            confidence -= 0.4
        elif claim.claim_type == HOLIDAY_PREMIUM and not holiday_name(trip.trip_date, cfg):
            issues.append(_issue(agent, "high", f"{trip.trip_date.isoformat()} is not a designated holiday"))
            confidence -= 0.4
        elif claim.claim_type == IROP_EXTENDED_DUTY and detect_extended_duty(trip, cfg) is None:
            issues.append(_issue(agent, "medium", "Duty period does not exceed the 12:30 threshold"))
            confidence -= 0.3

    as_of = review.as_of or date.today()
    age_days = (as_of - claim.claim_date).days
    if age_days > rcfg["retroactive_days"]:
        issues.append(_issue(agent, "medium", f"Retroactive claim: {age_days} days old"))
        confidence -= 0.2
    else:
        details.append(f"Claim age {age_days} days")

    status = _status(issues)
    return AgentResult(
        agent_type=agent,
        agent_name="Flight Time Calculator",
        status=status,
        confidence=_clamp(confidence),
        summary="Eligibility verified" if status == "approved" else f"{len(issues)} eligibility issue(s)",
        details=details,
        issues=issues,
    )


@timed_check
def amount_check(review: ReviewInput, cfg: Optional[Dict] = None) -> AgentResult:
    agent = "premium_pay"
    claim, trip = review.claim, review.trip
    rcfg = _review_cfg(cfg)
    issues: List[Dict] = []
    details: List[str] = []
    confidence = 0.95
    data: Dict = {"contract_references": list(CONTRACT_REFERENCES.get(claim.claim_type, []))}

    if claim.amount <= 0:
        issues.append(_issue(agent, "critical", f"Invalid claim amount ${claim.amount:,.2f}"))
        return AgentResult(
            agent_type=agent,
            agent_name="Premium Pay Calculator",
            status="error",
            confidence=0.0,
            summary="Amount must be greater than $0",
            issues=issues,
            data=data,
        )

    recalculate = RECALCULATORS.get(claim.claim_type)
    if recalculate is not None and trip is not None:
        expected = recalculate(trip, cfg)
        if expected is None:
            issues.append(_issue(agent, "high", f"Pay rules produce no {claim.claim_type} for trip {trip.id}"))
            confidence -= 0.4
        else:
            data["expected_amount"] = expected.amount
            diff = round(claim.amount - expected.amount, 2)
            if abs(diff) > rcfg["amount_tolerance"]:
                issues.append(
                    _issue(agent, "medium", f"Claimed ${claim.amount:,.2f} vs calculated ${expected.amount:,.2f} (diff ${diff:,.2f})")
                )
                confidence -= 0.25
            else:
                details.append(f"Amount matches calculation (${expected.amount:,.2f})")
    else:
        amount_range = rcfg["expected_ranges"].get(claim.claim_type)
        if amount_range is None:
            issues.append(_issue(agent, "medium", f"Unusual claim type: {claim.claim_type}"))
            confidence -= 0.2
        elif not amount_range[0] <= claim.amount <= amount_range[1]:
            issues.append(
                _issue(agent, "medium", f"Amount ${claim.amount:,.2f} outside expected range ${amount_range[0]}-${amount_range[1]}")
            )
            confidence -= 0.15
        else:
            details.append(f"Amount within expected range ${amount_range[0]}-${amount_range[1]}")

    status = _status(issues)
    return AgentResult(
        agent_type=agent,
        agent_name="Premium Pay Calculator",
        status=status,
        confidence=_clamp(confidence),
        summary="Amount verified" if status == "approved" else f"{len(issues)} amount issue(s)",
        details=details,
        issues=issues,
        data=data,
    )


def _similar(a: Optional[str], b: Optional[str]) -> float:
    if not a or not b:
        return 0.0
    return JaroWinkler.normalized_similarity(a.strip().upper(), b.strip().upper())


@timed_check
def compliance_check(review: ReviewInput, cfg: Optional[Dict] = None) -> AgentResult:
    agent = "compliance"
    claim = review.claim
    rcfg = _review_cfg(cfg)
    issues: List[Dict] = []
    details: List[str] = []
    confidence = 0.9

    if claim.amount > rcfg["high_value_limit"]:
        issues.append(_issue(agent, "critical", f"Claims over ${rcfg['high_value_limit']:,.0f} require the manual approval process"))
        return AgentResult(
            agent_type=agent,
            agent_name="Compliance Validator",
            status="error",
            confidence=0.0,
            summary="Exceeds automated review limit",
            issues=issues,
        )
    if claim.amount > rcfg["high_value_flag"]:
        issues.append(_issue(agent, "medium", f"High-value claim ${claim.amount:,.2f} requires VP approval"))
        confidence -= 0.15

    duplicates = []
    for prior in review.history:
        if prior.id == claim.id or prior.crew_id != claim.crew_id or prior.claim_type != claim.claim_type:
            continue
        if claim.trip_id and prior.trip_id == claim.trip_id:
            duplicates.append(prior.id)
        elif (
            abs((prior.claim_date - claim.claim_date).days) <= rcfg["duplicate_window_days"]
            and _similar(prior.notes, claim.notes) >= rcfg["duplicate_similarity"]
        ):
            duplicates.append(prior.id)
    if duplicates:
        issues.append(_issue(agent, "high", f"Potential duplicate of {', '.join(duplicates)}"))
        confidence -= 0.3
    else:
        details.append(f"No duplicates among {len(review.history)} prior claims")

    if not claim.contract_reference:
        issues.append(_issue(agent, "low", "No contract reference provided"))
        confidence -= 0.15
    else:
        details.append(f"Contract reference: {claim.contract_reference}")

    allowed = ROLE_CLAIM_TYPES.get(claim.crew_role or "")
    if allowed and claim.claim_type not in allowed:
        issues.append(_issue(agent, "low", f"Claim type {claim.claim_type} unusual for role {claim.crew_role}"))
        confidence -= 0.1

    status = _status(issues)
    return AgentResult(
        agent_type=agent,
        agent_name="Compliance Validator",
        status=status,
        confidence=_clamp(confidence),
        summary="Compliance checks passed" if status == "approved" else f"{len(issues)} compliance issue(s)",
        details=details,
        issues=issues,
    )
