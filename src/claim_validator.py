"""
AI claim validation

Asks Claude to check a detected claim against the CBA pay rules and map it to
auto-approve / manual-review / reject. Any failure on the AI path falls back
to local rule-based validation.
"""

import json
from typing import Dict, List, Optional

import requests
from pydantic import BaseModel, Field, ValidationError, field_validator

from config_loader import DEFAULTS
from crew_models import (
    AUTO_APPROVE,
    MANUAL_REVIEW,
    REJECT,
    CandidateClaim,
    Trip,
    Verdict,
)


CBA_RULES_CONTEXT = """
# Collective Bargaining Agreement (CBA) - Pay Rules Summary

## Per Diem
- Domestic: $2.25-$2.90/hour based on Time Away From Base (TAFB)
- International: $2.90-$5.00/hour based on TAFB
- Calculated from check-in to check-in (not just flight time)
- Non-taxable, not included in pension calculations

## International Premium
- Additional $3.00-$3.75/hour paid on block time (wheels up to wheels down)
- Minimum payment of $125 per international trip
- Taxable and pensionable
- Applies to all flights crossing international borders

## IROP (Irregular Operations) Premium
- 2x base rate for duty periods exceeding 12:30 hours
- 3x base rate for duty periods exceeding 16:00 hours
- Premium applies only to excess hours beyond threshold
- Duty period = check-in to check-out including delays

## Holiday Premium
- 100% premium (double rate) for flights operated on designated holidays
- Must actually fly - not just be on duty
- Applies to block hours flown on holiday date
- Designated holidays: New Year's Day, Independence Day, Thanksgiving, Christmas

## Calculation Hierarchy
- All applicable rigs calculated, highest value paid
- Trip rig: TAFB / 3.5 = credit hours
- Duty rig: Duty hours / 2 = credit hours
- Block or better: Scheduled vs actual, whichever greater
"""

FALLBACK_PREFIX = "Fallback validation (AI unavailable):"


class ReasoningClient:
    """Claude Messages API client."""

    def __init__(self, api_key: str, model: str = None, max_tokens: int = None, timeout: float = None):
        if not api_key:
            raise ValueError("api_key is required")
        vcfg = DEFAULTS["validation"]
        self.api_key = api_key
        self.model = model or vcfg["model"]
        self.max_tokens = max_tokens or vcfg["max_tokens"]
        self.timeout = timeout or vcfg["timeout_seconds"]
        self.base_url = "https://api.anthropic.com/v1/messages"
        self.headers = {
            "x-api-key": api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }

    def complete(self, prompt: str) -> str:
        data = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        response = requests.post(self.base_url, headers=self.headers, json=data, timeout=self.timeout)
        response.raise_for_status()

        body = response.json()
        blocks = body.get("content") if isinstance(body, dict) else None
        content = blocks[0] if isinstance(blocks, list) and blocks else None
        if not isinstance(content, dict) or content.get("type") != "text" or not isinstance(content.get("text"), str):
            raise ValueError("Unexpected response format from Claude")
        return content["text"]


class VerdictPayload(BaseModel):
    """Shape of the JSON Claude is asked to return."""

    valid: bool = True
    confidence: Optional[float] = None
    recommendation: Optional[str] = None
    reasoning: str = "AI validation completed"
    contract_references: List[str] = Field(default_factory=list)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v):
        if v is None:
            return v
        return max(0.0, min(100.0, float(v)))

    @field_validator("recommendation")
    @classmethod
    def _known_recommendation(cls, v):
        if v is not None and v not in (AUTO_APPROVE, MANUAL_REVIEW, REJECT):
            raise ValueError(f"unknown recommendation: {v}")
        return v


def build_validation_prompt(claim: CandidateClaim, trip: Trip) -> str:
    return f"""You are an expert in airline crew pay rules and collective bargaining agreements.
Your task is to validate whether this automatically detected pay claim is valid and correctly calculated.

CLAIM DETAILS:
- Type: {claim.claim_type}
- Amount: ${claim.amount}
- Crew ID: {claim.crew_id}
- Trip ID: {claim.trip_id}
- Description: {claim.description}
- Detection Method: {claim.detection_method}
- Supporting Data: {json.dumps(claim.supporting_data, indent=2, default=str)}

TRIP DETAILS:
- Route: {trip.route}
- Date: {trip.trip_date.isoformat()}
- Departure: {trip.departure_time}
- Arrival: {trip.arrival_time}
- Actual Departure: {trip.actual_departure_time or 'N/A'}
- Actual Arrival: {trip.actual_arrival_time or 'N/A'}
- Flight Time: {trip.flight_time_hours} hours
- Credit Hours: {trip.credit_hours} hours
- International: {'Yes' if trip.is_international else 'No'}
- Status: {trip.status}

CBA RULES:
{CBA_RULES_CONTEXT}

Please validate this claim by answering:
1. Is the claim type appropriate for this trip?
2. Is the calculation methodology correct according to CBA rules?
3. Is the calculated amount reasonable and within expected ranges?
4. Are there any potential issues or edge cases?

Respond in JSON format with:
{{
  "valid": true/false,
  "confidence": 0-100,
  "recommendation": "auto-approve" | "manual-review" | "reject",
  "reasoning": "Brief explanation of your decision",
  "contract_references": ["Section X.Y.Z", "Article A.B"]
}}

Guidelines:
- confidence > 95 = auto-approve (routine, clearly valid claims)
- confidence 80-95 = manual-review (valid but unusual or complex)
- confidence < 80 = manual-review or reject
- Always err on the side of caution for crew benefit"""


def extract_json_text(content: str) -> str:
    """Strip a ```json / ``` fence if Claude wrapped its answer in one."""
    if "```json" in content:
        return content.split("```json", 1)[1].split("```", 1)[0].strip()
    if "```" in content:
        return content.split("```", 1)[1].split("```", 1)[0].strip()
    return content.strip()


def parse_verdict(content: str, claim: CandidateClaim, cfg: Optional[Dict] = None) -> Verdict:
    """Decode Claude's answer. Raises ValueError / ValidationError on bad output."""
    raw = json.loads(extract_json_text(content))
    payload = VerdictPayload.model_validate(raw)

    vcfg = (cfg or DEFAULTS).get("validation") or DEFAULTS["validation"]
    confidence = payload.confidence if payload.confidence is not None else max(0.0, min(100.0, float(claim.confidence)))
    recommendation = payload.recommendation or MANUAL_REVIEW
    reasoning = payload.reasoning

    if (
        vcfg.get("enforce_auto_approve_threshold")
        and recommendation == AUTO_APPROVE
        and confidence <= vcfg["auto_approve_threshold"]
    ):
        recommendation = MANUAL_REVIEW
        reasoning += f" [auto-approve downgraded: confidence {confidence:g} <= {vcfg['auto_approve_threshold']}]"

    return Verdict(
        valid=payload.valid,
        confidence=confidence,
        recommendation=recommendation,
        reasoning=reasoning,
        contract_references=list(payload.contract_references),
        source="ai",
    )


def fallback_validation(claim: CandidateClaim, cfg: Optional[Dict] = None) -> Verdict:
    """Rule-based validation used when the AI path is unavailable."""
    vcfg = (cfg or DEFAULTS).get("validation") or DEFAULTS["validation"]
    valid = True
    confidence = max(0.0, min(100.0, float(claim.confidence)))
    recommendation = MANUAL_REVIEW
    reasoning = FALLBACK_PREFIX + " "

    if claim.amount <= 0:
        valid = False
        confidence = 0.0
        recommendation = REJECT
        reasoning += "Invalid amount (zero or negative). "
    elif claim.amount > vcfg["high_value_threshold"]:
        confidence = min(confidence, float(vcfg["high_value_confidence_cap"]))
        reasoning += "Unusually high amount, requires manual review. "
    elif confidence >= vcfg["auto_approve_threshold"]:
        recommendation = AUTO_APPROVE
        reasoning += "Routine claim with high confidence. "
    elif confidence >= vcfg["manual_review_threshold"]:
        reasoning += "Valid but below auto-approval threshold. "
    else:
        reasoning += "Low confidence, requires review. "

    return Verdict(
        valid=valid,
        confidence=confidence,
        recommendation=recommendation,
        reasoning=reasoning.strip(),
        contract_references=[],
        source="fallback",
    )


class ClaimValidator:
    """Validate detected claims with Claude, falling back to local rules."""

    def __init__(self, client: Optional[ReasoningClient] = None, cfg: Optional[Dict] = None):
        self.client = client
        self.cfg = cfg or DEFAULTS

    @classmethod
    def from_config(cls, api_key: Optional[str], cfg: Optional[Dict] = None) -> "ClaimValidator":
        cfg = cfg or DEFAULTS
        if not api_key:
            print("⚠️ ANTHROPIC_API_KEY not set - using fallback validation only")
            return cls(None, cfg)
        vcfg = cfg.get("validation") or DEFAULTS["validation"]
        client = ReasoningClient(
            api_key,
            model=vcfg.get("model"),
            max_tokens=vcfg.get("max_tokens"),
            timeout=vcfg.get("timeout_seconds"),
        )
        return cls(client, cfg)

    def validate(self, claim: CandidateClaim, trip: Trip) -> Verdict:
        if self.client is None:
            return fallback_validation(claim, self.cfg)

        try:
            content = self.client.complete(build_validation_prompt(claim, trip))
            return parse_verdict(content, claim, self.cfg)
        except (requests.RequestException, AttributeError, KeyError, IndexError, TypeError, ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            print(f"  ⚠️ AI validation error ({claim.claim_type}, trip {claim.trip_id}): {e}")
            return fallback_validation(claim, self.cfg)
