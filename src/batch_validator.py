from dataclasses import dataclass, field, asdict
from functools import reduce
from typing import Dict, List, Sequence, Tuple

from claim_validator import ClaimValidator, fallback_validation
from crew_models import AUTO_APPROVE, MANUAL_REVIEW, REJECT, CandidateClaim, Trip, Verdict


ValidatedPair = Tuple[CandidateClaim, Verdict]

CONFIDENCE_BUCKETS = (("95-100", 95), ("80-94", 80), ("50-79", 50), ("0-49", 0))


@dataclass
class ValidationStats:
    total_claims: int = 0
    auto_approved: int = 0
    manual_review: int = 0
    rejected: int = 0
    avg_confidence: float = 0.0
    confidence_distribution: Dict[str, int] = field(default_factory=dict)
    fallback_rate: float = 0.0
    ai_success_rate: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


def _validate_one(validator: ClaimValidator, trip: Trip, pairs: List[ValidatedPair], claim: CandidateClaim) -> List[ValidatedPair]:
    try:
        verdict = validator.validate(claim, trip)
    except Exception as e:
        print(f"  ❌ Validation failed for claim {claim.claim_type}: {e}")
        verdict = fallback_validation(claim, validator.cfg)
    return pairs + [(claim, verdict)]


def validate_multiple(validator: ClaimValidator, claims: Sequence[CandidateClaim], trip: Trip) -> List[ValidatedPair]:
    """Validate claims one after another, always one verdict per claim, in input order."""
    return reduce(lambda pairs, claim: _validate_one(validator, trip, pairs, claim), claims, [])


def _bucket(confidence: float) -> str:
    for label, floor in CONFIDENCE_BUCKETS:
        if confidence >= floor:
            return label
    return CONFIDENCE_BUCKETS[-1][0]


def calculate_validation_stats(pairs: Sequence[ValidatedPair]) -> ValidationStats:
    stats = ValidationStats(confidence_distribution={label: 0 for label, _ in CONFIDENCE_BUCKETS})
    total_confidence = 0.0
    fallbacks = 0

    for _, verdict in pairs:
        if verdict.recommendation == AUTO_APPROVE:
            stats.auto_approved += 1
        elif verdict.recommendation == MANUAL_REVIEW:
            stats.manual_review += 1
        elif verdict.recommendation == REJECT:
            stats.rejected += 1
        total_confidence += verdict.confidence
        stats.confidence_distribution[_bucket(verdict.confidence)] += 1
        if verdict.is_fallback:
            fallbacks += 1

    total = len(pairs)
    stats.total_claims = total
    if total:
        stats.avg_confidence = round(total_confidence / total, 2)
        stats.fallback_rate = round(fallbacks / total * 100, 1)
        stats.ai_success_rate = round((total - fallbacks) / total * 100, 1)
    return stats
