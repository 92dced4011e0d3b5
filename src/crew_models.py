from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional


AUTO_APPROVE = "auto-approve"
MANUAL_REVIEW = "manual-review"
REJECT = "reject"
RECOMMENDATIONS = (AUTO_APPROVE, MANUAL_REVIEW, REJECT)

# pay_claims.status
STATUS_APPROVED = "approved"
STATUS_PENDING = "pending"
STATUS_REJECTED = "rejected"


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "t")
    return bool(value)


@dataclass
class Trip:
    id: str
    trip_date: date
    route: str
    departure_time: str
    arrival_time: str
    flight_time_hours: float = 0.0
    credit_hours: float = 0.0
    is_international: bool = False
    status: str = "completed"
    senior_fa_id: Optional[str] = None
    captain_id: Optional[str] = None
    first_officer_id: Optional[str] = None
    junior_fa_id: Optional[str] = None
    actual_departure_time: Optional[str] = None
    actual_arrival_time: Optional[str] = None

    @property
    def crew_id(self) -> Optional[str]:
        """The crew member claims are raised for."""
        return self.senior_fa_id or self.captain_id or self.first_officer_id or self.junior_fa_id

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Trip":
        return cls(
            id=str(row["id"]),
            trip_date=_as_date(row["trip_date"]),
            route=row.get("route") or "",
            departure_time=row.get("departure_time") or "",
            arrival_time=row.get("arrival_time") or "",
            flight_time_hours=float(row.get("flight_time_hours") or 0),
            credit_hours=float(row.get("credit_hours") or 0),
            is_international=_as_bool(row.get("is_international")),
            status=row.get("status") or "completed",
            senior_fa_id=row.get("senior_fa_id"),
            captain_id=row.get("captain_id"),
            first_officer_id=row.get("first_officer_id"),
            junior_fa_id=row.get("junior_fa_id"),
            actual_departure_time=row.get("actual_departure_time"),
            actual_arrival_time=row.get("actual_arrival_time"),
        )

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["trip_date"] = self.trip_date.isoformat()
        row["is_international"] = 1 if self.is_international else 0
        return row


@dataclass(frozen=True)
class CandidateClaim:
    crew_id: str
    claim_type: str
    trip_id: str
    amount: float
    description: str
    detection_method: str
    confidence: float  # 0-100
    supporting_data: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass
class Verdict:
    valid: bool
    confidence: float  # 0-100
    recommendation: str  # auto-approve|manual-review|reject
    reasoning: str
    contract_references: List[str] = field(default_factory=list)
    source: str = "ai"  # ai|fallback

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


@dataclass
class RunResult:
    trips_processed: int = 0
    claims_detected: int = 0
    claims_auto_approved: int = 0
    claims_manual_review: int = 0
    claims_rejected: int = 0
    total_amount_approved: float = 0.0
    errors: List[str] = field(default_factory=list)
    unprocessed_trip_ids: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_amount_approved"] = round(self.total_amount_approved, 2)
        return data


@dataclass
class SubmittedClaim:
    id: str
    crew_id: str
    claim_type: str
    amount: float
    claim_date: date
    trip_id: Optional[str] = None
    claim_number: Optional[str] = None
    contract_reference: Optional[str] = None
    notes: Optional[str] = None
    crew_role: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SubmittedClaim":
        refs = row.get("contract_references") or []
        reference = row.get("contract_reference") or (refs[0] if refs else None)
        return cls(
            id=str(row["id"]),
            crew_id=row.get("crew_id") or "",
            claim_type=row.get("claim_type") or "",
            amount=float(row.get("amount") or 0),
            claim_date=_as_date(row.get("claim_date") or date.today()),
            trip_id=row.get("trip_id"),
            claim_number=row.get("claim_number") or str(row["id"]),
            contract_reference=reference,
            notes=row.get("notes"),
            crew_role=row.get("crew_role"),
        )


@dataclass
class ReviewInput:
    claim: SubmittedClaim
    trip: Optional[Trip] = None
    history: List[SubmittedClaim] = field(default_factory=list)
    as_of: Optional[date] = None


@dataclass
class AgentResult:
    agent_type: str
    agent_name: str
    status: str  # approved|flagged|error
    confidence: float  # 0.0-1.0
    summary: str
    duration: float = 0.0
    details: List[str] = field(default_factory=list)
    issues: List[Dict[str, Any]] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FinalDecision:
    claim_id: str
    overall_status: str  # approved|flagged|rejected
    confidence: float
    processing_time: float
    recommendation: str
    agent_results: List[AgentResult] = field(default_factory=list)
    issues: List[Dict[str, Any]] = field(default_factory=list)
    contract_references: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
