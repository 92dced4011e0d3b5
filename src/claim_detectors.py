"""
Proactive claim detectors

Each detector inspects one completed trip and proposes at most one pay claim.
Detectors are pure: they never raise for odd trip data, they return None
("no entitlement") instead.
"""

import math
from typing import Callable, Dict, List, Optional, Tuple

from config_loader import DEFAULTS
from crew_models import CandidateClaim, Trip


PER_DIEM = "Per Diem"
INTERNATIONAL_PREMIUM = "International Premium"
IROP_EXTENDED_DUTY = "IROP Extended Duty"
HOLIDAY_PREMIUM = "Holiday Premium"


def _section(cfg: Optional[Dict], name: str) -> Dict:
    return (cfg or DEFAULTS).get(name) or DEFAULTS[name]


def _parse_clock(value) -> Optional[float]:
    """'HH:MM' -> fractional hours, None when unparsable."""
    try:
        hours, minutes = str(value).strip().split(":")[:2]
        h, m = int(hours), int(minutes)
    except (ValueError, AttributeError):
        return None
    if not (0 <= h <= 24 and 0 <= m < 60):
        return None
    return h + m / 60


def _hours(value) -> Optional[float]:
    try:
        hours = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(hours) or math.isinf(hours) or hours < 0:
        return None
    return hours


def duty_period_hours(trip: Trip, cfg: Optional[Dict] = None) -> Optional[float]:
    """Check-in to check-out span. Overnight trips wrap past midnight."""
    pd = _section(cfg, "per_diem")
    dep = _parse_clock(trip.departure_time)
    arr = _parse_clock(trip.arrival_time)
    if dep is None or arr is None:
        return None

    check_in = dep - pd["check_in_offset_hours"]
    check_out = arr + pd["check_out_offset_hours"]
    hours = check_out - check_in
    if hours < 0:
        hours += 24
    return hours


def detect_per_diem(trip: Trip, cfg: Optional[Dict] = None) -> Optional[CandidateClaim]:
    """Per diem on Time Away From Base (TAFB)."""
    pd = _section(cfg, "per_diem")
    tafb_hours = duty_period_hours(trip, cfg)
    if tafb_hours is None or not trip.crew_id:
        return None

    # short international TAFB is most likely a two-day pairing
    if trip.is_international and tafb_hours < pd["international_min_tafb_hours"]:
        tafb_hours += 24

    rate = pd["international_rate"] if trip.is_international else pd["domestic_rate"]
    amount = round(tafb_hours * rate, 2)
    if amount < pd["minimum_amount"]:
        return None

    return CandidateClaim(
        crew_id=trip.crew_id,
        claim_type=PER_DIEM,
        trip_id=trip.id,
        amount=amount,
        description=f"Per diem for {trip.route} - {tafb_hours:.1f} hours TAFB @ ${rate}/hr",
        detection_method="auto:per_diem_calculator",
        confidence=95,
        supporting_data={
            "tafb_hours": round(tafb_hours, 2),
            "rate": rate,
            "trip_type": "international" if trip.is_international else "domestic",
        },
    )


def detect_international_premium(trip: Trip, cfg: Optional[Dict] = None) -> Optional[CandidateClaim]:
    """Block-time override for international flying, with a minimum payment."""
    if not trip.is_international or not trip.crew_id:
        return None

    ip = _section(cfg, "international_premium")
    block_time = _hours(trip.flight_time_hours)
    if block_time is None:
        return None

    amount = max(block_time * ip["per_hour"], ip["minimum"])

    return CandidateClaim(
        crew_id=trip.crew_id,
        claim_type=INTERNATIONAL_PREMIUM,
        trip_id=trip.id,
        amount=round(amount, 2),
        description=(
            f"International premium for {trip.route} - {block_time:.1f} block hours "
            f"@ ${ip['per_hour']}/hr (min ${ip['minimum']})"
        ),
        detection_method="auto:international_premium_detector",
        confidence=98,
        supporting_data={"block_time": block_time, "rate": ip["per_hour"], "minimum": ip["minimum"]},
    )


def _duty_tier(duty_hours: float, tiers: List[Dict]) -> Optional[Dict]:
    exceeded = None
    for tier in sorted(tiers, key=lambda t: t["threshold_hours"]):
        if duty_hours > tier["threshold_hours"]:
            exceeded = tier
    return exceeded


def detect_extended_duty(trip: Trip, cfg: Optional[Dict] = None) -> Optional[CandidateClaim]:
    """IROP premium on duty hours beyond the exceeded threshold."""
    ed = _section(cfg, "extended_duty")
    duty_hours = duty_period_hours(trip, cfg)
    if duty_hours is None or not trip.crew_id:
        return None

    tier = _duty_tier(duty_hours, ed["tiers"])
    if tier is None:
        return None

    multiplier = tier["multiplier"]
    excess_hours = duty_hours - tier["threshold_hours"]
    amount = round(excess_hours * ed["base_rate"] * (multiplier - 1), 2)
    if amount <= 0:
        return None

    return CandidateClaim(
        crew_id=trip.crew_id,
        claim_type=IROP_EXTENDED_DUTY,
        trip_id=trip.id,
        amount=amount,
        description=(
            f"Extended duty pay for {trip.route} - duty period {duty_hours:.1f} hours "
            f"({multiplier}x rate beyond {tier['label']})"
        ),
        detection_method="auto:irop_detector",
        confidence=90,
        supporting_data={
            "duty_hours": round(duty_hours, 2),
            "threshold": tier["label"],
            "multiplier": multiplier,
            "irop_hours": round(excess_hours, 2),
        },
    )


def holiday_name(day, cfg: Optional[Dict] = None) -> Optional[str]:
    holidays = {str(k): v for k, v in ((cfg or DEFAULTS).get("holidays") or {}).items()}
    return holidays.get(day.isoformat() if hasattr(day, "isoformat") else str(day)[:10])


def detect_holiday_premium(trip: Trip, cfg: Optional[Dict] = None) -> Optional[CandidateClaim]:
    """100% premium on block hours flown on a designated holiday."""
    if not trip.crew_id or trip.trip_date is None:
        return None

    name = holiday_name(trip.trip_date, cfg)
    if not name:
        return None

    hp = _section(cfg, "holiday_premium")
    block_time = _hours(trip.flight_time_hours)
    if block_time is None:
        return None

    amount = round(block_time * hp["base_rate"] * hp["premium_rate"], 2)
    if amount <= 0:
        return None

    return CandidateClaim(
        crew_id=trip.crew_id,
        claim_type=HOLIDAY_PREMIUM,
        trip_id=trip.id,
        amount=amount,
        description=f"Holiday premium for {name} - {block_time:.1f} block hours @ 100% premium",
        detection_method="auto:holiday_pay_detector",
        confidence=99,
        supporting_data={
            "holiday": name,
            "holiday_date": trip.trip_date.isoformat(),
            "block_time": block_time,
            "premium_rate": hp["premium_rate"],
        },
    )


Detector = Callable[[Trip, Optional[Dict]], Optional[CandidateClaim]]

DETECTORS: List[Tuple[str, Detector]] = [
    (PER_DIEM, detect_per_diem),
    (INTERNATIONAL_PREMIUM, detect_international_premium),
    (IROP_EXTENDED_DUTY, detect_extended_duty),
    (HOLIDAY_PREMIUM, detect_holiday_premium),
]


def detect_all(trip: Trip, cfg: Optional[Dict] = None, detectors: List[Tuple[str, Detector]] = None) -> List[CandidateClaim]:
    """Run every detector; one failing detector never stops the others."""
    claims: List[CandidateClaim] = []
    for name, detector in detectors or DETECTORS:
        try:
            claim = detector(trip, cfg)
        except Exception as e:
            print(f"  ⚠️ Detector '{name}' failed for trip {getattr(trip, 'id', '?')}: {e}")
            continue
        if claim is not None:
            claims.append(claim)
    return claims
