import os
import yaml


DEFAULTS = {
    "per_diem": {
        "domestic_rate": 2.65,
        "international_rate": 3.50,
        "check_in_offset_hours": 1.5,
        "check_out_offset_hours": 0.5,
        "international_min_tafb_hours": 12.0,
        "minimum_amount": 10.0,
    },
    "international_premium": {"per_hour": 3.25, "minimum": 125.00},
    "extended_duty": {
        "base_rate": 50.0,
        "tiers": [
            {"threshold_hours": 12.5, "label": "12:30", "multiplier": 2.0},
            {"threshold_hours": 16.0, "label": "16:00", "multiplier": 3.0},
        ],
    },
    "holiday_premium": {"base_rate": 50.0, "premium_rate": 1.0},
    "holidays": {
        "2025-01-01": "New Year's Day",
        "2025-07-04": "Independence Day",
        "2025-11-27": "Thanksgiving",
        "2025-12-25": "Christmas",
    },
    "validation": {
        "model": "claude-sonnet-4-20250514",
        "max_tokens": 1024,
        "timeout_seconds": 60,
        "high_value_threshold": 5000.0,
        "high_value_confidence_cap": 85,
        "auto_approve_threshold": 95,
        "manual_review_threshold": 80,
        "enforce_auto_approve_threshold": True,
    },
    "monitor": {"lookback_days": 7, "interval_minutes": 60, "lock_timeout_seconds": 3600},
    "review": {
        "retroactive_days": 90,
        "high_value_flag": 5000.0,
        "high_value_limit": 10000.0,
        "amount_tolerance": 1.0,
        "flag_confidence": 0.7,
        "duplicate_window_days": 7,
        "duplicate_similarity": 0.85,
        "expected_ranges": {
            "Per Diem": [20, 300],
            "International Premium": [100, 1500],
            "IROP Extended Duty": [25, 1200],
            "Holiday Premium": [100, 2000],
            "Layover Premium": [50, 500],
            "Overtime": [50, 1000],
            "Training": [100, 1500],
            "Deadhead": [50, 800],
            "Lead Premium": [50, 500],
        },
    },
}


def _config_path() -> str:
    default = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "pipeline.yml")
    return os.getenv("CREW_PAY_CONFIG", default)


def load_pipeline_config(path: str = None) -> dict:
    try:
        with open(path or _config_path(), "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return DEFAULTS

    if not isinstance(cfg, dict):
        raise ValueError(f"pipeline config must be a mapping, got {type(cfg).__name__}")

    # shallow merge defaults
    merged = dict(DEFAULTS)
    for k, v in cfg.items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict) and k != "holidays":
            mv = dict(merged[k])
            mv.update(v)
            merged[k] = mv
        else:
            merged[k] = v
    return merged
