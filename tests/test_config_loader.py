import sys
import os
from datetime import date

import pytest

# add src to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from claim_detectors import holiday_name
from config_loader import DEFAULTS, load_pipeline_config


def test_missing_file_returns_defaults(tmp_path):
    assert load_pipeline_config(str(tmp_path / "nope.yml")) == DEFAULTS


def test_sections_merge_over_defaults(tmp_path):
    path = tmp_path / "pipeline.yml"
    path.write_text("per_diem:\n  domestic_rate: 3.0\nmonitor:\n  lookback_days: 14\n", encoding="utf-8")

    cfg = load_pipeline_config(str(path))

    assert cfg["per_diem"]["domestic_rate"] == 3.0
    assert cfg["per_diem"]["international_rate"] == DEFAULTS["per_diem"]["international_rate"]
    assert cfg["monitor"]["lookback_days"] == 14
    assert cfg["validation"] == DEFAULTS["validation"]
    assert DEFAULTS["per_diem"]["domestic_rate"] == 2.65


def test_holidays_replace_the_calendar(tmp_path):
    path = tmp_path / "pipeline.yml"
    path.write_text("holidays:\n  2026-12-25: Christmas\n", encoding="utf-8")

    cfg = load_pipeline_config(str(path))

    assert holiday_name(date(2026, 12, 25), cfg) == "Christmas"
    assert holiday_name(date(2025, 12, 25), cfg) is None


def test_env_var_selects_file(tmp_path, monkeypatch):
    path = tmp_path / "custom.yml"
    path.write_text("validation:\n  auto_approve_threshold: 97\n", encoding="utf-8")
    monkeypatch.setenv("CREW_PAY_CONFIG", str(path))

    assert load_pipeline_config()["validation"]["auto_approve_threshold"] == 97


def test_non_mapping_is_rejected(tmp_path):
    path = tmp_path / "pipeline.yml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_pipeline_config(str(path))


def test_shipped_config_loads():
    cfg = load_pipeline_config(os.path.join(os.path.dirname(__file__), "..", "config", "pipeline.yml"))
    assert holiday_name(date(2026, 11, 26), cfg) == "Thanksgiving"
    assert cfg["extended_duty"] == DEFAULTS["extended_duty"]
