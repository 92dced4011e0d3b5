import sys
import os

# add src to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from environment_validator import EnvironmentValidator, validate_environment_quick


VALID_KEY = "sk-ant-REDACTED"


def clear_env(monkeypatch):
    for var in ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY", "SLACK_WEBHOOK_URL", "CREW_PAY_DB", "CREW_PAY_CONFIG", "DRY_RUN", "CREW_PAY_LOCK_DIR"):
        monkeypatch.delenv(var, raising=False)


def test_missing_api_key_is_degraded(monkeypatch):
    clear_env(monkeypatch)
    results = EnvironmentValidator().validate_all(verbose=False)
    assert results["status"] == "degraded"
    assert results["missing_required"] == ["ANTHROPIC_API_KEY"]

    ok, problems = validate_environment_quick()
    assert ok
    assert problems == ["ANTHROPIC_API_KEY"]


def test_claude_api_key_is_accepted(monkeypatch):
    clear_env(monkeypatch)
    monkeypatch.setenv("CLAUDE_API_KEY", VALID_KEY)
    assert EnvironmentValidator().validate_all(verbose=False)["status"] == "pass"


def test_malformed_api_key_fails(monkeypatch):
    clear_env(monkeypatch)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "not-a-key")
    results = EnvironmentValidator().validate_all(verbose=False)
    assert results["status"] == "fail"
    assert results["invalid_format"][0]["name"] == "ANTHROPIC_API_KEY"
    assert validate_environment_quick()[0] is False


def test_malformed_optional_var_is_only_a_warning(monkeypatch, capsys):
    clear_env(monkeypatch)
    monkeypatch.setenv("ANTHROPIC_API_KEY", VALID_KEY)
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "http://example.com/hook")

    results = EnvironmentValidator().validate_all(verbose=True)

    assert results["status"] == "pass"
    assert results["warnings"][0]["name"] == "SLACK_WEBHOOK_URL"
    assert "SLACK_WEBHOOK_URL" in capsys.readouterr().out
