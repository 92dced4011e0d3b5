"""
Environment checks for the proactive claims pipeline.

Reports which variables are set, flags malformed values and explains what
happens when an optional integration is missing.
"""

import os
import re
from datetime import datetime
from typing import Dict, List, Tuple


class EnvironmentValidator:
    """Checks presence and format of the pipeline's environment variables."""

    # Missing -> the pipeline still runs in a degraded mode
    REQUIRED_VARS = {
        "ANTHROPIC_API_KEY": {
            "description": "Anthropic API key for AI claim validation",
            "pattern": r"^sk-ant-[A-Za-z0-9_\-]{20,}$",
            "example": "sk-ant-api03-...",
            "degraded": "claims are validated with fallback rules only",
        },
    }

    OPTIONAL_VARS = {
        "SLACK_WEBHOOK_URL": {
            "description": "Slack incoming webhook for claim notifications",
            "pattern": r"^https://hooks\.slack\.com/services/\S+$",
        },
        "CREW_PAY_DB": {
            "description": "SQLite database path",
            "pattern": r"^\S.*$",
        },
        "CREW_PAY_CONFIG": {
            "description": "Pipeline YAML config path",
            "pattern": r"^\S.*\.ya?ml$",
        },
        "DRY_RUN": {
            "description": "Dry-run mode (true/false)",
            "pattern": r"^(true|false|1|0)$",
        },
        "CREW_PAY_LOCK_DIR": {
            "description": "Directory for the run lock file",
            "pattern": r"^\S.*$",
        },
    }

    def __init__(self):
        self.validation_results = {}
        self.missing_vars: List[str] = []
        self.invalid_vars: List[Dict] = []
        self.warnings: List[Dict] = []

    def validate_all(self, verbose: bool = True) -> Dict:
        if verbose:
            print("\n" + "=" * 60)
            print("🔍 Environment check")
            print("=" * 60)

        self._validate_vars(self.REQUIRED_VARS, required=True, verbose=verbose)
        self._validate_vars(self.OPTIONAL_VARS, required=False, verbose=verbose)
        results = self._compile_results()

        if verbose:
            self._display_report(results)
        return results

    def _validate_vars(self, variables: Dict, required: bool, verbose: bool):
        for var_name, config in variables.items():
            value = os.getenv(var_name)
            if var_name == "ANTHROPIC_API_KEY" and not value:
                value = os.getenv("CLAUDE_API_KEY")

            if not value:
                if required:
                    self.missing_vars.append(var_name)
                    status = "missing"
                    line = f"  ❌ {var_name}: not set ({config['degraded']})"
                else:
                    status = "optional_missing"
                    line = f"  ⚪ {var_name}: not set (optional)"
            elif not re.match(config["pattern"], value):
                entry = {"name": var_name, "issue": "unexpected format", "description": config["description"]}
                if required:
                    self.invalid_vars.append(entry)
                    status = "invalid"
                else:
                    self.warnings.append(entry)
                    status = "warning"
                line = f"  ⚠️  {var_name}: set (unexpected format)"
            else:
                status = "ok"
                line = f"  ✅ {var_name}: set"

            self.validation_results[var_name] = {
                "status": status,
                "length": len(value) if value else 0,
                "description": config["description"],
            }
            if verbose:
                print(line)

    def _compile_results(self) -> Dict:
        if self.invalid_vars:
            status = "fail"
        elif self.missing_vars:
            status = "degraded"
        else:
            status = "pass"
        return {
            "timestamp": datetime.now().isoformat(),
            "status": status,
            "missing_required": self.missing_vars,
            "invalid_format": self.invalid_vars,
            "warnings": self.warnings,
            "details": self.validation_results,
        }

    def _display_report(self, results: Dict):
        print("-" * 60)
        if results["status"] == "pass":
            print("🎉 Environment OK")
        elif results["status"] == "degraded":
            print("⚠️ Environment incomplete, running degraded:")
            for var in self.missing_vars:
                print(f"    {var}: {self.REQUIRED_VARS[var]['degraded']}")
        else:
            print("❌ Environment invalid:")
            for var_info in self.invalid_vars:
                print(f"    {var_info['name']}: {var_info['issue']} (e.g. {self.REQUIRED_VARS[var_info['name']]['example']})")


def validate_environment_quick() -> Tuple[bool, List[str]]:
    """(ok, problems) without printing; ok is False only for malformed values."""
    results = EnvironmentValidator().validate_all(verbose=False)
    problems = [v["name"] for v in results["invalid_format"]] + results["missing_required"]
    return results["status"] != "fail", problems
