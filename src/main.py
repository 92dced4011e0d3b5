import argparse
import json
import os
import sys
import time
from datetime import datetime
from typing import Dict, List, Optional

from dotenv import load_dotenv

import state_store
from claim_notifier import SlackClaimNotifier
from claim_validator import ClaimValidator
from config_loader import load_pipeline_config
from crew_models import ReviewInput, SubmittedClaim, Trip
from decision_orchestrator import orchestrate_claim_validation
from environment_validator import EnvironmentValidator
from execution_lock import ExecutionLock
from trip_completion_monitor import TripCompletionMonitor

load_dotenv()


def build_monitor(cfg: Dict) -> TripCompletionMonitor:
    api_key = os.getenv("ANTHROPIC_API_KEY") or os.getenv("CLAUDE_API_KEY")
    validator = ClaimValidator.from_config(api_key, cfg)
    notifier = SlackClaimNotifier(os.getenv("SLACK_WEBHOOK_URL"))
    lock = ExecutionLock("trip_completion_monitor", timeout=cfg["monitor"]["lock_timeout_seconds"])
    return TripCompletionMonitor(validator, notifier=notifier, lock=lock, cfg=cfg)


def load_trips(path: str) -> int:
    """Upsert trips from a JSON file holding a list of trip rows."""
    with open(path, "r", encoding="utf-8") as f:
        rows = json.load(f)
    if not isinstance(rows, list):
        raise ValueError(f"{path}: expected a JSON list of trips")

    for row in rows:
        state_store.upsert_trip(Trip.from_row(row))
    print(f"✅ Loaded {len(rows)} trips from {path}")
    return len(rows)


def review_persisted_claim(claim_id: str, cfg: Optional[Dict] = None):
    """Run the decision orchestrator over a claim already in the store."""
    row = state_store.get_claim(claim_id)
    if row is None:
        raise LookupError(f"claim {claim_id} not found")

    claim = SubmittedClaim.from_row(row)
    trip = state_store.get_trip(claim.trip_id) if claim.trip_id else None
    history = [SubmittedClaim.from_row(r) for r in state_store.list_claims_for_crew(claim.crew_id, exclude_id=claim.id)]
    return orchestrate_claim_validation(ReviewInput(claim=claim, trip=trip, history=history), cfg)


def _print_json(data):
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def cmd_run(args, cfg: Dict) -> int:
    result = build_monitor(cfg).trigger_manual_processing()
    _print_json(result.to_dict())
    return 1 if result.errors and not result.skipped else 0


def cmd_schedule(args, cfg: Dict) -> int:
    handle = build_monitor(cfg).start_scheduled_processing(args.interval)
    try:
        while not handle.stopped:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping scheduled processing...")
        handle.stop(timeout=30)
    return 0


def cmd_stats(args, cfg: Dict) -> int:
    stats = state_store.get_claim_stats()
    stats["pending_trips"] = state_store.count_unprocessed_trips(cfg["monitor"]["lookback_days"])
    _print_json(stats)
    return 0


def cmd_recent(args, cfg: Dict) -> int:
    claims: List[Dict] = state_store.list_recent_claims(limit=args.limit, crew_id=args.crew_id)
    if not claims:
        print("No auto-generated claims")
        return 0
    for c in claims:
        print(
            f"{c['id']}  {c['claim_date']}  {c['crew_id']:<10} {c['claim_type']:<22} "
            f"${c['amount']:>9,.2f}  {c['status']:<8} ({(c['ai_confidence'] or 0) * 100:.0f}%)"
        )
    return 0


def cmd_health(args, cfg: Dict) -> int:
    results = EnvironmentValidator().validate_all(verbose=True)
    health = {
        "timestamp": datetime.now().isoformat(),
        "environment": results["status"],
        "database": state_store._get_db_path(),
        "pending_trips": state_store.count_unprocessed_trips(cfg["monitor"]["lookback_days"]),
        "claims": state_store.get_claim_stats(),
    }
    _print_json(health)
    return 0 if results["status"] != "fail" else 1


def cmd_review(args, cfg: Dict) -> int:
    try:
        decision = review_persisted_claim(args.claim_id, cfg)
    except LookupError as e:
        print(f"❌ {e}")
        return 1
    _print_json(decision.to_dict())
    return 0


def cmd_load_trips(args, cfg: Dict) -> int:
    load_trips(args.path)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Proactive crew pay claims")
    parser.add_argument("--config", help="pipeline YAML (default: config/pipeline.yml or CREW_PAY_CONFIG)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="process completed trips once").set_defaults(func=cmd_run)

    p = sub.add_parser("schedule", help="process completed trips on an interval")
    p.add_argument("--interval", type=float, default=None, help="minutes between runs")
    p.set_defaults(func=cmd_schedule)

    sub.add_parser("stats", help="auto-generated claim statistics").set_defaults(func=cmd_stats)

    p = sub.add_parser("recent", help="list recent auto-generated claims")
    p.add_argument("--crew-id")
    p.add_argument("--limit", type=int, default=20)
    p.set_defaults(func=cmd_recent)

    sub.add_parser("health", help="environment and store health").set_defaults(func=cmd_health)

    p = sub.add_parser("review", help="run the review checks on a stored claim")
    p.add_argument("claim_id")
    p.set_defaults(func=cmd_review)

    p = sub.add_parser("load-trips", help="upsert trips from a JSON file")
    p.add_argument("path")
    p.set_defaults(func=cmd_load_trips)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    print("=== Proactive claims ===")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    if args.command != "health":
        env = EnvironmentValidator().validate_all(verbose=False)
        if env["status"] == "fail":
            print("❌ Malformed environment variables: " + ", ".join(v["name"] for v in env["invalid_format"]))
            return 2
        for var in env["missing_required"]:
            print(f"⚠️ {var} not set: {EnvironmentValidator.REQUIRED_VARS[var]['degraded']}")

    cfg = load_pipeline_config(args.config)
    state_store.init_db()
    return args.func(args, cfg)


if __name__ == "__main__":
    sys.exit(main())
