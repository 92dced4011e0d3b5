"""
Trip completion monitor

Finds completed trips that have not been through proactive claim detection,
runs the detectors, validates each candidate and writes the resulting claims:

    discover -> detect -> validate -> persist -> notify

Safe to re-run: discovery skips trips that already carry an auto-generated
claim (or were processed without producing one), so repeated runs converge.
"""

import os
import threading
import time
import uuid
from datetime import date, datetime
from typing import Callable, Dict, Optional

import state_store
from batch_validator import calculate_validation_stats, validate_multiple
from claim_detectors import detect_all
from claim_notifier import ClaimNotifier, NullNotifier
from claim_validator import ClaimValidator
from config_loader import DEFAULTS
from crew_models import (
    AUTO_APPROVE,
    MANUAL_REVIEW,
    REJECT,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    CandidateClaim,
    RunResult,
    Trip,
    Verdict,
)
from execution_lock import ExecutionLock


CLAIM_ID_MAX_LENGTH = 20

_STATUS_BY_RECOMMENDATION = {
    AUTO_APPROVE: STATUS_APPROVED,
    MANUAL_REVIEW: STATUS_PENDING,
    REJECT: STATUS_REJECTED,
}


def generate_claim_id() -> str:
    """C-{last 10 digits of epoch ms}{6 random chars}, 18 chars."""
    timestamp = str(int(time.time() * 1000))[-10:]
    return f"C-{timestamp}{uuid.uuid4().hex[:6]}"[:CLAIM_ID_MAX_LENGTH]


class ScheduledProcessing:
    """Handle for a background processing loop."""

    def __init__(self, run: Callable[[], RunResult], interval_minutes: float):
        self.interval_seconds = interval_minutes * 60
        self._run = run
        self._stop = threading.Event()
        self.runs = 0
        self.thread = threading.Thread(target=self._loop, name="trip-completion-monitor", daemon=True)

    def start(self) -> "ScheduledProcessing":
        self.thread.start()
        return self

    def _tick(self):
        try:
            self._run()
        except Exception as e:
            print(f"❌ Scheduled processing error: {e}")
        finally:
            self.runs += 1

    def _loop(self):
        self._tick()
        while not self._stop.wait(self.interval_seconds):
            self._tick()

    def stop(self, timeout: float = None):
        self._stop.set()
        if self.thread.is_alive() and threading.current_thread() is not self.thread:
            self.thread.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()


class TripCompletionMonitor:
    """Drives completed trips through detection, validation and persistence."""

    def __init__(
        self,
        validator: ClaimValidator,
        notifier: Optional[ClaimNotifier] = None,
        store=state_store,
        lock: Optional[ExecutionLock] = None,
        cfg: Optional[Dict] = None,
        dry_run: Optional[bool] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.cfg = cfg or DEFAULTS
        self.validator = validator
        self.notifier = notifier or NullNotifier()
        self.store = store
        self.lock = lock
        self.dry_run = dry_run if dry_run is not None else os.getenv("DRY_RUN", "false").lower() == "true"
        self._today = today or date.today

    @property
    def monitor_cfg(self) -> Dict:
        return self.cfg.get("monitor") or DEFAULTS["monitor"]

    def process_completed_trips(self) -> RunResult:
        """Process every unprocessed completed trip. Never raises."""
        result = RunResult()
        process_id = f"trip_monitor_{uuid.uuid4().hex[:8]}"

        if self.lock is not None:
            try:
                acquired = self.lock.acquire_lock(process_id, {"operation": "trip_completion_monitor", "dry_run": self.dry_run})
            except OSError as e:
                result.errors.append(f"Fatal error: could not acquire run lock: {e}")
                return result
            if not acquired:
                info = self.lock.get_lock_info() or {}
                print(f"⚠️ Another run is in progress ({info.get('process_id')}), skipping")
                result.skipped = True
                result.errors.append(f"Skipped: run {info.get('process_id')} in progress since {info.get('timestamp')}")
                return result

        try:
            self._run(result)
        finally:
            if self.lock is not None:
                self.lock.release_lock(process_id)
        return result

    def _run(self, result: RunResult):
        try:
            print("🔍 Starting trip completion monitor...")
            if self.dry_run:
                print("⚠️ DRY_RUN: claims will not be written")

            trips = self.store.get_unprocessed_trips(
                lookback_days=self.monitor_cfg["lookback_days"], today=self._today()
            )
            print(f"  {len(trips)} unprocessed completed trips")

            for i, trip in enumerate(trips, 1):
                print(f"\n[{i}/{len(trips)}] Trip {trip.id}: {trip.route}")
                try:
                    errors_before = len(result.errors)
                    self._process_single_trip(trip, result)
                    if len(result.errors) > errors_before:
                        result.unprocessed_trip_ids.append(trip.id)
                    result.trips_processed += 1
                except Exception as e:
                    print(f"  ❌ Error processing trip {trip.id}: {e}")
                    result.errors.append(f"{trip.id}: {e}")
                    result.unprocessed_trip_ids.append(trip.id)

            print("\n=== Trip completion monitor finished ===")
            print(f"  trips: {result.trips_processed}  detected: {result.claims_detected}")
            print(
                f"  approved: {result.claims_auto_approved}  review: {result.claims_manual_review}"
                f"  rejected: {result.claims_rejected}  errors: {len(result.errors)}"
            )
            self._audit_run(result)
        except Exception as e:
            print(f"❌ Fatal error in trip completion monitor: {e}")
            result.errors.append(f"Fatal error: {e}")

    def _process_single_trip(self, trip: Trip, result: RunResult):
        if not self.dry_run:
            # stays 'retry' unless this pass completes cleanly
            self.store.mark_trip_processed(trip.id, 0, status="retry")

        candidates = detect_all(trip, self.cfg)
        claimed = self.store.get_claimed_types(trip.id)
        if claimed:
            candidates = [c for c in candidates if c.claim_type not in claimed]
            print(f"  Already claimed: {', '.join(sorted(claimed))}")
        print(f"  Detected {len(candidates)} potential claims")

        if candidates:
            result.claims_detected += len(candidates)
            pairs = validate_multiple(self.validator, candidates, trip)
            stats = calculate_validation_stats(pairs)
            print(
                f"  Validation: avg confidence {stats.avg_confidence}, "
                f"fallback {stats.fallback_rate}%"
            )

            failed = False
            for candidate, verdict in pairs:
                try:
                    self._process_validated_claim(candidate, verdict, result)
                except Exception as e:
                    print(f"  ❌ Error creating {candidate.claim_type} claim for trip {trip.id}: {e}")
                    result.errors.append(f"{trip.id}: {candidate.claim_type}: {e}")
                    failed = True
            if failed:
                return

        if not self.dry_run:
            self.store.mark_trip_processed(trip.id, len(candidates))

    def _process_validated_claim(self, claim: CandidateClaim, verdict: Verdict, result: RunResult):
        if not verdict.valid or claim.amount <= 0:
            print(f"  Rejecting invalid claim: {claim.claim_type} for {claim.trip_id} (${claim.amount:,.2f})")
            result.claims_rejected += 1
            return

        recommendation = verdict.recommendation if verdict.recommendation in _STATUS_BY_RECOMMENDATION else MANUAL_REVIEW
        status = _STATUS_BY_RECOMMENDATION[recommendation]

        if self.dry_run:
            print(f"  [DRY_RUN] {claim.claim_type} ${claim.amount:,.2f} -> {status}")
        else:
            created = self.store.insert_claim(self._claim_fields(claim, verdict, status, recommendation))
            print(f"  ✅ Created claim {created['id']}: {claim.claim_type} - ${claim.amount:,.2f} ({status})")

        if status == STATUS_APPROVED:
            result.claims_auto_approved += 1
            result.total_amount_approved = round(result.total_amount_approved + claim.amount, 2)
        elif status == STATUS_PENDING:
            result.claims_manual_review += 1
        else:
            result.claims_rejected += 1

        if not self.dry_run:
            self._audit_claim(created, verdict, status)
            self._notify(created, status)

    def _audit_claim(self, created: Dict, verdict: Verdict, status: str):
        try:
            self.store.write_audit(
                "INFO", "system", "claim_auto_generated", [created["id"], created.get("trip_id")], int(verdict.confidence), status
            )
        except Exception as e:
            print(f"  ⚠️ Audit write failed for claim {created.get('id')}: {e}")

    def _notify(self, created: Dict, status: str):
        try:
            self.notifier.notify_claim_created(created, status)
        except Exception as e:
            print(f"  ⚠️ Notification failed for claim {created.get('id')}: {e}")

    def _claim_fields(self, claim: CandidateClaim, verdict: Verdict, status: str, recommendation: str) -> Dict:
        return {
            "id": generate_claim_id(),
            "crew_id": claim.crew_id,
            "claim_type": claim.claim_type,
            "trip_id": claim.trip_id,
            "claim_date": datetime.utcnow().date(),
            "amount": claim.amount,
            "status": status,
            "ai_validated": not verdict.is_fallback,
            "ai_confidence": verdict.confidence / 100,
            "ai_recommendation": recommendation,
            "ai_reasoning": verdict.reasoning,
            "contract_references": verdict.contract_references,
            "notes": claim.description,
            "auto_generated": True,
            "detection_method": claim.detection_method,
            "priority": "normal" if verdict.confidence > 95 else "high",
            "supporting_data": claim.supporting_data,
        }

    def _audit_run(self, result: RunResult):
        if self.dry_run:
            return
        try:
            self.store.write_audit(
                "ERROR" if result.errors else "INFO",
                "system",
                "trip_monitor_run",
                result.unprocessed_trip_ids,
                result.claims_detected,
                f"{result.trips_processed} trips",
                "; ".join(result.errors[:5]) or None,
            )
        except Exception as e:
            print(f"  ⚠️ Audit write failed: {e}")

    def trigger_manual_processing(self) -> RunResult:
        print("Manual processing triggered")
        return self.process_completed_trips()

    def start_scheduled_processing(self, interval_minutes: float = None) -> ScheduledProcessing:
        """Run once now, then every interval_minutes, until stop() is called."""
        interval = interval_minutes if interval_minutes is not None else self.monitor_cfg["interval_minutes"]
        if interval <= 0:
            raise ValueError("interval_minutes must be positive")
        print(f"Starting scheduled processing every {interval} minutes")

        def run() -> RunResult:
            result = self.process_completed_trips()
            if result.errors:
                print(f"⚠️ Scheduled run finished with {len(result.errors)} errors")
            self.notifier.send_run_summary(result.to_dict())
            return result

        return ScheduledProcessing(run, interval).start()
