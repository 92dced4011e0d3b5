#!/usr/bin/env python3
"""
Claim notifications

After an auto-generated claim is written, an event goes to the owning crew
member's channel and to the admin channel. Delivery is best-effort: a failed
notification never fails claim creation.
"""

import os
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

import requests


EVENT_TYPE = "claim_auto_generated"
ADMIN_CHANNEL = "admin"


def crew_channel(crew_id: str) -> str:
    return f"crew:{crew_id}"


def build_claim_event(claim: Dict, status: str) -> Dict:
    return {
        "type": EVENT_TYPE,
        "claim": claim,
        "crew_id": claim.get("crew_id"),
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class ClaimNotifier:
    """Base notifier. Subclasses implement emit()."""

    def emit(self, channel: str, event: Dict):
        raise NotImplementedError

    def notify_claim_created(self, claim: Dict, status: str) -> Dict:
        event = build_claim_event(claim, status)
        for channel in (crew_channel(event["crew_id"]), ADMIN_CHANNEL):
            try:
                self.emit(channel, event)
            except Exception as e:
                print(f"  ⚠️ Notification to {channel} failed: {e}")
        return event

    def send_run_summary(self, result: Dict) -> bool:
        return False


class NullNotifier(ClaimNotifier):
    def emit(self, channel: str, event: Dict):
        pass


class SlackClaimNotifier(ClaimNotifier):
    """Posts claim events to a Slack incoming webhook."""

    def __init__(self, webhook_url: Optional[str] = None, background: bool = True, timeout: float = 10):
        self.webhook_url = webhook_url or os.getenv("SLACK_WEBHOOK_URL")
        self.background = background
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url) and "YOUR/WEBHOOK/URL" not in self.webhook_url

    def emit(self, channel: str, event: Dict):
        if not self.enabled:
            return
        payload = self._build_claim_message(channel, event)
        if self.background:
            threading.Thread(target=self._post, args=(payload,), daemon=True).start()
        else:
            self._post(payload)

    def _post(self, payload: Dict) -> bool:
        try:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            print(f"❌ Slack Webhook error: {e}")
            return False

    def _build_claim_message(self, channel: str, event: Dict) -> Dict:
        claim = event.get("claim") or {}
        status = event.get("status")
        emoji = {"approved": "✅", "pending": "🟡", "rejected": "🔴"}.get(status, "📄")
        confidence = claim.get("ai_confidence")
        confidence_text = f"{confidence * 100:.0f}%" if isinstance(confidence, (int, float)) else "n/a"

        return {
            "text": f"{emoji} Auto-generated claim {claim.get('id')} ({status}) for {channel}",
            "blocks": [
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": f"*{emoji} {claim.get('claim_type', 'Claim')} - {status}*\nChannel: `{channel}`",
                    },
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Claim:* {claim.get('id')}"},
                        {"type": "mrkdwn", "text": f"*Crew:* {event.get('crew_id')}"},
                        {"type": "mrkdwn", "text": f"*Trip:* {claim.get('trip_id')}"},
                        {"type": "mrkdwn", "text": f"*Amount:* ${float(claim.get('amount') or 0):,.2f}"},
                        {"type": "mrkdwn", "text": f"*AI confidence:* {confidence_text}"},
                        {"type": "mrkdwn", "text": f"*At:* {event.get('timestamp')}"},
                    ],
                },
            ],
        }

    def send_run_summary(self, result: Dict) -> bool:
        """Post a run summary (synchronously)."""
        if not self.enabled:
            return False

        errors: List[str] = result.get("errors") or []
        message = {
            "text": (
                f"Proactive claims: {result.get('trips_processed', 0)} trips, "
                f"{result.get('claims_auto_approved', 0)} approved, "
                f"{result.get('claims_manual_review', 0)} review, "
                f"{result.get('claims_rejected', 0)} rejected"
            ),
            "blocks": [
                {"type": "header", "text": {"type": "plain_text", "text": "Proactive claim run"}},
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Trips processed:* {result.get('trips_processed', 0)}"},
                        {"type": "mrkdwn", "text": f"*Claims detected:* {result.get('claims_detected', 0)}"},
                        {"type": "mrkdwn", "text": f"*Auto-approved:* {result.get('claims_auto_approved', 0)}"},
                        {"type": "mrkdwn", "text": f"*Manual review:* {result.get('claims_manual_review', 0)}"},
                        {"type": "mrkdwn", "text": f"*Rejected:* {result.get('claims_rejected', 0)}"},
                        {"type": "mrkdwn", "text": f"*Approved total:* ${result.get('total_amount_approved', 0):,.2f}"},
                    ],
                },
            ],
        }

        if errors:
            error_text = "\n".join(f"• {e}" for e in errors[:10])
            if len(errors) > 10:
                error_text += f"\n... {len(errors) - 10} more"
            message["blocks"].append({"type": "section", "text": {"type": "mrkdwn", "text": f"*Errors:*\n{error_text}"}})

        return self._post(message)
