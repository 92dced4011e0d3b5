import sys
import os
import json
import unittest
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
import requests
from pydantic import ValidationError

# add src to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from claim_validator import (
    FALLBACK_PREFIX,
    ClaimValidator,
    ReasoningClient,
    build_validation_prompt,
    extract_json_text,
    fallback_validation,
    parse_verdict,
)
from config_loader import DEFAULTS
from crew_models import AUTO_APPROVE, MANUAL_REVIEW, REJECT, CandidateClaim, Trip


def make_claim(amount=125.0, confidence=97, claim_type="International Premium"):
    return CandidateClaim(
        crew_id="FA001",
        claim_type=claim_type,
        trip_id="T100",
        amount=amount,
        description="International premium for JFK-LHR",
        detection_method="auto:international_premium_detector",
        confidence=confidence,
        supporting_data={"block_time": 7.0},
    )


TRIP = Trip(
    id="T100",
    trip_date=date(2025, 3, 10),
    route="JFK-LHR",
    departure_time="18:00",
    arrival_time="06:00",
    flight_time_hours=7.0,
    is_international=True,
    senior_fa_id="FA001",
)


class TestExtractJsonText(unittest.TestCase):
    def test_json_fence(self):
        content = 'Here you go:\n```json\n{"valid": true}\n```\nthanks'
        self.assertEqual(extract_json_text(content), '{"valid": true}')

    def test_bare_fence(self):
        self.assertEqual(extract_json_text('```\n{"valid": false}\n```'), '{"valid": false}')

    def test_plain(self):
        self.assertEqual(extract_json_text('  {"valid": true} '), '{"valid": true}')


class TestParseVerdict(unittest.TestCase):
    def test_missing_fields_get_defaults(self):
        verdict = parse_verdict('{"valid": true}', make_claim(confidence=88))
        self.assertTrue(verdict.valid)
        self.assertEqual(verdict.confidence, 88)
        self.assertEqual(verdict.recommendation, MANUAL_REVIEW)
        self.assertEqual(verdict.reasoning, "AI validation completed")
        self.assertEqual(verdict.contract_references, [])
        self.assertEqual(verdict.source, "ai")

    def test_confidence_is_clamped(self):
        content = json.dumps({"valid": True, "confidence": 150, "recommendation": AUTO_APPROVE})
        verdict = parse_verdict(content, make_claim())
        self.assertEqual(verdict.confidence, 100)
        self.assertEqual(verdict.recommendation, AUTO_APPROVE)

        verdict = parse_verdict('{"valid": false, "confidence": -5}', make_claim())
        self.assertEqual(verdict.confidence, 0)

    def test_auto_approve_below_threshold_is_downgraded(self):
        content = json.dumps({"valid": True, "confidence": 90, "recommendation": AUTO_APPROVE, "reasoning": "ok"})
        verdict = parse_verdict(content, make_claim())
        self.assertEqual(verdict.recommendation, MANUAL_REVIEW)
        self.assertIn("downgraded", verdict.reasoning)

    def test_downgrade_can_be_disabled(self):
        cfg = dict(DEFAULTS)
        cfg["validation"] = dict(DEFAULTS["validation"], enforce_auto_approve_threshold=False)
        content = json.dumps({"valid": True, "confidence": 90, "recommendation": AUTO_APPROVE})
        self.assertEqual(parse_verdict(content, make_claim(), cfg).recommendation, AUTO_APPROVE)

    def test_low_confidence_reject_is_kept(self):
        content = json.dumps({"valid": True, "confidence": 40, "recommendation": REJECT})
        self.assertEqual(parse_verdict(content, make_claim()).recommendation, REJECT)

    def test_unknown_recommendation_raises(self):
        with self.assertRaises(ValidationError):
            parse_verdict('{"valid": true, "recommendation": "approve-ish"}', make_claim())

    def test_not_json_raises(self):
        with self.assertRaises(ValueError):
            parse_verdict("I think this claim is fine.", make_claim())


class TestFallbackValidation(unittest.TestCase):
    def test_high_confidence_routine_claim(self):
        verdict = fallback_validation(make_claim(confidence=97))
        self.assertTrue(verdict.valid)
        self.assertEqual(verdict.recommendation, AUTO_APPROVE)
        self.assertTrue(verdict.reasoning.startswith(FALLBACK_PREFIX))
        self.assertTrue(verdict.is_fallback)

    def test_zero_amount_is_invalid(self):
        verdict = fallback_validation(make_claim(amount=0))
        self.assertFalse(verdict.valid)
        self.assertEqual(verdict.recommendation, REJECT)
        self.assertEqual(verdict.confidence, 0)

    def test_high_value_goes_to_review_with_capped_confidence(self):
        verdict = fallback_validation(make_claim(amount=6000, confidence=99))
        self.assertEqual(verdict.recommendation, MANUAL_REVIEW)
        self.assertEqual(verdict.confidence, 85)

    def test_medium_and_low_confidence(self):
        self.assertEqual(fallback_validation(make_claim(confidence=85)).recommendation, MANUAL_REVIEW)
        low = fallback_validation(make_claim(confidence=50))
        self.assertEqual(low.recommendation, MANUAL_REVIEW)
        self.assertIn("Low confidence", low.reasoning)

    def test_out_of_range_prior_confidence_is_bounded(self):
        verdict = fallback_validation(make_claim(confidence=130))
        self.assertEqual(verdict.confidence, 100)

    def test_deterministic(self):
        claim = make_claim(confidence=91)
        self.assertEqual(fallback_validation(claim), fallback_validation(claim))


class TestClaimValidator(unittest.TestCase):
    def test_network_error_falls_back(self):
        client = MagicMock()
        client.complete.side_effect = requests.ConnectionError("connection refused")
        verdict = ClaimValidator(client).validate(make_claim(confidence=97), TRIP)

        self.assertEqual(verdict.recommendation, AUTO_APPROVE)
        self.assertIn("Fallback validation (AI unavailable)", verdict.reasoning)
        self.assertEqual(verdict.source, "fallback")

    def test_schema_mismatch_falls_back(self):
        client = MagicMock()
        client.complete.return_value = '{"valid": true, "recommendation": "maybe"}'
        verdict = ClaimValidator(client).validate(make_claim(), TRIP)
        self.assertTrue(verdict.is_fallback)

    def test_ai_verdict(self):
        client = MagicMock()
        client.complete.return_value = (
            '```json\n{"valid": true, "confidence": 98, "recommendation": "auto-approve", '
            '"reasoning": "Matches CBA 3.D", "contract_references": ["CBA 3.D"]}\n```'
        )
        verdict = ClaimValidator(client).validate(make_claim(), TRIP)

        self.assertFalse(verdict.is_fallback)
        self.assertEqual(verdict.recommendation, AUTO_APPROVE)
        self.assertEqual(verdict.contract_references, ["CBA 3.D"])
        prompt = client.complete.call_args[0][0]
        self.assertIn("JFK-LHR", prompt)
        self.assertIn("International Premium", prompt)

    def test_without_api_key_uses_fallback_only(self):
        validator = ClaimValidator.from_config(None)
        self.assertIsNone(validator.client)
        self.assertTrue(validator.validate(make_claim(), TRIP).is_fallback)


class TestReasoningClient:
    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            ReasoningClient("")

    def test_complete_posts_to_messages_api(self):
        client = ReasoningClient("sk-ant-test", timeout=5)

        with patch("claim_validator.requests.post") as mock_post:
            mock_response = MagicMock()
            mock_response.json.return_value = {"content": [{"type": "text", "text": '{"valid": true}'}]}
            mock_post.return_value = mock_response

            assert client.complete("hello") == '{"valid": true}'

            args, kwargs = mock_post.call_args
            assert args[0] == "https://api.anthropic.com/v1/messages"
            assert kwargs["headers"]["x-api-key"] == "sk-ant-test"
            assert kwargs["json"]["messages"][0]["content"] == "hello"
            assert kwargs["timeout"] == 5

    def test_non_text_content_raises(self):
        client = ReasoningClient("sk-ant-test")
        with patch("claim_validator.requests.post") as mock_post:
            mock_post.return_value.json.return_value = {"content": [{"type": "tool_use"}]}
            with pytest.raises(ValueError):
                client.complete("hello")

    def test_malformed_content_block_falls_back(self):
        validator = ClaimValidator(ReasoningClient("sk-ant-test"))
        with patch("claim_validator.requests.post") as mock_post:
            mock_post.return_value.json.return_value = {"content": ["just text"]}
            verdict = validator.validate(make_claim(confidence=97), TRIP)

        assert verdict.is_fallback
        assert verdict.recommendation == AUTO_APPROVE


def test_prompt_states_the_routing_guideline():
    prompt = build_validation_prompt(make_claim(), TRIP)
    assert "confidence > 95 = auto-approve" in prompt
    assert "Collective Bargaining Agreement" in prompt
