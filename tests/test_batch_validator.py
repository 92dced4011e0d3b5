import sys
import os
import unittest
from datetime import date
from unittest.mock import MagicMock

# add src to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from batch_validator import calculate_validation_stats, validate_multiple
from claim_validator import ClaimValidator
from crew_models import AUTO_APPROVE, MANUAL_REVIEW, REJECT, CandidateClaim, Trip, Verdict


TRIP = Trip(id="T1", trip_date=date(2025, 3, 10), route="ORD-LAX", departure_time="08:00", arrival_time="12:00")


def make_claim(claim_type, confidence=95, amount=100.0):
    return CandidateClaim(
        crew_id="FA001",
        claim_type=claim_type,
        trip_id="T1",
        amount=amount,
        description=claim_type,
        detection_method="auto:test",
        confidence=confidence,
    )


class TestValidateMultiple(unittest.TestCase):
    def test_pairs_keep_input_order(self):
        claims = [make_claim("Per Diem"), make_claim("Holiday Premium"), make_claim("Per Diem", confidence=80)]
        pairs = validate_multiple(ClaimValidator(None), claims, TRIP)

        self.assertEqual([c for c, _ in pairs], claims)
        self.assertEqual([v.recommendation for _, v in pairs], [AUTO_APPROVE, AUTO_APPROVE, MANUAL_REVIEW])

    def test_equal_candidates_each_get_a_verdict(self):
        claim = make_claim("Per Diem")
        pairs = validate_multiple(ClaimValidator(None), [claim, claim], TRIP)
        self.assertEqual(len(pairs), 2)

    def test_unexpected_validator_error_falls_back_for_that_claim(self):
        validator = MagicMock()
        validator.cfg = None
        ok = Verdict(valid=True, confidence=99, recommendation=AUTO_APPROVE, reasoning="ok")
        validator.validate.side_effect = [ok, RuntimeError("boom")]

        pairs = validate_multiple(validator, [make_claim("A"), make_claim("B", confidence=70)], TRIP)

        self.assertIs(pairs[0][1], ok)
        self.assertTrue(pairs[1][1].is_fallback)
        self.assertEqual(pairs[1][1].recommendation, MANUAL_REVIEW)

    def test_empty(self):
        self.assertEqual(validate_multiple(ClaimValidator(None), [], TRIP), [])


class TestValidationStats(unittest.TestCase):
    def test_counts_and_buckets(self):
        claim = make_claim("X")
        pairs = [
            (claim, Verdict(True, 98, AUTO_APPROVE, "r", source="ai")),
            (claim, Verdict(True, 85, MANUAL_REVIEW, "r", source="fallback")),
            (claim, Verdict(True, 60, MANUAL_REVIEW, "r", source="ai")),
            (claim, Verdict(False, 0, REJECT, "r", source="fallback")),
        ]
        stats = calculate_validation_stats(pairs)

        self.assertEqual(stats.total_claims, 4)
        self.assertEqual(stats.auto_approved, 1)
        self.assertEqual(stats.manual_review, 2)
        self.assertEqual(stats.rejected, 1)
        self.assertEqual(stats.avg_confidence, 60.75)
        self.assertEqual(stats.confidence_distribution, {"95-100": 1, "80-94": 1, "50-79": 1, "0-49": 1})
        self.assertEqual(stats.fallback_rate, 50.0)
        self.assertEqual(stats.ai_success_rate, 50.0)

    def test_empty_stats(self):
        stats = calculate_validation_stats([])
        self.assertEqual(stats.total_claims, 0)
        self.assertEqual(stats.avg_confidence, 0.0)
        self.assertEqual(stats.to_dict()["confidence_distribution"]["0-49"], 0)


if __name__ == "__main__":
    unittest.main()
