import unittest
from datetime import datetime, timezone

from cachectl.config import RunSettings
from cachectl.estimate import estimate_object_count, start_estimate
from cachectl.progress import ProgressTracker

from stubs import client_error, quiet_console

ROLE = "arn:aws:iam::123456789012:role/metrics-reader"


class _Metrics:
    def __init__(self, own, assumed=None) -> None:
        self._own = own
        self._assumed = assumed
        self.calls: list = []

    def metric_maximum(self, bucket, since, until, role_arn=None):
        self.calls.append((bucket, role_arn, (until - since).days))
        result = self._assumed if role_arn else self._own
        if isinstance(result, Exception):
            raise result
        return result


def _now() -> datetime:
    return datetime(2024, 5, 3, tzinfo=timezone.utc)


class TestEstimateObjectCount(unittest.TestCase):
    def test_primary_identity(self) -> None:
        metrics = _Metrics(own=3867874)
        self.assertEqual(estimate_object_count(metrics, "bucket-a", now=_now), 3867874)
        self.assertEqual(metrics.calls, [("bucket-a", None, 3)])

    def test_denied_retries_with_role(self) -> None:
        metrics = _Metrics(own=client_error("AccessDenied", "GetMetricStatistics"), assumed=77)
        count = estimate_object_count(metrics, "bucket-a", role_arn=ROLE, now=_now)

        self.assertEqual(count, 77)
        self.assertEqual([call[1] for call in metrics.calls], [None, ROLE])

    def test_no_data_retries_with_role(self) -> None:
        metrics = _Metrics(own=None, assumed=12)
        self.assertEqual(
            estimate_object_count(metrics, "bucket-a", role_arn=ROLE, now=_now), 12
        )

    def test_no_data_without_role_is_unknown(self) -> None:
        metrics = _Metrics(own=None)
        with self.assertLogs("cachectl.estimate", level="WARNING"):
            self.assertIsNone(estimate_object_count(metrics, "bucket-a", now=_now))
        self.assertEqual(len(metrics.calls), 1)

    def test_other_errors_do_not_retry(self) -> None:
        metrics = _Metrics(own=client_error("Throttling", "GetMetricStatistics"), assumed=5)
        with self.assertLogs("cachectl.estimate", level="WARNING"):
            count = estimate_object_count(metrics, "bucket-a", role_arn=ROLE, now=_now)
        self.assertIsNone(count)
        self.assertEqual(len(metrics.calls), 1)

    def test_alternate_identity_failure_is_unknown(self) -> None:
        metrics = _Metrics(
            own=client_error("AccessDenied", "GetMetricStatistics"),
            assumed=client_error("AccessDenied", "AssumeRole"),
        )
        with self.assertLogs("cachectl.estimate", level="WARNING"):
            count = estimate_object_count(metrics, "bucket-a", role_arn=ROLE, now=_now)
        self.assertIsNone(count)


class TestStartEstimate(unittest.TestCase):
    def test_seeds_expected_total(self) -> None:
        tracker = ProgressTracker(console=quiet_console())
        settings = RunSettings(target_bucket="dst", source_bucket="src")

        start_estimate(_Metrics(own=250), settings, tracker).join(5)

        self.assertEqual(tracker.expected_total, 250)

    def test_unknown_leaves_expected_total_unset(self) -> None:
        tracker = ProgressTracker(console=quiet_console())
        settings = RunSettings(target_bucket="dst", source_bucket="src")

        with self.assertLogs("cachectl.estimate", level="WARNING"):
            start_estimate(_Metrics(own=None), settings, tracker).join(5)

        self.assertIsNone(tracker.expected_total)


if __name__ == "__main__":
    unittest.main()
