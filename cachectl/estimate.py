from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from .config import RunSettings
from .progress import ProgressTracker
from .s3 import is_access_denied

logger = logging.getLogger(__name__)

WINDOW_DAYS = 3


class MetricSource(Protocol):
    def metric_maximum(
        self,
        bucket: str,
        since: datetime,
        until: datetime,
        role_arn: Optional[str] = None,
    ) -> Optional[int]: ...


def estimate_object_count(
    store: MetricSource,
    bucket: str,
    role_arn: Optional[str] = None,
    window_days: int = WINDOW_DAYS,
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> Optional[int]:
    # NumberOfObjects is a daily gauge, so the window maximum is the latest count.
    until = now()
    since = until - timedelta(days=window_days)
    try:
        count = store.metric_maximum(bucket, since, until)
    except Exception as exc:
        if not (role_arn and is_access_denied(exc)):
            logger.warning("Object count estimate for %s failed: %s", bucket, exc)
            return None
        logger.info("Object count for %s denied, retrying as %s", bucket, role_arn)
    else:
        if count is not None or not role_arn:
            if count is None:
                logger.warning("No object count datapoints for %s", bucket)
            return count
        logger.info("No object count for %s, retrying as %s", bucket, role_arn)

    try:
        count = store.metric_maximum(bucket, since, until, role_arn=role_arn)
    except Exception as exc:
        logger.warning(
            "Object count estimate for %s as %s failed: %s", bucket, role_arn, exc
        )
        return None
    if count is None:
        logger.warning("No object count datapoints for %s as %s", bucket, role_arn)
    return count


def start_estimate(
    store: MetricSource,
    settings: RunSettings,
    tracker: ProgressTracker,
) -> threading.Thread:
    def _run() -> None:
        count = estimate_object_count(
            store, settings.source_bucket, role_arn=settings.role_arn
        )
        if count is not None:
            tracker.expected_total = count
            logger.info("Expecting about %d objects in %s", count, settings.source_bucket)

    thread = threading.Thread(target=_run, name="cachectl-estimate", daemon=True)
    thread.start()
    return thread
