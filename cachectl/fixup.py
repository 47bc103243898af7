from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from .config import RunSettings
from .progress import ProgressTracker
from .s3 import ObjectMeta, ObjectNotFound

FALLBACK_CONTENT_TYPE = "image/png"
PICTURE_TYPES = {"image/jpeg", "image/png"}


class Outcome(str, Enum):
    SKIPPED = "."
    EXCLUDED = "e"
    CAP_REACHED = "c"
    UNSET = "X"  # type was not set, written as image/png
    JPEG = "j"
    PNG = "g"
    PDF = "P"
    OTHER = "Y"

    @property
    def writes(self) -> bool:
        return self not in {Outcome.SKIPPED, Outcome.EXCLUDED, Outcome.CAP_REACHED}


WRITE_OUTCOMES = {
    "image/jpeg": Outcome.JPEG,
    "image/png": Outcome.PNG,
    "application/pdf": Outcome.PDF,
}


class ObjectStore(Protocol):
    def head_metadata(self, bucket: str, key: str) -> ObjectMeta: ...

    def copy_with_metadata_replace(
        self,
        source_bucket: str,
        source_key: str,
        target_bucket: str,
        target_key: str,
        content_type: str,
        cache_control: str,
    ) -> None: ...


class FixupError(Exception):
    def __init__(self, key: str, step: str, cause: Exception) -> None:
        super().__init__(f"{step} failed for '{key}': {cause}")
        self.key = key
        self.step = step
        self.cause = cause


@dataclass
class RunContext:
    settings: RunSettings
    store: ObjectStore
    tracker: ProgressTracker


def classify(content_type: Optional[str]) -> tuple[Outcome, str]:
    if not content_type:
        return Outcome.UNSET, FALLBACK_CONTENT_TYPE
    return WRITE_OUTCOMES.get(content_type, Outcome.OTHER), content_type


def is_excluded(key: str, meta: ObjectMeta, settings: RunSettings) -> bool:
    if settings.exclude is None:
        return False
    if meta.content_type not in PICTURE_TYPES:
        return False
    return settings.exclude.search(key) is not None


def is_current(target: Optional[ObjectMeta], cache_control: str) -> bool:
    if target is None:
        return False
    return target.cache_control == cache_control and bool(target.content_type)


def fixup(key: str, context: RunContext) -> Outcome:
    settings = context.settings
    store = context.store
    tracker = context.tracker

    try:
        source = store.head_metadata(settings.source_bucket, key)
    except Exception as exc:
        raise FixupError(key, "source metadata read", exc) from exc

    if settings.in_place:
        target: Optional[ObjectMeta] = source
    else:
        try:
            target = store.head_metadata(settings.target_bucket, key)
        except ObjectNotFound:
            target = None
        except Exception as exc:
            raise FixupError(key, "target metadata read", exc) from exc

    if is_excluded(key, source, settings):
        outcome = Outcome.EXCLUDED
    elif is_current(target, settings.cache_control):
        outcome = Outcome.SKIPPED
    elif not tracker.claim_write():
        outcome = Outcome.CAP_REACHED
    else:
        outcome, content_type = classify(source.content_type)
        if not settings.dry_run:
            try:
                store.copy_with_metadata_replace(
                    settings.source_bucket,
                    key,
                    settings.target_bucket,
                    key,
                    content_type,
                    settings.cache_control,
                )
            except Exception as exc:
                tracker.release_write()
                raise FixupError(key, "copy", exc) from exc

    tracker.record(key, outcome.value, source.content_type, copied=outcome.writes)
    return outcome
