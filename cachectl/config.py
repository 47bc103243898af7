from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# One year; objects are effectively immutable once uploaded.
DEFAULT_CACHE_CONTROL = "max-age=31536000, public"

# Kept well below the usual ulimit of 1024 open files, and low enough to
# stay clear of S3 "503 SlowDown" throttling on a single prefix.
DEFAULT_WORKERS = 200
# Left as text so argparse validates it along with the command line.
DEFAULT_WORKERS_TEXT = os.environ.get("CACHECTL_WORKERS", str(DEFAULT_WORKERS))
DEFAULT_FAILURE_FILE = os.environ.get("CACHECTL_FAILURE_FILE", "error_keys.txt")
DEFAULT_PAGE_SIZE = 1000
DEFAULT_REGION = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")


@dataclass(frozen=True)
class RunSettings:
    target_bucket: str
    source_bucket: str
    cache_control: str = DEFAULT_CACHE_CONTROL
    workers: int = DEFAULT_WORKERS
    dry_run: bool = False
    exclude: Optional[re.Pattern[str]] = None
    max_objects: Optional[int] = None
    start_after: Optional[str] = None
    page_size: int = DEFAULT_PAGE_SIZE
    failure_file: Path = Path(DEFAULT_FAILURE_FILE)
    role_arn: Optional[str] = None
    profile: Optional[str] = None
    region: Optional[str] = DEFAULT_REGION

    @property
    def in_place(self) -> bool:
        return self.source_bucket == self.target_bucket

    @property
    def queue_size(self) -> int:
        return max(1, self.workers) * 2


def compile_exclude(pattern: Optional[str]) -> Optional[re.Pattern[str]]:
    if not pattern:
        return None
    return re.compile(pattern)
