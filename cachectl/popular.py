#!/usr/bin/env python3
from __future__ import annotations

import argparse
import re
import sys
from pathlib import Path
from typing import Iterable, Optional

# CloudFront > Reports > Popular Objects CSV rows quote the path, e.g. "/img/a.png"
PATH_RE = re.compile(r'"(/[^"]+)"')


def extract_keys_from_text(text: str) -> list[str]:
    keys: list[str] = []
    for line in text.splitlines():
        match = PATH_RE.search(line)
        if match:
            keys.append(match.group(1)[1:])
    return keys


def extract_keys(paths: Iterable[Path]) -> list[str]:
    keys: set[str] = set()
    for path in paths:
        keys.update(extract_keys_from_text(path.read_text(encoding="utf-8")))
    return sorted(keys)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="cachectl popular",
        description=(
            "Print object keys found in CloudFront Popular Objects CSV reports, "
            "sorted and de-duplicated, for use with `cachectl --stdin`."
        ),
    )
    parser.add_argument(
        "directory",
        nargs="?",
        default="statistics",
        help="Directory holding the downloaded *.csv reports (default: statistics)",
    )
    args = parser.parse_args(argv)

    directory = Path(args.directory)
    if not directory.is_dir():
        print(f"Not a directory: {directory}", file=sys.stderr)
        return 2
    paths = sorted(directory.glob("*.csv"))
    if not paths:
        print(f"No CSV reports found in {directory}", file=sys.stderr)
        return 1
    for key in extract_keys(paths):
        print(key)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
