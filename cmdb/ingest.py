"""
cmdb/ingest.py -- Target list parser for bulk scans.

A target list is plain UTF-8 text, one target per line. A line may also
carry several targets separated by commas or semicolons, and anything after
"#" is a comment. A leading BOM (common in files saved by Windows editors)
is tolerated.

Failure reports written by cmdb/bulk.py use the same format
("<target>    # Error: ..."), so a report can be fed straight back in.

Pipeline:
  file / text / iterable -> load_targets() -> list[str]
  -> BulkScanOrchestrator.run() -> one pipeline per target

Target syntax is NOT validated here. A malformed name is simply a target
that fails collection and lands in the failure report.
"""

import re
from collections.abc import Iterable
from pathlib import Path
from typing import Union

_SEPARATOR_RE = re.compile(r"[,;]")

TargetSource = Union[str, Path, Iterable[str]]


def parse_targets(content: str) -> list[str]:
    """Parse target list text into an ordered, de-duplicated list.

    Blank entries are dropped. Duplicates are compared case-insensitively and
    the first spelling wins.
    """
    seen: set[str] = set()
    targets: list[str] = []
    for line in content.lstrip("\ufeff").splitlines():
        line = line.split("#", 1)[0]
        for item in _SEPARATOR_RE.split(line):
            target = item.strip()
            if not target or target.lower() in seen:
                continue
            seen.add(target.lower())
            targets.append(target)
    return targets


def read_target_file(path: Union[str, Path]) -> list[str]:
    # utf-8-sig strips the BOM if present
    return parse_targets(Path(path).read_text(encoding="utf-8-sig"))


def load_targets(source: TargetSource) -> tuple[list[str], str]:
    """Resolve any supported source to (targets, description).

    A Path, or a string naming an existing file, is read from disk. Any other
    string is parsed as list text. Other iterables are treated as one target
    per item. The description is the file path, or "inline" for text and
    iterables, and ends up in the failure report header.
    """
    if isinstance(source, Path):
        return read_target_file(source), str(source)
    if isinstance(source, str):
        if "\n" not in source and source.strip() and Path(source).is_file():
            return read_target_file(source), source
        return parse_targets(source), "inline"
    return parse_targets("\n".join(str(item) for item in source)), "inline"
