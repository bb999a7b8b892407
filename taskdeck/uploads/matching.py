"""Filename matching between local upload records and bundle sub-tasks.

The server does not echo back our local file ids, so files are correlated by
name. Names may be normalized server-side (suffixes such as ``(1)``,
changed extensions), hence the tolerant tiers below.
"""

import os
from typing import Callable, Iterable, Optional, Sequence, Tuple

from taskdeck.uploads.models import SubTaskStatus

# fn(record_filename, sub_tasks) -> matching sub-task or None
FilenameMatcher = Callable[[str, Sequence[SubTaskStatus]], Optional[SubTaskStatus]]

# Shorter fragments match too many unrelated names
MIN_FRAGMENT_LENGTH = 3

_Candidate = Tuple[str, SubTaskStatus]


def _stem(name: str) -> str:
    return os.path.splitext(name)[0].strip()


def _contains(outer: str, inner: str) -> bool:
    return len(inner) >= MIN_FRAGMENT_LENGTH and inner in outer


def _first(
    candidates: Iterable[_Candidate], test: Callable[[str], bool]
) -> Optional[SubTaskStatus]:
    return next((task for name, task in candidates if test(name)), None)


def match_subtask(
    filename: str, sub_tasks: Sequence[SubTaskStatus]
) -> Optional[SubTaskStatus]:
    """Find the sub-task for ``filename``, case-insensitively.

    Tiers, in priority order across all sub-tasks:
    1. exact name
    2. sub-task name contains the record name
    3. record name contains the sub-task name
    Each contains tier checks full names against every sub-task before
    retrying with the extensions stripped. Fragments shorter than
    ``MIN_FRAGMENT_LENGTH`` characters never match.
    """
    wanted = filename.strip().lower()
    if not wanted:
        return None
    candidates = [(t.filename.strip().lower(), t) for t in sub_tasks if t.filename.strip()]
    wanted_stem = _stem(wanted)

    tiers = (
        lambda name: name == wanted,
        lambda name: _contains(name, wanted),
        lambda name: _contains(_stem(name), wanted_stem),
        lambda name: _contains(wanted, name),
        lambda name: _contains(wanted_stem, _stem(name)),
    )
    for test in tiers:
        match = _first(candidates, test)
        if match is not None:
            return match
    return None
