import re
from typing import Optional
from clipmerge.domain.models import ProgressSnapshot

# 'time=00:00:04.00' from ffmpeg's stats line; 'time=N/A' never matches
TIME_REGEX = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")
DURATION_REGEX = re.compile(r"Duration: (\d+):(\d+):(\d+(?:\.\d+)?)")


def _to_seconds(h: str, m: str, s: str) -> float:
    return int(h) * 3600 + int(m) * 60 + float(s)


def format_eta(seconds: float) -> str:
    """Zero-padded HH:MM:SS."""
    total = max(0, int(seconds))
    return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}"


def parse_progress(text: str, total_hint: Optional[float] = None) -> Optional[ProgressSnapshot]:
    """Derives a progress snapshot from ffmpeg's accumulated stderr.

    Uses the latest `time=` marker against the first declared `Duration:`.
    `total_hint` is only consulted when no Duration marker is present (concat
    demuxer inputs often report `Duration: N/A`). Returns None while either
    value is unknown.
    """
    times = TIME_REGEX.findall(text)
    if not times:
        return None

    duration_match = DURATION_REGEX.search(text)
    if duration_match:
        total = _to_seconds(*duration_match.groups())
    elif total_hint:
        total = float(total_hint)
    else:
        return None
    if total <= 0:
        return None

    current = _to_seconds(*times[-1])
    percent = min(100.0, max(0.0, current / total * 100.0))
    remaining = max(0.0, total - current)
    return ProgressSnapshot(
        percent=percent,
        elapsed_seconds=current,
        total_seconds=total,
        remaining_seconds=remaining,
        eta=format_eta(remaining),
    )
