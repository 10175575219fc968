"""Error taxonomy for clip probing, ffmpeg runs and session merges.

Process-level failures (`RunError` and friends, `ProbeError`) are raised by the
infrastructure adapters. The orchestrator translates them into `MergeError`
subclasses, whose `status_code` tells the transport layer whether the caller
(400/409) or the service (500) is at fault.
"""

from pathlib import Path
from typing import Optional

_ERROR_PATTERNS = (
    ("Invalid data", "Corrupted file"),
    ("No such file", "Missing file"),
    ("timeout", "Timeout"),
    ("Codec not supported", "Incompatible codec"),
)


def classify_ffmpeg_error(diagnostic_text: Optional[str]) -> str:
    """Maps raw ffmpeg stderr to a short human-readable reason."""
    text = diagnostic_text or ""
    for needle, reason in _ERROR_PATTERNS:
        if needle in text:
            return reason
    return text.strip() or "Unknown error"


class RunError(Exception):
    """ffmpeg/ffprobe exited non-zero (or could not run at all)."""

    def __init__(self, exit_code: Optional[int], diagnostic_text: str = ""):
        self.exit_code = exit_code
        self.diagnostic_text = diagnostic_text or ""
        super().__init__(f"process exited with code {exit_code}: {self.reason}")

    @property
    def reason(self) -> str:
        return classify_ffmpeg_error(self.diagnostic_text)


class RunTimeout(RunError):
    def __init__(self, timeout: float, diagnostic_text: str = ""):
        self.timeout = timeout
        super().__init__(None, diagnostic_text)

    @property
    def reason(self) -> str:
        return "Timeout"


class RunSpawnError(RunError):
    def __init__(self, executable: str, cause: str = ""):
        self.executable = executable
        super().__init__(None, cause)

    @property
    def reason(self) -> str:
        return f"Could not start {self.executable}: {self.diagnostic_text or 'unknown error'}"


class ProbeError(Exception):
    """The clip was rejected by the decodability check or metadata parsing."""

    is_valid = False

    def __init__(self, path: Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{self.path.name}: {reason}")


class MergeError(Exception):
    status_code = 500

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InsufficientClips(MergeError):
    status_code = 400

    def __init__(self, session_id: str, count: int):
        self.session_id = session_id
        self.count = count
        super().__init__(f"Need at least 2 videos for session {session_id} (found {count})")


class InvalidClip(MergeError):
    status_code = 400

    def __init__(self, path: Path, reason: str):
        self.path = Path(path)
        super().__init__(f"Invalid video {self.path.name}: {reason}")


class NormalizationFailed(MergeError):
    pass


class ConcatFailed(MergeError):
    pass


class EmptyOutput(MergeError):
    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(f"Invalid output: {self.path.name} is missing or empty")


class OperationTimeout(MergeError):
    def __init__(self, stage: str, timeout: float):
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"Timeout after {timeout:g}s during {stage}")


class ProcessSpawnFailed(MergeError):
    pass


class MergeInProgress(MergeError):
    status_code = 409

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"A merge is already running for session {session_id}")
