from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

UNKNOWN = "unknown"

class FileRole(str, Enum):
    """Filename prefix marking what a session file is used for."""
    VIDEO = "video"
    NORMALIZED = "norm"
    MANIFEST = "filelist"
    OUTPUT = "output"

class MergeState(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    NORMALIZING = "NORMALIZING"
    CONCAT_ATTEMPT = "CONCAT_ATTEMPT"
    CONCAT_FALLBACK = "CONCAT_FALLBACK"
    VERIFYING = "VERIFYING"
    DONE = "DONE"
    ERROR = "ERROR"

class ClipDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_path: Path
    duration: float = Field(default=0.0, ge=0.0)
    resolution: str = UNKNOWN
    frame_rate: str = UNKNOWN
    video_codec: str = UNKNOWN
    audio_codec: str = UNKNOWN
    file_size_bytes: int = 0
    is_valid: bool = True

class TargetProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = 1920
    height: int = 1080
    video_codec: str = "h264"
    audio_codec: str = "aac"
    frame_rate: str = "30/1"

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def fps(self) -> int:
        num, _, den = self.frame_rate.partition("/")
        return int(num) // int(den or 1)

TARGET_PROFILE = TargetProfile()

class ProgressSnapshot(BaseModel):
    percent: float = Field(ge=0.0, le=100.0)
    elapsed_seconds: float
    total_seconds: float
    remaining_seconds: float
    eta: str

class MergeJob(BaseModel):
    session_id: str
    timestamp: int
    clips: List[ClipDescriptor] = Field(default_factory=list)
    input_files: List[Path] = Field(default_factory=list)
    manifest_path: Path
    output_path: Path
    expected_total_duration: float = 0.0
    actual_duration: Optional[float] = None
    state: MergeState = MergeState.IDLE
    error_message: Optional[str] = None

class MergeResult(BaseModel):
    output_path: Path
    output_relative_path: str
    duration_seconds: float
    size_bytes: int
    expected_duration_seconds: float
    duration_mismatch: bool = False
