from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

class GeneralConfig(BaseModel):
    debug: bool = False
    log_path: Optional[str] = None

class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    api_key: str = "supersecretkey"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

class FFmpegConfig(BaseModel):
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: Optional[str] = None  # Derived from ffmpeg_path when unset
    probe_timeout_s: float = Field(default=10.0, gt=0)
    transcode_timeout_s: float = Field(default=300.0, gt=0)
    probe_workers: int = Field(default=4, ge=1)

    def resolved_ffprobe_path(self) -> str:
        if self.ffprobe_path:
            return self.ffprobe_path
        path = Path(self.ffmpeg_path)
        return str(path.with_name(path.name.replace("ffmpeg", "ffprobe")))

class StorageConfig(BaseModel):
    videos_dir: str = "videos"
    max_upload_bytes: int = Field(default=100 * 1024 * 1024, gt=0)
    ttl_s: float = Field(default=2 * 60 * 60, gt=0)
    cleanup_interval_s: float = Field(default=30 * 60, gt=0)

class MergeConfig(BaseModel):
    duration_tolerance_s: float = Field(default=5.0, ge=0.0)
    preset: str = "veryfast"
    crf: int = Field(default=23, ge=0, le=51)
    audio_bitrate: str = "128k"

    @field_validator("audio_bitrate")
    @classmethod
    def validate_bitrate(cls, v: str) -> str:
        if not v or not v.rstrip("kKmM").isdigit():
            raise ValueError(f"Invalid audio bitrate {v!r}. Use e.g. '128k'.")
        return v

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    ffmpeg: FFmpegConfig = Field(default_factory=FFmpegConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    merge: MergeConfig = Field(default_factory=MergeConfig)
