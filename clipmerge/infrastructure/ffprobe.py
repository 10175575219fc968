import subprocess
import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List
from clipmerge.domain.errors import ProbeError, RunSpawnError, RunTimeout, classify_ffmpeg_error
from clipmerge.domain.models import ClipDescriptor, UNKNOWN

class FFprobeAdapter:
    """Validates clips and extracts their stream information.

    A probe is two invocations: an ffmpeg decode pass to reject files that
    cannot be read end to end, then ffprobe's JSON dump for metadata.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe", timeout: float = 10.0):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            result = float(value)
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(result) or math.isinf(result):
            return 0.0
        return result

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                cmd, capture_output=True, text=True, encoding="utf-8", errors="replace", timeout=self.timeout
            )
        except subprocess.TimeoutExpired as exc:
            stderr = exc.stderr.decode(errors="replace") if isinstance(exc.stderr, bytes) else (exc.stderr or "")
            raise RunTimeout(self.timeout, stderr) from exc
        except OSError as exc:
            raise RunSpawnError(cmd[0], str(exc)) from exc

    def check_decodable(self, file_path: Path):
        """Decodes the whole file to the null muxer; raises ProbeError on any error."""
        cmd = [self.ffmpeg_path, "-v", "error", "-nostdin", "-i", str(file_path), "-f", "null", "-"]
        result = self._run(cmd)
        if result.returncode != 0:
            raise ProbeError(file_path, classify_ffmpeg_error(result.stderr))

    def get_stream_info(self, file_path: Path) -> Dict[str, Any]:
        """Executes ffprobe and parses its JSON output."""
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]
        result = self._run(cmd)
        if result.returncode != 0:
            raise ProbeError(file_path, f"ffprobe failed: {classify_ffmpeg_error(result.stderr)}")

        try:
            data = json.loads(result.stdout)
        except (TypeError, ValueError):
            raise ProbeError(file_path, "ffprobe output could not be parsed")
        if not isinstance(data, dict):
            raise ProbeError(file_path, "ffprobe output could not be parsed")

        streams = data.get("streams")
        fmt = data.get("format")
        if not isinstance(streams, list) or not isinstance(fmt, dict):
            raise ProbeError(file_path, "ffprobe output is missing streams or format")
        return data

    def probe(self, file_path: Path) -> ClipDescriptor:
        """Full validation + metadata extraction for one clip."""
        file_path = Path(file_path)
        self.check_decodable(file_path)
        data = self.get_stream_info(file_path)

        video_stream = next((s for s in data["streams"] if s.get("codec_type") == "video"), None)
        audio_stream = next((s for s in data["streams"] if s.get("codec_type") == "audio"), None)
        if not video_stream:
            raise ProbeError(file_path, "No video stream")

        width = video_stream.get("width")
        height = video_stream.get("height")
        resolution = f"{width}x{height}" if width and height else UNKNOWN

        try:
            file_size = file_path.stat().st_size
        except OSError:
            raise ProbeError(file_path, "Missing file")

        descriptor = ClipDescriptor(
            source_path=file_path,
            duration=self._to_float(data["format"].get("duration")),
            resolution=resolution,
            frame_rate=video_stream.get("r_frame_rate") or UNKNOWN,
            video_codec=video_stream.get("codec_name") or UNKNOWN,
            audio_codec=(audio_stream.get("codec_name") if audio_stream else None) or UNKNOWN,
            file_size_bytes=file_size,
            is_valid=True,
        )
        self.logger.debug(
            f"PROBE: {file_path.name} duration={descriptor.duration:.2f}s res={descriptor.resolution} "
            f"fps={descriptor.frame_rate} v={descriptor.video_codec} a={descriptor.audio_codec}"
        )
        return descriptor

    def get_duration(self, file_path: Path) -> float:
        """Container duration in seconds; 0.0 if ffprobe reports nothing usable."""
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(file_path)
        ]
        result = self._run(cmd)
        if result.returncode != 0:
            self.logger.warning(f"PROBE_DURATION_FAILED: {Path(file_path).name}: {result.stderr.strip()}")
            return 0.0
        return self._to_float((result.stdout or "").strip())
