import subprocess
import logging
import time
import threading
import queue
from pathlib import Path
from typing import List, Optional
from clipmerge.config.models import MergeConfig
from clipmerge.domain.errors import RunError, RunSpawnError, RunTimeout
from clipmerge.domain.events import MergeProgressUpdated
from clipmerge.domain.models import TargetProfile, TARGET_PROFILE
from clipmerge.infrastructure.event_bus import EventBus
from clipmerge.infrastructure.progress import parse_progress

# Timestamp regeneration + negative timestamp correction; without these the
# concat demuxer can produce outputs reporting absurd (multi-day) durations.
TIMESTAMP_FIX_ARGS = ["-fflags", "+genpts", "-avoid_negative_ts", "make_zero"]


def _encode_args(merge: MergeConfig) -> List[str]:
    return [
        "-c:v", "libx264",
        "-preset", merge.preset,
        "-crf", str(merge.crf),
        "-c:a", "aac",
        "-b:a", merge.audio_bitrate,
    ]


def build_normalize_command(
    ffmpeg_path: str,
    input_path: Path,
    output_path: Path,
    merge: MergeConfig,
    target: TargetProfile = TARGET_PROFILE,
) -> List[str]:
    """Scale into the target frame keeping aspect ratio, pad centered with black."""
    w, h = target.width, target.height
    video_filter = (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2"
    )
    return [
        ffmpeg_path, "-y", "-nostdin",
        "-i", str(input_path),
        "-vf", video_filter,
        "-r", str(target.fps),
        *_encode_args(merge),
        str(output_path),
    ]


def build_concat_copy_command(ffmpeg_path: str, manifest_path: Path, output_path: Path) -> List[str]:
    return [
        ffmpeg_path, "-y", "-nostdin",
        "-f", "concat", "-safe", "0",
        "-i", str(manifest_path),
        "-c", "copy",
        *TIMESTAMP_FIX_ARGS,
        str(output_path),
    ]


def build_concat_reencode_command(
    ffmpeg_path: str, manifest_path: Path, output_path: Path, merge: MergeConfig
) -> List[str]:
    return [
        ffmpeg_path, "-y", "-nostdin",
        "-f", "concat", "-safe", "0",
        "-i", str(manifest_path),
        *_encode_args(merge),
        *TIMESTAMP_FIX_ARGS,
        str(output_path),
    ]


class FFmpegAdapter:
    """Runs ffmpeg invocations and turns their stderr into progress events."""

    def __init__(self, event_bus: EventBus, debug: bool = False):
        self.event_bus = event_bus
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def run(
        self,
        cmd: List[str],
        stage: str,
        session_id: str = "",
        subscriber_id: Optional[str] = None,
        message: Optional[str] = None,
        timeout: Optional[float] = None,
        total_hint: Optional[float] = None,
    ):
        """Executes one ffmpeg command; returns on exit code 0, raises RunError otherwise.

        The diagnostic buffer is local to this call, so progress for a new stage
        never mixes with text from the previous one.
        """
        start_time = time.monotonic()
        self.logger.info(f"FFMPEG_START: session={session_id} stage={stage}")
        if self.debug:
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True,  # ffmpeg's '\r' stats updates become separate lines
                encoding="utf-8",
                errors="replace",  # container tags are not always UTF-8
                bufsize=1
            )
        except OSError as exc:
            self.logger.error(f"FFMPEG_SPAWN_FAILED: stage={stage} ({exc})")
            raise RunSpawnError(cmd[0], str(exc)) from exc

        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()

        def _reader():
            if not process.stderr:
                output_queue.put(None)
                return
            for line in process.stderr:
                output_queue.put(line)
            output_queue.put(None)

        reader_thread = threading.Thread(target=_reader, daemon=True)
        reader_thread.start()

        diagnostic_text = ""
        deadline = start_time + timeout if timeout else None

        while True:
            if deadline is not None and time.monotonic() > deadline:
                self.logger.error(f"FFMPEG_TIMEOUT: session={session_id} stage={stage} after {timeout:g}s")
                process.kill()
                process.wait()
                raise RunTimeout(timeout, diagnostic_text)

            try:
                line = output_queue.get(timeout=0.1)
            except queue.Empty:
                if process.poll() is not None and not reader_thread.is_alive():
                    break
                continue

            if line is None:
                break

            diagnostic_text += line
            if subscriber_id:
                snapshot = parse_progress(diagnostic_text, total_hint=total_hint)
                if snapshot is not None:
                    self.event_bus.publish(MergeProgressUpdated(
                        session_id=session_id,
                        subscriber_id=subscriber_id,
                        stage=stage,
                        message=message or stage,
                        snapshot=snapshot,
                    ))

        process.wait()
        elapsed = time.monotonic() - start_time

        if process.returncode != 0:
            self.logger.warning(
                f"FFMPEG_END: session={session_id} stage={stage} status=failed "
                f"code={process.returncode} elapsed={elapsed:.2f}s"
            )
            raise RunError(process.returncode, diagnostic_text)

        self.logger.info(f"FFMPEG_END: session={session_id} stage={stage} status=completed elapsed={elapsed:.2f}s")
