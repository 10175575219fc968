"""Merge orchestrator: the per-session state machine.

Drives one session's clips through

    VALIDATING → NORMALIZING → CONCAT_ATTEMPT → (CONCAT_FALLBACK) → VERIFYING → DONE

with ERROR reachable from every non-terminal state. Each stage consumes the
previous stage's files, so stages run strictly in sequence; only the probes in
VALIDATING fan out over a thread pool. Once a job has started, the session's
uploaded clips, normalized temporaries and manifest are removed before
`merge()` returns whatever the outcome, and the output file survives only on
success.

Different sessions merge concurrently without a shared lock: every file a job
creates is namespaced by session id and a registry-issued timestamp.
"""

import logging
import concurrent.futures
from pathlib import Path
from typing import List, Optional
from clipmerge.config.models import AppConfig
from clipmerge.domain.errors import (
    ConcatFailed,
    EmptyOutput,
    InsufficientClips,
    InvalidClip,
    MergeError,
    NormalizationFailed,
    OperationTimeout,
    ProbeError,
    ProcessSpawnFailed,
    RunError,
    RunSpawnError,
    RunTimeout,
)
from clipmerge.domain.events import (
    DurationMismatch,
    MergeCompleted,
    MergeFailed,
    MergeStageChanged,
)
from clipmerge.domain.models import ClipDescriptor, FileRole, MergeJob, MergeResult, MergeState
from clipmerge.domain.policy import needs_normalization
from clipmerge.infrastructure.event_bus import EventBus
from clipmerge.infrastructure.ffmpeg import (
    FFmpegAdapter,
    build_concat_copy_command,
    build_concat_reencode_command,
    build_normalize_command,
)
from clipmerge.infrastructure.ffprobe import FFprobeAdapter
from clipmerge.infrastructure.housekeeping import HousekeepingService
from clipmerge.infrastructure.session_registry import SessionRegistry

MIN_CLIPS = 2


def manifest_line(path: Path) -> str:
    """One concat demuxer entry; single quotes are closed, escaped and reopened."""
    escaped = str(Path(path).resolve()).replace("'", "'\\''")
    return f"file '{escaped}'"


class MergeOrchestrator:
    """Runs session merges end to end.

    Args:
        config: AppConfig (ffmpeg paths/timeouts, encode settings, tolerance).
        event_bus: EventBus for stage, progress and result events.
        registry: SessionRegistry owning the session's files.
        ffprobe_adapter: FFprobeAdapter used for validation and verification.
        ffmpeg_adapter: FFmpegAdapter used for normalization and concat.
        housekeeper: HousekeepingService performing session cleanup.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        registry: SessionRegistry,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        housekeeper: HousekeepingService,
    ):
        self.config = config
        self.event_bus = event_bus
        self.registry = registry
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.housekeeper = housekeeper
        self.logger = logging.getLogger(__name__)

    def _transition(self, job: MergeJob, state: MergeState, subscriber_id: Optional[str], message: str = ""):
        job.state = state
        self.logger.info(f"MERGE_STATE: session={job.session_id} state={state.value} {message}".rstrip())
        self.event_bus.publish(MergeStageChanged(
            session_id=job.session_id,
            subscriber_id=subscriber_id,
            state=state,
            message=message,
        ))

    def _stage_error(self, exc: RunError, stage: str, default_cls) -> MergeError:
        if isinstance(exc, RunTimeout):
            return OperationTimeout(stage, exc.timeout)
        if isinstance(exc, RunSpawnError):
            return ProcessSpawnFailed(exc.reason)
        return default_cls(exc.reason)

    # ------------------------------------------------------------------ stages

    def _probe_all(self, clips: List[Path]) -> List[ClipDescriptor]:
        workers = min(self.config.ffmpeg.probe_workers, len(clips))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="probe") as pool:
            futures = [pool.submit(self.ffprobe_adapter.probe, path) for path in clips]
            descriptors = []
            for path, future in zip(clips, futures):
                try:
                    descriptor = future.result()
                except ProbeError as exc:
                    raise InvalidClip(path, exc.reason)
                except RunError as exc:
                    raise self._stage_error(exc, "validation", lambda reason, p=path: InvalidClip(p, reason))
                if not descriptor.is_valid:
                    raise InvalidClip(path, "Invalid video")
                descriptors.append(descriptor)
        return descriptors

    def _validate(self, job: MergeJob, clips: List[Path], subscriber_id: Optional[str]):
        self._transition(job, MergeState.VALIDATING, subscriber_id, f"Validating {len(clips)} clips")
        job.clips = self._probe_all(clips)
        job.expected_total_duration = sum(c.duration for c in job.clips)
        self.logger.info(
            f"MERGE_VALIDATED: session={job.session_id} clips={len(job.clips)} "
            f"expected_duration={job.expected_total_duration:.2f}s"
        )

    def _normalize(self, job: MergeJob, subscriber_id: Optional[str]):
        self._transition(job, MergeState.NORMALIZING, subscriber_id)
        total = len(job.clips)
        for index, clip in enumerate(job.clips):
            if not needs_normalization(clip):
                job.input_files.append(clip.source_path)
                continue

            norm_path = self.registry.path_for(FileRole.NORMALIZED, job.session_id, job.timestamp, ".mp4", index=index)
            self.registry.register(job.session_id, norm_path, FileRole.NORMALIZED)
            self.logger.info(
                f"NORMALIZE: session={job.session_id} clip={clip.source_path.name} "
                f"({clip.resolution} {clip.frame_rate} {clip.video_codec}/{clip.audio_codec})"
            )
            cmd = build_normalize_command(
                self.config.ffmpeg.ffmpeg_path, clip.source_path, norm_path, self.config.merge
            )
            try:
                self.ffmpeg_adapter.run(
                    cmd,
                    stage="normalizing",
                    session_id=job.session_id,
                    subscriber_id=subscriber_id,
                    message=f"Normalizing clip {index + 1}/{total}",
                    timeout=self.config.ffmpeg.transcode_timeout_s,
                    total_hint=clip.duration,
                )
            except RunError as exc:
                raise self._stage_error(exc, "normalization", NormalizationFailed)
            job.input_files.append(norm_path)

    def _write_manifest(self, job: MergeJob):
        self.registry.register(job.session_id, job.manifest_path, FileRole.MANIFEST)
        job.manifest_path.write_text("\n".join(manifest_line(p) for p in job.input_files), encoding="utf-8")

    def _concat(self, job: MergeJob, subscriber_id: Optional[str]):
        ffmpeg_path = self.config.ffmpeg.ffmpeg_path
        timeout = self.config.ffmpeg.transcode_timeout_s

        self._transition(job, MergeState.CONCAT_ATTEMPT, subscriber_id)
        try:
            self.ffmpeg_adapter.run(
                build_concat_copy_command(ffmpeg_path, job.manifest_path, job.output_path),
                stage="concat",
                session_id=job.session_id,
                subscriber_id=subscriber_id,
                message="Merging clips (stream copy)",
                timeout=timeout,
                total_hint=job.expected_total_duration,
            )
            return
        except RunError as exc:
            self.logger.warning(f"CONCAT_COPY_FAILED: session={job.session_id} ({exc.reason}); re-encoding")

        self._transition(job, MergeState.CONCAT_FALLBACK, subscriber_id, "Stream copy failed, re-encoding")
        try:
            self.ffmpeg_adapter.run(
                build_concat_reencode_command(ffmpeg_path, job.manifest_path, job.output_path, self.config.merge),
                stage="concat_fallback",
                session_id=job.session_id,
                subscriber_id=subscriber_id,
                message="Merging clips (re-encode)",
                timeout=timeout,
                total_hint=job.expected_total_duration,
            )
        except RunError as exc:
            raise self._stage_error(exc, "concat", ConcatFailed)

    def _verify(self, job: MergeJob, subscriber_id: Optional[str]) -> bool:
        self._transition(job, MergeState.VERIFYING, subscriber_id)
        try:
            size = job.output_path.stat().st_size
        except OSError:
            size = 0
        if size == 0:
            raise EmptyOutput(job.output_path)

        try:
            job.actual_duration = self.ffprobe_adapter.get_duration(job.output_path)
        except RunError as exc:
            raise self._stage_error(exc, "verification", lambda reason: EmptyOutput(job.output_path))

        drift = abs(job.actual_duration - job.expected_total_duration)
        if drift > self.config.merge.duration_tolerance_s:
            self.logger.warning(
                f"DURATION_MISMATCH: session={job.session_id} expected={job.expected_total_duration:.2f}s "
                f"actual={job.actual_duration:.2f}s"
            )
            self.event_bus.publish(DurationMismatch(
                session_id=job.session_id,
                subscriber_id=subscriber_id,
                expected=job.expected_total_duration,
                actual=job.actual_duration,
            ))
            return True
        return False

    # -------------------------------------------------------------------- API

    def _fail(self, job: Optional[MergeJob], session_id: str, subscriber_id: Optional[str], reason: str):
        if job is not None:
            job.error_message = reason
            self._transition(job, MergeState.ERROR, subscriber_id, reason)
        self.event_bus.publish(MergeFailed(
            session_id=session_id,
            subscriber_id=subscriber_id,
            error_message=reason,
        ))

    def merge(self, session_id: str, subscriber_id: Optional[str] = None) -> MergeResult:
        """Merges all clips uploaded for `session_id` into one output file.

        Raises a MergeError subclass on failure; session cleanup has already
        run by the time it propagates. A session with too few clips is
        rejected before any work starts and keeps its uploads.
        """
        self.registry.begin_merge(session_id)
        job: Optional[MergeJob] = None
        success = False
        try:
            clips = self.registry.clips(session_id)
            if len(clips) < MIN_CLIPS:
                raise InsufficientClips(session_id, len(clips))

            timestamp = self.registry.next_timestamp()
            job = MergeJob(
                session_id=session_id,
                timestamp=timestamp,
                manifest_path=self.registry.path_for(FileRole.MANIFEST, session_id, timestamp, ".txt"),
                output_path=self.registry.path_for(FileRole.OUTPUT, session_id, timestamp, ".mp4"),
            )
            self.logger.info(f"MERGE_START: session={session_id} clips={len(clips)}")

            self._validate(job, clips, subscriber_id)
            self._normalize(job, subscriber_id)
            self._write_manifest(job)
            self._concat(job, subscriber_id)
            mismatch = self._verify(job, subscriber_id)

            size = job.output_path.stat().st_size
            self.registry.register(session_id, job.output_path, FileRole.OUTPUT)
            result = MergeResult(
                output_path=job.output_path,
                output_relative_path=f"/videos/{job.output_path.name}",
                duration_seconds=job.actual_duration or 0.0,
                size_bytes=size,
                expected_duration_seconds=job.expected_total_duration,
                duration_mismatch=mismatch,
            )
            success = True
            self._transition(job, MergeState.DONE, subscriber_id, "Merge complete")
            self.event_bus.publish(MergeCompleted(
                session_id=session_id,
                subscriber_id=subscriber_id,
                output_path=job.output_path,
                duration_seconds=result.duration_seconds,
                size_bytes=size,
            ))
            self.logger.info(
                f"MERGE_END: session={session_id} status=completed output={job.output_path.name} "
                f"duration={result.duration_seconds:.2f}s size={size}"
            )
            return result
        except MergeError as exc:
            self.logger.error(f"MERGE_END: session={session_id} status=failed ({type(exc).__name__}: {exc.reason})")
            self._fail(job, session_id, subscriber_id, exc.reason)
            raise
        except Exception as exc:
            self.logger.exception(f"MERGE_END: session={session_id} status=error")
            self._fail(job, session_id, subscriber_id, str(exc) or type(exc).__name__)
            raise
        finally:
            if job is not None:
                self.housekeeper.cleanup_session(session_id)
                if success:
                    self.housekeeper.remove_previous_outputs(session_id, keep=job.output_path)
                else:
                    job.output_path.unlink(missing_ok=True)
                    self.registry.forget(job.output_path)
            self.registry.end_merge(session_id)
