from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from clipmerge.config.models import AppConfig
from clipmerge.infrastructure.event_bus import EventBus
from clipmerge.infrastructure.ffmpeg import FFmpegAdapter
from clipmerge.infrastructure.ffprobe import FFprobeAdapter
from clipmerge.infrastructure.housekeeping import CleanupScheduler, HousekeepingService
from clipmerge.infrastructure.session_registry import SessionRegistry
from clipmerge.pipeline.orchestrator import MergeOrchestrator


@dataclass
class Services:
    """Everything the HTTP app and the CLI share, wired once per process."""

    config: AppConfig
    event_bus: EventBus
    registry: SessionRegistry
    ffprobe: FFprobeAdapter
    ffmpeg: FFmpegAdapter
    housekeeper: HousekeepingService
    scheduler: CleanupScheduler
    orchestrator: MergeOrchestrator


def build_services(config: AppConfig, event_bus: Optional[EventBus] = None) -> Services:
    bus = event_bus or EventBus()
    registry = SessionRegistry(Path(config.storage.videos_dir))
    registry.rebuild_from_disk()

    ffprobe = FFprobeAdapter(
        ffmpeg_path=config.ffmpeg.ffmpeg_path,
        ffprobe_path=config.ffmpeg.resolved_ffprobe_path(),
        timeout=config.ffmpeg.probe_timeout_s,
    )
    ffmpeg = FFmpegAdapter(event_bus=bus, debug=config.general.debug)
    housekeeper = HousekeepingService(registry, ttl_s=config.storage.ttl_s, event_bus=bus)
    scheduler = CleanupScheduler(housekeeper, interval_s=config.storage.cleanup_interval_s)
    orchestrator = MergeOrchestrator(
        config=config,
        event_bus=bus,
        registry=registry,
        ffprobe_adapter=ffprobe,
        ffmpeg_adapter=ffmpeg,
        housekeeper=housekeeper,
    )
    return Services(
        config=config,
        event_bus=bus,
        registry=registry,
        ffprobe=ffprobe,
        ffmpeg=ffmpeg,
        housekeeper=housekeeper,
        scheduler=scheduler,
        orchestrator=orchestrator,
    )
