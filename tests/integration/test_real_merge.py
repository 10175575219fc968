"""
Integration tests against a real ffmpeg/ffprobe install.

Clips are rendered on the fly from lavfi test sources, so no fixture data is
needed. Skipped automatically when ffmpeg is not on PATH.

Run with: pytest -m slow
Skip with: pytest -m "not slow"
"""
import pytest
from clipmerge.config.models import AppConfig
from clipmerge.domain.errors import InvalidClip
from clipmerge.domain.events import MergeProgressUpdated, MergeStageChanged
from clipmerge.domain.models import MergeState
from clipmerge.pipeline.services import build_services


@pytest.fixture
def services(tmp_path):
    config = AppConfig(storage={"videos_dir": str(tmp_path / "videos")})
    return build_services(config)


def _add(services, session_id, path):
    with open(path, "rb") as f:
        return services.registry.put_clip(session_id, f, path.suffix)


@pytest.mark.slow
@pytest.mark.integration
def test_target_profile_clips_merge_by_stream_copy(services, generate_clip):
    clips = [
        _add(services, "it-1", generate_clip("a.mp4", duration=3)),
        _add(services, "it-1", generate_clip("b.mp4", duration=2)),
    ]
    states = []
    services.event_bus.subscribe(MergeStageChanged, lambda e: states.append(e.state))

    result = services.orchestrator.merge("it-1")

    assert result.output_path.exists()
    assert result.size_bytes > 0
    assert result.duration_seconds == pytest.approx(5.0, abs=0.5)
    assert result.duration_mismatch is False
    assert MergeState.CONCAT_FALLBACK not in states
    assert not any(p.exists() for p in clips)
    assert sorted(p.name for p in services.registry.videos_dir.iterdir()) == [result.output_path.name]


@pytest.mark.slow
@pytest.mark.integration
def test_mixed_clips_are_normalized(services, generate_clip):
    _add(services, "it-2", generate_clip("hd.mp4", duration=2))
    _add(services, "it-2", generate_clip("small.mp4", duration=2, size="640x360", rate=25))
    progress = []
    services.event_bus.subscribe(MergeProgressUpdated, progress.append)

    result = services.orchestrator.merge("it-2", subscriber_id="it")

    assert result.duration_seconds == pytest.approx(4.0, abs=0.5)
    assert any(e.stage == "normalizing" for e in progress)
    probed = services.ffprobe.probe(result.output_path)
    assert probed.resolution == "1920x1080"
    assert probed.video_codec == "h264"
    assert probed.audio_codec == "aac"


@pytest.mark.slow
@pytest.mark.integration
def test_corrupt_upload_is_rejected(services, generate_clip, tmp_path):
    _add(services, "it-3", generate_clip("ok.mp4", duration=1))
    broken = tmp_path / "broken.mp4"
    broken.write_bytes(b"definitely not a video")
    _add(services, "it-3", broken)

    with pytest.raises(InvalidClip):
        services.orchestrator.merge("it-3")

    assert list(services.registry.videos_dir.iterdir()) == []
