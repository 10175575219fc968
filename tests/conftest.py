import pytest
import shutil
import subprocess
import yaml
from pathlib import Path
from clipmerge.config.models import AppConfig
from clipmerge.domain.models import ClipDescriptor
from clipmerge.infrastructure.event_bus import EventBus
from clipmerge.infrastructure.session_registry import SessionRegistry

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(tmp_path):
    """Returns an AppConfig rooted at a temporary videos directory."""
    return AppConfig(
        general={"debug": False},
        server={"api_key": "test-key"},
        ffmpeg={"ffmpeg_path": "ffmpeg", "probe_timeout_s": 5, "transcode_timeout_s": 60},
        storage={"videos_dir": str(tmp_path / "videos"), "ttl_s": 7200},
        merge={"duration_tolerance_s": 5.0},
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    config_data = {
        "general": {"debug": True},
        "server": {"port": 8080, "api_key": "from-yaml"},
        "ffmpeg": {"ffmpeg_path": "/opt/ffmpeg/bin/ffmpeg", "transcode_timeout_s": 120},
        "storage": {"videos_dir": str(tmp_path / "stored"), "ttl_s": 600},
        "merge": {"preset": "fast", "crf": 20},
    }
    config_file = tmp_path / "clipmerge.yaml"
    with open(config_file, "w") as f:
        yaml.dump(config_data, f)
    return config_file

# ============================================================================
# Infrastructure Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def videos_dir(tmp_path):
    path = tmp_path / "videos"
    path.mkdir()
    return path

@pytest.fixture
def registry(videos_dir):
    return SessionRegistry(videos_dir)

@pytest.fixture
def make_clip():
    """Builds a ClipDescriptor at the target profile unless overridden."""
    def _make(path, duration=5.0, **overrides):
        fields = {
            "source_path": Path(path),
            "duration": duration,
            "resolution": "1920x1080",
            "frame_rate": "30/1",
            "video_codec": "h264",
            "audio_codec": "aac",
            "file_size_bytes": 1024,
            "is_valid": True,
        }
        fields.update(overrides)
        return ClipDescriptor(**fields)
    return _make

# ============================================================================
# Real ffmpeg Fixtures
# ============================================================================

@pytest.fixture
def ffmpeg_available():
    if shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None:
        pytest.skip("ffmpeg/ffprobe not installed")
    return True

@pytest.fixture
def generate_clip(ffmpeg_available, tmp_path):
    """Renders a short synthetic clip with lavfi test sources."""
    def _generate(name, duration=2, size="1920x1080", rate=30):
        out = tmp_path / "sources" / name
        out.parent.mkdir(exist_ok=True)
        subprocess.run(
            [
                "ffmpeg", "-y", "-nostdin", "-v", "error",
                "-f", "lavfi", "-i", f"testsrc=size={size}:rate={rate}:duration={duration}",
                "-f", "lavfi", "-i", f"sine=frequency=440:duration={duration}",
                "-c:v", "libx264", "-pix_fmt", "yuv420p", "-c:a", "aac",
                "-shortest", str(out),
            ],
            check=True,
            capture_output=True,
        )
        return out
    return _generate

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (integration tests with real ffmpeg)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
