import pytest
from pathlib import Path
from clipmerge.domain.models import TargetProfile, TARGET_PROFILE, UNKNOWN
from clipmerge.domain.policy import needs_normalization


def test_target_profile_clip_is_stream_copyable(make_clip):
    assert needs_normalization(make_clip("a.mp4")) is False


@pytest.mark.parametrize("field,value", [
    ("resolution", "1280x720"),
    ("frame_rate", "25/1"),
    ("video_codec", "hevc"),
    ("audio_codec", "opus"),
])
def test_any_differing_field_requires_normalization(make_clip, field, value):
    assert needs_normalization(make_clip("a.mp4", **{field: value})) is True


def test_comparison_is_exact_string_match(make_clip):
    # Numerically close frame rates still differ
    assert needs_normalization(make_clip("a.mp4", frame_rate="30000/1001")) is True
    assert needs_normalization(make_clip("a.mp4", frame_rate="30/1 ")) is True


def test_missing_audio_requires_normalization(make_clip):
    assert needs_normalization(make_clip("a.mp4", audio_codec=UNKNOWN)) is True


def test_custom_target(make_clip):
    target = TargetProfile(width=1280, height=720, frame_rate="25/1")
    clip = make_clip("a.mp4", resolution="1280x720", frame_rate="25/1")
    assert needs_normalization(clip, target) is False
    assert needs_normalization(clip) is True


def test_target_profile_defaults():
    assert TARGET_PROFILE.resolution == "1920x1080"
    assert TARGET_PROFILE.fps == 30
    assert TARGET_PROFILE.video_codec == "h264"
    assert TARGET_PROFILE.audio_codec == "aac"
