from clipmerge.domain.models import ClipDescriptor, TargetProfile, TARGET_PROFILE


def needs_normalization(descriptor: ClipDescriptor, target: TargetProfile = TARGET_PROFILE) -> bool:
    """True when the clip cannot be stream-copied next to target-profile clips.

    Comparison is exact string equality, so "29.97/1" differs from "30/1".
    """
    return (
        descriptor.resolution != target.resolution
        or descriptor.video_codec != target.video_codec
        or descriptor.audio_codec != target.audio_codec
        or descriptor.frame_rate != target.frame_rate
    )
