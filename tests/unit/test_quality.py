import pytest
from pydantic import ValidationError
from mbc.domain.models import CustomQuality, GeometryConfig, PresetQuality, SourceMatchQuality
from mbc.pipeline import quality as q

def _value(args, flag):
    return args[args.index(flag) + 1]

def test_resolve_resolution(make_profile):
    reference = make_profile(width=1280, height=536)

    assert q.resolve_resolution(GeometryConfig(resolution="720p")) == (1280, 720)
    assert q.resolve_resolution(GeometryConfig(resolution="4k"), reference) == (3840, 2160)
    assert q.resolve_resolution(GeometryConfig(), reference) == (1280, 536)
    assert q.resolve_resolution(GeometryConfig()) == (1920, 1080)
    custom = GeometryConfig(resolution="custom", custom_width=1000, custom_height=500)
    assert q.resolve_resolution(custom) == (1000, 500)

def test_custom_resolution_requires_dimensions():
    with pytest.raises(ValidationError):
        GeometryConfig(resolution="custom", custom_width=1000)

def test_even():
    assert q.even(853) == 852
    assert q.even(854) == 854

def test_fit_filters():
    assert q.fit_filter(1280, 720, "stretch") == "scale=1280:720"
    assert q.fit_filter(1280, 720, "crop") == (
        "scale=1280:720:force_original_aspect_ratio=increase,crop=1280:720"
    )
    assert q.fit_filter(1280, 720, "pad", "white").endswith("pad=1280:720:(ow-iw)/2:(oh-ih)/2:white")
    assert q.fit_filter(1280, 720, "pad", "blur").endswith(":black")

@pytest.mark.parametrize("preset, crf, speed", [
    ("high", "18", "slower"),
    ("medium", "23", "medium"),
    ("fast", "28", "fast"),
])
def test_preset_video_args(preset, crf, speed):
    args = q.video_args(PresetQuality(preset=preset), "mp4")
    assert _value(args, "-c:v") == "libx264"
    assert _value(args, "-crf") == crf
    assert _value(args, "-preset") == speed
    assert _value(args, "-profile:v") == "baseline"
    assert _value(args, "-pix_fmt") == "yuv420p"

def test_source_match_follows_reference_bitrate(make_profile):
    args = q.video_args(SourceMatchQuality(), "mkv", make_profile(video_bitrate=5000000))
    assert _value(args, "-b:v") == "5500k"
    assert _value(args, "-maxrate") == "6000k"
    assert _value(args, "-bufsize") == "10000k"
    assert "-crf" not in args

def test_source_match_without_bitrate_uses_crf_tier(make_profile):
    args = q.video_args(SourceMatchQuality(), "mp4", make_profile(width=3840, height=2160))
    assert _value(args, "-crf") == "16"
    args = q.video_args(SourceMatchQuality(), "mp4", make_profile(width=640, height=360))
    assert _value(args, "-crf") == "22"

def test_custom_quality_args():
    quality = CustomQuality(video_bitrate="4000k", framerate=30, video_profile="high", encoder_preset="slow")
    args = q.video_args(quality, "mov")
    assert _value(args, "-b:v") == "4000k"
    assert _value(args, "-r") == "30"
    assert _value(args, "-profile:v") == "high"
    assert _value(args, "-preset") == "slow"

    audio = q.audio_args(CustomQuality(audio_bitrate="256k", audio_sample_rate=44100), "mp4")
    assert audio == ["-c:a", "aac", "-b:a", "256k", "-ar", "44100"]

def test_wmv_uses_bitrate_control():
    args = q.video_args(PresetQuality(preset="medium"), "wmv")
    assert _value(args, "-c:v") == "wmv2"
    assert _value(args, "-b:v") == "2000k"
    assert "-crf" not in args
    assert "-profile:v" not in args
    assert q.audio_args(PresetQuality(preset="high"), "wmv") == ["-c:a", "wmav2", "-b:a", "128k"]

def test_source_match_audio_bitrate(make_profile):
    assert q.source_match_audio_bitrate(None) == "128k"
    assert q.source_match_audio_bitrate(make_profile(audio_bitrate=96000)) == "128k"
    assert q.source_match_audio_bitrate(make_profile(audio_bitrate=320000)) == "320k"
    assert q.source_match_audio_bitrate(make_profile(audio_channels=6)) == "256k"

def test_container_args():
    assert q.container_args("mp4") == ["-f", "mp4", "-movflags", "+faststart"]
    assert q.container_args("mkv") == ["-f", "matroska"]
    assert q.container_args("wmv") == ["-f", "asf"]
