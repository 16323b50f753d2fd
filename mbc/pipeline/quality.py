"""Encoder quality and container settings shared by every composition mode."""
from typing import Dict, List, Optional, Tuple
from mbc.domain.models import (
    GeometryConfig, MediaStreamProfile, PresetQuality, SourceMatchQuality, CustomQuality
)

RESOLUTIONS: Dict[str, Tuple[int, int]] = {
    "4k": (3840, 2160),
    "2k": (2560, 1440),
    "1080p": (1920, 1080),
    "720p": (1280, 720),
    "480p": (854, 480),
}
DEFAULT_RESOLUTION = RESOLUTIONS["1080p"]

PRESETS = {
    "high": {"crf": 18, "preset": "slower", "audio_bitrate": "192k"},
    "medium": {"crf": 23, "preset": "medium", "audio_bitrate": "128k"},
    "fast": {"crf": 28, "preset": "fast", "audio_bitrate": "96k"},
}

# WMV encoders only do bitrate rate control
WMV_BITRATES = {"high": "5000k", "medium": "2000k", "fast": "1000k"}
WMV_AUDIO_BITRATE = "128k"

FORMATS = {
    "mp4": {"video_codec": "libx264", "audio_codec": "aac", "container": "mp4"},
    "avi": {"video_codec": "libx264", "audio_codec": "libmp3lame", "container": "avi"},
    "mkv": {"video_codec": "libx264", "audio_codec": "aac", "container": "matroska"},
    "wmv": {"video_codec": "wmv2", "audio_codec": "wmav2", "container": "asf"},
    "mov": {"video_codec": "libx264", "audio_codec": "aac", "container": "mov"},
}

OUTPUT_PIX_FMT = "yuv420p"
DEFAULT_H264_PROFILE = "baseline"

BACKGROUND_COLORS = {"black": "black", "white": "white"}

def resolve_resolution(geometry: GeometryConfig, reference: Optional[MediaStreamProfile] = None) -> Tuple[int, int]:
    """Target (width, height). 'auto' follows the reference clip."""
    if geometry.resolution == "custom":
        return geometry.custom_width, geometry.custom_height
    if geometry.resolution == "auto":
        if reference is not None and reference.width and reference.height:
            return reference.width, reference.height
        return DEFAULT_RESOLUTION
    return RESOLUTIONS[geometry.resolution]

def even(value: int) -> int:
    """yuv420p needs even dimensions."""
    return value - (value % 2)

def background_color(background: str) -> str:
    # Blur backgrounds are not rendered, fall back to black
    return BACKGROUND_COLORS.get(background, "black")

def fit_filter(width: int, height: int, aspect: str = "pad", background: str = "black") -> str:
    """Scale chain that brings any clip to exactly width x height."""
    if aspect == "crop":
        return f"scale={width}:{height}:force_original_aspect_ratio=increase,crop={width}:{height}"
    if aspect == "stretch":
        return f"scale={width}:{height}"
    color = background_color(background)
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:{color}"
    )

def source_match_crf(width: int, height: int) -> int:
    """Finer quality factor for bigger frames when no bitrate is known."""
    pixels = width * height
    if pixels >= 3840 * 2160:
        return 16
    if pixels >= 1920 * 1080:
        return 18
    if pixels >= 1280 * 720:
        return 20
    return 22

def _kbps(bits_per_second: float) -> str:
    return f"{round(bits_per_second / 1000)}k"

def source_match_audio_bitrate(reference: Optional[MediaStreamProfile]) -> str:
    if reference is None:
        return "128k"
    if reference.audio_bitrate:
        return _kbps(max(reference.audio_bitrate, 128000))
    channels = reference.audio_channels or 2
    if channels >= 6:
        return "256k"
    if channels >= 2:
        return "192k"
    return "128k"

def _h264_video_args(quality, reference: Optional[MediaStreamProfile]) -> List[str]:
    args = []
    profile = DEFAULT_H264_PROFILE

    if isinstance(quality, PresetQuality):
        setting = PRESETS[quality.preset]
        args += ["-preset", setting["preset"], "-crf", str(setting["crf"])]
    elif isinstance(quality, SourceMatchQuality):
        args += ["-preset", "medium"]
        if reference is not None and reference.video_bitrate:
            bitrate = reference.video_bitrate
            args += [
                "-b:v", _kbps(bitrate * 1.1),
                "-maxrate", _kbps(bitrate * 1.2),
                "-bufsize", _kbps(bitrate * 2),
            ]
        else:
            width, height = (reference.width, reference.height) if reference else DEFAULT_RESOLUTION
            args += ["-crf", str(source_match_crf(width, height))]
    else:
        args += ["-preset", quality.encoder_preset or "medium"]
        if quality.video_bitrate:
            args += ["-b:v", quality.video_bitrate]
        else:
            args += ["-crf", str(quality.crf if quality.crf is not None else PRESETS["medium"]["crf"])]
        if quality.framerate:
            args += ["-r", f"{quality.framerate:g}"]
        profile = quality.video_profile or profile

    args += ["-profile:v", profile]
    return args

def _wmv_video_args(quality, reference: Optional[MediaStreamProfile]) -> List[str]:
    if isinstance(quality, PresetQuality):
        bitrate = WMV_BITRATES[quality.preset]
    elif isinstance(quality, SourceMatchQuality) and reference is not None and reference.video_bitrate:
        bitrate = _kbps(reference.video_bitrate * 1.1)
    elif isinstance(quality, CustomQuality) and quality.video_bitrate:
        bitrate = quality.video_bitrate
    else:
        bitrate = WMV_BITRATES["medium"]
    args = ["-b:v", bitrate]
    if isinstance(quality, CustomQuality) and quality.framerate:
        args += ["-r", f"{quality.framerate:g}"]
    return args

def video_args(quality, fmt: str, reference: Optional[MediaStreamProfile] = None) -> List[str]:
    settings = FORMATS[fmt]
    args = ["-c:v", settings["video_codec"]]
    if settings["video_codec"] == "libx264":
        args += _h264_video_args(quality, reference)
    else:
        args += _wmv_video_args(quality, reference)
    args += ["-pix_fmt", OUTPUT_PIX_FMT]
    return args

def audio_args(quality, fmt: str, reference: Optional[MediaStreamProfile] = None) -> List[str]:
    settings = FORMATS[fmt]
    args = ["-c:a", settings["audio_codec"]]
    if fmt == "wmv":
        bitrate = WMV_AUDIO_BITRATE
    elif isinstance(quality, PresetQuality):
        bitrate = PRESETS[quality.preset]["audio_bitrate"]
    elif isinstance(quality, SourceMatchQuality):
        bitrate = source_match_audio_bitrate(reference)
    else:
        bitrate = quality.audio_bitrate or "128k"
    args += ["-b:a", bitrate]
    if isinstance(quality, CustomQuality) and quality.audio_sample_rate:
        args += ["-ar", str(quality.audio_sample_rate)]
    return args

def container_args(fmt: str) -> List[str]:
    args = ["-f", FORMATS[fmt]["container"]]
    if fmt in ("mp4", "mov"):
        args += ["-movflags", "+faststart"]
    return args
