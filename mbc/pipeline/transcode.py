"""Argument builders for the per-file batch operations (MP3 and HLS)."""
import platform
import sys
from pathlib import Path
from typing import List, Optional, Tuple
from mbc.domain.models import Mp3BatchOptions, HlsBatchOptions, MediaStreamProfile
from mbc.pipeline.quality import RESOLUTIONS

HLS_QUALITY = {
    "high": {"crf": 12, "preset": "slower"},
    "medium": {"crf": 16, "preset": "slow"},
    "fast": {"crf": 20, "preset": "medium"},
}
HLS_CBR_KBPS = {"high": 5000, "medium": 2000, "fast": 1000}
HLS_LIST_SIZE = 6

HARDWARE_ENCODER = "h264_videotoolbox"
HLS_HW_QUALITY = {
    "high": {"q": 20, "profile": "main", "bitrate": "6000k", "maxrate": "8000k", "bufsize": "12000k"},
    "medium": {"q": 25, "profile": "main", "bitrate": "4000k", "maxrate": "6000k", "bufsize": "8000k"},
    "fast": {"q": 30, "profile": "baseline", "bitrate": "3000k", "maxrate": "4000k", "bufsize": "6000k"},
}

def mp3_output_path(source: Path, output_dir: Path, options: Mp3BatchOptions) -> Path:
    """Mirrors the source tree under output_dir when keep_structure is on."""
    if options.keep_structure and options.source_root is not None:
        try:
            return output_dir / source.relative_to(options.source_root)
        except ValueError:
            pass
    return output_dir / source.name

def should_skip_mp3(current_kbps: Optional[int], options: Mp3BatchOptions) -> bool:
    """Files already at or below the threshold are left alone unless forced."""
    return not options.force_process and current_kbps is not None and current_kbps <= options.threshold

def mp3_args(source: Path, target: Path, options: Mp3BatchOptions) -> List[str]:
    bitrate = f"{options.bitrate}k"
    args = ["-i", str(source), "-map", "a", "-b:a", bitrate]
    if options.encoding_mode == "cbr":
        args += ["-minrate", bitrate, "-maxrate", bitrate]
    args += ["-y", str(target)]
    return args

def hls_segment_duration(options: HlsBatchOptions) -> int:
    if options.fast_start:
        return max(3, min(options.segment_duration, 6))
    return options.segment_duration

def hls_paths(source: Path, output_dir: Path) -> Tuple[Path, Path, Path]:
    """(directory, playlist, segment pattern) for one source file."""
    base = source.stem
    directory = output_dir / base
    return directory, directory / f"{base}.m3u8", directory / f"{base}_%03d.ts"

def hardware_encoder() -> Optional[str]:
    """VideoToolbox H.264 on macOS 10.13 (Darwin 17) and later, else None."""
    if sys.platform != "darwin":
        return None
    try:
        major = int(platform.release().split(".")[0])
    except ValueError:
        return None
    return HARDWARE_ENCODER if major >= 17 else None

def _software_video_args(options: HlsBatchOptions) -> List[str]:
    setting = HLS_QUALITY[options.quality]
    custom = options.custom
    if custom is not None:
        args = [
            "-c:v", "libx264",
            "-profile:v", custom.video_profile or "high",
            "-preset", custom.encoder_preset or setting["preset"],
        ]
        if custom.video_bitrate:
            args += ["-b:v", custom.video_bitrate]
        else:
            args += ["-crf", str(custom.crf if custom.crf is not None else setting["crf"])]
        if custom.framerate:
            args += ["-r", f"{custom.framerate:g}"]
        return args + ["-threads", "0", "-bf", "2", "-level", "3.1"]

    args = ["-c:v", "libx264", "-profile:v", "high", "-preset", setting["preset"]]
    if options.cbr:
        kbps = HLS_CBR_KBPS[options.quality]
        args += ["-b:v", f"{kbps}k", "-maxrate", f"{round(kbps * 1.5)}k", "-bufsize", f"{kbps * 3}k"]
    else:
        args += ["-crf", str(setting["crf"])]
    return args + ["-threads", "0", "-bf", "2", "-level", "3.1"]

def _hardware_video_args(options: HlsBatchOptions, encoder: str) -> List[str]:
    setting = HLS_HW_QUALITY[options.quality]
    custom = options.custom
    args = ["-c:v", encoder]
    if custom is not None:
        args += ["-profile:v", custom.video_profile or setting["profile"], "-allow_sw", "1"]
        if custom.video_bitrate:
            args += ["-b:v", custom.video_bitrate]
        else:
            args += ["-q:v", str(setting["q"])]
        if custom.framerate:
            args += ["-r", f"{custom.framerate:g}"]
        return args

    args += ["-profile:v", setting["profile"], "-allow_sw", "1"]
    if options.cbr:
        args += ["-b:v", setting["bitrate"], "-maxrate", setting["maxrate"], "-bufsize", setting["bufsize"]]
    else:
        args += ["-q:v", str(setting["q"])]
    return args

def _audio_args(options: HlsBatchOptions, profile: Optional[MediaStreamProfile]) -> List[str]:
    if profile is not None and not profile.has_audio:
        return ["-an"]
    if options.mobile_audio:
        bitrate, rate = "96k", 44100
    else:
        bitrate, rate = "128k", 48000
    if options.custom is not None:
        bitrate = options.custom.audio_bitrate or bitrate
        rate = options.custom.audio_sample_rate or rate
    return ["-c:a", "aac", "-b:a", bitrate, "-ar", str(rate)]

def hls_args(
    source: Path,
    output_dir: Path,
    options: HlsBatchOptions,
    profile: Optional[MediaStreamProfile] = None,
    encoder: Optional[str] = None
) -> List[str]:
    """ffmpeg arguments for one HLS conversion.

    With a hardware encoder the input is decoded through VideoToolbox too.
    Without one the libx264 arguments are used.
    """
    directory, playlist, segments = hls_paths(source, output_dir)
    segment = hls_segment_duration(options)

    args = ["-y"]
    if encoder is not None:
        args += ["-hwaccel", "videotoolbox"]
    args += ["-i", str(source)]
    if encoder is not None:
        args += _hardware_video_args(options, encoder)
    else:
        args += _software_video_args(options)

    if options.fast_start:
        keyframes = min(segment * 30, 150)
        args += ["-g", str(keyframes), "-keyint_min", str(keyframes // 3)]
    else:
        args += ["-g", "50"]
    if encoder is None:
        args += ["-sc_threshold", "40"]

    if options.color_enhancement:
        args += [
            "-colorspace", "bt709",
            "-color_primaries", "bt709",
            "-color_trc", "bt709",
            "-color_range", "tv",
        ]
    args += ["-pix_fmt", "yuv420p"]
    args += _audio_args(options, profile)

    if options.resolution != "auto":
        width, height = RESOLUTIONS[options.resolution]
        if options.scaling == "smart-pad":
            args += ["-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease,pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"]
        else:
            args += ["-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease"]

    args += [
        "-hls_time", str(segment),
        "-hls_list_size", str(HLS_LIST_SIZE),
        "-hls_segment_type", "mpegts",
        "-hls_flags", "independent_segments+temp_file",
        "-hls_playlist_type", "vod",
        "-hls_segment_filename", str(segments),
        "-f", "hls",
        str(playlist)
    ]
    return args
