from pathlib import Path
from typing import List
from mbc.domain.models import MediaStreamProfile
from mbc.pipeline.codecs import family_of, H265
from mbc.pipeline.quality import fit_filter

def repackage_args(source: Path, target: Path) -> List[str]:
    """Stream-copy an H.264 clip into MPEG-TS so it can be joined without re-encoding."""
    return [
        "-y",
        "-i", str(source),
        "-c", "copy",
        "-bsf:v", "h264_mp4toannexb",
        "-f", "mpegts",
        str(target)
    ]

def reencode_args(source: Path, target: Path, reference: MediaStreamProfile) -> List[str]:
    """Re-encode a clip so codec, geometry, frame rate and audio match the reference."""
    video_codec = "libx265" if family_of(reference.video_codec) == H265 else "libx264"
    args = [
        "-y",
        "-i", str(source),
        "-c:v", video_codec,
        "-pix_fmt", reference.pix_fmt or "yuv420p",
        "-vf", fit_filter(reference.width, reference.height, "pad", "black"),
        "-r", f"{reference.fps:g}",
    ]

    if reference.has_audio:
        args += ["-c:a", "aac"]
        if reference.audio_sample_rate:
            args += ["-ar", str(reference.audio_sample_rate)]
        if reference.audio_channels:
            args += ["-ac", str(reference.audio_channels)]
        args += ["-b:a", "192k" if (reference.audio_channels or 2) > 2 else "128k"]
    else:
        args += ["-an"]

    args += [str(target)]
    return args
