import subprocess
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from mbc.domain.errors import ProbeError, ProbeErrorKind
from mbc.domain.models import MediaStreamProfile
from mbc.infrastructure.tool_locator import ToolLocator

DEFAULT_FPS = 25.0

def parse_frame_rate(value: Optional[str]) -> float:
    """Parses ffprobe 'num/den' rates, defaulting to 25 for missing or 0 denominators."""
    if not value:
        return DEFAULT_FPS
    try:
        if "/" in value:
            num, den = map(float, value.split("/"))
            if den == 0:
                return DEFAULT_FPS
            return num / den
        return float(value)
    except ValueError:
        return DEFAULT_FPS

def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "", "N/A") else None
    except (TypeError, ValueError):
        return None

def _float_or_zero(value: Any) -> float:
    try:
        return float(value) if value not in (None, "", "N/A") else 0.0
    except (TypeError, ValueError):
        return 0.0

class FFprobeAdapter:
    """Wrapper around ffprobe to extract stream profiles."""

    def __init__(self, locator: Optional[ToolLocator] = None):
        self.locator = locator or ToolLocator()
        self.logger = logging.getLogger(__name__)

    def _run(self, file_path: Path) -> Dict[str, Any]:
        binary = self.locator.ffprobe
        if binary is None:
            raise ProbeError(ProbeErrorKind.TOOL_NOT_FOUND, "ffprobe binary not found")

        cmd = [
            binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, encoding="utf-8", errors="replace")
        except FileNotFoundError:
            raise ProbeError(ProbeErrorKind.TOOL_NOT_FOUND, f"ffprobe binary not found: {binary}")

        if result.returncode != 0:
            raise ProbeError(
                ProbeErrorKind.MALFORMED_OUTPUT,
                f"ffprobe failed for {file_path}: {result.stderr.strip()}"
            )

        try:
            data = json.loads(result.stdout)
        except (json.JSONDecodeError, TypeError) as e:
            raise ProbeError(ProbeErrorKind.MALFORMED_OUTPUT, f"Unparseable ffprobe output for {file_path}: {e}")
        if not isinstance(data, dict):
            raise ProbeError(ProbeErrorKind.MALFORMED_OUTPUT, f"Unexpected ffprobe output for {file_path}")
        return data

    def probe(self, file_path: Path) -> MediaStreamProfile:
        """Builds a MediaStreamProfile from the first video and first audio stream."""
        file_path = Path(file_path)
        data = self._run(file_path)
        streams = data.get("streams", [])
        fmt = data.get("format", {})

        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
        if not video:
            raise ProbeError(ProbeErrorKind.NO_VIDEO_STREAM, f"No video stream found in {file_path.name}")

        total_bitrate = _int_or_none(fmt.get("bit_rate"))
        video_bitrate = _int_or_none(video.get("bit_rate"))
        audio_bitrate = _int_or_none(audio.get("bit_rate")) if audio else None

        if video_bitrate is None and total_bitrate:
            if audio_bitrate:
                video_bitrate = total_bitrate - audio_bitrate
            else:
                video_bitrate = round(total_bitrate * 0.85)

        sar = video.get("sample_aspect_ratio")
        if sar == "0:1":
            sar = None

        profile = MediaStreamProfile(
            path=file_path,
            name=file_path.name,
            duration=_float_or_zero(fmt.get("duration")),
            video_codec=(video.get("codec_name") or "unknown").lower(),
            audio_codec=(audio.get("codec_name") or "unknown").lower() if audio else None,
            width=int(video.get("width", 0)),
            height=int(video.get("height", 0)),
            pix_fmt=video.get("pix_fmt"),
            fps=parse_frame_rate(video.get("r_frame_rate")),
            sar=sar,
            dar=video.get("display_aspect_ratio"),
            audio_sample_rate=_int_or_none(audio.get("sample_rate")) if audio else None,
            audio_channels=_int_or_none(audio.get("channels")) if audio else None,
            video_bitrate=video_bitrate,
            audio_bitrate=audio_bitrate,
            profile=video.get("profile"),
            level=_int_or_none(video.get("level")),
        )
        self.logger.debug(
            f"PROBE: {profile.name} {profile.video_codec}/{profile.audio_codec} "
            f"{profile.resolution} {profile.fps:.2f}fps {profile.duration:.2f}s"
        )
        return profile

    def probe_format(self, file_path: Path) -> Dict[str, Any]:
        """Container-level bitrate (kbps) and duration, for audio-only inputs."""
        data = self._run(Path(file_path))
        fmt = data.get("format", {})
        bit_rate = _int_or_none(fmt.get("bit_rate"))
        return {
            "bitrate_kbps": round(bit_rate / 1000) if bit_rate else None,
            "duration": _float_or_zero(fmt.get("duration")),
        }
