import json
import pytest
from pathlib import Path
from unittest.mock import MagicMock
from mbc.domain.models import MediaStreamProfile

@pytest.fixture
def locator():
    """ToolLocator stand-in so tests never depend on binaries on PATH."""
    loc = MagicMock()
    loc.ffmpeg = "ffmpeg"
    loc.ffprobe = "ffprobe"
    return loc

@pytest.fixture
def make_profile():
    """Builds a 10s 1080p H.264/AAC profile; keyword arguments override fields."""
    def _make(path="clip.mp4", **overrides):
        path = Path(path)
        data = dict(
            path=path,
            name=path.name,
            duration=10.0,
            video_codec="h264",
            audio_codec="aac",
            width=1920,
            height=1080,
            pix_fmt="yuv420p",
            fps=25.0,
            audio_sample_rate=48000,
            audio_channels=2,
        )
        data.update(overrides)
        return MediaStreamProfile(**data)
    return _make

@pytest.fixture
def ffprobe_json():
    """ffprobe -print_format json output for a video with optional audio."""
    def _make(codec="h264", width=1920, height=1080, duration=10.0, audio="aac", fps="25/1"):
        streams = [{
            "index": 0,
            "codec_type": "video",
            "codec_name": codec,
            "width": width,
            "height": height,
            "pix_fmt": "yuv420p",
            "r_frame_rate": fps,
        }]
        if audio:
            streams.append({
                "index": 1,
                "codec_type": "audio",
                "codec_name": audio,
                "sample_rate": "48000",
                "channels": 2,
                "bit_rate": "128000",
            })
        return json.dumps({
            "streams": streams,
            "format": {"duration": str(duration), "bit_rate": "5128000"},
        })
    return _make
