from pathlib import Path
from typing import Optional, Literal
from pydantic import BaseModel, Field, field_validator

QUALITY_PRESETS = {"high", "medium", "fast"}
RESOLUTION_PRESETS = {"4k", "2k", "1080p", "720p", "480p", "auto"}

class ToolsConfig(BaseModel):
    ffmpeg_path: Optional[Path] = None
    ffprobe_path: Optional[Path] = None
    check_timeout: float = Field(default=5.0, gt=0)

class GeneralConfig(BaseModel):
    temp_dir: Optional[Path] = None
    log_dir: Optional[Path] = None
    debug: bool = False

class ComposeConfig(BaseModel):
    format: Literal["mp4", "avi", "mkv", "wmv", "mov"] = "mp4"
    resolution: str = "auto"
    aspect: Literal["pad", "crop", "stretch"] = "pad"
    background: Literal["black", "white", "blur"] = "black"
    quality: str = "medium"

    @field_validator('quality')
    @classmethod
    def validate_quality(cls, v: str) -> str:
        if v not in QUALITY_PRESETS:
            raise ValueError(f"Unknown quality preset '{v}'. Must be one of: high, medium, fast.")
        return v

    @field_validator('resolution')
    @classmethod
    def validate_resolution(cls, v: str) -> str:
        if v not in RESOLUTION_PRESETS:
            raise ValueError(f"Unknown resolution '{v}'.")
        return v

class Mp3Config(BaseModel):
    bitrate: int = Field(default=64, gt=0, le=320)
    threshold: int = Field(default=64, gt=0)
    encoding_mode: Literal["abr", "cbr"] = "abr"
    keep_structure: bool = True

class HlsConfig(BaseModel):
    segment_duration: int = Field(default=10, ge=1, le=60)
    fast_start: bool = True
    quality: str = "medium"
    resolution: str = "auto"
    scaling: Literal["smart-pad", "scale"] = "smart-pad"
    color_enhancement: bool = True
    mobile_audio: bool = True
    cbr: bool = False
    hardware_accel: bool = False

    @field_validator('quality')
    @classmethod
    def validate_quality(cls, v: str) -> str:
        if v not in QUALITY_PRESETS:
            raise ValueError(f"Unknown quality preset '{v}'. Must be one of: high, medium, fast.")
        return v

class AppConfig(BaseModel):
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    compose: ComposeConfig = Field(default_factory=ComposeConfig)
    mp3: Mp3Config = Field(default_factory=Mp3Config)
    hls: HlsConfig = Field(default_factory=HlsConfig)
