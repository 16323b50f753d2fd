import uuid
from enum import Enum
from pathlib import Path
from typing import Optional, List, Union, Literal, Annotated
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

class MediaStreamProfile(BaseModel):
    """Probed properties of one media file. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    path: Path
    name: str
    duration: float = 0.0
    video_codec: str
    audio_codec: Optional[str] = None
    width: int
    height: int
    pix_fmt: Optional[str] = None
    fps: float = 25.0
    sar: Optional[str] = None
    dar: Optional[str] = None
    audio_sample_rate: Optional[int] = None
    audio_channels: Optional[int] = None
    video_bitrate: Optional[int] = None
    audio_bitrate: Optional[int] = None
    profile: Optional[str] = None
    level: Optional[int] = None

    @property
    def has_audio(self) -> bool:
        return self.audio_codec is not None

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

class ReconciliationStrategy(str, Enum):
    NONE = "none"
    FAST_REPACKAGE = "fast_repackage"
    FULL_REENCODE = "full_reencode"

class MismatchReason(str, Enum):
    CODEC = "codec"
    AUDIO_CODEC = "audio_codec"
    FRAME_RATE = "frame_rate"
    RESOLUTION = "resolution"
    PIXEL_FORMAT = "pixel_format"
    AUDIO_SAMPLE_RATE = "audio_sample_rate"
    AUDIO_CHANNELS = "audio_channels"

# A stream copy cannot fix any of these
STRUCTURAL_MISMATCHES = {
    MismatchReason.RESOLUTION,
    MismatchReason.FRAME_RATE,
    MismatchReason.PIXEL_FORMAT,
}

class InputReconciliation(BaseModel):
    profile: MediaStreamProfile
    reasons: List[MismatchReason] = Field(default_factory=list)

    @property
    def mismatched(self) -> bool:
        return bool(self.reasons)

class ReconciliationPlan(BaseModel):
    reference: MediaStreamProfile
    inputs: List[InputReconciliation] = Field(default_factory=list)
    strategy: ReconciliationStrategy = ReconciliationStrategy.NONE
    # Inputs agree with the reference but not with each other
    forced: bool = False

    def reencode_targets(self) -> List[InputReconciliation]:
        """Non-reference inputs to re-encode under FULL_REENCODE."""
        if self.strategy != ReconciliationStrategy.FULL_REENCODE:
            return []
        if self.forced:
            return list(self.inputs)
        return [item for item in self.inputs if item.mismatched]

class TrimWindow(BaseModel):
    start: float
    duration: float

class CompositionMode(str, Enum):
    CONCAT = "concat"
    SIDE_BY_SIDE = "sidebyside"
    PIP = "pip"
    INTRO_OUTRO = "introOutroInsert"
    OVERLAY = "logoWatermarkOverlay"

class PresetQuality(BaseModel):
    kind: Literal["preset"] = "preset"
    preset: Literal["high", "medium", "fast"] = "medium"

class SourceMatchQuality(BaseModel):
    kind: Literal["source-match"] = "source-match"

class CustomQuality(BaseModel):
    kind: Literal["custom"] = "custom"
    video_bitrate: Optional[str] = None
    crf: Optional[int] = Field(default=None, ge=0, le=51)
    video_profile: Optional[str] = None
    framerate: Optional[float] = Field(default=None, gt=0)
    audio_bitrate: Optional[str] = None
    audio_sample_rate: Optional[int] = Field(default=None, gt=0)
    encoder_preset: Optional[str] = None

QualityConfig = Annotated[
    Union[PresetQuality, SourceMatchQuality, CustomQuality],
    Field(discriminator="kind")
]

class GeometryConfig(BaseModel):
    resolution: Literal["4k", "2k", "1080p", "720p", "480p", "auto", "custom"] = "auto"
    custom_width: Optional[int] = Field(default=None, gt=0)
    custom_height: Optional[int] = Field(default=None, gt=0)
    aspect: Literal["pad", "crop", "stretch"] = "pad"
    background: Literal["black", "white", "blur"] = "black"

    @model_validator(mode="after")
    def check_custom_size(self):
        if self.resolution == "custom" and not (self.custom_width and self.custom_height):
            raise ValueError("Custom resolution requires custom_width and custom_height")
        return self

class ConcatOptions(BaseModel):
    mode: Literal["concat"] = "concat"
    audio: Literal["keep", "mute", "normalize"] = "keep"

class SideBySideOptions(BaseModel):
    mode: Literal["sidebyside"] = "sidebyside"
    audio: Literal["first", "second", "mix", "mute"] = "first"

class PipOptions(BaseModel):
    mode: Literal["pip"] = "pip"
    audio: Literal["first", "second", "mix", "mute"] = "first"
    position: Literal["top-left", "top-right", "bottom-left", "bottom-right"] = "top-right"
    size: Literal["small", "medium", "large"] = "medium"

class IntroOutroOptions(BaseModel):
    mode: Literal["introOutroInsert"] = "introOutroInsert"
    intro: Optional[Path] = None
    outro: Optional[Path] = None
    intro_trim: float = Field(default=0.0, ge=0)
    outro_trim: float = Field(default=0.0, ge=0)

class OverlayImage(BaseModel):
    path: Path
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    x: int = Field(default=10, ge=0)
    y: int = Field(default=10, ge=0)
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)
    start: Optional[float] = Field(default=None, ge=0)
    end: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_window(self):
        if self.start is not None and self.end is not None and self.end <= self.start:
            raise ValueError(f"Overlay window end ({self.end}) must be after start ({self.start})")
        return self

    @property
    def timed(self) -> bool:
        return self.start is not None or self.end is not None

class OverlayOptions(BaseModel):
    mode: Literal["logoWatermarkOverlay"] = "logoWatermarkOverlay"
    images: List[OverlayImage] = Field(min_length=1)

ModeOptions = Annotated[
    Union[ConcatOptions, SideBySideOptions, PipOptions, IntroOutroOptions, OverlayOptions],
    Field(discriminator="mode")
]

_DEFAULT_OPTIONS = {
    CompositionMode.CONCAT: ConcatOptions,
    CompositionMode.SIDE_BY_SIDE: SideBySideOptions,
    CompositionMode.PIP: PipOptions,
    CompositionMode.INTRO_OUTRO: IntroOutroOptions,
}

class CompositionJob(BaseModel):
    mode: CompositionMode
    inputs: List[Path]
    output: Path
    format: Literal["mp4", "avi", "mkv", "wmv", "mov"] = "mp4"
    quality: QualityConfig = Field(default_factory=PresetQuality)
    geometry: GeometryConfig = Field(default_factory=GeometryConfig)
    options: Optional[ModeOptions] = None
    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])

    @model_validator(mode="after")
    def check_options(self):
        if self.options is None:
            if self.mode not in _DEFAULT_OPTIONS:
                raise ValueError(f"Mode '{self.mode.value}' requires explicit options")
            self.options = _DEFAULT_OPTIONS[self.mode]()
        elif self.options.mode != self.mode.value:
            raise ValueError(f"Options for '{self.options.mode}' do not match mode '{self.mode.value}'")
        return self

    @property
    def label(self) -> str:
        return self.output.name

class BatchOperation(str, Enum):
    MP3 = "mp3"
    HLS = "hls"
    INTRO_OUTRO = "intro_outro"
    WATERMARK = "watermark"

class Mp3BatchOptions(BaseModel):
    operation: Literal["mp3"] = "mp3"
    bitrate: int = Field(default=64, gt=0, le=320)
    threshold: int = Field(default=64, gt=0)
    encoding_mode: Literal["abr", "cbr"] = "abr"
    force_process: bool = False
    keep_structure: bool = True
    source_root: Optional[Path] = None

class HlsBatchOptions(BaseModel):
    operation: Literal["hls"] = "hls"
    segment_duration: int = Field(default=10, ge=1, le=60)
    fast_start: bool = True
    quality: Literal["high", "medium", "fast"] = "medium"
    resolution: Literal["4k", "2k", "1080p", "720p", "480p", "auto"] = "auto"
    scaling: Literal["smart-pad", "scale"] = "smart-pad"
    color_enhancement: bool = True
    mobile_audio: bool = True
    cbr: bool = False
    custom: Optional[CustomQuality] = None
    hardware_accel: bool = False

class _ComposeBatchOptions(BaseModel):
    format: Literal["mp4", "avi", "mkv", "wmv", "mov"] = "mp4"
    quality: QualityConfig = Field(default_factory=PresetQuality)
    geometry: GeometryConfig = Field(default_factory=GeometryConfig)

class IntroOutroBatchOptions(_ComposeBatchOptions):
    operation: Literal["intro_outro"] = "intro_outro"
    insert: IntroOutroOptions = Field(default_factory=IntroOutroOptions)

class WatermarkBatchOptions(_ComposeBatchOptions):
    operation: Literal["watermark"] = "watermark"
    overlay: OverlayOptions

BatchOptions = Annotated[
    Union[Mp3BatchOptions, HlsBatchOptions, IntroOutroBatchOptions, WatermarkBatchOptions],
    Field(discriminator="operation")
]

class BatchRequest(BaseModel):
    operation: BatchOperation
    input_files: List[Path]
    output_dir: Path
    options: Optional[BatchOptions] = None

    @model_validator(mode="after")
    def check_options(self):
        if self.options is None:
            if self.operation == BatchOperation.MP3:
                self.options = Mp3BatchOptions()
            elif self.operation == BatchOperation.HLS:
                self.options = HlsBatchOptions()
            elif self.operation == BatchOperation.INTRO_OUTRO:
                self.options = IntroOutroBatchOptions()
            else:
                raise ValueError("Watermark batches require overlay options")
        elif self.options.operation != self.operation.value:
            raise ValueError(f"Options for '{self.options.operation}' do not match operation '{self.operation.value}'")
        return self

class FileStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"

class FileResult(BaseModel):
    file: Path
    status: FileStatus
    output: Optional[Path] = None
    message: Optional[str] = None

class BatchSummary(BaseModel):
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    details: List[FileResult] = Field(default_factory=list)
    cancelled: bool = False

    def record(self, result: FileResult):
        if result.status == FileStatus.SUCCESS:
            self.succeeded += 1
        elif result.status == FileStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
        self.details.append(result)

class JobStage(str, Enum):
    ANALYZING = "ANALYZING"
    REPACKAGING = "REPACKAGING"
    PREPROCESSING = "PREPROCESSING"
    COMPOSING = "COMPOSING"
    PROCESSING = "PROCESSING"
    CLEANING_UP = "CLEANING_UP"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"

class ProgressState(BaseModel):
    elapsed_seconds: float = 0.0
    expected_total_seconds: Optional[float] = None
    percent: Optional[float] = None

    @field_validator('expected_total_seconds')
    @classmethod
    def validate_expected(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            return None
        return v
