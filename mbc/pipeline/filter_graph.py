import logging
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional
from pydantic import BaseModel
from mbc.domain.errors import InputError, InputErrorKind
from mbc.domain.models import (
    CompositionJob, CompositionMode, MediaStreamProfile, TrimWindow, OverlayImage
)
from mbc.pipeline import quality as q
from mbc.pipeline.codecs import family_of

SEQUENTIAL = "sequential"
PARALLEL = "parallel"

PIP_DIVISORS = {"small": 6, "medium": 4, "large": 3}
PIP_MARGIN = 10
PIP_POSITIONS = {
    "top-left": f"{PIP_MARGIN}:{PIP_MARGIN}",
    "top-right": f"W-w-{PIP_MARGIN}:{PIP_MARGIN}",
    "bottom-left": f"{PIP_MARGIN}:H-h-{PIP_MARGIN}",
    "bottom-right": f"W-w-{PIP_MARGIN}:H-h-{PIP_MARGIN}",
}

SILENCE_SAMPLE_RATE = 48000
LOUDNORM = "loudnorm=I=-16:TP=-1.5:LRA=11"

class EncoderCommand(BaseModel):
    """Everything needed for one compose invocation."""
    args: List[str]
    filter_complex: str
    expected_duration: Optional[float] = None

class ModeSpec(NamedTuple):
    min_inputs: int
    max_inputs: Optional[int]
    timeline: str
    reconcile: bool
    builder: str

MODE_SPECS: Dict[CompositionMode, ModeSpec] = {
    CompositionMode.CONCAT: ModeSpec(2, None, SEQUENTIAL, True, "_build_concat"),
    CompositionMode.SIDE_BY_SIDE: ModeSpec(2, 2, PARALLEL, False, "_build_side_by_side"),
    CompositionMode.PIP: ModeSpec(2, 2, PARALLEL, False, "_build_pip"),
    CompositionMode.INTRO_OUTRO: ModeSpec(1, 1, SEQUENTIAL, True, "_build_intro_outro"),
    CompositionMode.OVERLAY: ModeSpec(1, 1, SEQUENTIAL, False, "_build_overlay"),
}

def input_args(sources: List[Path], trims: Optional[Dict[int, TrimWindow]] = None) -> List[str]:
    args = []
    trims = trims or {}
    for idx, src in enumerate(sources):
        window = trims.get(idx)
        if window is not None:
            args += ["-ss", f"{window.start:g}", "-t", f"{window.duration:g}"]
        args += ["-i", str(src)]
    return args

def enable_expression(image: OverlayImage) -> Optional[str]:
    if not image.timed:
        return None
    if image.start is not None and image.end is not None:
        return f"between(t,{image.start:g},{image.end:g})"
    if image.start is not None:
        return f"gte(t,{image.start:g})"
    return f"lte(t,{image.end:g})"

class FilterGraphBuilder:
    """Turns a CompositionJob into one ffmpeg argument vector."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def spec_for(job: CompositionJob) -> ModeSpec:
        return MODE_SPECS[job.mode]

    def validate(self, job: CompositionJob):
        """Checks the input count for the job's mode. Raises InputError."""
        spec = self.spec_for(job)
        count = len(job.inputs)
        if count < spec.min_inputs or (spec.max_inputs is not None and count > spec.max_inputs):
            if spec.max_inputs is None:
                expected = f"at least {spec.min_inputs}"
            elif spec.min_inputs == spec.max_inputs:
                expected = f"exactly {spec.min_inputs}"
            else:
                expected = f"{spec.min_inputs}-{spec.max_inputs}"
            raise InputError(
                InputErrorKind.WRONG_INPUT_COUNT,
                f"Mode '{job.mode.value}' requires {expected} inputs, got {count}"
            )

    def clips(self, job: CompositionJob) -> List[Path]:
        """Ordered list of video clips the job reads (overlay images excluded)."""
        if job.mode == CompositionMode.INTRO_OUTRO:
            opts = job.options
            clips = []
            if opts.intro:
                clips.append(opts.intro)
            clips.append(job.inputs[0])
            if opts.outro:
                clips.append(opts.outro)
            return clips
        return list(job.inputs)

    def main_index(self, job: CompositionJob) -> int:
        """Position of the reference clip inside clips(job)."""
        if job.mode == CompositionMode.INTRO_OUTRO and job.options.intro:
            return 1
        return 0

    def expected_duration(
        self,
        job: CompositionJob,
        profiles: List[MediaStreamProfile],
        trim: Optional[TrimWindow] = None
    ) -> Optional[float]:
        durations = [p.duration for p in profiles]
        if trim is not None:
            durations[self.main_index(job)] = trim.duration
        if job.mode == CompositionMode.OVERLAY:
            total = durations[0]
        elif self.spec_for(job).timeline == PARALLEL:
            total = max(durations)
        else:
            total = sum(durations)
        return total if total > 0 else None

    def build(
        self,
        job: CompositionJob,
        profiles: List[MediaStreamProfile],
        sources: Optional[List[Path]] = None,
        reference: Optional[MediaStreamProfile] = None,
        trim: Optional[TrimWindow] = None
    ) -> EncoderCommand:
        """Builds the compose command.

        profiles and sources follow clips(job) order; sources default to the
        profiled paths and differ only when clips were preprocessed.
        """
        self.validate(job)
        if sources is None:
            sources = [p.path for p in profiles]
        if len(sources) != len(profiles):
            raise ValueError("sources and profiles must have the same length")
        if reference is None:
            reference = profiles[self.main_index(job)]

        spec = self.spec_for(job)
        width, height = q.resolve_resolution(job.geometry, reference)
        builder: Callable = getattr(self, spec.builder)
        args, graph = builder(job, profiles, sources, reference, q.even(width), q.even(height), trim)

        expected = self.expected_duration(job, profiles, trim)
        self.logger.debug(f"GRAPH: mode={job.mode.value} {graph}")
        return EncoderCommand(args=args, filter_complex=graph, expected_duration=expected)

    def _output_args(self, job: CompositionJob, reference: MediaStreamProfile, audio: bool) -> List[str]:
        args = q.video_args(job.quality, job.format, reference)
        if audio:
            args += q.audio_args(job.quality, job.format, reference)
        else:
            args += ["-an"]
        args += q.container_args(job.format)
        args += [str(job.output)]
        return args

    def _normalize_video(self, idx: int, width: int, height: int, job: CompositionJob) -> str:
        fit = q.fit_filter(width, height, job.geometry.aspect, job.geometry.background)
        return f"[{idx}:v]{fit},setsar=1/1,setdar={width}/{height}[v{idx}]"

    def _concat_graph(
        self,
        job: CompositionJob,
        profiles: List[MediaStreamProfile],
        width: int,
        height: int,
        audio_policy: str,
        trim: Optional[TrimWindow] = None
    ):
        """Per-clip normalization followed by one concat node."""
        count = len(profiles)
        keep_audio = audio_policy != "mute" and any(p.has_audio for p in profiles)
        parts = [self._normalize_video(idx, width, height, job) for idx in range(count)]

        if keep_audio:
            for idx, profile in enumerate(profiles):
                if profile.has_audio:
                    parts.append(
                        f"[{idx}:a]aresample={SILENCE_SAMPLE_RATE},"
                        f"aformat=sample_fmts=fltp:channel_layouts=stereo[a{idx}]"
                    )
                else:
                    duration = profile.duration
                    if trim is not None and idx == self.main_index(job):
                        duration = trim.duration
                    if duration <= 0:
                        raise InputError(
                            InputErrorKind.UNKNOWN_DURATION,
                            f"{profile.name} has no audio and an unknown duration, cannot fill it with silence"
                        )
                    parts.append(
                        f"anullsrc=channel_layout=stereo:sample_rate={SILENCE_SAMPLE_RATE},"
                        f"atrim=duration={duration:g},aformat=sample_fmts=fltp:channel_layouts=stereo[a{idx}]"
                    )
            pairs = "".join(f"[v{idx}][a{idx}]" for idx in range(count))
            parts.append(f"{pairs}concat=n={count}:v=1:a=1[v][a]")
            if audio_policy == "normalize":
                parts.append(f"[a]{LOUDNORM}[aout]")
                maps = ["-map", "[v]", "-map", "[aout]"]
            else:
                maps = ["-map", "[v]", "-map", "[a]"]
        else:
            pairs = "".join(f"[v{idx}]" for idx in range(count))
            parts.append(f"{pairs}concat=n={count}:v=1:a=0[v]")
            maps = ["-map", "[v]"]

        return ";".join(parts), maps, keep_audio

    def _build_concat(self, job, profiles, sources, reference, width, height, trim):
        graph, maps, keep_audio = self._concat_graph(job, profiles, width, height, job.options.audio)
        args = ["-y"] + input_args(sources) + ["-filter_complex", graph] + maps
        args += self._output_args(job, reference, keep_audio)
        return args, graph

    def _build_intro_outro(self, job, profiles, sources, reference, width, height, trim):
        graph, maps, keep_audio = self._concat_graph(job, profiles, width, height, "keep", trim)
        trims = {self.main_index(job): trim} if trim is not None else None
        args = ["-y"] + input_args(sources, trims) + ["-filter_complex", graph] + maps
        args += self._output_args(job, reference, keep_audio)
        return args, graph

    def _parallel_audio(self, audio_policy: str, profiles: List[MediaStreamProfile]):
        """Graph fragment and -map arguments for two simultaneous clips."""
        has_first = profiles[0].has_audio
        has_second = profiles[1].has_audio
        if audio_policy == "mute" or not (has_first or has_second):
            return None, [], False
        if audio_policy == "mix" and has_first and has_second:
            return "[0:a][1:a]amix=inputs=2:duration=longest[a]", ["-map", "[a]"], True
        if (audio_policy == "second" and has_second) or not has_first:
            return None, ["-map", "1:a?"], True
        return None, ["-map", "0:a?"], True

    def _build_side_by_side(self, job, profiles, sources, reference, width, height, trim):
        half = q.even(width // 2)
        fit = q.fit_filter(half, height, "pad", job.geometry.background)
        parts = [
            f"[0:v]{fit},setsar=1/1[left]",
            f"[1:v]{fit},setsar=1/1[right]",
            "[left][right]hstack=inputs=2[v]",
        ]
        audio_graph, audio_maps, keep_audio = self._parallel_audio(job.options.audio, profiles)
        if audio_graph:
            parts.append(audio_graph)
        graph = ";".join(parts)
        args = ["-y"] + input_args(sources) + ["-filter_complex", graph, "-map", "[v]"] + audio_maps
        args += self._output_args(job, reference, keep_audio)
        return args, graph

    def _build_pip(self, job, profiles, sources, reference, width, height, trim):
        opts = job.options
        divisor = PIP_DIVISORS[opts.size]
        pip_w, pip_h = q.even(width // divisor), q.even(height // divisor)
        main_fit = q.fit_filter(width, height, job.geometry.aspect, job.geometry.background)
        parts = [
            f"[0:v]{main_fit},setsar=1/1[main]",
            f"[1:v]scale={pip_w}:{pip_h}:force_original_aspect_ratio=decrease[pip]",
            f"[main][pip]overlay={PIP_POSITIONS[opts.position]}[v]",
        ]
        audio_graph, audio_maps, keep_audio = self._parallel_audio(opts.audio, profiles)
        if audio_graph:
            parts.append(audio_graph)
        graph = ";".join(parts)
        args = ["-y"] + input_args(sources) + ["-filter_complex", graph, "-map", "[v]"] + audio_maps
        args += self._output_args(job, reference, keep_audio)
        return args, graph

    def _build_overlay(self, job, profiles, sources, reference, width, height, trim):
        images = job.options.images
        parts = []
        current = "[0:v]"
        for idx, image in enumerate(images, start=1):
            chain = f"[{idx}:v]scale={image.width}:{image.height}"
            if image.opacity < 1.0:
                chain += f",format=rgba,colorchannelmixer=aa={image.opacity:g}"
            parts.append(f"{chain}[logo{idx}]")

            target = "[vout]" if idx == len(images) else f"[base{idx}]"
            overlay = f"{current}[logo{idx}]overlay={image.x}:{image.y}"
            expression = enable_expression(image)
            if expression:
                overlay += f":enable='{expression}'"
            parts.append(f"{overlay}{target}")
            current = target
        graph = ";".join(parts)

        args = ["-y"] + input_args(list(sources) + [img.path for img in images])
        args += ["-filter_complex", graph, "-map", "[vout]"]
        args += q.video_args(job.quality, job.format, reference)

        if reference.has_audio:
            args += ["-map", "0:a?"]
            target_family = family_of(q.FORMATS[job.format]["audio_codec"])
            if family_of(reference.audio_codec) == target_family:
                args += ["-c:a", "copy"]
            else:
                args += q.audio_args(job.quality, job.format, reference)
        else:
            args += ["-an"]
        args += q.container_args(job.format) + [str(job.output)]
        return args, graph