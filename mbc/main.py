import json
import typer
from pathlib import Path
from typing import Optional, List, Tuple
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from mbc.config.loader import load_config
from mbc.config.models import AppConfig
from mbc.infrastructure.logging import setup_logging
from mbc.infrastructure.event_bus import EventBus
from mbc.infrastructure.tool_locator import ToolLocator
from mbc.infrastructure.ffprobe import FFprobeAdapter
from mbc.infrastructure.ffmpeg import FFmpegAdapter
from mbc.pipeline.orchestrator import PipelineOrchestrator
from mbc.ui.state import UIState
from mbc.ui.manager import UIManager
from mbc.ui.dashboard import Dashboard
from mbc.ui.keyboard import KeyboardListener
from mbc.domain.errors import MbcError
from mbc.domain.models import (
    BatchOperation, BatchRequest, BatchSummary, CompositionJob, CompositionMode,
    ConcatOptions, CustomQuality, FileStatus, GeometryConfig, HlsBatchOptions,
    IntroOutroBatchOptions, IntroOutroOptions, Mp3BatchOptions, OverlayImage,
    OverlayOptions, PipOptions, PresetQuality, SideBySideOptions, SourceMatchQuality,
    WatermarkBatchOptions
)

app = typer.Typer(help="MBC (Media Batch Composer) - compose, brand and transcode media with ffmpeg")
console = Console()

DEFAULT_CONFIG = Path("conf/mbc.yaml")

def _fail(message: str):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)

def _parse_pair(value: str, sep: str, what: str) -> Tuple[float, float]:
    try:
        first, second = value.lower().split(sep)
        return float(first), float(second)
    except ValueError:
        _fail(f"Invalid {what} '{value}', expected A{sep}B")

def _quality(name: str, video_bitrate: Optional[str] = None):
    if video_bitrate:
        return CustomQuality(video_bitrate=video_bitrate)
    if name == "source":
        return SourceMatchQuality()
    return PresetQuality(preset=name)

def _overlay_image(path: Path, size: str, pos: str, opacity: float, window: Optional[str]) -> OverlayImage:
    width, height = _parse_pair(size, "x", "size")
    x, y = _parse_pair(pos, ":", "position")
    start = end = None
    if window:
        start, end = _parse_pair(window, ":", "time window")
    return OverlayImage(
        path=path, width=int(width), height=int(height), x=int(x), y=int(y),
        opacity=opacity, start=start, end=end
    )

def _prepare(config_path: Optional[Path], log_dir: Path, debug: bool) -> AppConfig:
    config = load_config(config_path)
    if debug:
        config.general.debug = True
    logger = setup_logging(config.general.log_dir or log_dir, debug=config.general.debug)
    logger.info(f"MBC started: log_dir={config.general.log_dir or log_dir}, debug={config.general.debug}")
    return config

def _build(config: AppConfig) -> Tuple[EventBus, FFprobeAdapter, FFmpegAdapter, PipelineOrchestrator]:
    bus = EventBus()
    locator = ToolLocator(config.tools)
    ffprobe = FFprobeAdapter(locator)
    ffmpeg = FFmpegAdapter(event_bus=bus, locator=locator)
    orchestrator = PipelineOrchestrator(
        config=config,
        event_bus=bus,
        ffprobe_adapter=ffprobe,
        ffmpeg_adapter=ffmpeg
    )
    return bus, ffprobe, ffmpeg, orchestrator

def _run_live(bus: EventBus, action):
    """Runs action() with the dashboard and keyboard listener attached."""
    ui_state = UIState()
    UIManager(bus, ui_state)
    keyboard = KeyboardListener(bus)
    dashboard = Dashboard(ui_state, console=console)

    bus.start()
    keyboard.start()
    try:
        with dashboard:
            result = action()
            bus.stop()
    finally:
        keyboard.stop()
        bus.stop()
    return result

def _print_summary(summary: BatchSummary):
    table = Table(title="Batch summary")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Details")
    styles = {FileStatus.SUCCESS: "green", FileStatus.SKIPPED: "dim", FileStatus.ERROR: "red"}
    for item in summary.details:
        style = styles[item.status]
        table.add_row(item.file.name, f"[{style}]{item.status.value}[/]", item.message or "")
    console.print(table)
    console.print(
        f"[green]{summary.succeeded} succeeded[/]  [dim]{summary.skipped} skipped[/]  "
        f"[red]{summary.failed} failed[/]" + ("  [yellow](stopped by user)[/]" if summary.cancelled else "")
    )

def _run_batch(config: AppConfig, request: BatchRequest):
    bus, _, _, orchestrator = _build(config)
    summary = _run_live(bus, lambda: orchestrator.run_batch(request))
    _print_summary(summary)
    if summary.failed:
        raise typer.Exit(code=1)

def _guard(action):
    try:
        action()
    except (MbcError, ValidationError) as e:
        _fail(str(e))
    except KeyboardInterrupt:
        typer.echo("\nInterrupted by user")
        raise typer.Exit(code=130)

@app.command()
def check(
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Verify that ffmpeg and ffprobe can be found and answer in time."""
    config = load_config(config_path)
    locator = ToolLocator(config.tools)
    ffmpeg = FFmpegAdapter(event_bus=EventBus(), locator=locator)
    typer.echo(f"ffmpeg:  {locator.ffmpeg or 'not found'}")
    typer.echo(f"ffprobe: {locator.ffprobe or 'not found'}")
    if not ffmpeg.check_available(timeout=config.tools.check_timeout):
        _fail("ffmpeg is not available")
    typer.secho("ffmpeg is available", fg=typer.colors.GREEN)

@app.command()
def probe(
    file: Path = typer.Argument(..., help="Media file to inspect"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Print the stream profile of a media file as JSON."""
    config = load_config(config_path)
    adapter = FFprobeAdapter(ToolLocator(config.tools))
    _guard(lambda: typer.echo(json.dumps(adapter.probe(file).model_dump(mode="json"), indent=2)))

@app.command()
def compose(
    mode: CompositionMode = typer.Argument(..., help="concat, sidebyside or pip"),
    files: List[Path] = typer.Argument(..., help="Input clips in order"),
    output: Path = typer.Option(..., "--output", "-o", help="Output file"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    fmt: Optional[str] = typer.Option(None, "--format", "-f", help="mp4, avi, mkv, wmv or mov"),
    quality: Optional[str] = typer.Option(None, "--quality", "-q", help="high, medium, fast or source"),
    video_bitrate: Optional[str] = typer.Option(None, "--video-bitrate", help="Custom video bitrate, e.g. 4000k"),
    resolution: Optional[str] = typer.Option(None, "--resolution", "-r", help="4k, 2k, 1080p, 720p, 480p or auto"),
    aspect: Optional[str] = typer.Option(None, "--aspect", help="pad, crop or stretch"),
    background: Optional[str] = typer.Option(None, "--background", help="black, white or blur"),
    audio: Optional[str] = typer.Option(None, "--audio", help="concat: keep/mute/normalize, sidebyside/pip: first/second/mix/mute"),
    pip_position: str = typer.Option("top-right", "--pip-position", help="Corner for the inset clip"),
    pip_size: str = typer.Option("medium", "--pip-size", help="small, medium or large"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Join clips one after another, side by side, or as picture-in-picture."""
    if mode not in (CompositionMode.CONCAT, CompositionMode.SIDE_BY_SIDE, CompositionMode.PIP):
        _fail(f"Use the intro-outro or watermark commands for mode '{mode.value}'")
    for f in files:
        if not f.exists():
            _fail(f"File {f} does not exist.")

    def action():
        config = _prepare(config_path, output.parent, debug)
        defaults = config.compose
        if mode == CompositionMode.CONCAT:
            options = ConcatOptions(audio=audio or "keep")
        elif mode == CompositionMode.SIDE_BY_SIDE:
            options = SideBySideOptions(audio=audio or "first")
        else:
            options = PipOptions(audio=audio or "first", position=pip_position, size=pip_size)

        job = CompositionJob(
            mode=mode,
            inputs=files,
            output=output,
            format=fmt or defaults.format,
            quality=_quality(quality or defaults.quality, video_bitrate),
            geometry=GeometryConfig(
                resolution=resolution or defaults.resolution,
                aspect=aspect or defaults.aspect,
                background=background or defaults.background
            ),
            options=options
        )
        bus, _, _, orchestrator = _build(config)
        _run_live(bus, lambda: orchestrator.compose(job))
        typer.secho(f"Written {output}", fg=typer.colors.GREEN)

    _guard(action)

@app.command("intro-outro")
def intro_outro(
    files: List[Path] = typer.Argument(..., help="Main videos"),
    output_dir: Path = typer.Option(..., "--output-dir", "-d", help="Directory for results"),
    intro: Optional[Path] = typer.Option(None, "--intro", help="Clip placed before each video"),
    outro: Optional[Path] = typer.Option(None, "--outro", help="Clip placed after each video"),
    intro_trim: float = typer.Option(0.0, "--intro-trim", help="Seconds cut from the start of each video"),
    outro_trim: float = typer.Option(0.0, "--outro-trim", help="Seconds cut from the end of each video"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    fmt: Optional[str] = typer.Option(None, "--format", "-f", help="mp4, avi, mkv, wmv or mov"),
    quality: Optional[str] = typer.Option(None, "--quality", "-q", help="high, medium, fast or source"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Replace the opening and closing of every video with shared intro/outro clips."""
    if not (intro or outro or intro_trim or outro_trim):
        _fail("Nothing to do: give --intro, --outro or a trim")

    def action():
        config = _prepare(config_path, output_dir, debug)
        options = IntroOutroBatchOptions(
            format=fmt or config.compose.format,
            quality=_quality(quality or "source"),
            geometry=GeometryConfig(aspect=config.compose.aspect, background=config.compose.background),
            insert=IntroOutroOptions(intro=intro, outro=outro, intro_trim=intro_trim, outro_trim=outro_trim)
        )
        request = BatchRequest(
            operation=BatchOperation.INTRO_OUTRO, input_files=files, output_dir=output_dir, options=options
        )
        _run_batch(config, request)

    _guard(action)

@app.command()
def watermark(
    files: List[Path] = typer.Argument(..., help="Videos to brand"),
    output_dir: Path = typer.Option(..., "--output-dir", "-d", help="Directory for results"),
    logo: Optional[Path] = typer.Option(None, "--logo", help="Logo image"),
    logo_size: str = typer.Option("100x100", "--logo-size", help="WIDTHxHEIGHT"),
    logo_pos: str = typer.Option("10:10", "--logo-pos", help="X:Y in pixels"),
    logo_opacity: float = typer.Option(1.0, "--logo-opacity", help="0.0-1.0"),
    logo_window: Optional[str] = typer.Option(None, "--logo-window", help="START:END seconds"),
    mark: Optional[Path] = typer.Option(None, "--watermark", help="Watermark image"),
    mark_size: str = typer.Option("200x100", "--watermark-size", help="WIDTHxHEIGHT"),
    mark_pos: str = typer.Option("10:10", "--watermark-pos", help="X:Y in pixels"),
    mark_opacity: float = typer.Option(0.5, "--watermark-opacity", help="0.0-1.0"),
    mark_window: Optional[str] = typer.Option(None, "--watermark-window", help="START:END seconds"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    fmt: Optional[str] = typer.Option(None, "--format", "-f", help="mp4, avi, mkv, wmv or mov"),
    quality: Optional[str] = typer.Option(None, "--quality", "-q", help="high, medium, fast or source"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Overlay a logo and/or watermark image on every video."""
    if not (logo or mark):
        _fail("Give --logo and/or --watermark")

    def action():
        images = []
        if logo:
            images.append(_overlay_image(logo, logo_size, logo_pos, logo_opacity, logo_window))
        if mark:
            images.append(_overlay_image(mark, mark_size, mark_pos, mark_opacity, mark_window))
        config = _prepare(config_path, output_dir, debug)
        options = WatermarkBatchOptions(
            format=fmt or config.compose.format,
            quality=_quality(quality or config.compose.quality),
            overlay=OverlayOptions(images=images)
        )
        request = BatchRequest(
            operation=BatchOperation.WATERMARK, input_files=files, output_dir=output_dir, options=options
        )
        _run_batch(config, request)

    _guard(action)

@app.command()
def mp3(
    files: List[Path] = typer.Argument(..., help="MP3 files to compress"),
    output_dir: Path = typer.Option(..., "--output-dir", "-d", help="Directory for results"),
    bitrate: Optional[int] = typer.Option(None, "--bitrate", "-b", help="Target bitrate in kbps"),
    threshold: Optional[int] = typer.Option(None, "--threshold", help="Skip files at or below this kbps"),
    cbr: bool = typer.Option(False, "--cbr", help="Constant bitrate instead of ABR"),
    force: bool = typer.Option(False, "--force", help="Re-encode files below the threshold too"),
    source_root: Optional[Path] = typer.Option(None, "--source-root", help="Keep folder structure relative to this directory"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Compress MP3 files that sit above a bitrate threshold."""
    def action():
        config = _prepare(config_path, output_dir, debug)
        defaults = config.mp3
        options = Mp3BatchOptions(
            bitrate=bitrate or defaults.bitrate,
            threshold=threshold or defaults.threshold,
            encoding_mode="cbr" if cbr else defaults.encoding_mode,
            force_process=force,
            keep_structure=defaults.keep_structure,
            source_root=source_root
        )
        request = BatchRequest(operation=BatchOperation.MP3, input_files=files, output_dir=output_dir, options=options)
        _run_batch(config, request)

    _guard(action)

@app.command()
def hls(
    files: List[Path] = typer.Argument(..., help="Videos to convert"),
    output_dir: Path = typer.Option(..., "--output-dir", "-d", help="Directory for results"),
    resolution: Optional[str] = typer.Option(None, "--resolution", "-r", help="4k, 2k, 1080p, 720p, 480p or auto"),
    quality: Optional[str] = typer.Option(None, "--quality", "-q", help="high, medium or fast"),
    segment: Optional[int] = typer.Option(None, "--segment", help="Segment length in seconds"),
    cbr: bool = typer.Option(False, "--cbr", help="Constant bitrate rate control"),
    video_bitrate: Optional[str] = typer.Option(None, "--video-bitrate", help="Custom video bitrate, e.g. 3500k"),
    framerate: Optional[float] = typer.Option(None, "--framerate", help="Custom output frame rate"),
    preset: Optional[str] = typer.Option(None, "--preset", help="Custom x264 preset, e.g. fast"),
    profile: Optional[str] = typer.Option(None, "--profile", help="Custom H.264 profile, e.g. main"),
    hw: Optional[bool] = typer.Option(None, "--hw/--no-hw", help="Try VideoToolbox first, falling back to libx264"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Transcode videos into HLS playlists with MPEG-TS segments."""
    def action():
        config = _prepare(config_path, output_dir, debug)
        defaults = config.hls
        custom = None
        if video_bitrate or framerate or preset or profile:
            custom = CustomQuality(
                video_bitrate=video_bitrate, framerate=framerate, encoder_preset=preset, video_profile=profile
            )
        options = HlsBatchOptions(
            segment_duration=segment or defaults.segment_duration,
            fast_start=defaults.fast_start,
            quality=quality or defaults.quality,
            resolution=resolution or defaults.resolution,
            scaling=defaults.scaling,
            color_enhancement=defaults.color_enhancement,
            mobile_audio=defaults.mobile_audio,
            cbr=cbr or defaults.cbr,
            custom=custom,
            hardware_accel=defaults.hardware_accel if hw is None else hw
        )
        request = BatchRequest(operation=BatchOperation.HLS, input_files=files, output_dir=output_dir, options=options)
        _run_batch(config, request)

    _guard(action)

if __name__ == "__main__":
    app()
