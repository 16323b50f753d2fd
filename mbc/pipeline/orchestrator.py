import logging
import threading
from pathlib import Path
from typing import List, Optional
from mbc.config.models import AppConfig
from mbc.infrastructure.event_bus import EventBus
from mbc.infrastructure.ffprobe import FFprobeAdapter
from mbc.infrastructure.ffmpeg import FFmpegAdapter
from mbc.infrastructure.workspace import TempWorkspace
from mbc.domain.errors import (
    MbcError, ProbeError, ProbeErrorKind, ProcessError, ProcessErrorKind, CancelledError
)
from mbc.domain.models import (
    BatchOperation, BatchRequest, BatchSummary, CompositionJob, CompositionMode,
    FileResult, FileStatus, JobStage, MediaStreamProfile, ReconciliationPlan,
    ReconciliationStrategy
)
from mbc.domain.events import (
    BatchFinished, BatchStarted, FileProcessed, JobCompleted, JobFailed,
    JobStarted, LogMessage, RequestStop, StageChanged
)
from mbc.pipeline.filter_graph import FilterGraphBuilder
from mbc.pipeline.planner import ReconciliationPlanner
from mbc.pipeline.preprocess import repackage_args, reencode_args
from mbc.pipeline.transcode import (
    hardware_encoder, hls_args, hls_paths, mp3_args, mp3_output_path, should_skip_mp3
)

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

class PipelineOrchestrator:
    """Runs composition jobs and per-file batches one step at a time.

    Stop requests are honoured between stages: before each file, before
    each preprocessing step and before composing.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        planner: Optional[ReconciliationPlanner] = None,
        graph_builder: Optional[FilterGraphBuilder] = None
    ):
        self.config = config
        self.event_bus = event_bus
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.planner = planner or ReconciliationPlanner()
        self.graph_builder = graph_builder or FilterGraphBuilder()
        self.logger = logging.getLogger(__name__)

        self._stop_requested = threading.Event()
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.event_bus.subscribe(RequestStop, self._on_stop_request)

    def _on_stop_request(self, event: RequestStop):
        self.cancel(force=event.force)

    def cancel(self, force: bool = False):
        """Requests a stop. With force the running ffmpeg process is killed too."""
        if not self._stop_requested.is_set():
            self._log("warning", "Stop requested, finishing current step")
        self._stop_requested.set()
        if force:
            self.ffmpeg_adapter.terminate()

    @property
    def cancelled(self) -> bool:
        return self._stop_requested.is_set()

    def _check_cancelled(self, where: str):
        if self._stop_requested.is_set():
            raise CancelledError(f"Stopped by user before {where}")

    def _log(self, severity: str, message: str):
        self.logger.log(_LOG_LEVELS.get(severity, logging.INFO), message)
        self.event_bus.publish(LogMessage(severity=severity, message=message))

    def _stage(self, job_id: str, stage: JobStage):
        self.logger.debug(f"STAGE: {job_id} {stage.value}")
        self.event_bus.publish(StageChanged(job_id=job_id, stage=stage))

    # Composition

    def compose(self, job: CompositionJob) -> Path:
        """Runs one composition job to a single output file.

        Any failure is fatal to the job: the temp workspace is removed and the
        original error is re-raised after JobFailed is published.
        """
        return self._compose(job, log_failure=True)

    def _compose(self, job: CompositionJob, log_failure: bool) -> Path:
        self.event_bus.publish(JobStarted(job_id=job.job_id, label=job.label, mode=job.mode.value))
        try:
            with TempWorkspace.create(self.config.general.temp_dir) as workspace:
                try:
                    self._run_composition(job, workspace)
                finally:
                    self._stage(job.job_id, JobStage.CLEANING_UP)
        except MbcError as e:
            self._fail(job, e.message, log_failure)
            raise
        except Exception as e:
            self._fail(job, str(e), log_failure)
            raise

        self._stage(job.job_id, JobStage.COMPLETE)
        self._log("success", f"Composed {job.label}")
        self.event_bus.publish(JobCompleted(job_id=job.job_id, output=job.output))
        return job.output

    def _fail(self, job: CompositionJob, reason: str, log_failure: bool):
        self._stage(job.job_id, JobStage.FAILED)
        if log_failure:
            self._log("error", f"Composition of {job.label} failed: {reason}")
        self.event_bus.publish(JobFailed(job_id=job.job_id, error_message=reason))

    def _run_composition(self, job: CompositionJob, workspace: TempWorkspace):
        builder = self.graph_builder
        self._stage(job.job_id, JobStage.ANALYZING)
        builder.validate(job)

        profiles: List[MediaStreamProfile] = []
        for clip in builder.clips(job):
            self._check_cancelled(f"analyzing {Path(clip).name}")
            profiles.append(self.ffprobe_adapter.probe(clip))
        reference = profiles[builder.main_index(job)]
        self._log("info", f"Reference clip: {reference.name} ({reference.video_codec}, {reference.resolution}, {reference.fps:.2f}fps)")

        trim = None
        if job.mode == CompositionMode.INTRO_OUTRO and (job.options.intro_trim or job.options.outro_trim):
            trim = self.planner.plan_trim(reference.duration, job.options.intro_trim, job.options.outro_trim)

        sources = [p.path for p in profiles]
        if builder.spec_for(job).reconcile and len(profiles) > 1:
            plan = self.planner.plan(profiles, reference)
            sources = self._reconcile(job, plan, profiles, workspace)

        self._check_cancelled("composing")
        self._stage(job.job_id, JobStage.COMPOSING)
        command = builder.build(job, profiles, sources, reference, trim)
        job.output.parent.mkdir(parents=True, exist_ok=True)
        self.ffmpeg_adapter.run(command.args, command.expected_duration, job.job_id, job.label)

    def _reconcile(
        self,
        job: CompositionJob,
        plan: ReconciliationPlan,
        profiles: List[MediaStreamProfile],
        workspace: TempWorkspace
    ) -> List[Path]:
        """Returns the clip paths to compose from after preprocessing."""
        sources = [p.path for p in profiles]

        if plan.strategy == ReconciliationStrategy.FAST_REPACKAGE:
            self._stage(job.job_id, JobStage.REPACKAGING)
            for idx, profile in enumerate(profiles):
                self._check_cancelled(f"repackaging {profile.name}")
                target = workspace.new_path(f"clip_{idx:02d}.ts")
                self._log("info", f"Repackaging {profile.name} (stream copy)")
                self.ffmpeg_adapter.run(
                    repackage_args(profile.path, target),
                    profile.duration or None,
                    job.job_id,
                    f"repackage {profile.name}"
                )
                sources[idx] = target

        elif plan.strategy == ReconciliationStrategy.FULL_REENCODE:
            self._stage(job.job_id, JobStage.PREPROCESSING)
            if plan.forced:
                self._log("warning", "Inputs differ from each other, re-encoding all of them to the reference format")
            targets = plan.reencode_targets()
            for idx, profile in enumerate(profiles):
                if not any(item.profile is profile for item in targets):
                    continue
                self._check_cancelled(f"preprocessing {profile.name}")
                target = workspace.new_path(f"clip_{idx:02d}.mp4")
                self._log(
                    "info",
                    f"Re-encoding {profile.name} to {plan.reference.resolution} "
                    f"{plan.reference.fps:.2f}fps {plan.reference.pix_fmt}"
                )
                self.ffmpeg_adapter.run(
                    reencode_args(profile.path, target, plan.reference),
                    profile.duration or None,
                    job.job_id,
                    f"preprocess {profile.name}"
                )
                sources[idx] = target

        return sources

    # Batches

    def run_batch(self, request: BatchRequest) -> BatchSummary:
        """Processes every file of the request in order.

        A failing file is recorded and the batch moves on. A stop request
        ends the batch early with summary.cancelled set.
        """
        handlers = {
            BatchOperation.MP3: self._process_mp3,
            BatchOperation.HLS: self._process_hls,
            BatchOperation.INTRO_OUTRO: self._process_intro_outro,
            BatchOperation.WATERMARK: self._process_watermark,
        }
        handler = handlers[request.operation]
        summary = BatchSummary()
        total = len(request.input_files)

        self.event_bus.publish(BatchStarted(operation=request.operation.value, total_files=total))
        self._log("info", f"Batch {request.operation.value}: {total} files -> {request.output_dir}")
        request.output_dir.mkdir(parents=True, exist_ok=True)

        for index, source in enumerate(request.input_files, start=1):
            if self._stop_requested.is_set():
                summary.cancelled = True
                self._log("warning", f"Batch stopped by user, {total - index + 1} files not processed")
                break

            job_id = f"{request.operation.value}-{index}"
            source = Path(source)
            try:
                result = handler(source, request, job_id)
            except CancelledError as e:
                summary.cancelled = True
                result = FileResult(file=source, status=FileStatus.ERROR, message=e.message)
            except MbcError as e:
                result = FileResult(file=source, status=FileStatus.ERROR, message=e.message)
            except OSError as e:
                result = FileResult(file=source, status=FileStatus.ERROR, message=str(e))
            except Exception as e:
                self.logger.debug(f"BATCH_EXCEPTION: {source.name}", exc_info=True)
                result = FileResult(file=source, status=FileStatus.ERROR, message=f"Unexpected error: {e}")

            if result.status == FileStatus.ERROR:
                self._stage(job_id, JobStage.FAILED)
                self._log("error", f"{source.name}: {result.message}")
            summary.record(result)
            self.event_bus.publish(FileProcessed(result=result, index=index, total=total))
            if summary.cancelled:
                break

        self._log(
            "info",
            f"Batch finished: {summary.succeeded} succeeded, {summary.skipped} skipped, {summary.failed} failed"
        )
        self.event_bus.publish(BatchFinished(summary=summary))
        return summary

    def _probe_or_unknown(self, source: Path, audio_only: bool = False):
        """Probe that tolerates unreadable metadata; returns None when unknown."""
        try:
            if audio_only:
                return self.ffprobe_adapter.probe_format(source)
            return self.ffprobe_adapter.probe(source)
        except ProbeError as e:
            if e.kind != ProbeErrorKind.MALFORMED_OUTPUT:
                raise
            self._log("warning", f"{source.name}: could not read metadata, using defaults")
            return None

    def _process_mp3(self, source: Path, request: BatchRequest, job_id: str) -> FileResult:
        options = request.options
        self._stage(job_id, JobStage.ANALYZING)
        info = self._probe_or_unknown(source, audio_only=True) or {}
        current = info.get("bitrate_kbps")

        if should_skip_mp3(current, options):
            self._stage(job_id, JobStage.COMPLETE)
            return FileResult(
                file=source,
                status=FileStatus.SKIPPED,
                message=f"Bitrate {current}kbps <= threshold {options.threshold}kbps"
            )

        self._stage(job_id, JobStage.PROCESSING)
        target = mp3_output_path(source, request.output_dir, options)
        target.parent.mkdir(parents=True, exist_ok=True)
        self.ffmpeg_adapter.run(mp3_args(source, target, options), info.get("duration") or None, job_id, source.name)
        self._stage(job_id, JobStage.COMPLETE)
        return FileResult(
            file=source,
            status=FileStatus.SUCCESS,
            output=target,
            message=f"Compressed to {options.bitrate}kbps ({options.encoding_mode.upper()})"
        )

    def _process_hls(self, source: Path, request: BatchRequest, job_id: str) -> FileResult:
        options = request.options
        self._stage(job_id, JobStage.ANALYZING)
        profile = self._probe_or_unknown(source)

        self._stage(job_id, JobStage.PROCESSING)
        directory, playlist, _ = hls_paths(source, request.output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        duration = (profile.duration if profile is not None else None) or None
        encoder = hardware_encoder() if options.hardware_accel else None
        if encoder is None:
            self.ffmpeg_adapter.run(hls_args(source, request.output_dir, options, profile), duration, job_id, source.name)
        else:
            try:
                self.ffmpeg_adapter.run(
                    hls_args(source, request.output_dir, options, profile, encoder), duration, job_id, source.name
                )
            except ProcessError as e:
                if e.kind != ProcessErrorKind.NON_ZERO_EXIT:
                    raise
                self._log("warning", f"{source.name}: {encoder} failed ({e.message}), retrying with libx264")
                self.ffmpeg_adapter.run(hls_args(source, request.output_dir, options, profile), duration, job_id, source.name)
        self._stage(job_id, JobStage.COMPLETE)
        return FileResult(file=source, status=FileStatus.SUCCESS, output=playlist, message="HLS playlist written")

    def _process_intro_outro(self, source: Path, request: BatchRequest, job_id: str) -> FileResult:
        options = request.options
        job = CompositionJob(
            mode=CompositionMode.INTRO_OUTRO,
            inputs=[source],
            output=request.output_dir / f"{source.stem}_branded.{options.format}",
            format=options.format,
            quality=options.quality,
            geometry=options.geometry,
            options=options.insert,
            job_id=job_id
        )
        output = self._compose(job, log_failure=False)
        return FileResult(file=source, status=FileStatus.SUCCESS, output=output, message="Intro/outro applied")

    def _process_watermark(self, source: Path, request: BatchRequest, job_id: str) -> FileResult:
        options = request.options
        job = CompositionJob(
            mode=CompositionMode.OVERLAY,
            inputs=[source],
            output=request.output_dir / f"{source.stem}_watermarked.{options.format}",
            format=options.format,
            quality=options.quality,
            geometry=options.geometry,
            options=options.overlay,
            job_id=job_id
        )
        output = self._compose(job, log_failure=False)
        return FileResult(
            file=source,
            status=FileStatus.SUCCESS,
            output=output,
            message=f"{len(options.overlay.images)} overlay(s) applied"
        )
