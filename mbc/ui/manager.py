import logging
from mbc.infrastructure.event_bus import EventBus
from mbc.ui.state import UIState
from mbc.domain.events import (
    BatchStarted, BatchFinished, FileProcessed,
    JobStarted, JobCompleted, JobFailed,
    JobProgressUpdated, StageChanged, LogMessage, RequestStop
)

class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self.logger = logging.getLogger(__name__)
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(BatchStarted, self.on_batch_started)
        self.bus.subscribe(BatchFinished, self.on_batch_finished)
        self.bus.subscribe(FileProcessed, self.on_file_processed)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        self.bus.subscribe(StageChanged, self.on_stage_changed)
        self.bus.subscribe(LogMessage, self.on_log_message)
        self.bus.subscribe(RequestStop, self.on_stop_request)

    def on_batch_started(self, event: BatchStarted):
        with self.state._lock:
            self.state.operation = event.operation
            self.state.total_files = event.total_files
            self.state.processed_files = 0
            self.state.finished = False

    def on_batch_finished(self, event: BatchFinished):
        with self.state._lock:
            self.state.finished = True
            self.state.active_jobs.clear()

    def on_file_processed(self, event: FileProcessed):
        self.state.add_result(event.result)

    def on_job_started(self, event: JobStarted):
        self.state.start_job(event.job_id, event.label, event.mode)

    def on_job_completed(self, event: JobCompleted):
        self.state.finish_job(event.job_id)

    def on_job_failed(self, event: JobFailed):
        self.logger.debug(f"UI: job {event.job_id} failed: {event.error_message}")
        self.state.finish_job(event.job_id)

    def on_stage_changed(self, event: StageChanged):
        with self.state._lock:
            job = self.state.get_job(event.job_id)
            if job is None:
                # Batch files report stages without a JobStarted
                self.state.start_job(event.job_id, event.job_id, self.state.operation or "")
                job = self.state.get_job(event.job_id)
            job.stage = event.stage.value
            if event.stage.value in ("COMPLETE", "FAILED"):
                self.state.finish_job(event.job_id)

    def on_job_progress(self, event: JobProgressUpdated):
        with self.state._lock:
            job = self.state.get_job(event.job_id)
            if job is None:
                return
            job.step_label = event.label
            job.percent = event.current_percent
            job.elapsed_seconds = event.elapsed_seconds
            job.expected_total_seconds = event.expected_total_seconds

    def on_log_message(self, event: LogMessage):
        self.state.add_log(event.severity, event.message)

    def on_stop_request(self, event: RequestStop):
        with self.state._lock:
            self.state.stop_requested = True
