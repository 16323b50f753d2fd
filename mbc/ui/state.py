import threading
from collections import deque
from datetime import datetime
from typing import Dict, Optional
from mbc.domain.models import FileResult, FileStatus

class ActiveJob:
    """What the dashboard shows for the job currently running."""

    def __init__(self, job_id: str, label: str, mode: str):
        self.job_id = job_id
        self.label = label
        self.mode = mode
        self.stage = "ANALYZING"
        self.step_label = ""
        self.percent: Optional[float] = None
        self.elapsed_seconds = 0.0
        self.expected_total_seconds: Optional[float] = None
        self.started_at = datetime.now()

class UIState:
    """Thread-safe state manager for the live dashboard."""

    def __init__(self):
        self._lock = threading.RLock()

        # Counters
        self.succeeded_count = 0
        self.failed_count = 0
        self.skipped_count = 0

        # Batch
        self.operation: Optional[str] = None
        self.total_files = 0
        self.processed_files = 0

        # Jobs
        self.active_jobs: Dict[str, ActiveJob] = {}
        self.recent_results = deque(maxlen=5)
        self.log_lines = deque(maxlen=8)

        # Global Status
        self.processing_start_time: Optional[datetime] = None
        self.stop_requested = False
        self.finished = False

    def start_job(self, job_id: str, label: str, mode: str):
        with self._lock:
            if self.processing_start_time is None:
                self.processing_start_time = datetime.now()
            self.active_jobs[job_id] = ActiveJob(job_id, label, mode)

    def get_job(self, job_id: str) -> Optional[ActiveJob]:
        with self._lock:
            return self.active_jobs.get(job_id)

    def finish_job(self, job_id: str):
        with self._lock:
            self.active_jobs.pop(job_id, None)

    def add_result(self, result: FileResult):
        with self._lock:
            if result.status == FileStatus.SUCCESS:
                self.succeeded_count += 1
            elif result.status == FileStatus.SKIPPED:
                self.skipped_count += 1
            else:
                self.failed_count += 1
            self.processed_files += 1
            self.recent_results.appendleft(result)

    def add_log(self, severity: str, message: str):
        with self._lock:
            self.log_lines.appendleft((datetime.now(), severity, message))

    @property
    def batch_percent(self) -> float:
        with self._lock:
            if self.total_files == 0:
                return 0.0
            return self.processed_files / self.total_files * 100
