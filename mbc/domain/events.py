from pathlib import Path
from typing import Optional, Literal
from pydantic import BaseModel
from .models import JobStage, FileResult, BatchSummary

class Event(BaseModel):
    """Base class for all domain events."""
    pass

class JobEvent(Event):
    job_id: str

class JobStarted(JobEvent):
    label: str
    mode: str

class StageChanged(JobEvent):
    stage: JobStage

class JobProgressUpdated(JobEvent):
    current_percent: Optional[float] = None
    elapsed_seconds: float
    expected_total_seconds: Optional[float] = None
    status: str = "running"
    label: str = ""

class JobCompleted(JobEvent):
    output: Path

class JobFailed(JobEvent):
    error_message: str

class LogMessage(Event):
    severity: Literal["info", "success", "warning", "error"] = "info"
    message: str

class BatchStarted(Event):
    operation: str
    total_files: int

class FileProcessed(Event):
    result: FileResult
    index: int
    total: int

class BatchFinished(Event):
    summary: BatchSummary

class RequestStop(Event):
    """Operator asked to stop: 'S' waits for the current step, Ctrl+C kills it."""
    force: bool = False
