import subprocess
import logging
import threading
import time
from collections import deque
from typing import List, Optional
from mbc.domain.errors import ProcessError, ProcessErrorKind, CancelledError
from mbc.domain.events import JobProgressUpdated, LogMessage
from mbc.infrastructure.event_bus import EventBus
from mbc.infrastructure.progress import ProgressTracker, format_duration
from mbc.infrastructure.tool_locator import ToolLocator

STDERR_TAIL_LINES = 20

class FFmpegAdapter:
    """Runs ffmpeg with a prepared argument list and reports progress on the bus."""

    def __init__(self, event_bus: EventBus, locator: Optional[ToolLocator] = None):
        self.event_bus = event_bus
        self.locator = locator or ToolLocator()
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._terminated = False

    def _build_command(self, args: List[str]) -> List[str]:
        binary = self.locator.ffmpeg
        if binary is None:
            raise ProcessError(ProcessErrorKind.BINARY_NOT_FOUND, "ffmpeg binary not found")
        return [binary] + [str(a) for a in args]

    def run(
        self,
        args: List[str],
        expected_duration: Optional[float] = None,
        job_id: str = "",
        label: str = ""
    ):
        """Executes one ffmpeg process to completion.

        Raises ProcessError on failure and CancelledError when terminate()
        stopped the process.
        """
        cmd = self._build_command(args)
        start_time = time.monotonic()
        self.logger.debug(f"FFMPEG_START: {label} cmd={' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                bufsize=1
            )
        except FileNotFoundError:
            raise ProcessError(ProcessErrorKind.BINARY_NOT_FOUND, f"ffmpeg binary not found: {cmd[0]}")
        except OSError as e:
            raise ProcessError(ProcessErrorKind.SPAWN_FAILURE, f"Failed to start ffmpeg: {e}")

        with self._lock:
            self._process = process
            self._terminated = False

        tracker = ProgressTracker(expected_duration)
        tail = deque(maxlen=STDERR_TAIL_LINES)
        overrun_reported = False

        try:
            for line in process.stderr:
                line = line.rstrip()
                if line:
                    tail.append(line)
                state = tracker.feed(line)
                if state is None:
                    continue
                self.event_bus.publish(JobProgressUpdated(
                    job_id=job_id,
                    current_percent=state.percent,
                    elapsed_seconds=state.elapsed_seconds,
                    expected_total_seconds=state.expected_total_seconds,
                    status="processing",
                    label=label
                ))
                if tracker.overrun and not overrun_reported:
                    overrun_reported = True
                    message = (
                        f"Encoding time exceeds expected duration: "
                        f"{format_duration(state.elapsed_seconds)} > {format_duration(expected_duration)}"
                    )
                    self.logger.warning(message)
                    self.event_bus.publish(LogMessage(severity="warning", message=message))
            process.wait()
        except BaseException:
            if process.poll() is None:
                process.kill()
            process.wait()
            raise
        finally:
            with self._lock:
                self._process = None
                terminated = self._terminated

        elapsed = time.monotonic() - start_time
        if terminated:
            self.logger.info(f"FFMPEG_END: {label} status=terminated elapsed={elapsed:.2f}s")
            raise CancelledError(f"ffmpeg stopped by user: {label}")

        if process.returncode != 0:
            stderr_tail = "\n".join(tail)
            self.logger.info(f"FFMPEG_END: {label} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            self.logger.debug(f"FFMPEG_STDERR: {stderr_tail}")
            raise ProcessError(
                ProcessErrorKind.NON_ZERO_EXIT,
                f"ffmpeg exited with code {process.returncode}",
                exit_code=process.returncode,
                stderr_tail=stderr_tail
            )

        final = tracker.complete()
        self.event_bus.publish(JobProgressUpdated(
            job_id=job_id,
            current_percent=final.percent,
            elapsed_seconds=final.elapsed_seconds,
            expected_total_seconds=final.expected_total_seconds,
            status="complete",
            label=label
        ))
        self.logger.info(f"FFMPEG_END: {label} status=completed elapsed={elapsed:.2f}s")

    def terminate(self):
        """Kills the in-flight ffmpeg process, if any."""
        with self._lock:
            process = self._process
            if process is None:
                return
            self._terminated = True
        if process.poll() is None:
            self.logger.info("FFMPEG_TERMINATE: killing in-flight process")
            process.kill()

    def check_available(self, timeout: float = 5.0) -> bool:
        """Runs 'ffmpeg -version', killing it if it does not answer in time."""
        binary = self.locator.ffmpeg
        if binary is None:
            return False
        try:
            process = subprocess.Popen(
                [binary, "-version"],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace"
            )
        except OSError as e:
            self.logger.error(f"ffmpeg availability check failed: {e}")
            return False

        try:
            stdout, _ = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            self.logger.error(f"ffmpeg -version did not answer within {timeout}s")
            return False

        if process.returncode != 0:
            return False
        first_line = (stdout or "").splitlines()[0] if stdout else ""
        self.logger.info(f"ffmpeg available: {first_line}")
        return True
