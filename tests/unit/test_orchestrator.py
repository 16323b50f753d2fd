import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch
from mbc.config.models import AppConfig, GeneralConfig
from mbc.domain.errors import (
    CancelledError, InputError, PlanError, ProbeError, ProbeErrorKind, ProcessError, ProcessErrorKind
)
from mbc.domain.events import (
    BatchFinished, FileProcessed, JobCompleted, JobFailed, JobStarted, LogMessage, RequestStop, StageChanged
)
from mbc.domain.models import (
    BatchOperation, BatchRequest, CompositionJob, CompositionMode, FileStatus, HlsBatchOptions,
    IntroOutroBatchOptions, IntroOutroOptions, JobStage, Mp3BatchOptions, OverlayImage, OverlayOptions,
    WatermarkBatchOptions
)
from mbc.infrastructure.event_bus import EventBus
from mbc.pipeline.orchestrator import PipelineOrchestrator

class Recorder:
    """Collects every event published on a bus."""

    def __init__(self, bus, *event_types):
        self.events = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]

@pytest.fixture
def setup(tmp_path, make_profile):
    config = AppConfig(general=GeneralConfig(temp_dir=tmp_path / "temp"))
    bus = EventBus()
    recorder = Recorder(
        bus, JobStarted, StageChanged, JobCompleted, JobFailed, LogMessage, FileProcessed, BatchFinished
    )
    mock_ffprobe = MagicMock()
    mock_ffprobe.probe.side_effect = lambda path: make_profile(path)
    mock_ffmpeg = MagicMock()

    orchestrator = PipelineOrchestrator(
        config=config,
        event_bus=bus,
        ffprobe_adapter=mock_ffprobe,
        ffmpeg_adapter=mock_ffmpeg
    )
    return orchestrator, bus, recorder, mock_ffprobe, mock_ffmpeg

def _concat_job(tmp_path, count=2):
    return CompositionJob(
        mode=CompositionMode.CONCAT,
        inputs=[Path(f"clip{i}.mp4") for i in range(count)],
        output=tmp_path / "out" / "joined.mp4"
    )

def _temp_leftovers(tmp_path):
    temp = tmp_path / "temp"
    return list(temp.iterdir()) if temp.exists() else []

def test_compose_matching_inputs(tmp_path, setup):
    orchestrator, _, recorder, mock_ffprobe, mock_ffmpeg = setup
    job = _concat_job(tmp_path, 3)

    assert orchestrator.compose(job) == job.output

    assert mock_ffprobe.probe.call_count == 3
    mock_ffmpeg.run.assert_called_once()
    args, expected, job_id, label = mock_ffmpeg.run.call_args[0]
    assert "concat=n=3:v=1:a=1[v][a]" in args[args.index("-filter_complex") + 1]
    assert expected == 30.0
    assert job_id == job.job_id
    assert label == "joined.mp4"
    assert (tmp_path / "out").is_dir()

    stages = [e.stage for e in recorder.of(StageChanged)]
    assert stages == [JobStage.ANALYZING, JobStage.COMPOSING, JobStage.CLEANING_UP, JobStage.COMPLETE]
    assert len(recorder.of(JobStarted)) == 1
    assert len(recorder.of(JobCompleted)) == 1
    assert _temp_leftovers(tmp_path) == []

def test_compose_repackages_h264_variants(tmp_path, setup, make_profile):
    orchestrator, _, recorder, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe.side_effect = [
        make_profile("clip0.mp4"),
        make_profile("clip1.mp4", video_codec="avc1", audio_codec="mp3"),
    ]

    orchestrator.compose(_concat_job(tmp_path))

    assert mock_ffmpeg.run.call_count == 3
    calls = [c[0][0] for c in mock_ffmpeg.run.call_args_list]
    assert all("h264_mp4toannexb" in args for args in calls[:2])
    compose_args = calls[2]
    ts_inputs = [a for a in compose_args if a.endswith(".ts")]
    assert [Path(a).name for a in ts_inputs] == ["clip_00.ts", "clip_01.ts"]
    assert JobStage.REPACKAGING in [e.stage for e in recorder.of(StageChanged)]
    assert _temp_leftovers(tmp_path) == []

def test_compose_reencodes_only_mismatched_input(tmp_path, setup, make_profile):
    orchestrator, _, recorder, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe.side_effect = [
        make_profile("clip0.mp4"),
        make_profile("clip1.mp4"),
        make_profile("clip2.mp4", width=1280, height=720),
    ]

    orchestrator.compose(_concat_job(tmp_path, 3))

    assert mock_ffmpeg.run.call_count == 2
    preprocess_args = mock_ffmpeg.run.call_args_list[0][0][0]
    assert "clip2.mp4" in preprocess_args
    assert preprocess_args[-1].endswith("clip_02.mp4")
    compose_args = mock_ffmpeg.run.call_args_list[1][0][0]
    assert "clip0.mp4" in compose_args
    assert JobStage.PREPROCESSING in [e.stage for e in recorder.of(StageChanged)]

def test_wrong_input_count_fails_before_probing(tmp_path, setup):
    orchestrator, _, recorder, mock_ffprobe, mock_ffmpeg = setup
    job = CompositionJob(
        mode=CompositionMode.SIDE_BY_SIDE,
        inputs=[Path("a.mp4"), Path("b.mp4"), Path("c.mp4")],
        output=tmp_path / "sbs.mp4"
    )

    with pytest.raises(InputError):
        orchestrator.compose(job)

    mock_ffprobe.probe.assert_not_called()
    mock_ffmpeg.run.assert_not_called()
    failed = recorder.of(JobFailed)
    assert len(failed) == 1
    assert "exactly 2" in failed[0].error_message
    assert recorder.of(StageChanged)[-1].stage == JobStage.FAILED

def test_encoder_failure_is_fatal_and_cleans_up(tmp_path, setup, make_profile):
    orchestrator, _, recorder, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe.side_effect = [make_profile("clip0.mp4"), make_profile("clip1.mp4", audio_codec="mp3")]
    mock_ffmpeg.run.side_effect = [
        None,
        ProcessError(ProcessErrorKind.NON_ZERO_EXIT, "ffmpeg exited with code 1", exit_code=1),
    ]

    with pytest.raises(ProcessError):
        orchestrator.compose(_concat_job(tmp_path))

    assert mock_ffmpeg.run.call_count == 2
    assert recorder.of(JobFailed)[0].error_message == "ffmpeg exited with code 1"
    assert not recorder.of(JobCompleted)
    assert _temp_leftovers(tmp_path) == []

def test_invalid_trim_fails_job(tmp_path, setup, make_profile):
    orchestrator, _, _, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe.side_effect = None
    mock_ffprobe.probe.return_value = make_profile("main.mp4", duration=12.0)
    job = CompositionJob(
        mode=CompositionMode.INTRO_OUTRO,
        inputs=[Path("main.mp4")],
        output=tmp_path / "out.mp4",
        options=IntroOutroOptions(intro_trim=10, outro_trim=5)
    )

    with pytest.raises(PlanError):
        orchestrator.compose(job)
    mock_ffmpeg.run.assert_not_called()

def test_intro_outro_uses_main_clip_as_reference(tmp_path, setup, make_profile):
    orchestrator, _, _, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe.side_effect = [
        make_profile("intro.mp4", width=1280, height=720, duration=3.0),
        make_profile("main.mp4", duration=20.0),
    ]
    job = CompositionJob(
        mode=CompositionMode.INTRO_OUTRO,
        inputs=[Path("main.mp4")],
        output=tmp_path / "out.mp4",
        options=IntroOutroOptions(intro=Path("intro.mp4"), intro_trim=10, outro_trim=5)
    )

    orchestrator.compose(job)

    # intro is re-encoded to the main clip's geometry, then everything is joined
    assert mock_ffmpeg.run.call_count == 2
    preprocess_args = mock_ffmpeg.run.call_args_list[0][0][0]
    assert "intro.mp4" in preprocess_args
    assert preprocess_args[preprocess_args.index("-vf") + 1].startswith("scale=1920:1080")
    compose_args, expected = mock_ffmpeg.run.call_args_list[1][0][:2]
    assert ["-ss", "10", "-t", "5", "-i", "main.mp4"] == compose_args[3:9]
    assert expected == 8.0

def test_cancel_before_start_stops_at_first_boundary(tmp_path, setup):
    orchestrator, _, recorder, mock_ffprobe, mock_ffmpeg = setup
    orchestrator.cancel()

    with pytest.raises(CancelledError):
        orchestrator.compose(_concat_job(tmp_path))

    mock_ffprobe.probe.assert_not_called()
    mock_ffmpeg.run.assert_not_called()
    assert any(m.severity == "warning" for m in recorder.of(LogMessage))

def test_forced_stop_request_terminates_encoder(setup):
    orchestrator, bus, _, _, mock_ffmpeg = setup

    bus.publish(RequestStop())
    assert orchestrator.cancelled
    mock_ffmpeg.terminate.assert_not_called()

    bus.publish(RequestStop(force=True))
    mock_ffmpeg.terminate.assert_called_once()

def test_mp3_batch_partial_failure(tmp_path, setup):
    orchestrator, _, recorder, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe_format.side_effect = [
        {"bitrate_kbps": 320, "duration": 100.0},
        ProbeError(ProbeErrorKind.TOOL_NOT_FOUND, "ffprobe binary not found"),
        {"bitrate_kbps": 48, "duration": 100.0},
        ProbeError(ProbeErrorKind.MALFORMED_OUTPUT, "garbage"),
    ]
    request = BatchRequest(
        operation=BatchOperation.MP3,
        input_files=[Path(f"song{i}.mp3") for i in range(4)],
        output_dir=tmp_path / "out",
        options=Mp3BatchOptions(bitrate=64, threshold=64)
    )

    summary = orchestrator.run_batch(request)

    assert [d.status for d in summary.details] == [
        FileStatus.SUCCESS, FileStatus.ERROR, FileStatus.SKIPPED, FileStatus.SUCCESS
    ]
    assert summary.details[1].message == "ffprobe binary not found"
    assert summary.details[2].message == "Bitrate 48kbps <= threshold 64kbps"
    assert summary.details[0].output == tmp_path / "out" / "song0.mp3"
    assert mock_ffmpeg.run.call_count == 2
    # unknown duration for the unreadable file
    assert mock_ffmpeg.run.call_args_list[1][0][1] is None
    assert [e.index for e in recorder.of(FileProcessed)] == [1, 2, 3, 4]
    assert recorder.of(BatchFinished)[0].summary.failed == 1

def test_batch_stop_skips_remaining_files(tmp_path, setup):
    orchestrator, _, _, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe_format.return_value = {"bitrate_kbps": 320, "duration": 10.0}
    mock_ffmpeg.run.side_effect = lambda *args: orchestrator.cancel()
    request = BatchRequest(
        operation=BatchOperation.MP3,
        input_files=[Path(f"song{i}.mp3") for i in range(3)],
        output_dir=tmp_path / "out"
    )

    summary = orchestrator.run_batch(request)

    assert summary.cancelled
    assert summary.succeeded == 1
    assert len(summary.details) == 1
    assert mock_ffmpeg.run.call_count == 1

def test_batch_cancelled_mid_file(tmp_path, setup):
    orchestrator, _, _, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe_format.return_value = {"bitrate_kbps": 320, "duration": 10.0}
    mock_ffmpeg.run.side_effect = CancelledError("ffmpeg stopped by user: song0.mp3")
    request = BatchRequest(
        operation=BatchOperation.MP3,
        input_files=[Path("song0.mp3"), Path("song1.mp3")],
        output_dir=tmp_path / "out"
    )

    summary = orchestrator.run_batch(request)

    assert summary.cancelled
    assert summary.failed == 1
    assert mock_ffmpeg.run.call_count == 1

def test_hls_batch(tmp_path, setup):
    orchestrator, _, _, mock_ffprobe, mock_ffmpeg = setup
    request = BatchRequest(
        operation=BatchOperation.HLS,
        input_files=[Path("talk.mp4")],
        output_dir=tmp_path / "hls",
        options=HlsBatchOptions()
    )

    summary = orchestrator.run_batch(request)

    assert summary.succeeded == 1
    assert summary.details[0].output == tmp_path / "hls" / "talk" / "talk.m3u8"
    assert (tmp_path / "hls" / "talk").is_dir()
    args, expected = mock_ffmpeg.run.call_args[0][:2]
    assert args[-1] == str(tmp_path / "hls" / "talk" / "talk.m3u8")
    assert expected == 10.0

def test_hls_batch_with_unreadable_metadata(tmp_path, setup):
    orchestrator, _, _, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe.side_effect = ProbeError(ProbeErrorKind.MALFORMED_OUTPUT, "garbage")
    request = BatchRequest(operation=BatchOperation.HLS, input_files=[Path("talk.mp4")], output_dir=tmp_path)

    summary = orchestrator.run_batch(request)

    assert summary.succeeded == 1
    assert mock_ffmpeg.run.call_args[0][1] is None

def test_watermark_batch_outputs(tmp_path, setup):
    orchestrator, _, recorder, _, mock_ffmpeg = setup
    options = WatermarkBatchOptions(
        format="mkv",
        overlay=OverlayOptions(images=[OverlayImage(path=Path("logo.png"), width=64, height=64)])
    )
    request = BatchRequest(
        operation=BatchOperation.WATERMARK,
        input_files=[Path("a.mp4"), Path("b.mp4")],
        output_dir=tmp_path / "out",
        options=options
    )

    summary = orchestrator.run_batch(request)

    assert summary.succeeded == 2
    assert [d.output for d in summary.details] == [
        tmp_path / "out" / "a_watermarked.mkv",
        tmp_path / "out" / "b_watermarked.mkv",
    ]
    assert [e.job_id for e in recorder.of(JobStarted)] == ["watermark-1", "watermark-2"]
    assert "logo.png" in mock_ffmpeg.run.call_args[0][0]

def test_intro_outro_batch_failure_is_per_file(tmp_path, setup, make_profile):
    orchestrator, _, _, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe.side_effect = lambda path: make_profile(path, duration=12.0 if "short" in str(path) else 30.0)
    options = IntroOutroBatchOptions(insert=IntroOutroOptions(intro_trim=10, outro_trim=5))
    request = BatchRequest(
        operation=BatchOperation.INTRO_OUTRO,
        input_files=[Path("short.mp4"), Path("long.mp4")],
        output_dir=tmp_path / "out",
        options=options
    )

    summary = orchestrator.run_batch(request)

    assert [d.status for d in summary.details] == [FileStatus.ERROR, FileStatus.SUCCESS]
    assert "leaves nothing" in summary.details[0].message
    assert summary.details[1].output == tmp_path / "out" / "long_branded.mp4"
    assert mock_ffmpeg.run.call_count == 1

def test_unexpected_error_fails_only_that_file(tmp_path, setup):
    orchestrator, _, recorder, mock_ffprobe, mock_ffmpeg = setup
    mock_ffprobe.probe_format.side_effect = [
        UnicodeDecodeError("utf-8", b"\xe9", 0, 1, "invalid continuation byte"),
        {"bitrate_kbps": 320, "duration": 10.0},
    ]
    request = BatchRequest(
        operation=BatchOperation.MP3,
        input_files=[Path("cafe.mp3"), Path("song.mp3")],
        output_dir=tmp_path / "out"
    )

    summary = orchestrator.run_batch(request)

    assert [d.status for d in summary.details] == [FileStatus.ERROR, FileStatus.SUCCESS]
    assert summary.details[0].message.startswith("Unexpected error:")
    assert not summary.cancelled
    assert mock_ffmpeg.run.call_count == 1
    assert [e.index for e in recorder.of(FileProcessed)] == [1, 2]

def test_intro_outro_batch_failure_logged_once(tmp_path, setup):
    orchestrator, _, recorder, _, mock_ffmpeg = setup
    mock_ffmpeg.run.side_effect = ProcessError(ProcessErrorKind.NON_ZERO_EXIT, "ffmpeg exited with code 1")
    request = BatchRequest(
        operation=BatchOperation.INTRO_OUTRO,
        input_files=[Path("talk.mp4")],
        output_dir=tmp_path / "out",
        options=IntroOutroBatchOptions(insert=IntroOutroOptions(intro=Path("intro.mp4")))
    )

    summary = orchestrator.run_batch(request)

    assert summary.failed == 1
    errors = [m.message for m in recorder.of(LogMessage) if m.severity == "error"]
    assert errors == ["talk.mp4: ffmpeg exited with code 1"]
    assert len(recorder.of(JobFailed)) == 1

def _hls_request(tmp_path):
    return BatchRequest(
        operation=BatchOperation.HLS,
        input_files=[Path("talk.mp4")],
        output_dir=tmp_path / "hls",
        options=HlsBatchOptions(hardware_accel=True)
    )

def _encoder_of(call):
    args = call[0][0]
    return args[args.index("-c:v") + 1]

def test_hls_hardware_failure_falls_back_to_software(tmp_path, setup):
    orchestrator, _, recorder, _, mock_ffmpeg = setup
    mock_ffmpeg.run.side_effect = [
        ProcessError(ProcessErrorKind.NON_ZERO_EXIT, "ffmpeg exited with code 187", exit_code=187),
        None,
    ]

    with patch("mbc.pipeline.orchestrator.hardware_encoder", return_value="h264_videotoolbox"):
        summary = orchestrator.run_batch(_hls_request(tmp_path))

    assert summary.succeeded == 1
    assert [_encoder_of(c) for c in mock_ffmpeg.run.call_args_list] == ["h264_videotoolbox", "libx264"]
    assert "-hwaccel" not in mock_ffmpeg.run.call_args_list[1][0][0]
    warnings = [m.message for m in recorder.of(LogMessage) if m.severity == "warning"]
    assert any("retrying with libx264" in w for w in warnings)

def test_hls_hardware_success_runs_once(tmp_path, setup):
    orchestrator, _, _, _, mock_ffmpeg = setup

    with patch("mbc.pipeline.orchestrator.hardware_encoder", return_value="h264_videotoolbox"):
        summary = orchestrator.run_batch(_hls_request(tmp_path))

    assert summary.succeeded == 1
    mock_ffmpeg.run.assert_called_once()
    assert _encoder_of(mock_ffmpeg.run.call_args) == "h264_videotoolbox"

def test_hls_hardware_unavailable_uses_software(tmp_path, setup):
    orchestrator, _, _, _, mock_ffmpeg = setup

    with patch("mbc.pipeline.orchestrator.hardware_encoder", return_value=None):
        orchestrator.run_batch(_hls_request(tmp_path))

    assert _encoder_of(mock_ffmpeg.run.call_args) == "libx264"

def test_hls_missing_binary_is_not_retried(tmp_path, setup):
    orchestrator, _, _, _, mock_ffmpeg = setup
    mock_ffmpeg.run.side_effect = ProcessError(ProcessErrorKind.BINARY_NOT_FOUND, "ffmpeg binary not found")

    with patch("mbc.pipeline.orchestrator.hardware_encoder", return_value="h264_videotoolbox"):
        summary = orchestrator.run_batch(_hls_request(tmp_path))

    assert summary.failed == 1
    mock_ffmpeg.run.assert_called_once()
