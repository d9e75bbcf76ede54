import logging
import queue
import subprocess
import threading

import pytest

from conftest import FakePopen, FakeProcess, wait_until
from counterstream.encoder import EncoderProcess, build_command, classify_stderr_line, progress_status
from counterstream.errors import StartupError


def make_encoder(process, push=True):
    popen = FakePopen(process)
    encoder = EncoderProcess(["ffmpeg", "-i", "-"], push=push, eof_grace=0.1, kill_grace=0.1, popen=popen)
    return encoder, popen


# =============================================================================
# Command line
# =============================================================================

def test_push_command_reads_raw_frames_from_stdin(make_config):
    config = make_config()
    command = build_command(config)
    joined = " ".join(command)

    assert command[0] == "ffmpeg"
    assert "-f rawvideo" in joined
    assert "-pix_fmt bgr24" in joined
    assert "-s 320x180" in joined
    assert "-r 30" in joined
    assert "-i -" in joined
    assert f"-stream_loop -1 -i {config.audio_file}" in joined
    assert "-g 30" in joined
    assert "-maxrate 7000k -bufsize 4000k" in joined
    assert command[-3:] == ["-f", "flv", "rtmp://ingest.test/live2/key"]


def test_poll_command_rereads_the_frame_file(make_config):
    config = make_config(cadence="poll", poll_fps=2)
    joined = " ".join(build_command(config))

    assert f"-loop 1 -framerate 2 -f image2 -i {config.frame_path}" in joined
    assert "rawvideo" not in joined
    assert "-g 4" in joined


def test_output_file_replaces_ingestion_url(make_config, tmp_path):
    out = str(tmp_path / "dry-run.flv")
    assert build_command(make_config(output_file=out))[-1] == out


# =============================================================================
# stderr
# =============================================================================

def test_classify_progress_line():
    line = "frame=  300 fps= 29.8 q=28.0 size=    1024kB time=00:00:10.00 bitrate= 838.9kbits/s speed=1x"
    assert classify_stderr_line(line) == ("progress", 29.8, 838.9)


def test_classify_error_and_info_lines():
    assert classify_stderr_line("rtmp://x: Error opening output")[0] == "error"
    assert classify_stderr_line("Input #0, rawvideo, from 'pipe:'")[0] == "info"


@pytest.mark.parametrize("fps, status", [(30.0, "OK"), (25.0, "OK"), (22.0, "WARN"), (10.0, "BAD"), (None, "?")])
def test_progress_status(fps, status):
    assert progress_status(fps) == status


def test_stderr_errors_are_logged(caplog):
    caplog.set_level(logging.DEBUG, logger="counterstream.encoder")
    stderr = b"frame=   10 fps= 30 bitrate= 500.0kbits/s\rframe=   20 fps= 30\nConnection error: reset\nsome info"
    encoder, _ = make_encoder(FakeProcess(stderr=stderr))
    encoder.start()
    encoder._stderr_reader.join(1.0)

    messages = [(r.levelname, r.getMessage()) for r in caplog.records if r.name == "counterstream.encoder"]
    assert ("ERROR", "ffmpeg: Connection error: reset") in messages
    assert ("DEBUG", "ffmpeg: some info") in messages
    # Progress is rate limited: two progress lines, one log
    assert sum(1 for level, msg in messages if "Bitrate" in msg) == 1
    encoder.stop()


# =============================================================================
# Lifecycle
# =============================================================================

def test_start_spawns_with_pipes_for_push():
    encoder, popen = make_encoder(FakeProcess())
    encoder.start()
    _, kwargs = popen.calls[0]
    assert kwargs["stdin"] == subprocess.PIPE
    assert kwargs["stderr"] == subprocess.PIPE
    assert encoder.is_alive()
    encoder.stop()


def test_start_without_stdin_for_poll():
    encoder, popen = make_encoder(FakeProcess(push=False), push=False)
    encoder.start()
    assert popen.calls[0][1]["stdin"] == subprocess.DEVNULL
    assert encoder.send_frame(b"x") is False
    encoder.stop()


def test_missing_binary_is_a_startup_error():
    def popen(command, **kwargs):
        raise FileNotFoundError(command[0])

    encoder = EncoderProcess(["ffmpeg-missing"], popen=popen)
    with pytest.raises(StartupError):
        encoder.start()


def test_frames_reach_stdin():
    process = FakeProcess()
    encoder, _ = make_encoder(process)
    encoder.start()

    assert encoder.send_frame(b"frame-1")
    assert wait_until(lambda: process.stdin.chunks == [b"frame-1"])
    assert wait_until(lambda: encoder.frames_sent == 1)
    encoder.stop()


def test_saturated_input_drops_frames_instead_of_queueing():
    process = FakeProcess()
    process.stdin.gate = threading.Event()
    encoder, _ = make_encoder(process)
    encoder.start()

    assert encoder.send_frame(b"1")
    assert process.stdin.write_started.wait(1.0)  # writer busy with frame 1
    assert encoder.send_frame(b"2")  # takes the single slot
    assert encoder.send_frame(b"3") is False
    assert encoder.send_frame(b"4") is False
    assert encoder.frames_dropped == 2

    process.stdin.gate.set()
    assert wait_until(lambda: process.stdin.chunks == [b"1", b"2"])
    encoder.stop()


def test_stop_push_closes_input_and_waits():
    process = FakeProcess(exit_on_eof=True)
    encoder, _ = make_encoder(process)
    encoder.start()

    assert encoder.stop() == 0
    assert process.stdin.closed
    assert process.signals == []
    assert encoder.send_frame(b"late") is False


def test_stop_escalates_to_sigterm_when_eof_is_ignored():
    process = FakeProcess(exit_on_eof=False)
    encoder, _ = make_encoder(process)
    encoder.start()

    assert encoder.stop() == -15
    assert process.signals == ["TERM"]


def test_stop_escalates_to_sigkill_when_sigterm_is_ignored():
    process = FakeProcess(exit_on_eof=False, exit_on_term=False)
    encoder, _ = make_encoder(process)
    encoder.start()

    assert encoder.stop() == -9
    assert process.signals == ["TERM", "KILL"]


def test_stop_poll_terminates_directly():
    process = FakeProcess(push=False)
    encoder, _ = make_encoder(process, push=False)
    encoder.start()

    assert encoder.stop() == -15
    assert process.signals == ["TERM"]


def test_stop_before_start_is_harmless():
    encoder = EncoderProcess(["ffmpeg"], popen=FakePopen())
    assert encoder.stop() is None


def test_broken_pipe_during_shutdown_is_not_an_error(caplog):
    process = FakeProcess()
    process.stdin.error = BrokenPipeError(32, "Broken pipe")
    encoder = EncoderProcess(["ffmpeg"], popen=FakePopen())
    encoder._stopping = True

    frames = queue.Queue()
    frames.put(b"frame")
    encoder._write_frames(process, frames)

    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


def test_broken_pipe_while_streaming_is_logged(caplog):
    process = FakeProcess()
    process.stdin.error = BrokenPipeError(32, "Broken pipe")
    encoder = EncoderProcess(["ffmpeg"], popen=FakePopen())

    frames = queue.Queue()
    frames.put(b"frame")
    encoder._write_frames(process, frames)

    assert [r for r in caplog.records if r.levelno >= logging.ERROR]
    assert encoder.frames_sent == 0


def test_restart_spawns_a_fresh_process():
    first, second = FakeProcess(), FakeProcess()
    popen = FakePopen(first, second)
    encoder = EncoderProcess(["ffmpeg"], eof_grace=0.1, kill_grace=0.1, popen=popen)

    encoder.start()
    first.returncode = 1  # crashed
    assert not encoder.is_alive()

    encoder.start()
    assert encoder.process is second
    assert encoder.send_frame(b"after-restart")
    assert wait_until(lambda: second.stdin.chunks == [b"after-restart"])
    encoder.stop()
