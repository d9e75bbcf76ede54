"""
ffmpeg subprocess wrapper.

Push cadence feeds raw bgr24 frames through stdin via a single-slot queue and a
dedicated writer thread; when the slot is taken the frame is dropped instead of
buffered. Poll cadence lets ffmpeg re-read a still image on its own schedule.
"""

import logging
import queue
import re
import subprocess
import threading
import time

from .errors import StartupError

logger = logging.getLogger(__name__)

EOF_GRACE = 1.0  # after closing stdin, before SIGTERM
KILL_GRACE = 3.0  # after SIGTERM, before SIGKILL
PROGRESS_LOG_INTERVAL = 5.0  # ~150 frames at 30 fps

_LINE_SPLIT = re.compile(rb"[\r\n]+")
_FPS = re.compile(r"fps=\s*([0-9.]+)")
_BITRATE = re.compile(r"bitrate=\s*([0-9.]+)kbits/s")


def _output_args(config, gop):
    return [
        "-c:v", "libx264",
        "-preset", config.preset,
        "-tune", "zerolatency",
        "-crf", str(config.crf),
        "-maxrate", config.maxrate,
        "-bufsize", config.bufsize,
        "-pix_fmt", "yuv420p",
        "-g", str(gop),
        "-threads", "0",
        "-x264-params", "sliced-threads=1:sync-lookahead=0",
        "-c:a", "aac",
        "-b:a", config.audio_bitrate,
        "-ar", "44100",
        "-ac", "2",
        "-map", "0:v",
        "-map", "1:a",
        "-f", "flv",
        config.destination,
    ]


def build_command(config):
    """ffmpeg argv for the configured cadence."""
    if config.cadence == "push":
        video_input = [
            "-f", "rawvideo",
            "-vcodec", "rawvideo",
            "-pix_fmt", "bgr24",
            "-s", f"{config.width}x{config.height}",
            "-r", str(config.fps),
            "-i", "-",
        ]
        gop = config.fps
    else:
        # image2 re-opens the file for every frame, picking up each rewrite
        video_input = [
            "-re",
            "-loop", "1",
            "-framerate", str(config.poll_fps),
            "-f", "image2",
            "-i", config.frame_path,
        ]
        gop = max(config.poll_fps * 2, 1)

    audio_input = ["-stream_loop", "-1", "-i", config.audio_file]
    return [config.ffmpeg_bin, "-hide_banner", "-y"] + video_input + audio_input + _output_args(config, gop)


def classify_stderr_line(line):
    """
    Sort an ffmpeg stderr line into ("progress", fps, kbps), ("error", line)
    or ("info", line).
    """
    if "frame=" in line:
        fps = _FPS.search(line)
        bitrate = _BITRATE.search(line)
        return ("progress",
                float(fps.group(1)) if fps else None,
                float(bitrate.group(1)) if bitrate else None)
    if "error" in line.lower():
        return ("error", line)
    return ("info", line)


def progress_status(fps):
    if fps is None:
        return "?"
    if fps >= 25:
        return "OK"
    if fps >= 20:
        return "WARN"
    return "BAD"


def _write_all(stream, data):
    view = memoryview(data)
    while view:
        view = view[stream.write(view):]
    stream.flush()


class EncoderProcess:
    """One ffmpeg run; call start() again after it exits to restart."""

    def __init__(self, command, push=True, eof_grace=EOF_GRACE, kill_grace=KILL_GRACE,
                 popen=subprocess.Popen, clock=time.monotonic):
        self.command = command
        self.push = push
        self.eof_grace = eof_grace
        self.kill_grace = kill_grace
        self._popen = popen
        self.clock = clock

        self.process = None
        self.frames_sent = 0
        self.frames_dropped = 0
        self._frames = None
        self._writer = None
        self._stderr_reader = None
        self._stopping = False
        self._last_progress_log = None

    @classmethod
    def from_config(cls, config):
        return cls(build_command(config), push=config.cadence == "push")

    # ---------- lifecycle ------------------------------------------------------

    def start(self):
        """Spawn ffmpeg. Raises StartupError if the binary cannot be executed."""
        self._stopping = False
        self._release_writer()  # writer of a previous run, if any
        logger.info("Starting encoder (%s cadence)", "push" if self.push else "poll")
        try:
            self.process = self._popen(
                self.command,
                stdin=subprocess.PIPE if self.push else subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                bufsize=0,
            )
        except FileNotFoundError as e:
            raise StartupError(f"ffmpeg binary not found: {self.command[0]}") from e
        except OSError as e:
            raise StartupError(f"Could not start ffmpeg: {e}") from e

        self._stderr_reader = threading.Thread(
            target=self._read_stderr, args=(self.process,), name="ffmpeg-stderr", daemon=True)
        self._stderr_reader.start()

        if self.push:
            # One slot: a frame waiting here means ffmpeg is not keeping up
            self._frames = queue.Queue(maxsize=1)
            self._writer = threading.Thread(
                target=self._write_frames, args=(self.process, self._frames),
                name="ffmpeg-stdin", daemon=True)
            self._writer.start()

    def is_alive(self):
        return self.process is not None and self.process.poll() is None

    @property
    def returncode(self):
        return None if self.process is None else self.process.poll()

    def stop(self):
        """
        Two-stage shutdown: end of input (push) or nothing (poll), then SIGTERM
        after eof_grace, then SIGKILL after kill_grace.
        """
        self._stopping = True
        process = self.process
        if process is None:
            return None

        if self.push:
            self._end_input()
            try:
                return process.wait(timeout=self.eof_grace)
            except subprocess.TimeoutExpired:
                logger.info("Encoder still running after end of input, terminating")

        if process.poll() is None:
            process.terminate()
        try:
            return process.wait(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            logger.warning("Force killing encoder process...")
            process.kill()
            return process.wait()

    def _release_writer(self):
        if self._frames is None:
            return
        # Discard any pending frame so the sentinel gets the slot
        try:
            self._frames.get_nowait()
        except queue.Empty:
            pass
        try:
            self._frames.put_nowait(None)
        except queue.Full:
            pass

    def _end_input(self):
        self._release_writer()
        if self._writer is not None:
            self._writer.join(timeout=self.eof_grace)
        try:
            self.process.stdin.close()
        except (BrokenPipeError, OSError):
            pass  # already gone

    # ---------- push cadence ---------------------------------------------------

    def send_frame(self, data):
        """
        Hand a raw frame to the writer thread. Returns False when the frame was
        dropped (writer still busy with the previous one, or encoder not running).
        """
        if self._stopping or self._frames is None or not self.is_alive():
            return False
        try:
            self._frames.put_nowait(data)
        except queue.Full:
            self.frames_dropped += 1
            return False
        return True

    def _write_frames(self, process, frames):
        while True:
            data = frames.get()
            if data is None:
                break
            try:
                _write_all(process.stdin, data)
            except (BrokenPipeError, OSError, ValueError) as e:
                # Expected while shutting down; anything else the health check will see
                if self._stopping:
                    logger.debug("Encoder input closed during shutdown: %s", e)
                else:
                    logger.error("Encoder input failed: %s", e)
                break
            self.frames_sent += 1

    # ---------- stderr ---------------------------------------------------------

    def _read_stderr(self, process):
        stream = process.stderr
        if stream is None:
            return
        pending = b""
        read = getattr(stream, "read1", stream.read)
        while True:
            try:
                chunk = read(4096)
            except (OSError, ValueError):
                break
            if not chunk:
                break
            parts = _LINE_SPLIT.split(pending + chunk)
            pending = parts.pop()
            for raw in parts:
                self._handle_stderr_line(raw.decode("utf-8", errors="replace").strip())
        if pending.strip():
            self._handle_stderr_line(pending.decode("utf-8", errors="replace").strip())

    def _handle_stderr_line(self, line):
        if not line:
            return
        kind = classify_stderr_line(line)
        if kind[0] == "progress":
            now = self.clock()
            if self._last_progress_log is None or now - self._last_progress_log >= PROGRESS_LOG_INTERVAL:
                self._last_progress_log = now
                fps, kbps = kind[1], kind[2]
                logger.info("[%s] Bitrate: %s kbps | FPS: %s | Frames sent: %d | Dropped: %d",
                            progress_status(fps), kbps, fps, self.frames_sent, self.frames_dropped)
        elif kind[0] == "error":
            logger.error("ffmpeg: %s", line)
        else:
            logger.debug("ffmpeg: %s", line)
