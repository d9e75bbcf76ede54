"""
Stream configuration.

Defaults live at the top of the module; the CLI overrides them per run.
"""

import argparse
import os
from dataclasses import dataclass, fields

from .errors import ConfigError

# Output
WIDTH = 1920
HEIGHT = 1080
FPS = 30

# Cadence
CADENCE = "push"  # "push" (raw frames on stdin) or "poll" (still image re-read by ffmpeg)
POLL_PERIOD = 1.0  # seconds between frame file rewrites
POLL_FPS = 1  # rate at which ffmpeg re-reads the frame file
FRAME_PATH = "frame.png"

# Data source
CHANNEL_ID = "UC5vPGxCutFL9onTJHQN-UsA"
STREAM_ID = "tXRuaacO-ZU"
API_BASE = "https://mixerno.space/api"
CHANNEL_INTERVAL = 60.0  # channel metadata rarely changes
STREAM_INTERVAL = 10.0
REQUEST_TIMEOUT = 2.0  # per socket operation
FETCH_DEADLINE = 3.0  # hard wall-clock limit per request

# Output target
STREAM_URL_ENV = "COUNTERSTREAM_STREAM_URL"
STREAM_URL = "rtmp://a.rtmp.youtube.com/live2/"
AUDIO_FILE = "./play.mp3"

# Encoder
FFMPEG_BIN = "ffmpeg"
PRESET = "ultrafast"
CRF = 30
MAXRATE = "7000k"
BUFSIZE = "4000k"
AUDIO_BITRATE = "96k"

# Encoder exit handling
RESTART_POLICY = "restart"  # "restart" or "fail-fast"
RESTART_DELAY = 5.0
MAX_RESTARTS = 5  # 0 = unlimited

CADENCES = ("push", "poll")
RESTART_POLICIES = ("restart", "fail-fast")


@dataclass
class StreamConfig:
    """Everything a single broadcast run needs."""

    width: int = WIDTH
    height: int = HEIGHT
    fps: int = FPS
    cadence: str = CADENCE
    poll_period: float = POLL_PERIOD
    poll_fps: int = POLL_FPS
    frame_path: str = FRAME_PATH
    channel_id: str = CHANNEL_ID
    stream_id: str = STREAM_ID
    api_base: str = API_BASE
    channel_interval: float = CHANNEL_INTERVAL
    stream_interval: float = STREAM_INTERVAL
    request_timeout: float = REQUEST_TIMEOUT
    fetch_deadline: float = FETCH_DEADLINE
    stream_url: str = STREAM_URL
    output_file: str = ""
    audio_file: str = AUDIO_FILE
    ffmpeg_bin: str = FFMPEG_BIN
    preset: str = PRESET
    crf: int = CRF
    maxrate: str = MAXRATE
    bufsize: str = BUFSIZE
    audio_bitrate: str = AUDIO_BITRATE
    restart_policy: str = RESTART_POLICY
    restart_delay: float = RESTART_DELAY
    max_restarts: int = MAX_RESTARTS
    duration: float = 0.0  # seconds, 0 = run until signalled
    log_level: str = "INFO"

    @property
    def destination(self):
        """Where ffmpeg sends its output: a local file if set, else the ingestion URL."""
        return self.output_file or self.stream_url

    def validate(self):
        """Raise ConfigError if the configuration cannot produce a working stream."""
        if self.width <= 0 or self.height <= 0:
            raise ConfigError(f"Invalid resolution {self.width}x{self.height}")
        if self.fps <= 0:
            raise ConfigError(f"fps must be positive, got {self.fps}")
        if self.cadence not in CADENCES:
            raise ConfigError(f"Unknown cadence {self.cadence!r} (expected one of {CADENCES})")
        if self.cadence == "poll" and (self.poll_period <= 0 or self.poll_fps <= 0):
            raise ConfigError("poll_period and poll_fps must be positive")
        if self.restart_policy not in RESTART_POLICIES:
            raise ConfigError(
                f"Unknown restart policy {self.restart_policy!r} (expected one of {RESTART_POLICIES})"
            )
        if self.restart_delay < 0 or self.max_restarts < 0:
            raise ConfigError("restart_delay and max_restarts must not be negative")
        if self.channel_interval <= 0 or self.stream_interval <= 0:
            raise ConfigError("Fetch intervals must be positive")
        # A stalled request must never outlive its own repeat interval
        shortest = min(self.channel_interval, self.stream_interval)
        if self.fetch_deadline >= shortest:
            raise ConfigError(
                f"fetch_deadline ({self.fetch_deadline}s) must be shorter than "
                f"the shortest fetch interval ({shortest}s)"
            )
        if self.request_timeout <= 0 or self.request_timeout > self.fetch_deadline:
            raise ConfigError("request_timeout must be positive and no longer than fetch_deadline")
        if not self.destination:
            raise ConfigError("No stream URL or output file configured")
        if self.duration < 0:
            raise ConfigError("duration must not be negative")
        return self


def build_parser():
    """CLI mirroring every StreamConfig field."""
    parser = argparse.ArgumentParser(
        prog="counterstream",
        description="Stream a live channel statistics overlay to an RTMP ingestion endpoint",
    )
    parser.add_argument("--width", type=int, default=WIDTH)
    parser.add_argument("--height", type=int, default=HEIGHT)
    parser.add_argument("--fps", type=int, default=FPS)
    parser.add_argument("--cadence", choices=CADENCES, default=CADENCE,
                        help="push: raw frames on ffmpeg stdin; poll: still image re-read by ffmpeg")
    parser.add_argument("--poll-period", type=float, default=POLL_PERIOD)
    parser.add_argument("--poll-fps", type=int, default=POLL_FPS)
    parser.add_argument("--frame-path", default=FRAME_PATH)
    parser.add_argument("--channel-id", default=CHANNEL_ID)
    parser.add_argument("--stream-id", default=STREAM_ID)
    parser.add_argument("--api-base", default=API_BASE)
    parser.add_argument("--channel-interval", type=float, default=CHANNEL_INTERVAL)
    parser.add_argument("--stream-interval", type=float, default=STREAM_INTERVAL)
    parser.add_argument("--request-timeout", type=float, default=REQUEST_TIMEOUT)
    parser.add_argument("--fetch-deadline", type=float, default=FETCH_DEADLINE)
    parser.add_argument("--stream-url", default=None,
                        help=f"RTMP URL including the stream key (or set ${STREAM_URL_ENV})")
    parser.add_argument("--output-file", default="",
                        help="Write to a local file instead of the ingestion endpoint")
    parser.add_argument("--audio-file", default=AUDIO_FILE)
    parser.add_argument("--ffmpeg-bin", default=FFMPEG_BIN)
    parser.add_argument("--preset", default=PRESET)
    parser.add_argument("--crf", type=int, default=CRF)
    parser.add_argument("--maxrate", default=MAXRATE)
    parser.add_argument("--bufsize", default=BUFSIZE)
    parser.add_argument("--audio-bitrate", default=AUDIO_BITRATE)
    parser.add_argument("--restart-policy", choices=RESTART_POLICIES, default=RESTART_POLICY)
    parser.add_argument("--restart-delay", type=float, default=RESTART_DELAY)
    parser.add_argument("--max-restarts", type=int, default=MAX_RESTARTS)
    parser.add_argument("--duration", type=float, default=0.0,
                        help="Stop after this many seconds (0 = run until interrupted)")
    parser.add_argument("--log-level", default="INFO",
                        choices=("DEBUG", "INFO", "WARNING", "ERROR"))
    return parser


def from_args(argv=None, environ=None) -> StreamConfig:
    """Parse argv into a validated StreamConfig."""
    environ = os.environ if environ is None else environ
    args = build_parser().parse_args(argv)

    values = {f.name: getattr(args, f.name) for f in fields(StreamConfig) if hasattr(args, f.name)}
    if values.get("stream_url") is None:
        values["stream_url"] = environ.get(STREAM_URL_ENV, STREAM_URL)

    return StreamConfig(**values).validate()
