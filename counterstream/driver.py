"""
Delivery driver: render cadence and encoder lifecycle.

    IDLE -> STARTING -> STREAMING -> STOPPING -> STOPPED
                 ^          |
                 +----------+   encoder exited, restart policy

Push cadence renders on every scheduler pass that clears the frame throttle and
writes raw frames to ffmpeg. Poll cadence rewrites a still image on a fixed
period and ffmpeg reads it at its own rate.
"""

import logging
import os
from enum import Enum

import cv2

from .encoder import EncoderProcess
from .errors import StartupError

logger = logging.getLogger(__name__)

PUSH_GRANULARITY = 0.002  # seconds between push-cadence scheduling opportunities
THROTTLE_TOLERANCE_MS = 2.0
HEALTH_CHECK_PERIOD = 1.0
STABLE_RUN = 30.0  # an encoder up this long resets the restart counter


class DeliveryState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    STOPPING = "stopping"
    STOPPED = "stopped"


class FrameThrottle:
    """Lets a frame through only once (1000/fps - tolerance) ms have passed since the last one."""

    def __init__(self, fps, tolerance_ms=THROTTLE_TOLERANCE_MS):
        self.interval = max(1000.0 / fps - tolerance_ms, 0.0) / 1000.0
        self.last = None

    def ready(self, now):
        if self.last is not None and now - self.last < self.interval:
            return False
        self.last = now
        return True


def write_frame_file(frame, path):
    """Replace path with frame atomically so ffmpeg never reads a half-written image."""
    root, ext = os.path.splitext(path)
    tmp_path = f"{root}.tmp{ext or '.png'}"
    if not cv2.imwrite(tmp_path, frame):
        logger.error("Could not write frame to %s", tmp_path)
        return False
    os.replace(tmp_path, path)
    return True


class DeliveryDriver:
    """Owns the render job, the encoder health check and the encoder process."""

    def __init__(self, config, composer, animator, profile, scheduler,
                 encoder_factory=EncoderProcess.from_config, on_give_up=None):
        self.config = config
        self.composer = composer
        self.animator = animator
        self.profile = profile
        self.scheduler = scheduler
        self.encoder_factory = encoder_factory
        self.on_give_up = on_give_up

        self.state = DeliveryState.IDLE
        self.encoder = None
        self.push = config.cadence == "push"
        self.throttle = FrameThrottle(config.fps)
        self.restarts = 0
        self.frames_rendered = 0
        self._started_at = None
        self._jobs = []
        self._restart_timer = None

    @property
    def running(self):
        return self.state in (DeliveryState.STARTING, DeliveryState.STREAMING)

    def start(self):
        """Spawn the encoder and register the render and health-check jobs."""
        if self.state is not DeliveryState.IDLE:
            raise RuntimeError(f"Cannot start driver in state {self.state.value}")

        self.state = DeliveryState.STARTING
        self.encoder = self.encoder_factory(self.config)
        if not self.push:
            # ffmpeg needs the image to exist before it opens it
            self.write_still()
        self._launch_encoder()

        render_period = PUSH_GRANULARITY if self.push else self.config.poll_period
        self._jobs = [
            self.scheduler.every("render", render_period, self.render_step),
            self.scheduler.every("encoder-health", HEALTH_CHECK_PERIOD, self.check_encoder,
                                 first_delay=HEALTH_CHECK_PERIOD),
        ]
        logger.info("Streaming %dx%d @ %s (%s cadence) to %s",
                    self.config.width, self.config.height,
                    f"{self.config.fps}fps" if self.push else f"{self.config.poll_period}s/frame",
                    "push" if self.push else "poll",
                    "file " + self.config.output_file if self.config.output_file else "ingestion endpoint")

    def _launch_encoder(self):
        self.encoder.start()
        self._started_at = self.scheduler.clock()
        self.state = DeliveryState.STREAMING

    # ---------- rendering ------------------------------------------------------

    def render_frame(self):
        """Advance the animation one step and draw the frame."""
        self.animator.tick()
        frame = self.composer.compose(self.animator.snapshot(), self.profile)
        self.frames_rendered += 1
        return frame

    def render_step(self):
        if self.state is not DeliveryState.STREAMING:
            return
        if self.push:
            if not self.throttle.ready(self.scheduler.clock()):
                return
            frame = self.render_frame()
            if not self.encoder.send_frame(frame.tobytes()):
                logger.debug("Skipping frame %d due to encoder backpressure", self.frames_rendered)
        else:
            self.write_still()

    def write_still(self):
        return write_frame_file(self.render_frame(), self.config.frame_path)

    # ---------- encoder health -------------------------------------------------

    def check_encoder(self):
        if self.state is not DeliveryState.STREAMING:
            return
        if self.encoder.is_alive():
            if self.restarts and self.scheduler.clock() - self._started_at >= STABLE_RUN:
                logger.info("Encoder stable again, resetting restart counter")
                self.restarts = 0
            return
        self.handle_encoder_exit(self.encoder.returncode)

    def handle_encoder_exit(self, returncode):
        logger.warning("Encoder exited unexpectedly with code %s", returncode)

        if self.config.restart_policy == "fail-fast":
            self._give_up(f"encoder exited with code {returncode}")
            return

        if self.config.max_restarts and self.restarts >= self.config.max_restarts:
            self._give_up(f"encoder failed {self.restarts} restarts in a row")
            return

        self.restarts += 1
        self.state = DeliveryState.STARTING
        logger.info("Restarting encoder in %.1fs (attempt %d)", self.config.restart_delay, self.restarts)
        self._restart_timer = self.scheduler.call_later(self.config.restart_delay, self._restart)

    def _restart(self):
        self._restart_timer = None
        if self.state is not DeliveryState.STARTING:
            return
        try:
            self._launch_encoder()
        except StartupError as e:
            logger.error("Encoder restart failed: %s", e)
            self.handle_encoder_exit(None)

    def _give_up(self, reason):
        logger.error("Giving up on the stream: %s", reason)
        if self.on_give_up is not None:
            self.on_give_up(reason)
        else:
            self.stop()

    # ---------- shutdown -------------------------------------------------------

    def stop(self):
        """Stop scheduling work, then shut the encoder down (EOF / SIGTERM, then SIGKILL)."""
        if self.state in (DeliveryState.STOPPING, DeliveryState.STOPPED):
            return
        self.state = DeliveryState.STOPPING
        logger.info("Stopping stream...")

        for job in self._jobs:
            job.cancel()
        if self._restart_timer is not None:
            self._restart_timer.cancel()

        if self.encoder is not None:
            code = self.encoder.stop()
            logger.info("Encoder exited with code %s after %d frames", code, self.frames_rendered)

        if not self.push and os.path.exists(self.config.frame_path):
            try:
                os.remove(self.config.frame_path)
            except OSError as e:
                logger.warning("Could not remove frame file %s: %s", self.config.frame_path, e)

        self.state = DeliveryState.STOPPED
        logger.info("Stream stopped.")
