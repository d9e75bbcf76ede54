"""Application context: wires fetcher, animator, composer, driver and scheduler together."""

import logging
import os
import shutil
import threading

from .animator import Animator
from .composer import FrameComposer
from .driver import DeliveryDriver
from .encoder import EncoderProcess
from .errors import StartupError
from .metrics import ChannelProfile, MetricsFetcher
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


def verify_environment(config, which=shutil.which):
    """Fail before anything is spawned if a required local resource is missing."""
    if not os.path.isfile(config.audio_file):
        raise StartupError(f"Audio file not found: {config.audio_file}")
    if which(config.ffmpeg_bin) is None:
        raise StartupError(f"ffmpeg binary not found: {config.ffmpeg_bin} (is it installed and on PATH?)")


class LiveCounterApp:
    """
    One broadcast run.

    start() checks local resources, does one blocking refresh of both metrics
    documents (each bounded by the fetch deadline), starts the encoder and
    registers the periodic jobs. run() drives the scheduler until shutdown().
    """

    def __init__(self, config, http=None, image_loader=None, scheduler=None,
                 encoder_factory=EncoderProcess.from_config, which=shutil.which):
        self.config = config
        self.which = which

        self.scheduler = scheduler or Scheduler()
        self.scheduler.on_fault = self._on_fault

        self.animator = Animator()
        self.profile = ChannelProfile()
        self.fetcher = MetricsFetcher.from_config(
            config, self.animator, self.profile, http=http, image_loader=image_loader)

        self.composer = FrameComposer(config.width, config.height)
        self.driver = DeliveryDriver(
            config, self.composer, self.animator, self.profile, self.scheduler,
            encoder_factory=encoder_factory,
            on_give_up=lambda reason: self.request_shutdown(),
        )

        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False

    def start(self):
        verify_environment(self.config, which=self.which)

        logger.info("Fetching initial channel data...")
        self.fetcher.refresh_all()
        logger.info("Channel: %s", self.profile.name)

        self.driver.start()

        self.scheduler.every("channel-refresh", self.config.channel_interval, self.refresh_channel,
                             first_delay=self.config.channel_interval)
        self.scheduler.every("stream-refresh", self.config.stream_interval, self.refresh_stream,
                             first_delay=self.config.stream_interval)
        if self.config.duration:
            self.scheduler.call_later(self.config.duration, self._duration_elapsed)

    # ---------- scheduled fetches ----------------------------------------------

    def refresh_channel(self):
        """Fetch on a worker; results apply on the scheduler thread."""
        if not self.driver.running:
            return
        want_avatar = self.profile.avatar is None
        self.scheduler.submit(
            "channel-refresh",
            lambda: self.fetcher.fetch_channel(load_avatar=want_avatar),
            self.fetcher.complete_channel,
        )

    def refresh_stream(self):
        if not self.driver.running:
            return
        self.scheduler.submit("stream-refresh", self.fetcher.fetch_stream, self.fetcher.complete_stream)

    # ---------- lifecycle ------------------------------------------------------

    def run(self):
        """Block running the scheduler until shutdown() is called."""
        try:
            self.scheduler.run()
        finally:
            self.shutdown()

    def request_shutdown(self):
        """Ask run() to wind down. Safe from signal handlers and any thread."""
        self.scheduler.stop()

    def _duration_elapsed(self):
        logger.info("Configured duration of %.0fs reached", self.config.duration)
        self.request_shutdown()

    def _on_fault(self, error):
        logger.error("Shutting down after unhandled error: %s", error)
        self.request_shutdown()

    def shutdown(self):
        """Stop all scheduled work and shut the encoder down. Safe to call more than once."""
        with self._shutdown_lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True

        logger.info("Shutting down live counter...")
        self.scheduler.close()
        self.driver.stop()
        close = getattr(self.fetcher.http, "close", None)
        if close is not None:
            close()
        logger.info("Live counter stopped.")
