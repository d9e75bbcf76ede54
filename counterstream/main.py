#!/usr/bin/env python3
"""
Live channel statistics stream.

Renders subscriber/view/like counters for a channel into video frames, muxes
them with a looping audio track and pushes the result to an RTMP ingestion
endpoint through ffmpeg.
"""

import logging
import signal
import sys

from . import config as cfg
from .app import LiveCounterApp
from .errors import ConfigError, StartupError

logger = logging.getLogger("counterstream")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level="INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # urllib3 logs every connection at DEBUG, which drowns the stream output
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def install_signal_handlers(app):
    """
    Route SIGINT/SIGTERM into the app's shutdown sequence. Returns the list the
    handler records received signals in, for logging once run() returns.
    """
    received = []

    def signal_handler(signum, frame):
        # No logging here: the signal may land while this thread holds a handler lock
        received.append(signum)
        app.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    return received


def main(argv=None):
    try:
        config = cfg.from_args(argv)
    except ConfigError as e:
        setup_logging()
        logger.error("Invalid configuration: %s", e)
        return 1

    setup_logging(config.log_level)
    logger.info("Starting live counter stream for channel %s", config.channel_id)

    app = LiveCounterApp(config)
    received = install_signal_handlers(app)

    try:
        app.start()
    except StartupError as e:
        logger.error("%s", e)
        app.shutdown()
        return 1

    app.run()
    if received:
        logger.info("Stopped after signal %s", received[0])
    return 0


if __name__ == "__main__":
    sys.exit(main())
