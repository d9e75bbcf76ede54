"""Exception hierarchy."""


class CounterStreamError(Exception):
    """Base class for all counterstream errors."""


class ConfigError(CounterStreamError):
    """Configuration cannot produce a working stream."""


class StartupError(CounterStreamError):
    """A required local resource (audio file, ffmpeg binary) is unavailable."""


class FetchError(CounterStreamError):
    """A statistics request failed: timeout, transport error, bad status or malformed body."""
