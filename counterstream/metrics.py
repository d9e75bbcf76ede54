"""
Channel and live-stream statistics retrieval.

Each refresh is split in two halves: fetch_* does the network I/O and returns a
parsed report (safe to run on a worker thread), complete_* applies the result to
the animator and profile (run on the scheduler thread).
"""

import json
import logging
from concurrent import futures
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np
import requests

from .errors import FetchError

logger = logging.getLogger(__name__)

LOADING_NAME = "Loading..."
UNKNOWN_NAME = "Unknown Channel"

CHUNK_SIZE = 8192


@dataclass
class ChannelProfile:
    """Channel display name plus the avatar, which is loaded at most once."""

    name: str = LOADING_NAME
    avatar: Optional[np.ndarray] = None


@dataclass
class ChannelReport:
    name: str
    subscribers: object
    views: object
    videos: object
    avatar_url: str = ""
    avatar: Optional[np.ndarray] = None


@dataclass
class StreamReport:
    viewers: object
    likes: object


class HttpClient:
    """
    GET with two limits: a per-socket timeout and a hard deadline on the whole
    call, so a slow-dripping response cannot outlive its fetch interval.

    A socket read blocks until its chunk fills, so the deadline cannot be
    checked from inside the read. Each request runs on the client's own
    reader pool and the caller waits at most `deadline` for it.
    """

    def __init__(self, timeout=2.0, deadline=3.0, session=None, max_readers=4):
        self.timeout = timeout
        self.deadline = deadline
        self.session = session or requests.Session()
        self._readers = ThreadPoolExecutor(max_workers=max_readers, thread_name_prefix="http")

    def get(self, url) -> bytes:
        """Return the response body. Raises FetchError on any failure or once the deadline passes."""
        pending = {"abandoned": False, "response": None}
        future = self._readers.submit(self._read, url, pending)
        try:
            return future.result(timeout=self.deadline)
        except futures.TimeoutError:
            pending["abandoned"] = True
            future.cancel()
            response = pending["response"]
            if response is not None:
                # Lets the reader thread give up early where the socket allows it
                response.close()
            raise FetchError(f"{url} timed out after {self.deadline:.1f}s") from None

    def _read(self, url, pending):
        try:
            with self.session.get(url, timeout=self.timeout, stream=True) as response:
                pending["response"] = response
                response.raise_for_status()
                chunks = []
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if pending["abandoned"]:
                        raise FetchError(f"{url} abandoned after deadline")
                    chunks.append(chunk)
                return b"".join(chunks)
        except requests.RequestException as e:
            raise FetchError(f"{url} -> {e}") from e

    def close(self):
        self._readers.shutdown(wait=False, cancel_futures=True)
        self.session.close()


def _parse_document(body, url):
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise FetchError(f"{url} returned malformed JSON: {e}") from e


def collapse_counts(document, field):
    """Turn [{"value": k, "count": v}, ...] under document[field] into {k: v}."""
    entries = document.get(field) if isinstance(document, dict) else None
    if not isinstance(entries, list):
        raise FetchError(f"Response has no '{field}' list")
    return {
        entry["value"]: entry.get("count")
        for entry in entries
        if isinstance(entry, dict) and "value" in entry
    }


def decode_image(data):
    """Decode image bytes into a BGR array, or None if they are not an image."""
    if not data:
        return None
    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None or image.size == 0:
        return None
    return image


class MetricsFetcher:
    """Feeds fetched statistics into an Animator and a ChannelProfile."""

    def __init__(self, animator, profile, http, channel_url, stream_url, image_loader=None):
        self.animator = animator
        self.profile = profile
        self.http = http
        self.channel_url = channel_url
        self.stream_url = stream_url
        self.image_loader = image_loader or self.load_avatar

    @classmethod
    def from_config(cls, config, animator, profile, http=None, image_loader=None):
        http = http or HttpClient(timeout=config.request_timeout, deadline=config.fetch_deadline)
        base = config.api_base.rstrip("/")
        return cls(
            animator,
            profile,
            http,
            channel_url=f"{base}/youtube-channel-counter/user/{config.channel_id}",
            stream_url=f"{base}/youtube-stream-counter/user/{config.stream_id}",
            image_loader=image_loader,
        )

    # ---------- I/O half -------------------------------------------------------

    def fetch_channel(self, load_avatar=False) -> ChannelReport:
        document = _parse_document(self.http.get(self.channel_url), self.channel_url)
        user = collapse_counts(document, "user")
        counts = collapse_counts(document, "counts")

        report = ChannelReport(
            name=str(user.get("name") or UNKNOWN_NAME),
            subscribers=counts.get("subscribers"),
            views=counts.get("views"),
            videos=counts.get("videos"),
            avatar_url=str(user.get("pfp") or ""),
        )
        if load_avatar and report.avatar_url:
            report.avatar = self.image_loader(report.avatar_url)
        return report

    def fetch_stream(self) -> StreamReport:
        document = _parse_document(self.http.get(self.stream_url), self.stream_url)
        counts = collapse_counts(document, "counts")
        return StreamReport(viewers=counts.get("viewers") or 0, likes=counts.get("likes") or 0)

    def load_avatar(self, url):
        """Best effort: a failed avatar leaves the profile without one until a later refresh."""
        try:
            image = decode_image(self.http.get(url))
        except FetchError as e:
            logger.warning("Avatar load failed: %s", e)
            return None
        if image is None:
            logger.warning("Avatar at %s could not be decoded", url)
        return image

    # ---------- state half -----------------------------------------------------

    def complete_channel(self, report, error=None) -> bool:
        """Apply a channel report; on failure every channel value stays as it was."""
        if error is not None:
            _log_failure("Channel data", error)
            return False

        self.profile.name = report.name
        self.animator.set_target("subscribers", report.subscribers)
        self.animator.set_target("total_views", report.views)
        self.animator.set_target("videos", report.videos)
        if report.avatar is not None and self.profile.avatar is None:
            self.profile.avatar = report.avatar
            logger.info("Loaded channel avatar (%dx%d)", report.avatar.shape[1], report.avatar.shape[0])
        return True

    def complete_stream(self, report, error=None) -> bool:
        """
        Apply a stream report. On failure the live counters drop to zero: an
        unreachable stream endpoint most likely means the broadcast has ended.
        """
        if error is not None:
            _log_failure("Stream data", error)
            self.animator.set_target("live_viewers", 0)
            self.animator.set_target("likes", 0)
            return False

        self.animator.set_target("live_viewers", report.viewers)
        self.animator.set_target("likes", report.likes)
        return True

    # ---------- synchronous refreshes ------------------------------------------

    def refresh_channel(self) -> bool:
        try:
            report = self.fetch_channel(load_avatar=self.profile.avatar is None)
        except Exception as e:
            return self.complete_channel(None, e)
        return self.complete_channel(report)

    def refresh_stream(self) -> bool:
        try:
            report = self.fetch_stream()
        except Exception as e:
            return self.complete_stream(None, e)
        return self.complete_stream(report)

    def refresh_all(self):
        return self.refresh_channel(), self.refresh_stream()


def _log_failure(source, error):
    if isinstance(error, FetchError):
        logger.warning("%s refresh failed: %s", source, error)
    else:
        logger.error("%s refresh failed unexpectedly", source, exc_info=error)
