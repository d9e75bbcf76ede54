"""Frame composition: one complete statistics frame per call."""

import numpy as np

from .overlays import (
    ChannelHeaderOverlay,
    GradientBackgroundOverlay,
    LiveBadgeOverlay,
    OverlayManager,
    StatCardsOverlay,
)


class FrameComposer:
    """Renders counters and channel profile into fixed-size BGR frames."""

    def __init__(self, width, height):
        self.width = width
        self.height = height
        self.frame_count = 0

        self.overlays = OverlayManager()
        self.overlays.add(GradientBackgroundOverlay())
        self.badge = self.overlays.add(LiveBadgeOverlay())
        self.overlays.add(ChannelHeaderOverlay())
        self.overlays.add(StatCardsOverlay())

    @property
    def frame_size(self):
        """Bytes per raw bgr24 frame."""
        return self.width * self.height * 3

    def compose(self, counters, profile):
        """
        Draw one frame from a counter snapshot ({key: displayed value}) and a
        ChannelProfile. Returns a (height, width, 3) uint8 array.
        """
        frame = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        context = {"counters": counters, "profile": profile, "frame_count": self.frame_count}
        frame = self.overlays.render(frame, context)
        self.frame_count += 1
        return frame
