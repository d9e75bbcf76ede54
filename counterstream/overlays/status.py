"""Status overlay: the pulsing LIVE badge."""

import math

import cv2

from .base import OverlayBase
from .drawing import put_text_centered

PULSE_STEP = 0.05
PULSE_AMPLITUDE = 0.05


class LiveBadgeOverlay(OverlayBase):
    """
    Red LIVE badge whose scale oscillates with a per-frame phase.

    The phase advances a fixed step per rendered frame rather than with wall-clock
    time, so the pulse speed follows the render rate.
    """

    def __init__(self, enabled=True, center_y=80, size=(200, 50), text_height=28):
        super().__init__(enabled)
        self.center_y = center_y
        self.size = size
        self.text_height = text_height
        self.phase = 0.0

        # Colors (BGR)
        self.badge_color = (0, 0, 255)
        self.text_color = (255, 255, 255)

    @property
    def scale(self):
        return 1.0 + math.sin(self.phase) * PULSE_AMPLITUDE

    def render(self, frame, context=None):
        """Render the badge at the current pulse scale."""
        frame_width = frame.shape[1]
        cx, cy = frame_width / 2, self.center_y
        scale = self.scale

        half_w = self.size[0] * scale / 2
        half_h = self.size[1] * scale / 2
        cv2.rectangle(frame,
                      (int(cx - half_w), int(cy - half_h)),
                      (int(cx + half_w), int(cy + half_h)),
                      self.badge_color, -1)

        # Dot then the word, together roughly centred in the box
        text_px = self.text_height * scale
        cv2.circle(frame, (int(cx - 50 * scale), int(cy)), max(int(8 * scale), 1),
                   self.text_color, -1, cv2.LINE_AA)
        put_text_centered(frame, "LIVE", (cx + 12 * scale, cy), text_px, self.text_color, 2)
        return frame

    def update(self):
        self.phase += PULSE_STEP
