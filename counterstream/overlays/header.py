"""Channel header overlay: circular avatar plus channel name."""

import cv2
import numpy as np

from .base import OverlayBase
from .drawing import as_bgr, paste_masked, put_text_left


class ChannelHeaderOverlay(OverlayBase):
    """Draws the channel avatar (if loaded) clipped to a circle, next to the channel name."""

    def __init__(self, enabled=True, center_y=200, avatar_size=100, avatar_offset=150,
                 name_offset=50, text_height=48):
        super().__init__(enabled)
        self.center_y = center_y
        self.avatar_size = avatar_size
        self.avatar_offset = avatar_offset  # avatar centre, left of frame centre
        self.name_offset = name_offset  # name start, left of frame centre
        self.text_height = text_height
        self.text_color = (255, 255, 255)

        self._mask = np.zeros((avatar_size, avatar_size), dtype=np.uint8)
        radius = avatar_size // 2
        cv2.circle(self._mask, (radius, radius), radius, 255, -1)

        # Resized avatar and the source image it was made from
        self._source = None
        self._avatar = None

    def _prepared_avatar(self, avatar):
        if avatar is not self._source:
            self._source = avatar
            image = as_bgr(avatar)
            self._avatar = None if image is None else cv2.resize(
                image, (self.avatar_size, self.avatar_size), interpolation=cv2.INTER_AREA)
        return self._avatar

    def render(self, frame, context=None):
        profile = (context or {}).get("profile")
        center_x = frame.shape[1] / 2

        avatar = getattr(profile, "avatar", None)
        if avatar is not None:
            prepared = self._prepared_avatar(avatar)
            if prepared is not None:
                x = int(center_x - self.avatar_offset - self.avatar_size / 2)
                y = int(self.center_y - self.avatar_size / 2)
                paste_masked(frame, prepared, self._mask, x, y)

        name = getattr(profile, "name", None) or ""
        put_text_left(frame, str(name), (center_x - self.name_offset, self.center_y),
                      self.text_height, self.text_color, 3)
        return frame
