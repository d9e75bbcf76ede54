"""Static two-stop diagonal gradient background."""

import numpy as np

from .base import OverlayBase
from .drawing import hex_to_bgr


def diagonal_gradient(width, height, start, end):
    """
    Gradient from the top-left (start) to the bottom-right (end) corner,
    as a (height, width, 3) uint8 array.
    """
    xs = np.arange(width, dtype=np.float32)
    ys = np.arange(height, dtype=np.float32)
    # Projection of each pixel onto the (width, height) diagonal, 0..1
    t = (ys[:, None] * height + xs[None, :] * width) / float(width * width + height * height)
    t = np.clip(t, 0.0, 1.0)[..., None]

    start = np.array(start, dtype=np.float32)
    end = np.array(end, dtype=np.float32)
    return (start + (end - start) * t).round().astype(np.uint8)


class GradientBackgroundOverlay(OverlayBase):
    """Fills the frame with a precomputed gradient."""

    def __init__(self, start="#0f0f23", end="#16213e", enabled=True):
        super().__init__(enabled)
        self.start = hex_to_bgr(start)
        self.end = hex_to_bgr(end)
        self._cache = None

    def render(self, frame, context=None):
        h, w = frame.shape[:2]
        # Computed once per frame size; the background never changes
        if self._cache is None or self._cache.shape[:2] != (h, w):
            self._cache = diagonal_gradient(w, h, self.start, self.end)
        frame[:] = self._cache
        return frame
