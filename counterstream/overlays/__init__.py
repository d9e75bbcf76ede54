"""
Overlay system for the statistics frame.

Provides a modular way to stack graphics layers; each frame is drawn bottom to top.
"""

from .background import GradientBackgroundOverlay
from .base import OverlayBase
from .header import ChannelHeaderOverlay
from .stats import StatCardsOverlay, format_number
from .status import LiveBadgeOverlay


class OverlayManager:
    """Manages multiple overlays, rendering them in order."""

    def __init__(self):
        self.overlays = []  # Ordered list, rendered bottom to top

    def add(self, overlay):
        """Add an overlay to the stack."""
        if not isinstance(overlay, OverlayBase):
            raise TypeError("Overlay must inherit from OverlayBase")
        self.overlays.append(overlay)
        return overlay

    def remove(self, overlay):
        """Remove an overlay from the stack."""
        self.overlays.remove(overlay)

    def render(self, frame, context=None):
        """Render all enabled overlays onto the frame, then let each advance its animation."""
        enabled = [overlay for overlay in self.overlays if overlay.enabled]
        for overlay in enabled:
            frame = overlay.render(frame, context)
        for overlay in enabled:
            overlay.update()
        return frame


__all__ = [
    "ChannelHeaderOverlay",
    "GradientBackgroundOverlay",
    "LiveBadgeOverlay",
    "OverlayBase",
    "OverlayManager",
    "StatCardsOverlay",
    "format_number",
]
