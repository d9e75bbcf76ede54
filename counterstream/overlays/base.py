"""Base class for all overlays."""

from abc import ABC, abstractmethod


class OverlayBase(ABC):
    """Abstract base class that all overlays inherit from."""

    def __init__(self, enabled=True):
        self.enabled = enabled

    @abstractmethod
    def render(self, frame, context=None):
        """
        Draw onto frame.

        Args:
            frame: BGR frame (numpy array), drawn on in place
            context: dict with the frame's inputs ("counters", "profile", "frame_count")

        Returns:
            The frame
        """
        pass

    def update(self):
        """Optional: called once after every render, for overlays that animate per frame."""
        pass
