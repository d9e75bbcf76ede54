"""Statistic cards overlay: five counters in a centred row."""

from .base import OverlayBase
from .drawing import blend_outline, blend_rect, hex_to_bgr, put_text_centered

# (counter key, label, accent color)
CARDS = (
    ("subscribers", "Subscribers", "#ff6b6b"),
    ("total_views", "Total Views", "#4ecdc4"),
    ("videos", "Videos", "#45b7d1"),
    ("live_viewers", "Live Viewers", "#ff4757"),
    ("likes", "Stream Likes", "#ffa502"),
)

_SUFFIXES = (
    (1_000_000_000, "B"),
    (1_000_000, "M"),
    (1_000, "K"),
)


def format_number(num) -> str:
    """
    Abbreviate a counter for display.

    >= 1e9 -> "x.xB", >= 1e6 -> "x.xM", >= 1e3 -> "x.xK", truncated to one
    decimal place; anything smaller is the plain integer with grouping.
    """
    num = int(num)
    for threshold, suffix in _SUFFIXES:
        if num >= threshold:
            tenths = num * 10 // threshold
            return f"{tenths // 10}.{tenths % 10}{suffix}"
    return f"{num:,}"


class StatCardsOverlay(OverlayBase):
    """Draws one card per counter: translucent box, value in the accent color, label below."""

    def __init__(self, enabled=True, card_size=(300, 180), gap=40, bottom_margin=100,
                 value_height=56, label_height=18):
        super().__init__(enabled)
        self.card_width, self.card_height = card_size
        self.gap = gap
        self.bottom_margin = bottom_margin
        self.value_height = value_height
        self.label_height = label_height

        self.fill_color = (255, 255, 255)
        self.label_color = (230, 230, 230)  # white at 90%
        self.cards = [(key, label.upper(), hex_to_bgr(color)) for key, label, color in CARDS]

    def layout(self, frame_width, frame_height):
        """Top-left corner of every card."""
        count = len(self.cards)
        total_width = self.card_width * count + self.gap * (count - 1)
        start_x = (frame_width - total_width) // 2
        y = frame_height - self.card_height - self.bottom_margin
        return [(start_x + (self.card_width + self.gap) * i, y) for i in range(count)]

    def _draw_card(self, frame, x, y, value, label, color):
        x1, y1 = x + self.card_width, y + self.card_height
        blend_rect(frame, x, y, x1, y1, self.fill_color, 0.1)
        blend_outline(frame, x, y, x1, y1, self.fill_color, 0.2)

        cx = x + self.card_width / 2
        cy = y + self.card_height / 2
        put_text_centered(frame, format_number(value), (cx, cy - 20), self.value_height, color, 3)
        put_text_centered(frame, label, (cx, cy + 30), self.label_height, self.label_color, 1)

    def render(self, frame, context=None):
        """Render every card from context["counters"]; missing counters show 0."""
        counters = (context or {}).get("counters") or {}
        h, w = frame.shape[:2]

        for (x, y), (key, label, color) in zip(self.layout(w, h), self.cards):
            self._draw_card(frame, x, y, _display_value(counters.get(key)), label, color)
        return frame


def _display_value(value):
    try:
        return max(int(value), 0)
    except (TypeError, ValueError, OverflowError):
        return 0
