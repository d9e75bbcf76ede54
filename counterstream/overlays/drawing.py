"""Drawing helpers shared by the overlays. All of them clip to the frame."""

import cv2
import numpy as np

FONT = cv2.FONT_HERSHEY_DUPLEX
# Approximate cap height of FONT at scale 1.0, used to size text in pixels
FONT_PIXEL_HEIGHT = 22


def hex_to_bgr(value):
    """'#ff6b6b' -> (107, 107, 255)"""
    value = value.lstrip("#")
    r, g, b = (int(value[i:i + 2], 16) for i in (0, 2, 4))
    return (b, g, r)


def font_scale(pixel_height):
    return pixel_height / FONT_PIXEL_HEIGHT


def _clip(frame, x0, y0, x1, y1):
    h, w = frame.shape[:2]
    return max(int(x0), 0), max(int(y0), 0), min(int(x1), w), min(int(y1), h)


def blend_rect(frame, x0, y0, x1, y1, color, alpha):
    """Fill a rectangle with color at the given opacity."""
    x0, y0, x1, y1 = _clip(frame, x0, y0, x1, y1)
    if x0 >= x1 or y0 >= y1:
        return frame
    roi = frame[y0:y1, x0:x1]
    fill = np.empty_like(roi)
    fill[:] = color
    roi[:] = cv2.addWeighted(fill, alpha, roi, 1.0 - alpha, 0)
    return frame


def blend_outline(frame, x0, y0, x1, y1, color, alpha, thickness=1):
    """1px translucent border, drawn as four thin blended strips."""
    blend_rect(frame, x0, y0, x1, y0 + thickness, color, alpha)
    blend_rect(frame, x0, y1 - thickness, x1, y1, color, alpha)
    blend_rect(frame, x0, y0 + thickness, x0 + thickness, y1 - thickness, color, alpha)
    blend_rect(frame, x1 - thickness, y0 + thickness, x1, y1 - thickness, color, alpha)
    return frame


def put_text_centered(frame, text, center, pixel_height, color, thickness=2):
    """Draw text with its box centred on center."""
    scale = font_scale(pixel_height)
    (tw, th), _ = cv2.getTextSize(text, FONT, scale, thickness)
    x = int(center[0] - tw / 2)
    y = int(center[1] + th / 2)
    cv2.putText(frame, text, (x, y), FONT, scale, color, thickness, cv2.LINE_AA)
    return frame


def put_text_left(frame, text, origin, pixel_height, color, thickness=2):
    """Draw text starting at origin[0], vertically centred on origin[1]."""
    scale = font_scale(pixel_height)
    (_, th), _ = cv2.getTextSize(text, FONT, scale, thickness)
    cv2.putText(frame, text, (int(origin[0]), int(origin[1] + th / 2)),
                FONT, scale, color, thickness, cv2.LINE_AA)
    return frame


def as_bgr(image):
    """Normalise grayscale/BGRA images to 3-channel BGR; None if unusable."""
    if not isinstance(image, np.ndarray) or image.size == 0:
        return None
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    if image.ndim == 3 and image.shape[2] == 3:
        return image
    return None


def paste_masked(frame, image, mask, x, y):
    """Copy image onto frame at (x, y) where mask is non-zero."""
    h, w = image.shape[:2]
    x0, y0, x1, y1 = _clip(frame, x, y, x + w, y + h)
    if x0 >= x1 or y0 >= y1:
        return frame

    src = image[y0 - y:y1 - y, x0 - x:x1 - x]
    src_mask = mask[y0 - y:y1 - y, x0 - x:x1 - x] > 0
    roi = frame[y0:y1, x0:x1]
    roi[src_mask] = src[src_mask]
    return frame
