import io
import logging

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_WIDTH = 640


def load_gray(data: bytes) -> np.ndarray | None:
    """Decode image bytes to a grayscale array, downscaled to at most MAX_WIDTH wide."""
    try:
        image = Image.open(io.BytesIO(data))
        image = image.convert("L")
    except (UnidentifiedImageError, OSError, ValueError):
        return None

    if image.width > MAX_WIDTH:
        ratio = MAX_WIDTH / image.width
        image = image.resize((MAX_WIDTH, max(1, round(image.height * ratio))))
    return np.ascontiguousarray(np.array(image, dtype=np.uint8))


def variance_of_laplacian(gray: np.ndarray) -> float:
    """Higher is sharper."""
    return float(cv2.Laplacian(gray, cv2.CV_64F).var())


def sharpness_score(data: bytes) -> float | None:
    gray = load_gray(data)
    if gray is None or gray.size == 0:
        logger.info("Could not decode image for sharpness scoring")
        return None
    return round(variance_of_laplacian(gray), 3)
