"""Pixel statistics used to rank style-pack reference frames.

Pure and deterministic: identical pixels always give identical scores.
"""

import logging
from pathlib import Path

import numpy as np
from PIL import Image
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Rec. 709 luma weights
_LUMA = np.array([0.2126, 0.7152, 0.0722])

# Gradient sampling stride for the sharpness estimate
_SHARPNESS_STEP = 4

PALETTE_SIZE = 5


class ImageScore(BaseModel):
    brightness: float
    contrast: float
    sharpness: float
    palette: list[str] = Field(default_factory=list)


def _load_rgb(path: Path) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("RGB"), dtype=np.float64)


def _palette(rgb: np.ndarray) -> list[str]:
    """Most frequent colours after quantizing each channel to steps of 32."""
    buckets = np.rint(rgb / 32).astype(np.int64).reshape(-1, 3)
    colors, counts = np.unique(buckets, axis=0, return_counts=True)
    # Stable sort keeps ties in bucket order
    order = np.argsort(-counts, kind="stable")[:PALETTE_SIZE]
    palette = []
    for r, g, b in np.clip(colors[order] * 32, 0, 255):
        palette.append(f"rgb({r}, {g}, {b})")
    return palette


def sharpness_score(luma: np.ndarray) -> float:
    """Mean absolute horizontal plus vertical gradient on a sparse grid."""
    height, width = luma.shape
    if height < 3 or width < 3:
        return 0.0
    ys = np.arange(1, height - 1, _SHARPNESS_STEP)
    xs = np.arange(1, width - 1, _SHARPNESS_STEP)
    centre = luma[np.ix_(ys, xs)]
    right = luma[np.ix_(ys, xs + 1)]
    down = luma[np.ix_(ys + 1, xs)]
    total = np.abs(centre - right).sum() + np.abs(centre - down).sum()
    return float(total / ((width * height) / 16))


def score_image(path: Path) -> ImageScore:
    """Brightness (mean luma), contrast (luma std-dev), sharpness and palette.

    Args:
        path: Any image Pillow can read

    Returns:
        ImageScore for the image
    """
    rgb = _load_rgb(Path(path))
    luma_exact = rgb @ _LUMA
    luma = np.rint(luma_exact)
    brightness = float(luma.mean())
    contrast = float(np.sqrt(max(float((luma ** 2).mean()) - brightness ** 2, 0.0)))

    return ImageScore(
        brightness=brightness,
        contrast=contrast,
        sharpness=sharpness_score(luma_exact),
        palette=_palette(rgb),
    )
