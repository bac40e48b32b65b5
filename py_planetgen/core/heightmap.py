"""Rasterize a height query into a regular height map."""

from typing import Callable

import numpy as np
import structlog
from scipy import ndimage

from .world_settings import WorldBounds

logger = structlog.get_logger()


def _axis(start: float, size: float, resolution: int) -> np.ndarray:
    # Pixel centres; the last sample stays inside the half-open bounds
    return start + (np.arange(resolution) + 0.5) * (size / resolution)


def sample_height_map(resolution_x: int, resolution_y: int, bounds: WorldBounds,
                      height_fn: Callable[[float, float], float]) -> np.ndarray:
    """Evaluate ``height_fn`` on a resolution_x by resolution_y grid over the bounds."""
    xs = _axis(bounds.x, bounds.width, resolution_x)
    ys = _axis(bounds.y, bounds.height, resolution_y)
    heights = np.empty((resolution_x, resolution_y), dtype=np.float64)
    for i, x in enumerate(xs):
        for j, y in enumerate(ys):
            heights[i, j] = height_fn(float(x), float(y))
    return heights


def construct_height_map(resolution_x: int, resolution_y: int, bounds: WorldBounds,
                         height_fn: Callable[[float, float], float],
                         upscale_level: int = 3) -> np.ndarray:
    """
    Build a height map by sampling at reduced resolution and upscaling.

    The query runs on a grid ``2**upscale_level`` times coarser on each
    axis; the result is then bilinearly interpolated back to full size.

    Args:
        resolution_x: Output columns
        resolution_y: Output rows
        bounds: Area to cover
        height_fn: Height query
        upscale_level: Power-of-two reduction of the sampling grid

    Returns:
        Array of shape (resolution_x, resolution_y)
    """
    if upscale_level < 0:
        raise ValueError("Upscale level must be non-negative.")
    if resolution_x < 1 or resolution_y < 1:
        raise ValueError("Resolution must be positive.")

    low_x = max(resolution_x >> upscale_level, 1)
    low_y = max(resolution_y >> upscale_level, 1)
    low = sample_height_map(low_x, low_y, bounds, height_fn)

    if (low_x, low_y) == (resolution_x, resolution_y):
        return low

    heights = ndimage.zoom(low, (resolution_x / low_x, resolution_y / low_y), order=1, mode="nearest")
    logger.debug("Height map upscaled", low_resolution=(low_x, low_y),
                 resolution=(resolution_x, resolution_y))
    pad_x = max(0, resolution_x - heights.shape[0])
    pad_y = max(0, resolution_y - heights.shape[1])
    if pad_x or pad_y:
        heights = np.pad(heights, ((0, pad_x), (0, pad_y)), mode="edge")
    return heights[:resolution_x, :resolution_y]
