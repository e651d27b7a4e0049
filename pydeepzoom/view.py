"""View geometry, evaluation mode switching and a CPU rendering backend.

Shallow views are evaluated directly in Float64. Once the zoom passes the
entry threshold and a reference orbit is available, pixels are evaluated by
perturbation against that orbit. Leaving perturbation mode uses a lower
threshold so small zoom changes near the boundary do not flip modes.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np
from PIL import Image

from .perturbation import (
    ESCAPE_RADIUS_SQUARED,
    GridResult,
    evaluate_perturbation_grid,
)
from .precision import add_decimal_strings, required_precision, sub_decimal_strings
from .reference_orbit import ReferenceOrbit
from .series import SeriesApproximation
from .transfer import ds_add, split_double_single

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Height of the view in the complex plane at zoom 1
INITIAL_RANGE_Y = 3.0

# Reference orbits are only built beyond this zoom
PERTURBATION_ZOOM_THRESHOLD = 1e6

# Hysteresis thresholds for switching evaluation mode
ZOOM_THRESHOLD_IN = 1e6
ZOOM_THRESHOLD_OUT = 5e5


# =============================================================================
# View geometry
# =============================================================================

@dataclass(frozen=True)
class ViewState:
    """What the viewer is looking at."""
    # Center coordinates as arbitrary-precision strings
    center_re: str = "-0.5"
    center_im: str = "0"
    zoom: float = 1.0
    max_iterations: int = 100


def compute_scale(zoom: float, height: int) -> float:
    """Complex plane distance per pixel."""
    return INITIAL_RANGE_Y / (zoom * height)


def viewport_radius(zoom: float, width: int, height: int) -> float:
    """Distance from the view center to a corner of the view."""
    return compute_scale(zoom, height) * math.hypot(width, height) / 2


def compute_max_iterations(zoom: float) -> int:
    """Iteration budget that grows with the zoom depth."""
    return max(50, math.floor(100 + 50 * math.log2(max(1.0, zoom))))


def pixel_offsets(width: int, height: int, scale: float) -> np.ndarray:
    """Complex offset of every pixel from the view center, row 0 on top."""
    xs = (np.arange(width) - width * 0.5) * scale
    ys = -(np.arange(height) - height * 0.5) * scale
    return xs[np.newaxis, :] + 1j * ys[:, np.newaxis]


def pan_by_pixels(view: ViewState, dx: float, dy: float, height: int) -> ViewState:
    """Move the view as if its content were dragged by (dx, dy) pixels."""
    scale = compute_scale(view.zoom, height)
    precision = required_precision(view.zoom)
    return replace(
        view,
        center_re=add_decimal_strings(view.center_re, str(-dx * scale), precision),
        center_im=add_decimal_strings(view.center_im, str(dy * scale), precision),
    )


# =============================================================================
# Evaluation mode
# =============================================================================

class ModeSwitch:
    """Two-state switch between direct and perturbation evaluation."""

    def __init__(self, enter_zoom: float = ZOOM_THRESHOLD_IN,
                 exit_zoom: float = ZOOM_THRESHOLD_OUT):
        if exit_zoom > enter_zoom:
            raise ValueError("exit threshold must not exceed entry threshold")
        self.enter_zoom = enter_zoom
        self.exit_zoom = exit_zoom
        self.perturbation = False

    def update(self, zoom: float, orbit_available: bool) -> bool:
        """Advance the switch for a new frame and return the active mode."""
        if self.perturbation:
            if zoom < self.exit_zoom:
                self.perturbation = False
                logger.info("Switching to direct evaluation at zoom %g", zoom)
        elif zoom >= self.enter_zoom and orbit_available:
            self.perturbation = True
            logger.info("Switching to perturbation evaluation at zoom %g", zoom)
        return self.perturbation


# =============================================================================
# Rendering
# =============================================================================

def evaluate_direct_grid(c, max_iter: int) -> GridResult:
    """Iterate z = z^2 + c in Float64 for every point of ``c``."""
    c = np.asarray(c, dtype=np.complex128)
    shape = c.shape
    c = c.ravel()

    z = np.zeros(c.size, dtype=np.complex128)
    iterations = np.full(c.size, max_iter, dtype=np.int64)
    smooth = np.full(c.size, float(max_iter))
    escaped = np.zeros(c.size, dtype=bool)

    live = np.arange(c.size)
    for i in range(max_iter):
        zl = z[live]
        mag_sq = zl.real * zl.real + zl.imag * zl.imag
        out = mag_sq > ESCAPE_RADIUS_SQUARED
        if out.any():
            hit = live[out]
            escaped[hit] = True
            iterations[hit] = i
            smooth[hit] = np.maximum(i + 1 - np.log2(np.log2(mag_sq[out]) / 2), 0.0)
            live, zl = live[~out], zl[~out]
        if not live.size:
            break
        z[live] = zl * zl + c[live]

    return GridResult(
        iterations=iterations.reshape(shape),
        escaped=escaped.reshape(shape),
        smooth_iter=smooth.reshape(shape),
    )


class Renderer:
    """Evaluates whole frames, switching mode with the zoom level.

    The orbit and SA are replaced together by ``install``; a frame only ever
    reads the pair that was installed when it started.
    """

    def __init__(self, mode: Optional[ModeSwitch] = None):
        self.mode = mode if mode is not None else ModeSwitch()
        self.orbit: Optional[ReferenceOrbit] = None
        self.sa: Optional[SeriesApproximation] = None

    def install(self, orbit: ReferenceOrbit, sa: Optional[SeriesApproximation]):
        """Replace the orbit and SA. Returns the previous pair."""
        old = (self.orbit, self.sa)
        self.orbit, self.sa = orbit, sa
        return old

    def install_response(self, response):
        """Install a ConstructionResponse, for use as a session callback."""
        self.install(response.orbit, response.sa)

    def render(self, view: ViewState, width: int, height: int) -> GridResult:
        orbit, sa = self.orbit, self.sa

        if self.mode.update(view.zoom, orbit is not None) and orbit is not None:
            return self._render_perturbation(view, width, height, orbit, sa)

        offsets = pixel_offsets(width, height, compute_scale(view.zoom, height))
        center = complex(float(view.center_re), float(view.center_im))
        return evaluate_direct_grid(center + offsets, view.max_iterations)

    def _render_perturbation(self, view, width, height, orbit, sa):
        precision = required_precision(view.zoom)
        scale = compute_scale(view.zoom, height)
        delta_re = float(sub_decimal_strings(view.center_re, orbit.center_re, precision))
        delta_im = float(sub_decimal_strings(view.center_im, orbit.center_im, precision))

        # Accumulate in pixel units so the float32 parts stay in range at any zoom
        offsets = pixel_offsets(width, height, 1.0)
        re_hi, re_lo = ds_add(*split_double_single(delta_re / scale),
                              *split_double_single(offsets.real))
        im_hi, im_lo = ds_add(*split_double_single(delta_im / scale),
                              *split_double_single(offsets.imag))
        delta_c = ((re_hi.astype(np.float64) + re_lo.astype(np.float64))
                   + 1j * (im_hi.astype(np.float64) + im_lo.astype(np.float64))) * scale

        radius = viewport_radius(view.zoom, width, height)
        if sa is not None and math.hypot(delta_re, delta_im) + radius > sa.radius:
            # The view has moved outside the disc the SA was built for
            sa = None

        return evaluate_perturbation_grid(orbit, delta_c, view.max_iterations, sa)


def to_image(result: GridResult, max_iter: int) -> Image.Image:
    """Grayscale image of a frame: brighter means slower escape."""
    shade = np.where(result.escaped, result.smooth_iter / max(max_iter, 1), 0.0)
    pixels = np.clip(np.sqrt(shade) * 255, 0, 255).astype(np.uint8)
    return Image.fromarray(pixels)
