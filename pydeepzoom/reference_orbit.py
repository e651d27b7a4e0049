"""Reference orbit computation for deep zoom Mandelbrot rendering.

Uses mpmath for arbitrary precision to compute the reference orbit at the
center of the view. Pixel evaluators then track the perturbation
dz_n = z_n - Z_n for every pixel in ordinary floating point, which allows
zoom levels far beyond the limits of Float64.

The series approximation coefficients are advanced in the same loop, from
the same Z_n values, so a single pass yields both the orbit and the number of
iterations every pixel may skip.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .precision import (
    arithmetic_context,
    complex_add,
    complex_square,
    magnitude_squared,
    parse_coordinate,
    required_precision,
)
from .series import SAState, SeriesApproximation, build_series_approximation

logger = logging.getLogger(__name__)


ESCAPE_RADIUS = 1024
ESCAPE_RADIUS_SQUARED = ESCAPE_RADIUS * ESCAPE_RADIUS
DEFAULT_SA_ORDER = 12


@dataclass(frozen=True, eq=False)
class ReferenceOrbit:
    """An escape-padded reference orbit sampled to float32.

    ``orbit_data[i]`` holds (re, im) of Z_i and ``magnitude_squared[i]`` holds
    |Z_i|**2. When the orbit escaped, every index after ``escape_iteration``
    repeats the values recorded at ``escape_iteration``.
    """
    center_re: str
    center_im: str
    orbit_data: np.ndarray
    magnitude_squared: np.ndarray
    orbit_length: int
    escape_iteration: int

    @property
    def escaped(self) -> bool:
        """Whether the reference point escaped."""
        return self.escape_iteration != -1


@dataclass(frozen=True)
class OrbitRequest:
    """Parameters of one reference orbit construction."""
    center_re: str
    center_im: str
    max_iterations: int
    zoom: float = 1.0
    viewport_radius: Optional[float] = None
    sa_order: int = DEFAULT_SA_ORDER


def _check_arguments(max_iterations, zoom):
    if max_iterations <= 0:
        raise ValueError(f"max_iterations must be positive, got {max_iterations}")
    if not (zoom > 0 and math.isfinite(zoom)):
        raise ValueError(f"zoom must be positive and finite, got {zoom}")


def _iterate(center_re, center_im, max_iterations, zoom, sa_state=None, radius=None):
    """Shared orbit loop. Returns (orbit, samples, best_sa_step)."""
    _check_arguments(max_iterations, zoom)
    precision = required_precision(zoom)

    # Parsing happens before any iteration so malformed input fails fast
    c_re = parse_coordinate(center_re, precision)
    c_im = parse_coordinate(center_im, precision)

    orbit_data = np.zeros((max_iterations, 2), dtype=np.float32)
    mag_sq = np.zeros(max_iterations, dtype=np.float32)
    samples = np.zeros(max_iterations, dtype=np.complex128)

    ctx = arithmetic_context(precision)
    z_re = ctx.mpf(0)
    z_im = ctx.mpf(0)
    escape_iteration = -1
    best_step = 0

    for i in range(max_iterations):
        sample = complex(float(z_re), float(z_im))
        samples[i] = sample
        orbit_data[i] = (sample.real, sample.imag)
        z_mag_sq = magnitude_squared(z_re, z_im, precision)
        mag_sq[i] = float(z_mag_sq)

        if z_mag_sq > ESCAPE_RADIUS_SQUARED:
            escape_iteration = i
            # Pad the remainder with the escaped value
            orbit_data[i + 1:] = orbit_data[i]
            mag_sq[i + 1:] = mag_sq[i]
            break

        if sa_state is not None:
            if i > 0 and sa_state.is_valid(abs(sample), radius):
                best_step = i
            sa_state.update(sample)

        # Z = Z^2 + C
        sq_re, sq_im = complex_square(z_re, z_im, precision)
        z_re, z_im = complex_add(sq_re, sq_im, c_re, c_im, precision)

    if escape_iteration != -1:
        logger.debug("Reference orbit (%s, %s) escaped at %d",
                     center_re, center_im, escape_iteration)

    orbit_data.flags.writeable = False
    mag_sq.flags.writeable = False
    orbit = ReferenceOrbit(
        center_re=center_re,
        center_im=center_im,
        orbit_data=orbit_data,
        magnitude_squared=mag_sq,
        orbit_length=max_iterations,
        escape_iteration=escape_iteration,
    )
    return orbit, samples, best_step


def compute_reference_orbit(center_re: str, center_im: str, max_iterations: int,
                            zoom: float = 1.0) -> ReferenceOrbit:
    """Compute the reference orbit for center ``center_re + i*center_im``.

    Args:
        center_re: Real part of center as decimal string (e.g., "-0.75")
        center_im: Imaginary part of center as decimal string (e.g., "0.1")
        max_iterations: Orbit length; the orbit is padded to this length
        zoom: Zoom factor, selects the working precision

    Raises:
        InvalidCoordinate: A center string is not a decimal number
    """
    orbit, _, _ = _iterate(center_re, center_im, max_iterations, zoom)
    return orbit


def compute_reference_orbit_with_sa(
    center_re: str,
    center_im: str,
    max_iterations: int,
    zoom: float = 1.0,
    viewport_radius: Optional[float] = None,
    sa_order: int = DEFAULT_SA_ORDER,
) -> tuple[ReferenceOrbit, Optional[SeriesApproximation]]:
    """Compute the reference orbit and, if possible, its series approximation.

    The SA is only attempted when ``viewport_radius`` is given. It is None
    when no orbit step after the first satisfies the validity bound.
    """
    if viewport_radius is None:
        return compute_reference_orbit(center_re, center_im, max_iterations, zoom), None
    if not viewport_radius > 0:
        raise ValueError(f"viewport_radius must be positive, got {viewport_radius}")

    state = SAState(sa_order)
    orbit, samples, best_step = _iterate(
        center_re, center_im, max_iterations, zoom, state, viewport_radius
    )
    if best_step == 0:
        logger.debug("No valid series approximation for radius %g", viewport_radius)
        return orbit, None

    # The running state may have moved past the winning step, so rebuild it
    sa = build_series_approximation(samples, best_step, viewport_radius, sa_order)
    logger.debug("Series approximation skips %d iterations", best_step)
    return orbit, sa


def compute_request(request: OrbitRequest):
    """Run the construction described by ``request``."""
    return compute_reference_orbit_with_sa(
        request.center_re,
        request.center_im,
        request.max_iterations,
        zoom=request.zoom,
        viewport_radius=request.viewport_radius,
        sa_order=request.sa_order,
    )
