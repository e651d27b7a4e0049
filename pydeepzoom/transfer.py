"""Binary layout used to hand an orbit and its SA to a pixel evaluator.

A parallel evaluator reads the orbit as a 2D float32 texture with one
(re, im, |Z|^2, 0) record per orbit index, and the SA as a fixed-size array
of (re, im) coefficients. Offsets from the reference are passed as
double-single (hi, lo) float32 pairs.
"""

import math
from typing import Optional

import numpy as np

from .reference_orbit import ReferenceOrbit
from .series import SeriesApproximation


DEFAULT_MAX_WIDTH = 4096
SA_MAX_ORDER = 16


def texture_dimensions(orbit_length: int, max_width: int = DEFAULT_MAX_WIDTH) -> tuple[int, int]:
    """Width and height of the grid holding ``orbit_length`` records."""
    width = min(orbit_length, max_width)
    height = math.ceil(orbit_length / width)
    return width, height


def orbit_texel(n: int, width: int) -> tuple[int, int]:
    """Grid (column, row) of orbit index ``n``."""
    return n % width, n // width


def pack_orbit(orbit: ReferenceOrbit, max_width: int = DEFAULT_MAX_WIDTH) -> np.ndarray:
    """Pack the orbit into a float32 array of shape (height, width, 4).

    Records past ``orbit_length`` in the last row are zero.
    """
    width, height = texture_dimensions(orbit.orbit_length, max_width)
    data = np.zeros((width * height, 4), dtype=np.float32)
    data[:orbit.orbit_length, 0:2] = orbit.orbit_data
    data[:orbit.orbit_length, 2] = orbit.magnitude_squared
    return data.reshape(height, width, 4)


def pack_sa_coefficients(sa: Optional[SeriesApproximation],
                         max_order: int = SA_MAX_ORDER) -> tuple[int, float, np.ndarray]:
    """Pack SA coefficients for an evaluator supporting ``max_order`` terms.

    Returns:
        Tuple of (skip_iterations, inverse_radius, coefficients) where
        coefficients is a zero-padded float32 array of shape (max_order, 2).
        A missing SA packs as zero skip iterations.
    """
    coefficients = np.zeros((max_order, 2), dtype=np.float32)
    if sa is None or sa.skip_iterations == 0:
        return 0, 0.0, coefficients
    if sa.order > max_order:
        raise ValueError(f"SA order {sa.order} exceeds evaluator maximum {max_order}")
    coefficients[:sa.order] = sa.coefficients
    return sa.skip_iterations, 1.0 / sa.radius, coefficients


# =============================================================================
# Double-single helpers
# =============================================================================

def split_double_single(value):
    """Split a Float64 value into float32 (hi, lo) with hi + lo ~= value."""
    hi = np.float32(value)
    lo = np.float32(np.float64(value) - np.float64(hi))
    return hi, lo


def ds_add(a_hi, a_lo, b_hi, b_lo):
    """Compensated addition of two double-single values in float32.

    Works on scalars or arrays; every intermediate stays float32, as it
    would on a single-precision evaluator.
    """
    a_hi, a_lo, b_hi, b_lo = (
        np.asarray(x, dtype=np.float32) for x in (a_hi, a_lo, b_hi, b_lo)
    )
    s = a_hi + b_hi
    v = s - a_hi
    e = (a_hi - (s - v)) + (b_hi - v)
    e = e + (a_lo + b_lo)
    hi = s + e
    lo = e - (hi - s)
    return hi, lo
