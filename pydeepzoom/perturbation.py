"""Perturbation evaluation of pixels against a reference orbit.

A pixel at c = C + dc iterates as z_n = Z_n + dz_n where Z_n is the
reference orbit and

    dz_{n+1} = 2*Z_n*dz_n + dz_n**2 + dc

``compute_perturbation`` is the reference algorithm for a single pixel and
``evaluate_perturbation_grid`` is the same algorithm vectorised over a numpy
array of offsets. Both only read the orbit and SA buffers.
"""

import math
from dataclasses import dataclass
from typing import NamedTuple, Optional

import numpy as np

from .reference_orbit import ReferenceOrbit
from .series import SeriesApproximation


ESCAPE_RADIUS_SQUARED = 4.0
REBASE_MIN_MAGNITUDE_SQUARED = 1e-10


@dataclass(frozen=True)
class PerturbationResult:
    iterations: int
    escaped: bool
    smooth_iter: float


class GridResult(NamedTuple):
    iterations: np.ndarray
    escaped: np.ndarray
    smooth_iter: np.ndarray


def smooth_iteration(iteration, mag_sq):
    """Continuous escape count for an orbit that left |z| = 2 at ``iteration``."""
    return max(0.0, iteration + 1 - math.log2(math.log2(mag_sq) / 2))


def compute_perturbation(
    orbit: ReferenceOrbit,
    delta_c_re: float,
    delta_c_im: float,
    max_iter: int,
    sa: Optional[SeriesApproximation] = None,
    rebase_threshold: float = REBASE_MIN_MAGNITUDE_SQUARED,
) -> PerturbationResult:
    """Iterate the pixel at offset (delta_c_re, delta_c_im) from the reference.

    When ``sa`` skips N > 0 iterations, dz starts at the SA prediction and
    both the iteration count and the orbit index start at N.

    An orbit exhausted before a verdict reports the pixel as not escaped.
    """
    data = orbit.orbit_data
    ref_mag_sq = orbit.magnitude_squared
    dc = complex(delta_c_re, delta_c_im)

    if sa is not None and sa.skip_iterations > 0:
        dz = sa.evaluate(dc)
        n = iteration = sa.skip_iterations
    else:
        dz = 0j
        n = iteration = 0

    while iteration < max_iter:
        if n >= orbit.orbit_length:
            break

        z_n = complex(float(data[n, 0]), float(data[n, 1]))
        full = z_n + dz
        full_mag_sq = full.real * full.real + full.imag * full.imag
        if full_mag_sq > ESCAPE_RADIUS_SQUARED:
            return PerturbationResult(
                iterations=iteration,
                escaped=True,
                smooth_iter=smooth_iteration(iteration, full_mag_sq),
            )

        # Rebase once dz dominates Z_n; the iteration is retried, not counted
        dz_mag_sq = dz.real * dz.real + dz.imag * dz.imag
        z_mag_sq = float(ref_mag_sq[n])
        if n > 0 and dz_mag_sq > z_mag_sq and z_mag_sq > rebase_threshold:
            dz = full
            n = 0
            continue

        dz = 2 * z_n * dz + dz * dz + dc
        n += 1
        iteration += 1

    return PerturbationResult(iterations=max_iter, escaped=False, smooth_iter=float(max_iter))


def evaluate_perturbation_grid(
    orbit: ReferenceOrbit,
    delta_c,
    max_iter: int,
    sa: Optional[SeriesApproximation] = None,
    rebase_threshold: float = REBASE_MIN_MAGNITUDE_SQUARED,
) -> GridResult:
    """Evaluate ``compute_perturbation`` for every offset in ``delta_c``.

    Args:
        orbit: Reference orbit shared by all pixels
        delta_c: Complex array of pixel offsets from the orbit center
        max_iter: Iteration budget per pixel
        sa: Optional series approximation valid for all offsets

    Returns:
        GridResult with arrays shaped like ``delta_c``
    """
    dc = np.asarray(delta_c, dtype=np.complex128)
    shape = dc.shape
    dc = dc.ravel()
    size = dc.size

    ref = (orbit.orbit_data[:, 0].astype(np.float64)
           + 1j * orbit.orbit_data[:, 1].astype(np.float64))
    ref_mag_sq = orbit.magnitude_squared.astype(np.float64)

    iterations = np.full(size, max_iter, dtype=np.int64)
    smooth = np.full(size, float(max_iter))
    escaped = np.zeros(size, dtype=bool)

    if sa is not None and sa.skip_iterations > 0:
        dz = np.asarray(sa.evaluate(dc), dtype=np.complex128)
        n = np.full(size, sa.skip_iterations, dtype=np.int64)
    else:
        dz = np.zeros(size, dtype=np.complex128)
        n = np.zeros(size, dtype=np.int64)
    it = n.copy()

    # Pixels out of budget or past the end of the orbit stay not escaped
    live = np.flatnonzero((it < max_iter) & (n < orbit.orbit_length))
    while live.size:
        idx = n[live]
        z_n = ref[idx]
        full = z_n + dz[live]
        full_mag_sq = full.real * full.real + full.imag * full.imag

        out = full_mag_sq > ESCAPE_RADIUS_SQUARED
        if out.any():
            hit = live[out]
            escaped[hit] = True
            iterations[hit] = it[hit]
            with np.errstate(divide="ignore", invalid="ignore"):
                s = it[hit] + 1 - np.log2(np.log2(full_mag_sq[out]) / 2)
            smooth[hit] = np.maximum(s, 0.0)
            keep = ~out
            live, idx, z_n, full = live[keep], idx[keep], z_n[keep], full[keep]

        d = dz[live]
        d_mag_sq = d.real * d.real + d.imag * d.imag
        z_mag_sq = ref_mag_sq[idx]
        rebase = (idx > 0) & (d_mag_sq > z_mag_sq) & (z_mag_sq > rebase_threshold)
        if rebase.any():
            hit = live[rebase]
            dz[hit] = full[rebase]
            n[hit] = 0
            step = ~rebase
            live, z_n, d = live[step], z_n[step], d[step]

        with np.errstate(over="ignore", invalid="ignore"):
            dz[live] = 2 * z_n * d + d * d + dc[live]
        n[live] += 1
        it[live] += 1

        live = np.flatnonzero(~escaped & (it < max_iter) & (n < orbit.orbit_length))

    return GridResult(
        iterations=iterations.reshape(shape),
        escaped=escaped.reshape(shape),
        smooth_iter=smooth.reshape(shape),
    )
