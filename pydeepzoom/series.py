"""Series approximation (SA) of the perturbation deviation.

For pixels close to the reference point the deviation after n iterations is
well approximated by a polynomial in the pixel offset dc::

    dz_n ~= sum_k A_k(n) * dc**(k+1)

The coefficients follow the recurrence obtained by substituting the
polynomial into dz_{n+1} = 2*Z_n*dz_n + dz_n**2 + dc. While the polynomial
is provably accurate for every offset within the viewport radius, all
pixels can start iterating at step n instead of 0.
"""

from dataclasses import dataclass

import numpy as np


SA_MARGIN = 0.01
SA_TAIL_EPSILON = 1e-6


@dataclass(frozen=True, eq=False)
class SeriesApproximation:
    """Normalized SA coefficients ready for a pixel evaluator.

    ``coefficients[k]`` holds A_k(skip_iterations) * radius**(k+1) as a
    float32 (re, im) pair, so evaluating at x = dc / radius keeps every term
    in a comfortable range even when radius is tiny.
    """
    skip_iterations: int
    order: int
    radius: float
    coefficients: np.ndarray

    def evaluate(self, delta_c):
        """Evaluate the SA polynomial at ``delta_c`` (scalar or array).

        Returns:
            The predicted deviation dz at iteration ``skip_iterations``
        """
        coeffs = (self.coefficients[:, 0].astype(np.float64)
                  + 1j * self.coefficients[:, 1].astype(np.float64))
        x = np.asarray(delta_c, dtype=np.complex128) / self.radius
        acc = np.full_like(x, coeffs[self.order - 1])
        for k in range(self.order - 2, -1, -1):
            acc = acc * x + coeffs[k]
        result = acc * x
        if result.ndim == 0:
            return complex(result)
        return result


class SAState:
    """Coefficients A_k(n) as of the last orbit step applied.

    The update is double buffered: every new coefficient is computed from
    the previous step's values before any of them is replaced.
    """

    def __init__(self, order: int):
        if order < 1:
            raise ValueError(f"SA order must be at least 1, got {order}")
        self.order = order
        self.coefficients = np.zeros(order, dtype=np.complex128)
        self._scratch = np.zeros(order, dtype=np.complex128)

    def update(self, z_n: complex):
        """Advance the coefficients by one orbit step using Z_n."""
        prev = self.coefficients
        nxt = self._scratch
        with np.errstate(over="ignore", invalid="ignore"):
            np.multiply(prev, 2 * z_n, out=nxt)
            if self.order > 1:
                # conv_k = sum_{j<k} A_j * A_{k-1-j}
                nxt[1:] += np.convolve(prev, prev)[:self.order - 1]
        nxt[0] += 1
        self.coefficients, self._scratch = nxt, prev

    def is_valid(self, z_magnitude: float, radius: float,
                 margin: float = SA_MARGIN, epsilon: float = SA_TAIL_EPSILON) -> bool:
        """Whether the polynomial can stand in for iteration at this step.

        Args:
            z_magnitude: |Z_n| of the reference orbit at this step
            radius: Largest pixel offset the approximation must cover
            margin: Distance kept from the escape circle |z| = 2
            epsilon: Allowed truncation error relative to max(1, rho)
        """
        magnitudes = np.abs(self.coefficients)
        rho = 0.0
        r_pow = radius
        with np.errstate(over="ignore", invalid="ignore"):
            for mag in magnitudes:
                rho += mag * r_pow
                r_pow *= radius
            # r_pow is now radius**(order+1)
            tail = magnitudes[-1] * r_pow
        # Written so that NaN coefficients compare as invalid
        return bool(z_magnitude + rho + tail < 2 - margin
                    and tail < epsilon * max(1.0, rho))

    def normalized_coefficients(self, radius: float) -> np.ndarray:
        """Return float32 (re, im) pairs of A_k * radius**(k+1)."""
        result = np.empty((self.order, 2), dtype=np.float32)
        r_pow = radius
        with np.errstate(over="ignore", invalid="ignore"):
            for k, coeff in enumerate(self.coefficients):
                scaled = coeff * r_pow
                result[k, 0] = scaled.real
                result[k, 1] = scaled.imag
                r_pow *= radius
        return result


def update_sa_coefficients(state: SAState, z_n: complex):
    """Apply one step of the coefficient recurrence to ``state``."""
    state.update(z_n)


def is_sa_valid(state: SAState, z_magnitude: float, radius: float,
                margin: float = SA_MARGIN, epsilon: float = SA_TAIL_EPSILON) -> bool:
    return state.is_valid(z_magnitude, radius, margin, epsilon)


def extract_normalized_coefficients(state: SAState, radius: float) -> np.ndarray:
    return state.normalized_coefficients(radius)


def build_series_approximation(samples, skip_iterations: int, radius: float,
                               order: int) -> SeriesApproximation:
    """Recompute coefficients from scratch up to ``skip_iterations``.

    Args:
        samples: Complex reference orbit values Z_0, Z_1, ...
        skip_iterations: Step N at which the approximation was found valid
        radius: Viewport radius the approximation covers
        order: Number of polynomial terms
    """
    state = SAState(order)
    for z_n in samples[:skip_iterations]:
        state.update(complex(z_n))
    coefficients = state.normalized_coefficients(radius)
    coefficients.flags.writeable = False
    return SeriesApproximation(
        skip_iterations=skip_iterations,
        order=order,
        radius=radius,
        coefficients=coefficients,
    )
