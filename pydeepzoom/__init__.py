"""Deep zoom Mandelbrot engine: reference orbits, series approximation and
perturbation evaluation."""

from .exceptions import DeepZoomError, InvalidCoordinate, TransportError
from .precision import required_precision
from .reference_orbit import (
    OrbitRequest,
    ReferenceOrbit,
    compute_reference_orbit,
    compute_reference_orbit_with_sa,
)
from .series import SeriesApproximation
from .perturbation import PerturbationResult, compute_perturbation

__all__ = [
    "DeepZoomError",
    "InvalidCoordinate",
    "TransportError",
    "required_precision",
    "OrbitRequest",
    "ReferenceOrbit",
    "compute_reference_orbit",
    "compute_reference_orbit_with_sa",
    "SeriesApproximation",
    "PerturbationResult",
    "compute_perturbation",
]
