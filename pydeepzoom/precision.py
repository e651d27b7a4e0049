"""Precision estimation and arbitrary-precision complex arithmetic.

Reference orbits are iterated with mpmath. Every operation here takes the
precision (in significant decimal digits) as an explicit argument and works
in an mpmath context dedicated to that precision, so no call ever depends on
or changes a process-wide setting like ``mpmath.mp.dps``.
"""

import math
import re
from decimal import Context, Decimal
from functools import lru_cache

import mpmath

from .exceptions import InvalidCoordinate


MIN_PRECISION = 20
PRECISION_MARGIN = 15

_DECIMAL_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


def required_precision(zoom: float) -> int:
    """Estimate the decimal digits needed for a reference orbit at ``zoom``.

    Args:
        zoom: Zoom factor (1 means the whole set fits in the view)

    Returns:
        Significant decimal digits, never fewer than MIN_PRECISION
    """
    digits = math.ceil(math.log10(max(zoom, 1.0))) + PRECISION_MARGIN
    return max(MIN_PRECISION, digits)


@lru_cache(maxsize=None)
def arithmetic_context(precision: int) -> mpmath.MPContext:
    """Return the mpmath context working at ``precision`` decimal digits.

    Contexts are shared per precision and must not be reconfigured.
    """
    if precision < 1:
        raise ValueError(f"precision must be positive, got {precision}")
    ctx = mpmath.MPContext()
    ctx.dps = precision
    return ctx


def validate_coordinate(value) -> str:
    """Return ``value`` stripped, or raise InvalidCoordinate if it is not a decimal."""
    if not isinstance(value, str):
        raise InvalidCoordinate(value)
    text = value.strip()
    if not _DECIMAL_RE.match(text):
        raise InvalidCoordinate(value)
    return text


def parse_coordinate(value: str, precision: int):
    """Parse a decimal coordinate string into an mpf at ``precision`` digits.

    Raises:
        InvalidCoordinate: ``value`` is not a finite decimal string
    """
    return arithmetic_context(precision).mpf(validate_coordinate(value))


def complex_add(a_re, a_im, b_re, b_im, precision: int):
    """Return ``a + b`` rounded to ``precision`` digits as (re, im)."""
    ctx = arithmetic_context(precision)
    a_re, a_im = ctx.convert(a_re), ctx.convert(a_im)
    b_re, b_im = ctx.convert(b_re), ctx.convert(b_im)
    return a_re + b_re, a_im + b_im


def complex_square(re_, im_, precision: int):
    """Return ``(re + i*im)**2`` rounded to ``precision`` digits as (re, im)."""
    ctx = arithmetic_context(precision)
    re_, im_ = ctx.convert(re_), ctx.convert(im_)
    return re_ * re_ - im_ * im_, 2 * re_ * im_


def magnitude_squared(re_, im_, precision: int):
    """Return ``re**2 + im**2`` rounded to ``precision`` digits."""
    ctx = arithmetic_context(precision)
    re_, im_ = ctx.convert(re_), ctx.convert(im_)
    return re_ * re_ + im_ * im_


# =============================================================================
# Decimal string helpers
# =============================================================================

def add_decimal_strings(a: str, b: str, precision: int = 100) -> str:
    """Return ``a + b`` as a decimal string rounded to ``precision`` digits."""
    ctx = Context(prec=precision)
    result = ctx.add(Decimal(validate_coordinate(a)), Decimal(validate_coordinate(b)))
    return str(result)


def sub_decimal_strings(a: str, b: str, precision: int = 100) -> str:
    """Return ``a - b`` as a decimal string rounded to ``precision`` digits."""
    ctx = Context(prec=precision)
    result = ctx.subtract(Decimal(validate_coordinate(a)), Decimal(validate_coordinate(b)))
    return str(result)
