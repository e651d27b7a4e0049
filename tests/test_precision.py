from concurrent.futures import ThreadPoolExecutor

import mpmath
import pytest

from pydeepzoom.exceptions import InvalidCoordinate
from pydeepzoom.precision import (
    add_decimal_strings,
    arithmetic_context,
    complex_add,
    complex_square,
    magnitude_squared,
    parse_coordinate,
    required_precision,
    sub_decimal_strings,
)


def test_required_precision_has_floor():
    assert required_precision(0.001) == 20
    assert required_precision(1) == 20
    assert required_precision(1e3) == 20


def test_required_precision_grows_with_zoom():
    assert required_precision(2e7) == 23
    assert required_precision(1e50) >= 65


def test_required_precision_is_monotonic():
    zooms = [0.5, 1, 10, 1e5, 3e6, 1e10, 7e15, 1e20, 1e40, 1e100, 1e300]
    digits = [required_precision(z) for z in zooms]
    assert digits == sorted(digits)
    assert min(digits) >= 20


@pytest.mark.parametrize("re_, im_, expected", [
    (1, 0, (1, 0)),
    (0, 1, (-1, 0)),
    (3, 4, (-7, 24)),
])
def test_complex_square(re_, im_, expected):
    sq_re, sq_im = complex_square(re_, im_, 20)
    assert (sq_re, sq_im) == expected


def test_magnitude_squared():
    assert magnitude_squared(3, 4, 20) == 25


def test_complex_add():
    a_re = parse_coordinate("0.1", 30)
    a_im = parse_coordinate("-0.2", 30)
    re_, im_ = complex_add(a_re, a_im, 1, 2, 30)
    assert re_ == parse_coordinate("1.1", 30)
    assert im_ == parse_coordinate("1.8", 30)


def test_results_are_rounded_to_requested_precision():
    value = parse_coordinate("1.23456789", 50)
    fine, _ = complex_add(value, 0, 0, 0, 50)
    coarse, _ = complex_add(value, 0, 0, 0, 5)
    assert abs(float(fine) - 1.23456789) < 1e-15
    assert abs(float(coarse) - 1.23456789) > 1e-9
    assert abs(float(coarse) - 1.23456789) < 1e-5


def test_contexts_do_not_touch_global_precision():
    before = mpmath.mp.dps
    assert arithmetic_context(40).dps == 40
    assert arithmetic_context(80).dps == 80
    complex_square(parse_coordinate("1.5", 80), 0, 80)
    assert mpmath.mp.dps == before
    assert arithmetic_context(40) is arithmetic_context(40)


def test_concurrent_calls_with_different_precisions():
    def work(precision):
        third = parse_coordinate("0.333333333333333333333333333333333333333333333333", precision)
        results = []
        for _ in range(200):
            results.append(magnitude_squared(third, third, precision))
        return precision, {mpmath.nstr(r, 60) for r in results}

    expected = {
        p: mpmath.nstr(magnitude_squared(
            parse_coordinate("0.333333333333333333333333333333333333333333333333", p),
            parse_coordinate("0.333333333333333333333333333333333333333333333333", p),
            p,
        ), 60)
        for p in (20, 45)
    }
    with ThreadPoolExecutor(max_workers=4) as pool:
        for precision, values in pool.map(work, [20, 45, 20, 45]):
            assert values == {expected[precision]}
    assert expected[20] != expected[45]


@pytest.mark.parametrize("value", [
    " -1.5e-3 ", ".5", "5.", "0", "+2", "-0.743643887037151",
])
def test_parse_coordinate_accepts_decimals(value):
    assert float(parse_coordinate(value, 30)) == pytest.approx(float(value))


@pytest.mark.parametrize("value", ["abc", "", "1.2.3", "inf", "nan", "1/3", "0x10", "--1", None, 1.5])
def test_parse_coordinate_rejects_malformed(value):
    with pytest.raises(InvalidCoordinate):
        parse_coordinate(value, 30)


def test_invalid_coordinate_is_a_value_error():
    with pytest.raises(ValueError):
        parse_coordinate("one", 30)


def test_decimal_string_helpers():
    assert add_decimal_strings("0.1", "0.2", 10) == "0.3"
    delta = sub_decimal_strings("-0.75", "-0.75000000000000000001", 30)
    assert float(delta) == pytest.approx(1e-20)
    with pytest.raises(InvalidCoordinate):
        add_decimal_strings("0.1", "x", 10)
