import logging

import numpy as np
import pytest

import pydeepzoom.view
from pydeepzoom.precision import sub_decimal_strings
from pydeepzoom.reference_orbit import compute_reference_orbit, compute_reference_orbit_with_sa
from pydeepzoom.view import (
    ModeSwitch,
    Renderer,
    ViewState,
    compute_max_iterations,
    compute_scale,
    evaluate_direct_grid,
    pan_by_pixels,
    pixel_offsets,
    to_image,
    viewport_radius,
)

# Seahorse valley
SEAHORSE_RE = "-0.743643887037151"
SEAHORSE_IM = "0.131825904205330"


def test_compute_scale():
    assert compute_scale(1.0, 600) == pytest.approx(0.005)
    assert compute_scale(1e6, 600) == pytest.approx(5e-9)


def test_viewport_radius():
    # Half the diagonal of an 800x600 view at 0.005 per pixel
    assert viewport_radius(1.0, 800, 600) == pytest.approx(2.5)


@pytest.mark.parametrize("zoom, expected", [
    (0.5, 100),
    (1.0, 100),
    (2.0, 150),
    (1024.0, 600),
])
def test_compute_max_iterations(zoom, expected):
    assert compute_max_iterations(zoom) == expected


def test_pixel_offsets():
    offsets = pixel_offsets(4, 2, 1.0)
    assert offsets.shape == (2, 4)
    np.testing.assert_array_equal(offsets[0], [-2 + 1j, -1 + 1j, 1j, 1 + 1j])
    np.testing.assert_array_equal(offsets[1], [-2, -1, 0, 1])


def test_mode_switch_hysteresis():
    mode = ModeSwitch(1e6, 5e5)
    assert not mode.update(2e6, orbit_available=False)
    assert mode.update(2e6, orbit_available=True)
    # Between the thresholds the current mode is kept
    assert mode.update(7e5, orbit_available=True)
    assert mode.update(7e5, orbit_available=False)
    assert not mode.update(4e5, orbit_available=True)
    assert not mode.update(7e5, orbit_available=True)
    assert mode.update(1e6, orbit_available=True)


def test_mode_switch_logs_transitions(caplog):
    mode = ModeSwitch()
    with caplog.at_level(logging.INFO, logger="pydeepzoom.view"):
        mode.update(2e6, orbit_available=True)
        mode.update(1e5, orbit_available=True)
    messages = [r.getMessage() for r in caplog.records]
    assert any("perturbation" in m for m in messages)
    assert any("direct" in m for m in messages)


def test_mode_switch_rejects_inverted_thresholds():
    with pytest.raises(ValueError):
        ModeSwitch(enter_zoom=1e5, exit_zoom=1e6)


def test_evaluate_direct_grid():
    result = evaluate_direct_grid(np.array([0, 2, -1, 1.5]), 50)
    np.testing.assert_array_equal(result.escaped, [False, True, False, True])
    np.testing.assert_array_equal(result.iterations, [50, 2, 50, 2])
    assert result.smooth_iter[0] == 50
    assert 0 <= result.smooth_iter[1] <= 3


def _seahorse_view():
    return ViewState(SEAHORSE_RE, SEAHORSE_IM, zoom=1e6, max_iterations=400)


def _assert_frames_agree(direct, perturbed):
    agree = np.abs(direct.iterations - perturbed.iterations) <= 1
    assert agree.mean() >= 0.9
    assert (direct.escaped == perturbed.escaped).mean() >= 0.9


def test_renderer_uses_direct_mode_without_orbit():
    renderer = Renderer()
    view = _seahorse_view()
    result = renderer.render(view, 16, 12)
    assert result.iterations.shape == (12, 16)
    assert not renderer.mode.perturbation


@pytest.mark.parametrize("with_sa", [False, True])
def test_perturbation_matches_direct_rendering(with_sa):
    view = _seahorse_view()
    width, height = 16, 12

    direct = Renderer().render(view, width, height)

    radius = viewport_radius(view.zoom, width, height) if with_sa else None
    orbit, sa = compute_reference_orbit_with_sa(
        view.center_re, view.center_im, view.max_iterations,
        zoom=view.zoom, viewport_radius=radius, sa_order=8,
    )
    renderer = Renderer()
    renderer.install(orbit, sa)
    perturbed = renderer.render(view, width, height)

    assert renderer.mode.perturbation
    _assert_frames_agree(direct, perturbed)


def test_renderer_uses_offset_from_orbit_center():
    # Orbit built for a point next to the view center
    view = _seahorse_view()
    width, height = 16, 12
    orbit, _ = compute_reference_orbit_with_sa(
        "-0.74364388", "0.13182590", view.max_iterations, zoom=view.zoom
    )
    renderer = Renderer()
    renderer.install(orbit, None)
    perturbed = renderer.render(view, width, height)
    direct = Renderer().render(view, width, height)
    _assert_frames_agree(direct, perturbed)


def test_sa_dropped_outside_its_disc(monkeypatch):
    orbit, sa = compute_reference_orbit_with_sa(
        "-1", "0", 100, zoom=1e7, viewport_radius=viewport_radius(1e7, 16, 12), sa_order=4
    )
    assert sa is not None

    seen = []
    real = pydeepzoom.view.evaluate_perturbation_grid

    def spy(orbit, delta_c, max_iter, sa=None):
        seen.append(sa)
        return real(orbit, delta_c, max_iter, sa)

    monkeypatch.setattr(pydeepzoom.view, "evaluate_perturbation_grid", spy)
    renderer = Renderer()
    renderer.install(orbit, sa)

    renderer.render(ViewState("-1", "0", zoom=1e7, max_iterations=100), 16, 12)
    renderer.render(ViewState("-0.9999", "0", zoom=1e7, max_iterations=100), 16, 12)
    assert seen == [sa, None]


def test_install_returns_previous_pair():
    orbit, sa = compute_reference_orbit_with_sa("-1", "0", 20)
    renderer = Renderer()
    assert renderer.install(orbit, sa) == (None, None)
    old_orbit, old_sa = renderer.install(orbit, None)
    assert old_orbit is orbit
    assert old_sa is sa


def test_to_image():
    result = evaluate_direct_grid(pixel_offsets(16, 12, 0.25) - 0.5, 50)
    image = to_image(result, 50)
    assert image.size == (16, 12)
    assert image.mode == "L"
    pixels = np.asarray(image)
    # Points inside the set are black
    assert pixels[6, 8] == 0
    assert pixels.max() > 0


def test_pan_by_pixels():
    view = ViewState("-0.5", "0", zoom=1.0, max_iterations=77)
    panned = pan_by_pixels(view, 10, -20, 600)
    # Dragging right moves the center left, dragging up moves it down
    assert float(panned.center_re) == pytest.approx(-0.55)
    assert float(panned.center_im) == pytest.approx(-0.1)
    assert panned.zoom == view.zoom
    assert panned.max_iterations == 77


def test_pan_keeps_deep_offsets():
    zoom = 1e30
    view = ViewState("-1", "0", zoom=zoom)
    panned = pan_by_pixels(view, -1, 0, 600)
    moved = float(sub_decimal_strings(panned.center_re, "-1", 50))
    assert moved == pytest.approx(compute_scale(zoom, 600))
    assert float(panned.center_im) == 0.0


def _capture_deltas(monkeypatch):
    seen = []
    real = pydeepzoom.view.evaluate_perturbation_grid

    def spy(orbit, delta_c, max_iter, sa=None):
        seen.append(delta_c)
        return real(orbit, delta_c, max_iter, sa)

    monkeypatch.setattr(pydeepzoom.view, "evaluate_perturbation_grid", spy)
    return seen


def test_pixel_offsets_survive_extreme_zoom(monkeypatch):
    zoom = 1e45
    width, height = 8, 6
    seen = _capture_deltas(monkeypatch)
    renderer = Renderer()
    renderer.install(compute_reference_orbit("-1", "0", 50, zoom=zoom), None)

    renderer.render(ViewState("-1", "0", zoom=zoom, max_iterations=50), width, height)
    delta_c = seen[0]
    expected = pixel_offsets(width, height, compute_scale(zoom, height))
    np.testing.assert_allclose(delta_c, expected, rtol=1e-12, atol=0)
    assert len(np.unique(delta_c.real)) == width
    assert len(np.unique(delta_c.imag)) == height


def test_view_delta_survives_extreme_zoom(monkeypatch):
    zoom = 1e45
    width, height = 8, 6
    scale = compute_scale(zoom, height)
    seen = _capture_deltas(monkeypatch)
    renderer = Renderer()
    renderer.install(compute_reference_orbit("-1", "0", 50, zoom=zoom), None)

    view = pan_by_pixels(ViewState("-1", "0", zoom=zoom, max_iterations=50), -3, 2, height)
    renderer.render(view, width, height)
    expected = complex(3 * scale, 2 * scale) + pixel_offsets(width, height, scale)
    np.testing.assert_allclose(seen[0], expected, rtol=1e-9, atol=1e-9 * scale)
