import argparse
import logging
import time

from .precision import required_precision
from .reference_orbit import DEFAULT_SA_ORDER, compute_reference_orbit_with_sa
from .view import (
    PERTURBATION_ZOOM_THRESHOLD,
    ModeSwitch,
    Renderer,
    ViewState,
    compute_max_iterations,
    to_image,
    viewport_radius,
)


def orbit_command(args):
    precision = required_precision(args.zoom)
    imax = args.imax or compute_max_iterations(args.zoom)
    print(f"Center: {args.re} + {args.im}i")
    print(f"Zoom: {args.zoom:g} ({precision} digits of precision)")

    t0 = time.perf_counter()
    orbit, sa = compute_reference_orbit_with_sa(
        args.re,
        args.im,
        imax,
        zoom=args.zoom,
        viewport_radius=args.radius,
        sa_order=args.order,
    )
    elapsed_ms = (time.perf_counter() - t0) * 1000

    print(f"Reference orbit: {orbit.orbit_length} pts in {elapsed_ms:.0f}ms, "
          f"escape_iter={orbit.escape_iteration}")
    if sa is None:
        print("Series approximation: unavailable")
    else:
        print(f"Series approximation: skip {sa.skip_iterations} iterations "
              f"(order {sa.order}, radius {sa.radius:.3e})")


def render_command(args):
    width, height = args.dims
    imax = args.imax or compute_max_iterations(args.zoom)
    view = ViewState(center_re=args.re, center_im=args.im, zoom=args.zoom, max_iterations=imax)
    print(f"Rendering at zoom {args.zoom:g}")
    print(f"Center: {args.re} + {args.im}i")
    print(f"Size: {width}x{height}, imax: {imax}")

    # A one-shot render has no previous frame to switch from
    renderer = Renderer(ModeSwitch(args.threshold, args.threshold))
    if args.zoom >= args.threshold:
        t0 = time.perf_counter()
        orbit, sa = compute_reference_orbit_with_sa(
            args.re,
            args.im,
            imax,
            zoom=args.zoom,
            viewport_radius=viewport_radius(args.zoom, width, height),
            sa_order=args.order,
        )
        renderer.install(orbit, sa)
        skip = sa.skip_iterations if sa is not None else 0
        print(f"  Reference orbit: {(time.perf_counter() - t0) * 1000:.0f}ms, "
              f"escaped={orbit.escaped}, SA skip={skip}")

    t0 = time.perf_counter()
    result = renderer.render(view, width, height)
    mode = "perturbation" if renderer.mode.perturbation else "direct"
    print(f"  Render ({mode}): {(time.perf_counter() - t0) * 1000:.0f}ms")

    to_image(result, imax).save(args.out_file)
    print(f"Saved: {args.out_file}")


def main():
    parser = argparse.ArgumentParser(
        description="Deep zoom Mandelbrot reference orbits and rendering",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("command", choices=["orbit", "render"])
    parser.add_argument("re", nargs="?", default="-0.75", help="center real part")
    parser.add_argument("im", nargs="?", default="0.0", help="center imaginary part")
    parser.add_argument("--zoom", type=float, default=1.0, help="zoom factor")
    parser.add_argument(
        "--imax",
        type=int,
        default=None,
        help="max iterations (derived from the zoom when omitted)",
    )
    parser.add_argument(
        "--radius",
        type=float,
        default=None,
        help="viewport radius for the series approximation (orbit command)",
    )
    parser.add_argument("--order", type=int, default=DEFAULT_SA_ORDER, help="series approximation order")
    parser.add_argument(
        "--threshold",
        type=float,
        default=PERTURBATION_ZOOM_THRESHOLD,
        help="zoom at which rendering switches to perturbation",
    )
    parser.add_argument(
        "--dims",
        type=int,
        default=[800, 600],
        nargs=2,
        help="The dimensions of the output image, in pixels",
    )
    parser.add_argument("-o", "--out-file", default="out.png", help="The output file to write to")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    if args.command == "orbit":
        orbit_command(args)
    else:
        render_command(args)


if __name__ == "__main__":
    main()
