"""Background construction of reference orbits.

Building an orbit at high precision can take seconds, so it runs on an
executor away from the interactive path. Every request gets an id that the
response echoes. A session tags its requests with a generation counter and
ignores any response that is not for the latest request.
"""

import itertools
import logging
import threading
from concurrent.futures import BrokenExecutor, Future, ProcessPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from .exceptions import TransportError
from .precision import validate_coordinate
from .reference_orbit import (
    DEFAULT_SA_ORDER,
    OrbitRequest,
    ReferenceOrbit,
    compute_request,
)
from .series import SeriesApproximation
from .view import PERTURBATION_ZOOM_THRESHOLD, ViewState, viewport_radius

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ConstructionResponse:
    id: int
    orbit: ReferenceOrbit
    sa: Optional[SeriesApproximation]


def _construct(request_id: int, request: OrbitRequest) -> ConstructionResponse:
    orbit, sa = compute_request(request)
    return ConstructionResponse(id=request_id, orbit=orbit, sa=sa)


class ReferenceOrbitClient:
    """Submits orbit constructions to a background executor.

    The default executor is a single worker process. The response arrays are
    handed to the caller as-is; the client keeps no reference to them.
    """

    def __init__(self, executor=None):
        self._executor = executor if executor is not None else ProcessPoolExecutor(max_workers=1)
        self._ids = itertools.count()
        self._pending: dict[int, Future] = {}
        self._lock = threading.Lock()
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def compute(self, request: OrbitRequest) -> Future:
        """Start building the orbit for ``request``.

        Returns:
            Future resolving to a ConstructionResponse

        Raises:
            InvalidCoordinate: A center string is malformed (checked before
                anything is submitted)
            TransportError: The client has been closed
        """
        validate_coordinate(request.center_re)
        validate_coordinate(request.center_im)

        result = Future()
        with self._lock:
            if self._closed:
                raise TransportError("client is closed")
            request_id = next(self._ids)
            self._pending[request_id] = result

        logger.debug("Dispatching orbit request %d", request_id)
        try:
            inner = self._executor.submit(_construct, request_id, request)
        except (BrokenExecutor, RuntimeError) as exc:
            self._reject_all(TransportError(f"cannot submit request: {exc}"))
            return result
        inner.add_done_callback(partial(self._on_done, request_id))
        return result

    def close(self):
        """Stop the worker and reject every pending request."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._reject_all(TransportError("worker terminated"))

    def _on_done(self, request_id: int, inner: Future):
        with self._lock:
            result = self._pending.pop(request_id, None)
        if result is None or result.done():
            return

        if inner.cancelled():
            result.set_exception(TransportError(f"request {request_id} was cancelled"))
            return
        exc = inner.exception()
        if isinstance(exc, BrokenExecutor):
            error = TransportError(f"worker failed: {exc}")
            result.set_exception(error)
            self._reject_all(error)
        elif exc is not None:
            result.set_exception(exc)
        else:
            result.set_result(inner.result())

    def _reject_all(self, error: Exception):
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for result in pending:
            if not result.done():
                result.set_exception(error)


class ReferenceOrbitSession:
    """Keeps the latest reference orbit for one viewer.

    Args:
        client: Client used to build orbits
        threshold: Zoom below which no orbit is kept
        sa_order: Series approximation order requested
        on_result: Called with each newly installed ConstructionResponse
        on_discard: Called with the response an install replaces, so its
            buffers can be released
    """

    def __init__(
        self,
        client: ReferenceOrbitClient,
        threshold: float = PERTURBATION_ZOOM_THRESHOLD,
        sa_order: int = DEFAULT_SA_ORDER,
        on_result: Optional[Callable[[ConstructionResponse], None]] = None,
        on_discard: Optional[Callable[[ConstructionResponse], None]] = None,
    ):
        self.client = client
        self.threshold = threshold
        self.sa_order = sa_order
        self.on_result = on_result
        self.on_discard = on_discard

        self._lock = threading.Lock()
        self._cache_key: Optional[tuple] = None
        self._generation = 0
        self._result: Optional[ConstructionResponse] = None

    @property
    def result(self) -> Optional[ConstructionResponse]:
        return self._result

    @property
    def generation(self) -> int:
        return self._generation

    def update(self, view: ViewState, width: int, height: int) -> Optional[Future]:
        """Request a new orbit if the view needs one.

        Returns:
            The future of the request issued, or None if nothing was issued
        """
        if view.zoom < self.threshold:
            with self._lock:
                self._cache_key = None
                # Orphan any request still in flight
                self._generation += 1
                old, self._result = self._result, None
            if old is not None:
                self._discard(old)
            return None

        key = (view.center_re, view.center_im, view.max_iterations)
        if key == self._cache_key:
            return None

        request = OrbitRequest(
            center_re=view.center_re,
            center_im=view.center_im,
            max_iterations=view.max_iterations,
            zoom=view.zoom,
            viewport_radius=viewport_radius(view.zoom, width, height),
            sa_order=self.sa_order,
        )
        future = self.client.compute(request)
        with self._lock:
            self._cache_key = key
            self._generation += 1
            generation = self._generation
        future.add_done_callback(partial(self._on_done, generation))
        return future

    def _on_done(self, generation: int, future: Future):
        if future.cancelled():
            return
        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding stale orbit for generation %d", generation)
                return
            exc = future.exception()
            if exc is not None:
                logger.error("Reference orbit computation failed: %s", exc)
                return
            old, self._result = self._result, future.result()
            new = self._result
        if old is not None:
            self._discard(old)
        if self.on_result is not None:
            self.on_result(new)

    def _discard(self, response: ConstructionResponse):
        if self.on_discard is not None:
            self.on_discard(response)
