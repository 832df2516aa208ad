"""Pan/zoom state machine reconciling gestures with programmatic moves."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol, Sequence

from .config import ViewportConfig
from .models import Position, ZoomPanState
from .projection import ResolvedProjection

_LOGGER = logging.getLogger("mapframe.viewport")

Point = tuple[float, float]
Extent = tuple[tuple[float, float], tuple[float, float]]

START = "start"
MOVE = "move"
END = "end"


@dataclass(frozen=True, slots=True)
class ZoomEvent:
    """One step of a gesture: `start`, `move`, or `end`, with its proposed transform."""

    type: str
    transform: ZoomPanState
    source_event: Any = None


@dataclass(frozen=True, slots=True)
class InputEvent:
    """Raw pointer/wheel input that triggered a gesture."""

    kind: str = "pointerdown"
    ctrl_key: bool = False
    button: int = 0


class GestureSource(Protocol):
    def connect(self, handler: Callable[[ZoomEvent], None]) -> None: ...

    def disconnect(self) -> None: ...

    def sync(self, transform: ZoomPanState) -> None: ...


@dataclass(slots=True)
class ViewportCallbacks:
    on_move_start: Callable[[Position, Any], None] | None = None
    on_move: Callable[[Position, Any], None] | None = None
    on_move_end: Callable[[Position, Any], None] | None = None
    on_error: Callable[[Exception], None] | None = None


class ViewportState(enum.Enum):
    IDLE = "idle"
    GESTURING = "gesturing"


class _TransformOrigin(enum.Enum):
    GESTURE = "gesture"
    PROGRAMMATIC = "programmatic"


def _event_attr(event: Any, name: str, default: Any) -> Any:
    if isinstance(event, Mapping):
        return event.get(name, default)
    return getattr(event, name, default)


def default_filter(event: Any) -> bool:
    """Accept input unless Ctrl is held or a non-primary button is pressed."""
    if event is None:
        return True
    return not _event_attr(event, "ctrl_key", False) and not _event_attr(event, "button", 0)


def constrain(transform: ZoomPanState, width: float, height: float, translate_extent: Extent) -> ZoomPanState:
    """Shift `transform` so the viewport stays inside `translate_extent`.

    When the extent is smaller than the viewport on an axis the content is
    centered on that axis instead.
    """
    (ex0, ey0), (ex1, ey1) = translate_extent
    k = transform.k
    dx0 = (0.0 - transform.x) / k - ex0
    dx1 = (width - transform.x) / k - ex1
    dy0 = (0.0 - transform.y) / k - ey0
    dy1 = (height - transform.y) / k - ey1
    shift_x = (dx0 + dx1) / 2 if dx1 > dx0 else (min(0.0, dx0) or max(0.0, dx1))
    shift_y = (dy0 + dy1) / 2 if dy1 > dy0 else (min(0.0, dy0) or max(0.0, dy1))
    if shift_x == 0 and shift_y == 0:
        return transform
    return ZoomPanState(x=transform.x + k * shift_x, y=transform.y + k * shift_y, k=k)


def clamp_scale(transform: ZoomPanState, width: float, height: float, scale_extent: Sequence[float]) -> ZoomPanState:
    """Clamp k into `scale_extent`, keeping the viewport center fixed."""
    low, high = scale_extent
    k = min(max(transform.k, low), high)
    if k == transform.k:
        return transform
    cx, cy = width / 2.0, height / 2.0
    px = (cx - transform.x) / transform.k
    py = (cy - transform.y) / transform.k
    return ZoomPanState(x=cx - px * k, y=cy - py * k, k=k)


def get_coords(projection: ResolvedProjection, width: float, height: float, transform: ZoomPanState) -> Point | None:
    """Geographic coordinates at the viewport center for `transform`."""
    x_offset = (width * transform.k - width) / 2
    y_offset = (height * transform.k - height) / 2
    point = (
        width / 2 - (x_offset + transform.x) / transform.k,
        height / 2 - (y_offset + transform.y) / transform.k,
    )
    return projection.invert(point)


def screen_to_map(projection: ResolvedProjection, point: Sequence[float], transform: ZoomPanState) -> Point | None:
    local = ((point[0] - transform.x) / transform.k, (point[1] - transform.y) / transform.k)
    return projection.invert(local)


def map_to_screen(projection: ResolvedProjection, coordinates: Sequence[float], transform: ZoomPanState) -> Point | None:
    projected = projection.project(coordinates)
    if projected is None:
        return None
    return (projected[0] * transform.k + transform.x, projected[1] * transform.k + transform.y)


class ViewportEngine:
    """Zoom/pan state machine.

    Gestures arrive from a `GestureSource` as start/move/end events; each
    move is clamped to the scale and translate extents and reported as a
    geographic `Position`. `set_position` applies a programmatic move through
    the same pipeline with callbacks bypassed. A programmatic move requested
    mid-gesture is held until that gesture ends; only the latest is kept.
    """

    def __init__(
        self,
        projection: ResolvedProjection,
        width: float,
        height: float,
        config: ViewportConfig | None = None,
        callbacks: ViewportCallbacks | None = None,
        gesture_source: GestureSource | None = None,
        *,
        filter_event: Callable[[Any], bool] = default_filter,
    ) -> None:
        self.projection = projection
        self.width = float(width)
        self.height = float(height)
        self.cfg = config or ViewportConfig()
        self.callbacks = callbacks or ViewportCallbacks()
        self.filter_event = filter_event
        self._source = gesture_source
        self._state = ViewportState.IDLE
        self._origin = _TransformOrigin.GESTURE
        self._transform = ZoomPanState()
        self._last_position: Position | None = None
        self._last_coords: Point = (float(self.cfg.center[0]), float(self.cfg.center[1]))
        self._pending: Position | None = None
        self._detached = False
        if gesture_source is not None:
            gesture_source.connect(self.handle)
        self.set_position(Position.create(self.cfg.center[0], self.cfg.center[1], self.cfg.zoom))

    @property
    def state(self) -> ViewportState:
        return self._state

    @property
    def bypassed(self) -> bool:
        return self._origin is _TransformOrigin.PROGRAMMATIC

    @property
    def transform(self) -> ZoomPanState:
        return self._transform

    @property
    def transform_string(self) -> str:
        return self._transform.transform_string

    @property
    def last_position(self) -> Position | None:
        return self._last_position

    @property
    def pending_position(self) -> Position | None:
        return self._pending

    @property
    def detached(self) -> bool:
        return self._detached

    def position(self) -> Position:
        """Current geographic position of the viewport center."""
        return self._position_for(self._transform)

    def get_coords(self, transform: ZoomPanState | None = None) -> Point | None:
        return get_coords(self.projection, self.width, self.height, transform or self._transform)

    def screen_to_map(self, point: Sequence[float]) -> Point | None:
        return screen_to_map(self.projection, point, self._transform)

    def map_to_screen(self, coordinates: Sequence[float]) -> Point | None:
        return map_to_screen(self.projection, coordinates, self._transform)

    def set_position(self, position: Position) -> None:
        if self._detached:
            return
        if position == self._last_position:
            return
        if self._state is ViewportState.GESTURING and not self.bypassed:
            _LOGGER.debug("Gesture in progress; queueing programmatic move to %s", position)
            self._pending = position
            return
        self._apply_programmatic(position)

    def detach(self) -> None:
        if self._detached:
            return
        self._detached = True
        self._pending = None
        if self._source is not None:
            self._source.disconnect()
        _LOGGER.debug("Viewport detached")

    def handle(self, event: ZoomEvent) -> None:
        """Entry point for gesture events."""
        if self._detached:
            return
        if event.type == START:
            self._on_start(event)
        elif event.type == MOVE:
            self._on_move(event)
        elif event.type == END:
            self._on_end(event)
        else:
            _LOGGER.warning("Ignoring unknown zoom event type %r", event.type)

    def _on_start(self, event: ZoomEvent) -> None:
        if self._state is ViewportState.GESTURING:
            return
        if not self.bypassed and not self.filter_event(event.source_event):
            _LOGGER.debug("Gesture start rejected by filter")
            return
        self._state = ViewportState.GESTURING
        if self.bypassed:
            return
        self._emit(self.callbacks.on_move_start, self.position(), event.source_event)

    def _on_move(self, event: ZoomEvent) -> None:
        if self._state is not ViewportState.GESTURING:
            return
        if not event.transform.is_finite() or event.transform.k <= 0:
            _LOGGER.warning("Ignoring non-finite zoom transform %s", event.transform)
            return
        self._set_transform(event.transform)
        if self.bypassed:
            return
        self._emit(self.callbacks.on_move, self.position(), event.source_event)

    def _on_end(self, event: ZoomEvent) -> None:
        if self._state is not ViewportState.GESTURING:
            return
        self._state = ViewportState.IDLE
        if self.bypassed:
            self._origin = _TransformOrigin.GESTURE
        else:
            position = self.position()
            self._last_position = position
            self._emit(self.callbacks.on_move_end, position, event.source_event)
        pending, self._pending = self._pending, None
        if pending is not None and pending != self._last_position and not self._detached:
            self._apply_programmatic(pending)

    def _set_transform(self, proposed: ZoomPanState) -> None:
        clamped = clamp_scale(proposed, self.width, self.height, self.cfg.scale_extent)
        self._transform = constrain(clamped, self.width, self.height, self.cfg.translate_extent)
        if self._source is not None:
            self._source.sync(self._transform)

    def _apply_programmatic(self, position: Position) -> None:
        projected = self.projection.project(position.coordinates)
        if projected is None:
            _LOGGER.warning("Position %s does not project to finite pixels; ignoring", position)
            return
        k = position.zoom
        target = ZoomPanState(
            x=self.width / 2 - projected[0] * k,
            y=self.height / 2 - projected[1] * k,
            k=k,
        )
        if not target.is_finite() or k <= 0:
            _LOGGER.warning("Position %s yields a degenerate transform; ignoring", position)
            return
        self._last_position = position
        self._origin = _TransformOrigin.PROGRAMMATIC
        for kind in (START, MOVE, END):
            self.handle(ZoomEvent(type=kind, transform=target))

    def _position_for(self, transform: ZoomPanState) -> Position:
        coords = self.get_coords(transform)
        if coords is not None:
            self._last_coords = coords
        return Position(coordinates=self._last_coords, zoom=transform.k)

    def _emit(self, callback: Callable[[Position, Any], None] | None, position: Position, source_event: Any) -> None:
        if callback is None:
            return
        try:
            callback(position, source_event)
        except Exception as exc:
            _LOGGER.exception("Viewport callback %s failed", getattr(callback, "__name__", callback))
            self._report(exc)

    def _report(self, exc: Exception) -> None:
        hook = self.callbacks.on_error
        if hook is None:
            return
        try:
            hook(exc)
        except Exception:
            _LOGGER.exception("Viewport on_error hook failed")


class ManualGestureSource:
    """In-process gesture source that emits start/move/end events on demand.

    Tracks the last transform synced back by the engine, so relative helpers
    such as `pan` and `zoom_to` compose with programmatic moves.
    """

    def __init__(self) -> None:
        self._handler: Callable[[ZoomEvent], None] | None = None
        self.transform = ZoomPanState()

    @property
    def connected(self) -> bool:
        return self._handler is not None

    def connect(self, handler: Callable[[ZoomEvent], None]) -> None:
        self._handler = handler

    def disconnect(self) -> None:
        self._handler = None

    def sync(self, transform: ZoomPanState) -> None:
        self.transform = transform

    def start(self, source_event: Any = None) -> None:
        self._dispatch(START, self.transform, source_event)

    def move(self, transform: ZoomPanState, source_event: Any = None) -> None:
        self._dispatch(MOVE, transform, source_event)

    def end(self, source_event: Any = None) -> None:
        self._dispatch(END, self.transform, source_event)

    def pan(self, dx: float, dy: float, source_event: Any = None) -> None:
        current = self.transform
        self.start(source_event)
        self.move(ZoomPanState(x=current.x + dx, y=current.y + dy, k=current.k), source_event)
        self.end(source_event)

    def zoom_to(self, k: float, source_event: Any = None) -> None:
        current = self.transform
        self.start(source_event)
        self.move(ZoomPanState(x=current.x, y=current.y, k=k), source_event)
        self.end(source_event)

    def _dispatch(self, kind: str, transform: ZoomPanState, source_event: Any) -> None:
        if self._handler is not None:
            self._handler(ZoomEvent(type=kind, transform=transform, source_event=source_event))
