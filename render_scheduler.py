"""
Per-surface render scheduling and the pure layout pipeline.

A surface is any object with:
    surface_size() -> (width, height)      current box in px
    add_resize_listener(callback)          callback() on resize/orientation/viewport change
    present(cells)                         receives the list of LayoutCell ([] clears)
and optionally
    measure_content(kind) -> (w, h)        content sizer for that surface

Draw requests are coalesced to one pending tick per surface. On each tick the
surface box is read; the real draw only happens once the size has been the
same for `settle_frames` consecutive reads (or the retry cap is hit).
"""
import logging
import math
import weakref
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from content_fit import (change_bucket, decide_visibility, default_profile, derive_scale,
                         format_change, measure_baseline)
from heatmap_config import LayoutOptions, SchedulerSettings
from strip_governor import StripGovernor
from tile_model import TIMEFRAME_1D, Tile, normalize_tiles, resolve_metric
from treemap_layout import Region, partition

logger = logging.getLogger(__name__)

SIZING = "sizing"
SETTLED = "settled"


@dataclass(frozen=True)
class LayoutCell:
    symbol: str
    tile: Tile
    rect: Region            # normalised to the surface
    scale: float
    show_text: bool
    show_logo: bool
    value: Optional[float]  # resolved metric for the timeframe
    bucket: str
    display: str


def compute_layout(tiles, width, height, options=None, timeframe=TIMEFRAME_1D, profile=None, chain=None):
    """
    Pure layout: records -> [LayoutCell]. No presentation side effects.
    Empty input or a degenerate surface gives [].
    `chain` overrides options.metric_chain for metric resolution.
    """
    options = LayoutOptions.from_mapping(options)
    if chain is None:
        chain = options.metric_chain
    normalized = normalize_tiles(tiles)
    if not normalized:
        return []
    if profile is None:
        profile = default_profile(options.profile_kind)

    governor = StripGovernor.from_profile(options.policy, options.priority, profile,
                                          options.min_thickness_factor)
    placed = partition(normalized, width, height, pinned_top=options.pinned_top,
                       orientation=options.orientation, governor=governor)

    cells = []
    for tile, rect in placed:
        rect_w, rect_h = rect.w * width, rect.h * height
        scale = derive_scale(rect_w, rect_h, rect.w * rect.h, profile)
        show_text, show_logo = decide_visibility(rect_w, rect_h, tile, scale,
                                                 tile.symbol in options.priority,
                                                 options.profile_kind)
        value = resolve_metric(tile, timeframe, chain)
        cells.append(LayoutCell(
            symbol=tile.symbol,
            tile=tile,
            rect=rect,
            scale=scale,
            show_text=show_text,
            show_logo=show_logo,
            value=value,
            bucket=change_bucket(value),
            display=format_change(value),
        ))
    return cells


class FrameQueue:
    """Animation tick source for headless use: callbacks run on run_frame()."""

    def __init__(self):
        self._callbacks = []

    def __call__(self, callback):
        self._callbacks.append(callback)

    def __len__(self):
        return len(self._callbacks)

    def run_frame(self):
        # callbacks scheduled during this frame wait for the next one
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        return len(callbacks)


@dataclass(eq=False)
class SurfaceState:
    latest_tiles: List[Any] = field(default_factory=list)
    latest_timeframe: str = TIMEFRAME_1D
    latest_options: LayoutOptions = field(default_factory=LayoutOptions)
    last_width: Optional[float] = None
    last_height: Optional[float] = None
    settle_counter: int = 0
    retry_counter: int = 0
    cached_profiles: Dict[str, Any] = field(default_factory=dict)
    pending_draw: bool = False
    listeners_installed: bool = False
    phase: str = SIZING
    last_cells: List[LayoutCell] = field(default_factory=list)
    draw_count: int = 0


class RenderScheduler:

    def __init__(self, schedule=None, sizer=None, settle_frames=2, max_retries=12, size_epsilon=0.5):
        self.frames = schedule if schedule is not None else FrameQueue()
        self.sizer = sizer
        self.settle_frames = max(1, int(settle_frames))
        self.max_retries = max(0, int(max_retries))
        self.size_epsilon = size_epsilon
        # surface -> SurfaceState; an entry goes away with its surface
        self._states = weakref.WeakKeyDictionary()

    @classmethod
    def from_settings(cls, settings=None, schedule=None, sizer=None):
        settings = settings or SchedulerSettings()
        return cls(schedule=schedule, sizer=sizer, settle_frames=settings.settle_frames,
                   max_retries=settings.max_retries, size_epsilon=settings.size_epsilon)

    def state_for(self, surface):
        return self._states.get(surface)

    def __contains__(self, surface):
        return surface in self._states

    def __len__(self):
        return len(self._states)

    def render(self, surface, tiles, timeframe=TIMEFRAME_1D, options=None):
        state = self._states.get(surface)
        if state is None:
            state = self._states[surface] = SurfaceState()

        state.latest_tiles = list(tiles or [])
        state.latest_timeframe = timeframe
        state.latest_options = LayoutOptions.from_mapping(options)

        if not state.listeners_installed:
            surface_ref = weakref.ref(surface)

            def on_resize(*_):
                target = surface_ref()
                if target is not None:
                    self.request_draw(target)

            surface.add_resize_listener(on_resize)
            state.listeners_installed = True

        self.request_draw(surface)

    def request_draw(self, surface):
        """Schedule a tick unless one is already pending. Returns True if scheduled."""
        state = self._states.get(surface)
        if state is None or state.pending_draw:
            return False
        state.pending_draw = True
        surface_ref = weakref.ref(surface)
        self.frames(lambda: self._tick(surface_ref))
        return True

    def invalidate_profiles(self, surface, kind=None):
        state = self._states.get(surface)
        if state is None:
            return
        if kind is None:
            state.cached_profiles.clear()
        else:
            state.cached_profiles.pop(kind, None)
        self.request_draw(surface)

    def detach(self, surface):
        self._states.pop(surface, None)

    def _tick(self, surface_ref):
        surface = surface_ref()
        if surface is None:
            return
        state = self._states.get(surface)
        if state is None:
            return
        state.pending_draw = False

        width, height = surface.surface_size()
        changed = (
            state.last_width is None
            or abs(width - state.last_width) > self.size_epsilon
            or abs(height - state.last_height) > self.size_epsilon
        )
        state.last_width, state.last_height = width, height

        if changed:
            # this read is the first at the new size
            state.phase = SIZING
            state.settle_counter = 1
            state.retry_counter += 1
        else:
            state.settle_counter += 1

        if state.settle_counter >= self.settle_frames:
            state.phase = SETTLED
            self._draw(surface, state)
        elif state.retry_counter > self.max_retries:
            logger.debug("surface still resizing after %d reads, drawing anyway", state.retry_counter)
            self._draw(surface, state)
        else:
            self.request_draw(surface)

    def _draw(self, surface, state):
        state.retry_counter = 0
        width, height = state.last_width, state.last_height
        if not (width > 0 and height > 0 and math.isfinite(width * height)):
            cells = []
        else:
            sizer = getattr(surface, "measure_content", None) or self.sizer
            profile = measure_baseline(state.latest_options.profile_kind, sizer, state.cached_profiles)
            cells = compute_layout(state.latest_tiles, width, height, state.latest_options,
                                   state.latest_timeframe, profile)
        state.last_cells = cells
        state.draw_count += 1
        logger.debug("draw #%d: %d cell(s) at %sx%s", state.draw_count, len(cells), width, height)
        surface.present(cells)
