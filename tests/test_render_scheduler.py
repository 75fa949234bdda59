"""Tests for compute_layout and the per-surface render scheduler."""

import gc
import weakref

import pytest

from heatmap_config import LayoutOptions, POLICY_CONSTRAIN_ALL
from render_scheduler import SETTLED, SIZING, FrameQueue, RenderScheduler, compute_layout
from tests.conftest import FakeSurface


def _cells_by_symbol(cells):
    return {c.symbol: c for c in cells}


class TestComputeLayout:

    def test_scenario_rects(self, scenario_records):
        cells = _cells_by_symbol(compute_layout(scenario_records, 300, 100))
        assert cells["A"].rect == pytest.approx((0, 0, 0.6, 1.0))
        assert cells["B"].rect == pytest.approx((0.6, 0, 0.25, 1.0))
        assert cells["C"].rect == pytest.approx((0.85, 0, 0.15, 1.0))

    def test_metric_resolution_and_labels(self, scenario_records):
        cells = _cells_by_symbol(compute_layout(scenario_records, 300, 100, timeframe="1D"))
        assert cells["A"].value == pytest.approx(1.25)
        assert cells["A"].bucket == "pos"
        # 1D missing: falls back to 1W
        assert cells["B"].value == pytest.approx(2.0)
        assert cells["C"].value is None
        assert cells["C"].display == "--"

    def test_weekly_timeframe(self, scenario_records):
        cells = _cells_by_symbol(compute_layout(scenario_records, 300, 100, timeframe="1W"))
        assert cells["A"].value == pytest.approx(-4.0)
        assert cells["A"].bucket == "strong-neg"

    def test_metric_chain_option(self, scenario_records):
        options = {"metricChain": ["1W"]}
        cells = _cells_by_symbol(compute_layout(scenario_records, 300, 100, options, timeframe="1D"))
        assert cells["A"].value == pytest.approx(-4.0)
        assert cells["B"].value == pytest.approx(2.0)
        # an explicit chain argument wins over the option
        cells = _cells_by_symbol(compute_layout(scenario_records, 300, 100, options, chain=("1D",)))
        assert cells["A"].value == pytest.approx(1.25)
        assert cells["B"].value is None

    @pytest.mark.parametrize("width,height", [(0, 100), (300, 0), (-1, -1)])
    def test_degenerate_surface(self, scenario_records, width, height):
        assert compute_layout(scenario_records, width, height) == []

    def test_empty_tiles(self):
        assert compute_layout([], 300, 100) == []
        assert compute_layout(None, 300, 100) == []

    def test_malformed_records_still_render(self):
        records = [{"symbol": "ok", "weight": 3}, {"weight": "lots"}, None, {"symbol": "", "weight": -2}]
        cells = compute_layout(records, 200, 100)
        assert len(cells) == 4
        assert sum(c.rect.w * c.rect.h for c in cells) == pytest.approx(1.0)

    def test_camel_case_options(self, scenario_records):
        cells = _cells_by_symbol(compute_layout(scenario_records, 300, 100, {"pinnedTopSymbol": "c"}))
        assert (cells["C"].rect.x, cells["C"].rect.y) == (0, 0)
        assert cells["C"].rect.w == pytest.approx(1.0)

    def test_priority_tiles_show_text(self):
        records = [{"symbol": "BIG", "weight": 999}, {"symbol": "ETH", "weight": 1}]
        options = LayoutOptions(priority=frozenset({"ETH"}))
        cells = _cells_by_symbol(compute_layout(records, 400, 300, options))
        assert cells["ETH"].show_text is True

    def test_deterministic(self, scenario_records):
        options = {"policy": POLICY_CONSTRAIN_ALL, "minThicknessFactor": 0.8}
        first = compute_layout(scenario_records * 4, 640, 360, options)
        second = compute_layout(scenario_records * 4, 640, 360, options)
        assert repr(first) == repr(second)


class TestStabilityGate:

    def test_draws_on_second_stable_read(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames, settle_frames=2)
        surface = FakeSurface([(100, 98), (140, 140), (140, 140)])

        scheduler.render(surface, scenario_records)
        frames.run_frame()
        frames.run_frame()
        assert surface.presented == []
        assert scheduler.state_for(surface).phase == SIZING

        frames.run_frame()
        assert len(surface.presented) == 1
        assert surface.reads == 3
        assert scheduler.state_for(surface).phase == SETTLED
        # nothing left to do
        assert frames.run_frame() == 0

    def test_sub_pixel_jitter_counts_as_stable(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames)
        surface = FakeSurface([(300, 100), (300.4, 99.7)])
        scheduler.render(surface, scenario_records)
        frames.run_frame()
        frames.run_frame()
        assert len(surface.presented) == 1

    def test_retry_cap_forces_draw(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames, settle_frames=2, max_retries=3)
        surface = FakeSurface([(100 + 10 * i, 100) for i in range(20)])
        scheduler.render(surface, scenario_records)
        for _ in range(3):
            frames.run_frame()
        assert surface.presented == []
        frames.run_frame()
        assert len(surface.presented) == 1
        assert scheduler.state_for(surface).retry_counter == 0

    def test_data_refresh_at_same_size_draws_next_tick(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames)
        surface = FakeSurface([(300, 100)])
        scheduler.render(surface, scenario_records)
        frames.run_frame()
        frames.run_frame()
        scheduler.render(surface, scenario_records[:1])
        frames.run_frame()
        assert len(surface.presented) == 2
        assert [c.symbol for c in surface.presented[-1]] == ["A"]

    def test_resize_restarts_settling(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames)
        surface = FakeSurface([(300, 100), (300, 100), (200, 100)])
        scheduler.render(surface, scenario_records)
        frames.run_frame()
        frames.run_frame()
        surface.fire_resize()
        frames.run_frame()
        assert len(surface.presented) == 1
        frames.run_frame()
        assert len(surface.presented) == 2

    def test_zero_size_surface_clears(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames)
        surface = FakeSurface([(0, 0)])
        scheduler.render(surface, scenario_records)
        frames.run_frame()
        frames.run_frame()
        assert surface.presented == [[]]


class TestCoalescing:

    def test_one_pending_tick_per_surface(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames)
        surface = FakeSurface([(300, 100)])
        scheduler.render(surface, scenario_records)
        for _ in range(5):
            assert scheduler.request_draw(surface) is False
            surface.fire_resize()
        assert len(frames) == 1

    def test_surfaces_are_independent(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames)
        one, two = FakeSurface([(300, 100)]), FakeSurface([(100, 300)])
        scheduler.render(one, scenario_records)
        scheduler.render(two, scenario_records)
        assert len(frames) == 2

    def test_latest_input_wins(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames)
        surface = FakeSurface([(300, 100)])
        scheduler.render(surface, scenario_records)
        scheduler.render(surface, scenario_records, timeframe="1W")
        frames.run_frame()
        frames.run_frame()
        assert _cells_by_symbol(surface.presented[-1])["A"].value == pytest.approx(-4.0)

    def test_metric_chain_reaches_the_draw(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames)
        surface = FakeSurface([(300, 100)])
        scheduler.render(surface, scenario_records, "1D", {"metricChain": ["1W"]})
        frames.run_frame()
        frames.run_frame()
        assert scheduler.state_for(surface).latest_options.metric_chain == ("1W",)
        cells = _cells_by_symbol(surface.presented[-1])
        assert cells["A"].value == pytest.approx(-4.0)
        assert cells["C"].value is None

    def test_listener_installed_once(self, scenario_records):
        scheduler = RenderScheduler(FrameQueue())
        surface = FakeSurface([(300, 100)])
        scheduler.render(surface, scenario_records)
        scheduler.render(surface, scenario_records)
        assert len(surface.listeners) == 1

    def test_request_draw_for_unknown_surface(self):
        scheduler = RenderScheduler(FrameQueue())
        assert scheduler.request_draw(FakeSurface([(1, 1)])) is False


class TestSurfaceState:

    def test_state_released_with_surface(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames)
        surface = FakeSurface([(300, 100)])
        scheduler.render(surface, scenario_records)
        ref = weakref.ref(surface)

        del surface
        gc.collect()
        assert ref() is None
        assert len(scheduler) == 0
        # the orphaned tick is a no-op
        frames.run_frame()

    def test_detach(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames)
        surface = FakeSurface([(300, 100)])
        scheduler.render(surface, scenario_records)
        scheduler.detach(surface)
        assert surface not in scheduler
        frames.run_frame()
        frames.run_frame()
        assert surface.presented == []

    def test_profiles_measured_once_until_invalidated(self, scenario_records):
        calls = []

        def sizer(kind):
            calls.append(kind)
            return (64, 48)

        frames = FrameQueue()
        scheduler = RenderScheduler(frames, sizer=sizer)
        surface = FakeSurface([(300, 100)])
        scheduler.render(surface, scenario_records)
        frames.run_frame(); frames.run_frame()
        scheduler.render(surface, scenario_records)
        frames.run_frame()
        assert calls == ["logo-text"]

        scheduler.invalidate_profiles(surface)
        frames.run_frame()
        assert calls == ["logo-text", "logo-text"]
        assert len(surface.presented) == 3

    def test_surface_sizer_preferred(self, scenario_records):
        frames = FrameQueue()
        scheduler = RenderScheduler(frames, sizer=lambda kind: (1, 1))
        surface = FakeSurface([(300, 100)])
        surface.measure_content = lambda kind: (90, 45)
        scheduler.render(surface, scenario_records)
        frames.run_frame(); frames.run_frame()
        profile = scheduler.state_for(surface).cached_profiles["logo-text"]
        assert (profile.baseline_width, profile.baseline_height) == (90.0, 45.0)
