"""Pytest configuration and fixtures."""

import pytest

from tile_model import Tile


class FakeSurface:
    """Surface whose size reads come from a script; the last read repeats."""

    def __init__(self, sizes):
        self.sizes = list(sizes)
        self.reads = 0
        self.listeners = []
        self.presented = []

    def surface_size(self):
        index = min(self.reads, len(self.sizes) - 1)
        self.reads += 1
        return self.sizes[index]

    def add_resize_listener(self, callback):
        self.listeners.append(callback)

    def fire_resize(self):
        for callback in self.listeners:
            callback()

    def present(self, cells):
        self.presented.append(list(cells))


def overlap_area(a, b):
    x_overlap = max(0.0, min(a.x + a.w, b.x + b.w) - max(a.x, b.x))
    y_overlap = max(0.0, min(a.y + a.h, b.y + b.h) - max(a.y, b.y))
    return x_overlap * y_overlap


def assert_tiles_container(rects, width, height, eps=1e-6):
    """Rects are in bounds, pairwise disjoint and their areas sum to the container."""
    for r in rects:
        assert r.w >= -eps and r.h >= -eps
        assert r.x >= -eps and r.y >= -eps
        assert r.x + r.w <= width + eps
        assert r.y + r.h <= height + eps
    for i, a in enumerate(rects):
        for b in rects[i + 1:]:
            assert overlap_area(a, b) < eps, f"{a} overlaps {b}"
    total = sum(r.w * r.h for r in rects)
    assert total == pytest.approx(width * height, rel=1e-9)


@pytest.fixture
def scenario_tiles():
    return [Tile("A", weight=60), Tile("B", weight=25), Tile("C", weight=15)]


@pytest.fixture
def scenario_records():
    return [
        {"symbol": "A", "weight": 60, "metrics": {"1D": 1.25, "1W": -4.0}},
        {"symbol": "B", "weight": 25, "metrics": {"1D": None, "1W": 2.0}},
        {"symbol": "C", "weight": 15, "metrics": {}},
    ]
