"""
Squarified treemap partitioner.

Splits a W x H container into one rectangle per tile, area proportional to
weight. Strips are grown greedily while the worst aspect ratio does not get
worse, an optional pinned tile takes a full-width band at the top, and an
optional governor may flip a strip's orientation once before it is committed.
"""
import logging
import math
from collections import namedtuple

from heatmap_config import ORIENT_COLUMN_IF_SHORT, ORIENT_ROW_IF_WIDE
from tile_model import coerce_weight

logger = logging.getLogger(__name__)

# Strip orientations.
# ROW: band against the left edge spanning the full height; tiles are stacked
#      top to bottom and the band consumes width.
# COLUMN: band against the top edge spanning the full width; tiles run left to
#      right and the band consumes height.
ROW = "row"
COLUMN = "column"

Region = namedtuple("Region", ["x", "y", "w", "h"])


def flip(orientation):
    return COLUMN if orientation == ROW else ROW


def strip_side(region, orientation):
    """Length of the region side a strip of this orientation is laid along."""
    return region.h if orientation == ROW else region.w


def base_orientation(region, policy=ORIENT_ROW_IF_WIDE):
    if policy == ORIENT_COLUMN_IF_SHORT:
        return COLUMN if region.h < region.w else ROW
    return ROW if region.w >= region.h else COLUMN


def normalize_sizes(sizes, width, height):
    """
    Scale sizes so that they sum to width * height.
    """
    total_size = sum(sizes)
    if total_size == 0: return []
    total_area = width * height
    return [size * total_area / total_size for size in sizes]


def worst_ratio(row, side):
    """
    Worst (furthest from 1) aspect ratio of the rectangles in `row` when the
    row is laid along a side of length `side`.
    """
    if not row: return float('inf')
    min_area = min(row)
    max_area = max(row)
    row_area = sum(row)
    if row_area == 0 or side == 0 or min_area == 0: return float('inf')

    return max((side ** 2 * max_area) / (row_area ** 2), (row_area ** 2) / (side ** 2 * min_area))


def layout_strip(row, region, orientation, fill=False):
    """
    Commit a strip of areas at the leading edge of `region`.
    Returns (rects, remaining_region). With `fill` the strip takes the whole
    region (last strip), otherwise its thickness is sum(row) / side.
    """
    side = strip_side(region, orientation)
    extent = region.w if orientation == ROW else region.h
    row_area = sum(row)
    if fill:
        thickness = extent
    else:
        thickness = min(row_area / side, extent) if side > 0 else 0

    rects = []
    offset = 0.0
    for i, area in enumerate(row):
        if i == len(row) - 1:
            # [NO-GAP] last tile takes the rounding remainder of the side
            length = side - offset
        else:
            length = area / thickness if thickness > 0 else 0
        if orientation == ROW:
            rects.append(Region(region.x, region.y + offset, thickness, length))
        else:
            rects.append(Region(region.x + offset, region.y, length, thickness))
        offset += length

    if orientation == ROW:
        rest = Region(region.x + thickness, region.y, region.w - thickness, region.h)
    else:
        rest = Region(region.x, region.y + thickness, region.w, region.h - thickness)
    return rects, rest


def _valid_size(width, height):
    try:
        return width > 0 and height > 0 and math.isfinite(width * height)
    except TypeError:
        return False


def partition_px(tiles, width, height, pinned_top=None, orientation=ORIENT_ROW_IF_WIDE, governor=None):
    """
    Pixel-space partition.
    tiles: objects with `symbol` and `weight`
    returns: [(tile, Region), ...] in placement order
    """
    if not tiles or not _valid_size(width, height):
        return []

    # [DETERMINISTIC] stable sort: equal weights keep their input order
    ordered = sorted(tiles, key=lambda t: -coerce_weight(t.weight))
    areas = normalize_sizes([coerce_weight(t.weight) for t in ordered], width, height)
    items = list(zip(ordered, areas))

    placed = []
    region = Region(0.0, 0.0, float(width), float(height))

    if pinned_top is not None:
        index = next((i for i, (t, _) in enumerate(items) if t.symbol == pinned_top), None)
        if index is not None:
            tile, area = items.pop(index)
            band = region.h if not items else min(region.h, area / region.w)
            placed.append((tile, Region(0.0, 0.0, region.w, band)))
            region = Region(0.0, band, region.w, region.h - band)

    i = 0
    strip_no = 0
    while i < len(items) and region.w > 0 and region.h > 0:
        strip_orientation = base_orientation(region, orientation)
        side = strip_side(region, strip_orientation)

        row = []
        j = i
        while j < len(items):
            candidate = row + [items[j][1]]
            # grow while the worst ratio stays the same or improves
            if worst_ratio(row, side) >= worst_ratio(candidate, side):
                row = candidate
                j += 1
            else:
                break

        members = [t for t, _ in items[i:j]]
        if governor is not None:
            decision = governor.review(members, row, strip_orientation, region)
            strip_orientation = decision.orientation

        last = j >= len(items)
        rects, region = layout_strip(row, region, strip_orientation, fill=last)
        placed.extend(zip(members, rects))
        logger.debug("strip %d: %d tile(s) as %s%s", strip_no, len(members), strip_orientation,
                     " (fills remainder)" if last else "")
        strip_no += 1
        i = j

    # region exhausted by rounding: keep one entry per tile
    for tile, _ in items[i:]:
        placed.append((tile, Region(region.x, region.y, 0.0, 0.0)))
    return placed


def partition(tiles, width, height, pinned_top=None, orientation=ORIENT_ROW_IF_WIDE, governor=None):
    """
    Same as partition_px but with rects normalised to the unit square.
    """
    placed = partition_px(tiles, width, height, pinned_top=pinned_top,
                          orientation=orientation, governor=governor)
    # [PRECISION] no rounding here; the presentation layer snaps to pixels
    return [
        (tile, Region(r.x / width, r.y / height, r.w / width, r.h / height))
        for tile, r in placed
    ]
