"""
Content fit: how big a tile's content may be drawn and what is shown.

The presentation layer supplies a sizer (any callable kind -> (w, h) in px)
that measures the unscaled content box of a profile. Measurement happens once
per profile and surface; when no sizer is available or it fails, fixed
defaults are used.
"""
import logging
import math
from collections import namedtuple

from heatmap_config import PROFILE_LOGO_TEXT, PROFILE_TEXT

logger = logging.getLogger(__name__)

RenderProfile = namedtuple("RenderProfile", ["kind", "baseline_width", "baseline_height", "measured"])

# unscaled content box in px: symbol + change line, with or without a logo
DEFAULT_BASELINES = {
    PROFILE_LOGO_TEXT: (72.0, 52.0),
    PROFILE_TEXT: (60.0, 34.0),
}

SCALE_MIN = 0.32
SCALE_MAX = 3.0
SCALE_BASE = 0.5
SCALE_K = 2.5

# visibility thresholds for non-priority tiles
TEXT_MIN_SCALE = 0.55
TEXT_MIN_W = 36
TEXT_MIN_H = 22
LOGO_MIN_PX = 14
LOGO_MIN_SCALE = 0.35
# below this nothing fits, not even a dot of text
HIDE_BELOW_PX = 8


def default_profile(kind):
    w, h = DEFAULT_BASELINES.get(kind, DEFAULT_BASELINES[PROFILE_LOGO_TEXT])
    return RenderProfile(kind, w, h, False)


def measure_baseline(kind, sizer=None, cache=None):
    """
    RenderProfile for `kind`, cached in `cache` (a dict owned by the surface).
    """
    if cache is not None and kind in cache:
        return cache[kind]

    profile = default_profile(kind)
    if sizer is not None:
        try:
            w, h = sizer(kind)
            w, h = float(w), float(h)
        except Exception as e:
            logger.warning("Content measurement for %r failed (%s), using defaults", kind, e)
        else:
            if w > 0 and h > 0 and math.isfinite(w) and math.isfinite(h):
                profile = RenderProfile(kind, w, h, True)
            else:
                logger.warning("Content measurement for %r gave %sx%s, using defaults", kind, w, h)

    if cache is not None:
        cache[kind] = profile
    return profile


def derive_scale(rect_w, rect_h, norm_area, profile):
    """
    Heuristic scale from the tile's share of the surface, tightened so the
    content box never overflows the rect.
    """
    heuristic = SCALE_BASE + SCALE_K * math.sqrt(max(0.0, norm_area))
    heuristic = max(SCALE_MIN, min(heuristic, SCALE_MAX))
    return max(0.0, min(heuristic,
                        rect_w / profile.baseline_width,
                        rect_h / profile.baseline_height))


def decide_visibility(rect_w, rect_h, tile, scale, is_priority, profile_kind):
    """Returns (show_text, show_logo)."""
    has_logo = profile_kind == PROFILE_LOGO_TEXT and bool(tile.content_ref)

    if is_priority:
        return True, has_logo and scale >= LOGO_MIN_SCALE

    if rect_w <= HIDE_BELOW_PX or rect_h <= HIDE_BELOW_PX:
        return False, False

    if scale >= TEXT_MIN_SCALE and rect_w >= TEXT_MIN_W and rect_h >= TEXT_MIN_H:
        return True, has_logo and scale >= LOGO_MIN_SCALE

    # too small for text: logo only, or nothing
    if has_logo and min(rect_w, rect_h) >= LOGO_MIN_PX:
        return False, True
    return False, False


def change_bucket(pct):
    if pct is None or (isinstance(pct, float) and math.isnan(pct)):
        return "neutral"
    if pct > 3: return "strong-pos"
    if pct > 0.5: return "pos"
    if pct < -3: return "strong-neg"
    if pct < -0.5: return "neg"
    return "neutral"


def format_change(pct):
    if pct is None or (isinstance(pct, float) and math.isnan(pct)):
        return "--"
    return f"{pct:+.2f}%"
