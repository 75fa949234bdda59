"""
Orientation governor for treemap strips.

Keeps strips thick enough to render their content. A strip that qualifies and
whose thickness across the band is below the readable minimum (baseline width
for a row, baseline height for a column, times the factor) gets exactly one
flip attempt; if that does not help either, it is committed as is.
"""
import logging
from collections import namedtuple

from heatmap_config import DEFAULT_MIN_THICKNESS_FACTOR, POLICY_CONSTRAIN_ALL, POLICY_PRIORITY_ONLY
from treemap_layout import ROW, flip, strip_side

logger = logging.getLogger(__name__)

# fit: strip thickness / threshold for the committed orientation (>= 1 is readable),
# None when the strip did not qualify
StripDecision = namedtuple("StripDecision", ["orientation", "flipped", "fit"])


class StripGovernor:

    def __init__(self, policy=POLICY_PRIORITY_ONLY, priority=(), min_width=0.0, min_height=0.0):
        self.policy = policy
        self.priority = frozenset(priority or ())
        self.min_width = max(0.0, float(min_width))
        self.min_height = max(0.0, float(min_height))
        self.decisions = []

    @classmethod
    def from_profile(cls, policy, priority, profile, factor=DEFAULT_MIN_THICKNESS_FACTOR):
        return cls(
            policy=policy,
            priority=priority,
            min_width=profile.baseline_width * factor,
            min_height=profile.baseline_height * factor,
        )

    def qualifies(self, tiles):
        if self.policy == POLICY_CONSTRAIN_ALL:
            return True
        return any(t.symbol in self.priority for t in tiles)

    def threshold(self, orientation):
        """Minimum readable thickness for a strip laid out with `orientation`."""
        return self.min_width if orientation == ROW else self.min_height

    def fit_ratio(self, tiles, areas, orientation, region):
        """
        Strip thickness across the band divided by the readable threshold for
        `orientation`. Below 1 means the strip is too thin.
        """
        side = strip_side(region, orientation)
        extent = region.w if orientation == ROW else region.h
        if side <= 0:
            return 0.0
        thickness = min(sum(areas) / side, extent)
        threshold = self.threshold(orientation)
        if threshold <= 0:
            return float('inf')
        return max(thickness, 0.0) / threshold

    def review(self, tiles, areas, orientation, region):
        if not self.qualifies(tiles):
            return self._record(StripDecision(orientation, False, None))

        fit = self.fit_ratio(tiles, areas, orientation, region)
        if fit >= 1:
            return self._record(StripDecision(orientation, False, fit))

        # one flip attempt, kept only if the flipped band is relatively thicker
        other = flip(orientation)
        other_fit = self.fit_ratio(tiles, areas, other, region)
        if other_fit > fit:
            decision = StripDecision(other, True, other_fit)
        else:
            decision = StripDecision(orientation, False, fit)

        if decision.fit < 1:
            logger.debug("strip %s still below readable thickness (fit %.2f), committing anyway",
                         [t.symbol for t in tiles], decision.fit)
        return self._record(decision)

    def _record(self, decision):
        self.decisions.append(decision)
        return decision
