"""
Layout options, view presets and the JSON config file.

The config file lives next to the module (or next to the executable when
frozen), like the desktop app's config.json.
"""
import json
import logging
import math
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import FrozenSet, Optional, Tuple

logger = logging.getLogger(__name__)

if getattr(sys, 'frozen', False):
    CONFIG_FILE = Path(sys.executable).parent / "config.json"
else:
    CONFIG_FILE = Path(__file__).parent / "config.json"

POLICY_PRIORITY_ONLY = "priority-only"
POLICY_CONSTRAIN_ALL = "constrain-all"
POLICIES = (POLICY_PRIORITY_ONLY, POLICY_CONSTRAIN_ALL)

# Base strip orientation heuristics. See treemap_layout.base_orientation.
ORIENT_ROW_IF_WIDE = "row-if-wide"
ORIENT_COLUMN_IF_SHORT = "column-if-short"
ORIENTATIONS = (ORIENT_ROW_IF_WIDE, ORIENT_COLUMN_IF_SHORT)

PROFILE_LOGO_TEXT = "logo-text"
PROFILE_TEXT = "text"
PROFILE_KINDS = (PROFILE_LOGO_TEXT, PROFILE_TEXT)

DEFAULT_MIN_THICKNESS_FACTOR = 0.75

# camelCase keys accepted from web-style option dicts
_KEY_ALIASES = {
    "prioritySet": "priority",
    "priority_set": "priority",
    "prioritySymbols": "priority",
    "pinnedTopSymbol": "pinned_top",
    "pinned_top_symbol": "pinned_top",
    "forceTopFullWidthSymbol": "pinned_top",
    "minThicknessFactor": "min_thickness_factor",
    "profileKind": "profile_kind",
    "metricChain": "metric_chain",
    "metricFallbacks": "metric_chain",
}


@dataclass(frozen=True)
class LayoutOptions:
    policy: str = POLICY_PRIORITY_ONLY
    priority: FrozenSet[str] = frozenset()
    pinned_top: Optional[str] = None
    min_thickness_factor: float = DEFAULT_MIN_THICKNESS_FACTOR
    orientation: str = ORIENT_ROW_IF_WIDE
    profile_kind: str = PROFILE_LOGO_TEXT
    # metric keys tried in order; None uses tile_model.METRIC_FALLBACKS
    metric_chain: Optional[Tuple[str, ...]] = None

    @classmethod
    def from_mapping(cls, data):
        """
        Build options from a plain dict. Unknown keys are ignored and bad values
        fall back to the defaults with a warning; this never raises.
        """
        if isinstance(data, LayoutOptions):
            return data
        if not data:
            return cls()

        values = {}
        for key, value in dict(data).items():
            values[_KEY_ALIASES.get(key, key)] = value

        defaults = cls()
        policy = values.get("policy", defaults.policy)
        if policy not in POLICIES:
            logger.warning("Unknown layout policy %r, using %s", policy, defaults.policy)
            policy = defaults.policy

        orientation = values.get("orientation", defaults.orientation)
        if orientation not in ORIENTATIONS:
            logger.warning("Unknown orientation %r, using %s", orientation, defaults.orientation)
            orientation = defaults.orientation

        profile_kind = values.get("profile_kind", defaults.profile_kind)
        if profile_kind not in PROFILE_KINDS:
            logger.warning("Unknown profile kind %r, using %s", profile_kind, defaults.profile_kind)
            profile_kind = defaults.profile_kind

        return cls(
            policy=policy,
            priority=_symbol_set(values.get("priority")),
            pinned_top=_symbol(values.get("pinned_top")),
            min_thickness_factor=_factor(values.get("min_thickness_factor")),
            orientation=orientation,
            profile_kind=profile_kind,
            metric_chain=_chain(values.get("metric_chain")),
        )

    def merged(self, data):
        """Return a copy with the keys present in `data` overridden."""
        if not data:
            return self
        base = {
            "policy": self.policy,
            "priority": self.priority,
            "pinned_top": self.pinned_top,
            "min_thickness_factor": self.min_thickness_factor,
            "orientation": self.orientation,
            "profile_kind": self.profile_kind,
            "metric_chain": self.metric_chain,
        }
        for key, value in dict(data).items():
            base[_KEY_ALIASES.get(key, key)] = value
        return LayoutOptions.from_mapping(base)


@dataclass(frozen=True)
class SchedulerSettings:
    settle_frames: int = 2
    max_retries: int = 12
    size_epsilon: float = 0.5


def _symbol(value):
    if value is None:
        return None
    text = str(value).strip().upper()
    return text or None


def _symbol_set(value):
    if not value:
        return frozenset()
    if isinstance(value, str):
        value = [value]
    return frozenset(s for s in (_symbol(v) for v in value) if s)


def _chain(value):
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        logger.warning("metricChain %r is not a list of metric keys, using the defaults", value)
        return None
    chain = tuple(str(v).strip() for v in value if v is not None and str(v).strip())
    return chain or None


def _factor(value):
    if value is None:
        return DEFAULT_MIN_THICKNESS_FACTOR
    try:
        factor = float(value)
    except (TypeError, ValueError):
        factor = math.nan
    if not (0 < factor <= 1):
        logger.warning("minThicknessFactor %r outside (0, 1], using %s",
                       value, DEFAULT_MIN_THICKNESS_FACTOR)
        return DEFAULT_MIN_THICKNESS_FACTOR
    return factor


# [PRESETS] one entry per heatmap view
CRYPTO_PRIORITY = ("BTC", "ETH", "BNB", "XRP", "SOL", "TRX", "DOGE", "ADA")

PRESETS = {
    # plain market-cap map: tiles flow left to right, top to bottom
    "sp500": LayoutOptions(orientation=ORIENT_COLUMN_IF_SHORT),
    "sectors": LayoutOptions(profile_kind=PROFILE_TEXT),
    # priority coins must not get shoved into a strip where text is cramped
    "crypto": LayoutOptions(
        policy=POLICY_PRIORITY_ONLY,
        priority=frozenset(CRYPTO_PRIORITY),
        pinned_top="BTC",
        min_thickness_factor=1.0,
    ),
}


def load_config(path=None):
    path = Path(path) if path else CONFIG_FILE
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        logger.warning("Could not read config %s: %s", path, e)
        return {}
    if not isinstance(config, dict):
        logger.warning("Ignoring config %s: top level is not an object", path)
        return {}
    return config


def save_config(config, path=None):
    path = Path(path) if path else CONFIG_FILE
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
    except OSError as e:
        logger.warning("Could not write config %s: %s", path, e)
        return False
    return True


def options_from_config(config, view):
    """Preset for `view` overlaid with config["views"][view]."""
    options = PRESETS.get(view, LayoutOptions())
    views = (config or {}).get("views")
    overrides = views.get(view) if isinstance(views, dict) else None
    if isinstance(overrides, dict):
        options = options.merged(overrides)
    return options


def scheduler_settings(config):
    raw = (config or {}).get("scheduler")
    if not isinstance(raw, dict):
        return SchedulerSettings()
    defaults = SchedulerSettings()
    try:
        settle = max(1, int(raw.get("settle_frames", defaults.settle_frames)))
        retries = max(0, int(raw.get("max_retries", defaults.max_retries)))
        epsilon = max(0.0, float(raw.get("size_epsilon", defaults.size_epsilon)))
    except (TypeError, ValueError) as e:
        logger.warning("Bad scheduler settings %r: %s", raw, e)
        return defaults
    return replace(defaults, settle_frames=settle, max_retries=retries, size_epsilon=epsilon)
