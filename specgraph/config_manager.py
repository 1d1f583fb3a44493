"""Runtime configuration for specgraph loaded from a TOML file.

Example ``.specgraph/config.toml``::

    [ask]
    neighbor_limit = 5
    snippet_count_in_answer = 2

    [ask.edge_weight]
    depends_on = 1.0
    tests = 0.8
    refines = 0.7
    impacts = 0.6
    conflicts_with = 1.2
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from . import config
from .models import EdgeType

logger = logging.getLogger(__name__)


@dataclass
class EdgeWeights:
    depends_on: float = 1.0
    tests: float = 0.8
    refines: float = 0.7
    impacts: float = 0.6
    conflicts_with: float = 1.2

    def weight(self, edge_type: EdgeType) -> float:
        return float(getattr(self, edge_type.value, 0.0))


@dataclass
class AskConfig:
    neighbor_limit: int = 5
    snippet_count_in_answer: int = 2
    edge_weight: EdgeWeights = field(default_factory=EdgeWeights)


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the entire TOML config (all sections).

    A missing file yields ``{}``; an unreadable or malformed one is
    logged and also yields ``{}``.
    """
    path = path or config.CONFIG_FILE
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}


def load_ask_config(path: Optional[Path] = None) -> AskConfig:
    """Return the ``[ask]`` section merged over defaults."""
    section = load_full_config(path).get("ask", {})
    if not isinstance(section, dict):
        return AskConfig()

    defaults = AskConfig()
    weights = EdgeWeights()
    raw_weights = section.get("edge_weight", {})
    if isinstance(raw_weights, dict):
        for edge_type in EdgeType:
            value = raw_weights.get(edge_type.value)
            if isinstance(value, (int, float)):
                setattr(weights, edge_type.value, float(value))

    return AskConfig(
        neighbor_limit=_as_int(section.get("neighbor_limit"), defaults.neighbor_limit),
        snippet_count_in_answer=_as_int(
            section.get("snippet_count_in_answer"), defaults.snippet_count_in_answer,
        ),
        edge_weight=weights,
    )


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return max(0, value)
