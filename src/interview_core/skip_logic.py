"""
Skip-Logic Evaluator: which stages are reachable given the current network.

For each stage:
    no skip_logic           -> not skipped
    action SKIP, filter hit -> skipped
    action SHOW, filter miss -> skipped

The first stage is never skipped. That guarantees a backward search always
terminates on a real stage.

The skip map is derived data: it is recomputed whenever the stage list or
the network snapshot changes identity, and never stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Sequence

from interview_core.memo import memoize_last
from interview_core.model import SkipAction, Stage
from interview_core.network import Network
from interview_core.query import evaluate_filter

SkipMap = Dict[int, bool]


def is_stage_skipped(stage: Stage, network: Network) -> bool:
    if stage.skip_logic is None:
        return False
    matched = evaluate_filter(stage.skip_logic.filter, network)
    if stage.skip_logic.action is SkipAction.SKIP:
        return matched
    return not matched


@memoize_last
def get_skip_map(stages: Sequence[Stage], network: Network) -> SkipMap:
    """Stage index -> skipped, memoized on (stages, network) identity."""
    skip_map: SkipMap = {}
    for index, stage in enumerate(stages):
        skip_map[index] = False if index == 0 else is_stage_skipped(stage, network)
    return skip_map


def next_reachable(skip_map: SkipMap, current: int) -> int:
    """Smallest index after `current` that is not skipped, else `current`."""
    for index in sorted(skip_map):
        if index > current and skip_map[index] is False:
            return index
    return current


def previous_reachable(skip_map: SkipMap, current: int) -> int:
    """Largest index before `current` that is not skipped, else `current`."""
    for index in sorted(skip_map, reverse=True):
        if index < current and skip_map[index] is False:
            return index
    return current


def is_current_step_valid(skip_map: SkipMap, current: int) -> bool:
    # Out-of-range indices are absent from the map and count as invalid
    return skip_map.get(current) is False


@dataclass(frozen=True)
class NavigableStages:
    """Reachability summary for the current position."""

    next_valid_stage_index: int
    previous_valid_stage_index: int
    is_current_step_valid: bool


def get_navigable_stages(stages: Sequence[Stage], network: Network, current: int) -> NavigableStages:
    skip_map = get_skip_map(stages, network)
    return NavigableStages(
        next_valid_stage_index=next_reachable(skip_map, current),
        previous_valid_stage_index=previous_reachable(skip_map, current),
        is_current_step_valid=is_current_step_valid(skip_map, current),
    )
