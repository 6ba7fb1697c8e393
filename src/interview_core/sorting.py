"""
Sorting Engine: deterministic ordering of collected entities.

create_sorter() turns an ordered list of SortRules into a function that
returns a sorted copy of a collection. Rules apply in strict priority:
rule i only breaks ties left by rule i-1.

Missing values always sort last, whatever the direction.

Protocol sort rules only name a property and a direction. They are
resolved against the codebook with process_protocol_sort_rule(), which
derives the comparison type and, for ordinal/categorical variables, the
option hierarchy.
"""

from __future__ import annotations

import functools
import locale
import logging
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple, Union

from interview_core.model import SortOption, VariableDefinition, VariableType
from interview_core.network import ATTRIBUTES_PROPERTY

logger = logging.getLogger(__name__)


class SortType(Enum):
    """Comparison strategies. These are NOT codebook variable types."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    HIERARCHY = "hierarchy"
    CATEGORICAL = "categorical"
    WILDCARD = "*"


WILDCARD_PROPERTY = "*"

PropertyPath = Union[str, Tuple[str, ...]]


@dataclass(frozen=True)
class SortRule:
    """
    A fully-resolved sort rule.

    Properties:
        property: Attribute name, or a path into nested data
            (e.g. ("attributes", "age"))
        direction: "asc" or "desc"
        type: SortType; None means unknown and falls back to string
        hierarchy: Ordered values for HIERARCHY / CATEGORICAL comparison
    """

    property: PropertyPath
    direction: str = "asc"
    type: Optional[SortType] = None
    hierarchy: Tuple[Any, ...] = ()


class Collator:
    """
    Locale-aware string comparison.

    Keys are cached per instance in a bounded LRU cache, so one collator
    should be shared across comparisons.
    """

    def __init__(self, cache_size: int = 4096) -> None:
        self._cached_key = functools.lru_cache(maxsize=cache_size)(self._compute_key)

    @staticmethod
    def _compute_key(value: str) -> Tuple[str, str]:
        decomposed = unicodedata.normalize("NFKD", value)
        base = "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()
        # strxfrm rejects embedded NUL characters
        return (locale.strxfrm(base.replace("\x00", "")), value)

    def sort_key(self, value: str) -> Tuple[str, str]:
        return self._cached_key(value)

    def cache_info(self) -> Any:
        return self._cached_key.cache_info()

    def compare(self, first: str, second: str) -> int:
        a = self.sort_key(first)
        b = self.sort_key(second)
        return (a > b) - (a < b)


_collator = Collator()


# =============================================================================
# VALUE ACCESS
# =============================================================================

def get_path(item: Any, path: PropertyPath, default: Any = None) -> Any:
    """Read a (possibly nested) property from a mapping or an object."""
    keys = (path,) if isinstance(path, str) else tuple(path)
    current = item
    for key in keys:
        if current is None:
            return default
        if isinstance(current, Mapping):
            current = current.get(key, default)
        else:
            current = getattr(current, key, default)
    return current


def _same_value(a: Any, b: Any) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _index_in(hierarchy: Sequence[Any], value: Any) -> Optional[int]:
    for index, candidate in enumerate(hierarchy):
        if _same_value(candidate, value):
            return index
    return None


def _to_timestamp(value: Any) -> Optional[float]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


# =============================================================================
# COMPARATORS
# =============================================================================

Decorated = Tuple[int, Any]
Comparator = Callable[[Decorated, Decorated], int]


def _natural(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _keyed(rule: SortRule, extract: Callable[[Any], Any], compare: Callable[[Any, Any], int] = _natural) -> Comparator:
    """
    Comparator over an extracted key. A None key is missing and sorts last
    in either direction.
    """
    descending = rule.direction == "desc"

    def comparator(a: Decorated, b: Decorated) -> int:
        first = extract(get_path(a[1], rule.property))
        second = extract(get_path(b[1], rule.property))
        if first is None and second is None:
            return 0
        if first is None:
            return 1
        if second is None:
            return -1
        result = compare(first, second)
        return -result if descending else result

    return comparator


def _string_key(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _number_key(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value:  # NaN
        return None
    return value


def _boolean_key(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _categorical(rule: SortRule) -> Comparator:
    """
    Compare tag arrays position by position using hierarchy indices.

    The first differing position decides. When one array runs out first the
    comparison is a tie. Empty or absent arrays sort last.
    """
    descending = rule.direction == "desc"

    def values_of(item: Any) -> List[Any]:
        value = get_path(item, rule.property)
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]

    def comparator(a: Decorated, b: Decorated) -> int:
        first = values_of(a[1])
        second = values_of(b[1])
        if not first and not second:
            return 0
        if not first:
            return 1
        if not second:
            return -1
        for position in range(min(len(first), len(second))):
            first_index = _index_in(rule.hierarchy, first[position])
            second_index = _index_in(rule.hierarchy, second[position])
            if first_index == second_index:
                continue
            # Values outside the hierarchy go to the end
            if first_index is None:
                return 1
            if second_index is None:
                return -1
            result = _natural(first_index, second_index)
            return -result if descending else result
        return 0

    return comparator


def _created_order(rule: SortRule) -> Comparator:
    descending = rule.direction == "desc"

    def comparator(a: Decorated, b: Decorated) -> int:
        result = _natural(a[0], b[0])
        return -result if descending else result

    return comparator


def get_sort_function(rule: SortRule) -> Comparator:
    """Build the comparator for a single rule."""
    if rule.property == WILDCARD_PROPERTY or rule.type is SortType.WILDCARD:
        return _created_order(rule)
    if rule.type is SortType.STRING:
        return _keyed(rule, _string_key, _collator.compare)
    if rule.type is SortType.NUMBER:
        return _keyed(rule, _number_key)
    if rule.type is SortType.BOOLEAN:
        return _keyed(rule, _boolean_key)
    if rule.type is SortType.DATE:
        return _keyed(rule, _to_timestamp)
    if rule.type is SortType.HIERARCHY:
        return _keyed(rule, lambda value: None if value is None else _index_in(rule.hierarchy, value))
    if rule.type is SortType.CATEGORICAL:
        return _categorical(rule)

    logger.warning(
        "Sort rule for %r has no recognised type (%r); sorting as string, which may give incorrect results",
        rule.property,
        rule.type,
    )
    return _keyed(rule, _string_key, _collator.compare)


def _chain(comparators: Sequence[Comparator]) -> Comparator:
    def comparator(a: Decorated, b: Decorated) -> int:
        for compare in comparators:
            result = compare(a, b)
            if result:
                return result
        return 0

    return comparator


def create_sorter(rules: Sequence[SortRule] = ()) -> Callable[[Sequence[Any]], List[Any]]:
    """
    Create a sort function for a fixed set of rules.

    The returned function never mutates its input. It returns a new list
    that is a permutation of the input. Python's sort is stable, so items
    tied on every rule keep their original order.

    Example:
        sorter = create_sorter([
            SortRule(property=("attributes", "age"), type=SortType.NUMBER, direction="desc"),
            SortRule(property="*", direction="asc"),
        ])
        ordered = sorter(nodes)
    """
    key = functools.cmp_to_key(_chain([get_sort_function(rule) for rule in rules]))

    def sorter(items: Sequence[Any]) -> List[Any]:
        decorated = list(enumerate(items))
        decorated.sort(key=key)
        return [item for _, item in decorated]

    return sorter


# =============================================================================
# PROTOCOL RULE RESOLUTION
# =============================================================================

def map_variable_type(variable_type: Union[VariableType, str]) -> SortType:
    """
    Map a codebook variable type to the comparison it sorts by.

        text, string, layout, location -> string
        number, scalar                 -> number
        boolean                        -> boolean
        datetime, date                 -> date
        ordinal                        -> hierarchy
        categorical                    -> categorical
        *                              -> wildcard
    """
    name = variable_type.value if isinstance(variable_type, VariableType) else variable_type
    if name in ("number", "scalar"):
        return SortType.NUMBER
    if name == "boolean":
        return SortType.BOOLEAN
    if name in ("datetime", "date"):
        return SortType.DATE
    if name == "ordinal":
        return SortType.HIERARCHY
    if name == "categorical":
        return SortType.CATEGORICAL
    if name == WILDCARD_PROPERTY:
        return SortType.WILDCARD
    return SortType.STRING


def _property_with_attribute_path(property_name: str) -> PropertyPath:
    # `type` is a model field on entities, not an attribute
    if property_name == "type":
        return property_name
    return (ATTRIBUTES_PROPERTY, property_name)


def process_protocol_sort_rule(
    codebook_variables: Optional[Mapping[str, VariableDefinition]],
) -> Callable[[Union[SortOption, Mapping[str, Any]]], SortRule]:
    """
    Resolve protocol sort rules against a set of codebook variables.

    Returns a function SortOption -> SortRule. Properties that do not name a
    known variable pass through unchanged (untyped).
    """
    variables = codebook_variables or {}

    def process(option: Union[SortOption, Mapping[str, Any]]) -> SortRule:
        if isinstance(option, Mapping):
            option = SortOption(property=option["property"], direction=option.get("direction", "asc"))

        definition = variables.get(option.property)
        if definition is None:
            return SortRule(property=option.property, direction=option.direction)

        sort_type = map_variable_type(definition.type)
        hierarchy: Tuple[Any, ...] = ()
        if sort_type in (SortType.HIERARCHY, SortType.CATEGORICAL):
            hierarchy = tuple(opt.value for opt in definition.options)

        return SortRule(
            property=_property_with_attribute_path(option.property),
            direction=option.direction,
            type=sort_type,
            hierarchy=hierarchy,
        )

    return process
