"""
Network Query System

Skip logic and stage filters are expressed as small declarative filters
over the network, never as code strings.

A filter is a list of rules joined by AND or OR. Each rule targets one
entity kind:
    - alter: nodes of a given type
    - ego:   the participant record
    - edge:  edges of a given type

Two evaluations are provided:
    - evaluate_filter(): does the network as a whole satisfy the filter?
      (used by skip logic)
    - filter_network(): which nodes (and edges between them) satisfy it?
      (used by stage filters)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Tuple, Union

from interview_core.network import Edge, Network, Node


class RuleType(Enum):
    """Which part of the network a rule inspects."""
    ALTER = "alter"
    EGO = "ego"
    EDGE = "edge"


class Operator(Enum):
    """
    Operators supported by filter rules.

    Every operator here compares one attribute value (`value`) against the
    rule's configured operand (`other`).
    """

    # Presence
    EXISTS = "EXISTS"
    NOT_EXISTS = "NOT_EXISTS"

    # Equality
    EXACTLY = "EXACTLY"
    NOT = "NOT"

    # Ordering (numbers, scalars, ISO dates)
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"

    # Text
    CONTAINS = "CONTAINS"
    DOES_NOT_CONTAIN = "DOES_NOT_CONTAIN"

    # Categorical membership
    INCLUDES = "INCLUDES"
    EXCLUDES = "EXCLUDES"

    # Categorical selection counts
    OPTIONS_GREATER_THAN = "OPTIONS_GREATER_THAN"
    OPTIONS_LESS_THAN = "OPTIONS_LESS_THAN"
    OPTIONS_EQUALS = "OPTIONS_EQUALS"
    OPTIONS_NOT_EQUALS = "OPTIONS_NOT_EQUALS"


class Join(Enum):
    AND = "AND"
    OR = "OR"


@dataclass(frozen=True)
class FilterRule:
    """
    A single filter rule.

    Properties:
        type: RuleType (alter, ego, edge)
        operator: Operator
        entity_type: node/edge type id (ignored for ego rules)
        attribute: variable id to test; None for type-only rules
        value: operand compared against the attribute value
        id: optional rule identifier carried from the protocol

    Example:
        "Some Person node has age > 40"

        FilterRule(
            type=RuleType.ALTER,
            entity_type="person",
            attribute="age",
            operator=Operator.GREATER_THAN,
            value=40,
        )
    """

    type: RuleType
    operator: Operator
    entity_type: Optional[str] = None
    attribute: Optional[str] = None
    value: Any = None
    id: Optional[str] = None


@dataclass(frozen=True)
class NetworkFilter:
    """A set of rules combined with a single join."""

    rules: Tuple[FilterRule, ...] = field(default_factory=tuple)
    join: Join = Join.AND

    def __call__(self, network: Network) -> bool:
        return evaluate_filter(self, network)


# A skip-logic filter may be declarative or any callable over the network
FilterLike = Union[NetworkFilter, Callable[[Network], bool]]


# =============================================================================
# VALUE PREDICATES
# =============================================================================

def _strictly_equal(value: Any, other: Any) -> bool:
    if value is None or other is None:
        return False
    # bool is an int subclass; True must not equal 1
    if isinstance(value, bool) != isinstance(other, bool):
        return False
    return value == other


def _exactly(value: Any, other: Any) -> bool:
    if isinstance(value, (list, tuple)):
        if isinstance(other, (list, tuple)):
            return sorted(map(repr, value)) == sorted(map(repr, other))
        return len(value) == 1 and _strictly_equal(value[0], other)
    return _strictly_equal(value, other)


def _comparable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _ordered(value: Any, other: Any, test: Callable[[Any, Any], bool]) -> bool:
    if value is None or other is None:
        return False
    try:
        return test(_comparable(value), _comparable(other))
    except TypeError:
        return False


def _as_list(other: Any) -> list:
    if isinstance(other, (list, tuple)):
        return list(other)
    return [other]


def _options_count(value: Any) -> Optional[int]:
    if isinstance(value, (list, tuple)):
        return len(value)
    return None


def predicate(operator: Optional[Operator]) -> Callable[[Any, Any], bool]:
    """
    Build a two-argument predicate `(value, other) -> bool` for an operator.

    Unknown or missing operators yield a predicate that is always False.
    """
    if operator is Operator.EXISTS:
        return lambda value, other=None: value is not None
    if operator is Operator.NOT_EXISTS:
        return lambda value, other=None: value is None
    if operator is Operator.EXACTLY:
        return _exactly
    if operator is Operator.NOT:
        return lambda value, other: not _exactly(value, other)
    if operator is Operator.GREATER_THAN:
        return lambda value, other: _ordered(value, other, lambda a, b: a > b)
    if operator is Operator.GREATER_THAN_OR_EQUAL:
        return lambda value, other: _ordered(value, other, lambda a, b: a >= b)
    if operator is Operator.LESS_THAN:
        return lambda value, other: _ordered(value, other, lambda a, b: a < b)
    if operator is Operator.LESS_THAN_OR_EQUAL:
        return lambda value, other: _ordered(value, other, lambda a, b: a <= b)
    if operator is Operator.CONTAINS:
        return lambda value, other: (
            value is not None and other is not None and re.search(str(other), str(value)) is not None
        )
    if operator is Operator.DOES_NOT_CONTAIN:
        return lambda value, other: (
            value is None or other is None or re.search(str(other), str(value)) is None
        )
    if operator is Operator.INCLUDES:
        return lambda value, other: (
            isinstance(value, (list, tuple)) and all(item in value for item in _as_list(other))
        )
    if operator is Operator.EXCLUDES:
        return lambda value, other: (
            isinstance(value, (list, tuple)) and not any(item in value for item in _as_list(other))
        )
    if operator is Operator.OPTIONS_GREATER_THAN:
        return lambda value, other: _ordered(_options_count(value), other, lambda a, b: a > b)
    if operator is Operator.OPTIONS_LESS_THAN:
        return lambda value, other: _ordered(_options_count(value), other, lambda a, b: a < b)
    if operator is Operator.OPTIONS_EQUALS:
        return lambda value, other: _options_count(value) is not None and _options_count(value) == other
    if operator is Operator.OPTIONS_NOT_EQUALS:
        return lambda value, other: _options_count(value) is not None and _options_count(value) != other
    return lambda value, other=None: False


# =============================================================================
# RULE EVALUATION
# =============================================================================

def _entity_matches(rule: FilterRule, entity: Union[Node, Edge]) -> bool:
    """Does a single node or edge satisfy the rule?"""
    if rule.entity_type is not None and entity.type != rule.entity_type:
        return rule.attribute is None and rule.operator is Operator.NOT_EXISTS
    if rule.attribute is None:
        return rule.operator is not Operator.NOT_EXISTS
    return predicate(rule.operator)(entity.attributes.get(rule.attribute), rule.value)


def _collection_matches(rule: FilterRule, entities: Iterable[Union[Node, Edge]]) -> bool:
    typed = [e for e in entities if rule.entity_type is None or e.type == rule.entity_type]
    if rule.attribute is None:
        if rule.operator is Operator.NOT_EXISTS:
            return len(typed) == 0
        return len(typed) > 0
    if rule.operator is Operator.NOT_EXISTS:
        # True only when no entity of the type has a value
        return all(e.attributes.get(rule.attribute) is None for e in typed)
    test = predicate(rule.operator)
    return any(test(e.attributes.get(rule.attribute), rule.value) for e in typed)


def evaluate_rule(rule: FilterRule, network: Network) -> bool:
    """Evaluate one rule against the whole network."""
    if rule.type is RuleType.EGO:
        return predicate(rule.operator)(network.ego.attributes.get(rule.attribute), rule.value)
    if rule.type is RuleType.EDGE:
        return _collection_matches(rule, network.edges)
    return _collection_matches(rule, network.nodes)


def _combine(results: Iterable[bool], join: Join) -> bool:
    if join is Join.OR:
        return any(results)
    return all(results)


def evaluate_filter(network_filter: FilterLike, network: Network) -> bool:
    """
    Does the network satisfy the filter?

    Callables are invoked directly. Empty declarative filters match.
    """
    if not isinstance(network_filter, NetworkFilter):
        return bool(network_filter(network))
    if not network_filter.rules:
        return True
    return _combine((evaluate_rule(rule, network) for rule in network_filter.rules), network_filter.join)


def filter_network(network_filter: Optional[NetworkFilter], network: Network) -> Network:
    """
    Restrict a network to the nodes that satisfy a filter.

    Alter rules are tested per node, ego rules once for the whole network,
    and edge rules by whether the node touches a matching edge. Edges are
    kept only when both endpoints survive.
    """
    if network_filter is None or not network_filter.rules:
        return network

    ego_results = {
        index: evaluate_rule(rule, network)
        for index, rule in enumerate(network_filter.rules)
        if rule.type is RuleType.EGO
    }

    def node_passes(node: Node) -> bool:
        results = []
        for index, rule in enumerate(network_filter.rules):
            if rule.type is RuleType.EGO:
                results.append(ego_results[index])
            elif rule.type is RuleType.EDGE:
                incident = [e for e in network.edges if node.uid in (e.from_, e.to)]
                results.append(_collection_matches(rule, incident))
            else:
                results.append(_entity_matches(rule, node))
        return _combine(results, network_filter.join)

    nodes = tuple(node for node in network.nodes if node_passes(node))
    kept = {node.uid for node in nodes}
    edges = tuple(edge for edge in network.edges if edge.from_ in kept and edge.to in kept)
    return replace(network, nodes=nodes, edges=edges)
