"""
Tests for the network query system.

These tests verify:
    - Operator predicates, including strictness on None and bool
    - Alter, ego and edge rule evaluation
    - AND / OR joins
    - Network filtering for stage filters
"""

from interview_core.network import Edge, Ego, Network, Node
from interview_core.query import (
    FilterRule,
    Join,
    NetworkFilter,
    Operator,
    RuleType,
    evaluate_filter,
    evaluate_rule,
    filter_network,
    predicate,
)


def build_network():
    return Network(
        ego=Ego(uid="ego", attributes={"age": 30, "name": "Sam"}),
        nodes=(
            Node(uid="a", type="person", attributes={"age": 20, "tags": ["work"], "name": "Ana"}),
            Node(uid="b", type="person", attributes={"age": 50, "tags": ["work", "family"], "name": "Bo"}),
            Node(uid="c", type="venue", attributes={"name": "Cafe"}),
        ),
        edges=(Edge(uid="e1", type="friend", from_="a", to="b", attributes={"weight": 2}),),
    )


class TestPredicates:
    """Single-value operator semantics."""

    def test_exactly_is_strict(self):
        """Should not equate None, or booleans with integers."""
        exactly = predicate(Operator.EXACTLY)
        assert exactly(5, 5)
        assert not exactly(None, None)
        assert not exactly(True, 1)

    def test_exactly_lists_ignore_order(self):
        """Should compare lists as sets of values."""
        exactly = predicate(Operator.EXACTLY)
        assert exactly(["a", "b"], ["b", "a"])
        assert exactly(["a"], "a")
        assert not exactly(["a", "b"], "a")

    def test_ordering_tolerates_mixed_types(self):
        """Should answer False rather than raise on incomparable values."""
        greater = predicate(Operator.GREATER_THAN)
        assert greater(5, 3)
        assert not greater("x", 3)
        assert not greater(None, 3)

    def test_includes_and_excludes(self):
        """Should test membership in list values."""
        assert predicate(Operator.INCLUDES)(["work", "family"], ["work"])
        assert not predicate(Operator.INCLUDES)("work", "work")
        assert predicate(Operator.EXCLUDES)(["family"], "work")

    def test_contains_uses_pattern(self):
        """Should search text with a regular expression."""
        assert predicate(Operator.CONTAINS)("Annabelle", "^Ann")
        assert predicate(Operator.DOES_NOT_CONTAIN)("Bob", "^Ann")

    def test_options_counts(self):
        """Should compare the number of selected options."""
        assert predicate(Operator.OPTIONS_GREATER_THAN)(["a", "b"], 1)
        assert predicate(Operator.OPTIONS_EQUALS)(["a"], 1)
        assert not predicate(Operator.OPTIONS_EQUALS)(None, 0)

    def test_unknown_operator_is_false(self):
        """Should never match with no operator."""
        assert predicate(None)(1, 1) is False


class TestRuleEvaluation:
    """Evaluating rules against the whole network."""

    def test_alter_type_exists(self):
        """Should match when a node of the type exists."""
        network = build_network()
        assert evaluate_rule(FilterRule(type=RuleType.ALTER, operator=Operator.EXISTS, entity_type="person"), network)
        assert evaluate_rule(FilterRule(type=RuleType.ALTER, operator=Operator.NOT_EXISTS, entity_type="pet"), network)

    def test_alter_attribute_any_node(self):
        """Should match when some node of the type satisfies the predicate."""
        rule = FilterRule(
            type=RuleType.ALTER, operator=Operator.GREATER_THAN, entity_type="person", attribute="age", value=40
        )
        assert evaluate_rule(rule, build_network())

    def test_alter_attribute_not_exists(self):
        """Should match only when no node of the type has a value."""
        rule = FilterRule(type=RuleType.ALTER, operator=Operator.NOT_EXISTS, entity_type="person", attribute="age")
        partial = Network(
            nodes=(
                Node(uid="a", type="person", attributes={"age": 30}),
                Node(uid="b", type="person", attributes={"age": None}),
            )
        )
        empty = Network(nodes=(Node(uid="b", type="person", attributes={"age": None}),))
        assert not evaluate_rule(rule, partial)
        assert evaluate_rule(rule, empty)

    def test_ego_rule(self):
        """Should test the ego's attribute."""
        rule = FilterRule(type=RuleType.EGO, operator=Operator.EXACTLY, attribute="name", value="Sam")
        assert evaluate_rule(rule, build_network())

    def test_edge_rule(self):
        """Should test edges of the type."""
        rule = FilterRule(type=RuleType.EDGE, operator=Operator.EXISTS, entity_type="friend")
        assert evaluate_rule(rule, build_network())
        rule = FilterRule(type=RuleType.EDGE, operator=Operator.EXISTS, entity_type="rival")
        assert not evaluate_rule(rule, build_network())

    def test_joins(self):
        """Should combine rules with AND / OR."""
        yes = FilterRule(type=RuleType.ALTER, operator=Operator.EXISTS, entity_type="person")
        no = FilterRule(type=RuleType.ALTER, operator=Operator.EXISTS, entity_type="pet")
        network = build_network()
        assert not evaluate_filter(NetworkFilter(rules=(yes, no), join=Join.AND), network)
        assert evaluate_filter(NetworkFilter(rules=(yes, no), join=Join.OR), network)

    def test_empty_filter_matches(self):
        """Should treat an empty filter as a match."""
        assert evaluate_filter(NetworkFilter(), Network())

    def test_callable_filter(self):
        """Should call plain callables with the network."""
        assert evaluate_filter(lambda network: len(network.nodes) == 3, build_network())


class TestFilterNetwork:
    """Stage filters restrict nodes and edges."""

    def test_keeps_matching_nodes_and_their_edges(self):
        """Should keep only person nodes and edges between them."""
        people = NetworkFilter(rules=(FilterRule(type=RuleType.ALTER, operator=Operator.EXISTS, entity_type="person"),))
        filtered = filter_network(people, build_network())
        assert [n.uid for n in filtered.nodes] == ["a", "b"]
        assert [e.uid for e in filtered.edges] == ["e1"]

    def test_drops_edges_with_missing_endpoint(self):
        """Should drop edges once one endpoint is filtered out."""
        older = NetworkFilter(
            rules=(
                FilterRule(
                    type=RuleType.ALTER, operator=Operator.GREATER_THAN, entity_type="person", attribute="age", value=40
                ),
            )
        )
        filtered = filter_network(older, build_network())
        assert [n.uid for n in filtered.nodes] == ["b"]
        assert filtered.edges == ()

    def test_list_valued_rule(self):
        """Should accept rules whose operand is a list."""
        work = NetworkFilter(
            rules=(
                FilterRule(
                    type=RuleType.ALTER, operator=Operator.INCLUDES, entity_type="person", attribute="tags", value=["work"]
                ),
                FilterRule(type=RuleType.EGO, operator=Operator.EXISTS, attribute="age"),
            )
        )
        filtered = filter_network(work, build_network())
        assert [n.uid for n in filtered.nodes] == ["a", "b"]

    def test_no_filter_returns_network(self):
        """Should return the same network without a filter."""
        network = build_network()
        assert filter_network(None, network) is network
