"""
Tests for read-side projections.
"""

import pytest

from interview_core.examples import PERSON, build_example_protocol
from interview_core.model import EntityDefinition, VariableDefinition, VariableType
from interview_core.network import Node
from interview_core.selectors import (
    get_current_prompt,
    get_current_stage,
    get_network_nodes_for_other_prompts,
    get_network_nodes_for_prompt,
    get_node_label,
    get_prompt_count,
    get_sorted_nodes_for_prompt,
    get_stage_metadata,
    get_stage_node_count,
    label_logic,
)
from interview_core.session import SessionStore


@pytest.fixture
def store():
    return SessionStore(build_example_protocol())


@pytest.fixture
def session_id(store):
    sid = store.add_session()
    store.update_stage(sid, 1)
    return sid


def add_person(store, sid, **attributes):
    return store.add_node(sid, {"type": PERSON}, attributes)


class TestStageSelectors:
    """Current stage and prompt."""

    def test_current_stage_and_prompt(self, store, session_id):
        """Should resolve the stage and prompt at the session position."""
        session = store.get_session(session_id)
        protocol = store.protocol
        assert get_current_stage(protocol, session).id == "name_generator"
        assert get_current_prompt(protocol, session).id == "close_friends"
        assert get_prompt_count(protocol, session) == 2

    def test_stage_without_prompts_counts_one(self, store):
        """Should count one prompt for a stage without prompts."""
        sid = store.add_session()
        assert get_prompt_count(store.protocol, store.get_session(sid)) == 1
        assert get_current_prompt(store.protocol, store.get_session(sid)) is None

    def test_memoized_on_session_identity(self, store, session_id):
        """Should return the same projection for the same snapshot."""
        session = store.get_session(session_id)
        first = get_network_nodes_for_prompt(store.protocol, session)
        assert get_network_nodes_for_prompt(store.protocol, session) is first

    def test_stage_metadata(self, store, session_id):
        """Should read metadata for the current stage only."""
        store.update_stage_metadata(session_id, 1, {"pairs": 3})
        store.update_stage_metadata(session_id, 2, {"pairs": 9})
        assert get_stage_metadata(store.protocol, store.get_session(session_id)) == {"pairs": 3}


class TestNodesForPrompt:
    """Prompt-level node projections."""

    def test_nodes_for_prompt_and_others(self, store, session_id):
        """Should split subject nodes by current-prompt membership."""
        ana = add_person(store, session_id, name="Ana")
        store.update_prompt(session_id, 1)
        bo = add_person(store, session_id, name="Bo")
        session = store.get_session(session_id)
        assert [n.uid for n in get_network_nodes_for_prompt(store.protocol, session)] == [bo]
        assert [n.uid for n in get_network_nodes_for_other_prompts(store.protocol, session)] == [ana]
        assert get_stage_node_count(store.protocol, session) == 2

    def test_sorted_by_prompt_rules(self, store, session_id):
        """Should apply the prompt's sort order resolved against the codebook."""
        for name in ["carla", "Ana", "Émile", "bo"]:
            add_person(store, session_id, name=name)
        session = store.get_session(session_id)
        nodes = get_sorted_nodes_for_prompt(store.protocol, session)
        assert [n.attributes["name"] for n in nodes] == ["Ana", "bo", "carla", "Émile"]

    def test_sorted_with_ties_by_insertion(self, store, session_id):
        """Should break age ties by insertion order on the second prompt."""
        store.update_prompt(session_id, 1)
        first = add_person(store, session_id, name="first", age=40)
        add_person(store, session_id, name="young", age=20)
        second = add_person(store, session_id, name="second", age=40)
        add_person(store, session_id, name="unknown")
        nodes = get_sorted_nodes_for_prompt(store.protocol, store.get_session(session_id))
        assert [n.uid for n in nodes][:2] == [first, second]
        assert nodes[-1].attributes["name"] == "unknown"


class TestLabels:
    """Node labels."""

    def test_variable_called_name(self):
        """Should prefer the codebook variable named "name"."""
        definition = EntityDefinition(
            name="Person",
            variables={"v1": VariableDefinition(name="Name", type=VariableType.TEXT)},
        )
        assert label_logic(definition, {"v1": "Ana", "name": "ignored"}) == "Ana"

    def test_attribute_called_name(self):
        """Should fall back to an attribute keyed name."""
        assert label_logic(EntityDefinition(name="Person"), {"Name": "Bo"}) == "Bo"

    def test_first_text_variable(self):
        """Should use the first text variable with a value."""
        definition = EntityDefinition(
            name="Person",
            variables={
                "nick": VariableDefinition(name="Nickname", type=VariableType.TEXT),
                "age": VariableDefinition(name="Age", type=VariableType.NUMBER),
            },
        )
        assert label_logic(definition, {"nick": "Cee", "age": 3}) == "Cee"

    def test_first_string_variable(self):
        """Should treat string variables like text variables."""
        definition = EntityDefinition(
            name="Person",
            variables={"nick": VariableDefinition(name="Nickname", type=VariableType.STRING)},
        )
        assert label_logic(definition, {"nick": "Dee"}) == "Dee"

    def test_type_name_last(self):
        """Should use the type's name as a last resort."""
        assert label_logic(EntityDefinition(name="Person"), {}) == "Person"

    def test_unknown_type(self):
        """Should label nodes of unknown type generically."""
        protocol = build_example_protocol()
        assert get_node_label(protocol, Node(uid="x", type="pet")) == "Node"
