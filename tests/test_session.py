"""
Tests for the Session Store.

These tests verify:
    - Codebook-driven defaults on creation
    - Shallow-merge update semantics
    - Prompt association and detachment
    - Cascading node removal and edge toggling
    - Timestamp and finish/export bookkeeping
    - Purity of the reducer and unknown-session no-ops
"""

import pytest

from interview_core.errors import SessionError
from interview_core.examples import PERSON, build_example_protocol
from interview_core.model import Codebook, EntityDefinition, Protocol, VariableDefinition
from interview_core.network import Edge, Node
from interview_core.session import (
    AddNode,
    SessionStore,
    UpdateNode,
    UpdatePrompt,
    session_reducer,
)


@pytest.fixture
def store():
    return SessionStore(build_example_protocol())


@pytest.fixture
def session_id(store):
    sid = store.add_session(case_id="case-1", protocol_id="example")
    # Position on the name generator's first prompt
    store.update_stage(sid, 1)
    return sid


def network(store, sid):
    return store.get_session(sid).network


class TestSessionLifecycle:
    """Creating, finishing and removing sessions."""

    def test_add_session(self, store):
        """Should create a session with a fresh ego and codebook defaults."""
        sid = store.add_session(case_id="c", protocol_id="p", ego_attributes={"name": "Sam"})
        session = store.get_session(sid)
        assert session.case_id == "c"
        assert session.current_step == 0
        assert session.prompt_index == 0
        assert session.network.ego.attributes == {"name": "Sam", "age": None}
        assert session.finish_time is None

    def test_update_stage_resets_prompt(self, store, session_id):
        """Should reset the prompt index when the stage changes."""
        store.update_prompt(session_id, 1)
        store.update_stage(session_id, 2)
        session = store.get_session(session_id)
        assert (session.current_step, session.prompt_index) == (2, 0)

    def test_finish_then_edit_clears_finish(self, store, session_id):
        """Should clear finish and export times on any network mutation."""
        store.set_session_finished(session_id)
        store.set_session_exported(session_id)
        assert store.get_session(session_id).finish_time is not None
        store.add_node(session_id, {"type": PERSON}, {"name": "Ana"})
        session = store.get_session(session_id)
        assert session.finish_time is None
        assert session.export_time is None

    def test_stage_metadata(self, store, session_id):
        """Should store scratch metadata per stage index."""
        store.update_stage_metadata(session_id, 3, [["a", "b", True]])
        assert store.get_session(session_id).stage_metadata == {3: [["a", "b", True]]}

    def test_remove_session(self, store, session_id):
        """Should drop the session from the map."""
        store.remove_session(session_id)
        assert store.get_session(session_id) is None

    def test_unknown_session_is_noop(self, store):
        """Should return unchanged state for an unknown session id."""
        before = store.state
        store.update_prompt("missing", 3)
        store.remove_node("missing", "n1")
        assert store.state is before
        assert store.add_node("missing", {"type": PERSON}) is None


class TestNodes:
    """Node creation and mutation."""

    def test_add_node_defaults_every_variable(self, store, session_id):
        """Should create every codebook variable key, defaulting to None."""
        uid = store.add_node(session_id, {"type": PERSON}, {"name": "Ana"})
        node = network(store, session_id).get_node(uid)
        assert set(node.attributes) == set(store.protocol.codebook.variables_for("node", PERSON))
        assert node.attributes["name"] == "Ana"
        assert node.attributes["age"] is None

    def test_add_node_records_prompt_and_stage(self, store, session_id):
        """Should tag new nodes with the current prompt and stage."""
        uid = store.add_node(session_id, {"type": PERSON})
        node = network(store, session_id).get_node(uid)
        assert node.prompt_ids == ("close_friends",)
        assert node.stage_id == "name_generator"

    def test_update_node_merges(self, store, session_id):
        """Should merge new attributes and preserve the rest."""
        uid = store.add_node(session_id, {"type": PERSON}, {"name": "Ana", "age": 20})
        store.update_node(session_id, uid, {}, {"age": 5})
        attributes = network(store, session_id).get_node(uid).attributes
        assert attributes["age"] == 5
        assert attributes["name"] == "Ana"

    def test_update_node_with_prompt_id(self, store, session_id):
        """Should append a prompt id without duplicating it."""
        uid = store.add_node(session_id, {"type": PERSON})
        store.update_node(session_id, uid, {"prompt_id": "colleagues"})
        store.update_node(session_id, uid, {"prompt_id": "colleagues"})
        assert network(store, session_id).get_node(uid).prompt_ids == ("close_friends", "colleagues")

    def test_update_node_rejects_unknown_model_fields(self, store, session_id):
        """Should refuse to write unknown model fields."""
        uid = store.add_node(session_id, {"type": PERSON})
        with pytest.raises(SessionError):
            store.update_node(session_id, uid, {"colour": "red"})

    def test_add_node_to_prompt(self, store, session_id):
        """Should associate an existing node with the current prompt."""
        uid = store.add_node(session_id, {"type": PERSON})
        store.update_prompt(session_id, 1)
        store.add_node_to_prompt(session_id, uid, {"colleague": True})
        nodes = network(store, session_id).nodes
        assert len(nodes) == 1
        assert nodes[0].prompt_ids == ("close_friends", "colleagues")
        assert nodes[0].attributes["colleague"] is True

    def test_remove_node_from_prompt(self, store, session_id):
        """Should detach the prompt, negate its attributes, keep the node."""
        uid = store.add_node(session_id, {"type": PERSON}, {"close_friend": True})
        store.remove_node_from_prompt(session_id, uid, {"close_friend": True})
        node = network(store, session_id).get_node(uid)
        assert node is not None
        assert node.prompt_ids == ()
        assert node.attributes["close_friend"] is False

    def test_toggle_node_attributes(self, store, session_id):
        """Should remove matching keys, otherwise merge them."""
        uid = store.add_node(session_id, {"type": PERSON})
        store.toggle_node_attributes(session_id, uid, {"flag": True})
        assert network(store, session_id).get_node(uid).attributes["flag"] is True
        store.toggle_node_attributes(session_id, uid, {"flag": True})
        assert "flag" not in network(store, session_id).get_node(uid).attributes

    def test_batch_add_nodes_merge_order(self, store, session_id):
        """Should apply defaults, then node attributes, then shared data."""
        uids = store.batch_add_nodes(
            session_id,
            [{"attributes": {"name": "Ana", "age": 1}}, {"attributes": {"name": "Bo"}}],
            attribute_data={"age": 99},
            node_type=PERSON,
            default_attribute_data={"colleague": False, "name": "?"},
        )
        nodes = network(store, session_id).nodes
        assert [n.uid for n in nodes] == uids
        assert [n.attributes["name"] for n in nodes] == ["Ana", "Bo"]
        assert all(n.attributes["age"] == 99 for n in nodes)
        assert all(n.attributes["colleague"] is False for n in nodes)
        assert all(n.attributes["closeness"] is None for n in nodes)

    def test_remove_node_cascades_edges(self, store, session_id):
        """Should delete edges that reference the removed node."""
        a = store.add_node(session_id, {"type": PERSON})
        b = store.add_node(session_id, {"type": PERSON})
        c = store.add_node(session_id, {"type": PERSON})
        store.add_edge(session_id, {"type": "friend", "from_": a, "to": b})
        store.add_edge(session_id, {"type": "friend", "from_": b, "to": c})
        store.remove_node(session_id, b)
        assert network(store, session_id).edges == ()
        assert len(network(store, session_id).nodes) == 2


class TestEdgesAndEgo:
    """Edges and the ego record."""

    def test_toggle_edge_parity(self, store, session_id):
        """Should leave one edge after an odd number of toggles, none after even."""
        a = store.add_node(session_id, {"type": PERSON})
        b = store.add_node(session_id, {"type": PERSON})
        edge = {"type": "friend", "from_": a, "to": b}
        store.toggle_edge(session_id, edge)
        store.toggle_edge(session_id, edge)
        assert network(store, session_id).edges == ()
        store.toggle_edge(session_id, edge)
        edges = network(store, session_id).edges
        assert len(edges) == 1
        assert (edges[0].from_, edges[0].to, edges[0].type) == (a, b, "friend")

    def test_toggle_edge_ignores_orientation(self, store, session_id):
        """Should remove a matching edge drawn in the other direction."""
        a = store.add_node(session_id, {"type": PERSON})
        b = store.add_node(session_id, {"type": PERSON})
        store.toggle_edge(session_id, {"type": "friend", "from_": a, "to": b})
        store.toggle_edge(session_id, {"type": "friend", "from_": b, "to": a})
        assert network(store, session_id).edges == ()

    def test_edge_endpoints_validated(self, store, session_id):
        """Should reject edges to nodes that do not exist."""
        a = store.add_node(session_id, {"type": PERSON})
        with pytest.raises(SessionError):
            store.add_edge(session_id, {"type": "friend", "from_": a, "to": "ghost"})

    def test_edge_validation_can_be_disabled(self):
        """Should accept any endpoints when validation is off."""
        store = SessionStore(build_example_protocol(), validate_edge_endpoints=False)
        sid = store.add_session()
        uid = store.add_edge(sid, {"type": "friend", "from_": "x", "to": "y"})
        assert store.get_session(sid).network.get_edge(uid) is not None

    def test_update_edge_and_ego(self, store, session_id):
        """Should merge edge and ego attributes."""
        a = store.add_node(session_id, {"type": PERSON})
        b = store.add_node(session_id, {"type": PERSON})
        uid = store.add_edge(session_id, {"type": "friend", "from_": a, "to": b}, {"weight": 1})
        store.update_edge(session_id, uid, {}, {"since": 2020})
        store.update_ego(session_id, {}, {"age": 41})
        net = network(store, session_id)
        assert net.get_edge(uid).attributes == {"weight": 1, "since": 2020}
        assert net.ego.attributes["age"] == 41


class TestEncryptedVariables:
    """Encrypted variables never land in plaintext."""

    def build_store(self, encryptor=None):
        codebook = Codebook(
            node={"person": EntityDefinition(name="Person", variables={"secret": VariableDefinition(name="Secret", encrypted=True)})}
        )
        store = SessionStore(Protocol(name="p", codebook=codebook), encryptor=encryptor)
        return store, store.add_session()

    def test_redirects_to_secure_record(self):
        """Should hand the value to the encryptor and blank the attribute."""
        store, sid = self.build_store(encryptor=lambda variable, value: f"enc:{variable}:{value}")
        uid = store.add_node(sid, {"type": "person"}, {"secret": "abc"})
        node = store.get_session(sid).network.get_node(uid)
        assert node.attributes["secret"] is None
        assert node.secure_attributes_meta == {"secret": "enc:secret:abc"}

    def test_requires_encryptor(self):
        """Should refuse encrypted values without an encryptor."""
        store, sid = self.build_store()
        with pytest.raises(SessionError):
            store.add_node(sid, {"type": "person"}, {"secret": "abc"})


class TestReducer:
    """The reducer is pure."""

    def test_does_not_mutate_previous_state(self, store, session_id):
        """Should leave the previous map and session untouched."""
        before = store.state
        before_session = before[session_id]
        after = session_reducer(before, AddNode(session_id=session_id, node=Node(uid="n", type=PERSON)))
        assert before[session_id] is before_session
        assert before_session.network.nodes == ()
        assert after[session_id].network.nodes[0].uid == "n"

    def test_stamps_last_updated(self, store, session_id):
        """Should stamp last_updated from the action on network changes."""
        state = session_reducer(store.state, AddNode(session_id=session_id, node=Node(uid="n", type=PERSON)))
        action = UpdateNode(session_id=session_id, node_id="n", attribute_data={"x": 5}, timestamp="2030-01-01T00:00:00+00:00")
        state = session_reducer(state, action)
        assert state[session_id].last_updated == "2030-01-01T00:00:00+00:00"
        assert state[session_id].network.nodes[0].attributes == {"x": 5}

    def test_missing_entity_changes_nothing(self, store, session_id):
        """Should keep a finished session untouched when the target uid is gone."""
        store.set_session_finished(session_id)
        before = store.state
        notified = []
        store.subscribe(lambda previous, current, action: notified.append(action))

        store.update_node(session_id, "gone", new_attribute_data={"name": "x"})
        store.toggle_node_attributes(session_id, "gone", {"close_friend": True})
        store.update_edge(session_id, "gone", new_attribute_data={"w": 1})
        store.remove_edge(session_id, "gone")
        store.remove_node(session_id, "gone")

        assert store.state is before
        assert store.get_session(session_id).finish_time is not None
        assert notified == []

    def test_prompt_change_keeps_last_updated(self, store, session_id):
        """Should not stamp last_updated for a prompt move."""
        before = store.state[session_id].last_updated
        state = session_reducer(store.state, UpdatePrompt(session_id=session_id, prompt_index=1))
        assert state[session_id].last_updated == before

    def test_listeners_notified(self, store, session_id):
        """Should call subscribers with previous and current state."""
        seen = []
        unsubscribe = store.subscribe(lambda previous, current, action: seen.append(type(action).__name__))
        store.update_prompt(session_id, 1)
        unsubscribe()
        store.update_prompt(session_id, 0)
        assert seen == ["UpdatePrompt"]

    def test_edge_type_is_frozen(self):
        """Should build immutable entities."""
        edge = Edge(uid="e", type="friend", from_="a", to="b")
        with pytest.raises(AttributeError):
            edge.type = "rival"
