"""
Session Store: keyed, immutable interview sessions.

State is a mapping of session id -> SessionState. All changes go through
one dispatch path:

    SessionStore.<operation>(session_id, ...)  builds an Action
    session_reducer(state, action)            returns a new mapping

The reducer is a pure function. Anything impure (new uids, timestamps,
codebook defaults, encryption) is resolved when the action is built, so
the reducer only copies and merges.

Every network mutation clears finish_time/export_time and stamps
last_updated. Actions against an unknown session id leave state
unchanged (except AddSession, which creates one).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from interview_core.errors import SessionError
from interview_core.model import Protocol, VariableDefinition
from interview_core.network import (
    Edge,
    Ego,
    Network,
    Node,
    default_attributes,
    edge_exists,
    new_uid,
)

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SessionState:
    """
    One interview session.

    Properties:
        id: Session key
        case_id / protocol_id: The case+protocol pairing this session records
        network: Current network snapshot
        current_step: Stage index (may equal the synthetic finish stage)
        prompt_index: Prompt index within the current stage
        stage_metadata: Scratch state per stage index (census pairs, etc.)
        start_time / finish_time / export_time / last_updated: ISO timestamps
    """

    id: str
    case_id: Optional[str] = None
    protocol_id: Optional[str] = None
    network: Network = field(default_factory=Network)
    current_step: int = 0
    prompt_index: int = 0
    stage_metadata: Dict[int, Any] = field(default_factory=dict)
    start_time: str = field(default_factory=utc_now)
    finish_time: Optional[str] = None
    export_time: Optional[str] = None
    last_updated: str = field(default_factory=utc_now)


SessionMap = Mapping[str, SessionState]

# Encryptor contract: (variable_id, plaintext) -> opaque secure record
Encryptor = Callable[[str, Any], Any]


# =============================================================================
# ACTIONS
# =============================================================================

@dataclass(frozen=True)
class Action:
    session_id: str


@dataclass(frozen=True)
class AddSession(Action):
    case_id: Optional[str] = None
    protocol_id: Optional[str] = None
    ego: Ego = field(default_factory=lambda: Ego(uid=new_uid()))
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class RemoveSession(Action):
    pass


@dataclass(frozen=True)
class SetSessionFinished(Action):
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class SetSessionExported(Action):
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class UpdatePrompt(Action):
    prompt_index: int = 0


@dataclass(frozen=True)
class UpdateStage(Action):
    stage_index: int = 0


@dataclass(frozen=True)
class UpdateStageMetadata(Action):
    stage_index: int = 0
    metadata: Any = None
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class NetworkAction(Action):
    """Base for actions that change the network."""
    pass


@dataclass(frozen=True)
class AddNode(NetworkAction):
    node: Optional[Node] = None
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class BatchAddNodes(NetworkAction):
    nodes: Tuple[Node, ...] = ()
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class UpdateNode(NetworkAction):
    node_id: str = ""
    model_data: Mapping[str, Any] = field(default_factory=dict)
    attribute_data: Mapping[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class ToggleNodeAttributes(NetworkAction):
    node_id: str = ""
    attributes: Mapping[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class AddNodeToPrompt(NetworkAction):
    node_id: str = ""
    prompt_id: str = ""
    prompt_attributes: Mapping[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class RemoveNodeFromPrompt(NetworkAction):
    node_id: str = ""
    prompt_id: str = ""
    prompt_attributes: Mapping[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class RemoveNode(NetworkAction):
    node_id: str = ""
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class AddEdge(NetworkAction):
    edge: Optional[Edge] = None
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class UpdateEdge(NetworkAction):
    edge_id: str = ""
    model_data: Mapping[str, Any] = field(default_factory=dict)
    attribute_data: Mapping[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class ToggleEdge(NetworkAction):
    """Remove a matching edge (either direction) if present, else add `edge`."""
    edge: Optional[Edge] = None
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class RemoveEdge(NetworkAction):
    edge_id: str = ""
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class UpdateEgo(NetworkAction):
    model_data: Mapping[str, Any] = field(default_factory=dict)
    attribute_data: Mapping[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)


# =============================================================================
# NETWORK REDUCER
# =============================================================================

_PROMPT_ID_KEYS = ("prompt_id", "promptId")


def _append_prompt(prompt_ids: Tuple[str, ...], prompt_id: Optional[str]) -> Tuple[str, ...]:
    if not prompt_id or prompt_id in prompt_ids:
        return prompt_ids
    return prompt_ids + (prompt_id,)


def _merge_node(node: Node, model_data: Mapping[str, Any], attribute_data: Mapping[str, Any]) -> Node:
    model = {k: v for k, v in model_data.items() if k not in _PROMPT_ID_KEYS}
    prompt_id = next((model_data[k] for k in _PROMPT_ID_KEYS if model_data.get(k)), None)
    return replace(
        node,
        **model,
        prompt_ids=_append_prompt(node.prompt_ids, prompt_id),
        attributes={**node.attributes, **attribute_data},
    )


def _toggle_attributes(node: Node, attributes: Mapping[str, Any]) -> Node:
    # All pairs already present: remove those keys. Otherwise merge.
    if all(k in node.attributes and node.attributes[k] == v for k, v in attributes.items()):
        return replace(node, attributes={k: v for k, v in node.attributes.items() if k not in attributes})
    return replace(node, attributes={**node.attributes, **attributes})


def _map_nodes(network: Network, node_id: str, fn: Callable[[Node], Node]) -> Network:
    if network.get_node(node_id) is None:
        return network
    return replace(network, nodes=tuple(fn(n) if n.uid == node_id else n for n in network.nodes))


def _map_edges(network: Network, edge_id: str, fn: Callable[[Edge], Edge]) -> Network:
    if network.get_edge(edge_id) is None:
        return network
    return replace(network, edges=tuple(fn(e) if e.uid == edge_id else e for e in network.edges))


def _remove_edge(network: Network, edge_id: str) -> Network:
    if network.get_edge(edge_id) is None:
        return network
    return replace(network, edges=tuple(e for e in network.edges if e.uid != edge_id))


def network_reducer(network: Network, action: NetworkAction) -> Network:
    """
    Apply a network action to a network snapshot.

    Returns the same snapshot when the targeted node or edge is absent.
    """
    if isinstance(action, AddNode):
        return replace(network, nodes=network.nodes + (action.node,))

    if isinstance(action, BatchAddNodes):
        return replace(network, nodes=network.nodes + tuple(action.nodes))

    if isinstance(action, UpdateNode):
        return _map_nodes(network, action.node_id, lambda n: _merge_node(n, action.model_data, action.attribute_data))

    if isinstance(action, ToggleNodeAttributes):
        return _map_nodes(network, action.node_id, lambda n: _toggle_attributes(n, action.attributes))

    if isinstance(action, AddNodeToPrompt):
        return _map_nodes(
            network,
            action.node_id,
            lambda n: replace(
                n,
                attributes={**n.attributes, **action.prompt_attributes},
                prompt_ids=_append_prompt(n.prompt_ids, action.prompt_id),
            ),
        )

    if isinstance(action, RemoveNodeFromPrompt):
        negated = {k: not v for k, v in action.prompt_attributes.items()}
        return _map_nodes(
            network,
            action.node_id,
            lambda n: replace(
                n,
                attributes={**n.attributes, **negated},
                prompt_ids=tuple(p for p in n.prompt_ids if p != action.prompt_id),
            ),
        )

    if isinstance(action, RemoveNode):
        if network.get_node(action.node_id) is None:
            return network
        return replace(
            network,
            nodes=tuple(n for n in network.nodes if n.uid != action.node_id),
            edges=tuple(e for e in network.edges if action.node_id not in (e.from_, e.to)),
        )

    if isinstance(action, AddEdge):
        return replace(network, edges=network.edges + (action.edge,))

    if isinstance(action, UpdateEdge):
        return _map_edges(
            network,
            action.edge_id,
            lambda e: replace(e, **action.model_data, attributes={**e.attributes, **action.attribute_data}),
        )

    if isinstance(action, ToggleEdge):
        edge = action.edge
        existing = edge_exists(network.edges, edge.from_, edge.to, edge.type)
        if existing is not None:
            return _remove_edge(network, existing)
        return replace(network, edges=network.edges + (edge,))

    if isinstance(action, RemoveEdge):
        return _remove_edge(network, action.edge_id)

    if isinstance(action, UpdateEgo):
        ego = network.ego
        return replace(
            network,
            ego=replace(ego, **action.model_data, attributes={**ego.attributes, **action.attribute_data}),
        )

    return network


# =============================================================================
# SESSION REDUCER
# =============================================================================

def _with_session(state: SessionMap, session: SessionState) -> Dict[str, SessionState]:
    updated = dict(state)
    updated[session.id] = session
    return updated


def session_reducer(state: SessionMap, action: Action) -> SessionMap:
    """
    Pure reducer: (previous sessions, action) -> new sessions.

    Returns the same mapping object when nothing changes.
    """
    if isinstance(action, AddSession):
        session = SessionState(
            id=action.session_id,
            case_id=action.case_id,
            protocol_id=action.protocol_id,
            network=Network(ego=action.ego),
            start_time=action.timestamp,
            last_updated=action.timestamp,
        )
        return _with_session(state, session)

    session = state.get(action.session_id)
    if session is None:
        logger.debug("Ignoring %s for unknown session %s", type(action).__name__, action.session_id)
        return state

    if isinstance(action, RemoveSession):
        return {key: value for key, value in state.items() if key != action.session_id}

    if isinstance(action, NetworkAction):
        network = network_reducer(session.network, action)
        # Actions aimed at entities that no longer exist change nothing
        if network is session.network:
            return state
        return _with_session(
            state,
            replace(
                session,
                network=network,
                finish_time=None,
                export_time=None,
                last_updated=action.timestamp,
            ),
        )

    if isinstance(action, UpdatePrompt):
        return _with_session(state, replace(session, prompt_index=action.prompt_index))

    if isinstance(action, UpdateStage):
        return _with_session(state, replace(session, current_step=action.stage_index, prompt_index=0))

    if isinstance(action, UpdateStageMetadata):
        metadata = {**session.stage_metadata, action.stage_index: action.metadata}
        return _with_session(state, replace(session, stage_metadata=metadata, last_updated=action.timestamp))

    if isinstance(action, SetSessionFinished):
        return _with_session(state, replace(session, finish_time=action.timestamp, last_updated=action.timestamp))

    if isinstance(action, SetSessionExported):
        return _with_session(state, replace(session, export_time=action.timestamp, last_updated=action.timestamp))

    return state


# =============================================================================
# STORE
# =============================================================================

Listener = Callable[[SessionMap, SessionMap, Action], None]

_NODE_MODEL_FIELDS = {"type", "stage_id", "prompt_id", "promptId"}
_EDGE_MODEL_FIELDS = {"type", "from_", "to"}
_EGO_MODEL_FIELDS = {"secure_attributes_meta"}


def _check_model_fields(model_data: Mapping[str, Any], allowed: set, kind: str) -> None:
    unknown = set(model_data) - allowed
    if unknown:
        raise SessionError(f"Unknown {kind} model fields: {', '.join(sorted(unknown))}")


class SessionStore:
    """
    Keyed session store with a single dispatch path.

    Every operation takes an explicit session id. Listeners registered with
    subscribe() are called after each dispatch with (previous, current, action).

    Args:
        protocol: Protocol providing the codebook and stage/prompt ids
        sessions: Initial session snapshots
        encryptor: Callable producing opaque records for encrypted variables
        validate_edge_endpoints: Reject edges whose endpoints are not nodes
    """

    def __init__(
        self,
        protocol: Protocol,
        sessions: Optional[Iterable[SessionState]] = None,
        encryptor: Optional[Encryptor] = None,
        validate_edge_endpoints: bool = True,
    ) -> None:
        self.protocol = protocol
        self.encryptor = encryptor
        self.validate_edge_endpoints = validate_edge_endpoints
        self._state: SessionMap = {s.id: s for s in sessions or ()}
        self._listeners: List[Listener] = []

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionMap:
        return self._state

    def get_session(self, session_id: str) -> Optional[SessionState]:
        return self._state.get(session_id)

    def dispatch(self, action: Action) -> SessionMap:
        previous = self._state
        self._state = session_reducer(previous, action)
        if self._state is not previous:
            for listener in list(self._listeners):
                listener(previous, self._state, action)
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -------------------------------------------------------------------------
    # Context helpers
    # -------------------------------------------------------------------------

    def session_meta(self, session_id: str) -> Tuple[Optional[str], Optional[str]]:
        """(stage id, prompt id) at the session's current position."""
        session = self._state.get(session_id)
        if session is None:
            return None, None
        stage = self.protocol.get_stage(session.current_step)
        if stage is None:
            return None, None
        prompts = stage.get_prompts()
        prompt_id = prompts[session.prompt_index].id if 0 <= session.prompt_index < len(prompts) else None
        return stage.id, prompt_id

    def _secure(
        self, variables: Mapping[str, VariableDefinition], attributes: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
        """Move encrypted variables out of the plaintext attribute map."""
        secure: Dict[str, Any] = {}
        for variable_id, definition in variables.items():
            if not definition.encrypted or attributes.get(variable_id) is None:
                continue
            if self.encryptor is None:
                raise SessionError(f"Variable {variable_id} is encrypted but no encryptor is configured")
            secure[variable_id] = self.encryptor(variable_id, attributes[variable_id])
            attributes[variable_id] = None
        return attributes, (secure or None)

    def _require_nodes(self, session: SessionState, *node_ids: str) -> None:
        if not self.validate_edge_endpoints:
            return
        missing = [uid for uid in node_ids if session.network.get_node(uid) is None]
        if missing:
            raise SessionError(f"Edge references unknown node(s): {', '.join(missing)}")

    def _build_node(
        self,
        session_id: str,
        node_type: str,
        attributes: Mapping[str, Any],
        uid: Optional[str] = None,
    ) -> Node:
        variables = self.protocol.codebook.variables_for("node", node_type)
        merged = {**default_attributes(variables), **attributes}
        merged, secure = self._secure(variables, merged)
        stage_id, prompt_id = self.session_meta(session_id)
        return Node(
            uid=uid or new_uid(),
            type=node_type,
            attributes=merged,
            prompt_ids=(prompt_id,) if prompt_id else (),
            stage_id=stage_id,
            secure_attributes_meta=secure,
        )

    def _build_edge(self, model_data: Mapping[str, Any], attribute_data: Optional[Mapping[str, Any]]) -> Edge:
        edge_type = model_data["type"]
        variables = self.protocol.codebook.variables_for("edge", edge_type)
        return Edge(
            uid=model_data.get("uid") or new_uid(),
            type=edge_type,
            from_=model_data["from_"],
            to=model_data["to"],
            attributes={**default_attributes(variables), **(attribute_data or {})},
        )

    def _known(self, session_id: str) -> Optional[SessionState]:
        session = self._state.get(session_id)
        if session is None:
            logger.debug("No session %s; operation ignored", session_id)
        return session

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def add_session(
        self,
        case_id: Optional[str] = None,
        protocol_id: Optional[str] = None,
        ego_attributes: Optional[Mapping[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> str:
        session_id = session_id or new_uid()
        variables = self.protocol.codebook.variables_for("ego")
        ego = Ego(uid=new_uid(), attributes={**default_attributes(variables), **(ego_attributes or {})})
        self.dispatch(AddSession(session_id=session_id, case_id=case_id, protocol_id=protocol_id, ego=ego))
        return session_id

    def remove_session(self, session_id: str) -> SessionMap:
        return self.dispatch(RemoveSession(session_id=session_id))

    def set_session_finished(self, session_id: str) -> SessionMap:
        return self.dispatch(SetSessionFinished(session_id=session_id))

    def set_session_exported(self, session_id: str) -> SessionMap:
        return self.dispatch(SetSessionExported(session_id=session_id))

    def update_prompt(self, session_id: str, prompt_index: int) -> SessionMap:
        return self.dispatch(UpdatePrompt(session_id=session_id, prompt_index=prompt_index))

    def update_stage(self, session_id: str, stage_index: int) -> SessionMap:
        return self.dispatch(UpdateStage(session_id=session_id, stage_index=stage_index))

    def update_stage_metadata(self, session_id: str, stage_index: int, metadata: Any) -> SessionMap:
        return self.dispatch(UpdateStageMetadata(session_id=session_id, stage_index=stage_index, metadata=metadata))

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def add_node(
        self,
        session_id: str,
        model_data: Mapping[str, Any],
        attribute_data: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        """
        Create a node of model_data["type"].

        attribute_data is merged over the codebook template for the type.
        The node is tagged with the current stage and prompt.

        Returns:
            The new node's uid, or None if the session does not exist
        """
        if self._known(session_id) is None:
            return None
        node = self._build_node(session_id, model_data["type"], attribute_data or {}, uid=model_data.get("uid"))
        self.dispatch(AddNode(session_id=session_id, node=node))
        return node.uid

    def batch_add_nodes(
        self,
        session_id: str,
        node_list: Iterable[Mapping[str, Any]],
        attribute_data: Optional[Mapping[str, Any]] = None,
        node_type: Optional[str] = None,
        default_attribute_data: Optional[Mapping[str, Any]] = None,
    ) -> List[str]:
        """
        Bulk insert (roster or panel import).

        Each node: codebook template, then default_attribute_data, then the
        node's own "attributes", then the shared attribute_data.
        """
        if self._known(session_id) is None:
            return []
        nodes = []
        for item in node_list:
            attributes = {
                **(default_attribute_data or {}),
                **item.get("attributes", {}),
                **(attribute_data or {}),
            }
            nodes.append(
                self._build_node(session_id, item.get("type") or node_type, attributes, uid=item.get("uid"))
            )
        self.dispatch(BatchAddNodes(session_id=session_id, nodes=tuple(nodes)))
        return [node.uid for node in nodes]

    def update_node(
        self,
        session_id: str,
        node_id: str,
        new_model_data: Optional[Mapping[str, Any]] = None,
        new_attribute_data: Optional[Mapping[str, Any]] = None,
    ) -> SessionMap:
        _check_model_fields(new_model_data or {}, _NODE_MODEL_FIELDS, "node")
        return self.dispatch(
            UpdateNode(
                session_id=session_id,
                node_id=node_id,
                model_data=dict(new_model_data or {}),
                attribute_data=dict(new_attribute_data or {}),
            )
        )

    def toggle_node_attributes(self, session_id: str, node_id: str, attributes: Mapping[str, Any]) -> SessionMap:
        return self.dispatch(ToggleNodeAttributes(session_id=session_id, node_id=node_id, attributes=dict(attributes)))

    def add_node_to_prompt(
        self,
        session_id: str,
        node_id: str,
        prompt_attributes: Optional[Mapping[str, Any]] = None,
    ) -> SessionMap:
        """Associate an existing node with the current prompt."""
        _, prompt_id = self.session_meta(session_id)
        return self.dispatch(
            AddNodeToPrompt(
                session_id=session_id,
                node_id=node_id,
                prompt_id=prompt_id or "",
                prompt_attributes=dict(prompt_attributes or {}),
            )
        )

    def remove_node_from_prompt(
        self,
        session_id: str,
        node_id: str,
        prompt_attributes: Optional[Mapping[str, Any]] = None,
    ) -> SessionMap:
        """Detach a node from the current prompt; the node itself remains."""
        _, prompt_id = self.session_meta(session_id)
        return self.dispatch(
            RemoveNodeFromPrompt(
                session_id=session_id,
                node_id=node_id,
                prompt_id=prompt_id or "",
                prompt_attributes=dict(prompt_attributes or {}),
            )
        )

    def remove_node(self, session_id: str, node_id: str) -> SessionMap:
        return self.dispatch(RemoveNode(session_id=session_id, node_id=node_id))

    # -------------------------------------------------------------------------
    # Edges and ego
    # -------------------------------------------------------------------------

    def add_edge(
        self,
        session_id: str,
        model_data: Mapping[str, Any],
        attribute_data: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        session = self._known(session_id)
        if session is None:
            return None
        edge = self._build_edge(model_data, attribute_data)
        self._require_nodes(session, edge.from_, edge.to)
        self.dispatch(AddEdge(session_id=session_id, edge=edge))
        return edge.uid

    def update_edge(
        self,
        session_id: str,
        edge_id: str,
        new_model_data: Optional[Mapping[str, Any]] = None,
        new_attribute_data: Optional[Mapping[str, Any]] = None,
    ) -> SessionMap:
        _check_model_fields(new_model_data or {}, _EDGE_MODEL_FIELDS, "edge")
        return self.dispatch(
            UpdateEdge(
                session_id=session_id,
                edge_id=edge_id,
                model_data=dict(new_model_data or {}),
                attribute_data=dict(new_attribute_data or {}),
            )
        )

    def toggle_edge(
        self,
        session_id: str,
        model_data: Mapping[str, Any],
        attribute_data: Optional[Mapping[str, Any]] = None,
    ) -> SessionMap:
        """Delete the matching edge if present, otherwise create it."""
        session = self._known(session_id)
        if session is None:
            return self._state
        if not model_data.get("from_") or not model_data.get("to") or not model_data.get("type"):
            return self._state
        edge = self._build_edge(model_data, attribute_data)
        self._require_nodes(session, edge.from_, edge.to)
        return self.dispatch(ToggleEdge(session_id=session_id, edge=edge))

    def remove_edge(self, session_id: str, edge_id: str) -> SessionMap:
        return self.dispatch(RemoveEdge(session_id=session_id, edge_id=edge_id))

    def update_ego(
        self,
        session_id: str,
        new_model_data: Optional[Mapping[str, Any]] = None,
        new_attribute_data: Optional[Mapping[str, Any]] = None,
    ) -> SessionMap:
        _check_model_fields(new_model_data or {}, _EGO_MODEL_FIELDS, "ego")
        return self.dispatch(
            UpdateEgo(
                session_id=session_id,
                model_data=dict(new_model_data or {}),
                attribute_data=dict(new_attribute_data or {}),
            )
        )
