"""
Network Entities

Defines the working graph collected during an interview:
    - Nodes (alters introduced by prompts)
    - Edges (typed relationships between two nodes)
    - Ego (the participant's own record)
    - Network (root container of the three)

ARCHITECTURAL RULE:
    These objects are immutable snapshots.
    Every change produces a new object via dataclasses.replace().
    Attribute maps are never mutated in place; they are copied on write.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple, Union

if TYPE_CHECKING:
    from interview_core.model import VariableDefinition


# Property names used by sort rules and the session wire format
ATTRIBUTES_PROPERTY = "attributes"
PRIMARY_KEY_PROPERTY = "_uid"


def new_uid() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Node:
    """
    A single alter in the network.

    Properties:
        uid:
            Primary key, unique within the session.

        type:
            Codebook node type id.

        attributes:
            Variable id -> value. Every codebook variable for the type is
            present as a key from creation onward (possibly None).

        prompt_ids:
            Prompts that introduced or claimed this node. One node may be
            shared by several prompts without being duplicated.

        stage_id:
            Stage that created the node.

        secure_attributes_meta:
            Opaque side-record for encrypted variables. This package never
            looks inside it.
    """

    uid: str
    type: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    prompt_ids: Tuple[str, ...] = ()
    stage_id: Optional[str] = None
    secure_attributes_meta: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Edge:
    """
    A typed relationship between two nodes.

    `from_` and `to` hold node uids. Orientation is not significant for
    toggling: see edge_exists().
    """

    uid: str
    type: str
    from_: str
    to: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Ego:
    """The participant's own record."""

    uid: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    secure_attributes_meta: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Network:
    """
    Root container of collected entities.

    INVARIANTS:
        - Node uids are unique
        - Removing a node removes every edge that references it
    """

    ego: Ego = field(default_factory=lambda: Ego(uid=new_uid()))
    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()

    def get_node(self, uid: str) -> Optional[Node]:
        for node in self.nodes:
            if node.uid == uid:
                return node
        return None

    def get_edge(self, uid: str) -> Optional[Edge]:
        for edge in self.edges:
            if edge.uid == uid:
                return edge
        return None


Entity = Union[Node, Edge, Ego]


def edge_exists(edges: Tuple[Edge, ...], from_: str, to: str, edge_type: str) -> Optional[str]:
    """
    Find an edge of `edge_type` between two nodes, in either direction.

    Returns:
        The uid of the matching edge, or None
    """
    for edge in edges:
        if edge.type != edge_type:
            continue
        if (edge.from_ == from_ and edge.to == to) or (edge.from_ == to and edge.to == from_):
            return edge.uid
    return None


def default_attributes(variables: Mapping[str, "VariableDefinition"] | None) -> Dict[str, Any]:
    """Attribute template with every codebook variable initialised to None."""
    if not variables:
        return {}
    return {variable_id: None for variable_id in variables}


def get_entity_attributes(entity: Entity | None) -> Dict[str, Any]:
    if entity is None:
        return {}
    return entity.attributes or {}
