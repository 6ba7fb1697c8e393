"""
Read-side projections of a session.

Every selector takes (protocol, session) and is memoized on the identity
of its arguments. Session snapshots are immutable, so a projection is
recomputed exactly when the session it reads from has changed.

Selectors never modify the snapshot they read.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional

from interview_core.memo import memoize_last
from interview_core.model import EntityDefinition, EntityKind, Prompt, Protocol, Stage, StageSubject, VariableType
from interview_core.network import Network, Node, get_entity_attributes
from interview_core.query import filter_network
from interview_core.session import SessionState
from interview_core.sorting import create_sorter, process_protocol_sort_rule


@memoize_last
def get_current_stage(protocol: Protocol, session: SessionState) -> Optional[Stage]:
    return protocol.get_stage(session.current_step)


def get_stage_subject(protocol: Protocol, session: SessionState) -> Optional[StageSubject]:
    stage = get_current_stage(protocol, session)
    return stage.get_subject() if stage is not None else None


@memoize_last
def get_prompts(protocol: Protocol, session: SessionState) -> List[Prompt]:
    stage = get_current_stage(protocol, session)
    return stage.get_prompts() if stage is not None else []


def get_prompt_count(protocol: Protocol, session: SessionState) -> int:
    # No prompts still counts as one step
    stage = get_current_stage(protocol, session)
    return stage.prompt_count if stage is not None else 1


def get_current_prompt(protocol: Protocol, session: SessionState) -> Optional[Prompt]:
    prompts = get_prompts(protocol, session)
    if 0 <= session.prompt_index < len(prompts):
        return prompts[session.prompt_index]
    return None


def get_stage_metadata(protocol: Protocol, session: SessionState) -> Any:
    return session.stage_metadata.get(session.current_step)


@memoize_last
def get_filtered_network(protocol: Protocol, session: SessionState) -> Network:
    """The session network restricted by the current stage's filter."""
    stage = get_current_stage(protocol, session)
    if stage is None or stage.filter is None:
        return session.network
    return filter_network(stage.filter, session.network)


@memoize_last
def get_network_nodes_for_type(protocol: Protocol, session: SessionState) -> List[Node]:
    subject = get_stage_subject(protocol, session)
    if subject is None or subject.entity is not EntityKind.NODE:
        return []
    return [node for node in get_filtered_network(protocol, session).nodes if node.type == subject.type]


@memoize_last
def get_network_nodes_for_prompt(protocol: Protocol, session: SessionState) -> List[Node]:
    """Nodes of the stage subject's type that the current prompt claims."""
    prompt = get_current_prompt(protocol, session)
    if prompt is None:
        return []
    return [node for node in get_network_nodes_for_type(protocol, session) if prompt.id in node.prompt_ids]


@memoize_last
def get_network_nodes_for_other_prompts(protocol: Protocol, session: SessionState) -> List[Node]:
    prompt = get_current_prompt(protocol, session)
    prompt_id = prompt.id if prompt is not None else None
    return [node for node in get_network_nodes_for_type(protocol, session) if prompt_id not in node.prompt_ids]


def get_stage_node_count(protocol: Protocol, session: SessionState) -> int:
    """Nodes of the subject type claimed by any prompt of the current stage."""
    prompt_ids = {prompt.id for prompt in get_prompts(protocol, session)}
    return sum(1 for node in get_network_nodes_for_type(protocol, session) if prompt_ids.intersection(node.prompt_ids))


@memoize_last
def get_sorted_nodes_for_prompt(protocol: Protocol, session: SessionState) -> List[Node]:
    """
    Nodes for the current prompt, ordered by the prompt's sort rules.

    Rules are resolved against the codebook variables of the subject type.
    With no rules the nodes keep creation order.
    """
    nodes = get_network_nodes_for_prompt(protocol, session)
    prompt = get_current_prompt(protocol, session)
    if prompt is None or not prompt.sort_order:
        return list(nodes)

    subject = get_stage_subject(protocol, session)
    variables = protocol.codebook.variables_for("node", subject.type if subject else None)
    rules = [process_protocol_sort_rule(variables)(option) for option in prompt.sort_order]
    return create_sorter(rules)(nodes)


# =============================================================================
# LABELS
# =============================================================================

def label_logic(definition: Optional[EntityDefinition], attributes: Mapping[str, Any]) -> str:
    """
    Choose a display label for a node.

    In order:
        1. The codebook variable named "name" (any case), if set
        2. An attribute keyed "name" (any case), if set
        3. The first codebook text variable with a value
        4. The node type's name
    """
    variables = definition.variables if definition is not None else {}

    for variable_id, variable in variables.items():
        if variable.name.lower() == "name" and attributes.get(variable_id):
            return str(attributes[variable_id])

    for key, value in attributes.items():
        if key.lower() == "name" and value:
            return str(value)

    for variable_id, variable in variables.items():
        if variable.type in (VariableType.TEXT, VariableType.STRING) and attributes.get(variable_id):
            return str(attributes[variable_id])

    return definition.name if definition is not None else ""


def get_node_label(protocol: Protocol, node: Node) -> str:
    definition = protocol.codebook.node.get(node.type)
    if definition is None:
        return "Node"
    return label_logic(definition, get_entity_attributes(node))
