"""
Serialization helpers for protocols and session snapshots.

Provides JSON/YAML round-trip via an intermediate dict representation.
The dict layout uses the protocol file's camelCase keys (skipLogic,
sortOrder, promptIDs, _uid, ...), so a session snapshot posted by the
sync channel reads the same as one exported elsewhere.

This module keeps the structure explicit: one to/from pair per object.
"""
from __future__ import annotations

import json
from dataclasses import fields
from typing import Any, Dict

import yaml

from interview_core.errors import ProtocolError
from interview_core.model import (
    Codebook,
    EntityDefinition,
    EntityKind,
    Prompt,
    Protocol,
    SkipAction,
    SkipLogic,
    SortOption,
    Stage,
    StageSubject,
    StageType,
    VariableDefinition,
    VariableOption,
    VariableType,
    stage_class_for,
)
from interview_core.network import PRIMARY_KEY_PROPERTY, Edge, Ego, Network, Node
from interview_core.query import FilterRule, Join, NetworkFilter, Operator, RuleType
from interview_core.session import SessionState

SECURE_ATTRIBUTES_PROPERTY = "_secureAttributes"


# =============================================================================
# 1. FILTERS
# =============================================================================

def rule_to_dict(rule: FilterRule) -> Dict[str, Any]:
    options: Dict[str, Any] = {"operator": rule.operator.value}
    if rule.entity_type is not None:
        options["type"] = rule.entity_type
    if rule.attribute is not None:
        options["attribute"] = rule.attribute
    if rule.value is not None:
        options["value"] = rule.value
    return {"id": rule.id, "type": rule.type.value, "options": options}


def rule_from_dict(d: Dict[str, Any]) -> FilterRule:
    options = d.get("options", {})
    try:
        return FilterRule(
            type=RuleType(d["type"]),
            operator=Operator(options["operator"]),
            entity_type=options.get("type"),
            attribute=options.get("attribute"),
            value=options.get("value"),
            id=d.get("id"),
        )
    except (KeyError, ValueError) as exc:
        raise ProtocolError(f"Invalid filter rule: {d!r}") from exc


def filter_to_dict(f: NetworkFilter | None) -> Dict[str, Any] | None:
    if f is None:
        return None
    return {"join": f.join.value, "rules": [rule_to_dict(r) for r in f.rules]}


def filter_from_dict(d: Dict[str, Any] | None) -> NetworkFilter | None:
    if d is None:
        return None
    try:
        join = Join(d.get("join") or "AND")
    except ValueError as exc:
        raise ProtocolError(f"Invalid filter join: {d.get('join')!r}") from exc
    return NetworkFilter(rules=tuple(rule_from_dict(r) for r in d.get("rules", [])), join=join)


def skip_logic_to_dict(s: SkipLogic | None) -> Dict[str, Any] | None:
    if s is None:
        return None
    if not isinstance(s.filter, NetworkFilter):
        raise TypeError("Skip logic with a callable filter cannot be serialized")
    return {"action": s.action.value, "filter": filter_to_dict(s.filter)}


def skip_logic_from_dict(d: Dict[str, Any] | None) -> SkipLogic | None:
    if d is None:
        return None
    try:
        action = SkipAction(d["action"])
    except (KeyError, ValueError) as exc:
        raise ProtocolError(f"Invalid skip logic: {d!r}") from exc
    return SkipLogic(action=action, filter=filter_from_dict(d.get("filter")) or NetworkFilter())


# =============================================================================
# 2. CODEBOOK
# =============================================================================

def _option_from_dict(d: Any) -> VariableOption:
    # Options may be bare values or {value, label}
    if isinstance(d, dict):
        return VariableOption(value=d.get("value"), label=d.get("label"))
    return VariableOption(value=d)


def variable_to_dict(v: VariableDefinition) -> Dict[str, Any]:
    d: Dict[str, Any] = {"name": v.name, "type": v.type.value}
    if v.options:
        d["options"] = [{"value": o.value, "label": o.label} for o in v.options]
    if v.encrypted:
        d["encrypted"] = True
    return d


def variable_from_dict(d: Dict[str, Any]) -> VariableDefinition:
    try:
        variable_type = VariableType(d.get("type", "string"))
    except ValueError as exc:
        raise ProtocolError(f"Unknown variable type: {d.get('type')!r}") from exc
    return VariableDefinition(
        name=d.get("name", ""),
        type=variable_type,
        options=[_option_from_dict(o) for o in d.get("options", [])],
        encrypted=bool(d.get("encrypted", False)),
    )


def entity_definition_to_dict(e: EntityDefinition) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "name": e.name,
        "variables": {vid: variable_to_dict(v) for vid, v in e.variables.items()},
    }
    if e.color is not None:
        d["color"] = e.color
    return d


def entity_definition_from_dict(d: Dict[str, Any]) -> EntityDefinition:
    return EntityDefinition(
        name=d.get("name", ""),
        variables={vid: variable_from_dict(v) for vid, v in (d.get("variables") or {}).items()},
        color=d.get("color"),
    )


def codebook_to_dict(c: Codebook) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "node": {t: entity_definition_to_dict(e) for t, e in c.node.items()},
        "edge": {t: entity_definition_to_dict(e) for t, e in c.edge.items()},
    }
    if c.ego is not None:
        d["ego"] = entity_definition_to_dict(c.ego)
    return d


def codebook_from_dict(d: Dict[str, Any] | None) -> Codebook:
    d = d or {}
    return Codebook(
        node={t: entity_definition_from_dict(e) for t, e in (d.get("node") or {}).items()},
        edge={t: entity_definition_from_dict(e) for t, e in (d.get("edge") or {}).items()},
        ego=entity_definition_from_dict(d["ego"]) if d.get("ego") else None,
    )


# =============================================================================
# 3. STAGES
# =============================================================================

def _additional_attributes_from(value: Any) -> Dict[str, Any]:
    # Accepts {variable: value} or [{variable, value}, ...]
    if not value:
        return {}
    if isinstance(value, dict):
        return dict(value)
    return {item["variable"]: item.get("value") for item in value}


def prompt_to_dict(p: Prompt) -> Dict[str, Any]:
    d: Dict[str, Any] = {"id": p.id, "text": p.text}
    if p.additional_attributes:
        d["additionalAttributes"] = [{"variable": k, "value": v} for k, v in p.additional_attributes.items()]
    if p.sort_order:
        d["sortOrder"] = [{"property": s.property, "direction": s.direction} for s in p.sort_order]
    if p.variable is not None:
        d["variable"] = p.variable
    if p.create_edge is not None:
        d["createEdge"] = p.create_edge
    return d


def prompt_from_dict(d: Dict[str, Any]) -> Prompt:
    if not d.get("id"):
        raise ProtocolError(f"Prompt without id: {d!r}")
    return Prompt(
        id=d["id"],
        text=d.get("text", ""),
        additional_attributes=_additional_attributes_from(d.get("additionalAttributes")),
        sort_order=[SortOption(property=s["property"], direction=s.get("direction", "asc")) for s in d.get("sortOrder", [])],
        variable=d.get("variable"),
        create_edge=d.get("createEdge"),
    )


def subject_to_dict(s: StageSubject | None) -> Dict[str, Any] | None:
    if s is None:
        return None
    d: Dict[str, Any] = {"entity": s.entity.value}
    if s.type is not None:
        d["type"] = s.type
    return d


def subject_from_dict(d: Dict[str, Any] | None) -> StageSubject | None:
    if d is None:
        return None
    try:
        return StageSubject(entity=EntityKind(d["entity"]), type=d.get("type"))
    except (KeyError, ValueError) as exc:
        raise ProtocolError(f"Invalid stage subject: {d!r}") from exc


# Variant-specific fields: dataclass field -> protocol key
_STAGE_EXTRAS = {
    "items": "items",
    "form": "form",
    "introduction_panel": "introductionPanel",
    "panels": "panels",
    "quick_add": "quickAdd",
    "background": "background",
    "presets": "presets",
}


def stage_to_dict(s: Stage) -> Dict[str, Any]:
    names = {f.name for f in fields(s)}
    d: Dict[str, Any] = {"id": s.id, "type": s.type.value, "label": s.label}
    if s.skip_logic is not None:
        d["skipLogic"] = skip_logic_to_dict(s.skip_logic)
    if s.filter is not None:
        d["filter"] = filter_to_dict(s.filter)
    if s.behaviours:
        d["behaviours"] = s.behaviours
    if s.interview_script is not None:
        d["interviewScript"] = s.interview_script
    if "subject" in names and getattr(s, "subject") is not None:
        d["subject"] = subject_to_dict(getattr(s, "subject"))
    if "prompts" in names:
        d["prompts"] = [prompt_to_dict(p) for p in s.get_prompts()]
    for attr, key in _STAGE_EXTRAS.items():
        if attr in names and getattr(s, attr):
            d[key] = getattr(s, attr)
    return d


def stage_from_dict(d: Dict[str, Any]) -> Stage:
    """
    Build the Stage variant for a protocol stage entry.

    Raises:
        ProtocolError: missing id or a stage type outside the known set
    """
    if not d.get("id"):
        raise ProtocolError(f"Stage without id: {d!r}")
    try:
        stage_type = StageType(d["type"])
    except (KeyError, ValueError) as exc:
        raise ProtocolError(f"Unknown stage type for stage {d['id']}: {d.get('type')!r}") from exc

    cls = stage_class_for(stage_type)
    names = {f.name for f in fields(cls)}
    kwargs: Dict[str, Any] = {
        "id": d["id"],
        "label": d.get("label", ""),
        "skip_logic": skip_logic_from_dict(d.get("skipLogic")),
        "filter": filter_from_dict(d.get("filter")),
        "behaviours": d.get("behaviours") or {},
        "interview_script": d.get("interviewScript"),
        "type": stage_type,
    }
    if "subject" in names:
        kwargs["subject"] = subject_from_dict(d.get("subject"))
    if "prompts" in names:
        kwargs["prompts"] = [prompt_from_dict(p) for p in d.get("prompts", [])]
    for attr, key in _STAGE_EXTRAS.items():
        if attr in names and key in d:
            kwargs[attr] = d[key]
    return cls(**kwargs)


def protocol_to_dict(p: Protocol) -> Dict[str, Any]:
    return {
        "name": p.name,
        "codebook": codebook_to_dict(p.codebook),
        "stages": [stage_to_dict(s) for s in p.stages],
        "metadata": p.metadata,
    }


def protocol_from_dict(d: Dict[str, Any]) -> Protocol:
    return Protocol(
        name=d.get("name", ""),
        stages=[stage_from_dict(s) for s in d.get("stages", [])],
        codebook=codebook_from_dict(d.get("codebook")),
        metadata=d.get("metadata", {}),
    )


def protocol_to_json(p: Protocol) -> str:
    return json.dumps(protocol_to_dict(p), sort_keys=True)


def protocol_from_json(s: str) -> Protocol:
    return protocol_from_dict(json.loads(s))


def protocol_to_yaml(p: Protocol) -> str:
    return yaml.safe_dump(protocol_to_dict(p))


def protocol_from_yaml(s: str) -> Protocol:
    return protocol_from_dict(yaml.safe_load(s))


# =============================================================================
# 4. SESSIONS
# =============================================================================

def node_to_dict(n: Node) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        PRIMARY_KEY_PROPERTY: n.uid,
        "type": n.type,
        "attributes": dict(n.attributes),
        "promptIDs": list(n.prompt_ids),
        "stageId": n.stage_id,
    }
    if n.secure_attributes_meta is not None:
        d[SECURE_ATTRIBUTES_PROPERTY] = n.secure_attributes_meta
    return d


def node_from_dict(d: Dict[str, Any]) -> Node:
    return Node(
        uid=d[PRIMARY_KEY_PROPERTY],
        type=d["type"],
        attributes=dict(d.get("attributes") or {}),
        prompt_ids=tuple(d.get("promptIDs") or ()),
        stage_id=d.get("stageId"),
        secure_attributes_meta=d.get(SECURE_ATTRIBUTES_PROPERTY),
    )


def edge_to_dict(e: Edge) -> Dict[str, Any]:
    return {
        PRIMARY_KEY_PROPERTY: e.uid,
        "type": e.type,
        "from": e.from_,
        "to": e.to,
        "attributes": dict(e.attributes),
    }


def edge_from_dict(d: Dict[str, Any]) -> Edge:
    return Edge(
        uid=d[PRIMARY_KEY_PROPERTY],
        type=d["type"],
        from_=d["from"],
        to=d["to"],
        attributes=dict(d.get("attributes") or {}),
    )


def ego_to_dict(e: Ego) -> Dict[str, Any]:
    d: Dict[str, Any] = {PRIMARY_KEY_PROPERTY: e.uid, "attributes": dict(e.attributes)}
    if e.secure_attributes_meta is not None:
        d[SECURE_ATTRIBUTES_PROPERTY] = e.secure_attributes_meta
    return d


def ego_from_dict(d: Dict[str, Any]) -> Ego:
    return Ego(
        uid=d[PRIMARY_KEY_PROPERTY],
        attributes=dict(d.get("attributes") or {}),
        secure_attributes_meta=d.get(SECURE_ATTRIBUTES_PROPERTY),
    )


def network_to_dict(n: Network) -> Dict[str, Any]:
    return {
        "ego": ego_to_dict(n.ego),
        "nodes": [node_to_dict(x) for x in n.nodes],
        "edges": [edge_to_dict(x) for x in n.edges],
    }


def network_from_dict(d: Dict[str, Any]) -> Network:
    return Network(
        ego=ego_from_dict(d["ego"]),
        nodes=tuple(node_from_dict(x) for x in d.get("nodes", [])),
        edges=tuple(edge_from_dict(x) for x in d.get("edges", [])),
    )


def session_to_dict(s: SessionState) -> Dict[str, Any]:
    return {
        "id": s.id,
        "caseId": s.case_id,
        "protocolId": s.protocol_id,
        "currentStep": s.current_step,
        "promptIndex": s.prompt_index,
        # JSON object keys are strings
        "stageMetadata": {str(k): v for k, v in s.stage_metadata.items()},
        "startTime": s.start_time,
        "finishTime": s.finish_time,
        "exportTime": s.export_time,
        "lastUpdated": s.last_updated,
        "network": network_to_dict(s.network),
    }


def session_from_dict(d: Dict[str, Any]) -> SessionState:
    return SessionState(
        id=d["id"],
        case_id=d.get("caseId"),
        protocol_id=d.get("protocolId"),
        network=network_from_dict(d["network"]),
        current_step=d.get("currentStep", 0),
        prompt_index=d.get("promptIndex", 0),
        stage_metadata={int(k): v for k, v in (d.get("stageMetadata") or {}).items()},
        start_time=d["startTime"],
        finish_time=d.get("finishTime"),
        export_time=d.get("exportTime"),
        last_updated=d["lastUpdated"],
    )


def session_to_json(s: SessionState) -> str:
    return json.dumps(session_to_dict(s), sort_keys=True)


def session_from_json(s: str) -> SessionState:
    return session_from_dict(json.loads(s))


def session_to_yaml(s: SessionState) -> str:
    return yaml.safe_dump(session_to_dict(s))


def session_from_yaml(s: str) -> SessionState:
    return session_from_dict(yaml.safe_load(s))
