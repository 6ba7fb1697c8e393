"""
Core Protocol Model Objects

Defines the read-only structures an interview is driven by:
    - Codebook (entity types and their typed variables)
    - Prompts (sub-steps within a stage)
    - Skip logic (per-stage reachability predicates)
    - Stages (one screen each, as a closed set of variants)
    - Protocol (root container)

ARCHITECTURAL RULE:
    These objects:
        - Know nothing about rendering
        - Are never mutated by the engine
        - Describe structure, not interview state
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .query import FilterLike, NetworkFilter


class VariableType(Enum):
    """
    Codebook variable types.

    Both the short names and their protocol aliases are accepted
    (text/string, datetime/date, scalar/number).
    """

    STRING = "string"
    TEXT = "text"
    NUMBER = "number"
    SCALAR = "scalar"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    ORDINAL = "ordinal"
    CATEGORICAL = "categorical"
    LAYOUT = "layout"
    LOCATION = "location"


@dataclass
class VariableOption:
    """One declared option of an ordinal or categorical variable."""

    value: Any
    label: Optional[str] = None


@dataclass
class VariableDefinition:
    """
    Declares a codebook variable.

    Properties:
        name: Human-readable variable name (e.g. "age")
        type: VariableType
        options: Declared options, in protocol order (ordinal/categorical)
        encrypted: Values are redirected to the secure-attributes record
    """

    name: str
    type: VariableType = VariableType.STRING
    options: List[VariableOption] = field(default_factory=list)
    encrypted: bool = False


@dataclass
class EntityDefinition:
    """A codebook entry for one node type, edge type, or the ego."""

    name: str = ""
    variables: Dict[str, VariableDefinition] = field(default_factory=dict)
    color: Optional[str] = None


@dataclass
class Codebook:
    """
    Schema of entity types and their variables.

    node and edge are keyed by type id. ego has a single definition.
    """

    node: Dict[str, EntityDefinition] = field(default_factory=dict)
    edge: Dict[str, EntityDefinition] = field(default_factory=dict)
    ego: Optional[EntityDefinition] = None

    def variables_for(self, entity: str, entity_type: Optional[str] = None) -> Dict[str, VariableDefinition]:
        """
        Variables declared for an entity kind and type.

        Unknown kinds or types yield an empty mapping.
        """
        if entity == "ego":
            return self.ego.variables if self.ego else {}
        definitions = self.node if entity == "node" else self.edge if entity == "edge" else {}
        definition = definitions.get(entity_type) if entity_type is not None else None
        return definition.variables if definition else {}


class EntityKind(Enum):
    NODE = "node"
    EDGE = "edge"
    EGO = "ego"


@dataclass
class StageSubject:
    """What a stage collects: a node type, an edge type, or the ego."""

    entity: EntityKind
    type: Optional[str] = None


@dataclass
class SortOption:
    """A protocol-declared sort rule, before codebook resolution."""

    property: str
    direction: str = "asc"


@dataclass
class Prompt:
    """
    A sub-step within a stage.

    Prompts share their stage's interface but vary its parameters.

    Properties:
        id: Prompt identifier (recorded on nodes it introduces)
        text: Prompt text
        additional_attributes: Attribute values applied to nodes created here
        sort_order: Ordering of nodes shown for this prompt
        variable: Variable the prompt writes (bins, sociogram highlights)
        create_edge: Edge type created by this prompt (sociogram, dyad census)
    """

    id: str
    text: str = ""
    additional_attributes: Dict[str, Any] = field(default_factory=dict)
    sort_order: List[SortOption] = field(default_factory=list)
    variable: Optional[str] = None
    create_edge: Optional[str] = None


class SkipAction(Enum):
    SKIP = "SKIP"
    SHOW = "SHOW"


@dataclass
class SkipLogic:
    """
    A per-stage reachability predicate.

    SKIP: the stage is skipped when the filter matches.
    SHOW: the stage is skipped when the filter does NOT match.

    filter may be a NetworkFilter or any callable network -> bool.
    """

    action: SkipAction
    filter: FilterLike = field(default_factory=NetworkFilter)


class StageType(Enum):
    """
    The closed set of stage kinds.

    Every member must be handled by stage_class_for().
    """

    INFORMATION = "Information"
    EGO_FORM = "EgoForm"
    ALTER_FORM = "AlterForm"
    ALTER_EDGE_FORM = "AlterEdgeForm"
    NAME_GENERATOR = "NameGenerator"
    NAME_GENERATOR_QUICK_ADD = "NameGeneratorQuickAdd"
    NAME_GENERATOR_ROSTER = "NameGeneratorRoster"
    SOCIOGRAM = "Sociogram"
    DYAD_CENSUS = "DyadCensus"
    TIE_STRENGTH_CENSUS = "TieStrengthCensus"
    ORDINAL_BIN = "OrdinalBin"
    CATEGORICAL_BIN = "CategoricalBin"
    NARRATIVE = "Narrative"
    FINISH = "FinishSession"


@dataclass
class Stage:
    """
    Represents one protocol-defined screen.

    Properties:
        id:
            Unique stage identifier (recorded on nodes created here)

        label:
            Human-readable stage label

        skip_logic:
            Optional SkipLogic deciding whether the stage is reachable
            given the current network

        filter:
            Optional NetworkFilter restricting which entities the stage shows

        behaviours:
            Free-form behaviour flags (e.g. minNodes, maxNodes, freeDraw)

    ARCHITECTURAL RULE:
        skip_logic is about reaching the stage.
        filter is about what the stage displays.
        These are separate concerns.
    """

    id: str
    label: str = ""
    skip_logic: Optional[SkipLogic] = None
    filter: Optional[NetworkFilter] = None
    behaviours: Dict[str, Any] = field(default_factory=dict)
    interview_script: Optional[str] = None
    type: StageType = StageType.INFORMATION

    def get_prompts(self) -> List[Prompt]:
        return []

    def get_subject(self) -> Optional[StageSubject]:
        return None

    @property
    def prompt_count(self) -> int:
        # A stage without prompts still has one implicit step
        return len(self.get_prompts()) or 1


@dataclass
class InformationStage(Stage):
    items: List[Dict[str, Any]] = field(default_factory=list)
    type: StageType = StageType.INFORMATION


@dataclass
class EgoFormStage(Stage):
    form: Dict[str, Any] = field(default_factory=dict)
    introduction_panel: Dict[str, Any] = field(default_factory=dict)
    type: StageType = StageType.EGO_FORM

    def get_subject(self) -> Optional[StageSubject]:
        return StageSubject(entity=EntityKind.EGO)


@dataclass
class SubjectStage(Stage):
    """A stage about one node or edge type."""

    subject: Optional[StageSubject] = None

    def get_subject(self) -> Optional[StageSubject]:
        return self.subject


@dataclass
class FormStage(SubjectStage):
    """
    AlterForm / AlterEdgeForm.

    One slide per matching entity, which is larger than the declared prompt
    count; these stages drive their sub-steps with a StepwiseGuard.
    """

    form: Dict[str, Any] = field(default_factory=dict)
    introduction_panel: Dict[str, Any] = field(default_factory=dict)
    type: StageType = StageType.ALTER_FORM


@dataclass
class PromptedStage(SubjectStage):
    """A stage with declared prompts."""

    prompts: List[Prompt] = field(default_factory=list)

    def get_prompts(self) -> List[Prompt]:
        return self.prompts


@dataclass
class NameGeneratorStage(PromptedStage):
    form: Dict[str, Any] = field(default_factory=dict)
    panels: List[Dict[str, Any]] = field(default_factory=list)
    quick_add: Optional[str] = None
    type: StageType = StageType.NAME_GENERATOR


@dataclass
class SociogramStage(PromptedStage):
    background: Dict[str, Any] = field(default_factory=dict)
    type: StageType = StageType.SOCIOGRAM


@dataclass
class CensusStage(PromptedStage):
    """DyadCensus / TieStrengthCensus: one sub-step per node pair."""

    type: StageType = StageType.DYAD_CENSUS


@dataclass
class BinStage(PromptedStage):
    """OrdinalBin / CategoricalBin."""

    type: StageType = StageType.ORDINAL_BIN


@dataclass
class NarrativeStage(SubjectStage):
    presets: List[Dict[str, Any]] = field(default_factory=list)
    type: StageType = StageType.NARRATIVE

    @property
    def prompt_count(self) -> int:
        return len(self.presets) or 1


@dataclass
class FinishStage(Stage):
    """Synthetic last stage appended after the protocol's own stages."""

    id: str = "finish"
    label: str = "Finish Interview"
    type: StageType = StageType.FINISH


def stage_class_for(stage_type: StageType) -> type:
    """
    Resolve the Stage variant for a StageType.

    Exhaustive over StageType; a member added without a branch here
    raises rather than silently falling back.
    """
    if stage_type is StageType.INFORMATION:
        return InformationStage
    if stage_type is StageType.EGO_FORM:
        return EgoFormStage
    if stage_type in (StageType.ALTER_FORM, StageType.ALTER_EDGE_FORM):
        return FormStage
    if stage_type in (
        StageType.NAME_GENERATOR,
        StageType.NAME_GENERATOR_QUICK_ADD,
        StageType.NAME_GENERATOR_ROSTER,
    ):
        return NameGeneratorStage
    if stage_type is StageType.SOCIOGRAM:
        return SociogramStage
    if stage_type in (StageType.DYAD_CENSUS, StageType.TIE_STRENGTH_CENSUS):
        return CensusStage
    if stage_type in (StageType.ORDINAL_BIN, StageType.CATEGORICAL_BIN):
        return BinStage
    if stage_type is StageType.NARRATIVE:
        return NarrativeStage
    if stage_type is StageType.FINISH:
        return FinishStage
    raise AssertionError(f"Unhandled stage type: {stage_type}")


@dataclass
class Protocol:
    """
    Root container for an interview protocol.

    Supplied by an external loader and treated as read-only.

    Properties:
        name: Protocol identifier
        stages: Ordered stages as authored
        codebook: Entity and variable schema

    INVARIANTS:
        - The first stage is never skipped (see skip_logic)
        - navigable_stages always ends with a FinishStage
    """

    name: str
    stages: List[Stage] = field(default_factory=list)
    codebook: Codebook = field(default_factory=Codebook)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._navigable: Optional[List[Stage]] = None
        self._navigable_source: Optional[List[Stage]] = None

    @property
    def navigable_stages(self) -> List[Stage]:
        """
        The stages an interview moves through.

        The protocol's stages followed by a synthetic FinishStage, unless the
        protocol already ends in one. The list object is cached so identity-
        memoized projections stay valid; replace `stages` rather than
        mutating it.
        """
        if self._navigable is None or self._navigable_source is not self.stages:
            stages = list(self.stages)
            if not stages or not isinstance(stages[-1], FinishStage):
                stages.append(FinishStage())
            self._navigable = stages
            self._navigable_source = self.stages
        return self._navigable

    def get_stage(self, index: int) -> Optional[Stage]:
        stages = self.navigable_stages
        if 0 <= index < len(stages):
            return stages[index]
        return None

    def get_stage_by_id(self, stage_id: str) -> Optional[Stage]:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None
