"""
Example protocol builder.

Builds a small personal-network interview:

    Information -> NameGenerator (2 prompts) -> AlterForm -> Sociogram
        -> OrdinalBin -> (Finish)

The AlterForm, Sociogram and OrdinalBin stages are only shown once at
least one person has been named.
"""
from interview_core.model import (
    BinStage,
    Codebook,
    EntityDefinition,
    EntityKind,
    FormStage,
    InformationStage,
    NameGeneratorStage,
    Prompt,
    Protocol,
    SkipAction,
    SkipLogic,
    SociogramStage,
    SortOption,
    StageSubject,
    StageType,
    VariableDefinition,
    VariableOption,
    VariableType,
)
from interview_core.query import FilterRule, NetworkFilter, Operator, RuleType

PERSON = "person"
FRIEND = "friend"


def build_example_codebook() -> Codebook:
    return Codebook(
        node={
            PERSON: EntityDefinition(
                name="Person",
                color="node-color-seq-1",
                variables={
                    "name": VariableDefinition(name="Name", type=VariableType.TEXT),
                    "age": VariableDefinition(name="Age", type=VariableType.NUMBER),
                    "close_friend": VariableDefinition(name="Close friend", type=VariableType.BOOLEAN),
                    "colleague": VariableDefinition(name="Colleague", type=VariableType.BOOLEAN),
                    "closeness": VariableDefinition(
                        name="Closeness",
                        type=VariableType.ORDINAL,
                        options=[
                            VariableOption(value=1, label="Very close"),
                            VariableOption(value=2, label="Somewhat close"),
                            VariableOption(value=3, label="Not close"),
                        ],
                    ),
                    "contexts": VariableDefinition(
                        name="Contexts",
                        type=VariableType.CATEGORICAL,
                        options=[
                            VariableOption(value="family", label="Family"),
                            VariableOption(value="work", label="Work"),
                            VariableOption(value="school", label="School"),
                        ],
                    ),
                    "met_on": VariableDefinition(name="Met on", type=VariableType.DATE),
                },
            )
        },
        edge={FRIEND: EntityDefinition(name="Friends", color="edge-color-seq-1")},
        ego=EntityDefinition(
            name="Ego",
            variables={
                "name": VariableDefinition(name="Name", type=VariableType.TEXT),
                "age": VariableDefinition(name="Age", type=VariableType.NUMBER),
            },
        ),
    )


def _when_people_named() -> SkipLogic:
    return SkipLogic(
        action=SkipAction.SHOW,
        filter=NetworkFilter(
            rules=(FilterRule(type=RuleType.ALTER, operator=Operator.EXISTS, entity_type=PERSON, id="has_people"),)
        ),
    )


def build_example_protocol(name: str = "Example Personal Network") -> Protocol:
    person = StageSubject(entity=EntityKind.NODE, type=PERSON)

    stages = [
        InformationStage(
            id="intro",
            label="Welcome",
            items=[{"type": "text", "content": "This interview asks about the people in your life."}],
        ),
        NameGeneratorStage(
            id="name_generator",
            label="People",
            subject=person,
            form={"fields": [{"variable": "name"}, {"variable": "age"}]},
            prompts=[
                Prompt(
                    id="close_friends",
                    text="Who are your closest friends?",
                    additional_attributes={"close_friend": True},
                    sort_order=[SortOption(property="name", direction="asc")],
                ),
                Prompt(
                    id="colleagues",
                    text="Who do you work with?",
                    additional_attributes={"colleague": True},
                    sort_order=[SortOption(property="age", direction="desc"), SortOption(property="*")],
                ),
            ],
        ),
        FormStage(
            id="alter_form",
            label="About each person",
            subject=person,
            skip_logic=_when_people_named(),
            form={"fields": [{"variable": "met_on"}, {"variable": "contexts"}]},
        ),
        SociogramStage(
            id="sociogram",
            label="Who knows whom",
            subject=person,
            skip_logic=_when_people_named(),
            prompts=[Prompt(id="friendships", text="Connect people who are friends.", create_edge=FRIEND)],
        ),
        BinStage(
            id="closeness_bin",
            label="Closeness",
            type=StageType.ORDINAL_BIN,
            subject=person,
            skip_logic=_when_people_named(),
            prompts=[
                Prompt(
                    id="closeness",
                    text="How close are you to each person?",
                    variable="closeness",
                    sort_order=[SortOption(property="closeness")],
                )
            ],
        ),
    ]

    return Protocol(name=name, stages=stages, codebook=build_example_codebook())
