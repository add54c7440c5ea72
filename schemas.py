import copy
from types import MappingProxyType
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_serializer, field_validator, model_validator


SECTION_CATEGORIES = ("header", "hero", "navigation", "content", "footer", "generic-section")
SectionCategory = Literal["header", "hero", "navigation", "content", "footer", "generic-section"]

Primitive = Union[str, int, float, bool, None]


class DesignNode(BaseModel):
    """
    One node of a design document tree, as returned by the fetch service.

    ``children`` is a tuple and ``properties`` a read-only view over a private deep copy
    of the raw fields, so a fetched tree cannot be edited through the payload it came from.
    ``to_api`` hands out fresh copies.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    type: str = "UNKNOWN"
    children: Tuple["DesignNode", ...] = ()
    # remaining raw fields (fills, strokes, absoluteBoundingBox, style...) kept for prompts
    properties: Mapping[str, Any] = Field(default_factory=lambda: MappingProxyType({}))

    @field_validator("properties", mode="after")
    @classmethod
    def read_only_properties(cls, v):
        return MappingProxyType(copy.deepcopy(dict(v)))

    @field_serializer("properties")
    def dump_properties(self, v):
        return copy.deepcopy(dict(v))

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "DesignNode":
        children = [cls.from_api(child) for child in payload.get("children") or [] if isinstance(child, dict)]
        properties = {k: v for k, v in payload.items() if k not in ("id", "name", "type", "children")}
        return cls(
            id=str(payload.get("id", "")),
            name=str(payload.get("name") or ""),
            type=str(payload.get("type") or "UNKNOWN"),
            children=children,
            properties=properties,
        )

    def to_api(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "name": self.name, "type": self.type}
        data.update(copy.deepcopy(dict(self.properties)))
        if self.children:
            data["children"] = [child.to_api() for child in self.children]
        return data


DesignNode.model_rebuild()


class DesignReference(BaseModel):
    """A parsed document reference: which file, and which node inside it."""
    model_config = ConfigDict(frozen=True)

    url: str
    file_key: str
    node_id: str


class SectionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: SectionCategory


class ElementRecord(BaseModel):
    """A discovered atom. Its category is checked against the allow-list at decode time."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: str


class ComponentGroup(BaseModel):
    category: str
    representative: ElementRecord
    instances: List[ElementRecord]

    @model_validator(mode="after")
    def representative_is_instance(self):
        if not self.instances:
            raise ValueError("instances must not be empty")
        if self.representative not in self.instances:
            raise ValueError("representative must be one of instances")
        return self


class VariantRecord(BaseModel):
    name: str
    description: str = ""
    style_values: Dict[str, str] = Field(default_factory=dict)


class ExtractionResult(BaseModel):
    tokens: Dict[str, Primitive] = Field(default_factory=dict)
    variants: List[VariantRecord] = Field(default_factory=list)


class SkippedGeneration(BaseModel):
    model_config = ConfigDict(extra="forbid")

    skipped: Literal[True] = True
    reason: str = "implementation skipped"


class GeneratedArtifact(BaseModel):
    model_config = ConfigDict(extra="forbid")

    skipped: Literal[False] = False
    artifact_body: str
    stylesheet_body: Optional[str] = None
    usage_example: Optional[str] = None
    notes: Optional[str] = None
    color_mapping: Dict[str, str] = Field(default_factory=dict)

    @field_validator("artifact_body")
    def body_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("artifact_body must not be empty")
        return v


GenerationResult = Union[SkippedGeneration, GeneratedArtifact]
GENERATION_RESULT = TypeAdapter(GenerationResult)


class ComponentSummary(BaseModel):
    schema_version: str = "component_summary_v1"
    name: str
    source_id: str
    category: str
    generated_at: str
    usage_example: Optional[str] = None
    variant_count: int = Field(default=0, ge=0)
    run_id: Optional[str] = None


class ComponentSkipNote(BaseModel):
    schema_version: str = "component_skip_v1"
    name: str
    source_id: str
    category: str
    skipped: Literal[True] = True
    reason: str
    skipped_at: str
    run_id: Optional[str] = None


class StageError(BaseModel):
    stage: str
    kind: Literal["fetch", "completion", "decode", "validation", "fatal"]
    message: str


class GroupOutcome(BaseModel):
    category: str
    representative: str
    component_name: str
    instance_count: int
    status: Literal["generated", "skipped", "failed"]
    deferred_instances: List[str] = Field(default_factory=list)
    reason: Optional[str] = None


class RunSummary(BaseModel):
    schema_version: str = "run_summary_v1"
    run_id: Optional[str] = None
    reference: str
    state: Literal["done", "aborted"]
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    sections: List[SectionRecord] = Field(default_factory=list)
    processed_section: Optional[str] = None
    deferred_sections: List[SectionRecord] = Field(default_factory=list)
    element_count: int = 0
    groups: List[GroupOutcome] = Field(default_factory=list)
    showcase: Optional[str] = None
    errors: List[StageError] = Field(default_factory=list)


class LLMCallUsage(BaseModel):
    schema_version: str = "instrumentation_call_v1"
    model: str
    provider: str = "openai"
    prompt_tokens: int
    completion_tokens: int
    request_ms: Optional[float] = None
    request_id: Optional[str] = None
    stage_id: Optional[str] = None
    run_id: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator("prompt_tokens", "completion_tokens")
    def non_negative_tokens(cls, v):
        if v < 0:
            raise ValueError("token counts must be non-negative")
        return v


class StageSettings(BaseModel):
    max_tokens: int = Field(default=2000, gt=0)


class ClassifySectionsSettings(StageSettings):
    max_tokens: int = Field(default=1000, gt=0)
    heuristic_fallback: bool = False


class DiscoverElementsSettings(StageSettings):
    max_tokens: int = Field(default=2000, gt=0)
    write_report: bool = True


class ExtractPropertiesSettings(StageSettings):
    max_tokens: int = Field(default=1500, gt=0)


class GenerateArtifactSettings(StageSettings):
    max_tokens: int = Field(default=4000, gt=0)
    skip_categories: List[str] = Field(default_factory=list)


class SummarizeSettings(StageSettings):
    max_tokens: int = Field(default=4000, gt=0)
    showcase: bool = True


class PipelineStages(BaseModel):
    classify_sections: ClassifySectionsSettings = Field(default_factory=ClassifySectionsSettings)
    discover_elements: DiscoverElementsSettings = Field(default_factory=DiscoverElementsSettings)
    extract_properties: ExtractPropertiesSettings = Field(default_factory=ExtractPropertiesSettings)
    generate_artifact: GenerateArtifactSettings = Field(default_factory=GenerateArtifactSettings)
    summarize: SummarizeSettings = Field(default_factory=SummarizeSettings)


class FetchSettings(BaseModel):
    base_url: str = "https://api.figma.com/v1"
    timeout: Optional[float] = None


class RunSettings(BaseModel):
    model: str = "gpt-4.1-mini"
    temperature: float = 0.0
    output_dir: str = "output"
    allow_list: Optional[str] = None
    progress_bar: bool = True
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    stages: PipelineStages = Field(default_factory=PipelineStages)
