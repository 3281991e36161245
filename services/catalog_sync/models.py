"""
Catalog & Settings Schema: the shapes every tier stores.

Two collections travel through the sync layer:

    catalog   {"testDefinitions": [...], "lastUpdated": "..."}
    settings  {"settings": {...},         "lastUpdated": "..."}

Each tier keeps its own serialized copy; the in-memory snapshot belongs to
whoever loaded it. Wire names are camelCase, Python names snake_case.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Optional, Set, Union

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps from older writers are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class Collection(str, Enum):
    """Logical collections; one document per collection on every tier."""
    CATALOG = "catalog"
    SETTINGS = "settings"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# =============================================================================
# TEST DEFINITION
# =============================================================================

class LocalizedText(WireModel):
    """Bilingual display text."""
    en: str = ""
    ar: str = ""

    def get(self, lang: str = "en") -> str:
        return self.ar if lang == "ar" else self.en


class ChemicalComponent(WireModel):
    name: LocalizedText
    formula: Optional[LocalizedText] = None
    concentration: Optional[LocalizedText] = None


class Instruction(WireModel):
    text: LocalizedText
    safety_warning: Optional[LocalizedText] = None


class ColorResult(WireModel):
    color_hex: str = Field(pattern=r"^#[0-9A-Fa-f]{6}$")
    result: LocalizedText
    substance: Optional[LocalizedText] = None
    confidence: Confidence = Confidence.MEDIUM


class TestDefinition(WireModel):
    """One chemical color test. A missing id means "not yet persisted"."""

    __test__ = False  # not a pytest class

    id: Optional[str] = None
    name: LocalizedText
    description: LocalizedText = Field(default_factory=LocalizedText)
    chemical_components: List[ChemicalComponent] = Field(default_factory=list)
    instructions: List[Instruction] = Field(default_factory=list)
    color_results: List[ColorResult] = Field(default_factory=list)
    preparation: LocalizedText = Field(default_factory=LocalizedText)

    # Catalog metadata
    category: Optional[str] = None
    safety_level: Optional[str] = None
    test_type: Optional[str] = None
    test_number: Optional[str] = None
    reference: Optional[str] = None

    created: Optional[UtcDatetime] = None
    updated: Optional[UtcDatetime] = None


# =============================================================================
# SETTINGS AGGREGATE
# =============================================================================

class SettingsAggregate(WireModel):
    """
    Access-control flags for the catalog.

    global_free_access overrides every other flag; consumers must check it
    first (see SettingsManager.is_premium).
    """
    free_tests_enabled: bool = True
    free_tests_count: int = Field(default=5, ge=0)
    premium_required: bool = True
    global_free_access: bool = False
    specific_premium_tests: Set[str] = Field(default_factory=set)

    @field_validator("specific_premium_tests", mode="before")
    @classmethod
    def _ids_as_strings(cls, v: Any) -> Any:
        # Older writers stored numeric test indexes
        if isinstance(v, (list, tuple, set)):
            return {str(item) for item in v}
        return v

    @field_serializer("specific_premium_tests")
    def _sorted_ids(self, v: Set[str]) -> List[str]:
        return sorted(v)


# =============================================================================
# SNAPSHOTS
# =============================================================================

class CatalogSnapshot(WireModel):
    """The full test catalog at one point in time."""

    collection: ClassVar[Collection] = Collection.CATALOG

    test_definitions: List[TestDefinition] = Field(
        default_factory=list,
        validation_alias=AliasChoices("testDefinitions", "test_definitions", "chemical_tests", "tests"),
        serialization_alias="testDefinitions",
    )
    last_updated: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def _unique_ids(self) -> "CatalogSnapshot":
        seen: Set[str] = set()
        for test in self.test_definitions:
            if test.id is None:
                continue
            if test.id in seen:
                raise ValueError(f"duplicate test id '{test.id}'")
            seen.add(test.id)
        return self

    def is_empty(self) -> bool:
        return not self.test_definitions

    def content_equals(self, other: "CatalogSnapshot") -> bool:
        return self.model_dump(exclude={"last_updated"}) == other.model_dump(exclude={"last_updated"})


class SettingsSnapshot(WireModel):
    """The settings aggregate at one point in time; empty until first written."""

    collection: ClassVar[Collection] = Collection.SETTINGS

    settings: Optional[SettingsAggregate] = None
    last_updated: Optional[UtcDatetime] = None

    def is_empty(self) -> bool:
        return self.settings is None

    def content_equals(self, other: "SettingsSnapshot") -> bool:
        return self.model_dump(exclude={"last_updated"}) == other.model_dump(exclude={"last_updated"})


Snapshot = Union[CatalogSnapshot, SettingsSnapshot]

SNAPSHOT_TYPES = {
    Collection.CATALOG: CatalogSnapshot,
    Collection.SETTINGS: SettingsSnapshot,
}


def empty_snapshot(collection: Collection) -> Snapshot:
    return SNAPSHOT_TYPES[collection]()


def parse_snapshot(collection: Collection, payload: Any) -> Snapshot:
    """
    Validate a decoded payload into the collection's snapshot type.

    Raises ValueError (pydantic ValidationError included) on shape errors.
    A bare list is accepted for the catalog, matching what older caches held.
    """
    if collection is Collection.CATALOG and isinstance(payload, list):
        payload = {"testDefinitions": payload}
    if not isinstance(payload, dict):
        raise ValueError(f"{collection.value} payload must be an object, got {type(payload).__name__}")
    return SNAPSHOT_TYPES[collection].model_validate(payload)
