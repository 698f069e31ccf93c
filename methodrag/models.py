"""Methodology record types shared by the sync and retrieval layers."""
import copy
import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from methodrag.utils.error_handler import BadQueryError

METHODOLOGY_CATEGORIES = (
    "theory-building",
    "descriptive",
    "interpretive",
    "critical",
    "mixed",
    "custom",
)

DATA_TYPES = ("interview", "observation", "document", "mixed")
RESEARCH_GOALS = ("theory_building", "description", "exploration", "evaluation")
EXPERTISE_LEVELS = ("beginner", "intermediate", "advanced")
PARADIGMS = ("positivist", "constructivist", "critical", "pragmatic")


def _mapping(value: Any, field_name: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"{field_name} must be an object, got {type(value).__name__}")
    return dict(value)


def _items(value: Any, field_name: str, item_type: type) -> list:
    """A list whose items all have one type; None reads as empty."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"{field_name} must be a list, got {type(value).__name__}")
    for item in value:
        if not isinstance(item, item_type):
            raise TypeError(f"{field_name} entries must be {item_type.__name__}, "
                            f"got {type(item).__name__}")
    return list(value)


def _optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number, got {value!r}")
    return int(value)


@dataclass
class MethodologyStage:
    name: str
    description: str
    order: int
    prompt_template: str
    requires: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    validation_rules: List[Dict[str, Any]] = field(default_factory=list)
    minimum_sample_size: Optional[int] = None
    optional: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any], position: int = 0) -> 'MethodologyStage':
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            order=int(data.get("order", position + 1)),
            prompt_template=data.get("promptTemplate") or data.get("guidance") or "",
            requires=_items(data.get("requires"), "requires", str),
            outputs=_items(data.get("outputs"), "outputs", str),
            validation_rules=_items(data.get("validationRules"), "validationRules", dict),
            minimum_sample_size=_optional_int(data.get("minimumSampleSize"), "minimumSampleSize"),
            optional=bool(data.get("optional", False)),
        )


@dataclass
class MethodologyMetadata:
    citations: int = 0
    usage_count: int = 0
    rating: float = 0.0
    tags: List[str] = field(default_factory=list)
    license: str = ""
    repository: Optional[str] = None
    doi: Optional[str] = None
    references: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'MethodologyMetadata':
        data = _mapping(data, "metadata")
        return cls(
            citations=int(data.get("citations") or 0),
            usage_count=int(data.get("usageCount") or 0),
            rating=float(data.get("rating") or 0.0),
            tags=_items(data.get("tags"), "tags", str),
            license=data.get("license") or "",
            repository=data.get("repository"),
            doi=data.get("doi"),
            references=_items(data.get("references"), "references", str),
        )


@dataclass
class Methodology:
    """Typed view over a validated methodology document.

    ``raw`` keeps the document exactly as it was accepted; it is what the
    catalog writes to disk, so keys this class does not model survive a
    round trip.
    """
    id: str
    name: str
    version: str
    author: Dict[str, str]
    category: str
    description: str
    stages: List[MethodologyStage]
    tools: Dict[str, Any]
    quality_criteria: Dict[str, Any]
    metadata: MethodologyMetadata
    validated: bool
    reviewers: List[str]
    examples: List[Dict[str, Any]]
    raw: Dict[str, Any] = field(repr=False, compare=False, default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Methodology':
        raw = copy.deepcopy(data)
        return cls(
            id=raw["id"],
            name=raw["name"],
            version=raw["version"],
            author=_mapping(raw["author"], "author"),
            category=raw["category"],
            description=raw["description"],
            stages=[MethodologyStage.from_dict(stage, i) for i, stage in enumerate(raw["stages"])],
            tools=_mapping(raw.get("tools"), "tools"),
            quality_criteria=_mapping(raw.get("qualityCriteria"), "qualityCriteria"),
            metadata=MethodologyMetadata.from_dict(raw.get("metadata")),
            validated=bool(raw.get("validated", False)),
            reviewers=_items(raw.get("reviewers"), "reviewers", str),
            examples=_items(raw.get("examples"), "examples", dict),
            raw=raw,
        )

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.raw)

    @property
    def author_name(self) -> str:
        return self.author.get("name", "")

    @property
    def tags(self) -> List[str]:
        return self.metadata.tags

    def data_types(self) -> List[str]:
        """Data types named by the examples or tags of this methodology."""
        found = []
        for example in self.examples:
            data_type = example.get("dataType")
            if isinstance(data_type, str) and data_type and data_type not in found:
                found.append(data_type)
        for tag in self.tags:
            if tag.lower() in DATA_TYPES and tag.lower() not in found:
                found.append(tag.lower())
        return found

    def minimum_sample_size(self) -> Optional[int]:
        sizes = [s.minimum_sample_size for s in self.stages if s.minimum_sample_size]
        return max(sizes) if sizes else None

    def content_hash(self) -> str:
        canonical = json.dumps(self.raw, sort_keys=True, ensure_ascii=False)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CatalogEntry:
    """A stored methodology plus where and when it was written."""
    methodology: Methodology
    path: str
    last_modified: datetime
    validated: bool
    reviewers: List[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.methodology.id

    @property
    def version(self) -> str:
        return self.methodology.version


@dataclass
class MethodologySearchQuery:
    intent: str
    data_type: Optional[str] = None
    research_goal: Optional[str] = None
    expertise: Optional[str] = None
    paradigm: Optional[str] = None
    sample_size: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.intent, str) or not self.intent.strip():
            raise BadQueryError("Query intent must be a non-empty string")
        self._check_choice("researchGoal", self.research_goal, RESEARCH_GOALS)
        self._check_choice("expertise", self.expertise, EXPERTISE_LEVELS)
        self._check_choice("paradigm", self.paradigm, PARADIGMS)
        if self.data_type is not None and (not isinstance(self.data_type, str)
                                           or not self.data_type.strip()):
            raise BadQueryError("dataType must be a non-empty string")
        if self.sample_size is not None:
            if isinstance(self.sample_size, bool) or not isinstance(self.sample_size, int) \
                    or self.sample_size <= 0:
                raise BadQueryError("sampleSize must be a positive integer",
                                    {"sampleSize": self.sample_size})

    @staticmethod
    def _check_choice(name: str, value: Optional[str], choices) -> None:
        if value is not None and value not in choices:
            raise BadQueryError(f"Unknown {name}: {value}", {name: value, "allowed": list(choices)})

    @classmethod
    def coerce(cls, query: Union['MethodologySearchQuery', Dict[str, Any], str]) -> 'MethodologySearchQuery':
        """Accept a query object, a caller mapping (camelCase keys) or a bare intent."""
        if isinstance(query, cls):
            return query
        if isinstance(query, str):
            return cls(intent=query)
        if not isinstance(query, dict):
            raise BadQueryError(f"Unsupported query type: {type(query).__name__}")
        return cls(
            intent=query.get("intent"),
            data_type=query.get("dataType", query.get("data_type")),
            research_goal=query.get("researchGoal", query.get("research_goal")),
            expertise=query.get("expertise"),
            paradigm=query.get("paradigm"),
            sample_size=query.get("sampleSize", query.get("sample_size")),
        )


@dataclass
class MethodologySearchResult:
    methodology: Methodology
    score: float
    fit_score: float
    reasoning: str
    source: str = "vector"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "methodology": self.methodology.to_dict(),
            "score": self.score,
            "fitScore": self.fit_score,
            "reasoning": self.reasoning,
            "source": self.source,
        }


@dataclass
class SyncResult:
    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": list(self.added),
            "updated": list(self.updated),
            "errors": list(self.errors),
            "skipped": list(self.skipped),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "cancelled": self.cancelled,
        }
