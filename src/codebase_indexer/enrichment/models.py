"""Data models for the enrichment stage."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..indexer.models import CodeEntity

FAILURE_TAG = "enrichment failed"


class EnrichmentStage(str, Enum):
    """Steps every entity goes through."""

    LOAD = "load"
    STATIC_ANALYZE = "static_analyze"
    SUMMARIZE = "summarize"
    DONE = "done"


@dataclass
class StaticAnalysisResult:
    """Dependency facts derived from an entity's source."""

    imports: List[str] = field(default_factory=list)  # entity IDs
    calls: List[str] = field(default_factory=list)  # entity IDs
    emits: List[str] = field(default_factory=list)  # event names
    template_components: Optional[List[str]] = None  # Vue only
    annotation: Optional[str] = None

    @classmethod
    def empty(cls) -> "StaticAnalysisResult":
        return cls()

    def is_empty(self) -> bool:
        return not (
            self.imports or self.calls or self.emits or self.template_components or self.annotation
        )


@dataclass
class LabelResult:
    summary: str
    tags: List[str]


@dataclass
class LLMRequest:
    system_prompt: str
    user_prompt: str
    max_tokens: int = 300


@dataclass
class EnrichedEntity:
    """Final persisted unit of the enrichment stage."""

    entity: CodeEntity
    analysis: StaticAnalysisResult
    summary: str
    tags: List[str]
    failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Flatten entity fields with the analysis and labels.

        TEMPLATE_COMPONENTS and ANNOTATION are omitted when absent.
        """
        data = self.entity.to_dict()
        data["IMPORTS"] = list(self.analysis.imports)
        data["CALLS"] = list(self.analysis.calls)
        data["EMITS"] = list(self.analysis.emits)
        if self.analysis.template_components is not None:
            data["TEMPLATE_COMPONENTS"] = list(self.analysis.template_components)
        if self.analysis.annotation is not None:
            data["ANNOTATION"] = self.analysis.annotation
        data["summary"] = self.summary
        data["tags"] = list(self.tags)
        return data
