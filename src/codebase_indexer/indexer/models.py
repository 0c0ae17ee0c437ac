"""Data models for extracted entities, chunks and embeddings."""

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import ValidationError

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    """Kind of exported declaration."""

    FUNCTION = "function"
    CLASS = "class"
    INTERFACE = "interface"
    TYPE = "type"
    VARIABLE = "variable"
    COMPONENT = "component"
    COMPOSABLE = "composable"
    STORE = "store"

    @property
    def id_prefix(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, value: str) -> "EntityType":
        """Parse a type name or ID prefix ("Function", "const", ...)."""
        normalized = value.strip().lower()
        if normalized == "const":
            return cls.VARIABLE
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(f"Unknown entity type: {value!r}") from None


def make_entity_id(entity_type: EntityType, raw_name: str) -> str:
    return f"{entity_type.id_prefix}:{raw_name}"


@dataclass(frozen=True)
class Location:
    """1-based inclusive line range."""

    start_line: int
    end_line: int

    def __post_init__(self):
        if self.start_line < 1 or self.end_line < self.start_line:
            raise ValidationError(
                f"Invalid location {self.start_line}-{self.end_line}"
            )

    def to_dict(self) -> Dict[str, int]:
        return {"start_line": self.start_line, "end_line": self.end_line}


@dataclass(frozen=True)
class CodeEntity:
    """An exported top-level declaration found in a source file."""

    id: str  # "{TypePrefix}:{raw_name}", possibly with a _N suffix
    entity_type: EntityType
    file: str  # path relative to the project root, forward slashes
    loc: Location
    raw_name: str

    def with_id(self, new_id: str) -> "CodeEntity":
        return CodeEntity(
            id=new_id,
            entity_type=self.entity_type,
            file=self.file,
            loc=self.loc,
            raw_name=self.raw_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "file": self.file,
            "loc": self.loc.to_dict(),
            "raw_name": self.raw_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CodeEntity":
        """Build an entity from a JSON record.

        Accepts both ``entity_type``/``raw_name`` and the camel-cased
        ``type``/``rawName`` keys. Only id, type and file are required. An
        unknown type is read as a variable. Line numbers are clamped so the
        range starts at line 1 or later and never ends before it starts.

        Raises:
            ValidationError: If id, type or file is missing or invalid
        """
        entity_id = data.get("id")
        type_name = data.get("entity_type") or data.get("type")
        file_path = data.get("file")
        if not entity_id or not type_name or not file_path:
            raise ValidationError("Entity record requires id, type and file")
        if not isinstance(entity_id, str) or not isinstance(file_path, str):
            raise ValidationError(f"Entity record {entity_id!r} has non-string fields")
        if not isinstance(type_name, str):
            raise ValidationError(f"Entity record {entity_id!r} has non-string type")

        try:
            entity_type = EntityType.parse(type_name)
        except ValidationError:
            logger.warning(f"Unknown type {type_name!r} for {entity_id}, treating as variable")
            entity_type = EntityType.VARIABLE

        loc_data = data.get("loc")
        if not isinstance(loc_data, dict):
            loc_data = {}
        start_line = _line_number(loc_data.get("start_line"), 1)
        end_line = max(_line_number(loc_data.get("end_line"), start_line), start_line)

        raw_name = data.get("raw_name") or data.get("rawName")
        if not raw_name:
            raw_name = entity_id.split(":", 1)[-1]

        return cls(
            id=entity_id,
            entity_type=entity_type,
            file=file_path,
            loc=Location(start_line, end_line),
            raw_name=str(raw_name),
        )


def _line_number(value: Any, default: int) -> int:
    try:
        line = int(value)
    except (TypeError, ValueError):
        return default
    return max(line, 1)


@dataclass
class WorkspaceInfo:
    """A resolved monorepo root and its member packages."""

    root: str
    package_paths: List[str] = field(default_factory=list)
    package_map: Dict[str, str] = field(default_factory=dict)  # package name -> path


@dataclass
class ScanStats:
    """Counters collected while walking and extracting."""

    total_files: int = 0
    success_files: int = 0
    failed_files: int = 0
    total_entities: int = 0
    by_extension: Dict[str, int] = field(default_factory=dict)
    by_entity_type: Dict[str, int] = field(default_factory=dict)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CodeChunk:
    """An entity together with its source text and light static context."""

    id: str
    entity_type: EntityType
    file: str
    loc: Location
    raw_name: str
    code: str
    code_length: int  # always len(code)
    imports: List[str]
    exports: List[str]
    comments: List[str]
    complexity: int
    is_test: bool
    relative_file: str
    embedding_text: str
    dependencies: List[str] = field(default_factory=list)  # reserved

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "file": self.file,
            "loc": self.loc.to_dict(),
            "raw_name": self.raw_name,
            "code": self.code,
            "code_length": self.code_length,
            "imports": list(self.imports),
            "exports": list(self.exports),
            "comments": list(self.comments),
            "dependencies": list(self.dependencies),
            "complexity": self.complexity,
            "is_test": self.is_test,
            "relative_file": self.relative_file,
            "embedding_text": self.embedding_text,
        }


@dataclass
class ChunkStats:
    total_chunks: int = 0
    total_code_size: int = 0
    avg_chunk_size: int = 0
    failed: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EmbeddedChunk:
    """A chunk paired with its embedding vector."""

    chunk: CodeChunk
    embedding: List[float]

    def to_dict(self) -> Dict[str, Any]:
        data = self.chunk.to_dict()
        data["embedding"] = list(self.embedding)
        return data


@dataclass
class EmbeddingStats:
    total_chunks: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    cache_hits: int = 0
    api_calls: int = 0
    failed_batches: int = 0
    failed_chunks: int = 0
    duration_secs: float = 0.0
    dimensions: Optional[int] = None

    def add(self, other: "EmbeddingStats") -> None:
        """Fold another run's counts into this one."""
        self.total_chunks += other.total_chunks
        self.total_tokens += other.total_tokens
        self.estimated_cost += other.estimated_cost
        self.cache_hits += other.cache_hits
        self.api_calls += other.api_calls
        self.failed_batches += other.failed_batches
        self.failed_chunks += other.failed_chunks
        self.duration_secs = round(self.duration_secs + other.duration_secs, 3)
        if self.dimensions is None:
            self.dimensions = other.dimensions

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
