"""Turns extracted entities into embeddable code chunks."""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..errors import ChunkError, IndexerError, SourceIOError
from .models import ChunkStats, CodeChunk, CodeEntity

logger = logging.getLogger(__name__)

IMPORT_FROM_RE = re.compile(r"""\bimport\s+(?:type\s+)?(?:[^;'"]*?\s+from\s+)?['"]([^'"\n]+)['"]""")
REQUIRE_RE = re.compile(r"""\brequire\s*\(\s*['"]([^'"\n]+)['"]\s*\)""")
DYNAMIC_IMPORT_RE = re.compile(r"""\bimport\s*\(\s*['"]([^'"\n]+)['"]\s*\)""")
EXPORT_DECL_RE = re.compile(
    r"\bexport\s+(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(?:const|let|var|function\*?|class|interface|type|enum)\s+([\w$]+)"
)
EXPORT_LIST_RE = re.compile(r"\bexport\s+(?:type\s+)?\{([^}]*)\}")
BLOCK_COMMENT_RE = re.compile(r"/\*\*?([\s\S]*?)\*/")
# Not preceded by ':' so URLs are not taken for comments
LINE_COMMENT_RE = re.compile(r"(?<![:\\/])//\s*(.+?)\s*$", re.MULTILINE)
HAS_LETTER_RE = re.compile(r"[A-Za-z]")

CONTROL_FLOW_KEYWORDS = ["if", "else", "for", "while", "switch", "case", "try", "catch", "async", "await"]
CONTROL_FLOW_RE = re.compile(r"\b(?:" + "|".join(CONTROL_FLOW_KEYWORDS) + r")\b")

TEST_PATH_RE = re.compile(r"(^|[/._-])(test|tests|spec|specs|__tests__)([/._-]|$)", re.IGNORECASE)
TEST_CALL_RE = re.compile(r"\b(describe|it|test|expect)\s*\(")

MIN_COMMENT_LENGTH = 5


def split_lines(text: str) -> List[str]:
    """Split source text into lines without line terminators."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def extract_code_lines(lines: List[str], start_line: int, end_line: int) -> str:
    """Slice 1-based inclusive lines, clamping the end to the file length.

    Raises:
        ChunkError: If start_line is 0 or beyond the last line
    """
    if start_line < 1:
        raise ChunkError(f"Invalid start line {start_line}")
    if start_line > len(lines):
        raise ChunkError(f"Start line {start_line} exceeds file length {len(lines)}")
    end = min(max(end_line, start_line), len(lines))
    return "\n".join(lines[start_line - 1 : end])


def extract_imports(code: str) -> List[str]:
    """Module specifiers of import, require and dynamic import statements."""
    imports: List[str] = []
    for pattern in (IMPORT_FROM_RE, REQUIRE_RE, DYNAMIC_IMPORT_RE):
        for match in pattern.finditer(code):
            specifier = match.group(1)
            if specifier not in imports:
                imports.append(specifier)
    return imports


def extract_exports(code: str) -> List[str]:
    exports: List[str] = []
    for match in EXPORT_DECL_RE.finditer(code):
        if match.group(1) not in exports:
            exports.append(match.group(1))
    for match in EXPORT_LIST_RE.finditer(code):
        for item in match.group(1).split(","):
            # `a as b` exports b
            name = item.strip().split(" as ")[-1].strip()
            if name.startswith("type "):
                name = name[len("type ") :].strip()
            if name and name not in exports:
                exports.append(name)
    return exports


def _clean_block_comment(body: str) -> str:
    parts = []
    for line in body.split("\n"):
        line = line.strip()
        while line.startswith("*"):
            line = line[1:]
        line = line.strip()
        if line:
            parts.append(line)
    return " ".join(parts)


def extract_comments(code: str) -> List[str]:
    """Block comments (cleaned) and meaningful single-line comments."""
    comments = []
    for match in BLOCK_COMMENT_RE.finditer(code):
        text = _clean_block_comment(match.group(1))
        if text:
            comments.append(text)

    without_blocks = BLOCK_COMMENT_RE.sub("", code)
    for match in LINE_COMMENT_RE.finditer(without_blocks):
        text = match.group(1).strip()
        if len(text) > MIN_COMMENT_LENGTH and HAS_LETTER_RE.search(text):
            comments.append(text)
    return comments


def calculate_complexity(code: str) -> int:
    """Line count plus twice the number of control flow keywords."""
    line_count = len(split_lines(code)) if code else 0
    return line_count + 2 * len(CONTROL_FLOW_RE.findall(code))


def is_test_code(file_path: str, code: str) -> bool:
    return bool(TEST_PATH_RE.search(file_path) or TEST_CALL_RE.search(code))


def build_embedding_text(
    relative_file: str,
    entity: CodeEntity,
    imports: List[str],
    exports: List[str],
    comments: List[str],
    code: str,
) -> str:
    """Canonical text sent to the embedding provider.

    The field order is fixed; changing it invalidates every cached embedding.
    """
    lines = [
        f"File: {relative_file}",
        f"Type: {entity.entity_type.value} | Name: {entity.raw_name}",
        f"Location: Lines {entity.loc.start_line}-{entity.loc.end_line}",
    ]
    if imports:
        lines.append(f"Imports: {', '.join(imports)}")
    if exports:
        lines.append(f"Exports: {', '.join(exports)}")
    if comments:
        lines.append(f"Comments: {' | '.join(comments)}")
    lines.append("---")
    lines.append(code)
    return "\n".join(lines)


class ChunkBuilder:
    """Builds code chunks for entities of one project."""

    def __init__(self, root_dir: Path):
        """Initialize the builder.

        Args:
            root_dir: Project root that entity file paths are relative to
        """
        self.root_dir = Path(root_dir)
        self._line_cache: Dict[str, List[str]] = {}

    def _read_lines(self, entity: CodeEntity) -> List[str]:
        lines = self._line_cache.get(entity.file)
        if lines is not None:
            return lines
        file_path = self.root_dir / entity.file
        try:
            text = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceIOError(str(file_path), str(e)) from e
        lines = split_lines(text)
        self._line_cache[entity.file] = lines
        return lines

    def clear_cache(self) -> None:
        self._line_cache.clear()

    def build_chunk(self, entity: CodeEntity) -> CodeChunk:
        """Build the chunk of a single entity.

        Raises:
            SourceIOError: If the entity's file cannot be read
            ChunkError: If the entity's line range does not fit the file
        """
        lines = self._read_lines(entity)
        code = extract_code_lines(lines, entity.loc.start_line, entity.loc.end_line)

        relative_file = Path(entity.file).as_posix()
        imports = extract_imports(code)
        exports = extract_exports(code)
        comments = extract_comments(code)

        return CodeChunk(
            id=entity.id,
            entity_type=entity.entity_type,
            file=entity.file,
            loc=entity.loc,
            raw_name=entity.raw_name,
            code=code,
            code_length=len(code),
            imports=imports,
            exports=exports,
            comments=comments,
            complexity=calculate_complexity(code),
            is_test=is_test_code(relative_file, code),
            relative_file=relative_file,
            embedding_text=build_embedding_text(
                relative_file, entity, imports, exports, comments, code
            ),
        )

    def build_chunks(
        self, entities: List[CodeEntity], stats: Optional[ChunkStats] = None
    ) -> Tuple[List[CodeChunk], ChunkStats]:
        """Build chunks for many entities, skipping the ones that fail.

        Args:
            entities: Entities to chunk
            stats: Optional stats object to accumulate into

        Returns:
            Tuple of (chunks in entity order, chunk statistics)
        """
        stats = stats or ChunkStats()
        chunks = []

        for entity in entities:
            try:
                chunk = self.build_chunk(entity)
            except IndexerError as e:
                stats.failed += 1
                logger.warning(f"Failed to build chunk for {entity.id}: {e}")
                continue

            chunks.append(chunk)
            stats.total_chunks += 1
            stats.total_code_size += chunk.code_length
            key = chunk.entity_type.value
            stats.by_type[key] = stats.by_type.get(key, 0) + 1

        if stats.total_chunks:
            stats.avg_chunk_size = stats.total_code_size // stats.total_chunks

        logger.info(
            f"Built {stats.total_chunks} chunks ({stats.failed} failed), "
            f"avg size {stats.avg_chunk_size} chars"
        )
        self.clear_cache()
        return chunks, stats
