"""Heuristic dependency analysis of extracted entities.

Relationships are recovered from source text with patterns, not a compiler,
so results are approximations:

* IMPORTS: entities declared in files reached through relative imports
* CALLS: ``name(`` tokens whose name occurs inside an imported entity ID
* EMITS: ``emit('event')`` calls, or ``props.onEvent(`` in JSX files
* TEMPLATE_COMPONENTS: custom tags used in a Vue ``<template>``
"""

import logging
import posixpath
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..indexer.chunker import split_lines
from ..indexer.extractors import find_script_block
from ..indexer.models import CodeEntity
from .models import StaticAnalysisResult

logger = logging.getLogger(__name__)

IMPORT_RE = re.compile(
    r"""\bimport\s+(?:type\s+)?(?:(?:[\w$]+\s*,\s*)?(?:\{[^}]*\}|\*\s+as\s+[\w$]+|[\w$]+)\s+from\s+)?['"]([^'"\n]+)['"]"""
)
CALL_RE = re.compile(r"\b([A-Za-z_$][\w$]*)\s*\(")
EMIT_RE = re.compile(r"""\$?\bemit\s*\(\s*['"]([^'"]+)['"]""")
JSX_EMIT_RE = re.compile(r"\bprops\.on([A-Z]\w*)\s*\(")
TEMPLATE_RE = re.compile(r"<template[^>]*>([\s\S]*)</template>", re.IGNORECASE)
TEMPLATE_TAG_RE = re.compile(r"<([A-Z][a-zA-Z0-9]*|[a-z][a-z0-9]*(?:-[a-z0-9]+)+)[\s>/]")
LEADING_BLOCK_COMMENT_RE = re.compile(r"^\s*/\*\*?([\s\S]*?)\*/")
LEADING_LINE_COMMENT_RE = re.compile(r"^\s*//\s*(.+)$", re.MULTILINE)

RESOLVE_EXTENSIONS = [".ts", ".tsx", ".vue", ".js", ".jsx"]

NATIVE_TAGS = {
    "template", "div", "span", "p", "a", "img", "ul", "ol", "li", "button", "input",
    "form", "table", "tr", "td", "th", "h1", "h2", "h3", "h4", "h5", "h6",
    "header", "footer", "nav", "section", "article",
}

# Keywords that look like calls: if (...), for (...), etc.
CALL_KEYWORDS = {
    "if", "for", "while", "switch", "catch", "function", "return", "typeof", "await",
    "new", "super", "import", "require",
}


def _clean_block_comment(body: str) -> str:
    lines = []
    for line in body.split("\n"):
        line = line.strip()
        while line.startswith("*"):
            line = line[1:]
        line = line.strip()
        if line:
            lines.append(line)
    return "\n".join(lines)


def extract_annotation(text: str) -> Optional[str]:
    """Leading documentation comment of a piece of source, block preferred."""
    match = LEADING_BLOCK_COMMENT_RE.match(text)
    if match:
        cleaned = _clean_block_comment(match.group(1))
        if cleaned:
            return cleaned

    stripped = text.lstrip()
    if stripped.startswith("//"):
        lines = []
        for line in stripped.split("\n"):
            line = line.strip()
            if not line.startswith("//"):
                break
            content = line[2:].strip()
            if content:
                lines.append(content)
        if lines:
            return "\n".join(lines)
    return None


def comment_above(lines: List[str], start_line: int) -> Optional[str]:
    """Doc comment ending right above a 1-based line, if any."""
    index = start_line - 2
    while index >= 0 and not lines[index].strip():
        index -= 1
    if index < 0:
        return None

    last = lines[index].strip()
    if last.endswith("*/"):
        end = index
        while index >= 0 and "/*" not in lines[index]:
            index -= 1
        if index < 0:
            return None
        block = "\n".join(lines[index : end + 1])
        return extract_annotation(block[block.index("/*") :])

    if last.startswith("//"):
        end = index
        while index >= 0 and lines[index].strip().startswith("//"):
            index -= 1
        return extract_annotation("\n".join(lines[index + 1 : end + 1]))
    return None


def normalize_path(path: str) -> str:
    return posixpath.normpath(Path(path).as_posix())


class StaticDependencyAnalyzer:
    """Indexes all entities of a run and analyzes them one at a time."""

    def __init__(self, root_dir: Path, entities: Optional[List[CodeEntity]] = None):
        """Initialize the analyzer.

        Args:
            root_dir: Project root that entity file paths are relative to
            entities: Full entity list of the run
        """
        self.root_dir = Path(root_dir)
        self.entity_map: Dict[str, Dict[str, CodeEntity]] = {}
        self.set_entities(entities or [])

    def set_entities(self, entities: List[CodeEntity]) -> None:
        """Rebuild the (file, raw_name) -> entity index."""
        self.entity_map = {}
        for entity in entities:
            by_name = self.entity_map.setdefault(normalize_path(entity.file), {})
            by_name.setdefault(entity.raw_name, entity)
        logger.debug(f"Indexed {len(entities)} entities across {len(self.entity_map)} files")

    def lookup(self, file: str, raw_name: str) -> Optional[CodeEntity]:
        return self.entity_map.get(normalize_path(file), {}).get(raw_name)

    def entities_in_file(self, file: str) -> List[CodeEntity]:
        return list(self.entity_map.get(normalize_path(file), {}).values())

    def _read_source(self, entity: CodeEntity) -> Optional[str]:
        file_path = self.root_dir / entity.file
        if not file_path.is_file():
            logger.debug(f"Source of {entity.id} not found at {file_path}")
            return None
        try:
            return file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read {file_path} for {entity.id}: {e}")
            return None

    def resolve_module_path(self, from_file: str, specifier: str) -> Optional[str]:
        """Resolve a relative import to a project-relative file path.

        Tries the specifier as written, with each supported extension
        appended, then as a directory containing an index file.
        """
        if not specifier.startswith("."):
            return None

        base_dir = posixpath.dirname(normalize_path(from_file))
        target = posixpath.normpath(posixpath.join(base_dir, specifier))

        candidates = []
        if posixpath.splitext(target)[1]:
            candidates.append(target)
        candidates.extend(target + ext for ext in RESOLVE_EXTENSIONS)
        candidates.extend(posixpath.join(target, "index" + ext) for ext in RESOLVE_EXTENSIONS)

        for candidate in candidates:
            if candidate.startswith("../"):
                # Outside the project root
                continue
            if candidate in self.entity_map or (self.root_dir / candidate).is_file():
                return candidate
        return None

    def _script_and_template(self, entity: CodeEntity, source: str) -> Tuple[str, Optional[str]]:
        if not entity.file.lower().endswith(".vue"):
            return source, None
        script = find_script_block(source)
        template_match = TEMPLATE_RE.search(source)
        return (
            script.content if script else "",
            template_match.group(1) if template_match else None,
        )

    def _imports(self, entity: CodeEntity, script: str) -> List[str]:
        imports = set()
        for match in IMPORT_RE.finditer(script):
            resolved = self.resolve_module_path(entity.file, match.group(1))
            if resolved is None:
                continue
            for imported in self.entities_in_file(resolved):
                if imported.id != entity.id:
                    imports.add(imported.id)
        return sorted(imports)

    @staticmethod
    def _calls(script: str, imports: List[str]) -> List[str]:
        names = {m.group(1) for m in CALL_RE.finditer(script)} - CALL_KEYWORDS
        calls = set()
        for name in names:
            # Substring containment against import IDs
            for import_id in imports:
                if name in import_id:
                    calls.add(import_id)
        return sorted(calls)

    @staticmethod
    def _emits(entity: CodeEntity, script: str) -> List[str]:
        emits = {m.group(1) for m in EMIT_RE.finditer(script)}
        if entity.file.lower().endswith((".tsx", ".jsx")):
            emits.update(m.group(1).lower() for m in JSX_EMIT_RE.finditer(script))
        return sorted(emits)

    @staticmethod
    def _template_components(template: str) -> List[str]:
        tags = {m.group(1) for m in TEMPLATE_TAG_RE.finditer(template)}
        return sorted(tag for tag in tags if tag.lower() not in NATIVE_TAGS)

    def _annotation(self, entity: CodeEntity, source: str, script: str) -> Optional[str]:
        lines = split_lines(source)
        if 1 <= entity.loc.start_line <= len(lines) + 1:
            above = comment_above(lines, entity.loc.start_line)
            if above:
                return above
        return extract_annotation(script)

    def analyze(self, entity: CodeEntity) -> StaticAnalysisResult:
        """Derive dependency facts for one entity.

        A missing or unreadable source file yields an empty result.
        """
        source = self._read_source(entity)
        if source is None:
            return StaticAnalysisResult.empty()

        script, template = self._script_and_template(entity, source)
        imports = self._imports(entity, script)

        return StaticAnalysisResult(
            imports=imports,
            calls=self._calls(script, imports),
            emits=self._emits(entity, script),
            template_components=self._template_components(template) if template is not None else None,
            annotation=self._annotation(entity, source, script),
        )
