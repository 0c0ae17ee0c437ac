"""Entity extraction strategies for TS/JS (syntax tree) and Vue (patterns)."""

import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional, Tuple

from ..errors import ParseError, SourceIOError
from .classifier import EntityClassifier, HeuristicClassifier
from .grammars import LanguageConfig, LanguageRegistry, get_language_registry
from .models import CodeEntity, EntityType, Location, make_entity_id

logger = logging.getLogger(__name__)

FUNCTION_DECLARATIONS = {
    "function_declaration",
    "generator_function_declaration",
    "function_signature",
}
CLASS_DECLARATIONS = {"class_declaration", "abstract_class_declaration"}
VARIABLE_DECLARATIONS = {"lexical_declaration", "variable_declaration"}
TYPE_DECLARATIONS = {
    "interface_declaration": EntityType.INTERFACE,
    "type_alias_declaration": EntityType.TYPE,
    "enum_declaration": EntityType.TYPE,
}
# Node types of anonymous `export default <value>` declarations
DEFAULT_FUNCTION_VALUES = {"function_expression", "function", "arrow_function", "generator_function"}
DEFAULT_CLASS_VALUES = {"class"}


def relative_path(file_path: Path, root_dir: Path) -> str:
    """Path of file_path relative to root_dir with forward slashes."""
    try:
        rel = os.path.relpath(file_path, root_dir)
    except ValueError:
        rel = str(file_path)
    return Path(rel).as_posix()


def read_source(file_path: Path) -> str:
    """Read a source file as UTF-8 text.

    Raises:
        SourceIOError: If the file cannot be read or decoded
    """
    try:
        return Path(file_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceIOError(str(file_path), str(e)) from e


def _node_text(node: Any) -> str:
    return node.text.decode("utf-8", errors="replace") if node is not None else ""


def _node_location(node: Any) -> Location:
    # Tree-sitter rows are 0-based
    return Location(node.start_point[0] + 1, node.end_point[0] + 1)


class EntityExtractor(ABC):
    """Extracts exported entities from one source file."""

    def __init__(self, classifier: Optional[EntityClassifier] = None):
        self.classifier = classifier or HeuristicClassifier()

    @abstractmethod
    def extract(self, file_path: Path, root_dir: Path) -> List[CodeEntity]:
        """Extract entities from a file.

        Args:
            file_path: Path of the source file
            root_dir: Project root that entity file paths are relative to

        Returns:
            Entities in source order

        Raises:
            SourceIOError: If the file cannot be read
            ParseError: If the file cannot be parsed
        """

    @staticmethod
    def _entity(
        entity_type: EntityType, raw_name: str, rel_file: str, loc: Location
    ) -> CodeEntity:
        return CodeEntity(
            id=make_entity_id(entity_type, raw_name),
            entity_type=entity_type,
            file=rel_file,
            loc=loc,
            raw_name=raw_name,
        )


class TypeScriptExtractor(EntityExtractor):
    """Structural extractor for TypeScript, TSX and JavaScript files.

    Only exported top-level declarations are visited.
    """

    def __init__(
        self,
        classifier: Optional[EntityClassifier] = None,
        registry: Optional[LanguageRegistry] = None,
    ):
        super().__init__(classifier)
        self.registry = registry or get_language_registry()

    def extract(self, file_path: Path, root_dir: Path) -> List[CodeEntity]:
        file_path = Path(file_path)
        config = self.registry.get_config_for_file(str(file_path))
        if config is None or not config.is_structural:
            raise ParseError(str(file_path), "no syntax grammar for this file type")

        source = read_source(file_path)
        return self.extract_source(source, file_path, root_dir, config)

    def extract_source(
        self, source: str, file_path: Path, root_dir: Path, config: LanguageConfig
    ) -> List[CodeEntity]:
        """Extract entities from already loaded source text."""
        try:
            parser = self.registry.get_parser(config.name)
            tree = parser.parse(source.encode("utf-8"))
        except Exception as e:
            raise ParseError(str(file_path), f"parser failed: {e}") from e
        if tree is None:
            raise ParseError(str(file_path), "parser returned no tree")

        root_node = tree.root_node
        if root_node.has_error:
            logger.warning(f"Syntax errors in {file_path}, extracting what parsed")

        rel_file = relative_path(file_path, root_dir)
        jsx = config.jsx
        entities: List[CodeEntity] = []

        for child in root_node.children:
            if child.type != "export_statement":
                continue
            entities.extend(self._visit_export(child, file_path, rel_file, jsx))

        logger.debug(f"Extracted {len(entities)} entities from {rel_file}")
        return entities

    def _visit_export(
        self, export_node: Any, file_path: Path, rel_file: str, jsx: bool
    ) -> List[CodeEntity]:
        content = _node_text(export_node)
        loc = _node_location(export_node)

        declaration = export_node.child_by_field_name("declaration")
        if declaration is not None and declaration.type == "ambient_declaration":
            declaration = self._unwrap_ambient(declaration)

        if declaration is None:
            value = export_node.child_by_field_name("value")
            return self._visit_default_value(value, content, loc, file_path, rel_file, jsx)

        node_type = declaration.type
        if node_type in FUNCTION_DECLARATIONS:
            name = self._declaration_name(declaration, file_path)
            entity_type = self.classifier.classify_function(name, content, jsx)
            return [self._entity(entity_type, name, rel_file, loc)]

        if node_type in CLASS_DECLARATIONS:
            name = self._declaration_name(declaration, file_path)
            entity_type = self.classifier.classify_class(name, content, jsx)
            return [self._entity(entity_type, name, rel_file, loc)]

        if node_type in TYPE_DECLARATIONS:
            name = self._declaration_name(declaration, file_path)
            return [self._entity(TYPE_DECLARATIONS[node_type], name, rel_file, loc)]

        if node_type in VARIABLE_DECLARATIONS:
            return self._visit_variables(declaration, content, loc, rel_file, jsx)

        logger.debug(f"Skipping export of {node_type} in {rel_file}")
        return []

    def _visit_default_value(
        self,
        value: Any,
        content: str,
        loc: Location,
        file_path: Path,
        rel_file: str,
        jsx: bool,
    ) -> List[CodeEntity]:
        if value is None:
            # export { a, b } and export * from '...' declare nothing new
            return []

        name_node = value.child_by_field_name("name")
        name = _node_text(name_node) if name_node is not None else file_path.stem

        if value.type in DEFAULT_FUNCTION_VALUES:
            entity_type = self.classifier.classify_function(name, content, jsx)
        elif value.type in DEFAULT_CLASS_VALUES:
            entity_type = self.classifier.classify_class(name, content, jsx)
        else:
            # export default someIdentifier / object literal
            if value.type != "object":
                return []
            entity_type = self.classifier.classify_variable(name, content, _node_text(value), jsx)
        return [self._entity(entity_type, name, rel_file, loc)]

    def _visit_variables(
        self, declaration: Any, content: str, loc: Location, rel_file: str, jsx: bool
    ) -> List[CodeEntity]:
        declarators = [c for c in declaration.children if c.type == "variable_declarator"]
        entities = []
        for declarator in declarators:
            name_node = declarator.child_by_field_name("name")
            if name_node is None or name_node.type != "identifier":
                # Destructuring exports have no single name
                logger.debug(f"Skipping destructured export in {rel_file}")
                continue
            name = _node_text(name_node)
            value_node = declarator.child_by_field_name("value")
            initializer = _node_text(value_node) if value_node is not None else None

            if len(declarators) == 1:
                declarator_content, declarator_loc = content, loc
            else:
                declarator_content, declarator_loc = _node_text(declarator), _node_location(declarator)

            entity_type = self.classifier.classify_variable(
                name, declarator_content, initializer, jsx
            )
            entities.append(self._entity(entity_type, name, rel_file, declarator_loc))
        return entities

    @staticmethod
    def _unwrap_ambient(node: Any) -> Optional[Any]:
        """Return the declaration inside `declare ...`."""
        for child in node.named_children:
            if child.type != "comment":
                return child
        return None

    @staticmethod
    def _declaration_name(declaration: Any, file_path: Path) -> str:
        name_node = declaration.child_by_field_name("name")
        if name_node is None:
            return file_path.stem
        return _node_text(name_node)


# Vue single-file component patterns
SCRIPT_SETUP_RE = re.compile(r"<script\b[^>]*\bsetup\b[^>]*>([\s\S]*?)</script>", re.IGNORECASE)
SCRIPT_RE = re.compile(r"<script\b([^>]*)>([\s\S]*?)</script>", re.IGNORECASE)
EXPORT_DEFAULT_RE = re.compile(r"\bexport\s+default\s+")
DEFINE_COMPONENT_RE = re.compile(r"\bdefineComponent\s*\(")
COMPONENT_NAME_OPTION_RE = re.compile(r"""\bname\s*:\s*['"]([\w-]+)['"]""")
DEFINE_OPTIONS_NAME_RE = re.compile(
    r"""\bdefineOptions\s*\(\s*\{[^}]*?\bname\s*:\s*['"]([\w-]+)['"]"""
)
COMPOSABLE_RE = re.compile(r"\bexport\s+(?:const|function|async\s+function)\s+(use[A-Z]\w*)")
STORE_RE = re.compile(r"""\bdefineStore\s*\(\s*['"]([\w-]+)['"]""")


class ScriptBlock:
    """The script section of a single-file component."""

    def __init__(self, content: str, content_offset: int, start_line: int, end_line: int, setup: bool):
        self.content = content
        self.content_offset = content_offset  # character offset of content in the file
        self.start_line = start_line  # line of the opening <script> tag
        self.end_line = end_line  # line of the closing </script> tag
        self.setup = setup


def _line_at(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def find_script_block(source: str) -> Optional[ScriptBlock]:
    """Locate the <script setup> block, or the plain <script> block."""
    match = SCRIPT_SETUP_RE.search(source)
    setup = match is not None
    if match is None:
        match = SCRIPT_RE.search(source)
        if match is None:
            return None
        group = 2
    else:
        group = 1

    return ScriptBlock(
        content=match.group(group),
        content_offset=match.start(group),
        start_line=_line_at(source, match.start()),
        end_line=_line_at(source, match.end()),
        setup=setup,
    )


class VueExtractor(EntityExtractor):
    """Pattern-based extractor for Vue single-file components."""

    def __init__(
        self,
        classifier: Optional[EntityClassifier] = None,
        registry: Optional[LanguageRegistry] = None,
    ):
        super().__init__(classifier)
        self.registry = registry or get_language_registry()

    def extract(self, file_path: Path, root_dir: Path) -> List[CodeEntity]:
        file_path = Path(file_path)
        source = read_source(file_path)
        return self.extract_source(source, file_path, root_dir)

    def extract_source(self, source: str, file_path: Path, root_dir: Path) -> List[CodeEntity]:
        rel_file = relative_path(file_path, root_dir)
        script = find_script_block(source)
        if script is None:
            logger.debug(f"No script block in {rel_file}")
            return []

        entities: List[CodeEntity] = []
        body = script.content

        markers = [m for m in (EXPORT_DEFAULT_RE.search(body), DEFINE_COMPONENT_RE.search(body)) if m]
        if script.setup or markers:
            options_start = min(m.start() for m in markers) if markers else len(body)
            name = self._component_name(body, options_start, file_path, script.setup)
            loc = Location(script.start_line, max(script.start_line, script.end_line))
            entities.append(self._entity(EntityType.COMPONENT, name, rel_file, loc))

        statement_ranges = self._statement_ranges(body)

        for match in STORE_RE.finditer(body):
            loc = self._match_location(source, script, match.start(), statement_ranges)
            entities.append(self._entity(EntityType.STORE, match.group(1), rel_file, loc))

        for match in COMPOSABLE_RE.finditer(body):
            loc = self._match_location(source, script, match.start(), statement_ranges)
            statement = self._statement_text(body, match.start(), statement_ranges)
            if STORE_RE.search(statement):
                # `export const useXStore = defineStore(...)` is a store
                continue
            entities.append(self._entity(EntityType.COMPOSABLE, match.group(1), rel_file, loc))

        logger.debug(f"Extracted {len(entities)} entities from {rel_file}")
        return entities

    @staticmethod
    def _component_name(body: str, options_start: int, file_path: Path, setup: bool) -> str:
        match = DEFINE_OPTIONS_NAME_RE.search(body)
        if match is None:
            # Only a `name:` inside the component options counts
            match = COMPONENT_NAME_OPTION_RE.search(body, options_start)
        if match:
            return match.group(1)
        if file_path.stem:
            return file_path.stem
        return "setup" if setup else "default"

    def _statement_ranges(self, body: str) -> List[Tuple[int, int, int, int]]:
        """Character and line spans of the top-level statements of a script.

        Returns (start_char, end_char, start_row, end_row) tuples, empty if the
        script cannot be parsed.
        """
        try:
            parser = self.registry.get_parser("typescript")
            encoded = body.encode("utf-8")
            tree = parser.parse(encoded)
        except Exception as e:
            logger.debug(f"Could not parse Vue script block: {e}")
            return []

        ranges = []
        for child in tree.root_node.children:
            start_char = len(encoded[: child.start_byte].decode("utf-8", errors="replace"))
            end_char = len(encoded[: child.end_byte].decode("utf-8", errors="replace"))
            ranges.append((start_char, end_char, child.start_point[0], child.end_point[0]))
        return ranges

    @staticmethod
    def _statement_text(body: str, offset: int, ranges: List[Tuple[int, int, int, int]]) -> str:
        for start_char, end_char, _, _ in ranges:
            if start_char <= offset < end_char:
                return body[start_char:end_char]
        line_end = body.find("\n", offset)
        return body[offset:] if line_end == -1 else body[offset:line_end]

    @staticmethod
    def _match_location(
        source: str,
        script: ScriptBlock,
        offset: int,
        ranges: List[Tuple[int, int, int, int]],
    ) -> Location:
        base_line = _line_at(source, script.content_offset)
        for start_char, end_char, start_row, end_row in ranges:
            if start_char <= offset < end_char:
                return Location(base_line + start_row, base_line + end_row)
        line = base_line + script.content.count("\n", 0, offset)
        return Location(line, line)


class ExtractorRegistry:
    """Selects the extraction strategy for a file."""

    def __init__(
        self,
        classifier: Optional[EntityClassifier] = None,
        registry: Optional[LanguageRegistry] = None,
    ):
        self.registry = registry or get_language_registry()
        self.classifier = classifier or HeuristicClassifier()
        self.structural = TypeScriptExtractor(self.classifier, self.registry)
        self.pattern = VueExtractor(self.classifier, self.registry)

    def get_extractor(self, file_path: Path) -> Optional[EntityExtractor]:
        config = self.registry.get_config_for_file(str(file_path))
        if config is None:
            return None
        return self.structural if config.is_structural else self.pattern

    def is_supported_file(self, file_path: Path) -> bool:
        return self.get_extractor(file_path) is not None

    def extract_file(self, file_path: Path, root_dir: Path) -> List[CodeEntity]:
        """Extract entities from a file with the matching strategy.

        Raises:
            ParseError: If no strategy handles the file or parsing fails
            SourceIOError: If the file cannot be read
        """
        extractor = self.get_extractor(file_path)
        if extractor is None:
            raise ParseError(str(file_path), "unsupported file type")
        return extractor.extract(Path(file_path), Path(root_dir))

    def get_supported_extensions(self) -> List[str]:
        return self.registry.get_supported_extensions()
