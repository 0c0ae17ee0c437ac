"""Language grammar configuration and detection for tree-sitter."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import tree_sitter_javascript as tsjavascript
import tree_sitter_typescript as tstypescript
from tree_sitter import Language, Parser

logger = logging.getLogger(__name__)


class LanguageConfig:
    """Configuration for a source language."""

    def __init__(
        self,
        name: str,
        extensions: List[str],
        module: Any = None,
        language_function: str = "language",
        jsx: bool = False,
    ):
        """Initialize language configuration.

        Args:
            name: Language name (typescript, tsx, javascript, vue)
            extensions: List of file extensions
            module: Tree-sitter grammar module, None for pattern-based languages
            language_function: Name of the module function returning the grammar
            jsx: Whether files of this language may contain JSX
        """
        self.name = name
        self.extensions = extensions
        self.module = module
        self.language_function = language_function
        self.jsx = jsx

    @property
    def is_structural(self) -> bool:
        """True if files are parsed with a tree-sitter grammar."""
        return self.module is not None


DEFAULT_LANGUAGES = [
    LanguageConfig("typescript", [".ts", ".mts", ".cts"], tstypescript, "language_typescript"),
    LanguageConfig("tsx", [".tsx"], tstypescript, "language_tsx", jsx=True),
    LanguageConfig("javascript", [".js", ".mjs", ".cjs"], tsjavascript),
    LanguageConfig("jsx", [".jsx"], tsjavascript, jsx=True),
    LanguageConfig("vue", [".vue"]),
]


class LanguageRegistry:
    """Registry of language configurations and their parsers."""

    def __init__(self, languages: Optional[List[LanguageConfig]] = None):
        self.languages: Dict[str, LanguageConfig] = {}
        self.extension_map: Dict[str, str] = {}
        self._grammars: Dict[str, Language] = {}

        for language in languages if languages is not None else DEFAULT_LANGUAGES:
            self.languages[language.name] = language
            for ext in language.extensions:
                self.extension_map[ext] = language.name

        logger.debug(f"Registered {len(self.languages)} language configurations")

    def detect_language(self, file_path: str) -> Optional[str]:
        """Detect source language from file extension.

        Args:
            file_path: Path to the file

        Returns:
            Language name or None if not recognized
        """
        extension = Path(file_path).suffix.lower()
        language = self.extension_map.get(extension)
        if language is None:
            logger.debug(f"Unknown file extension: {extension}")
        return language

    def get_language_config(self, language: str) -> Optional[LanguageConfig]:
        return self.languages.get(language)

    def get_config_for_file(self, file_path: str) -> Optional[LanguageConfig]:
        language = self.detect_language(file_path)
        return self.get_language_config(language) if language else None

    def get_supported_extensions(self) -> List[str]:
        return list(self.extension_map.keys())

    def is_supported_file(self, file_path: str) -> bool:
        return self.detect_language(file_path) is not None

    def _get_grammar(self, config: LanguageConfig) -> Language:
        grammar = self._grammars.get(config.name)
        if grammar is None:
            lang_func = getattr(config.module, config.language_function, None)
            if lang_func is None:
                raise ValueError(
                    f"Grammar module for {config.name} has no function "
                    f"'{config.language_function}'"
                )
            grammar = Language(lang_func())
            self._grammars[config.name] = grammar
            logger.debug(f"Initialized grammar for {config.name}")
        return grammar

    def get_parser(self, language: str) -> Parser:
        """Create a parser for a structural language.

        Parsers are created per call so concurrent extractions never share
        parser state; grammars are cached.

        Raises:
            ValueError: If the language is unknown or not tree-sitter based
        """
        config = self.languages.get(language)
        if config is None or not config.is_structural:
            raise ValueError(f"No tree-sitter grammar registered for {language}")

        parser = Parser()
        parser.language = self._get_grammar(config)
        return parser


# Global registry instance
_registry: Optional[LanguageRegistry] = None


def get_language_registry() -> LanguageRegistry:
    """Get the global language registry instance.

    Returns:
        LanguageRegistry instance
    """
    global _registry
    if _registry is None:
        _registry = LanguageRegistry()
    return _registry
