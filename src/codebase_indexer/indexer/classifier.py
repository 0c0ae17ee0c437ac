"""Classification of exported declarations into entity types."""

import re
from abc import ABC, abstractmethod
from typing import Optional

from .models import EntityType

# Names that read as actions or utilities are never components
NON_COMPONENT_PREFIX = re.compile(
    r"^(get|set|create|build|make|do|run|execute|process|handle|manage|validate|parse|"
    r"format|transform|convert|generate|load|save|fetch|send|post|put|delete|update|find|"
    r"search|filter|sort|map|reduce|forEach|some|every|has|is|can|should|will|add|remove|"
    r"insert|append|prepend|clear|reset|init|start|stop|pause|resume|toggle|enable|disable|"
    r"activate|deactivate|register|unregister|subscribe|unsubscribe|emit|on|off|once|use|"
    r"apply|call|bind|extend|mixin|clone|copy|merge|assign|compare|equals|toString|valueOf|"
    r"collect|calculate|normalize|resolve|analyze|extract|combine|compile|decode|encode|log|"
    r"debug|warn|error|test|mock|stub|spy|watch|listen|notify|trigger|dispatch)"
)
NON_COMPONENT_SUFFIX = re.compile(
    r"(Prompt|Util|Utils|Helper|Helpers|Handler|Handlers|Service|Services|Manager|Managers|"
    r"Config|Configuration|Factory|Builder|Adapter|Strategy|Provider|Repository|Store|Cache|"
    r"Logger|Router|Middleware|Plugin|Tool|Tools)$"
)
BUSINESS_CLASS_SUFFIX = re.compile(
    r"(Handler|Service|Manager|Controller|Provider|Repository|Store|Model|Entity|DTO|DAO|"
    r"Util|Utils|Helper|Config|Configuration|Builder|Factory|Strategy|Adapter|Interceptor|"
    r"Middleware|Analyzer|Processor|Generator|Validator|Transformer|Converter|Extractor|"
    r"Loader|Monitor|Client|Base[A-Z]\w*)$"
)
BUSINESS_BASE_CLASS = re.compile(
    r"\bextends\s+(?:[\w$]+\.)*(?:[\w$]*(?:Domain|Service|Manager|Handler|Controller)|Base)\b"
)
UI_BASE_CLASS = re.compile(
    r"\bextends\s+(?:[\w$]+\.)*\w*(Component|Widget|Element|View|Page|Dialog|Modal|Panel|Card|"
    r"Button|Input|Form|Table|List|Grid|Menu|Tab|Tooltip|Popup|Overlay)\b"
)
REACT_COMPONENT_BASE = re.compile(r"\bextends\s+(?:React\.)?(?:Pure)?Component\b")
RENDER_METHOD = re.compile(r"\brender\s*\(")
DRAW_METHOD = re.compile(r"\b(render|paint|draw)\s*\(")
JSX_RETURN = re.compile(r"(\breturn|=>)\s*\(?\s*<[A-Za-z>]")
COMPONENT_DECORATOR = re.compile(r"@[Cc]omponent\b")

CONSTANT_NAME = re.compile(r"^[A-Z_][A-Z0-9_]*$")
COMPONENT_NAME = re.compile(r"^[A-Z][a-zA-Z0-9]*$")
LITERAL_VALUE = re.compile(r"""^(['"`][\s\S]*['"`]|-?[\d.]+|true|false|null|undefined)$""")
FUNCTION_VALUE = re.compile(r"=>|\bfunction\s*\*?\s*\(|\bfunction\s+[\w$]+\s*\(")


def is_denylisted_name(name: str) -> bool:
    """True if the name reads as an action or utility rather than a component."""
    return bool(NON_COMPONENT_PREFIX.match(name) or NON_COMPONENT_SUFFIX.search(name))


class EntityClassifier(ABC):
    """Decides which entity type an exported declaration becomes.

    Extractors hand over the declaration's name and source text; an
    implementation may use any rule it likes as long as it returns one of the
    entity types below.
    """

    @abstractmethod
    def classify_function(self, name: str, content: str, jsx: bool) -> EntityType:
        """Classify a function declaration as FUNCTION or COMPONENT."""

    @abstractmethod
    def classify_class(self, name: str, content: str, jsx: bool) -> EntityType:
        """Classify a class declaration as CLASS or COMPONENT."""

    @abstractmethod
    def classify_variable(
        self, name: str, content: str, initializer: Optional[str], jsx: bool
    ) -> EntityType:
        """Classify a variable declarator as VARIABLE, FUNCTION or COMPONENT."""


class HeuristicClassifier(EntityClassifier):
    """Name and text pattern heuristics for TS/JS/React code."""

    def is_component_function(self, name: str, content: str, jsx: bool) -> bool:
        if is_denylisted_name(name):
            return False
        if jsx and JSX_RETURN.search(content):
            return True
        has_marker = bool(COMPONENT_DECORATOR.search(content))
        return bool(COMPONENT_NAME.match(name)) and has_marker

    def is_component_class(self, name: str, content: str, jsx: bool) -> bool:
        if jsx and (REACT_COMPONENT_BASE.search(content) or RENDER_METHOD.search(content)):
            return True
        if BUSINESS_CLASS_SUFFIX.search(name):
            return False
        if BUSINESS_BASE_CLASS.search(content):
            return False
        if UI_BASE_CLASS.search(content):
            return True
        if COMPONENT_DECORATOR.search(content):
            return True
        return jsx and bool(DRAW_METHOD.search(content)) and bool(COMPONENT_NAME.match(name))

    def is_constant(self, name: str, initializer: Optional[str]) -> bool:
        if CONSTANT_NAME.match(name):
            return True
        if initializer is None:
            return False
        value = initializer.strip()
        if value.endswith(" as const"):
            value = value[: -len(" as const")].rstrip()
        if LITERAL_VALUE.match(value):
            return True
        return (value.startswith("{") and value.endswith("}")) or (
            value.startswith("[") and value.endswith("]")
        )

    def is_function_value(self, initializer: Optional[str]) -> bool:
        if initializer is None:
            return False
        return bool(FUNCTION_VALUE.search(initializer))

    def is_component_variable(
        self, name: str, content: str, initializer: Optional[str], jsx: bool
    ) -> bool:
        if CONSTANT_NAME.match(name) or is_denylisted_name(name):
            return False
        body = initializer if initializer is not None else content
        if jsx and JSX_RETURN.search(body):
            return True
        return bool(COMPONENT_NAME.match(name)) and bool(COMPONENT_DECORATOR.search(content))

    def classify_function(self, name: str, content: str, jsx: bool) -> EntityType:
        if self.is_component_function(name, content, jsx):
            return EntityType.COMPONENT
        return EntityType.FUNCTION

    def classify_class(self, name: str, content: str, jsx: bool) -> EntityType:
        if self.is_component_class(name, content, jsx):
            return EntityType.COMPONENT
        return EntityType.CLASS

    def classify_variable(
        self, name: str, content: str, initializer: Optional[str], jsx: bool
    ) -> EntityType:
        if self.is_component_variable(name, content, initializer, jsx):
            return EntityType.COMPONENT
        if self.is_constant(name, initializer):
            return EntityType.VARIABLE
        if self.is_function_value(initializer):
            return EntityType.FUNCTION
        return EntityType.VARIABLE
