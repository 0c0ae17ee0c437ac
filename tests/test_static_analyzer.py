import pytest

from codebase_indexer.enrichment.static_analyzer import (
    StaticDependencyAnalyzer,
    comment_above,
    extract_annotation,
)
from codebase_indexer.indexer.models import EntityType

CARD_VUE = """<template>
  <div>
    <UserAvatar :user="user" />
    <base-button @click="save">Save</base-button>
    <span>x</span>
  </div>
</template>

<script setup lang="ts">
// Shows a user card.
import { formatDate } from '../utils/format'
import { helper } from '../utils'
import axios from 'axios'
const emit = defineEmits(['save'])
function save() {
  emit('save', formatDate(new Date()))
  helper()
}
</script>
"""

BUTTON_TSX = """import { track } from './analytics'

/** Primary action button. */
export function Button(props) {
  track('click')
  return <button onClick={() => props.onPress()}>ok</button>
}
"""


@pytest.fixture
def project(temp_workspace, write_file, make_entity):
    write_file("src/utils/format.ts", "export function formatDate(d) { return d }\nexport const VERSION = '1'\n")
    write_file("src/utils/index.ts", "export function helper() {}\n")
    write_file("src/components/Card.vue", CARD_VUE)
    write_file("src/ui/analytics.ts", "export function track(name) {}\n")
    write_file("src/ui/Button.tsx", BUTTON_TSX)

    entities = {
        "formatDate": make_entity("formatDate", file="src/utils/format.ts"),
        "VERSION": make_entity("VERSION", file="src/utils/format.ts", entity_type=EntityType.VARIABLE, start=2, end=2),
        "helper": make_entity("helper", file="src/utils/index.ts"),
        "Card": make_entity("Card", file="src/components/Card.vue", entity_type=EntityType.COMPONENT, start=9, end=19),
        "track": make_entity("track", file="src/ui/analytics.ts"),
        "Button": make_entity("Button", file="src/ui/Button.tsx", entity_type=EntityType.COMPONENT, start=4, end=7),
    }
    analyzer = StaticDependencyAnalyzer(temp_workspace, list(entities.values()))
    return analyzer, entities


class TestStaticDependencyAnalyzer:

    def test_vue_component(self, project):
        analyzer, entities = project

        result = analyzer.analyze(entities["Card"])

        assert result.imports == ["Function:formatDate", "Function:helper", "Variable:VERSION"]
        assert result.calls == ["Function:formatDate", "Function:helper"]
        assert result.emits == ["save"]
        assert result.template_components == ["UserAvatar", "base-button"]
        assert result.annotation == "Shows a user card."

    def test_tsx_component(self, project):
        analyzer, entities = project

        result = analyzer.analyze(entities["Button"])

        assert result.imports == ["Function:track"]
        assert result.calls == ["Function:track"]
        assert result.emits == ["press"]
        assert result.template_components is None
        assert result.annotation == "Primary action button."

    def test_entity_without_dependencies(self, project):
        analyzer, entities = project

        result = analyzer.analyze(entities["helper"])

        assert result.imports == []
        assert result.calls == []
        assert result.emits == []
        assert result.template_components is None

    def test_missing_source_file_gives_empty_result(self, project, make_entity):
        analyzer, _ = project

        result = analyzer.analyze(make_entity("ghost", file="src/deleted.ts"))

        assert result.is_empty()
        assert result.imports == [] and result.annotation is None

    def test_resolve_module_path(self, project):
        analyzer, _ = project

        assert analyzer.resolve_module_path("src/components/Card.vue", "../utils/format") == "src/utils/format.ts"
        assert analyzer.resolve_module_path("src/components/Card.vue", "../utils") == "src/utils/index.ts"
        assert analyzer.resolve_module_path("src/components/Card.vue", "vue") is None
        assert analyzer.resolve_module_path("src/a.ts", "../../outside") is None
        assert analyzer.resolve_module_path("src/ui/Button.tsx", "./missing") is None

    def test_lookup(self, project):
        analyzer, entities = project

        assert analyzer.lookup("src/utils/format.ts", "VERSION") == entities["VERSION"]
        assert analyzer.lookup("./src/utils/format.ts", "formatDate") == entities["formatDate"]
        assert analyzer.lookup("src/utils/format.ts", "nope") is None


class TestAnnotations:

    def test_block_comment_preferred(self):
        text = "/**\n * First line.\n * Second line.\n */\n// trailing\nexport const a = 1"
        assert extract_annotation(text) == "First line.\nSecond line."

    def test_line_comments_are_joined(self):
        assert extract_annotation("// one\n// two\ncode()") == "one\ntwo"

    def test_no_leading_comment(self):
        assert extract_annotation("export const a = 1 // late") is None

    def test_comment_above_skips_blank_lines(self):
        lines = ["/* Docs here */", "", "export const a = 1"]
        assert comment_above(lines, 3) == "Docs here"

    def test_comment_above_requires_comment(self):
        lines = ["const x = 1", "export const a = 1"]
        assert comment_above(lines, 2) is None
