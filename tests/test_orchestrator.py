import asyncio
import json
import threading

import httpx
import pytest

from codebase_indexer.config import EnrichmentConfig, LLMConfig
from codebase_indexer.enrichment.llm_client import AnthropicMessagesClient, extract_text
from codebase_indexer.enrichment.models import FAILURE_TAG, EnrichmentStage, LLMRequest, StaticAnalysisResult
from codebase_indexer.enrichment.orchestrator import (
    EnrichmentOrchestrator,
    build_user_prompt,
    generate_labels_fallback,
    parse_llm_response,
)
from codebase_indexer.errors import ApiError
from codebase_indexer.indexer.models import EntityType

GOOD_REPLY = '{"summary": "Formats a date for display.", "tags": ["date", "formatting", "utility"]}'


class FakeLanguageModel:
    """Replies with a fixed text, or raises, and tracks concurrency."""

    def __init__(self, reply=GOOD_REPLY, error=None, delay=0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(self, request):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error:
                raise self.error
            return self.reply
        finally:
            self.in_flight -= 1


class RecordingAnalyzer:
    """Records the thread each analysis runs on."""

    def __init__(self):
        self.threads = []

    def set_entities(self, entities):
        pass

    def analyze(self, entity):
        self.threads.append(threading.get_ident())
        return StaticAnalysisResult()


class ExplodingAnalyzer:
    def set_entities(self, entities):
        pass

    def analyze(self, entity):
        raise RuntimeError("analyzer crashed")


def fast_config(**overrides):
    values = {"retry_delay": 0, "max_retries": 1}
    values.update(overrides)
    return EnrichmentConfig(**values)


@pytest.fixture
def entities(write_file, make_entity):
    write_file("src/date.ts", "/** Formats dates. */\nexport function formatDate() {}\n")
    return [make_entity(f"fn{i}", file="src/date.ts", start=2, end=2) for i in range(5)]


class TestEnrichmentOrchestrator:

    @pytest.mark.asyncio
    async def test_labels_from_language_model(self, temp_workspace, entities):
        model = FakeLanguageModel()
        orchestrator = EnrichmentOrchestrator(temp_workspace, fast_config(), language_model=model)

        results = await orchestrator.enrich_entities(entities[:1])

        assert len(results) == 1
        assert results[0].summary == "Formats a date for display."
        assert results[0].tags == ["date", "formatting", "utility"]
        assert results[0].analysis.annotation == "Formats dates."
        assert orchestrator.stage_counts[EnrichmentStage.DONE] == 1

    @pytest.mark.asyncio
    async def test_every_input_yields_a_result_when_model_always_fails(self, temp_workspace, entities):
        model = FakeLanguageModel(error=ApiError("overloaded", status=529, retryable=True))
        orchestrator = EnrichmentOrchestrator(temp_workspace, fast_config(concurrency=3), language_model=model)

        results = await orchestrator.enrich_entities(entities)

        assert [r.entity.id for r in results] == [e.id for e in entities]
        assert all(not r.failed for r in results)
        assert all(r.summary == "Formats dates." for r in results)
        # one attempt plus one retry per entity
        assert model.calls == 10

    @pytest.mark.asyncio
    async def test_unparseable_reply_uses_fallback(self, temp_workspace, entities):
        model = FakeLanguageModel(reply="I cannot help with that.")
        orchestrator = EnrichmentOrchestrator(temp_workspace, fast_config(), language_model=model)

        results = await orchestrator.enrich_entities(entities[:1])

        assert results[0].summary == "Formats dates."
        assert results[0].tags == ["function"]
        assert model.calls == 1

    @pytest.mark.asyncio
    async def test_pipeline_errors_become_failure_entities(self, temp_workspace, entities):
        orchestrator = EnrichmentOrchestrator(temp_workspace, fast_config(), analyzer=ExplodingAnalyzer())

        results = await orchestrator.enrich_entities(entities[:2])

        assert len(results) == 2
        assert all(r.failed for r in results)
        assert results[0].tags == ["function", FAILURE_TAG]
        assert results[0].summary == "Enrichment failed: analyzer crashed"
        assert results[0].analysis.is_empty()

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, temp_workspace, entities):
        model = FakeLanguageModel(delay=0.05)
        orchestrator = EnrichmentOrchestrator(temp_workspace, fast_config(concurrency=2), language_model=model)

        results = await orchestrator.enrich_entities(entities)

        assert len(results) == 5
        assert model.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_analysis_runs_on_event_loop_thread(self, temp_workspace, entities):
        analyzer = RecordingAnalyzer()
        orchestrator = EnrichmentOrchestrator(temp_workspace, fast_config(concurrency=3), analyzer=analyzer)

        await orchestrator.enrich_entities(entities)

        assert analyzer.threads == [threading.get_ident()] * len(entities)

    @pytest.mark.asyncio
    async def test_empty_input(self, temp_workspace):
        assert await EnrichmentOrchestrator(temp_workspace, fast_config()).enrich_entities([]) == []

    @pytest.mark.asyncio
    async def test_enrich_entities_directly(self, temp_workspace, entities):
        orchestrator = EnrichmentOrchestrator(temp_workspace, fast_config())

        results = await orchestrator.enrich_entities_directly(entities[:3])

        assert [r.entity.id for r in results] == ["Function:fn0", "Function:fn1", "Function:fn2"]
        assert orchestrator.stage_counts[EnrichmentStage.STATIC_ANALYZE] == 3

    @pytest.mark.asyncio
    async def test_run_reads_and_writes_files(self, temp_workspace, write_file):
        write_file("src/a.ts", "export function a() {}\n")
        records = {
            "entities": [
                {"id": "Function:a", "entity_type": "function", "file": "src/a.ts",
                 "loc": {"start_line": 1, "end_line": 1}, "raw_name": "a"},
                {"id": "Broken", "file": "src/a.ts"},
            ]
        }
        input_path = write_file("out/entities.json", json.dumps(records))
        output_path = temp_workspace / "out" / "entities.enriched.json"

        written = await EnrichmentOrchestrator(temp_workspace, fast_config()).run(input_path, output_path)

        assert written == output_path
        data = json.loads(output_path.read_text())
        assert len(data) == 1
        assert data[0]["id"] == "Function:a"
        assert data[0]["summary"] == "function a: imports 0 dependencies, calls 0 functions"
        assert data[0]["IMPORTS"] == [] and data[0]["CALLS"] == [] and data[0]["EMITS"] == []
        assert "TEMPLATE_COMPONENTS" not in data[0]


class TestLabels:

    def test_parse_reply_with_surrounding_text(self, make_entity):
        text = 'Sure! {"summary": "Loads users", "tags": ["api", "api", " users "]} Hope this helps.'

        labels = parse_llm_response(text, make_entity("load"))

        assert labels.summary == "Loads users"
        assert labels.tags == ["api", "users"]

    def test_parse_skips_invalid_braces(self, make_entity):
        text = '{not json} {"summary": "Renders a header", "tags": []}'

        labels = parse_llm_response(text, make_entity("Header", entity_type=EntityType.COMPONENT))

        assert labels.summary == "Renders a header"
        assert labels.tags == ["component"]

    @pytest.mark.parametrize("text", ["no json here", '{"tags": ["a"]}', '{"summary": "", "tags": []}', '{"summary": "x", "tags": "a"}'])
    def test_parse_rejects_invalid_replies(self, make_entity, text):
        assert parse_llm_response(text, make_entity("load")) is None

    def test_parse_truncates(self, make_entity):
        text = json.dumps({"summary": "s" * 300, "tags": [f"t{i}" for i in range(8)]})

        labels = parse_llm_response(text, make_entity("load"), summary_max_chars=160, max_tags=5)

        assert len(labels.summary) == 160
        assert labels.tags == ["t0", "t1", "t2", "t3", "t4"]

    def test_fallback_uses_annotation(self, make_entity):
        analysis = StaticAnalysisResult(annotation="Loads the user.\nCaches the result.")

        labels = generate_labels_fallback(make_entity("load"), analysis)

        assert labels.summary == "Loads the user. Caches the result."
        assert labels.tags == ["function"]

    def test_fallback_tags_from_static_facts(self, make_entity):
        analysis = StaticAnalysisResult(
            imports=[f"Function:i{n}" for n in range(6)],
            calls=[f"Function:c{n}" for n in range(11)],
            emits=["save"],
            template_components=["UserAvatar"],
        )

        labels = generate_labels_fallback(make_entity("Card", entity_type=EntityType.COMPONENT), analysis)

        assert labels.summary == "component Card: imports 6 dependencies, calls 11 functions"
        assert labels.tags == ["component", "complex dependencies", "high fan-out", "emits events", "UI component"]

    def test_user_prompt_lists_facts(self, make_entity):
        analysis = StaticAnalysisResult(imports=["Function:a"], emits=["save"], annotation="Docs")

        prompt = build_user_prompt(make_entity("load"), analysis)

        assert prompt.split("\n") == [
            "Type: function",
            "Name: load",
            "File: src/index.ts",
            "Documentation: Docs",
            "Imports: Function:a",
            "Emits: save",
        ]


class TestAnthropicMessagesClient:

    @pytest.mark.asyncio
    async def test_sends_messages_request(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"content": [{"type": "text", "text": GOOD_REPLY}]})

        config = LLMConfig(api_key="key-123", api_base="https://llm.test/v1")
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with AnthropicMessagesClient(config, client=client) as llm:
            text = await llm.complete(LLMRequest(system_prompt="sys", user_prompt="hello", max_tokens=50))

        assert text == GOOD_REPLY
        assert seen["url"] == "https://llm.test/v1/messages"
        assert seen["headers"]["x-api-key"] == "key-123"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert seen["body"] == {
            "model": config.model,
            "max_tokens": 50,
            "system": "sys",
            "messages": [{"role": "user", "content": "hello"}],
        }

    @pytest.mark.asyncio
    async def test_overloaded_is_retryable(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(529, text="overloaded")))
        llm = AnthropicMessagesClient(LLMConfig(api_key="key"), client=client)

        with pytest.raises(ApiError) as exc_info:
            await llm.complete(LLMRequest(system_prompt="s", user_prompt="u"))
        await llm.close()

        assert exc_info.value.retryable is True

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            AnthropicMessagesClient(LLMConfig(api_key=None))

    def test_extract_text(self):
        payload = {"content": [{"type": "text", "text": "a"}, {"type": "tool_use"}, {"type": "text", "text": "b"}]}
        assert extract_text(payload) == "ab"

        with pytest.raises(ApiError):
            extract_text({"content": []})
