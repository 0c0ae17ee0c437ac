import json
from pathlib import Path

import pytest

from codebase_indexer.config import EmbeddingConfig, EnrichmentConfig, IndexerConfig, ScanConfig
from codebase_indexer.indexer.embeddings import EmbeddingResponse
from codebase_indexer.pipeline import IndexingPipeline, main


class FakeProvider:
    def __init__(self):
        self.calls = 0

    async def embed(self, request):
        self.calls += 1
        data = [{"index": i, "embedding": [0.1, 0.2, 0.3]} for i in range(len(request.input))]
        return EmbeddingResponse.from_dict({"data": data, "usage": {"total_tokens": 7}})


class FakeLanguageModel:
    async def complete(self, request):
        return '{"summary": "Generated summary.", "tags": ["generated"]}'


@pytest.fixture
def project(temp_workspace, write_file):
    write_file("src/format.ts", "export function formatDate(d: Date) {\n  return d.toISOString()\n}\n")
    write_file(
        "src/Card.vue",
        "<template><UserAvatar /></template>\n"
        "<script setup lang=\"ts\">\n"
        "import { formatDate } from './format'\n"
        "const label = formatDate(new Date())\n"
        "</script>\n",
    )
    write_file("node_modules/dep/index.ts", "export const ignored = 1\n")
    return temp_workspace


def make_config(root):
    output_dir = root / "out"
    return IndexerConfig(
        workspace_path=root,
        output_dir=output_dir,
        scan=ScanConfig(include_workspace=False),
        embedding=EmbeddingConfig(batch_delay=0, retry_base_delay=0),
        enrichment=EnrichmentConfig(
            retry_delay=0,
            input_path=output_dir / "entities.json",
            output_path=output_dir / "entities.enriched.json",
        ),
    )


class TestIndexingPipeline:

    @pytest.mark.asyncio
    async def test_full_run(self, project):
        provider = FakeProvider()
        pipeline = IndexingPipeline(make_config(project), embedding_provider=provider, language_model=FakeLanguageModel())

        result = await pipeline.run()
        await pipeline.close()

        assert sorted(e.id for e in result.entities) == ["Component:Card", "Function:formatDate"]
        assert result.scan_stats.total_files == 2
        assert result.chunk_stats.total_chunks == 2
        assert result.embedding_stats.api_calls == 1
        assert provider.calls == 1

        for path in (result.entities_path, result.chunks_path, result.embeddings_path, result.enriched_path):
            assert path.is_file()

        embeddings = json.loads(result.embeddings_path.read_text())
        assert embeddings["metadata"]["model"] == "text-embedding-3-small"
        assert all(chunk["embedding"] == [0.1, 0.2, 0.3] for chunk in embeddings["chunks"])

        enriched = {item["id"]: item for item in json.loads(result.enriched_path.read_text())}
        card = enriched["Component:Card"]
        assert card["IMPORTS"] == ["Function:formatDate"]
        assert card["CALLS"] == ["Function:formatDate"]
        assert card["TEMPLATE_COMPONENTS"] == ["UserAvatar"]
        assert card["summary"] == "Generated summary."
        assert "TEMPLATE_COMPONENTS" not in enriched["Function:formatDate"]

    @pytest.mark.asyncio
    async def test_without_credentials_skips_embeddings_and_uses_fallback(self, project):
        pipeline = IndexingPipeline(make_config(project))

        result = await pipeline.run()

        assert pipeline.embedding_provider is None
        assert result.embedding_stats is None
        assert result.embeddings_path is None
        assert len(result.enriched) == 2
        assert all(not item.failed for item in result.enriched)

    @pytest.mark.asyncio
    async def test_main_reports_missing_workspace(self, temp_workspace, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setenv("OUTPUT_DIR", str(temp_workspace / "out"))

        assert await main(str(temp_workspace / "does-not-exist")) == 1


class TestConfigFromEnv:

    def test_defaults(self, temp_workspace, monkeypatch):
        for name in ("OUTPUT_DIR", "BATCH_SIZE", "ENRICH_CONCURRENCY", "EMBEDDING_MODEL", "OPENAI_API_KEY", "LOG_LEVEL", "ENRICH_INPUT"):
            monkeypatch.delenv(name, raising=False)

        config = IndexerConfig.from_env(temp_workspace)

        assert config.workspace_path == temp_workspace
        assert config.output_dir == temp_workspace / "index-output"
        assert config.embedding.batch_size == 100
        assert config.embedding.model == "text-embedding-3-small"
        assert config.embedding.api_key is None
        assert config.enrichment.concurrency == 1
        assert config.enrichment.input_path == temp_workspace / "index-output" / "entities.json"
        assert config.log_level == "INFO"

    def test_overrides(self, temp_workspace, monkeypatch):
        monkeypatch.setenv("WORKSPACE_PATH", str(temp_workspace))
        monkeypatch.setenv("OUTPUT_DIR", str(temp_workspace / "idx"))
        monkeypatch.setenv("BATCH_SIZE", "25")
        monkeypatch.setenv("ENRICH_CONCURRENCY", "4")
        monkeypatch.setenv("RETRY_DELAY_SECONDS", "0.5")
        monkeypatch.setenv("INCLUDE_WORKSPACE", "false")
        monkeypatch.setenv("SCAN_EXTENSIONS", ".ts, .vue")
        monkeypatch.setenv("EMBEDDING_CACHE_PATH", str(temp_workspace / "cache"))
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = IndexerConfig.from_env()

        assert config.workspace_path == Path(temp_workspace)
        assert config.output_dir == temp_workspace / "idx"
        assert config.embedding.batch_size == 25
        assert config.embedding.cache_dir == temp_workspace / "cache"
        assert config.enrichment.concurrency == 4
        assert config.enrichment.retry_delay == 0.5
        assert config.scan.include_workspace is False
        assert config.scan.extensions == [".ts", ".vue"]
        assert config.log_level == "DEBUG"
