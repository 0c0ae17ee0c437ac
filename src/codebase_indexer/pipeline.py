"""End-to-end indexing run: scan, chunk, embed and enrich."""

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from .config import IndexerConfig, configure_logging
from .enrichment.llm_client import AnthropicMessagesClient, LanguageModel
from .enrichment.loader import save_enriched_entities
from .enrichment.models import EnrichedEntity
from .enrichment.orchestrator import EnrichmentOrchestrator
from .errors import IndexerError
from .indexer.chunker import ChunkBuilder
from .indexer.embeddings import EmbeddingProvider, EmbeddingService, OpenAIEmbeddingProvider
from .indexer.file_walker import SourceWalker
from .indexer.models import ChunkStats, CodeChunk, CodeEntity, EmbeddedChunk, EmbeddingStats, ScanStats
from .indexer.persistence import save_chunks, save_embedded_chunks, save_entities

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outputs of one indexing run."""

    entities: List[CodeEntity] = field(default_factory=list)
    scan_stats: Optional[ScanStats] = None
    chunk_stats: Optional[ChunkStats] = None
    embedding_stats: Optional[EmbeddingStats] = None
    enriched: List[EnrichedEntity] = field(default_factory=list)
    entities_path: Optional[Path] = None
    chunks_path: Optional[Path] = None
    embeddings_path: Optional[Path] = None
    enriched_path: Optional[Path] = None


class IndexingPipeline:
    """Wires the indexing components together from one configuration."""

    def __init__(
        self,
        config: IndexerConfig,
        embedding_provider: Optional[EmbeddingProvider] = None,
        language_model: Optional[LanguageModel] = None,
    ):
        """Initialize the pipeline.

        Args:
            config: Run configuration
            embedding_provider: Provider override; built from config if None
            language_model: Summarizer override; built from config if None
        """
        self.config = config
        self.root = Path(config.workspace_path).resolve()

        if embedding_provider is None and config.embedding.api_key:
            embedding_provider = OpenAIEmbeddingProvider(
                api_key=config.embedding.api_key,
                api_base=config.embedding.api_base,
                timeout=config.embedding.timeout,
            )
        if language_model is None and config.llm.api_key:
            language_model = AnthropicMessagesClient(config.llm)

        self.embedding_provider = embedding_provider
        self.language_model = language_model
        self.walker = SourceWalker(config.scan)
        self.chunk_builder = ChunkBuilder(self.root)

    def scan(self) -> Tuple[List[CodeEntity], ScanStats]:
        """Extract all entities of the workspace.

        Raises:
            NotFoundError: If the workspace root does not exist
        """
        return self.walker.extract_all_entities(self.root)

    def build_chunks(self, entities: List[CodeEntity]) -> Tuple[List[CodeChunk], ChunkStats]:
        return self.chunk_builder.build_chunks(entities)

    async def embed(
        self, chunks: List[CodeChunk]
    ) -> Optional[Tuple[List[EmbeddedChunk], EmbeddingStats]]:
        if self.embedding_provider is None:
            logger.warning("No embedding API key configured, skipping embeddings")
            return None
        service = EmbeddingService(self.embedding_provider, self.config.embedding)
        return await service.embed_chunks(chunks)

    async def enrich(self, entities: List[CodeEntity]) -> List[EnrichedEntity]:
        orchestrator = EnrichmentOrchestrator(
            self.root,
            config=self.config.enrichment,
            language_model=self.language_model,
            max_output_tokens=self.config.llm.max_tokens,
        )
        return await orchestrator.enrich_entities(entities)

    async def run(self) -> PipelineResult:
        """Run every stage and persist the results."""
        output_dir = Path(self.config.output_dir)
        result = PipelineResult()

        entities, scan_stats = self.scan()
        result.entities = entities
        result.scan_stats = scan_stats
        result.entities_path = save_entities(entities, scan_stats, self.root, output_dir)

        chunks, chunk_stats = self.build_chunks(entities)
        result.chunk_stats = chunk_stats
        result.chunks_path = save_chunks(chunks, chunk_stats, self.root, output_dir)

        embedded = await self.embed(chunks)
        if embedded is not None:
            embedded_chunks, result.embedding_stats = embedded
            result.embeddings_path = save_embedded_chunks(
                embedded_chunks,
                result.embedding_stats,
                self.root,
                output_dir,
                self.config.embedding.model,
            )

        result.enriched = await self.enrich(entities)
        result.enriched_path = save_enriched_entities(
            result.enriched, self.config.enrichment.output_path
        )
        return result

    async def close(self) -> None:
        for collaborator in (self.embedding_provider, self.language_model):
            close = getattr(collaborator, "close", None)
            if close is not None:
                await close()


async def main(workspace_path: Optional[str] = None) -> int:
    """Run the pipeline for the configured workspace.

    Returns:
        Process exit code
    """
    config = IndexerConfig.from_env(Path(workspace_path) if workspace_path else None)
    configure_logging(config.log_level, config.log_file)

    logger.info(f"Starting indexer for workspace: {config.workspace_path}")
    logger.info(f"Output directory: {config.output_dir}")

    pipeline = IndexingPipeline(config)
    try:
        result = await pipeline.run()
    except IndexerError as e:
        logger.error(f"Indexing failed: {e}")
        return 1
    finally:
        await pipeline.close()

    logger.info("=" * 60)
    logger.info("Indexing complete!")
    logger.info(f"Entities: {len(result.entities)} -> {result.entities_path}")
    if result.chunk_stats:
        logger.info(f"Chunks: {result.chunk_stats.total_chunks} -> {result.chunks_path}")
    if result.embedding_stats:
        logger.info(
            f"Embeddings: {result.embedding_stats.total_chunks - result.embedding_stats.failed_chunks}"
            f" (${result.embedding_stats.estimated_cost:.6f}) -> {result.embeddings_path}"
        )
    logger.info(f"Enriched: {len(result.enriched)} -> {result.enriched_path}")
    logger.info("=" * 60)
    return 0


def cli() -> None:
    workspace_path = sys.argv[1] if len(sys.argv) > 1 else None
    sys.exit(asyncio.run(main(workspace_path)))
