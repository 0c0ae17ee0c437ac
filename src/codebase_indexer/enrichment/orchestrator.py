"""Concurrent enrichment of entities with static facts and LLM labels."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..config import EnrichmentConfig
from ..indexer.models import CodeEntity
from ..retry import Ok, RetryableError, run_with_retry
from .llm_client import LanguageModel
from .loader import load_entities, save_enriched_entities
from .models import (
    FAILURE_TAG,
    EnrichedEntity,
    EnrichmentStage,
    LabelResult,
    LLMRequest,
    StaticAnalysisResult,
)
from .static_analyzer import StaticDependencyAnalyzer

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You label source code entities for a code search index.
You receive an entity's type, name, file, documentation and static dependencies.
Reply with exactly one JSON object and nothing else:
{"summary": "<one sentence describing what the entity does, at most 160 characters>",
 "tags": ["<3 to 5 short lowercase tags>"]}"""

MANY_IMPORTS_THRESHOLD = 5
MANY_CALLS_THRESHOLD = 10
PROMPT_LIST_LIMIT = 20


def _truncate(text: str, limit: int) -> str:
    text = text.strip()
    return text if len(text) <= limit else text[:limit].rstrip()


def build_user_prompt(entity: CodeEntity, analysis: StaticAnalysisResult) -> str:
    lines = [
        f"Type: {entity.entity_type.value}",
        f"Name: {entity.raw_name}",
        f"File: {entity.file}",
    ]
    if analysis.annotation:
        lines.append(f"Documentation: {analysis.annotation}")

    def listing(label: str, values: Optional[List[str]]) -> None:
        if values:
            shown = values[:PROMPT_LIST_LIMIT]
            more = len(values) - len(shown)
            suffix = f" (+{more} more)" if more > 0 else ""
            lines.append(f"{label}: {', '.join(shown)}{suffix}")

    listing("Imports", analysis.imports)
    listing("Calls", analysis.calls)
    listing("Emits", analysis.emits)
    listing("Template components", analysis.template_components)
    return "\n".join(lines)


def parse_llm_response(
    text: str, entity: CodeEntity, summary_max_chars: int = 160, max_tags: int = 5
) -> Optional[LabelResult]:
    """Extract the first JSON object of a model reply and validate it.

    Returns:
        LabelResult, or None if no valid ``{summary, tags}`` object is found
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            data, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(data, dict):
            break
        start = text.find("{", start + 1)
    else:
        return None

    summary = data.get("summary")
    tags = data.get("tags", [])
    if not isinstance(summary, str) or not summary.strip():
        return None
    if not isinstance(tags, list):
        return None

    clean_tags = []
    for tag in tags:
        if isinstance(tag, str) and tag.strip() and tag.strip() not in clean_tags:
            clean_tags.append(tag.strip())
    if not clean_tags:
        clean_tags = [entity.entity_type.value]

    return LabelResult(
        summary=_truncate(summary, summary_max_chars),
        tags=clean_tags[:max_tags],
    )


def generate_labels_fallback(
    entity: CodeEntity, analysis: StaticAnalysisResult, summary_max_chars: int = 160
) -> LabelResult:
    """Deterministic labels built from static facts only."""
    if analysis.annotation:
        summary = _truncate(analysis.annotation.replace("\n", " "), summary_max_chars)
    else:
        summary = _truncate(
            f"{entity.entity_type.value} {entity.raw_name}: imports {len(analysis.imports)} "
            f"dependencies, calls {len(analysis.calls)} functions",
            summary_max_chars,
        )

    tags = [entity.entity_type.value]
    if len(analysis.imports) > MANY_IMPORTS_THRESHOLD:
        tags.append("complex dependencies")
    if len(analysis.calls) > MANY_CALLS_THRESHOLD:
        tags.append("high fan-out")
    if analysis.emits:
        tags.append("emits events")
    if analysis.template_components:
        tags.append("UI component")
    return LabelResult(summary=summary, tags=tags)


def failure_entity(entity: CodeEntity, error: BaseException) -> EnrichedEntity:
    return EnrichedEntity(
        entity=entity,
        analysis=StaticAnalysisResult.empty(),
        summary=f"Enrichment failed: {error}",
        tags=[entity.entity_type.value, FAILURE_TAG],
        failed=True,
    )


def _retry_everything(error: Exception) -> RetryableError:
    return RetryableError(error)


class EnrichmentOrchestrator:
    """Runs static analysis and summarization for many entities at once.

    Entities are enriched as cooperative tasks on one event loop. Static
    analysis runs inline, so only LLM calls and retry backoff interleave.
    """

    def __init__(
        self,
        root_dir: Path,
        config: Optional[EnrichmentConfig] = None,
        language_model: Optional[LanguageModel] = None,
        analyzer: Optional[StaticDependencyAnalyzer] = None,
        max_output_tokens: int = 300,
    ):
        """Initialize the orchestrator.

        Args:
            root_dir: Project root that entity file paths are relative to
            config: Concurrency, retry and output settings
            language_model: Summarization collaborator, None for fallback labels
            analyzer: Static analyzer (built from the entity list if None)
            max_output_tokens: Output budget passed to the language model
        """
        self.root_dir = Path(root_dir)
        self.config = config or EnrichmentConfig()
        self.language_model = language_model
        self.analyzer = analyzer or StaticDependencyAnalyzer(self.root_dir)
        self.max_output_tokens = max_output_tokens
        self.stage_counts: Dict[EnrichmentStage, int] = {stage: 0 for stage in EnrichmentStage}

        if language_model is None:
            logger.info("No language model configured, using fallback labels")

    def _advance(self, entity: CodeEntity, stage: EnrichmentStage) -> None:
        self.stage_counts[stage] += 1
        logger.debug(f"{entity.id}: {stage.value}")

    async def summarize(self, entity: CodeEntity, analysis: StaticAnalysisResult) -> LabelResult:
        """Ask the language model for labels, falling back when it cannot help."""
        if self.language_model is None:
            return generate_labels_fallback(entity, analysis, self.config.summary_max_chars)

        request = LLMRequest(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=build_user_prompt(entity, analysis),
            max_tokens=self.max_output_tokens,
        )
        result = await run_with_retry(
            lambda: self.language_model.complete(request),
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_delay,
            description=f"Summarizing {entity.id}",
        )
        if not isinstance(result, Ok):
            return generate_labels_fallback(entity, analysis, self.config.summary_max_chars)

        labels = parse_llm_response(
            result.value, entity, self.config.summary_max_chars, self.config.max_tags
        )
        if labels is None:
            logger.warning(f"Unparseable model reply for {entity.id}, using fallback labels")
            return generate_labels_fallback(entity, analysis, self.config.summary_max_chars)
        return labels

    async def enrich_entity(self, entity: CodeEntity) -> EnrichedEntity:
        """Run one entity through load, static analysis and summarization."""
        self._advance(entity, EnrichmentStage.LOAD)

        self._advance(entity, EnrichmentStage.STATIC_ANALYZE)
        analysis = self.analyzer.analyze(entity)

        self._advance(entity, EnrichmentStage.SUMMARIZE)
        labels = await self.summarize(entity, analysis)

        self._advance(entity, EnrichmentStage.DONE)
        return EnrichedEntity(
            entity=entity, analysis=analysis, summary=labels.summary, tags=labels.tags
        )

    async def enrich_entity_with_retry(self, entity: CodeEntity) -> EnrichedEntity:
        """Enrich one entity, marking it as failed instead of raising."""
        result = await run_with_retry(
            lambda: self.enrich_entity(entity),
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_delay,
            classify=_retry_everything,
            description=f"Enriching {entity.id}",
        )
        if isinstance(result, Ok):
            return result.value
        return failure_entity(entity, result.error)

    async def enrich_entities(
        self, entities: List[CodeEntity], full_entities: Optional[List[CodeEntity]] = None
    ) -> List[EnrichedEntity]:
        """Enrich entities with at most ``concurrency`` pipelines in flight.

        Args:
            entities: Entities to enrich
            full_entities: Entity set used for import resolution (defaults to entities)

        Returns:
            One EnrichedEntity per input, in input order
        """
        self.analyzer.set_entities(full_entities if full_entities is not None else entities)
        limit = max(1, self.config.concurrency)
        results: List[Optional[EnrichedEntity]] = [None] * len(entities)

        logger.info(f"Enriching {len(entities)} entities (concurrency: {limit})")
        pending: Dict[asyncio.Task, int] = {}
        next_index = 0
        completed = 0

        try:
            while next_index < len(entities) or pending:
                while next_index < len(entities) and len(pending) < limit:
                    task = asyncio.create_task(self.enrich_entity_with_retry(entities[next_index]))
                    pending[task] = next_index
                    next_index += 1

                done, _ = await asyncio.wait(pending.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    index = pending.pop(task)
                    error = task.exception()
                    results[index] = (
                        failure_entity(entities[index], error) if error else task.result()
                    )
                    completed += 1
                    if completed % 50 == 0:
                        logger.info(f"Enriched {completed}/{len(entities)} entities")
        finally:
            for task in pending:
                task.cancel()

        failed = sum(1 for r in results if r is not None and r.failed)
        logger.info(f"Enrichment finished: {len(results)} entities, {failed} failed")
        return [r for r in results if r is not None]

    async def enrich_entities_directly(self, entities: List[CodeEntity]) -> List[EnrichedEntity]:
        """Enrich an in-memory entity list without reading or writing files."""
        return await self.enrich_entities(entities)

    async def run(
        self, input_path: Optional[Path] = None, output_path: Optional[Path] = None
    ) -> Path:
        """Load entities from disk, enrich them and write the result.

        Raises:
            SourceIOError: If the input file cannot be read
            ValidationError: If the input file is malformed
        """
        input_path = Path(input_path or self.config.input_path)
        output_path = Path(output_path or self.config.output_path)

        entities = load_entities(input_path)
        enriched = await self.enrich_entities(entities)
        return save_enriched_entities(enriched, output_path)
