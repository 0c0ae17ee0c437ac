"""Configuration objects for the indexing pipeline.

Configuration is built once (usually from the environment) and passed
explicitly to every component.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

DEFAULT_EXTENSIONS = [".vue", ".ts", ".tsx", ".js", ".jsx"]

DEFAULT_IGNORE_DIRS = [
    "node_modules",
    "dist",
    "build",
    "coverage",
    ".git",
    "tmp",
    "temp",
    ".cache",
    "public",
    "static",
    "assets",
]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass
class ScanConfig:
    """Settings for workspace resolution and file walking."""

    extensions: List[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    ignore_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_DIRS))
    include_workspace: bool = True
    respect_gitignore: bool = True
    max_depth: Optional[int] = None


@dataclass
class EmbeddingConfig:
    """Settings for the embedding provider and cache."""

    api_base: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None
    model: str = "text-embedding-3-small"
    encoding_format: str = "float"
    batch_size: int = 100
    max_retries: int = 3
    retry_base_delay: float = 1.0
    batch_delay: float = 0.2
    max_tokens: int = 8191
    cost_per_1k_tokens: float = 0.00002
    cache_dir: Optional[Path] = None
    timeout: float = 60.0


@dataclass
class LLMConfig:
    """Settings for the summarization language model."""

    api_base: str = "https://api.anthropic.com/v1"
    api_key: Optional[str] = None
    model: str = "claude-3-5-haiku-latest"
    api_version: str = "2023-06-01"
    max_tokens: int = 300
    timeout: float = 60.0


@dataclass
class EnrichmentConfig:
    """Settings for the enrichment stage."""

    concurrency: int = 1
    max_retries: int = 3
    retry_delay: float = 1.0
    input_path: Path = Path("entities.json")
    output_path: Path = Path("entities.enriched.json")
    summary_max_chars: int = 160
    max_tags: int = 5


@dataclass
class IndexerConfig:
    """Top-level configuration for one indexing run."""

    workspace_path: Path = field(default_factory=Path.cwd)
    output_dir: Path = Path("index-output")
    scan: ScanConfig = field(default_factory=ScanConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls, workspace_path: Optional[Path] = None) -> "IndexerConfig":
        """Build a configuration from environment variables.

        Args:
            workspace_path: Overrides WORKSPACE_PATH when given

        Returns:
            IndexerConfig populated from the environment with defaults
        """
        if workspace_path is None:
            workspace_path = Path(os.getenv("WORKSPACE_PATH", "."))
        workspace_path = Path(workspace_path).resolve()

        output_dir = Path(os.getenv("OUTPUT_DIR", str(workspace_path / "index-output")))
        cache_path = os.getenv("EMBEDDING_CACHE_PATH")

        scan = ScanConfig(
            include_workspace=_env_bool("INCLUDE_WORKSPACE", True),
            respect_gitignore=_env_bool("RESPECT_GITIGNORE", True),
        )
        extensions = os.getenv("SCAN_EXTENSIONS")
        if extensions:
            scan.extensions = [ext.strip() for ext in extensions.split(",") if ext.strip()]

        embedding = EmbeddingConfig(
            api_base=os.getenv("EMBEDDING_API_BASE", EmbeddingConfig.api_base),
            api_key=os.getenv("OPENAI_API_KEY"),
            model=os.getenv("EMBEDDING_MODEL", EmbeddingConfig.model),
            batch_size=_env_int("BATCH_SIZE", EmbeddingConfig.batch_size),
            max_retries=_env_int("MAX_RETRIES", EmbeddingConfig.max_retries),
            cache_dir=Path(cache_path) if cache_path else None,
        )

        llm = LLMConfig(
            api_base=os.getenv("LLM_API_BASE", LLMConfig.api_base),
            api_key=os.getenv("ANTHROPIC_API_KEY"),
            model=os.getenv("LLM_MODEL", LLMConfig.model),
        )

        enrichment = EnrichmentConfig(
            concurrency=_env_int("ENRICH_CONCURRENCY", EnrichmentConfig.concurrency),
            max_retries=_env_int("MAX_RETRIES", EnrichmentConfig.max_retries),
            retry_delay=_env_float("RETRY_DELAY_SECONDS", EnrichmentConfig.retry_delay),
            input_path=Path(os.getenv("ENRICH_INPUT", str(output_dir / "entities.json"))),
            output_path=Path(
                os.getenv("ENRICH_OUTPUT", str(output_dir / "entities.enriched.json"))
            ),
        )

        log_file = os.getenv("LOG_FILE")
        return cls(
            workspace_path=workspace_path,
            output_dir=output_dir,
            scan=scan,
            embedding=embedding,
            llm=llm,
            enrichment=enrichment,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=Path(log_file) if log_file else None,
        )


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Install console (and optionally file) handlers on the root logger.

    Args:
        level: Log level name
        log_file: Optional file to mirror log output into
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT)

    # Replace handlers so repeated calls do not duplicate output
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
