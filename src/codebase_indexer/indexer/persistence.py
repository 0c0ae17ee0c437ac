"""JSON persistence of scan, chunk, embedding and enrichment results."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .. import TOOL_NAME, __version__
from ..errors import SourceIOError
from .models import ChunkStats, CodeChunk, CodeEntity, EmbeddedChunk, EmbeddingStats, ScanStats

logger = logging.getLogger(__name__)


def build_metadata(project_path: Path, scan_time: Optional[datetime] = None) -> Dict[str, Any]:
    scan_time = scan_time or datetime.now(timezone.utc)
    return {
        "project_path": str(project_path),
        "scan_time": scan_time.isoformat(),
        "version": __version__,
        "tool": TOOL_NAME,
    }


def output_filename(kind: str, project_path: Path, scan_time: datetime) -> str:
    """File name like ``entities_myapp_20240101_120000.json``."""
    project = Path(project_path).name or "project"
    return f"{kind}_{project}_{scan_time.strftime('%Y%m%d_%H%M%S')}.json"


def write_json(path: Path, data: Any) -> Path:
    """Write data as indented UTF-8 JSON, creating parent directories.

    Raises:
        SourceIOError: If the file cannot be written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
    except OSError as e:
        raise SourceIOError(str(path), f"cannot write output: {e}") from e
    logger.info(f"Wrote {path}")
    return path


def save_entities(
    entities: List[CodeEntity],
    stats: ScanStats,
    project_path: Path,
    output_dir: Path,
) -> Path:
    """Persist a scan result with its metadata.

    Returns:
        Path of the written file
    """
    scan_time = datetime.now(timezone.utc)
    document = {
        "metadata": build_metadata(project_path, scan_time),
        "entities": [entity.to_dict() for entity in entities],
        "stats": stats.to_dict(),
    }
    path = Path(output_dir) / output_filename("entities", project_path, scan_time)
    return write_json(path, document)


def save_chunks(
    chunks: List[CodeChunk],
    stats: ChunkStats,
    project_path: Path,
    output_dir: Path,
) -> Path:
    scan_time = datetime.now(timezone.utc)
    document = {
        "metadata": build_metadata(project_path, scan_time),
        "chunks": [chunk.to_dict() for chunk in chunks],
        "stats": stats.to_dict(),
    }
    path = Path(output_dir) / output_filename("chunks", project_path, scan_time)
    return write_json(path, document)


def save_embedded_chunks(
    embedded: List[EmbeddedChunk],
    stats: EmbeddingStats,
    project_path: Path,
    output_dir: Path,
    model: str,
) -> Path:
    scan_time = datetime.now(timezone.utc)
    metadata = build_metadata(project_path, scan_time)
    metadata["model"] = model
    document = {
        "metadata": metadata,
        "chunks": [item.to_dict() for item in embedded],
        "stats": stats.to_dict(),
    }
    path = Path(output_dir) / output_filename("embeddings", project_path, scan_time)
    return write_json(path, document)
