"""Loading entity records for enrichment and saving the enriched result."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ..errors import SourceIOError, ValidationError
from ..indexer.models import CodeEntity
from ..indexer.persistence import write_json
from .models import EnrichedEntity

logger = logging.getLogger(__name__)


def load_entity_records(path: Path) -> List[Dict[str, Any]]:
    """Read raw entity records from a JSON file.

    The file holds either a bare array or an object with an ``entities``
    array (as written by the scan stage).

    Raises:
        SourceIOError: If the file cannot be read
        ValidationError: If the content is not valid JSON of either shape
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceIOError(str(path), f"cannot read entity file: {e}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"{path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        if "entities" not in data:
            raise ValidationError(f"{path} has no 'entities' field")
        data = data["entities"]
    if not isinstance(data, list):
        raise ValidationError(f"{path} does not contain an entity array")
    return data


def validate_entities(records: List[Any]) -> Tuple[List[CodeEntity], int]:
    """Convert records to entities, dropping those without id, type or file.

    Args:
        records: Raw decoded records

    Returns:
        Tuple of (valid entities, number of filtered records)
    """
    entities = []
    filtered = 0
    for record in records:
        if not isinstance(record, dict):
            filtered += 1
            continue
        try:
            entities.append(CodeEntity.from_dict(record))
        except ValidationError as e:
            filtered += 1
            logger.debug(f"Filtered entity record {record.get('id')!r}: {e}")

    if filtered:
        logger.warning(f"Filtered {filtered} invalid entity records, {len(entities)} remain")
    return entities, filtered


def load_entities(path: Path) -> List[CodeEntity]:
    records = load_entity_records(path)
    entities, _ = validate_entities(records)
    logger.info(f"Loaded {len(entities)} entities from {path}")
    return entities


def save_enriched_entities(entities: List[EnrichedEntity], output_path: Path) -> Path:
    """Write enriched entities as a flat JSON array."""
    return write_json(Path(output_path), [entity.to_dict() for entity in entities])
