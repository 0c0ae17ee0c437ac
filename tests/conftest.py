import json
import shutil
import tempfile
from pathlib import Path

import pytest

from codebase_indexer.indexer.models import CodeEntity, EntityType, Location


@pytest.fixture
def temp_workspace():
    """Create a temporary workspace directory"""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir).resolve()
    shutil.rmtree(temp_dir)


@pytest.fixture
def write_file(temp_workspace):
    """Write a file relative to the temporary workspace"""

    def _write(relative_path, content):
        path = temp_workspace / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_manifest(write_file):
    """Write a package.json relative to the temporary workspace"""

    def _write(relative_dir, data):
        relative = f"{relative_dir}/package.json" if relative_dir else "package.json"
        return write_file(relative, json.dumps(data))

    return _write


@pytest.fixture
def make_entity():
    """Build a CodeEntity with sensible defaults"""

    def _make(name, file="src/index.ts", entity_type=EntityType.FUNCTION, start=1, end=1, entity_id=None):
        return CodeEntity(
            id=entity_id or f"{entity_type.id_prefix}:{name}",
            entity_type=entity_type,
            file=file,
            loc=Location(start, end),
            raw_name=name,
        )

    return _make
