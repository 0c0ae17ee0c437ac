"""Source file discovery and batch entity extraction."""

import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from gitignore_parser import parse_gitignore

from ..config import ScanConfig
from ..errors import IndexerError, NotFoundError
from .extractors import ExtractorRegistry
from .models import CodeEntity, ScanStats, WorkspaceInfo
from .workspace import WorkspaceResolver

logger = logging.getLogger(__name__)

# Recursion cap of the legacy single-root scan mode
LEGACY_MAX_DEPTH = 10

COMMON_SOURCE_DIRS = ["src", "lib", "app", "components", "pages", "views", "utils"]


def ensure_unique_ids(entities: List[CodeEntity]) -> List[CodeEntity]:
    """Disambiguate duplicate entity IDs within one batch.

    The first entity with a given ID keeps it; later ones get ``_1``,
    ``_2``, ... appended in the order they are seen.

    Args:
        entities: Entities in extraction order

    Returns:
        New list with unique IDs, same order
    """
    seen_counts: Dict[str, int] = {}
    taken = {entity.id for entity in entities}
    assigned = set()
    result = []

    for entity in entities:
        base_id = entity.id
        if base_id not in assigned:
            assigned.add(base_id)
            seen_counts.setdefault(base_id, 0)
            result.append(entity)
            continue

        # Skip suffixes that collide with IDs already present in the batch
        count = seen_counts[base_id]
        while True:
            count += 1
            candidate = f"{base_id}_{count}"
            if candidate not in taken and candidate not in assigned:
                break
        seen_counts[base_id] = count
        assigned.add(candidate)
        result.append(entity.with_id(candidate))

    renamed = sum(1 for before, after in zip(entities, result) if before.id != after.id)
    if renamed:
        logger.debug(f"Renamed {renamed} duplicate entity IDs")
    return result


class SourceWalker:
    """Finds source files under a project and extracts their entities."""

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        extractors: Optional[ExtractorRegistry] = None,
        resolver: Optional[WorkspaceResolver] = None,
    ):
        """Initialize the walker.

        Args:
            config: Scan settings (extensions, ignored directories, ...)
            extractors: Strategy registry used for entity extraction
            resolver: Workspace resolver used in workspace mode
        """
        self.config = config or ScanConfig()
        self.extensions = {ext.lower() for ext in self.config.extensions}
        self.ignore_dirs = set(self.config.ignore_dirs)
        self.extractors = extractors or ExtractorRegistry()
        self.resolver = resolver or WorkspaceResolver(self.config.ignore_dirs)

    def _load_gitignore(self, root: Path) -> Optional[Callable[[str], bool]]:
        if not self.config.respect_gitignore:
            return None
        gitignore_path = root / ".gitignore"
        if not gitignore_path.is_file():
            return None
        try:
            matcher = parse_gitignore(gitignore_path)
            logger.info(f"Loaded .gitignore from {gitignore_path}")
            return matcher
        except Exception as e:
            logger.warning(f"Error parsing .gitignore: {e}")
            return None

    def _is_source_file(self, name: str) -> bool:
        return os.path.splitext(name)[1].lower() in self.extensions

    def walk(
        self,
        root: Path,
        max_depth: Optional[int] = None,
        gitignore: Optional[Callable[[str], bool]] = None,
        recursive: bool = True,
    ) -> List[Path]:
        """Recursively collect source files under a root.

        Ignored directory names are pruned without descending into them and
        symlinked directories are not followed.

        Args:
            root: Directory to walk
            max_depth: Maximum directory depth below root, None for unbounded
            gitignore: Optional matcher returning True for ignored paths
            recursive: False to only collect the root's direct files

        Returns:
            Sorted list of matching files
        """
        root = Path(root)
        if not root.is_dir():
            return []
        if max_depth is None:
            max_depth = self.config.max_depth

        files = []
        for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
            current = Path(dirpath)
            depth = len(current.relative_to(root).parts)

            if not recursive or (max_depth is not None and depth >= max_depth):
                dirnames[:] = []
            else:
                dirnames[:] = sorted(
                    d
                    for d in dirnames
                    if d not in self.ignore_dirs
                    and not (gitignore and gitignore(str(current / d)))
                )

            for filename in sorted(filenames):
                if not self._is_source_file(filename):
                    continue
                file_path = current / filename
                if file_path.is_symlink():
                    continue
                if gitignore and gitignore(str(file_path)):
                    continue
                files.append(file_path)

        return files

    def find_files(
        self, root: Path, workspace: Optional[WorkspaceInfo] = None, legacy: bool = False
    ) -> List[Path]:
        """Enumerate every source file belonging to a project.

        In workspace mode each package is walked, followed by the root's own
        files and its common source directories. Otherwise the whole root is
        walked (capped at LEGACY_MAX_DEPTH in legacy mode).

        Raises:
            NotFoundError: If root does not exist
        """
        root = Path(root).resolve()
        if not root.is_dir():
            raise NotFoundError(f"Project root does not exist: {root}")

        gitignore = self._load_gitignore(root)

        if workspace is None and self.config.include_workspace and not legacy:
            workspace = self.resolver.resolve(root)
            if workspace is not None and Path(workspace.root) != root:
                # root is a member package; entity paths stay relative to it
                logger.debug(f"{root} is inside workspace {workspace.root}, scanning it alone")
                workspace = None

        if workspace is None or not workspace.package_paths:
            max_depth = LEGACY_MAX_DEPTH if legacy else None
            return self.walk(root, max_depth=max_depth, gitignore=gitignore)

        files: List[Path] = []
        for package_path in workspace.package_paths:
            package_files = self.walk(Path(package_path), gitignore=gitignore)
            logger.debug(f"Found {len(package_files)} files in package {package_path}")
            files.extend(package_files)

        files.extend(self.walk(root, gitignore=gitignore, recursive=False))
        for dirname in COMMON_SOURCE_DIRS:
            files.extend(self.walk(root / dirname, gitignore=gitignore))

        # Packages may live under a common dir, keep the first occurrence
        seen = set()
        unique = []
        for file_path in files:
            key = str(file_path.resolve())
            if key in seen:
                continue
            seen.add(key)
            unique.append(file_path)
        return unique

    def extract_all_entities(
        self, root: Path, workspace: Optional[WorkspaceInfo] = None, legacy: bool = False
    ) -> Tuple[List[CodeEntity], ScanStats]:
        """Walk a project and extract the entities of every source file.

        Per-file failures are logged and counted; they never abort the scan.

        Args:
            root: Project root; entity file paths are relative to it
            workspace: Pre-resolved workspace, resolved on demand if None
            legacy: Use the depth-capped single-root scan

        Returns:
            Tuple of (entities with unique IDs, scan statistics)

        Raises:
            NotFoundError: If root does not exist
        """
        start_time = time.monotonic()
        root = Path(root).resolve()
        files = self.find_files(root, workspace=workspace, legacy=legacy)

        stats = ScanStats(total_files=len(files))
        entities: List[CodeEntity] = []

        logger.info(f"Extracting entities from {len(files)} files under {root}")
        for file_path in files:
            try:
                file_entities = self.extractors.extract_file(file_path, root)
            except IndexerError as e:
                stats.failed_files += 1
                logger.warning(f"Skipping {file_path}: {e}")
                continue

            stats.success_files += 1
            extension = file_path.suffix.lower()
            stats.by_extension[extension] = stats.by_extension.get(extension, 0) + 1
            entities.extend(file_entities)

        entities = ensure_unique_ids(entities)
        stats.total_entities = len(entities)
        for entity in entities:
            key = entity.entity_type.value
            stats.by_entity_type[key] = stats.by_entity_type.get(key, 0) + 1
        stats.duration_ms = int((time.monotonic() - start_time) * 1000)

        logger.info(
            f"Extracted {stats.total_entities} entities from {stats.success_files} files "
            f"({stats.failed_files} failed) in {stats.duration_ms}ms"
        )
        return entities, stats
