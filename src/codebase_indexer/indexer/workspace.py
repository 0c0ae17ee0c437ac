"""Monorepo workspace detection for npm, yarn and pnpm workspaces."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from ..config import DEFAULT_IGNORE_DIRS
from .models import WorkspaceInfo

logger = logging.getLogger(__name__)

PNPM_WORKSPACE_FILE = "pnpm-workspace.yaml"
PACKAGE_MANIFEST = "package.json"
DEFAULT_PACKAGE_PATTERNS = ["packages/*", "apps/*", "libs/*"]


def _read_manifest(path: Path) -> Optional[Dict[str, Any]]:
    """Read a package.json, returning None if missing or malformed."""
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.debug(f"Error reading {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def _manifest_patterns(manifest: Dict[str, Any]) -> Optional[List[str]]:
    """Extract the workspaces patterns of a package.json.

    Supports the array form and the object form with a ``packages`` array.
    Returns None if the manifest declares no workspaces.
    """
    workspaces = manifest.get("workspaces")
    if isinstance(workspaces, dict):
        workspaces = workspaces.get("packages")
    if isinstance(workspaces, list):
        return [p for p in workspaces if isinstance(p, str)]
    return None


class WorkspaceResolver:
    """Locate a monorepo root and expand its package patterns."""

    def __init__(self, ignore_dirs: Optional[Sequence[str]] = None):
        """Initialize the resolver.

        Args:
            ignore_dirs: Directory names never treated as packages
        """
        self.ignore_dirs = set(ignore_dirs if ignore_dirs is not None else DEFAULT_IGNORE_DIRS)

    def is_workspace_root(self, directory: Path) -> bool:
        """Check whether a directory carries a workspace marker."""
        if (directory / PNPM_WORKSPACE_FILE).is_file():
            return True
        manifest = _read_manifest(directory / PACKAGE_MANIFEST)
        return manifest is not None and "workspaces" in manifest

    def find_workspace_root(self, start: Path) -> Optional[Path]:
        """Walk from start up to the filesystem root looking for a workspace.

        Args:
            start: Candidate project directory

        Returns:
            The closest ancestor (or start itself) that is a workspace root
        """
        current = Path(start).resolve()
        if current.is_file():
            current = current.parent

        for directory in [current, *current.parents]:
            if self.is_workspace_root(directory):
                logger.debug(f"Found workspace root: {directory}")
                return directory
        return None

    def parse_workspace_patterns(self, root: Path) -> List[str]:
        """Collect package patterns declared at a workspace root.

        Negated patterns are ignored. Falls back to the default pattern set
        when the root declares none.
        """
        patterns: List[str] = []

        pnpm_file = root / PNPM_WORKSPACE_FILE
        if pnpm_file.is_file():
            try:
                with open(pnpm_file, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
                packages = data.get("packages") if isinstance(data, dict) else None
                if isinstance(packages, list):
                    patterns.extend(p for p in packages if isinstance(p, str))
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Error parsing {pnpm_file}: {e}")

        manifest = _read_manifest(root / PACKAGE_MANIFEST)
        if manifest is not None:
            patterns.extend(_manifest_patterns(manifest) or [])

        seen = set()
        result = []
        for pattern in patterns:
            pattern = pattern.strip()
            if not pattern or pattern.startswith("!") or pattern in seen:
                continue
            seen.add(pattern)
            result.append(pattern)

        if not result:
            logger.debug(f"No workspace patterns in {root}, using defaults")
            return list(DEFAULT_PACKAGE_PATTERNS)
        return result

    def _is_candidate_dir(self, path: Path) -> bool:
        return path.is_dir() and not path.name.startswith(".") and path.name not in self.ignore_dirs

    def resolve_pattern(self, root: Path, pattern: str) -> List[Path]:
        """Expand one package pattern to existing directories.

        A ``*`` (or ``**``) segment matches every non-hidden, non-ignored
        subdirectory at that level; any other segment must exist literally.
        """
        candidates = [root]
        for segment in Path(pattern.strip("/")).parts:
            if segment in (".", ""):
                continue
            next_candidates = []
            for base in candidates:
                if segment in ("*", "**"):
                    try:
                        children = sorted(base.iterdir())
                    except OSError as e:
                        logger.debug(f"Cannot list {base}: {e}")
                        continue
                    next_candidates.extend(c for c in children if self._is_candidate_dir(c))
                else:
                    candidate = base / segment
                    if candidate.is_dir():
                        next_candidates.append(candidate)
            candidates = next_candidates
            if not candidates:
                break
        return candidates

    def resolve(self, start: Path) -> Optional[WorkspaceInfo]:
        """Resolve the workspace containing start.

        Args:
            start: Candidate project directory

        Returns:
            WorkspaceInfo, or None if start is not inside a workspace
        """
        root = self.find_workspace_root(start)
        if root is None:
            return None

        package_paths: List[str] = []
        package_map: Dict[str, str] = {}
        for pattern in self.parse_workspace_patterns(root):
            matches = self.resolve_pattern(root, pattern)
            if not matches:
                logger.debug(f"Workspace pattern {pattern} matched no directories")
                continue
            for package_dir in matches:
                path_str = str(package_dir)
                if path_str in package_paths:
                    continue
                package_paths.append(path_str)

                manifest = _read_manifest(package_dir / PACKAGE_MANIFEST)
                name = manifest.get("name") if manifest else None
                if isinstance(name, str) and name:
                    package_map[name] = path_str

        logger.info(f"Resolved workspace {root} with {len(package_paths)} packages")
        return WorkspaceInfo(root=str(root), package_paths=package_paths, package_map=package_map)
