"""Discovery of note files under a root directory, honoring .gitignore rules."""

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pathspec
from pydantic import BaseModel

from shared.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = ("md", "markdown", "mdown", "mkd", "mkdn", "txt")
ALWAYS_SKIPPED_DIRS = {".git"}


class DiscoveredFile(BaseModel):
    path: Path
    relative_path: str


def is_notes_file(
    path: Union[str, Path], extensions: Iterable[str] = DEFAULT_EXTENSIONS
) -> bool:
    """Check whether the file extension marks a note (case-insensitive)."""
    suffix = Path(path).suffix.lower().lstrip(".")
    return bool(suffix) and suffix in {ext.lower().lstrip(".") for ext in extensions}


def _load_gitignore(directory: Path) -> Optional[pathspec.PathSpec]:
    gitignore_path = directory / ".gitignore"
    if not gitignore_path.is_file():
        return None
    try:
        patterns = gitignore_path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read {gitignore_path}: {e}")
        return None
    return pathspec.PathSpec.from_lines("gitignore", patterns)


def _is_ignored(
    path: Path, is_dir: bool, specs: List[Tuple[Path, pathspec.PathSpec]]
) -> bool:
    for base, spec in specs:
        relative = path.relative_to(base).as_posix()
        if is_dir:
            relative += "/"
        if spec.match_file(relative):
            return True
    return False


def discover_files(
    root: Union[str, Path],
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    respect_gitignore: bool = True,
) -> List[DiscoveredFile]:
    """
    Walk ``root`` and return every note file, sorted by relative path.

    Hidden files are kept; ``.git`` directories and anything matched by a
    ``.gitignore`` in the root or a nested directory are skipped.

    Raises:
        ConfigError: ``root`` does not exist or is not a directory.
    """
    root_path = Path(root).expanduser()
    if not root_path.exists():
        raise ConfigError(f"Directory does not exist: {root_path}")
    if not root_path.is_dir():
        raise ConfigError(f"Path is not a directory: {root_path}")
    root_path = root_path.resolve()
    extensions = list(extensions)

    spec_by_dir: Dict[Path, List[Tuple[Path, pathspec.PathSpec]]] = {}
    files: List[DiscoveredFile] = []

    def on_error(error: OSError) -> None:
        logger.warning(f"Failed to access {error.filename}: {error}")

    for dirpath, dirnames, filenames in os.walk(root_path, onerror=on_error):
        current = Path(dirpath)
        specs = [] if current == root_path else list(spec_by_dir.get(current.parent, []))
        if respect_gitignore:
            own_spec = _load_gitignore(current)
            if own_spec is not None:
                specs.append((current, own_spec))
        spec_by_dir[current] = specs

        dirnames[:] = sorted(
            name
            for name in dirnames
            if name not in ALWAYS_SKIPPED_DIRS
            and not _is_ignored(current / name, True, specs)
        )

        for name in filenames:
            file_path = current / name
            if not is_notes_file(file_path, extensions):
                continue
            if _is_ignored(file_path, False, specs):
                logger.debug(f"Ignoring {file_path} per .gitignore")
                continue
            files.append(
                DiscoveredFile(
                    path=file_path,
                    relative_path=file_path.relative_to(root_path).as_posix(),
                )
            )

    files.sort(key=lambda f: f.relative_path)
    logger.info(f"Discovered {len(files)} note files under {root_path}")
    return files
