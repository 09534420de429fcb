"""Local repository helpers."""

from __future__ import annotations

from pathlib import Path


class RepositoryRootNotFoundError(RuntimeError):
    """Raised when no enclosing Git repository can be found."""


def find_repository_root(start: Path | str) -> Path:
    """Return the closest directory at or above ``start`` that contains ``.git``."""
    start_path = Path(start).resolve()
    for candidate in (start_path, *start_path.parents):
        if (candidate / ".git").exists():
            return candidate
    raise RepositoryRootNotFoundError(
        f"Unable to find Git root directory. Is {start} part of a Git repository?"
    )


def relative_repository_path(root: Path, path: Path | str) -> str | None:
    """Return ``path`` relative to the repository root, or ``None`` when outside it."""
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved_root = root.resolve()
    resolved = candidate.resolve()
    if not resolved.is_relative_to(resolved_root):
        return None
    return resolved.relative_to(resolved_root).as_posix()
