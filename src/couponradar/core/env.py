"""
Project root and `.env` handling.

The CLI, the API server and the tests start from different working directories, but
the catalog, replay tracks and the preference store are configured with paths
relative to the repo (`data/catalogs/catalog.json`, `.cache/couponradar/...`).
Everything that touches those paths goes through `resolve_project_path()`.

Root discovery order:
1. `COUPONRADAR_PROJECT_ROOT`
2. the directory holding `COUPONRADAR_ENV_FILE`
3. the nearest parent (of the CWD, then of this module) that looks like the repo
4. the CWD
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

ROOT_ENV_VAR = "COUPONRADAR_PROJECT_ROOT"
ENV_FILE_VAR = "COUPONRADAR_ENV_FILE"

_ROOT_FILES = (".env", "pyproject.toml")


def _is_repo_root(path: Path) -> bool:
    if any((path / name).is_file() for name in _ROOT_FILES) or (path / ".git").exists():
        return True
    return (path / "src" / "couponradar").is_dir()


def _search_upwards(start: Path) -> Path | None:
    start = start.resolve()
    for candidate in (start, *start.parents):
        if _is_repo_root(candidate):
            return candidate
    return None


def _env_file_from_environment() -> Path | None:
    raw = os.getenv(ENV_FILE_VAR)
    return Path(raw).expanduser().resolve() if raw else None


@lru_cache
def get_project_root() -> Path:
    """Best-guess repo root (cached for the life of the process)."""
    override = os.getenv(ROOT_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()

    env_file = _env_file_from_environment()
    if env_file is not None:
        return env_file.parent

    found = _search_upwards(Path.cwd()) or _search_upwards(Path(__file__).parent)
    return found or Path.cwd().resolve()


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load the repo's `.env` once; variables already in the environment win."""
    env_path = _env_file_from_environment() or get_project_root() / ".env"
    if not env_path.is_file():
        return None
    load_dotenv(dotenv_path=env_path, override=False)
    return env_path


def resolve_project_path(path: str | Path) -> Path:
    """Resolve `path` against the project root unless it is already absolute."""
    p = Path(path).expanduser()
    return p if p.is_absolute() else (get_project_root() / p).resolve()
