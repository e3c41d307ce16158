"""
tickets_api.config — Runtime settings read from the environment.

Values from a .env file at the repository root are used only for variables
that are not already set in the process environment. The .env lookup only
happens when running from a source checkout; a deployed package has no
repository root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from tickets_api import __version__

DEFAULT_PORT = 3000
BANNER_MESSAGE = "Tickets App Backend API"


@dataclass(frozen=True)
class Settings:
    version: str
    banner: str
    port: int
    cors_allow_origins: tuple[str, ...]


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def default_dotenv_path() -> Path | None:
    root = _repo_root()
    if not (root / "pyproject.toml").is_file():
        return None
    return root / ".env"


def load_dotenv_values(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if not path.exists():
        return values
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, raw = stripped.split("=", 1)
        key = key.strip().removeprefix("export ").strip()
        value = raw.strip().strip('"').strip("'")
        if key:
            values[key] = value
    return values


def _env(name: str, dotenv: dict[str, str], default: str) -> str:
    value = os.environ.get(name)
    if value is None:
        value = dotenv.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _parse_port(raw: str) -> int:
    try:
        port = int(raw)
    except ValueError as exc:
        raise ValueError(f"PORT must be an integer, got {raw!r}") from exc
    if not 0 < port < 65536:
        raise ValueError(f"PORT out of range: {port}")
    return port


def _parse_origins(raw: str) -> tuple[str, ...]:
    origins = tuple(part.strip() for part in raw.split(",") if part.strip())
    return origins or ("*",)


def load_settings(dotenv_path: Path | None = None) -> Settings:
    """Build Settings from the environment, falling back to .env then defaults."""
    path = dotenv_path or default_dotenv_path()
    dotenv = load_dotenv_values(path) if path is not None else {}
    return Settings(
        version=__version__,
        banner=BANNER_MESSAGE,
        port=_parse_port(_env("PORT", dotenv, str(DEFAULT_PORT))),
        cors_allow_origins=_parse_origins(_env("CORS_ALLOW_ORIGINS", dotenv, "*")),
    )
