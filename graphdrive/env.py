from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from auth.credentials import ClientIdentity, ConfigurationError

from .constants import (
    AUTH_LOGGER,
    BLOCK_MULTIPLE_BYTES,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_TIMEOUT_SECONDS,
    LOGGER,
    SIMPLE_UPLOAD_LIMIT_BYTES,
)


@dataclass(frozen=True)
class Settings:
    block_size: int = DEFAULT_BLOCK_SIZE
    simple_upload_limit: int = SIMPLE_UPLOAD_LIMIT_BYTES
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    token_file: Path | None = None


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer value.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    required = ("MICROSOFT_CLIENT_ID", "MICROSOFT_CLIENT_SECRET")
    missing = [key for key in required if not os.getenv(key, "").strip()]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    _get_block_size()


def _get_block_size() -> int:
    block_size = _get_env_int("GRAPHDRIVE_BLOCK_SIZE", DEFAULT_BLOCK_SIZE)
    if block_size <= 0 or block_size % BLOCK_MULTIPLE_BYTES != 0:
        raise ConfigurationError(
            f"GRAPHDRIVE_BLOCK_SIZE must be a positive multiple of {BLOCK_MULTIPLE_BYTES}."
        )
    return block_size


def load_client_identity() -> ClientIdentity:
    """Read the Microsoft app registration from the environment.

    Raises ConfigurationError when either value is missing, so a credential
    object can never be built without a usable identity.
    """
    client_id = os.getenv("MICROSOFT_CLIENT_ID", "").strip()
    client_secret = os.getenv("MICROSOFT_CLIENT_SECRET", "").strip()
    return ClientIdentity.create(client_id, client_secret)


def load_settings() -> Settings:
    token_file = os.getenv("GRAPHDRIVE_TOKEN_FILE", "").strip()
    settings = Settings(
        block_size=_get_block_size(),
        simple_upload_limit=_get_env_int(
            "GRAPHDRIVE_SIMPLE_UPLOAD_LIMIT", SIMPLE_UPLOAD_LIMIT_BYTES
        ),
        timeout_seconds=_get_env_int("GRAPHDRIVE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
        token_file=Path(token_file) if token_file else None,
    )
    if settings.simple_upload_limit > SIMPLE_UPLOAD_LIMIT_BYTES:
        LOGGER.warning(
            "GRAPHDRIVE_SIMPLE_UPLOAD_LIMIT=%s exceeds the Graph single PUT limit of %s bytes",
            settings.simple_upload_limit,
            SIMPLE_UPLOAD_LIMIT_BYTES,
        )
    return settings


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("GRAPHDRIVE_DEBUG", "0"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
        AUTH_LOGGER.setLevel(logging.INFO)
    return debug_enabled
