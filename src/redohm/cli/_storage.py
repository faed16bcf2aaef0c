"""CLI helpers for building the store client from CLI state."""

from __future__ import annotations

import os
from typing import Any

import redis

from redohm.config import RedohmConfig


def config_from_env() -> RedohmConfig:
    """Build runtime config from CLI state and environment defaults."""
    from redohm.cli import state

    config = RedohmConfig()
    if state.url:
        config.url = state.url
    script_dir = os.getenv("REDOHM_SCRIPT_DIR")
    if script_dir:
        config.script_dir = script_dir
    return config


def create_client(url: str) -> Any:
    return redis.Redis.from_url(url, decode_responses=True)


def open_client() -> Any:
    """Open a store client for the URL selected on the command line."""
    return create_client(config_from_env().url)
