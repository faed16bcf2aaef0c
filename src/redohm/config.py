"""Configuration for redohm databases."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RedohmConfig:
    """Configuration for a redohm Database."""

    url: str = "redis://localhost:6379/0"
    use_scripts: bool = True
    script_dir: str | None = None
    fetch_batch_size: int = 1000
    lock_timeout_ms: int = 5000
    lock_lease_ms: int = 30000
    lock_backoff_ms: int = 10
    lock_backoff_max_ms: int = 500
    omit_false: bool = False
