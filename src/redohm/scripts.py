"""Server-side script execution with SHA1 caching and NOSCRIPT recovery."""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Callable, Sequence

from redis.exceptions import NoScriptError

from redohm.errors import ScriptUnavailableError

logger = logging.getLogger(__name__)

SCRIPT_NAMES = ("save", "delete")


@dataclass(frozen=True)
class Script:
    """A script body as submitted to the server, and its SHA1."""

    name: str
    source: str
    sha: str


def strip_script(source: str) -> str:
    """Drop comment-only and blank lines from a Lua script."""
    lines = []
    for line in source.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        lines.append(line)
    return "\n".join(lines) + "\n"


def script_sha(source: str) -> str:
    return hashlib.sha1(source.encode("utf-8")).hexdigest()


class ScriptRunner:
    """Runs named Lua scripts by SHA1, resubmitting the body when the server lost it.

    Script files are read once per runner and never reloaded; a process that
    needs a changed script must be restarted.
    """

    def __init__(self, client: Any, script_dir: str | None = None) -> None:
        self.client = client
        self.script_dir = script_dir
        self._scripts: dict[str, Script] = {}
        self._lock = threading.Lock()

    def _read_source(self, name: str) -> str:
        filename = f"{name}.lua"
        if self.script_dir is not None:
            return (Path(self.script_dir) / filename).read_text(encoding="utf-8")
        return resources.files("redohm").joinpath("lua", filename).read_text(encoding="utf-8")

    def script(self, name: str) -> Script:
        """Return the cached script, reading it from disk on first use."""
        cached = self._scripts.get(name)
        if cached is not None:
            return cached
        with self._lock:
            cached = self._scripts.get(name)
            if cached is None:
                source = strip_script(self._read_source(name))
                cached = Script(name=name, source=source, sha=script_sha(source))
                self._scripts[name] = cached
            return cached

    def _call(
        self,
        command: str,
        body: str,
        keys: Sequence[str],
        args: Sequence[Any],
        prelude: Callable[[Any], None] | None,
    ) -> Any:
        if prelude is None:
            return getattr(self.client, command)(body, len(keys), *keys, *args)
        with self.client.pipeline(transaction=True) as pipe:
            prelude(pipe)
            getattr(pipe, command)(body, len(keys), *keys, *args)
            reply = pipe.execute(raise_on_error=False)[-1]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def _evalsha(
        self,
        script: Script,
        keys: Sequence[str],
        args: Sequence[Any],
        prelude: Callable[[Any], None] | None,
    ) -> Any:
        try:
            return self._call("evalsha", script.sha, keys, args, prelude)
        except NoScriptError as e:
            raise ScriptUnavailableError(script.name, script.sha) from e

    def run(
        self,
        name: str,
        keys: Sequence[str],
        args: Sequence[Any] = (),
        *,
        prelude: Callable[[Any], None] | None = None,
    ) -> Any:
        """Execute script `name` atomically and return its raw reply.

        `prelude` queues commands on a transactional pipeline; they run in the
        same MULTI/EXEC as the script, immediately before it.
        """
        script = self.script(name)
        try:
            return self._evalsha(script, keys, args, prelude)
        except ScriptUnavailableError:
            logger.debug("Script %s (%s) not loaded; submitting full body", name, script.sha)
            return self._call("eval", script.source, keys, args, prelude)

    def load_all(self, names: Sequence[str] = SCRIPT_NAMES) -> dict[str, str]:
        """Load scripts into the server cache and return their SHA1s."""
        loaded: dict[str, str] = {}
        for name in names:
            script = self.script(name)
            loaded[name] = self.client.script_load(script.source)
        return loaded
