"""
ccusage process runner.

Resolves the executable, runs it with a timeout, and turns the outcome into
raw bytes or a CommandError. Only one usage fetch may run at a time.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import (
    CommandError,
    CommandNotFound,
    ExecutionFailed,
    ExecutionInProgress,
    NoOutput,
    PermissionDenied,
    Timeout,
)
from .usage import UsageResponse
from .validation import decode_usage_response

_LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT: float = 30.0
CACHE_TTL_SECONDS: float = 5 * 60

PERMISSION_MARKERS = ("operation not permitted", "permission denied")


@dataclass(frozen=True)
class _CacheEntry:
    path: str
    resolved_at: float


class ExecutableResolver:
    """Resolves bare command names to absolute executable paths.

    Resolutions are cached for five minutes. The whole cache is dropped when
    the environment fingerprint (PATH, HOME, active nvm node) changes.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
        ttl: float = CACHE_TTL_SECONDS,
    ):
        self._environ = environ
        self._clock = clock
        self.ttl = ttl
        self._cache: Dict[str, _CacheEntry] = {}
        self._fingerprint: Optional[Tuple[str, str, str]] = None

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def fingerprint(self) -> Tuple[str, str, str]:
        env = self.environ
        return (env.get("PATH", ""), env.get("HOME", ""), env.get("NVM_BIN", ""))

    def search_directories(self) -> List[str]:
        """Common installation directories followed by the PATH entries."""
        home = Path(self.environ.get("HOME") or Path.home())
        dirs = [
            "/opt/homebrew/bin",
            "/usr/local/bin",
            "/usr/bin",
            str(home / ".nvm" / "current" / "bin"),
            str(home / ".volta" / "bin"),
            str(home / ".local" / "bin"),
        ]
        nvm_versions = home / ".nvm" / "versions" / "node"
        if nvm_versions.is_dir():
            for version_dir in sorted(nvm_versions.iterdir(), reverse=True):
                dirs.append(str(version_dir / "bin"))

        path_env = self.environ.get("PATH", "")
        dirs.extend(p for p in path_env.split(os.pathsep) if p)
        return dirs

    def _check_environment(self) -> None:
        current = self.fingerprint()
        if self._fingerprint is not None and current != self._fingerprint:
            _LOG.info("Environment changed, clearing executable path cache")
            self._cache.clear()
        self._fingerprint = current

    def resolve(self, command: str) -> Tuple[str, bool]:
        """Resolve a command to an executable path.

        Args:
            command: Bare command name or a path

        Returns:
            Tuple of (absolute path, whether it came from the cache)

        Raises:
            CommandNotFound: If no executable file matches
        """
        if "/" in command:
            path = os.path.expanduser(command)
            if not os.path.isfile(path):
                raise CommandNotFound(command)
            return path, False

        self._check_environment()

        entry = self._cache.get(command)
        if entry is not None:
            if self._clock() - entry.resolved_at < self.ttl:
                return entry.path, True
            _LOG.debug("Cached path for %s expired", command)
            del self._cache[command]

        for directory in self.search_directories():
            candidate = os.path.join(directory, command)
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                self._cache[command] = _CacheEntry(candidate, self._clock())
                _LOG.debug("Resolved %s to %s", command, candidate)
                return candidate, False

        raise CommandNotFound(command)

    def invalidate(self, command: str) -> None:
        if "/" not in command:
            self._cache.pop(command, None)

    def clear(self) -> None:
        self._cache.clear()

    def cached_path(self, command: str) -> Optional[str]:
        entry = self._cache.get(command)
        return entry.path if entry else None


class CommandExecutor:
    """Runs ccusage and returns decoded usage data.

    All failures are raised as CommandError subclasses so the poll loop can
    classify them.
    """

    def __init__(self, resolver: Optional[ExecutableResolver] = None):
        self.resolver = resolver or ExecutableResolver()
        self.diagnostic_mode = False
        self._fetch_in_progress = False

    @property
    def fetch_in_progress(self) -> bool:
        return self._fetch_in_progress

    def _log(self, message: str, *args) -> None:
        _LOG.log(logging.INFO if self.diagnostic_mode else logging.DEBUG, message, *args)

    def force_invalidate_cache(self) -> None:
        self._log("Invalidating executable path cache")
        self.resolver.clear()

    async def run(
        self,
        command: str,
        args: Sequence[str],
        timeout: float = DEFAULT_TIMEOUT,
    ) -> bytes:
        """Run a command and return its stdout.

        Args:
            command: Bare command name or executable path
            args: Command arguments
            timeout: Seconds before the process is killed

        Returns:
            Non-empty stdout bytes

        Raises:
            CommandError: On any resolution, launch or execution failure
        """
        path, was_cached = self.resolver.resolve(command)
        self._log("Executing %s %s (cached=%s)", path, " ".join(args), was_cached)
        try:
            return await self._execute(path, args, timeout)
        except CommandError:
            if was_cached:
                self.resolver.invalidate(command)
            raise

    async def _execute(self, path: str, args: Sequence[str], timeout: float) -> bytes:
        try:
            proc = await asyncio.create_subprocess_exec(
                path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except PermissionError:
            raise PermissionDenied(path)
        except OSError as e:
            _LOG.warning("Failed to launch %s: %s", path, e)
            raise CommandNotFound(path)

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            _LOG.error("%s timed out after %ss", path, timeout)
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise Timeout(timeout)

        if proc.returncode == 0:
            if not stdout:
                raise NoOutput()
            return stdout

        stderr_text = stderr.decode("utf-8", errors="replace") if stderr else ""
        if stderr_text:
            _LOG.warning("Command error output: %s", stderr_text.strip())
        lowered = stderr_text.lower()
        if proc.returncode == 126 or any(m in lowered for m in PERMISSION_MARKERS):
            raise PermissionDenied(path)
        raise ExecutionFailed(proc.returncode)

    async def get_usage_data(
        self,
        command_path: str,
        script_path: Optional[str] = None,
        token_limit: Optional[int] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> UsageResponse:
        """Fetch and decode active usage blocks from ccusage.

        Raises:
            ExecutionInProgress: If another fetch is running
            CommandError: On execution or validation failure
        """
        if self._fetch_in_progress:
            raise ExecutionInProgress()

        self._fetch_in_progress = True
        try:
            data = await self.run(
                command_path,
                build_ccusage_args(script_path, token_limit),
                timeout=timeout,
            )
            self._log("Received %d bytes from ccusage", len(data))
            return decode_usage_response(data)
        finally:
            self._fetch_in_progress = False


def build_ccusage_args(
    script_path: Optional[str] = None,
    token_limit: Optional[int] = None,
) -> List[str]:
    """Arguments for ``ccusage blocks``, optionally run through a node script."""
    args = []
    if script_path:
        args.append(os.path.expanduser(script_path))
    args.extend(["blocks", "--live", "--json", "--active"])
    if token_limit:
        args.extend(["--token-limit", str(token_limit)])
    return args
