"""
Fact provider: resolves subjects against the live host, cached per run
"""

import logging
import platform
import threading
from typing import Any, Callable, Dict, Hashable, List, Optional

from ..errors import FactError
from .documents import lookup, parse_json, tokenize
from .models import ABSENT, CommandResult, FileFacts, is_absent
from .sources import CommandRunner, FileSystem
from .subjects import (
    BinarySubject, CommandSubject, EachSubject, FileField, FileSubject,
    HostFact, HostSubject, JsonSubject, ValueSubject,
)

logger = logging.getLogger(__name__)


class _CacheEntry:
    """One cached resolution; the first requester resolves, later ones wait"""

    __slots__ = ("value", "error", "ready")

    def __init__(self):
        self.value: Any = None
        self.error: Optional[FactError] = None
        self.ready = threading.Event()


class FactProvider:
    """Resolves fact references for a single evaluation run

    Identical requests (same command, same path, same document) are resolved
    once and served from the cache for the rest of the run, failures
    included, so every assertion sees the same system state. Create a new
    provider for every run; nothing is shared across runs.
    """

    def __init__(self, runner: Optional[CommandRunner] = None,
                 filesystem: Optional[FileSystem] = None,
                 command_timeout: float = 10.0,
                 os_release_path: str = "/etc/os-release"):
        self.runner = runner or CommandRunner()
        self.filesystem = filesystem or FileSystem()
        self.command_timeout = command_timeout
        self.os_release_path = os_release_path
        self._cache: Dict[Hashable, _CacheEntry] = {}
        self._lock = threading.Lock()

    def resolve(self, subject) -> Any:
        """Resolve a subject to its current value, raising FactError on failure"""
        if isinstance(subject, FileSubject):
            return self._resolve_file(subject)
        elif isinstance(subject, JsonSubject):
            return self._resolve_json(subject)
        elif isinstance(subject, CommandSubject):
            return self._resolve_command(subject)
        elif isinstance(subject, BinarySubject):
            path = self.which(subject.name)
            return path if path else ABSENT
        elif isinstance(subject, HostSubject):
            return self.host_facts().get(subject.fact.value, ABSENT)
        elif isinstance(subject, ValueSubject):
            return subject.value
        elif isinstance(subject, EachSubject):
            raise FactError("Enumeration subjects must be expanded before resolution")
        raise FactError(f"Unsupported subject: {subject!r}")

    def enumerate(self, subject: EachSubject) -> List[str]:
        """List entity identifiers for an enumeration subject, in discovery order"""
        result = self.run_command(subject.enumerate.command, subject.enumerate.shell)
        if not result.succeeded:
            raise FactError(
                f"Enumeration command failed with exit status {result.exit_status}: "
                f"{subject.enumerate.command} ({result.stderr.strip()})"
            )

        spec = subject.enumerate.tokens
        if spec is not None:
            entities = tokenize(result.stdout, spec.separator, spec.lines)
        else:
            entities = tokenize(result.stdout)

        seen = set()
        ordered = []
        for entity in entities:
            if entity and entity not in seen:
                seen.add(entity)
                ordered.append(entity)
        logger.debug("Enumerated %d entities from %s", len(ordered), subject.enumerate.command)
        return ordered

    # Cached primitives

    def run_command(self, command: str, shell: bool = False) -> CommandResult:
        return self._cached(
            ("command", command, shell),
            lambda: self.runner.run(command, shell=shell, timeout=self.command_timeout)
        )

    def stat(self, path: str) -> FileFacts:
        return self._cached(("stat", path), lambda: self.filesystem.stat(path))

    def read_document(self, path: str) -> Any:
        return self._cached(
            ("document", path),
            lambda: parse_json(self.filesystem.read_text(path), source=path)
        )

    def which(self, name: str) -> Optional[str]:
        return self._cached(("binary", name), lambda: self.filesystem.which(name))

    def host_facts(self) -> Dict[str, Any]:
        return self._cached(("host",), self._load_host_facts)

    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    def _cached(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        with self._lock:
            entry = self._cache.get(key)
            owner = entry is None
            if owner:
                entry = self._cache[key] = _CacheEntry()

        if owner:
            try:
                entry.value = loader()
            except FactError as e:
                entry.error = e
            except Exception as e:
                entry.error = FactError(f"Unexpected failure resolving {key[0]}: {e}")
                logger.exception("Unexpected failure resolving %r", key)
            finally:
                entry.ready.set()
        else:
            entry.ready.wait()

        if entry.error is not None:
            raise entry.error
        return entry.value

    # Subject resolution

    def _resolve_command(self, subject: CommandSubject) -> Any:
        result = self.run_command(subject.command, subject.shell)
        if subject.require_success and not result.succeeded:
            raise FactError(
                f"Command failed with exit status {result.exit_status}: "
                f"{subject.command} ({result.stderr.strip()})"
            )

        if subject.stream == "exit_status":
            return result.exit_status
        text = result.stdout if subject.stream == "stdout" else result.stderr

        if subject.tokens is None:
            return text
        tokens = tokenize(text, subject.tokens.separator, subject.tokens.lines)
        if subject.tokens.index is None:
            return tokens
        index = subject.tokens.index
        if not -len(tokens) <= index < len(tokens):
            return ABSENT
        return tokens[index]

    def _resolve_json(self, subject: JsonSubject) -> Any:
        if subject.path is not None:
            document = self.read_document(subject.path)
        elif subject.command is not None:
            result = self.run_command(subject.command, subject.shell)
            if not result.succeeded:
                raise FactError(
                    f"Command failed with exit status {result.exit_status}: "
                    f"{subject.command} ({result.stderr.strip()})"
                )
            document = parse_json(result.stdout, source=f"`{subject.command}`")
        else:
            document = parse_json(subject.text)
        return lookup(document, subject.key)

    def _resolve_file(self, subject: FileSubject) -> Any:
        if subject.path is not None:
            path = subject.path
        else:
            derived = self.resolve(subject.path_from)
            if is_absent(derived) or not isinstance(derived, str) or not derived.strip():
                raise FactError(f"Could not determine path from {subject.path_from.describe()}")
            path = derived.strip()

        facts = self.stat(path)
        if subject.field is None:
            return facts
        if not facts.exists:
            raise FactError(f"{path} does not exist")

        if subject.field == FileField.TYPE:
            return facts.type.value
        elif subject.field == FileField.OWNER:
            return facts.owner
        elif subject.field == FileField.GROUP:
            return facts.group
        return facts.permissions.octal

    def _load_host_facts(self) -> Dict[str, Any]:
        facts: Dict[str, Any] = {
            HostFact.HOSTNAME.value: platform.node() or ABSENT,
            HostFact.KERNEL.value: platform.release() or ABSENT,
            HostFact.ARCH.value: platform.machine() or ABSENT,
        }

        try:
            release = _parse_os_release(self.filesystem.read_text(self.os_release_path))
        except FactError as e:
            logger.debug("No OS release information: %s", e)
            release = {}

        os_id = release.get("ID", "").lower()
        id_like = release.get("ID_LIKE", "").lower().split()
        facts[HostFact.OS_ID.value] = os_id or ABSENT
        facts[HostFact.OS_FAMILY.value] = (id_like[0] if id_like else os_id) or ABSENT
        facts[HostFact.OS_VERSION.value] = release.get("VERSION_ID") or ABSENT
        return facts


def _parse_os_release(text: str) -> Dict[str, str]:
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values
