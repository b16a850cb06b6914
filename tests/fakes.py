"""
Static stand-ins for the host fact sources
"""

from typing import Dict, List, Optional, Tuple, Union

from cisaudit.errors import FactError
from cisaudit.facts.models import CommandResult, FileFacts, FileType, Permissions
from cisaudit.facts.provider import FactProvider

Response = Union[str, CommandResult, Exception]


class FakeCommandRunner:
    """Answers commands from a fixed table and records every call"""

    def __init__(self, responses: Optional[Dict[str, Response]] = None):
        self.responses: Dict[str, Response] = dict(responses or {})
        self.calls: List[Tuple[str, bool]] = []

    def run(self, command: str, shell: bool = False, timeout: float = 10.0) -> CommandResult:
        self.calls.append((command, shell))
        if command not in self.responses:
            raise FactError(f"Command not found: {command.split()[0]}")

        response = self.responses[command]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, CommandResult):
            return response
        return CommandResult(command=command, stdout=response)


class FakeFileSystem:
    """In-memory file metadata and contents"""

    def __init__(self):
        self.entries: Dict[str, FileFacts] = {}
        self.contents: Dict[str, str] = {}
        self.binaries: Dict[str, str] = {}
        self.stat_calls: List[str] = []
        self.read_calls: List[str] = []

    def add_file(self, path: str, content: str = "", mode: str = "0644",
                 owner: str = "root", group: str = "root") -> None:
        self._add(path, FileType.FILE, mode, owner, group)
        self.contents[path] = content

    def add_directory(self, path: str, mode: str = "0755",
                      owner: str = "root", group: str = "root") -> None:
        self._add(path, FileType.DIRECTORY, mode, owner, group)

    def add_socket(self, path: str, mode: str = "0660",
                   owner: str = "root", group: str = "docker") -> None:
        self._add(path, FileType.SOCKET, mode, owner, group)

    def add_binary(self, name: str, path: Optional[str] = None) -> None:
        self.binaries[name] = path or f"/usr/bin/{name}"

    def _add(self, path: str, file_type: FileType, mode: str, owner: str, group: str) -> None:
        self.entries[path] = FileFacts(
            path=path,
            exists=True,
            type=file_type,
            owner=owner,
            group=group,
            permissions=Permissions.from_octal(mode)
        )

    def stat(self, path: str) -> FileFacts:
        self.stat_calls.append(path)
        return self.entries.get(path, FileFacts.missing(path))

    def read_text(self, path: str) -> str:
        self.read_calls.append(path)
        if path not in self.contents:
            raise FactError(f"File not found: {path}")
        return self.contents[path]

    def which(self, name: str) -> Optional[str]:
        return self.binaries.get(name)


def make_provider(runner: Optional[FakeCommandRunner] = None,
                  filesystem: Optional[FakeFileSystem] = None) -> FactProvider:
    return FactProvider(
        runner=runner or FakeCommandRunner(),
        filesystem=filesystem or FakeFileSystem(),
        os_release_path="/etc/os-release"
    )
