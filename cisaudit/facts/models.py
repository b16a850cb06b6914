"""
Data models for resolved system facts
"""

from enum import Enum
from typing import Any, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class _Absent:
    """Sentinel for state that is not present (missing key, missing binary)"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "absent"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Absent, ())


ABSENT = _Absent()


def is_absent(value: Any) -> bool:
    """JSON null and a missing value are the same thing to a compliance check"""
    return value is ABSENT or value is None


class Principal(str, Enum):
    """Who a permission applies to"""
    OWNER = "owner"
    GROUP = "group"
    OTHER = "other"


class Capability(str, Enum):
    """What a permission allows"""
    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"


class FileType(str, Enum):
    """Kinds of filesystem entries"""
    FILE = "file"
    DIRECTORY = "directory"
    SOCKET = "socket"
    OTHER = "other"


_PERMISSION_BITS = {
    (Principal.OWNER, Capability.READ): 0o400,
    (Principal.OWNER, Capability.WRITE): 0o200,
    (Principal.OWNER, Capability.EXECUTE): 0o100,
    (Principal.GROUP, Capability.READ): 0o040,
    (Principal.GROUP, Capability.WRITE): 0o020,
    (Principal.GROUP, Capability.EXECUTE): 0o010,
    (Principal.OTHER, Capability.READ): 0o004,
    (Principal.OTHER, Capability.WRITE): 0o002,
    (Principal.OTHER, Capability.EXECUTE): 0o001,
}

_SYMBOLIC_ORDER = [
    (Principal.OWNER, Capability.READ, "r"),
    (Principal.OWNER, Capability.WRITE, "w"),
    (Principal.OWNER, Capability.EXECUTE, "x"),
    (Principal.GROUP, Capability.READ, "r"),
    (Principal.GROUP, Capability.WRITE, "w"),
    (Principal.GROUP, Capability.EXECUTE, "x"),
    (Principal.OTHER, Capability.READ, "r"),
    (Principal.OTHER, Capability.WRITE, "w"),
    (Principal.OTHER, Capability.EXECUTE, "x"),
]


class Permissions(BaseModel):
    """Owner/group/other x read/write/execute permission model

    Built from either octal bits or an ``ls -l`` style symbolic string, so
    predicates never depend on the platform's native representation.
    """
    model_config = ConfigDict(frozen=True)

    bits: int = Field(..., ge=0, le=0o777, description="Permission bits (0o000-0o777)")

    @classmethod
    def from_octal(cls, mode: Union[int, str]) -> "Permissions":
        """Build from an integer mode or an octal string such as '0644'"""
        if isinstance(mode, str):
            try:
                mode = int(mode, 8)
            except ValueError:
                raise ValueError(f"Invalid octal mode: {mode!r}")
        return cls(bits=mode & 0o777)

    @classmethod
    def from_symbolic(cls, symbolic: str) -> "Permissions":
        """Build from 'rw-r--r--' (an optional leading type char is ignored)"""
        if len(symbolic) == 10:
            symbolic = symbolic[1:]
        if len(symbolic) != 9:
            raise ValueError(f"Invalid symbolic mode: {symbolic!r}")

        bits = 0
        for char, (principal, capability, flag) in zip(symbolic, _SYMBOLIC_ORDER):
            if char == "-":
                continue
            # setuid/setgid/sticky letters double as execute in the x column
            if char == flag or (capability == Capability.EXECUTE and char in "st"):
                bits |= _PERMISSION_BITS[(principal, capability)]
            elif capability == Capability.EXECUTE and char in "ST":
                continue
            else:
                raise ValueError(f"Invalid symbolic mode: {symbolic!r}")
        return cls(bits=bits)

    def allows(self, capability: Capability, by: Optional[Principal] = None) -> bool:
        """Check a capability for one principal, or for any principal when by is None"""
        principals = [by] if by is not None else list(Principal)
        return any(self.bits & _PERMISSION_BITS[(p, capability)] for p in principals)

    @property
    def octal(self) -> str:
        return format(self.bits, "04o")

    @property
    def symbolic(self) -> str:
        return "".join(
            flag if self.bits & _PERMISSION_BITS[(principal, capability)] else "-"
            for principal, capability, flag in _SYMBOLIC_ORDER
        )


class FileFacts(BaseModel):
    """Metadata of one filesystem path; a missing path is a resolved fact, not an error"""
    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Inspected path")
    exists: bool = Field(..., description="Whether the path is present")
    type: Optional[FileType] = Field(None, description="Entry type")
    owner: Optional[str] = Field(None, description="Owner user name")
    group: Optional[str] = Field(None, description="Owner group name")
    permissions: Optional[Permissions] = Field(None, description="Permission model")

    @classmethod
    def missing(cls, path: str) -> "FileFacts":
        return cls(path=path, exists=False)


class CommandResult(BaseModel):
    """Captured output of one command execution"""
    model_config = ConfigDict(frozen=True)

    command: str = Field(..., description="Command line as declared")
    stdout: str = Field(default="", description="Captured standard output")
    stderr: str = Field(default="", description="Captured standard error")
    exit_status: int = Field(default=0, description="Process exit status")

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0


def to_jsonable(value: Any) -> Any:
    """Convert a fact value into plain JSON-compatible data for reports"""
    if is_absent(value):
        return None
    if isinstance(value, Permissions):
        return value.octal
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    return value


def display_value(value: Any) -> str:
    """Human-readable rendering used in console diagnostics"""
    if is_absent(value):
        return "absent"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return repr(value)
    return str(to_jsonable(value))
