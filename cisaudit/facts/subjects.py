"""
Fact references ("subjects") that assertions are evaluated against

Each subject kind is a tagged variant discriminated on ``kind``. An ``each``
subject wraps another subject and fans it out once per enumerated entity;
the entity is substituted for the ``{item}`` placeholder in the wrapped
subject's strings.
"""

from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, model_validator

ITEM_PLACEHOLDER = "{item}"


class HostFact(str, Enum):
    """Facts about the host itself"""
    OS_ID = "os_id"
    OS_FAMILY = "os_family"
    OS_VERSION = "os_version"
    HOSTNAME = "hostname"
    KERNEL = "kernel"
    ARCH = "arch"


class FileField(str, Enum):
    """Single attributes that can be read off a file's metadata"""
    TYPE = "type"
    OWNER = "owner"
    GROUP = "group"
    MODE = "mode"


class _Subject(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def describe(self) -> str:
        raise NotImplementedError


class TokenSpec(BaseModel):
    """How to cut command output into tokens"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    separator: Optional[str] = Field(None, description="Separator (whitespace when omitted)")
    lines: bool = Field(default=False, description="Split on line breaks instead")
    index: Optional[int] = Field(None, description="Pick a single token; missing index resolves to absent")

    def describe(self) -> str:
        if self.lines:
            how = "lines"
        elif self.separator is None:
            how = "words"
        else:
            how = f"split {self.separator!r}"
        return f"{how}[{self.index}]" if self.index is not None else how


class CommandSubject(_Subject):
    """Output of a command"""
    kind: Literal["command"] = "command"
    command: str = Field(..., min_length=1, description="Command line to run")
    shell: bool = Field(default=False, description="Run through /bin/sh (pipelines)")
    stream: Literal["stdout", "stderr", "exit_status"] = Field(default="stdout", description="Which output to read")
    tokens: Optional[TokenSpec] = Field(None, description="Derive tokens from the output")
    require_success: bool = Field(default=False, description="Treat a nonzero exit status as a fact error")

    def describe(self) -> str:
        text = f"command `{self.command}` {self.stream}"
        if self.tokens:
            text += f" {self.tokens.describe()}"
        return text


class JsonSubject(_Subject):
    """Value at a key path inside a JSON document"""
    kind: Literal["json"] = "json"
    path: Optional[str] = Field(None, description="Read the document from this file")
    text: Optional[str] = Field(None, description="Inline document text")
    command: Optional[str] = Field(None, description="Parse the stdout of this command")
    shell: bool = Field(default=False, description="Run the command through /bin/sh")
    key: List[Union[int, str]] = Field(default_factory=list, description="Key path (keys and indices)")

    @model_validator(mode="after")
    def _one_source(self) -> "JsonSubject":
        sources = [s for s in (self.path, self.text, self.command) if s is not None]
        if len(sources) != 1:
            raise ValueError("json subject needs exactly one of 'path', 'text' or 'command'")
        return self

    def describe(self) -> str:
        if self.path is not None:
            source = self.path
        elif self.command is not None:
            source = f"`{self.command}`"
        else:
            source = "<inline>"
        if not self.key:
            return f"json {source}"
        return f"json {source} [{', '.join(str(k) for k in self.key)}]"


PathSource = Annotated[Union[CommandSubject, JsonSubject], Field(discriminator="kind")]


class FileSubject(_Subject):
    """Metadata of a filesystem path, given literally or derived from another fact"""
    kind: Literal["file"] = "file"
    path: Optional[str] = Field(None, description="Literal path")
    path_from: Optional[PathSource] = Field(None, description="Fact that yields the path")
    field: Optional[FileField] = Field(None, description="Read a single attribute instead of the whole record")

    @model_validator(mode="after")
    def _one_path(self) -> "FileSubject":
        if (self.path is None) == (self.path_from is None):
            raise ValueError("file subject needs exactly one of 'path' or 'path_from'")
        return self

    def describe(self) -> str:
        text = f"file {self.path}" if self.path is not None else f"file from {self.path_from.describe()}"
        if self.field is not None:
            text += f" {self.field.value}"
        return text


class BinarySubject(_Subject):
    """Location of an executable on PATH (absent when not installed)"""
    kind: Literal["binary"] = "binary"
    name: str = Field(..., min_length=1, description="Executable name")

    def describe(self) -> str:
        return f"binary {self.name}"


class HostSubject(_Subject):
    """A fact about the host operating system"""
    kind: Literal["host"] = "host"
    fact: HostFact = Field(..., description="Host fact name")

    def describe(self) -> str:
        return f"host {self.fact.value}"


class ValueSubject(_Subject):
    """A literal value"""
    kind: Literal["value"] = "value"
    value: Any = Field(None, description="Literal value")

    def describe(self) -> str:
        return f"value {self.value!r}"


ItemSubject = Annotated[
    Union[FileSubject, JsonSubject, CommandSubject, BinarySubject, HostSubject, ValueSubject],
    Field(discriminator="kind")
]


class EachSubject(_Subject):
    """Enumeration subject: one evaluation of ``item`` per entity listed by ``enumerate``"""
    kind: Literal["each"] = "each"
    enumerate: CommandSubject = Field(..., description="Command listing entity identifiers")
    item: ItemSubject = Field(..., description="Subject template evaluated per entity")

    def bind(self, entity: str) -> BaseModel:
        """Return the item subject with the entity substituted for {item}"""
        data = _substitute(self.item.model_dump(), entity)
        return type(self.item).model_validate(data)

    def describe(self) -> str:
        return f"each `{self.enumerate.command}`: {self.item.describe()}"


Subject = Annotated[
    Union[FileSubject, JsonSubject, CommandSubject, BinarySubject, HostSubject, ValueSubject, EachSubject],
    Field(discriminator="kind")
]


def _substitute(data: Any, entity: str) -> Any:
    # plain replace: docker Go templates ({{.ID}}) must survive untouched
    if isinstance(data, str):
        return data.replace(ITEM_PLACEHOLDER, entity)
    if isinstance(data, list):
        return [_substitute(item, entity) for item in data]
    if isinstance(data, dict):
        return {key: _substitute(value, entity) for key, value in data.items()}
    return data
