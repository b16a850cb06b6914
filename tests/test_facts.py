"""
Test cases for fact models, document helpers and the fact provider
"""

import os
import shlex
import sys

import pytest
from pydantic import TypeAdapter, ValidationError

from cisaudit.errors import FactError
from cisaudit.facts.documents import lookup, parse_json, tokenize
from cisaudit.facts.models import (
    ABSENT, Capability, CommandResult, FileFacts, FileType, Permissions, Principal,
    display_value, is_absent, to_jsonable,
)
from cisaudit.facts.sources import CommandRunner, FileSystem
from cisaudit.facts.subjects import (
    BinarySubject, CommandSubject, EachSubject, FileSubject, HostSubject, JsonSubject,
    Subject, TokenSpec,
)

from tests.fakes import FakeCommandRunner, FakeFileSystem, make_provider

PYTHON = shlex.quote(sys.executable)


class TestPermissions:
    """Test the owner/group/other permission model"""

    def test_from_octal_string(self):
        perms = Permissions.from_octal("0644")
        assert perms.allows(Capability.READ, Principal.OWNER)
        assert perms.allows(Capability.WRITE, Principal.OWNER)
        assert perms.allows(Capability.READ, Principal.OTHER)
        assert not perms.allows(Capability.WRITE, Principal.GROUP)
        assert not perms.allows(Capability.WRITE, Principal.OTHER)

    def test_any_principal(self):
        assert not Permissions.from_octal("0644").allows(Capability.EXECUTE)
        assert Permissions.from_octal("0641").allows(Capability.EXECUTE)

    def test_from_octal_masks_file_type_bits(self):
        assert Permissions.from_octal(0o100640).octal == "0640"

    def test_invalid_octal(self):
        with pytest.raises(ValueError):
            Permissions.from_octal("0999")

    def test_from_symbolic(self):
        assert Permissions.from_symbolic("rw-r-----").octal == "0640"
        assert Permissions.from_symbolic("-rwxr-xr-x").octal == "0755"

    def test_symbolic_special_bits(self):
        setuid = Permissions.from_symbolic("rwsr-xr-x")
        assert setuid.allows(Capability.EXECUTE, Principal.OWNER)

        no_exec = Permissions.from_symbolic("rwSr--r--")
        assert not no_exec.allows(Capability.EXECUTE, Principal.OWNER)

    def test_invalid_symbolic(self):
        with pytest.raises(ValueError):
            Permissions.from_symbolic("rw-r--")
        with pytest.raises(ValueError):
            Permissions.from_symbolic("rw-q--r--")

    def test_symbolic_rendering(self):
        assert Permissions.from_octal("0750").symbolic == "rwxr-x---"


class TestAbsent:
    """Test the absent sentinel and value rendering"""

    def test_null_is_absent(self):
        assert is_absent(None)
        assert is_absent(ABSENT)
        assert not is_absent(False)
        assert not is_absent("")

    def test_absent_is_falsy_singleton(self):
        assert not ABSENT
        assert repr(ABSENT) == "absent"

    def test_to_jsonable(self):
        assert to_jsonable(ABSENT) is None
        assert to_jsonable(Permissions.from_octal("0600")) == "0600"
        assert to_jsonable({"a": [ABSENT, 1]}) == {"a": [None, 1]}

    def test_display_value(self):
        assert display_value(ABSENT) == "absent"
        assert display_value(True) == "true"
        assert display_value("info") == "'info'"


class TestDocuments:
    """Test JSON parsing, key path lookup and tokenizing"""

    def test_nested_lookup(self):
        document = {"default-ulimits": {"nproc": "1024:2408"}}
        assert lookup(document, ["default-ulimits", "nproc"]) == "1024:2408"

    def test_missing_key_is_absent(self):
        assert lookup({"icc": False}, ["tls"]) is ABSENT

    def test_list_indices(self):
        document = [{"Config": {"User": "app"}}, {"Config": {"User": ""}}]
        assert lookup(document, [0, "Config", "User"]) == "app"
        assert lookup(document, [-1, "Config", "User"]) == ""
        assert lookup(document, [2, "Config"]) is ABSENT
        assert lookup(document, ["first"]) is ABSENT

    def test_walking_into_scalar(self):
        assert lookup({"icc": False}, ["icc", "nested"]) is ABSENT

    def test_null_value_is_not_missing_key(self):
        assert lookup({"User": None}, ["User"]) is None

    def test_integer_key_falls_back_to_string(self):
        assert lookup({"1": "one"}, [1]) == "one"

    def test_empty_key_path_returns_document(self):
        assert lookup({"a": 1}, []) == {"a": 1}

    def test_parse_json_errors(self):
        with pytest.raises(FactError, match="Empty JSON"):
            parse_json("   ", source="daemon.json")
        with pytest.raises(FactError, match="Invalid JSON in daemon.json"):
            parse_json("{icc: false", source="daemon.json")

    def test_tokenize(self):
        assert tokenize("FragmentPath=/lib/systemd/system/docker.service\n", "=") == [
            "FragmentPath", "/lib/systemd/system/docker.service"
        ]
        assert tokenize("abc\n\ndef\n", lines=True) == ["abc", "def"]
        assert tokenize("  a  b\tc\n") == ["a", "b", "c"]


class TestSubjects:
    """Test subject parsing and enumeration binding"""

    def setup_method(self):
        self.adapter = TypeAdapter(Subject)

    def test_discriminated_parsing(self):
        subject = self.adapter.validate_python({"kind": "json", "path": "/etc/docker/daemon.json", "key": ["icc"]})
        assert isinstance(subject, JsonSubject)

        subject = self.adapter.validate_python({"kind": "binary", "name": "docker"})
        assert isinstance(subject, BinarySubject)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            self.adapter.validate_python({"kind": "registry", "name": "docker"})

    def test_json_needs_exactly_one_source(self):
        with pytest.raises(ValidationError):
            JsonSubject(path="/a.json", text="{}")
        with pytest.raises(ValidationError):
            JsonSubject()

    def test_file_needs_exactly_one_path(self):
        with pytest.raises(ValidationError):
            FileSubject()
        with pytest.raises(ValidationError):
            FileSubject(path="/etc/docker", path_from=CommandSubject(command="echo /etc"))

    def test_bind_substitutes_item(self):
        each = EachSubject(
            enumerate=CommandSubject(command='docker ps --format "{{.ID}}"'),
            item=JsonSubject(command="docker inspect {item}", key=[0, "Config", "User"])
        )
        bound = each.bind("abc123")
        assert isinstance(bound, JsonSubject)
        assert bound.command == "docker inspect abc123"
        assert bound.key == [0, "Config", "User"]

    def test_bind_leaves_go_templates_alone(self):
        each = EachSubject(
            enumerate=CommandSubject(command="docker ps --quiet"),
            item=CommandSubject(command="docker inspect --format '{{ .Mounts }}' {item}")
        )
        assert each.bind("c1").command == "docker inspect --format '{{ .Mounts }}' c1"

    def test_describe(self):
        assert HostSubject(fact="os_id").describe() == "host os_id"
        assert "split '='[1]" in CommandSubject(
            command="systemctl show -p FragmentPath docker.service",
            tokens=TokenSpec(separator="=", index=1)
        ).describe()


class TestFactProvider:
    """Test subject resolution and per-run caching"""

    def setup_method(self):
        self.runner = FakeCommandRunner()
        self.filesystem = FakeFileSystem()
        self.provider = make_provider(self.runner, self.filesystem)

    def test_command_resolution_is_cached(self):
        self.runner.responses["docker version"] = "24.0.7\n"
        subject = CommandSubject(command="docker version")
        assert self.provider.resolve(subject) == "24.0.7\n"
        assert self.provider.resolve(subject) == "24.0.7\n"
        assert len(self.runner.calls) == 1

    def test_failures_are_cached(self):
        self.runner.responses["slow"] = FactError("Command timed out after 10s: slow")
        subject = CommandSubject(command="slow")
        for _ in range(2):
            with pytest.raises(FactError, match="timed out"):
                self.provider.resolve(subject)
        assert len(self.runner.calls) == 1

    def test_new_provider_starts_empty(self):
        self.runner.responses["docker version"] = "24.0.7\n"
        self.provider.resolve(CommandSubject(command="docker version"))
        assert self.provider.cache_size() == 1

        fresh = make_provider(self.runner, self.filesystem)
        assert fresh.cache_size() == 0
        fresh.resolve(CommandSubject(command="docker version"))
        assert len(self.runner.calls) == 2

    def test_exit_status_stream(self):
        self.runner.responses["false"] = CommandResult(command="false", exit_status=1)
        assert self.provider.resolve(CommandSubject(command="false", stream="exit_status")) == 1

    def test_require_success(self):
        self.runner.responses["docker ps"] = CommandResult(
            command="docker ps", stderr="Cannot connect to the Docker daemon", exit_status=1
        )
        assert self.provider.resolve(CommandSubject(command="docker ps")) == ""
        with pytest.raises(FactError, match="exit status 1"):
            self.provider.resolve(CommandSubject(command="docker ps", require_success=True))

    def test_token_index(self):
        self.runner.responses["systemctl show -p FragmentPath docker.service"] = (
            "FragmentPath=/lib/systemd/system/docker.service\n"
        )
        subject = CommandSubject(
            command="systemctl show -p FragmentPath docker.service",
            tokens=TokenSpec(separator="=", index=1)
        )
        assert self.provider.resolve(subject) == "/lib/systemd/system/docker.service"

        missing = CommandSubject(
            command="systemctl show -p FragmentPath docker.service",
            tokens=TokenSpec(separator="=", index=5)
        )
        assert self.provider.resolve(missing) is ABSENT

    def test_json_from_file(self):
        self.filesystem.add_file("/etc/docker/daemon.json", '{"icc": false, "log-level": "info"}')
        assert self.provider.resolve(JsonSubject(path="/etc/docker/daemon.json", key=["icc"])) is False
        assert self.provider.resolve(JsonSubject(path="/etc/docker/daemon.json", key=["tls"])) is ABSENT
        assert self.filesystem.read_calls == ["/etc/docker/daemon.json"]

    def test_json_missing_file_is_error(self):
        with pytest.raises(FactError, match="File not found"):
            self.provider.resolve(JsonSubject(path="/etc/docker/daemon.json", key=["icc"]))

    def test_json_from_command(self):
        self.runner.responses["docker inspect c1"] = '[{"HostConfig": {"Privileged": false}}]'
        subject = JsonSubject(command="docker inspect c1", key=[0, "HostConfig", "Privileged"])
        assert self.provider.resolve(subject) is False

    def test_json_from_failed_command(self):
        self.runner.responses["docker inspect gone"] = CommandResult(
            command="docker inspect gone", stderr="No such object", exit_status=1
        )
        with pytest.raises(FactError, match="No such object"):
            self.provider.resolve(JsonSubject(command="docker inspect gone", key=[0]))

    def test_inline_json(self):
        assert self.provider.resolve(JsonSubject(text='{"a": [1, 2]}', key=["a", 1])) == 2

    def test_missing_file_is_resolved_fact(self):
        facts = self.provider.resolve(FileSubject(path="/etc/default/docker"))
        assert isinstance(facts, FileFacts)
        assert not facts.exists

    def test_field_of_missing_file_is_error(self):
        with pytest.raises(FactError, match="does not exist"):
            self.provider.resolve(FileSubject(path="/etc/default/docker", field="owner"))

    def test_file_fields(self):
        self.filesystem.add_socket("/var/run/docker.sock", mode="0660", group="docker")
        assert self.provider.resolve(FileSubject(path="/var/run/docker.sock", field="type")) == "socket"
        assert self.provider.resolve(FileSubject(path="/var/run/docker.sock", field="group")) == "docker"
        assert self.provider.resolve(FileSubject(path="/var/run/docker.sock", field="mode")) == "0660"

    def test_derived_path(self):
        self.runner.responses["systemctl show -p FragmentPath docker.service"] = (
            "FragmentPath=/lib/systemd/system/docker.service\n"
        )
        self.filesystem.add_file("/lib/systemd/system/docker.service")
        subject = FileSubject(path_from=CommandSubject(
            command="systemctl show -p FragmentPath docker.service",
            tokens=TokenSpec(separator="=", index=1)
        ))
        facts = self.provider.resolve(subject)
        assert facts.exists
        assert facts.type == FileType.FILE

    def test_underivable_path_is_error(self):
        self.runner.responses["systemctl show -p FragmentPath docker.service"] = "FragmentPath=\n"
        subject = FileSubject(path_from=CommandSubject(
            command="systemctl show -p FragmentPath docker.service",
            tokens=TokenSpec(separator="=", index=1)
        ))
        with pytest.raises(FactError, match="Could not determine path"):
            self.provider.resolve(subject)

    def test_path_from_missing_json_key_is_error(self):
        self.filesystem.add_file("/etc/docker/daemon.json", '{"tls": true}')
        subject = FileSubject(path_from=JsonSubject(path="/etc/docker/daemon.json", key=["tlscacert"]))
        with pytest.raises(FactError, match="Could not determine path"):
            self.provider.resolve(subject)

    def test_binary(self):
        self.filesystem.add_binary("docker")
        assert self.provider.resolve(BinarySubject(name="docker")) == "/usr/bin/docker"
        assert self.provider.resolve(BinarySubject(name="podman")) is ABSENT

    def test_host_facts(self):
        self.filesystem.add_file(
            "/etc/os-release",
            'NAME="Ubuntu"\nID=ubuntu\nID_LIKE=debian\nVERSION_ID="22.04"\n'
        )
        assert self.provider.resolve(HostSubject(fact="os_id")) == "ubuntu"
        assert self.provider.resolve(HostSubject(fact="os_family")) == "debian"
        assert self.provider.resolve(HostSubject(fact="os_version")) == "22.04"

    def test_host_facts_without_os_release(self):
        assert self.provider.resolve(HostSubject(fact="os_id")) is ABSENT
        assert self.provider.resolve(HostSubject(fact="os_version")) is ABSENT

    def test_enumerate_deduplicates_in_order(self):
        self.runner.responses["docker ps --quiet"] = "c2\nc1\nc2\n"
        each = EachSubject(
            enumerate=CommandSubject(command="docker ps --quiet"),
            item=CommandSubject(command="docker exec {item} ps -e")
        )
        assert self.provider.enumerate(each) == ["c2", "c1"]

    def test_enumerate_empty(self):
        self.runner.responses["docker ps --quiet"] = ""
        each = EachSubject(
            enumerate=CommandSubject(command="docker ps --quiet"),
            item=CommandSubject(command="docker exec {item} ps -e")
        )
        assert self.provider.enumerate(each) == []

    def test_enumerate_failure(self):
        self.runner.responses["docker ps --quiet"] = CommandResult(
            command="docker ps --quiet", stderr="daemon not running", exit_status=1
        )
        each = EachSubject(
            enumerate=CommandSubject(command="docker ps --quiet"),
            item=CommandSubject(command="docker exec {item} ps -e")
        )
        with pytest.raises(FactError, match="Enumeration command failed"):
            self.provider.enumerate(each)

    def test_each_must_be_expanded(self):
        each = EachSubject(
            enumerate=CommandSubject(command="docker ps --quiet"),
            item=CommandSubject(command="docker exec {item} ps -e")
        )
        with pytest.raises(FactError):
            self.provider.resolve(each)


class TestCommandRunner:
    """Test real process execution"""

    def setup_method(self):
        self.runner = CommandRunner()

    def test_captures_output(self):
        result = self.runner.run(f"{PYTHON} -c 'print(42)'")
        assert result.stdout.strip() == "42"
        assert result.succeeded

    def test_nonzero_exit_is_not_an_error(self):
        result = self.runner.run(f"{PYTHON} -c 'import sys; sys.exit(3)'")
        assert result.exit_status == 3
        assert not result.succeeded

    def test_timeout(self):
        with pytest.raises(FactError, match="timed out"):
            self.runner.run(f"{PYTHON} -c 'import time; time.sleep(5)'", timeout=0.2)

    def test_missing_executable(self):
        with pytest.raises(FactError, match="Command not found"):
            self.runner.run("cisaudit-no-such-command --version")

    def test_missing_executable_in_shell(self):
        with pytest.raises(FactError, match="Command not found"):
            self.runner.run("cisaudit-no-such-command --version", shell=True)

    def test_shell_pipeline(self):
        result = self.runner.run("printf 'a\\nb\\n' | wc -l", shell=True)
        assert result.stdout.strip() == "2"

    def test_undecodable_output_is_replaced(self):
        result = self.runner.run(f"{PYTHON} -c 'import sys; sys.stdout.buffer.write(b\"\\xffok\")'")
        assert result.stdout == "\ufffdok"


class TestFileSystem:
    """Test real filesystem metadata"""

    def setup_method(self):
        self.filesystem = FileSystem()

    def test_stat_file(self, tmp_path):
        path = tmp_path / "daemon.json"
        path.write_text("{}")
        os.chmod(path, 0o640)

        facts = self.filesystem.stat(str(path))
        assert facts.exists
        assert facts.type == FileType.FILE
        assert facts.permissions.octal == "0640"
        assert facts.owner

    def test_stat_directory(self, tmp_path):
        facts = self.filesystem.stat(str(tmp_path))
        assert facts.type == FileType.DIRECTORY

    def test_stat_missing(self, tmp_path):
        facts = self.filesystem.stat(str(tmp_path / "missing"))
        assert not facts.exists
        assert facts.permissions is None

    def test_read_missing(self, tmp_path):
        with pytest.raises(FactError, match="File not found"):
            self.filesystem.read_text(str(tmp_path / "missing"))


if __name__ == "__main__":
    pytest.main([__file__])
