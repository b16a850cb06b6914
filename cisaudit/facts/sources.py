"""
Host fact sources: process execution and filesystem metadata

These are the only places that touch the live system. The provider talks to
them through ``run``, ``stat``, ``read_text`` and ``which``, so tests can
swap in static stand-ins.
"""

import grp
import logging
import os
import pwd
import shlex
import shutil
import stat
import subprocess
from typing import Optional

from ..errors import FactError
from .models import CommandResult, FileFacts, FileType, Permissions

logger = logging.getLogger(__name__)

# exit status a POSIX shell uses when the command itself was not found
SHELL_COMMAND_NOT_FOUND = 127


class CommandRunner:
    """Runs commands with a bounded timeout and captures their output"""

    def run(self, command: str, shell: bool = False, timeout: float = 10.0) -> CommandResult:
        """Run a command, raising FactError when it cannot be run or times out"""
        if not command or not command.strip():
            raise FactError("Empty command")

        if shell:
            args = command
        else:
            try:
                args = shlex.split(command)
            except ValueError as e:
                raise FactError(f"Cannot parse command {command!r}: {e}") from e

        logger.debug("Running command (timeout %.1fs): %s", timeout, command)
        try:
            completed = subprocess.run(
                args,
                shell=shell,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout
            )
        except subprocess.TimeoutExpired as e:
            logger.warning("Command timed out after %.1fs: %s", timeout, command)
            raise FactError(f"Command timed out after {timeout:g}s: {command}") from e
        except FileNotFoundError as e:
            raise FactError(f"Command not found: {args[0]}") from e
        except OSError as e:
            raise FactError(f"Cannot run {command!r}: {e}") from e

        if shell and completed.returncode == SHELL_COMMAND_NOT_FOUND:
            raise FactError(f"Command not found: {command} ({completed.stderr.strip()})")

        return CommandResult(
            command=command,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            exit_status=completed.returncode
        )


class FileSystem:
    """Reads filesystem metadata and file contents"""

    def stat(self, path: str) -> FileFacts:
        """Stat a path; a missing path is returned as FileFacts(exists=False)"""
        try:
            st = os.stat(path)
        except (FileNotFoundError, NotADirectoryError):
            return FileFacts.missing(path)
        except OSError as e:
            raise FactError(f"Cannot stat {path}: {e.strerror or e}") from e

        return FileFacts(
            path=path,
            exists=True,
            type=self._file_type(st.st_mode),
            owner=self._user_name(st.st_uid),
            group=self._group_name(st.st_gid),
            permissions=Permissions.from_octal(stat.S_IMODE(st.st_mode))
        )

    def read_text(self, path: str) -> str:
        """Read a text file, raising FactError if it is missing or unreadable"""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except FileNotFoundError as e:
            raise FactError(f"File not found: {path}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise FactError(f"Cannot read {path}: {e}") from e

    def which(self, name: str) -> Optional[str]:
        """Locate an executable on PATH"""
        return shutil.which(name)

    @staticmethod
    def _file_type(mode: int) -> FileType:
        if stat.S_ISREG(mode):
            return FileType.FILE
        if stat.S_ISDIR(mode):
            return FileType.DIRECTORY
        if stat.S_ISSOCK(mode):
            return FileType.SOCKET
        return FileType.OTHER

    @staticmethod
    def _user_name(uid: int) -> str:
        try:
            return pwd.getpwuid(uid).pw_name
        except KeyError:
            return str(uid)

    @staticmethod
    def _group_name(gid: int) -> str:
        try:
            return grp.getgrgid(gid).gr_name
        except KeyError:
            return str(gid)
