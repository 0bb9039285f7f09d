"""Child-process abstraction for command-line camera backends.

The gphoto2 transport never calls ``subprocess`` directly; it goes through
a ``CommandRunner`` so tests can inject canned output, the same way serial
drivers take an injected port.

Example:
    class FakeRunner:
        def run(self, args, timeout):
            return CommandResult(args, 0, "/main/settings/iso\\nCurrent: 100\\n", "")

        def spawn(self, args, stdout_path):
            raise NotImplementedError

    transport = Gphoto2Transport(runner=FakeRunner())
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

#: Variables removed from the child environment. A host application that
#: ships its own shared libraries (or a stray X display) must not leak them
#: into gphoto2 and libgphoto2's camera drivers.
SANITIZED_VARIABLES: tuple[str, ...] = (
    "LD_LIBRARY_PATH",
    "DYLD_LIBRARY_PATH",
    "DISPLAY",
)


def sanitized_environment(base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy ``base`` (default ``os.environ``) without library-path variables.

    Example:
        >>> env = sanitized_environment({"PATH": "/usr/bin", "LD_LIBRARY_PATH": "/opt"})
        >>> env
        {'PATH': '/usr/bin'}
    """
    source = os.environ if base is None else base
    return {k: v for k, v in source.items() if k not in SANITIZED_VARIABLES}


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Completed command.

    Attributes:
        args: Argument vector that was run.
        returncode: Exit status.
        stdout: Decoded standard output.
        stderr: Decoded standard error.
    """

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


@runtime_checkable
class RunningProcess(Protocol):  # pragma: no cover
    """Subset of ``subprocess.Popen`` used for background captures."""

    @property
    def returncode(self) -> int | None: ...

    def poll(self) -> int | None: ...

    def terminate(self) -> None: ...

    def wait(self, timeout: float | None = None) -> int: ...


@runtime_checkable
class CommandRunner(Protocol):  # pragma: no cover
    """Runs external commands on behalf of a transport."""

    def run(self, args: Sequence[str], timeout: float) -> CommandResult:
        """Run to completion, capturing output.

        Raises:
            OSError: Executable missing or not runnable.
            subprocess.TimeoutExpired: Command exceeded ``timeout``.
        """
        ...

    def spawn(self, args: Sequence[str], stdout_path: Path) -> RunningProcess:
        """Start detached with stdout and stderr redirected to ``stdout_path``."""
        ...


class SubprocessRunner:
    """CommandRunner backed by ``subprocess`` with a sanitized environment."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env = sanitized_environment(env)

    def run(self, args: Sequence[str], timeout: float) -> CommandResult:
        completed = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
            env=self._env,
            check=False,
        )
        return CommandResult(
            tuple(args), completed.returncode, completed.stdout, completed.stderr
        )

    def spawn(self, args: Sequence[str], stdout_path: Path) -> RunningProcess:
        # The child keeps its own handle; ours can close immediately.
        with open(stdout_path, "wb") as out:
            return subprocess.Popen(
                list(args),
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=subprocess.STDOUT,
                env=self._env,
                start_new_session=True,
            )
