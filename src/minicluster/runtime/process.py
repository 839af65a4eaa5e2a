from __future__ import annotations

import signal
import subprocess
from pathlib import Path
from typing import IO, Optional, Protocol, Sequence, Tuple, Union

from minicluster.utils.errors import ClusterError, IllegalStateError, ProcessLaunchFailed

OutputTarget = Union[int, IO, None]


class ProcessController(Protocol):
    """Capabilities the harness needs from one external OS process."""

    @property
    def pid(self) -> Optional[int]:
        ...

    @property
    def is_launched(self) -> bool:
        ...

    def launch(
        self,
        exe: Path,
        argv: Sequence[str],
        stdout: OutputTarget = None,
        stderr: OutputTarget = None,
    ) -> None:
        ...

    def suspend(self) -> None:
        ...

    def resume(self) -> None:
        ...

    def terminate(self) -> None:
        ...

    def wait(self) -> int:
        ...

    def poll_exited(self) -> Tuple[bool, Optional[int]]:
        ...

    def reset(self) -> None:
        ...


class ManagedProcess:
    """POSIX process control through `subprocess` and signals.

    Suspend, resume and terminate map to SIGSTOP, SIGCONT and SIGKILL, and are
    no-ops before launch. A process is launched at most once until `reset()`.
    """

    def __init__(self) -> None:
        self.exe: Optional[Path] = None
        self.argv: list[str] = []
        self.exit_code: Optional[int] = None
        self._popen: Optional[subprocess.Popen] = None

    @property
    def pid(self) -> Optional[int]:
        return self._popen.pid if self._popen is not None else None

    @property
    def is_launched(self) -> bool:
        return self._popen is not None

    def launch(
        self,
        exe: Path,
        argv: Sequence[str],
        stdout: OutputTarget = None,
        stderr: OutputTarget = None,
    ) -> None:
        """Spawn `exe` with `argv` (argv[0] included), inheriting the environment."""
        if self._popen is not None:
            raise IllegalStateError("Process already launched; reset() before launching again.", daemon=str(exe))

        try:
            popen = subprocess.Popen(
                list(argv),
                executable=str(exe),
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
            )
        except OSError as exc:
            raise ProcessLaunchFailed(f"Failed to start subprocess: {exc}", daemon=str(exe)) from exc

        self.exe = exe
        self.argv = list(argv)
        self.exit_code = None
        self._popen = popen

    def suspend(self) -> None:
        self._send_signal(signal.SIGSTOP)

    def resume(self) -> None:
        self._send_signal(signal.SIGCONT)

    def terminate(self) -> None:
        self._send_signal(signal.SIGKILL)

    def wait(self) -> int:
        """Block until the process exits and return its exit code."""
        popen = self._require_launched()
        self.exit_code = popen.wait()
        return self.exit_code

    def poll_exited(self) -> Tuple[bool, Optional[int]]:
        """Non-blocking exit check; returns (exited, exit_code)."""
        popen = self._require_launched()
        code = popen.poll()
        if code is None:
            return False, None
        self.exit_code = code
        return True, code

    def reset(self) -> None:
        self._popen = None
        self.exit_code = None

    def _send_signal(self, sig: int) -> None:
        if self._popen is None:
            return
        try:
            self._popen.send_signal(sig)
        except OSError as exc:
            raise ClusterError(f"Failed to deliver signal {sig} to pid {self._popen.pid}: {exc}", daemon=str(self.exe)) from exc

    def _require_launched(self) -> subprocess.Popen:
        if self._popen is None:
            raise IllegalStateError("Process has not been launched.")
        return self._popen
