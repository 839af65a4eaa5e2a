from __future__ import annotations

import subprocess
from pathlib import Path
from typing import IO, Callable, List, Optional, Sequence

from minicluster.core.models import HostPort, NodeInstance, ServerStatus
from minicluster.core.topology import DaemonRole, RolePlan
from minicluster.runtime.polling import Clock
from minicluster.runtime.probe import (
    DEFAULT_START_TIMEOUT_SECONDS,
    STATUS_ARTIFACT_FORMAT,
    StartupProbe,
)
from minicluster.runtime.process import ManagedProcess, ProcessController
from minicluster.utils.console import ClusterLog
from minicluster.utils.errors import ClusterError, IllegalStateError

DAEMON_LOG_NAME = "daemon.log"

# Appended after role and extra flags on every launch.
HARNESS_LOGGING_FLAGS = ["--logtostderr", "--logbuflevel=-1"]
HARNESS_WEBSERVER_FLAGS = ["--webserver_interface=localhost"]


def harness_flags(artifact_path: Path) -> List[str]:
    """Flags the harness appends to every server's command line."""
    return [
        f"--server_dump_info_path={artifact_path}",
        f"--server_dump_info_format={STATUS_ARTIFACT_FORMAT}",
        *HARNESS_LOGGING_FLAGS,
        *HARNESS_WEBSERVER_FLAGS,
    ]


class DaemonHandle:
    """One coordinator or worker server run as an external process.

    Owns the process, the data directory and the status record the server
    reported at startup. Shutdown keeps the last bound endpoints so that
    `restart()` can bring the same identity back on the same addresses.
    """

    def __init__(
        self,
        exe: Path,
        data_dir: Path,
        plan: RolePlan,
        process_factory: Callable[[], ProcessController] = ManagedProcess,
        start_timeout_seconds: float = DEFAULT_START_TIMEOUT_SECONDS,
        clock: Optional[Clock] = None,
        log: Optional[ClusterLog] = None,
    ) -> None:
        self.exe = exe
        self.data_dir = data_dir
        self.plan = plan
        self.process_factory = process_factory
        self.start_timeout_seconds = start_timeout_seconds
        self.clock = clock
        self.log = log or ClusterLog()

        self._process: Optional[ProcessController] = None
        self._status: Optional[ServerStatus] = None
        self._retained_rpc: Optional[HostPort] = None
        self._retained_http: Optional[HostPort] = None
        self._log_file: Optional[IO[bytes]] = None

    @property
    def daemon_id(self) -> str:
        return self.plan.daemon_id

    @property
    def role(self) -> DaemonRole:
        return self.plan.role

    @property
    def extra_flags(self) -> List[str]:
        return list(self.plan.extra_flags)

    @property
    def log_path(self) -> Path:
        return self.data_dir / DAEMON_LOG_NAME

    @property
    def status(self) -> Optional[ServerStatus]:
        return self._status

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def retained_rpc_address(self) -> Optional[HostPort]:
        return self._retained_rpc

    @property
    def retained_http_address(self) -> Optional[HostPort]:
        return self._retained_http

    def is_running(self) -> bool:
        if self._process is None:
            return False
        exited, _ = self._process.poll_exited()
        return not exited

    def build_argv(self, role_flags: Sequence[str], artifact_path: Path) -> List[str]:
        """argv[0] is the executable's basename; extra flags follow role flags so they can override them."""
        return [self.exe.name, *role_flags, *self.plan.extra_flags, *harness_flags(artifact_path)]

    def start(self) -> None:
        self.start_process(self.plan.role_flags(self.data_dir))

    def start_process(self, role_flags: Sequence[str]) -> None:
        """Launch the server and block until it reports its bound endpoints."""
        if self._process is not None:
            raise IllegalStateError("Daemon already holds a process; shut it down first.", daemon=self.daemon_id)

        self.data_dir.mkdir(parents=True, exist_ok=True)
        probe = StartupProbe(
            self.data_dir,
            timeout_seconds=self.start_timeout_seconds,
            clock=self.clock,
            daemon=self.daemon_id,
        )
        argv = self.build_argv(role_flags, probe.artifact_path)
        probe.clear_stale()

        log_file = self.log_path.open("ab")
        process = self.process_factory()
        self.log.log(f"Running {self.exe}", severity="info")
        self.log.log("\n".join(argv), severity="debug")

        # Any exception, interrupts included, must not leave an untracked child running.
        try:
            process.launch(self.exe, argv, stdout=log_file, stderr=subprocess.STDOUT)
            status = probe.wait(process)
        except BaseException:
            if process.is_launched:
                self._reap(process)
            log_file.close()
            raise

        self._process = process
        self._status = status
        self._log_file = log_file
        self.log.log(f"Started {self.exe} as pid {process.pid}", severity="success")
        self.log.log(f"{self.daemon_id} instance information: {status.model_dump_json()}", severity="debug")

    def restart(self) -> None:
        """Start again on the endpoints captured by the last `shutdown()`."""
        if self._retained_rpc is None:
            raise IllegalStateError(
                f"{self.role.value.capitalize()} cannot be restarted. Must call shutdown() first.",
                daemon=self.daemon_id,
            )

        self.plan = self.plan.rebind(self._retained_rpc, self._retained_http)
        self.start()

    def pause(self) -> None:
        if self._process is None:
            return
        self.log.log(f"Pausing {self.exe} with pid {self._process.pid}", severity="debug")
        self._process.suspend()

    def resume(self) -> None:
        if self._process is None:
            return
        self.log.log(f"Resuming {self.exe} with pid {self._process.pid}", severity="debug")
        self._process.resume()

    def shutdown(self) -> None:
        if self._process is None:
            return

        # Captured before the kill so a later restart() can rebind them.
        self._retained_rpc = self.bound_rpc_hostport()
        self._retained_http = self.bound_http_hostport()

        self.log.log(f"Killing {self.exe} with pid {self._process.pid}", severity="info")
        self._reap(self._process)
        self._process = None

        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None

    def bound_rpc_hostport(self) -> HostPort:
        return self._require_status().bound_rpc_addresses[0]

    def bound_http_hostport(self) -> HostPort:
        return self._require_status().bound_http_addresses[0]

    def instance_id(self) -> NodeInstance:
        return self._require_status().node_instance

    def describe_row(self) -> List[str]:
        if self._status is None:
            return [self.role.value, self.daemon_id, "-", "-", "-", "-", "no"]
        instance = self._status.node_instance
        return [
            self.role.value,
            self.daemon_id,
            str(self.pid or "-"),
            f"{instance.permanent_id}/{instance.start_sequence}",
            str(self.bound_rpc_hostport()),
            str(self.bound_http_hostport()),
            "yes" if self.is_running() else "no",
        ]

    def _reap(self, process: ProcessController) -> None:
        try:
            process.terminate()
            process.wait()
        except (ClusterError, OSError) as exc:
            self.log.log(f"Waiting on {self.exe}: {exc}", severity="warning")

    def _require_status(self) -> ServerStatus:
        if self._status is None:
            raise IllegalStateError("Daemon has not been started successfully.", daemon=self.daemon_id)
        return self._status
