from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from minicluster.core.models import ServerStatus
from minicluster.runtime.polling import Clock, poll_until
from minicluster.runtime.process import ProcessController
from minicluster.utils.errors import ArtifactParseError, ProcessExitedEarly, StartupTimedOut

STATUS_ARTIFACT_NAME = "server_status.json"
STATUS_ARTIFACT_FORMAT = "json"

DEFAULT_START_TIMEOUT_SECONDS = 10.0
DEFAULT_PROBE_INTERVAL_SECONDS = 0.01


def status_artifact_path(data_dir: Path) -> Path:
    """Return the status artifact path a server writes inside its data directory."""
    return data_dir / STATUS_ARTIFACT_NAME


def remove_stale_status_artifact(data_dir: Path) -> bool:
    """Delete a status artifact left by a previous run; returns whether one was removed."""
    artifact = status_artifact_path(data_dir)
    if not artifact.exists():
        return False
    artifact.unlink()
    return True


def read_server_status(artifact: Path, daemon: Optional[str] = None) -> ServerStatus:
    """Parse a status artifact into a `ServerStatus` record."""
    try:
        payload = json.loads(artifact.read_text(encoding="utf-8"))
        return ServerStatus.model_validate(payload)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        raise ArtifactParseError(f"Failed to read info file from {artifact}: {exc}", daemon=daemon) from exc


class StartupProbe:
    """Discovers a freshly launched server's endpoints from its status artifact.

    Polls for the artifact while checking, on the same interval, whether the
    process has already died. A dead process aborts the wait at once; a
    timeout kills the process.
    """

    def __init__(
        self,
        data_dir: Path,
        timeout_seconds: float = DEFAULT_START_TIMEOUT_SECONDS,
        interval_seconds: float = DEFAULT_PROBE_INTERVAL_SECONDS,
        clock: Optional[Clock] = None,
        daemon: Optional[str] = None,
    ) -> None:
        self.data_dir = data_dir
        self.timeout_seconds = timeout_seconds
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.daemon = daemon

    @property
    def artifact_path(self) -> Path:
        return status_artifact_path(self.data_dir)

    def clear_stale(self) -> bool:
        """Must run before launch so an old artifact is not mistaken for success."""
        return remove_stale_status_artifact(self.data_dir)

    def wait(self, process: ProcessController) -> ServerStatus:
        artifact = self.artifact_path

        def attempt(_remaining: float) -> Optional[Path]:
            if artifact.exists():
                return artifact
            exited, exit_code = process.poll_exited()
            if exited:
                raise ProcessExitedEarly(exit_code if exit_code is not None else -1, daemon=self.daemon)
            return None

        def timed_out() -> Exception:
            process.terminate()
            return StartupTimedOut("Timed out waiting for process to start", daemon=self.daemon)

        found = poll_until(
            attempt,
            timeout_seconds=self.timeout_seconds,
            interval_seconds=self.interval_seconds,
            on_timeout=timed_out,
            clock=self.clock,
        )
        return read_server_status(found, daemon=self.daemon)
