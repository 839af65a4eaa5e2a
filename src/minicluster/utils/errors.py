from typing import Optional


class ClusterError(Exception):
    """
    Base exception for every failure surfaced by the cluster harness.
    Carries the daemon (executable or daemon id) the failure relates to, when known.
    """
    kind = "Cluster Error"

    def __init__(self, message: str, daemon: Optional[str] = None):
        self.message = message
        self.daemon = daemon
        ctx = f" [{daemon}]" if daemon else ""
        super().__init__(f"{self.kind}{ctx}: {message}")


class ConfigurationError(ClusterError):
    """Invalid topology or configuration input."""
    kind = "Configuration Error"


class ProcessLaunchFailed(ClusterError):
    """The OS refused to spawn the external process."""
    kind = "Process Launch Failed"


class ProcessExitedEarly(ClusterError):
    """The process started but exited before reporting its status."""
    kind = "Process Exited Early"

    def __init__(self, exit_code: int, daemon: Optional[str] = None):
        self.exit_code = exit_code
        super().__init__(f"Process exited with rc={exit_code}", daemon=daemon)


class StartupTimedOut(ClusterError):
    """The status artifact never appeared; the process has been killed."""
    kind = "Startup Timed Out"


class ArtifactParseError(ClusterError):
    """The status artifact exists but could not be parsed."""
    kind = "Artifact Parse Error"


class IllegalStateError(ClusterError, RuntimeError):
    """An operation was invoked in a state that forbids it."""
    kind = "Illegal State"


class RPCFailure(ClusterError):
    """A membership RPC against a coordinator failed."""
    kind = "RPC Failure"


class ConvergenceTimedOut(ClusterError):
    """The expected worker set was not observed before the deadline."""
    kind = "Convergence Timed Out"
