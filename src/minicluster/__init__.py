from minicluster.core.models import (
	ClusterEnvironment,
	ClusterOptions,
	HostPort,
	NodeInstance,
	ServerStatus,
)
from minicluster.core.topology import ClusterTopologyPlanner, DaemonRole, RolePlan
from minicluster.runtime.daemon import DaemonHandle
from minicluster.runtime.lifecycle import ClusterState
from minicluster.runtime.orchestrator import ClusterOrchestrator
from minicluster.utils.errors import (
	ArtifactParseError,
	ClusterError,
	ConfigurationError,
	ConvergenceTimedOut,
	IllegalStateError,
	ProcessExitedEarly,
	ProcessLaunchFailed,
	RPCFailure,
	StartupTimedOut,
)

__all__ = [
	"ArtifactParseError",
	"ClusterEnvironment",
	"ClusterError",
	"ClusterOptions",
	"ClusterOrchestrator",
	"ClusterState",
	"ClusterTopologyPlanner",
	"ConfigurationError",
	"ConvergenceTimedOut",
	"DaemonHandle",
	"DaemonRole",
	"HostPort",
	"IllegalStateError",
	"NodeInstance",
	"ProcessExitedEarly",
	"ProcessLaunchFailed",
	"RPCFailure",
	"RolePlan",
	"ServerStatus",
	"StartupTimedOut",
]
