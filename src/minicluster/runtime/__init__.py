"""Process supervision, startup discovery and cluster orchestration."""

from minicluster.runtime.convergence import ConvergenceWaiter, count_matching_workers
from minicluster.runtime.daemon import DaemonHandle
from minicluster.runtime.lifecycle import ClusterEvent, ClusterState, transition_cluster_state
from minicluster.runtime.membership_rpc import CoordinatorProxy, RPCTransport, WorkerEntry
from minicluster.runtime.orchestrator import ClusterOrchestrator
from minicluster.runtime.polling import Clock, SystemClock, poll_until
from minicluster.runtime.probe import StartupProbe, read_server_status, status_artifact_path
from minicluster.runtime.process import ManagedProcess, ProcessController

__all__ = [
	"Clock",
	"ClusterEvent",
	"ClusterOrchestrator",
	"ClusterState",
	"ConvergenceWaiter",
	"CoordinatorProxy",
	"DaemonHandle",
	"ManagedProcess",
	"ProcessController",
	"RPCTransport",
	"StartupProbe",
	"SystemClock",
	"WorkerEntry",
	"count_matching_workers",
	"poll_until",
	"read_server_status",
	"status_artifact_path",
	"transition_cluster_state",
]
