from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from minicluster.core.models import INDEX_PLACEHOLDER, LOCALHOST, ClusterOptions, HostPort
from minicluster.utils.errors import ConfigurationError

EPHEMERAL_BIND_ADDRESS = f"{LOCALHOST}:0"


class DaemonRole(str, Enum):
    """Kinds of server the cluster launches."""

    COORDINATOR = "coordinator"
    WORKER = "worker"


def substitute_index_placeholder(flags: Sequence[str], index: int) -> List[str]:
    """Replace every ${index} token in `flags` with the daemon's zero-based index."""
    str_index = str(index)
    return [flag.replace(INDEX_PLACEHOLDER, str_index) for flag in flags]


def daemon_id_for(role: DaemonRole, index: int) -> str:
    return f"{role.value}-{index}"


@dataclass(frozen=True)
class RolePlan:
    """Role-specific launch plan for one daemon.

    Rendered into the role flags that precede the daemon's extra flags on its
    command line. `rebind()` derives the plan used to restart on the same
    endpoints.
    """

    role: DaemonRole
    index: int
    rpc_bind_address: str = EPHEMERAL_BIND_ADDRESS
    web_port: int = 0
    extra_flags: Tuple[str, ...] = ()
    leader: bool = False
    leader_address: Optional[str] = None
    follower_addresses: Optional[Tuple[str, ...]] = None
    coordinator_addresses: Tuple[str, ...] = ()

    @property
    def daemon_id(self) -> str:
        return daemon_id_for(self.role, self.index)

    def role_flags(self, data_dir: Path) -> List[str]:
        prefix = self.role.value
        flags = [
            f"--{prefix}_base_dir={data_dir}",
            f"--{prefix}_rpc_bind_addresses={self.rpc_bind_address}",
            f"--{prefix}_web_port={self.web_port}",
        ]

        if self.role == DaemonRole.WORKER:
            flags.append(f"--worker_coordinator_addrs={','.join(self.coordinator_addresses)}")
            return flags

        if self.leader:
            flags.append("--leader")
        elif self.leader_address is not None:
            flags.append(f"--leader_address={self.leader_address}")

        if self.follower_addresses is not None:
            flags.append(f"--follower_addresses={','.join(self.follower_addresses)}")

        return flags

    def rebind(self, rpc_address: HostPort, http_address: Optional[HostPort]) -> "RolePlan":
        """Return a plan that asks the server to bind the given endpoints again."""
        web_port = http_address.port if http_address is not None else self.web_port
        return replace(self, rpc_bind_address=str(rpc_address), web_port=web_port)


class ClusterTopologyPlanner:
    """Computes per-daemon launch plans for a cluster topology."""

    def __init__(self, options: ClusterOptions) -> None:
        self.options = options

    def plan_single_coordinator(self) -> RolePlan:
        return RolePlan(
            role=DaemonRole.COORDINATOR,
            index=0,
            rpc_bind_address=EPHEMERAL_BIND_ADDRESS,
            extra_flags=tuple(substitute_index_placeholder(self.options.extra_coordinator_flags, 0)),
        )

    def plan_distributed_coordinators(self, ports: Optional[Sequence[int]] = None) -> List[RolePlan]:
        """Plan a leader (index 0) plus followers on fixed ports.

        The leader is told every follower address. Each follower is told the
        leader address and every other follower address, never its own.
        """
        if ports is None:
            ports = self.options.coordinator_rpc_ports
        num_coordinators = self.options.num_coordinators

        if len(ports) != num_coordinators:
            raise ConfigurationError(
                f"{num_coordinators} coordinators requested, but {len(ports)} ports "
                "specified in 'coordinator_rpc_ports'"
            )

        addresses = [f"{LOCALHOST}:{port}" for port in ports]
        leader_address = addresses[0]
        follower_addresses = addresses[1:]

        plans = [
            RolePlan(
                role=DaemonRole.COORDINATOR,
                index=0,
                rpc_bind_address=leader_address,
                extra_flags=tuple(substitute_index_placeholder(self.options.extra_coordinator_flags, 0)),
                leader=True,
                follower_addresses=tuple(follower_addresses),
            )
        ]

        for index in range(1, num_coordinators):
            own_address = addresses[index]
            other_peers = tuple(addresses[peer] for peer in range(1, num_coordinators) if peer != index)
            plans.append(
                RolePlan(
                    role=DaemonRole.COORDINATOR,
                    index=index,
                    rpc_bind_address=own_address,
                    extra_flags=tuple(
                        substitute_index_placeholder(self.options.extra_coordinator_flags, index)
                    ),
                    leader_address=leader_address,
                    follower_addresses=other_peers,
                )
            )

        return plans

    def plan_worker(self, index: int, coordinator_endpoints: Sequence[HostPort]) -> RolePlan:
        if not coordinator_endpoints:
            raise ConfigurationError("A worker needs at least one coordinator endpoint.")

        return RolePlan(
            role=DaemonRole.WORKER,
            index=index,
            rpc_bind_address=EPHEMERAL_BIND_ADDRESS,
            extra_flags=tuple(substitute_index_placeholder(self.options.extra_worker_flags, index)),
            coordinator_addresses=tuple(str(endpoint) for endpoint in coordinator_endpoints),
        )
