import os
import sys
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

INDEX_PLACEHOLDER = "${index}"
LOCALHOST = "127.0.0.1"


class HostPort(BaseModel):
    """A `host:port` network endpoint."""
    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(ge=0, le=65535)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class NodeInstance(BaseModel):
    """
    Identity of one incarnation of a server.

    `permanent_id` is stable for a data directory; `start_sequence` changes on
    every fresh start, so the pair names exactly one running incarnation.
    """
    model_config = ConfigDict(frozen=True)

    permanent_id: str = Field(min_length=1)
    start_sequence: int = Field(ge=0)


class ServerStatus(BaseModel):
    """
    Status record each server writes once its listeners are bound.
    """
    model_config = ConfigDict(extra="ignore")

    node_instance: NodeInstance
    bound_rpc_addresses: List[HostPort] = Field(min_length=1)
    bound_http_addresses: List[HostPort] = Field(min_length=1)


class ClusterOptions(BaseModel):
    """
    Topology options for an external mini cluster (the 'cluster' section of a cluster definition).
    """
    model_config = ConfigDict(extra="forbid")

    num_coordinators: int = Field(default=1, ge=1)
    num_workers: int = Field(default=1, ge=0)

    # Required when num_coordinators > 1; one fixed RPC port per coordinator.
    coordinator_rpc_ports: List[int] = Field(default_factory=list)

    # May contain ${index}, replaced with the daemon's zero-based index.
    extra_coordinator_flags: List[str] = Field(default_factory=list)
    extra_worker_flags: List[str] = Field(default_factory=list)

    bin_root: Optional[Path] = None
    data_root: Optional[Path] = None

    coordinator_binary: str = "cluster-coordinator"
    worker_binary: str = "cluster-worker"

    start_timeout_seconds: float = Field(default=10.0, gt=0)
    registration_timeout_seconds: float = Field(default=10.0, ge=0)

    @field_validator("coordinator_rpc_ports")
    @classmethod
    def _validate_ports(cls, ports: List[int]) -> List[int]:
        for port in ports:
            if not 1 <= port <= 65535:
                raise ValueError(f"Coordinator RPC port {port} is out of range.")
        if len(set(ports)) != len(ports):
            raise ValueError("Coordinator RPC ports must be unique.")
        return ports


class ClusterEnvironment(BaseSettings):
    """
    Process environment the orchestrator resolves its roots from.
    Read from MINICLUSTER_* variables; tests construct it directly instead.
    """
    model_config = SettingsConfigDict(env_prefix="MINICLUSTER_", extra="ignore")

    bin_root: Optional[Path] = None
    data_root: Optional[Path] = None
    log_level: str = "INFO"

    def deduce_bin_root(self) -> Path:
        """Directory holding the daemon executables, next to the running interpreter by default."""
        if self.bin_root is not None:
            return self.bin_root
        return Path(sys.executable).resolve().parent

    def deduce_data_root(self) -> Path:
        if self.data_root is not None:
            return self.data_root
        return Path(tempfile.gettempdir()) / f"minicluster-{os.getpid()}" / "minicluster-data"
