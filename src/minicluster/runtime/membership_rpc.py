from __future__ import annotations

import json
import socket
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from minicluster.core.models import HostPort, NodeInstance
from minicluster.utils.errors import IllegalStateError, RPCFailure

LIST_WORKERS_METHOD = "list_workers"
DEFAULT_RPC_TIMEOUT_SECONDS = 5.0


class RPCRequest(BaseModel):
    method: str
    params: Dict[str, Any] = Field(default_factory=dict)


class RPCResponse(BaseModel):
    ok: bool
    result: Optional[Dict[str, Any]] = None
    error: str | None = None


class WorkerEntry(BaseModel):
    """One worker as registered with a coordinator."""

    node_instance: NodeInstance
    rpc_addresses: List[HostPort] = Field(default_factory=list)
    http_addresses: List[HostPort] = Field(default_factory=list)


class ListWorkersResult(BaseModel):
    workers: List[WorkerEntry] = Field(default_factory=list)


def send_rpc_request(
    endpoint: HostPort,
    request: RPCRequest,
    timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS,
) -> RPCResponse:
    """Send one newline-delimited JSON request and read one response line."""
    payload = request.model_dump_json() + "\n"

    try:
        with socket.create_connection((endpoint.host, endpoint.port), timeout=timeout_seconds) as sock:
            sock.sendall(payload.encode("utf-8"))
            with sock.makefile("rb") as sock_file:
                line = sock_file.readline()
    except OSError as exc:
        raise RPCFailure(f"{request.method} RPC to {endpoint} failed: {exc}", daemon=str(endpoint)) from exc

    if not line:
        raise RPCFailure(f"No response from coordinator for {request.method}.", daemon=str(endpoint))

    try:
        response_payload = json.loads(line.decode("utf-8"))
        return RPCResponse.model_validate(response_payload)
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
        raise RPCFailure(f"Invalid coordinator response: {exc}", daemon=str(endpoint)) from exc


class CoordinatorProxy:
    """Typed calls against one coordinator endpoint."""

    def __init__(self, transport: "RPCTransport", endpoint: HostPort) -> None:
        self.transport = transport
        self.endpoint = endpoint

    def call(self, method: str, params: Optional[Dict[str, Any]] = None, timeout_seconds: Optional[float] = None) -> Dict[str, Any]:
        if self.transport.is_shut_down:
            raise IllegalStateError("RPC transport has been shut down.", daemon=str(self.endpoint))

        timeout = timeout_seconds if timeout_seconds is not None else self.transport.default_timeout_seconds
        response = send_rpc_request(
            self.endpoint,
            RPCRequest(method=method, params=params or {}),
            timeout_seconds=timeout,
        )
        if not response.ok:
            raise RPCFailure(f"{method} RPC failed: {response.error or 'unknown error'}", daemon=str(self.endpoint))
        return response.result or {}

    def list_workers(self, timeout_seconds: Optional[float] = None) -> List[WorkerEntry]:
        result = self.call(LIST_WORKERS_METHOD, timeout_seconds=timeout_seconds)
        try:
            return ListWorkersResult.model_validate(result).workers
        except ValidationError as exc:
            raise RPCFailure(f"Invalid {LIST_WORKERS_METHOD} result: {exc}", daemon=str(self.endpoint)) from exc


class RPCTransport:
    """Shared client-side RPC context; read-only once built."""

    def __init__(self, name: str = "minicluster-transport", default_timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS) -> None:
        self.name = name
        self.default_timeout_seconds = default_timeout_seconds
        self._shut_down = False

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    def proxy(self, endpoint: HostPort) -> CoordinatorProxy:
        if self._shut_down:
            raise IllegalStateError(f"RPC transport '{self.name}' has been shut down.")
        return CoordinatorProxy(self, endpoint)

    def shutdown(self) -> None:
        self._shut_down = True
