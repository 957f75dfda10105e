"""
Control-plane client for the Tendril agent.

Wraps the four remote procedures the agent consumes. The control-plane is a
PostgREST-style RPC endpoint (``POST /rest/v1/rpc/<procedure>``); every call
returns an explicit ``Ok``/``Err`` result instead of raising, so callers decide
whether a failure is fatal for them.

httpx.Client is safe to share between threads, so one instance serves the
heartbeat loop, the job loop and every log uploader.
"""

import json
import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from tendril.config.provider import AgentIdentity
from tendril.modules.api.models import Provision, ProvisionStatus, StreamType

from .result import Err, Ok, Result

logger = logging.getLogger("tendril.controlplane")

# Remote procedure names
RPC_HEARTBEAT = "agent_heartbeat"
RPC_FETCH_NEXT_JOB = "fetch_next_provision"
RPC_UPDATE_STATUS = "update_provision_status"
RPC_APPEND_LOG = "insert_provision_log"


class ControlPlane(Protocol):
    """Protocol for control-plane clients - allows swappable implementations."""

    def heartbeat(self, cluster_id: str, token_hash: str) -> Result[None]:
        ...

    def fetch_next_job(self, cluster_id: str, token_hash: str) -> Result[Optional[Provision]]:
        ...

    def update_job_status(
        self,
        cluster_id: str,
        token_hash: str,
        job_id: str,
        status: ProvisionStatus,
        error_message: str = "",
    ) -> Result[None]:
        ...

    def append_log_chunk(
        self,
        cluster_id: str,
        token_hash: str,
        job_id: str,
        chunk: str,
        stream_type: StreamType,
    ) -> Result[None]:
        ...


class ControlPlaneClient:
    """HTTP implementation of the control-plane procedures."""

    def __init__(
        self,
        identity: AgentIdentity,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            identity: Immutable agent identity (URL, key, cluster, token)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.identity = identity

        # The agent token is attached to every request for auditing
        headers = {
            "apikey": identity.control_plane_key,
            "Authorization": f"Bearer {identity.control_plane_key}",
            "X-Agent-Token": identity.api_token,
            "X-Cluster-ID": identity.cluster_id,
            "Content-Type": "application/json",
        }

        self._client = httpx.Client(
            base_url=f"{identity.control_plane_url}/rest/v1/rpc",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

        if identity.control_plane_url.startswith("http://"):
            logger.warning("Using HTTP without TLS - this should only be used for local development!")

    def __enter__(self) -> "ControlPlaneClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Release pooled connections."""
        self._client.close()

    # Procedures

    def heartbeat(self, cluster_id: str, token_hash: str) -> Result[None]:
        result = self._rpc(RPC_HEARTBEAT, {"p_cluster_id": cluster_id, "p_token_hash": token_hash})
        return result if isinstance(result, Err) else Ok(None)

    def fetch_next_job(self, cluster_id: str, token_hash: str) -> Result[Optional[Provision]]:
        """
        Fetch the next queued job for this cluster.

        Returns:
            Ok(None) when there is no work, Ok(Provision) for the first
            returned record, or Err on failure. Ordering of multiple records
            is defined by the control-plane.
        """
        result = self._rpc(
            RPC_FETCH_NEXT_JOB, {"p_cluster_id": cluster_id, "p_token_hash": token_hash}
        )
        if isinstance(result, Err):
            return result

        data = result.value
        if not data:
            return Ok(None)

        record = data[0] if isinstance(data, list) else data
        if not isinstance(record, dict):
            return Err("decode", f"unexpected job record: {record!r}")

        try:
            return Ok(Provision.model_validate(record))
        except ValidationError as e:
            return Err("decode", f"failed to parse provision: {e}")

    def update_job_status(
        self,
        cluster_id: str,
        token_hash: str,
        job_id: str,
        status: ProvisionStatus,
        error_message: str = "",
    ) -> Result[None]:
        payload = {
            "p_cluster_id": cluster_id,
            "p_token_hash": token_hash,
            "p_provision_id": job_id,
            "p_status": ProvisionStatus(status).value,
            "p_error_message": error_message,
        }
        result = self._rpc(RPC_UPDATE_STATUS, payload)
        return result if isinstance(result, Err) else Ok(None)

    def append_log_chunk(
        self,
        cluster_id: str,
        token_hash: str,
        job_id: str,
        chunk: str,
        stream_type: StreamType,
    ) -> Result[None]:
        payload = {
            "p_cluster_id": cluster_id,
            "p_token_hash": token_hash,
            "p_provision_id": job_id,
            "p_log_chunk": chunk,
            "p_stream_type": StreamType(stream_type).value,
        }
        result = self._rpc(RPC_APPEND_LOG, payload)
        return result if isinstance(result, Err) else Ok(None)

    # Transport

    def _rpc(self, procedure: str, payload: Dict[str, Any]) -> Result[Any]:
        """
        Invoke a remote procedure and classify the response.

        Logic:
        1. Transport exceptions -> Err("transport")
        2. Non-2xx status -> Err(<PostgREST code or HTTP status>)
        3. Undecodable body -> Err("decode")
        4. 2xx JSON object with an "error" member -> Err(<code or "rpc">)
        5. Anything else -> Ok(decoded body, None when empty)
        """
        logger.debug(f"Calling {procedure}")

        try:
            response = self._client.post(f"/{procedure}", json=payload)
        except httpx.HTTPError as e:
            return Err("transport", f"{procedure}: {e}")

        data = None
        decode_error = None
        if response.content.strip():
            try:
                data = response.json()
            except ValueError as e:
                decode_error = e

        if response.is_error:
            code = str(response.status_code)
            message = response.text or response.reason_phrase
            if isinstance(data, dict):
                code = str(data.get("code") or code)
                message = str(data.get("message") or data.get("error") or message)
            return Err(code, f"{procedure}: {message}")

        if decode_error is not None:
            return Err("decode", f"{procedure}: invalid JSON response: {decode_error}")

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            message = error if isinstance(error, str) else json.dumps(error)
            return Err(str(data.get("code") or "rpc"), f"{procedure}: {message}")

        return Ok(data)
