"""
Unit tests for the control-plane client.

These tests use httpx.MockTransport so every request is served in-process:
- Request shape (URL, headers, payload keys)
- Ok/Err classification of responses
- Job record decoding for fetch_next_job
"""

import json

import httpx
import pytest

from tendril.errors import TransportError
from tendril.modules.api.models import Provision, ProvisionStatus, StreamType
from tendril.modules.controlplane import ControlPlaneClient, Err, Ok


class Recorder:
    """MockTransport handler returning a fixed response and keeping requests."""

    def __init__(self, status_code=200, body=None, raw=None):
        self.status_code = status_code
        self.body = body
        self.raw = raw
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raw is not None:
            return httpx.Response(self.status_code, content=self.raw)
        if self.body is None:
            return httpx.Response(self.status_code)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last_payload(self):
        return json.loads(self.requests[-1].content)


def make_client(identity, handler) -> ControlPlaneClient:
    return ControlPlaneClient(identity, transport=httpx.MockTransport(handler))


class TestRequests:
    """Test what goes over the wire."""

    def test_heartbeat_request(self, identity):
        handler = Recorder(body=None, status_code=204)
        with make_client(identity, handler) as client:
            result = client.heartbeat(identity.cluster_id, identity.token_hash)

        assert result == Ok(None)
        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://control.example.test/rest/v1/rpc/agent_heartbeat"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Authorization"] == "Bearer anon-key"
        assert request.headers["X-Agent-Token"] == "secret-token"
        assert request.headers["X-Cluster-ID"] == "cluster-123"
        assert handler.last_payload == {
            "p_cluster_id": "cluster-123",
            "p_token_hash": identity.token_hash,
        }

    def test_update_status_request(self, identity):
        handler = Recorder(body=None)
        with make_client(identity, handler) as client:
            result = client.update_job_status(
                identity.cluster_id, identity.token_hash, "job-1", ProvisionStatus.FAILED, "boom"
            )

        assert result.ok
        assert handler.requests[0].url.path == "/rest/v1/rpc/update_provision_status"
        assert handler.last_payload == {
            "p_cluster_id": "cluster-123",
            "p_token_hash": identity.token_hash,
            "p_provision_id": "job-1",
            "p_status": "FAILED",
            "p_error_message": "boom",
        }

    def test_append_log_request(self, identity):
        handler = Recorder(body=None)
        with make_client(identity, handler) as client:
            result = client.append_log_chunk(
                identity.cluster_id, identity.token_hash, "job-1", "hello\n", StreamType.STDERR
            )

        assert result.ok
        assert handler.requests[0].url.path == "/rest/v1/rpc/insert_provision_log"
        assert handler.last_payload["p_log_chunk"] == "hello\n"
        assert handler.last_payload["p_stream_type"] == "STDERR"


class TestErrorClassification:
    """Test mapping of responses to Err."""

    def test_http_error_uses_postgrest_code(self, identity):
        handler = Recorder(
            status_code=400,
            body={"code": "P0001", "message": "invalid token", "details": None},
        )
        with make_client(identity, handler) as client:
            result = client.heartbeat(identity.cluster_id, identity.token_hash)

        assert isinstance(result, Err)
        assert result.code == "P0001"
        assert "invalid token" in result.message

    def test_http_error_without_json_uses_status(self, identity):
        handler = Recorder(status_code=502, raw=b"Bad Gateway")
        with make_client(identity, handler) as client:
            result = client.heartbeat(identity.cluster_id, identity.token_hash)

        assert result.code == "502"
        assert "Bad Gateway" in result.message

    def test_error_payload_on_success_status(self, identity):
        handler = Recorder(body={"error": "cluster not found", "code": "404"})
        with make_client(identity, handler) as client:
            result = client.update_job_status(
                identity.cluster_id, identity.token_hash, "job-1", ProvisionStatus.SUCCESS
            )

        assert result == Err("404", "update_provision_status: cluster not found")

    def test_word_error_in_successful_body_is_not_an_error(self, identity):
        handler = Recorder(body={"message": "no error", "code_path": "ok"})
        with make_client(identity, handler) as client:
            result = client.heartbeat(identity.cluster_id, identity.token_hash)

        assert result.ok

    def test_transport_failure(self, identity):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(identity, handler) as client:
            result = client.heartbeat(identity.cluster_id, identity.token_hash)

        assert result.code == "transport"
        assert "connection refused" in result.message

    def test_invalid_json(self, identity):
        handler = Recorder(raw=b"{not json")
        with make_client(identity, handler) as client:
            result = client.fetch_next_job(identity.cluster_id, identity.token_hash)

        assert result.code == "decode"

    def test_unwrap_raises_transport_error(self):
        with pytest.raises(TransportError) as exc_info:
            Err("transport", "down").unwrap()
        assert exc_info.value.code == "transport"
        assert Ok(5).unwrap() == 5


class TestFetchNextJob:
    """Test job decoding."""

    @pytest.mark.parametrize("body", [None, [], {}])
    def test_empty_results_mean_no_work(self, identity, body):
        handler = Recorder(body=body)
        with make_client(identity, handler) as client:
            result = client.fetch_next_job(identity.cluster_id, identity.token_hash)

        assert result == Ok(None)

    def test_first_element_is_taken(self, identity):
        handler = Recorder(body=[
            {"id": "job-1", "config_snapshot": {"template_source": {"repo": "r"}},
             "configuration_hash": "abc", "status": "QUEUED"},
            {"id": "job-2", "status": "QUEUED"},
        ])
        with make_client(identity, handler) as client:
            result = client.fetch_next_job(identity.cluster_id, identity.token_hash)

        assert result.ok
        assert isinstance(result.value, Provision)
        assert result.value.id == "job-1"
        assert result.value.configuration_hash == "abc"
        assert handler.requests[0].url.path == "/rest/v1/rpc/fetch_next_provision"

    def test_single_object_is_accepted(self, identity):
        handler = Recorder(body={"id": "job-9", "status": "QUEUED"})
        with make_client(identity, handler) as client:
            result = client.fetch_next_job(identity.cluster_id, identity.token_hash)

        assert result.value.id == "job-9"

    def test_malformed_record(self, identity):
        handler = Recorder(body=[{"status": "QUEUED"}])
        with make_client(identity, handler) as client:
            result = client.fetch_next_job(identity.cluster_id, identity.token_hash)

        assert result.code == "decode"
