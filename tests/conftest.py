"""
Shared pytest fixtures for Tendril tests.

This module provides common fixtures including:
- GitMocker: Mock git subprocess calls with canned responses
- FakeControlPlane: In-memory control-plane recording every call
- A fake terraform executable for end-to-end executor runs
"""

import os
import stat
import sys
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Deque, List, Optional, Tuple
from unittest.mock import MagicMock, patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tendril.config.provider import AgentIdentity, AgentSettings
from tendril.modules.api.models import Provision, ProvisionStatus, StreamType
from tendril.modules.controlplane.result import Err, Ok


# =============================================================================
# Identity and Settings
# =============================================================================

@pytest.fixture
def identity() -> AgentIdentity:
    """Agent identity pointing at a fake control-plane."""
    return AgentIdentity(
        cluster_id="cluster-123",
        api_token="secret-token",
        control_plane_url="https://control.example.test",
        control_plane_key="anon-key",
    )


@pytest.fixture
def workspace_root(tmp_path) -> Path:
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def settings(workspace_root, fake_terraform) -> AgentSettings:
    """Settings with a private workspace root and the fake terraform binary."""
    return AgentSettings(
        heartbeat_interval=0.01,
        poll_interval=0.01,
        workspace_root=str(workspace_root),
        terraform_bin=str(fake_terraform),
        health_port=0,
    )


# =============================================================================
# Control-plane Fake
# =============================================================================

@dataclass
class ShippedChunk:
    """Record of an append_log_chunk call."""
    cluster_id: str
    token_hash: str
    job_id: str
    chunk: str
    stream_type: StreamType


class FakeControlPlane:
    """
    In-memory control-plane implementing the client protocol.

    Results for heartbeat, fetch and status updates are scripted through
    queues; once a queue is empty the call succeeds with an empty value.
    """

    def __init__(self):
        self._lock = Lock()
        self.calls: List[Tuple[str, Any]] = []
        self.chunks: List[ShippedChunk] = []
        self.heartbeat_results: Deque = deque()
        self.fetch_results: Deque = deque()
        self.status_results: Deque = deque()
        self.log_result = Ok(None)
        self.log_delay = 0.0

    def _record(self, name: str, payload: Any) -> None:
        with self._lock:
            self.calls.append((name, payload))

    @staticmethod
    def _next(results: Deque, default):
        result = results.popleft() if results else default
        if isinstance(result, Exception):
            raise result
        return result

    def heartbeat(self, cluster_id, token_hash):
        self._record("heartbeat", (cluster_id, token_hash))
        return self._next(self.heartbeat_results, Ok(None))

    def fetch_next_job(self, cluster_id, token_hash):
        self._record("fetch_next_job", (cluster_id, token_hash))
        return self._next(self.fetch_results, Ok(None))

    def update_job_status(self, cluster_id, token_hash, job_id, status, error_message=""):
        self._record("update_job_status", (job_id, ProvisionStatus(status), error_message))
        return self._next(self.status_results, Ok(None))

    def append_log_chunk(self, cluster_id, token_hash, job_id, chunk, stream_type):
        if self.log_delay:
            time.sleep(self.log_delay)
        with self._lock:
            self.chunks.append(ShippedChunk(cluster_id, token_hash, job_id, chunk, stream_type))
        return self.log_result

    # Assertion helpers

    def call_names(self) -> List[str]:
        with self._lock:
            return [name for name, _ in self.calls]

    def statuses(self, job_id: str) -> List[ProvisionStatus]:
        with self._lock:
            return [p[1] for name, p in self.calls if name == "update_job_status" and p[0] == job_id]

    def status_messages(self, job_id: str) -> List[str]:
        with self._lock:
            return [p[2] for name, p in self.calls if name == "update_job_status" and p[0] == job_id]

    def text(self, stream_type: StreamType) -> str:
        with self._lock:
            return "".join(c.chunk for c in self.chunks if c.stream_type == stream_type)


@pytest.fixture
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def transport_error() -> Err:
    return Err("transport", "connection refused")


def make_provision(job_id: str = "job-1", config: Any = None, configuration_hash: str = "") -> Provision:
    """Build a queued provision record."""
    return Provision(
        id=job_id,
        cluster_id="cluster-123",
        config_snapshot=config,
        configuration_hash=configuration_hash,
        status=ProvisionStatus.QUEUED,
    )


# =============================================================================
# Git Mocking Infrastructure
# =============================================================================

@dataclass
class GitResponse:
    """Represents a mocked git command response."""
    stdout: str = ""
    returncode: int = 0

    def to_completed_process(self) -> MagicMock:
        """Convert to a subprocess.CompletedProcess-like mock."""
        result = MagicMock()
        result.stdout = self.stdout
        result.stderr = None
        result.returncode = self.returncode
        return result


class GitMocker:
    """
    Mock git subprocess calls with per-subcommand responses.

    A successful clone creates the target directory, the way real git
    would, so later steps can write into it.

    Usage:
        def test_checkout_failure(git_mocker):
            git_mocker.register("checkout", GitResponse(
                stdout="error: pathspec 'v9' did not match", returncode=1
            ))
    """

    def __init__(self):
        self._responses = {}
        self.calls: List[List[str]] = []
        self.cwds: List[Optional[str]] = []

    def register(self, subcommand: str, response: GitResponse) -> "GitMocker":
        self._responses[subcommand] = response
        return self

    def mock_run(self, cmd: List[str], **kwargs) -> MagicMock:
        """Side effect for patching subprocess.run."""
        if Path(cmd[0]).name != "git":
            raise RuntimeError(f"Non-git command blocked: {' '.join(cmd)}")

        self.calls.append(list(cmd))
        self.cwds.append(kwargs.get("cwd"))

        subcommand = cmd[1]
        response = self._responses.get(subcommand, GitResponse())
        if subcommand == "clone" and response.returncode == 0:
            Path(cmd[-1]).mkdir(parents=True)
        return response.to_completed_process()

    def subcommands(self) -> List[str]:
        return [c[1] for c in self.calls]


@pytest.fixture
def git_mocker():
    """Fixture that provides a GitMocker with subprocess.run patched."""
    mocker = GitMocker()
    with patch("subprocess.run", side_effect=mocker.mock_run):
        yield mocker


# =============================================================================
# Fake Terraform
# =============================================================================

FAKE_TERRAFORM = """#!/bin/sh
echo "$(pwd -P)|$*" >> "$FAKE_TF_LOG"
if [ "$1" = "init" ] && [ -f terraform.tfvars.json ]; then
  cat terraform.tfvars.json > "$FAKE_TF_LOG.tfvars"
fi
echo "terraform $1 output"
if [ "$1" = "$FAKE_TF_FAIL" ]; then
  echo "Error: $1 exploded" >&2
  exit 3
fi
exit 0
"""


@pytest.fixture
def fake_terraform(tmp_path, monkeypatch) -> Path:
    """
    Shell script standing in for terraform.

    Each invocation appends "<cwd>|<args>" to $FAKE_TF_LOG and, on init,
    copies the variables file next to it. Setting FAKE_TF_FAIL to a
    subcommand makes that step exit 3 with a message on stderr.
    """
    script = tmp_path / "bin" / "terraform"
    script.parent.mkdir()
    script.write_text(FAKE_TERRAFORM)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    monkeypatch.setenv("FAKE_TF_LOG", str(tmp_path / "terraform.log"))
    monkeypatch.setenv("FAKE_TF_FAIL", "none")
    return script


@pytest.fixture
def terraform_log(tmp_path):
    """Read back the fake terraform invocations as (cwd, args) tuples."""

    def _read() -> List[Tuple[str, str]]:
        log = tmp_path / "terraform.log"
        if not log.exists():
            return []
        return [tuple(line.split("|", 1)) for line in log.read_text().splitlines()]

    return _read


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll until predicate() is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


# =============================================================================
# Test Markers Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "git_mock: Tests using mocked git subprocess calls"
    )
    config.addinivalue_line(
        "markers", "process: Tests that spawn the fake terraform executable"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that wait on real timers"
    )
