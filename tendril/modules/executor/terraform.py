"""
Terraform executor - turns a claimed provisioning job into applied infrastructure.

Order of operations is fixed: the configuration is verified and parsed
before anything touches the filesystem or spawns a process, and the
workspace is removed whatever happens afterwards.
"""

import json
import logging
import os
import subprocess
from pathlib import Path
from threading import Thread
from typing import IO, Callable, Optional

from pydantic import ValidationError

from tendril.config.provider import AgentIdentity, AgentSettings
from tendril.errors import ConfigParseError, ExternalProcessError
from tendril.modules.api.models import ConfigSnapshot, StreamType
from tendril.modules.controlplane.client import ControlPlane
from tendril.modules.logstream.streamer import LogStreamer

from .integrity import verify_integrity
from .workspace import Workspace

logger = logging.getLogger("tendril.executor")

READ_SIZE = 4096
STDERR_TAIL_SIZE = 4096

StreamerFactory = Callable[[StreamType], LogStreamer]


def parse_config(config: bytes) -> ConfigSnapshot:
    """
    Decode a configuration blob.

    Raises:
        ConfigParseError: If the blob is not a valid configuration snapshot
    """
    try:
        return ConfigSnapshot.model_validate_json(config)
    except ValidationError as e:
        raise ConfigParseError(f"failed to parse config snapshot: {e}") from e


class TerraformExecutor:
    """Executes one provisioning job with Terraform."""

    def __init__(
        self,
        provision_id: str,
        config: bytes,
        config_hash: str,
        client: ControlPlane,
        identity: AgentIdentity,
        settings: Optional[AgentSettings] = None,
        streamer_factory: Optional[StreamerFactory] = None,
    ):
        """
        Initialize executor for a single job.

        Args:
            provision_id: Job identifier, also the workspace name
            config: Opaque configuration blob as delivered
            config_hash: Declared SHA-256 of the blob (empty skips the check)
            client: Control-plane client for log shipping
            identity: Agent identity
            settings: Workspace root and executables
            streamer_factory: Builds a LogStreamer for a stream type
        """
        self.provision_id = provision_id
        self.config = config
        self.config_hash = config_hash
        self.client = client
        self.identity = identity
        self.settings = settings or AgentSettings()
        self.streamer_factory = streamer_factory or self._default_streamer

        self._system_stream: Optional[LogStreamer] = None

    def execute(self) -> None:
        """
        Run the job to completion.

        Raises:
            IntegrityError: Declared hash does not match the blob
            ConfigParseError: Blob is malformed
            ExternalProcessError: git or terraform failed
        """
        verify_integrity(self.config, self.config_hash)
        snapshot = parse_config(self.config)

        try:
            if self.config_hash:
                self._system("Configuration integrity verified")
            with Workspace.create(
                self.settings.workspace_root, self.provision_id, git_bin=self.settings.git_bin
            ) as ws:
                self._run_in_workspace(ws, snapshot)
        except Exception as e:
            self._system(f"Provisioning failed: {e}")
            raise
        finally:
            if self._system_stream is not None:
                self._system_stream.close()

    def _run_in_workspace(self, ws: Workspace, snapshot: ConfigSnapshot) -> None:
        source = snapshot.template_source

        self._system(f"Fetching templates from {source.repo}")
        ws.setup(source.repo, source.version)
        if snapshot.is_pinned:
            self._system(f"Using template version {source.version}")
        else:
            self._system(
                "Warning: no template version pinned, using the default branch. "
                "This run is not reproducible."
            )

        tfvars = json.dumps(snapshot.terraform_vars, indent=2).encode("utf-8")
        ws.write_tfvars(tfvars)
        self._system(f"Wrote {len(snapshot.terraform_vars)} Terraform variable(s)")

        self.run_command(ws.working_dir, "init", "-input=false", "-no-color")
        self.run_command(ws.working_dir, "apply", "-auto-approve", "-input=false", "-no-color")

    def run_command(self, workdir: Path, *args: str) -> None:
        """
        Run one Terraform step, streaming its output live.

        A fresh STDOUT and STDERR streamer is attached for the duration of
        the step and closed (final flush) before returning.

        Raises:
            ExternalProcessError: If the step fails to start or exits non-zero
        """
        cmd = [self.settings.terraform_bin, *args]
        cmd_str = " ".join(cmd)
        step = f"terraform {args[0]}" if args else "terraform"

        stdout_stream = self.streamer_factory(StreamType.STDOUT)
        stderr_stream = self.streamer_factory(StreamType.STDERR)
        try:
            stdout_stream.write(f"Running command: {cmd_str}\n")
            logger.info(f"[{self.provision_id}] Running: {cmd_str}")

            try:
                process = subprocess.Popen(
                    cmd,
                    cwd=str(workdir),
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    env={**os.environ, "TF_IN_AUTOMATION": "1", "TF_INPUT": "0"},
                )
            except OSError as e:
                stderr_stream.write(f"\nCommand failed: {e}\n")
                raise ExternalProcessError(step, output=str(e)) from e

            stderr_tail = bytearray()
            pumps = [
                Thread(target=_pump, args=(process.stdout, stdout_stream, None), daemon=True),
                Thread(target=_pump, args=(process.stderr, stderr_stream, stderr_tail), daemon=True),
            ]
            for pump in pumps:
                pump.start()

            returncode = process.wait()
            for pump in pumps:
                pump.join()

            if returncode != 0:
                stderr_stream.write(f"\nCommand failed: exit status {returncode}\n")
                diagnostic = stderr_tail.decode("utf-8", errors="replace").strip()
                raise ExternalProcessError(step, returncode, diagnostic)
        finally:
            stdout_stream.close()
            stderr_stream.close()

    def _system(self, message: str) -> None:
        """Record an agent diagnostic locally and on the SYSTEM stream."""
        logger.info(f"[{self.provision_id}] {message}")
        try:
            if self._system_stream is None:
                self._system_stream = self.streamer_factory(StreamType.SYSTEM)
            self._system_stream.write(message + "\n")
        except Exception as e:
            logger.warning(f"[{self.provision_id}] Could not ship diagnostic: {e}")

    def _default_streamer(self, stream_type: StreamType) -> LogStreamer:
        return LogStreamer(self.client, self.identity, self.provision_id, stream_type)


def _pump(pipe: IO[bytes], sink: LogStreamer, tail: Optional[bytearray]) -> None:
    """Forward bytes from a pipe to a streamer as soon as they arrive."""
    with pipe:
        while True:
            data = pipe.read1(READ_SIZE)
            if not data:
                return
            sink.write(data)
            if tail is not None:
                tail.extend(data)
                del tail[:-STDERR_TAIL_SIZE]
