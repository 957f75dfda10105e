"""
Poller - owns the agent's two background loops.

The heartbeat loop keeps the cluster marked online. The job loop claims one
queued provision at a time and drives an executor for it. Both loops share
only the immutable identity and the thread-safe control-plane client.
"""

import logging
import time
from threading import Event, Lock
from typing import Any, Callable, Dict, Optional, Protocol

from tendril.config.provider import AgentIdentity, AgentSettings
from tendril.errors import TransportError
from tendril.modules.api.models import Provision, ProvisionStatus
from tendril.modules.controlplane.client import ControlPlane
from tendril.modules.executor.terraform import TerraformExecutor

logger = logging.getLogger("tendril.agent")


class Executor(Protocol):
    def execute(self) -> None:
        ...


ExecutorFactory = Callable[[Provision], Executor]


class Poller:
    """Heartbeat and job acquisition loops for one agent process."""

    def __init__(
        self,
        identity: AgentIdentity,
        client: ControlPlane,
        settings: Optional[AgentSettings] = None,
        executor_factory: Optional[ExecutorFactory] = None,
    ):
        """
        Initialize the poller.

        Args:
            identity: Immutable agent identity
            client: Control-plane client shared by both loops
            settings: Intervals and executor settings
            executor_factory: Builds an executor for a claimed job
        """
        self.identity = identity
        self.client = client
        self.settings = settings or AgentSettings()
        self.executor_factory = executor_factory or self._default_executor

        self._stop = Event()
        self._state_lock = Lock()
        self._started_at = time.time()
        self._last_heartbeat_at: Optional[float] = None
        self._heartbeat_failures = 0
        self._current_job: Optional[str] = None
        self._jobs_succeeded = 0
        self._jobs_failed = 0

    # Lifecycle

    def stop(self) -> None:
        """Stop both loops after their current tick."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    # Heartbeat

    def start_heartbeat(self, interval: Optional[float] = None) -> None:
        """
        Send a heartbeat now and then once per interval until stopped.

        Failures are logged and never end the loop.
        """
        interval = self.settings.heartbeat_interval if interval is None else interval

        if self.heartbeat_once():
            logger.info("Initial heartbeat sent successfully")

        while not self._stop.wait(interval):
            if self.heartbeat_once():
                logger.debug("Heartbeat pulse sent successfully")

    def heartbeat_once(self) -> bool:
        """Send a single heartbeat. Returns True on success."""
        try:
            result = self.client.heartbeat(self.identity.cluster_id, self.identity.token_hash)
        except Exception as e:
            logger.error(f"Error sending heartbeat: {e}")
            self._record_heartbeat(False)
            return False

        if not result.ok:
            logger.error(f"Error sending heartbeat: {result}")
        self._record_heartbeat(result.ok)
        return result.ok

    # Job loop

    def start_job_loop(self, interval: Optional[float] = None) -> None:
        """
        Poll for jobs once per interval until stopped.

        Jobs run synchronously inside the loop, so a new job is only fetched
        after the previous one has finished.
        """
        interval = self.settings.poll_interval if interval is None else interval
        logger.info("Started Job Polling Loop...")

        while not self._stop.wait(interval):
            self.poll_once()

    def poll_once(self) -> Optional[ProvisionStatus]:
        """
        Fetch and process at most one job.

        Returns:
            Terminal status reported for the job, or None if there was no
            job or it could not be claimed
        """
        try:
            job = self.client.fetch_next_job(
                self.identity.cluster_id, self.identity.token_hash
            ).unwrap()
        except TransportError as e:
            logger.error(f"Error fetching job: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error fetching job: {e}")
            return None

        if job is None:
            return None

        return self.process_job(job)

    def process_job(self, job: Provision) -> Optional[ProvisionStatus]:
        """
        Claim, execute and finalize one job.

        Logic:
        1. Mark PROCESSING - on failure leave the job for a later fetch
        2. Run the executor synchronously
        3. Report SUCCESS, or FAILED with the error text
        """
        logger.info(f"Found job: {job.id}. Starting execution...")

        if not self._update_status(job.id, ProvisionStatus.PROCESSING):
            logger.error(f"Failed to mark job {job.id} as processing, skipping")
            return None

        self._set_current_job(job.id)
        try:
            self.executor_factory(job).execute()
        except Exception as e:
            logger.error(f"Job {job.id} execution failed: {e}")
            status, message = ProvisionStatus.FAILED, str(e) or type(e).__name__
        else:
            logger.info(f"Job {job.id} execution completed successfully.")
            status, message = ProvisionStatus.SUCCESS, ""
        finally:
            self._set_current_job(None)

        self._record_job(status)
        if not self._update_status(job.id, status, message):
            logger.error(f"Failed to update job {job.id} status to {status.value}")

        return status

    def _update_status(self, job_id: str, status: ProvisionStatus, message: str = "") -> bool:
        try:
            result = self.client.update_job_status(
                self.identity.cluster_id, self.identity.token_hash, job_id, status, message
            )
        except Exception as e:
            logger.error(f"Status update for job {job_id} failed: {e}")
            return False

        if not result.ok:
            logger.error(f"Status update for job {job_id} failed: {result}")
        return result.ok

    def _default_executor(self, job: Provision) -> TerraformExecutor:
        return TerraformExecutor(
            job.id,
            job.config_bytes(),
            job.configuration_hash,
            self.client,
            self.identity,
            settings=self.settings,
        )

    # Health state

    def _record_heartbeat(self, ok: bool) -> None:
        with self._state_lock:
            if ok:
                self._last_heartbeat_at = time.time()
                self._heartbeat_failures = 0
            else:
                self._heartbeat_failures += 1

    def _set_current_job(self, job_id: Optional[str]) -> None:
        with self._state_lock:
            self._current_job = job_id

    def _record_job(self, status: ProvisionStatus) -> None:
        with self._state_lock:
            if status == ProvisionStatus.SUCCESS:
                self._jobs_succeeded += 1
            else:
                self._jobs_failed += 1

    def status(self) -> Dict[str, Any]:
        """Snapshot of loop state for the health endpoint."""
        with self._state_lock:
            return {
                "cluster_id": self.identity.cluster_id,
                "uptime_seconds": int(time.time() - self._started_at),
                "last_heartbeat_at": self._last_heartbeat_at,
                "consecutive_heartbeat_failures": self._heartbeat_failures,
                "current_job": self._current_job,
                "jobs_succeeded": self._jobs_succeeded,
                "jobs_failed": self._jobs_failed,
                "stopped": self._stop.is_set(),
            }
