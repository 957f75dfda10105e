#!/usr/bin/env python3
"""
Tendril - Main Entry Point

This is the thin orchestration layer that:
1. Loads the agent identity and settings from the environment (once)
2. Configures logging and the control-plane client
3. Runs the heartbeat and job loops until SIGINT/SIGTERM

All business logic is in the modules, following black box principles.
"""

import logging
import signal
import sys
from threading import Event, Thread
from typing import Optional

from tendril.config.provider import ConfigProvider, EnvConfigProvider
from tendril.errors import StartupError
from tendril.logging_config import configure_logging
from tendril.modules.agent.poller import Poller
from tendril.modules.controlplane.client import ControlPlaneClient

logger = logging.getLogger("tendril.main")


def run(config_provider: ConfigProvider, shutdown: Optional[Event] = None) -> int:
    """
    Run the agent until shutdown is requested.

    Returns:
        Process exit code
    """
    try:
        settings = config_provider.get_settings()
        identity = config_provider.get_identity()
    except StartupError as e:
        configure_logging()
        logger.error(f"Startup failed: {e}")
        return 1

    configure_logging(settings.log_level)
    logger.info(f"Starting Tendril Agent for cluster {identity.cluster_id}...")

    shutdown = shutdown or Event()
    client = ControlPlaneClient(identity, timeout=settings.http_timeout)
    poller = Poller(identity, client, settings)

    health_server = None
    if settings.health_enabled:
        from tendril.modules.agent.health import start_health_server

        health_server = start_health_server(poller, settings.health_port, settings.log_level)

    heartbeat = Thread(target=poller.start_heartbeat, name="heartbeat", daemon=True)
    job_loop = Thread(target=poller.start_job_loop, name="job-loop", daemon=True)
    heartbeat.start()
    job_loop.start()

    try:
        while not shutdown.wait(1.0):
            pass
        logger.info("Shutting down Tendril Agent...")
        poller.stop()

        current_job = poller.status()["current_job"]
        if current_job:
            logger.info(f"Waiting for in-flight job {current_job} to finish")
        job_loop.join()
        heartbeat.join()
    finally:
        if health_server is not None:
            health_server.should_exit = True
        client.close()

    logger.info("Tendril Agent stopped")
    return 0


def main() -> None:
    """Main entry point."""
    shutdown = Event()

    def _handle_signal(signum, frame):
        # A second signal falls through to the default handler and kills the process
        signal.signal(signal.SIGINT, signal.SIG_DFL)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        shutdown.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    sys.exit(run(EnvConfigProvider(), shutdown))


if __name__ == "__main__":
    main()
