"""
Agent Module - Black Box Interface

Purpose: Keep the agent visible to the control-plane and drain its job queue
Interface: Poller.start_heartbeat(), Poller.start_job_loop(), Poller.stop()
Hidden: Tick scheduling, status transitions, per-job error containment

Health endpoints live in tendril.modules.agent.health and are imported
separately so the loops do not pull in the web stack.
"""

from .poller import Poller

__all__ = ["Poller"]
