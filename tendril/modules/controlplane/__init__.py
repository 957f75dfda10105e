"""
Control-plane Module - Black Box Interface

Purpose: Talk to the control-plane that owns jobs, liveness and logs
Interface: heartbeat(), fetch_next_job(), update_job_status(), append_log_chunk()
Hidden: HTTP transport, RPC naming, response classification

Can be replaced with any transport that returns Ok/Err results.
"""

from .client import ControlPlane, ControlPlaneClient
from .result import Err, Ok, Result

__all__ = ["ControlPlane", "ControlPlaneClient", "Err", "Ok", "Result"]
