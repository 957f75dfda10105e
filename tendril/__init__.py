"""
Tendril - Remote Provisioning Agent

A long-running agent that provisions cloud infrastructure for a managed
platform by running Terraform jobs claimed from a control-plane.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- api: Shared data models (provisions, config snapshots, log chunks)
- controlplane: Remote procedure client for the control-plane
- executor: Workspace sandbox and Terraform execution
- logstream: Buffered shipping of process output
- agent: Heartbeat and job polling loops, health endpoint
"""

__version__ = "1.0.0"
