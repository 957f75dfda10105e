"""
Executor Module - Black Box Interface

Purpose: Apply a provisioning job's Terraform configuration safely
Interface: TerraformExecutor.execute(), Workspace, verify_integrity()
Hidden: git checkout, variables file layout, process pumping, cleanup

Can be replaced with different execution mechanisms (OpenTofu, Pulumi).
"""

from .integrity import compute_config_hash, verify_integrity
from .terraform import TerraformExecutor, parse_config
from .workspace import Workspace

__all__ = [
    "TerraformExecutor",
    "Workspace",
    "compute_config_hash",
    "parse_config",
    "verify_integrity",
]
