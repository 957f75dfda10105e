"""
API Module - Black Box Interface

Purpose: Shared vocabulary between the agent and the control-plane
Interface: Provision, ConfigSnapshot, LogChunk, ProvisionStatus, StreamType
Hidden: Field validation, blob canonicalization

Every other module speaks in these models only.
"""

from .models import (
    ConfigSnapshot,
    LogChunk,
    Provision,
    ProvisionStatus,
    StreamType,
    TemplateSource,
    canonical_json,
)

__all__ = [
    "ConfigSnapshot",
    "LogChunk",
    "Provision",
    "ProvisionStatus",
    "StreamType",
    "TemplateSource",
    "canonical_json",
]
