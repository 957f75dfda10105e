"""
Tendril shared data models.

These models define the structure of all data passed between
the agent and the control-plane.

Hashing contract for configuration snapshots: the agent hashes the exact
string when `config_snapshot` arrives as a JSON string. When it arrives as a
JSON object, the original bytes are no longer available after decoding.
Number spelling (`1.0`, `1e5`), key order and whitespace are lost. The
agent then hashes `canonical_json(config_snapshot)` (sorted keys, `,`/`:`
separators, UTF-8, non-ASCII unescaped), so a control-plane delivering
objects must compute `configuration_hash` over that same canonical form.
Otherwise the job fails the integrity check.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Enums


class ProvisionStatus(str, Enum):
    """Lifecycle of a provisioning job."""

    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"  # Set by the control-plane only

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is expected."""
        return self in (ProvisionStatus.SUCCESS, ProvisionStatus.FAILED, ProvisionStatus.CANCELLED)


class StreamType(str, Enum):
    """Classification of a shipped log chunk."""

    STDOUT = "STDOUT"
    STDERR = "STDERR"
    SYSTEM = "SYSTEM"


# Configuration Snapshot


class TemplateSource(BaseModel):
    """Where the Terraform templates come from."""

    model_config = ConfigDict(extra="ignore")

    repo: str = Field(..., description="Git URL of the template repository", min_length=1)
    version: str = Field(default="", description="Git ref to check out; empty means default branch")

    @field_validator("repo")
    @classmethod
    def validate_repo(cls, v):
        """Reject whitespace-only repository URLs."""
        if not v.strip():
            raise ValueError("template repository URL is required")
        return v.strip()

    @field_validator("version", mode="before")
    @classmethod
    def validate_version(cls, v):
        """Treat a null version like an empty one."""
        return "" if v is None else v


class ConfigSnapshot(BaseModel):
    """Parsed job configuration."""

    model_config = ConfigDict(extra="ignore")

    template_source: TemplateSource
    terraform_vars: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("terraform_vars", mode="before")
    @classmethod
    def validate_terraform_vars(cls, v):
        """Treat null variables as an empty map."""
        return {} if v is None else v

    @property
    def is_pinned(self) -> bool:
        """Whether the template checkout is reproducible."""
        return bool(self.template_source.version)


# Control-plane Records


class Provision(BaseModel):
    """A provisioning job as returned by the control-plane."""

    model_config = ConfigDict(extra="ignore")

    id: str
    cluster_id: Optional[str] = None
    config_snapshot: Any = Field(None, description="Opaque configuration blob")
    configuration_hash: str = Field(default="", description="SHA-256 of the configuration blob")
    status: ProvisionStatus = ProvisionStatus.QUEUED
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    execution_metadata: Optional[Dict[str, Any]] = None

    @field_validator("configuration_hash", mode="before")
    @classmethod
    def validate_configuration_hash(cls, v):
        """Treat a null hash as not declared."""
        return "" if v is None else v

    def config_bytes(self) -> bytes:
        """
        Return the configuration blob as bytes.

        A blob delivered as a JSON string is used verbatim. A blob delivered
        as a JSON value is rendered with canonical_json(); the declared hash
        must be computed over that form, not over the bytes as sent.
        """
        if self.config_snapshot is None:
            return b""
        if isinstance(self.config_snapshot, str):
            return self.config_snapshot.encode("utf-8")
        return canonical_json(self.config_snapshot)


# Agent Models


class LogChunk(BaseModel):
    """Unit of shipped process output."""

    provision_id: str
    chunk: str
    stream_type: StreamType
    token_hash: str = Field(..., repr=False)


def canonical_json(value: Any) -> bytes:
    """Serialize a JSON value with sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )
