"""Configuration provider following Black Box Design principles."""
import hashlib
import os
import tempfile
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol

from tendril.errors import StartupError

REQUIRED_ENV_VARS = {
    "TENDRIL_CLUSTER_ID": "Cluster identifier assigned by the control-plane",
    "TENDRIL_API_TOKEN": "Shared secret issued when the cluster was registered",
    "SUPABASE_URL": "Control-plane base URL",
    "SUPABASE_KEY": "Control-plane API key",
}


@dataclass(frozen=True)
class AgentIdentity:
    """Who the agent is and how it reaches the control-plane."""
    cluster_id: str
    api_token: str = field(repr=False)
    control_plane_url: str
    control_plane_key: str = field(repr=False)

    @property
    def token_hash(self) -> str:
        """SHA-256 of the shared secret, sent instead of the secret itself."""
        return hashlib.sha256(self.api_token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AgentSettings:
    """Tunables for the agent loops and executor."""
    heartbeat_interval: float = 30.0
    poll_interval: float = 5.0
    workspace_root: str = os.path.join(tempfile.gettempdir(), "tendril")
    terraform_bin: str = "terraform"
    git_bin: str = "git"
    http_timeout: float = 10.0
    health_port: int = 8080
    log_level: str = "INFO"

    @property
    def health_enabled(self) -> bool:
        """Health server runs unless the port is set to 0."""
        return self.health_port > 0


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_identity(self) -> AgentIdentity:
        """Get the agent identity."""
        ...

    def get_settings(self) -> AgentSettings:
        """Get agent settings."""
        ...


class EnvConfigProvider:
    """Environment-based configuration provider."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = os.environ if environ is None else environ

    def get_identity(self) -> AgentIdentity:
        """Get the agent identity from environment variables."""
        missing = [name for name in REQUIRED_ENV_VARS if not self._environ.get(name)]
        if missing:
            raise StartupError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        return AgentIdentity(
            cluster_id=self._environ["TENDRIL_CLUSTER_ID"],
            api_token=self._environ["TENDRIL_API_TOKEN"],
            control_plane_url=self._environ["SUPABASE_URL"].rstrip("/"),
            control_plane_key=self._environ["SUPABASE_KEY"],
        )

    def get_settings(self) -> AgentSettings:
        """Get agent settings from environment variables."""
        defaults = AgentSettings()
        return AgentSettings(
            heartbeat_interval=self._number("TENDRIL_HEARTBEAT_INTERVAL", defaults.heartbeat_interval),
            poll_interval=self._number("TENDRIL_POLL_INTERVAL", defaults.poll_interval),
            workspace_root=self._environ.get("TENDRIL_WORKSPACE_ROOT") or defaults.workspace_root,
            terraform_bin=self._environ.get("TENDRIL_TERRAFORM_BIN") or defaults.terraform_bin,
            git_bin=self._environ.get("TENDRIL_GIT_BIN") or defaults.git_bin,
            http_timeout=self._number("TENDRIL_HTTP_TIMEOUT", defaults.http_timeout),
            health_port=int(self._number("TENDRIL_HEALTH_PORT", defaults.health_port)),
            log_level=self._environ.get("LOG_LEVEL", defaults.log_level).upper(),
        )

    def _number(self, name: str, default: float) -> float:
        raw = self._environ.get(name)
        if raw is None or raw == "":
            return default
        try:
            value = float(raw)
        except ValueError:
            raise StartupError(f"{name} must be a number, got {raw!r}") from None
        if value < 0:
            raise StartupError(f"{name} must not be negative, got {raw!r}")
        return value
