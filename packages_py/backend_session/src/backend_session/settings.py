"""Settings loading for backend_session.

Reads ``backend.{APP_ENV}.yaml`` (or ``backend.yaml``) from a config
directory, validates it against a Pydantic model, and turns it into a
SessionConfig. An optional ``.env`` file is loaded first so credentials
and the URL override can live outside the YAML.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .config import (
    DEFAULT_AUTH_PATH,
    DEFAULT_FALLBACK_URL,
    DEFAULT_HEALTH_PATH,
    Credentials,
    SessionConfig,
    credentials_from_env,
    resolve_override_url,
)
from .types import EndpointCandidate, EndpointClass

logger = logging.getLogger(__name__)


class SettingsError(Exception):
    """Raised when settings cannot be found, parsed, or validated."""
    pass


class CandidateSettings(BaseModel):
    """One candidate endpoint entry."""
    url: str
    classification: EndpointClass = EndpointClass.SECONDARY
    name: Optional[str] = None


class BackendSettings(BaseModel):
    """Validated backend settings file."""
    candidates: List[CandidateSettings] = Field(default_factory=list)
    health_path: str = DEFAULT_HEALTH_PATH
    auth_path: str = DEFAULT_AUTH_PATH
    probe_timeout_seconds: float = Field(default=3.0, gt=0)
    lock_timeout_seconds: float = Field(default=5.0, gt=0)
    max_auth_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=1.0, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    fallback_url: str = DEFAULT_FALLBACK_URL
    use_fallback_url: bool = False

    def to_session_config(
        self,
        override_url: Optional[str] = None,
        credentials: Optional[Credentials] = None,
    ) -> SessionConfig:
        """Build a SessionConfig from these settings."""
        kwargs: Dict[str, Any] = {
            "health_path": self.health_path,
            "auth_path": self.auth_path,
            "probe_timeout_seconds": self.probe_timeout_seconds,
            "lock_timeout_seconds": self.lock_timeout_seconds,
            "max_auth_attempts": self.max_auth_attempts,
            "retry_delay_seconds": self.retry_delay_seconds,
            "request_timeout_seconds": self.request_timeout_seconds,
            "fallback_url": self.fallback_url,
            "use_fallback_url": self.use_fallback_url,
            "override_url": override_url,
            "credentials": credentials,
        }
        if self.candidates:
            kwargs["candidates"] = [
                EndpointCandidate(url=c.url, classification=c.classification, name=c.name)
                for c in self.candidates
            ]
        return SessionConfig(**kwargs)


def find_settings_path(config_dir: Path, app_env: str) -> Path:
    """Find the settings file for APP_ENV, falling back to backend.yaml."""
    env_specific = config_dir / f"backend.{app_env}.yaml"
    if env_specific.exists():
        logger.debug(f"Using environment-specific settings: {env_specific}")
        return env_specific

    default = config_dir / "backend.yaml"
    if default.exists():
        logger.debug(f"Using default settings: {default}")
        return default

    raise SettingsError(f"No settings file found. Tried: {env_specific}, {default}")


def parse_settings(data: Dict[str, Any]) -> BackendSettings:
    """Validate raw settings data."""
    try:
        return BackendSettings.model_validate(data)
    except ValidationError as e:
        raise SettingsError(f"Invalid backend settings: {e}") from e


def load_session_config(
    config_dir: str,
    app_env: Optional[str] = None,
    env_file: Optional[str] = None,
) -> SessionConfig:
    """
    Load a SessionConfig from YAML settings and the environment.

    Args:
        config_dir: Directory containing backend[.{env}].yaml
        app_env: Environment name (default: APP_ENV or 'dev')
        env_file: Optional .env file loaded before reading the environment

    Returns:
        SessionConfig with override URL and credentials resolved

    Raises:
        SettingsError: if the file is missing, unparsable, or invalid
    """
    if env_file:
        if Path(env_file).exists():
            logger.info(f"Loading env file: {env_file}")
            load_dotenv(env_file, override=False)
        else:
            logger.warning(f"Env file not found, skipping: {env_file}")

    env = app_env or os.environ.get("APP_ENV", "dev")
    path = Path(config_dir)
    if not path.is_dir():
        raise SettingsError(f"Config directory does not exist: {path}")

    settings_path = find_settings_path(path, env)
    logger.info(f"Loading backend settings for APP_ENV={env} from {settings_path}")

    try:
        raw = yaml.safe_load(settings_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise SettingsError(f"YAML parsing error in {settings_path}: {e}") from e

    if not isinstance(raw, dict):
        raise SettingsError(f"Settings root must be a mapping: {settings_path}")

    settings = parse_settings(raw)
    return settings.to_session_config(
        override_url=resolve_override_url(),
        credentials=credentials_from_env(),
    )
