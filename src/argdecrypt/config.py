"""Configuration for argdecrypt."""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError

CLOUD_RUNNER_ENV = "OC_CLOUDRUNNER_CONFIG"
REAPER_URL_ENV = "REAPER_URL"
AUTH_TOKEN_ENV = "BIZ_APP_AUTH_TOKEN"
EXECUTOR_ID_ENV = "OC_COMMAND_EXECUTOR_ID"
SETTINGS_FILE_ENV = "ARGDECRYPT_CONFIG"


def get_config_dir() -> Path:
    """Get config directory following XDG spec."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / "argdecrypt"


def get_settings_file() -> Path:
    """Get settings file path."""
    env_file = os.environ.get(SETTINGS_FILE_ENV)
    if env_file:
        return Path(env_file).expanduser()
    return get_config_dir() / "config.yaml"


def is_cloud_runner() -> bool:
    return os.environ.get(CLOUD_RUNNER_ENV, "") != ""


def get_reaper_url() -> str:
    return os.environ.get(REAPER_URL_ENV, "")


def get_auth_token() -> str:
    return os.environ.get(AUTH_TOKEN_ENV, "")


def get_executor_id() -> str:
    return os.environ.get(EXECUTOR_ID_ENV, "")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry tuning for calls to the decryption service.

    Waits grow as wait_min * 2**attempt, capped at wait_max. deadline is
    an overall time budget in seconds for one decrypt call (None: no
    budget beyond the retries themselves).
    """

    wait_min: float = 3.0
    wait_max: float = 30.0
    max_retries: int = 4
    request_timeout: float = 30.0
    deadline: Optional[float] = None

    def backoff(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait before retrying after the given 0-based attempt."""
        wait = min(self.wait_max, self.wait_min * (2 ** attempt))
        if retry_after is not None and retry_after > wait:
            wait = min(self.wait_max, retry_after)
        return wait


def _coerce_retry_settings(raw: dict) -> dict:
    known = {f.name: f for f in fields(RetryPolicy)}
    settings = {}

    for key, value in raw.items():
        if key not in known:
            raise ConfigError(f"Unknown retry setting: {key}")

        if key == "deadline" and value is None:
            settings[key] = None
            continue

        try:
            number = int(value) if key == "max_retries" else float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid value for retry.{key}: {value!r}")

        if number < 0:
            raise ConfigError(f"retry.{key} must not be negative")
        settings[key] = number

    return settings


def load_retry_policy(settings_file: Path = None) -> RetryPolicy:
    """
    Load retry tuning from the YAML settings file.

    A missing file gives the defaults. Expected layout:

        retry:
          wait_min: 3
          max_retries: 4
    """
    settings_file = settings_file or get_settings_file()

    if not settings_file.exists():
        return RetryPolicy()

    try:
        with open(settings_file) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {settings_file}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {settings_file}")

    raw = data.get("retry") or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Expected 'retry' to be a mapping in {settings_file}")

    return replace(RetryPolicy(), **_coerce_retry_settings(raw))


@dataclass(frozen=True)
class DecryptorConfig:
    """
    Everything the decryptor needs, read once at startup.

    Build it with from_env() and hand it to select_decryptor(); nothing
    else reads the environment.
    """

    cloud_runner: bool = False
    base_url: str = ""
    secret: str = field(default="", repr=False)
    executor_id: str = ""
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_env(cls, settings_file: Path = None) -> "DecryptorConfig":
        return cls(
            cloud_runner=is_cloud_runner(),
            base_url=get_reaper_url(),
            secret=get_auth_token(),
            executor_id=get_executor_id(),
            retry=load_retry_policy(settings_file),
        )

    @property
    def is_complete(self) -> bool:
        """True when all four signals needed for remote decryption are set."""
        return bool(self.cloud_runner and self.base_url and self.secret and self.executor_id)

    def missing(self) -> list[str]:
        """Names of the environment variables that are unset or empty."""
        checks = [
            (CLOUD_RUNNER_ENV, self.cloud_runner),
            (REAPER_URL_ENV, self.base_url),
            (AUTH_TOKEN_ENV, self.secret),
            (EXECUTOR_ID_ENV, self.executor_id),
        ]
        return [name for name, value in checks if not value]
