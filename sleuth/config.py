"""YAML configuration for Sleuth.

Lookup order: an explicit path, ``$XDG_CONFIG_HOME/sleuth/config.yaml``, the
legacy ``~/.sleuth.yaml``. When none exists a default file is written to the
XDG location.
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from sleuth.errors import ConfigError
from sleuth.llm import ModelSettings, Pricing
from sleuth.validator import POLICIES

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = "sleuth"
CONFIG_FILE_NAME = "config.yaml"
LEGACY_CONFIG_FILE_NAME = ".sleuth.yaml"

AGENT_TOKEN_ENV = "SLEUTH_AGENT_TOKEN"
VALIDATION_TOKEN_ENV = "SLEUTH_VALIDATION_TOKEN"

PROVIDERS_REQUIRING_URL = ("openai", "ollama")


def _mapping(value: Any, section: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{section} must be a mapping, got {type(value).__name__}")
    return value


def _check_field_types(section: str, obj: Any) -> None:
    for f in fields(obj):
        value = getattr(obj, f.name)
        if f.type is str:
            ok = isinstance(value, str)
        elif f.type is int:
            ok = isinstance(value, int) and not isinstance(value, bool)
        elif f.type is float:
            ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        else:
            continue
        if not ok:
            raise ConfigError(
                f"{section}.{f.name} must be {f.type.__name__}, got {type(value).__name__}"
            )


@dataclass
class PricingConfig:
    """Price in dollars per 1K tokens."""

    input: float = 0.0
    output: float = 0.0


@dataclass
class ModelConfig:
    name: str = ""
    provider: str = "openai"
    base_url: str = ""
    auth_token: str = ""
    azure_api_version: str = ""
    pricing: PricingConfig = field(default_factory=PricingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelConfig":
        data = dict(data)
        pricing = PricingConfig(**_mapping(data.pop("pricing", None), "pricing"))
        return cls(pricing=pricing, **data)

    def to_settings(self) -> ModelSettings:
        return ModelSettings(
            name=self.name,
            provider=self.provider,
            base_url=self.base_url,
            auth_token=self.auth_token,
            azure_api_version=self.azure_api_version,
            pricing=Pricing(self.pricing.input, self.pricing.output),
        )


@dataclass
class SessionConfig:
    max_iterations: int = 7
    timeout: float = 120
    correction_attempts: int = 3
    policy: str = "kubernetes"


@dataclass
class Config:
    agent: ModelConfig = field(default_factory=ModelConfig)
    validation: ModelConfig = field(default_factory=ModelConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        try:
            return cls(
                agent=ModelConfig.from_dict(_mapping(data.get("agent"), "agent")),
                validation=ModelConfig.from_dict(_mapping(data.get("validation"), "validation")),
                session=SessionConfig(**_mapping(data.get("session"), "session")),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid configuration: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        data = {"agent": asdict(self.agent), "session": asdict(self.session)}
        if self.validation.name:
            data["validation"] = asdict(self.validation)
        return data

    def use_model_for_validation(self) -> bool:
        return bool(self.validation.name)

    def apply_env(self, environ: dict[str, str] | None = None) -> None:
        environ = os.environ if environ is None else environ
        if environ.get(AGENT_TOKEN_ENV):
            self.agent.auth_token = environ[AGENT_TOKEN_ENV]
        if environ.get(VALIDATION_TOKEN_ENV):
            self.validation.auth_token = environ[VALIDATION_TOKEN_ENV]

    def validate(self) -> None:
        """Raise ConfigError if a required setting is missing or invalid."""
        for section, value in (
            ("agent", self.agent),
            ("agent.pricing", self.agent.pricing),
            ("validation", self.validation),
            ("validation.pricing", self.validation.pricing),
            ("session", self.session),
        ):
            _check_field_types(section, value)

        self._validate_model("agent", self.agent)
        if self.use_model_for_validation():
            self._validate_model("validation", self.validation)

        if self.session.max_iterations < 1:
            raise ConfigError("session.max_iterations must be at least 1")
        if self.session.correction_attempts < 1:
            raise ConfigError("session.correction_attempts must be at least 1")
        if self.session.timeout <= 0:
            raise ConfigError("session.timeout must be positive")
        if self.session.policy not in POLICIES:
            raise ConfigError(
                f"unknown session.policy {self.session.policy!r}; "
                f"available: {', '.join(sorted(POLICIES))}"
            )

    @staticmethod
    def _validate_model(section: str, model: ModelConfig) -> None:
        if not model.name:
            raise ConfigError(f"{section}.name is required")
        if model.provider not in ("openai", "claude", "ollama", "fake"):
            raise ConfigError(f"{section}.provider {model.provider!r} is not supported")
        if model.provider in PROVIDERS_REQUIRING_URL and not model.base_url:
            raise ConfigError(f"{section}.base_url is required for {model.provider}")


def default_config() -> Config:
    return Config(
        agent=ModelConfig(
            name="gpt-4o-mini",
            provider="openai",
            base_url="https://api.openai.com/v1",
            pricing=PricingConfig(input=0.00015, output=0.0006),
        )
    )


def xdg_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def legacy_config_path() -> Path:
    return Path.home() / LEGACY_CONFIG_FILE_NAME


def find_config_path() -> Path:
    """Return the config file to use, creating a default one if needed."""
    xdg_path = xdg_config_path()
    if xdg_path.exists():
        return xdg_path

    legacy_path = legacy_config_path()
    if legacy_path.exists():
        logger.warning(
            f"Using legacy config file {legacy_path}; consider moving it to {xdg_path}"
        )
        return legacy_path

    save_config(default_config(), xdg_path)
    logger.info(f"Created default config file at {xdg_path}")
    return xdg_path


def save_config(config: Config, path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigError(f"failed to write config file {path}: {e}") from e


def load_config(path: str | Path | None = None) -> Config:
    """Load, override from the environment and validate the configuration.

    Raises:
        ConfigError: If the file is unreadable or the result is invalid
    """
    config_path = Path(path).expanduser() if path else find_config_path()
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"failed to read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"config file {config_path} must contain a mapping")

    config = Config.from_dict(data)
    config.path = config_path
    config.apply_env()
    config.validate()
    logger.debug(f"Loaded config from {config_path}")
    return config
