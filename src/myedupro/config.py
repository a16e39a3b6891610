"""Application configuration using pydantic-settings."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

PLACEHOLDER_MARKERS = ("your-project", "your-anon-key")


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path(__file__).resolve().parent.parent.parent


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from settings.yaml."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        """Not used - we implement __call__ instead."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load settings from YAML file."""
        yaml_path = _find_project_root() / "config" / "settings.yaml"
        if not yaml_path.exists():
            return {}

        with open(yaml_path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        # Flatten nested structure to match Settings field names
        flattened = {}
        if 'server' in data:
            flattened['host'] = data['server'].get('host')
            flattened['port'] = data['server'].get('port')
        if 'backend' in data:
            backend = data['backend']
            flattened['backend_url'] = backend.get('url')
            flattened['request_timeout_seconds'] = backend.get('request_timeout_seconds')
            flattened['profile_picture_bucket'] = backend.get('profile_picture_bucket')
        if 'session' in data:
            session = data['session']
            flattened['session_check_timeout_seconds'] = (
                session.get('check_timeout_seconds')
            )
            flattened['probe_timeout_seconds'] = session.get('probe_timeout_seconds')
            flattened['probe_on_startup'] = session.get('probe_on_startup')
        if 'progress' in data:
            flattened['default_subjects'] = data['progress'].get('default_subjects')

        # Remove None values
        return {k: v for k, v in flattened.items() if v is not None}


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: str = Field(default="development")

    # Backend collaborator (identity provider, relational store, object storage)
    backend_url: str = Field(default="")
    backend_anon_key: str = Field(default="")
    request_timeout_seconds: float = Field(default=10.0)
    profile_picture_bucket: str = Field(default="profile-pictures")

    # Session orchestration
    session_check_timeout_seconds: float = Field(default=8.0)
    probe_timeout_seconds: float = Field(default=5.0)
    probe_on_startup: bool | None = Field(default=None)

    # Progress
    default_subjects: list[str] = Field(
        default_factory=lambda: ["Mathematics", "Physics", "Chemistry", "Biology", "English"]
    )

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Paths
    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def local_state_path(self) -> Path:
        d = self.project_root / "data"
        d.mkdir(parents=True, exist_ok=True)
        return d / "local_state.json"

    @property
    def is_development(self) -> bool:
        return self.env.lower() != "production"

    @property
    def has_valid_backend_config(self) -> bool:
        """True when both URL and key are set and neither is a template placeholder."""
        if not self.backend_url or not self.backend_anon_key:
            return False
        values = (self.backend_url, self.backend_anon_key)
        return not any(marker in value for marker in PLACEHOLDER_MARKERS for value in values)

    @property
    def should_probe_on_startup(self) -> bool:
        """Startup probe is on in development unless explicitly configured."""
        if self.probe_on_startup is None:
            return self.is_development
        return self.probe_on_startup

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings sources to include YAML file.

        Priority order (highest to lowest):
        1. init_settings (arguments passed to Settings())
        2. env_settings (environment variables)
        3. dotenv_settings (.env file)
        4. YamlSettingsSource (settings.yaml)
        5. file_secret_settings
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()
