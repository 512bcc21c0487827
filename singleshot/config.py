"""Configuration and API key management for SingleShot.

This module handles application settings and the Gemini API key. Settings
come from three sources (highest wins): environment variables prefixed with
``SINGLESHOT_``, the YAML config file, and in-code defaults.

Security notes:
- API keys are never logged or printed
- Encrypted file backend uses Fernet symmetric encryption
- Keyring backend leverages OS-level credential storage

Example:
    >>> from singleshot.config import get_config, APIKeyManager
    >>> cfg = get_config()
    >>> cfg.ai.model_name
    'gemini-3-flash-preview'
    >>> manager = get_key_manager(cfg)
    >>> if not manager.is_key_configured():
    ...     print("Run 'singleshot config set-key' first")
"""

import base64
import hashlib
import logging
import os
import platform
import secrets
from enum import Enum
from pathlib import Path
from typing import Any

import keyring
import keyring.errors
import yaml
from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ConfigError(Exception):
    """Base exception for configuration errors."""

    pass


class ConfigFileError(ConfigError):
    """Raised when the config file cannot be read, parsed or written."""

    pass


class APIKeyNotFoundError(ConfigError):
    """Raised when the API key is not configured or cannot be retrieved."""

    pass


class KeyStorageError(ConfigError):
    """Raised when the API key cannot be stored, validated or decrypted."""

    pass


# =============================================================================
# Enums
# =============================================================================


class KeyStorageBackend(str, Enum):
    """Backend options for storing API keys securely.

    Attributes:
        ENV: Environment variable (GEMINI_API_KEY, or API_KEY)
        KEYRING: System keyring (OS credential manager)
        ENCRYPTED_FILE: Fernet-encrypted local file
    """

    ENV = "env"
    KEYRING = "keyring"
    ENCRYPTED_FILE = "encrypted_file"


# =============================================================================
# Configuration Models
# =============================================================================


class AISettings(BaseModel):
    """Settings for the Gemini analysis call.

    Attributes:
        model_name: The Gemini model to use.
        temperature: Sampling temperature (0.0-2.0).
        timeout_seconds: Transport timeout handed to the SDK.
        max_concurrent_requests: Cap on simultaneous analysis calls, 0 for none.
    """

    model_name: str = "gemini-3-flash-preview"
    temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    timeout_seconds: int = Field(default=120, ge=10, le=600)
    max_concurrent_requests: int = Field(default=0, ge=0, le=64)


class IngestSettings(BaseModel):
    """Settings for media ingestion.

    Attributes:
        batch_mode: Keep every accepted file of a submission. When False only
            the first accepted file is analyzed.
    """

    batch_mode: bool = False


class AppConfig(BaseSettings):
    """Main application configuration.

    Environment variables override file values, e.g.
    ``SINGLESHOT_AI__MODEL_NAME=gemini-2.5-flash``.

    Attributes:
        ai: Gemini settings.
        ingest: Ingestion settings.
        key_storage_backend: Where the API key is stored.
        encrypted_key_file_path: Path to the encrypted key file, if used.
    """

    ai: AISettings = Field(default_factory=AISettings)
    ingest: IngestSettings = Field(default_factory=IngestSettings)
    key_storage_backend: KeyStorageBackend = KeyStorageBackend.ENV
    encrypted_key_file_path: Path | None = None

    model_config = SettingsConfigDict(
        env_prefix="SINGLESHOT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # File values arrive as init kwargs; environment wins over them
        return env_settings, init_settings, file_secret_settings

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the platform-appropriate default configuration path.

        Returns:
            Path to the default config file location:
            - Windows: %APPDATA%/singleshot/config.yaml
            - macOS: ~/Library/Application Support/singleshot/config.yaml
            - Linux: ~/.config/singleshot/config.yaml
        """
        system = platform.system()

        if system == "Windows":
            base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        elif system == "Darwin":
            base = Path.home() / "Library" / "Application Support"
        else:
            xdg_config = os.environ.get("XDG_CONFIG_HOME")
            base = Path(xdg_config) if xdg_config else Path.home() / ".config"

        return base / "singleshot" / "config.yaml"

    @classmethod
    def read_yaml_data(cls, path: Path) -> dict[str, Any]:
        """Read the raw mapping stored in a YAML config file.

        Args:
            path: Path to the YAML configuration file.

        Returns:
            The file's top-level mapping, empty for an empty file.

        Raises:
            ConfigFileError: If file cannot be read or parsed.
        """
        if not path.exists():
            raise ConfigFileError(f"Configuration file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigFileError(f"Invalid YAML in configuration file: {e}") from e
        except OSError as e:
            raise ConfigFileError(f"Failed to read configuration: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigFileError(f"Configuration file {path} must contain a mapping")
        return data

    @classmethod
    def from_file_data(cls, data: dict[str, Any]) -> "AppConfig":
        """Validate file values alone, ignoring environment overrides.

        Raises:
            ValidationError: If a value is invalid.
        """
        # model_validate skips the settings sources, so no env values leak in
        return cls.model_validate(data)

    @classmethod
    def load_from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from a YAML file, with environment overrides.

        Args:
            path: Path to the YAML configuration file.

        Returns:
            Loaded AppConfig instance.

        Raises:
            ConfigFileError: If file cannot be read, parsed or validated.
        """
        data = cls.read_yaml_data(path)
        try:
            return cls(**data)
        except ValueError as e:
            raise ConfigFileError(f"Invalid configuration values: {e}") from e

    def save_to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file.

        Creates parent directories if they don't exist.

        Args:
            path: Path to save the configuration file.

        Raises:
            ConfigFileError: If file cannot be written.
        """
        data = self.model_dump(mode="json")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigFileError(f"Failed to save configuration: {e}") from e


# =============================================================================
# API Key Manager
# =============================================================================


class APIKeyManager:
    """Secure manager for API key storage and retrieval.

    Supports multiple storage backends:
    - ENV: Environment variable (GEMINI_API_KEY, falling back to API_KEY)
    - KEYRING: OS-level credential storage
    - ENCRYPTED_FILE: Fernet-encrypted local file

    Security:
    - Keys are never logged or printed
    - Encrypted storage uses machine-derived encryption keys

    Attributes:
        backend: The storage backend to use
        encrypted_file_path: Path to encrypted key file (for ENCRYPTED_FILE backend)
    """

    SERVICE_NAME = "singleshot"
    ENV_VAR_NAME = "GEMINI_API_KEY"
    FALLBACK_ENV_VAR_NAME = "API_KEY"
    MIN_KEY_LENGTH = 10
    MAX_KEY_LENGTH = 256

    def __init__(
        self,
        backend: KeyStorageBackend,
        encrypted_file_path: Path | None = None,
    ) -> None:
        """Initialize the API key manager.

        Args:
            backend: Storage backend to use.
            encrypted_file_path: Path for encrypted file storage.
                Required if backend is ENCRYPTED_FILE.

        Raises:
            KeyStorageError: If encrypted file backend selected without path.
        """
        self.backend = backend
        self.encrypted_file_path = encrypted_file_path

        if backend == KeyStorageBackend.ENCRYPTED_FILE and not encrypted_file_path:
            raise KeyStorageError("encrypted_file_path required for ENCRYPTED_FILE backend")

    def _validate_key_format(self, key: str) -> None:
        """Validate API key format without exposing the key.

        Raises:
            KeyStorageError: If key format is invalid.
        """
        if not key or not isinstance(key, str):
            raise KeyStorageError("API key must be a non-empty string")
        if len(key) < self.MIN_KEY_LENGTH:
            raise KeyStorageError(f"API key too short (minimum {self.MIN_KEY_LENGTH} characters)")
        if len(key) > self.MAX_KEY_LENGTH:
            raise KeyStorageError(f"API key too long (maximum {self.MAX_KEY_LENGTH} characters)")
        if key.strip() != key:
            raise KeyStorageError("API key should not have leading/trailing whitespace")

    def _get_machine_key(self) -> bytes:
        """Derive a Fernet key from machine-specific data."""
        identifiers = [
            platform.node(),
            platform.machine(),
            os.environ.get("USERNAME", os.environ.get("USER", "default")),
        ]
        combined = ":".join(identifiers).encode("utf-8")
        key_bytes = hashlib.sha256(combined).digest()

        # Fernet requires URL-safe base64-encoded 32-byte key
        return base64.urlsafe_b64encode(key_bytes)

    def _get_fernet(self) -> Fernet:
        return Fernet(self._get_machine_key())

    def store_key(self, key: str) -> None:
        """Store the Gemini API key securely.

        Args:
            key: The API key to store.

        Raises:
            KeyStorageError: If key format is invalid or storage fails.
        """
        self._validate_key_format(key)

        if self.backend == KeyStorageBackend.ENV:
            # Only affects the current process; users set it in their shell
            os.environ[self.ENV_VAR_NAME] = key

        elif self.backend == KeyStorageBackend.KEYRING:
            try:
                keyring.set_password(self.SERVICE_NAME, "api_key", key)
            except Exception as e:
                raise KeyStorageError(f"Failed to store key in keyring: {type(e).__name__}") from e

        elif self.backend == KeyStorageBackend.ENCRYPTED_FILE:
            try:
                encrypted = self._get_fernet().encrypt(key.encode("utf-8"))
                self.encrypted_file_path.parent.mkdir(parents=True, exist_ok=True)
                self.encrypted_file_path.write_bytes(encrypted)

                if platform.system() != "Windows":
                    os.chmod(self.encrypted_file_path, 0o600)
            except OSError as e:
                raise KeyStorageError(f"Failed to store encrypted key: {e}") from e

        logger.debug("API key stored using %s backend", self.backend.value)

    def retrieve_key(self) -> str | None:
        """Retrieve the stored API key.

        Returns:
            The API key if found, None otherwise.

        Raises:
            KeyStorageError: If the encrypted file cannot be decrypted.
        """
        if self.backend == KeyStorageBackend.ENV:
            key = os.environ.get(self.ENV_VAR_NAME) or os.environ.get(self.FALLBACK_ENV_VAR_NAME)
            return key.strip() if key else None

        if self.backend == KeyStorageBackend.KEYRING:
            try:
                return keyring.get_password(self.SERVICE_NAME, "api_key")
            except Exception as e:
                logger.debug("Keyring lookup failed: %s", type(e).__name__)
                return None

        if self.backend == KeyStorageBackend.ENCRYPTED_FILE:
            if not self.encrypted_file_path.exists():
                return None

            try:
                encrypted = self.encrypted_file_path.read_bytes()
                return self._get_fernet().decrypt(encrypted).decode("utf-8")
            except InvalidToken as e:
                raise KeyStorageError("Failed to decrypt API key - encryption key mismatch") from e
            except OSError as e:
                raise KeyStorageError(f"Failed to read encrypted key: {e}") from e

        return None

    def delete_key(self) -> None:
        """Remove the stored API key.

        Raises:
            KeyStorageError: If deletion fails.
        """
        if self.backend == KeyStorageBackend.ENV:
            os.environ.pop(self.ENV_VAR_NAME, None)

        elif self.backend == KeyStorageBackend.KEYRING:
            try:
                keyring.delete_password(self.SERVICE_NAME, "api_key")
            except keyring.errors.PasswordDeleteError:
                logger.debug("No key stored in keyring")

        elif self.backend == KeyStorageBackend.ENCRYPTED_FILE:
            if self.encrypted_file_path.exists():
                try:
                    # Overwrite before unlinking
                    self.encrypted_file_path.write_bytes(secrets.token_bytes(64))
                    self.encrypted_file_path.unlink()
                except OSError as e:
                    raise KeyStorageError(f"Failed to delete encrypted key file: {e}") from e

    def is_key_configured(self) -> bool:
        """Check if an API key is stored and retrievable."""
        try:
            key = self.retrieve_key()
        except KeyStorageError:
            return False
        return key is not None and len(key) >= self.MIN_KEY_LENGTH


# =============================================================================
# Module-Level Functions
# =============================================================================


def get_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a file, or the default path, or defaults.

    A corrupted default config file is logged and ignored. An explicitly
    requested file that cannot be loaded raises.

    Args:
        path: Optional explicit config file.

    Returns:
        Loaded or default AppConfig instance.

    Raises:
        ConfigFileError: If an explicit path cannot be loaded.
    """
    if path is not None:
        return AppConfig.load_from_yaml(path)

    config_path = AppConfig.get_default_config_path()
    if config_path.exists():
        try:
            return AppConfig.load_from_yaml(config_path)
        except ConfigFileError as e:
            logger.warning(f"Ignoring unreadable config file: {e}")

    return AppConfig()


def load_file_config(path: Path) -> AppConfig:
    """Load only the values stored in a config file, for editing and saving back.

    Environment overrides are not applied, so saving the result never writes
    them into the file. A missing file yields defaults.

    Raises:
        ConfigFileError: If the file cannot be read, parsed or validated.
    """
    data = AppConfig.read_yaml_data(path) if path.exists() else {}
    try:
        return AppConfig.from_file_data(data)
    except ValidationError as e:
        raise ConfigFileError(f"Invalid configuration values: {e}") from e


def get_key_manager(config: AppConfig | None = None) -> APIKeyManager:
    """Build an APIKeyManager for the configured backend.

    Falls back to an ``encrypted_file`` path next to the config file when
    that backend is selected without an explicit path.
    """
    config = config or get_config()
    encrypted_path = config.encrypted_key_file_path
    if config.key_storage_backend == KeyStorageBackend.ENCRYPTED_FILE and not encrypted_path:
        encrypted_path = AppConfig.get_default_config_path().parent / "credentials.enc"
    return APIKeyManager(config.key_storage_backend, encrypted_path)


def configure_api_key(key: str, backend: KeyStorageBackend, config_path: Path | None = None) -> None:
    """Store an API key and remember the backend in the config file.

    Args:
        key: The Gemini API key to store.
        backend: Storage backend to use.
        config_path: Config file to update, default location if None.

    Raises:
        KeyStorageError: If storage fails.
        ConfigFileError: If the config file cannot be read or written.
    """
    config_path = config_path or AppConfig.get_default_config_path()
    config = load_file_config(config_path)
    config.key_storage_backend = backend

    manager = get_key_manager(config)
    manager.store_key(key)

    config.encrypted_key_file_path = manager.encrypted_file_path
    config.save_to_yaml(config_path)


def get_api_key(config: AppConfig | None = None) -> str:
    """Retrieve the configured API key.

    Returns:
        The API key.

    Raises:
        APIKeyNotFoundError: If no key is configured.
    """
    key = get_key_manager(config).retrieve_key()
    if not key:
        raise APIKeyNotFoundError(
            "No API key configured. Set GEMINI_API_KEY or run 'singleshot config set-key'."
        )
    return key
