# encrypter/config.py (v1.0.0)
"""Loads and validates configuration settings for the Encrypter service from environment variables using Pydantic."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

config_logger = logging.getLogger("encrypter.config")

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


# --- Helper Functions ---
def resolve_path(value: Any, check_is_dir: bool = False, check_is_file: bool = False, required: bool = False) -> Optional[Path]:
    """Expands and resolves a path setting. Raises ValueError on failed checks."""
    if value is None or str(value) == "":
        if required: raise ValueError("Path is required.")
        return None
    resolved_path = Path(os.path.expanduser(str(value))).resolve(strict=False)
    if check_is_dir and resolved_path.exists() and not resolved_path.is_dir(): raise ValueError(f"Path '{resolved_path}' exists but is not a directory.")
    if check_is_file and resolved_path.exists() and not resolved_path.is_file(): raise ValueError(f"Path '{resolved_path}' exists but is not a file.")
    if required and not resolved_path.exists() and (check_is_dir or check_is_file): raise ValueError(f"Required path '{resolved_path}' does not exist.")
    return resolved_path


# --- Pydantic Settings Model ---
class EncrypterSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    # --- GnuPG Configuration ---
    GNUPG_HOME: Path = Field(description="GnuPG home directory holding the keyring. Must already exist.")
    GPG_BINARY: Optional[Path] = Field(default=None, description="Optional full path to the gpg executable.")
    GPG_RECIPIENT: str = Field(description="Key ID, fingerprint or email of the recipient. Selects the encryption key and the decryption credential.")
    GPG_PASSPHRASE: SecretStr = Field(default=SecretStr(""), description="Passphrase of the recipient's private key. Empty disables signing.")
    GPG_ARMOR: bool = Field(default=True, description="Produce ASCII-armored envelopes instead of binary.")

    # --- Logging & Metrics ---
    LOG_LEVEL: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).")
    METRICS_PORT: int = Field(default=9091, gt=1023, le=65535, description="Port for the Prometheus /metrics endpoint.")
    ENABLE_METRICS: bool = Field(default=True, description="Start the Prometheus HTTP endpoint.")

    # --- Validators ---
    @field_validator("GNUPG_HOME", mode="before")
    @classmethod
    def validate_gnupg_home(cls, v):
        return resolve_path(v, check_is_dir=True, required=True)

    @field_validator("GPG_BINARY", mode="before")
    @classmethod
    def validate_gpg_binary(cls, v):
        return resolve_path(v, check_is_file=True)

    @field_validator("GPG_RECIPIENT")
    @classmethod
    def check_recipient(cls, v):
        if not v.strip(): raise ValueError("GPG_RECIPIENT is required.")
        return v.strip()

    @field_validator("LOG_LEVEL")
    @classmethod
    def check_log_level(cls, v):
        v_upper = v.upper()
        if v_upper not in VALID_LOG_LEVELS: raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return v_upper


# --- Load Settings ---
def load_settings(**overrides: Any) -> EncrypterSettings:
    """Builds settings from the environment (and .env). Raises pydantic.ValidationError."""
    settings = EncrypterSettings(**overrides)
    config_logger.info("Encrypter configuration loaded and validated successfully.")
    return settings


def get_config_summary(settings: EncrypterSettings) -> Dict[str, Any]:
    """Returns a dictionary summary of the configuration, safe to log."""
    summary = settings.model_dump()
    for key, val in summary.items():
        if isinstance(val, Path): summary[key] = str(val)
    summary["GPG_PASSPHRASE"] = "********" if settings.GPG_PASSPHRASE.get_secret_value() else ""
    return summary
