"""
Royalguard Configuration

Immutable settings resolved once at startup from defaults and environment
variables. Command-line flags override them in the shell.

Environment variables:
    ROYALGUARD_VAULT             Vault file path (default ~/royalguard.rgv)
    ROYALGUARD_LOG_FILE          Optional rotating log file
    ROYALGUARD_LOG_LEVEL         Level for the log file (default INFO)
    ROYALGUARD_CLIPBOARD_TIMEOUT Seconds before a copied value is cleared
"""

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from .crypto import KdfParams

DEFAULT_VAULT_PATH = os.path.join("~", "royalguard.rgv")
DEFAULT_CLIPBOARD_TIMEOUT = 30
DEFAULT_LOG_LEVEL = "INFO"

LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class Settings:
    vault_path: str = DEFAULT_VAULT_PATH
    kdf: KdfParams = field(default_factory=KdfParams)
    clipboard_timeout: int = DEFAULT_CLIPBOARD_TIMEOUT
    log_file: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def resolved_vault_path(self) -> str:
        return os.path.abspath(os.path.expanduser(self.vault_path))

    def with_overrides(self, vault_path: Optional[str] = None) -> "Settings":
        if vault_path:
            return replace(self, vault_path=vault_path)
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Raises:
            ValueError: A variable holds an unusable value
        """
        env = os.environ if environ is None else environ

        timeout_text = env.get("ROYALGUARD_CLIPBOARD_TIMEOUT", "").strip()
        timeout = DEFAULT_CLIPBOARD_TIMEOUT
        if timeout_text:
            try:
                timeout = int(timeout_text)
            except ValueError:
                raise ValueError(
                    f"ROYALGUARD_CLIPBOARD_TIMEOUT must be an integer, got {timeout_text!r}"
                ) from None
            if timeout < 0:
                raise ValueError("ROYALGUARD_CLIPBOARD_TIMEOUT must not be negative")

        level = env.get("ROYALGUARD_LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {level!r}")

        return cls(
            vault_path=env.get("ROYALGUARD_VAULT") or DEFAULT_VAULT_PATH,
            clipboard_timeout=timeout,
            log_file=env.get("ROYALGUARD_LOG_FILE") or None,
            log_level=level,
        )
