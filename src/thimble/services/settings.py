"""User settings: defaults, a JSON file on disk, and environment overrides.

Precedence, lowest first: dataclass defaults, ``settings.json``, command line
overrides, ``THIMBLE_*`` environment variables. The API key never touches
disk in plaintext; it is stored as a Fernet token whose key file lives next
to the settings file.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..ai.client import ClientSettings
from ..ai.orchestration.agent_loop import DEFAULT_CONTINUATION_PROMPT, LoopConfig
from ..ai.orchestration.stream_parser import DEFAULT_FORMAT
from ..ai.orchestration.tools.executor import ExecutorConfig

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

SETTINGS_DIR = Path.home() / ".thimble"
FORMAT_VERSION = 1
_CIPHERTEXT_KEY = "api_key_ciphertext"
_TOKEN_PREFIX = "fernet:"


def _flag(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on", "debug"}


# Environment variable -> (field, parser). Unparseable values are ignored.
_ENVIRONMENT: Mapping[str, tuple[str, Callable[[str], Any]]] = {
    "THIMBLE_API_KEY": ("api_key", str),
    "THIMBLE_BASE_URL": ("base_url", str),
    "THIMBLE_MODEL": ("model", str),
    "THIMBLE_ORGANIZATION": ("organization", str),
    "THIMBLE_RESPONSE_FORMAT": ("response_format", str),
    "THIMBLE_CONTINUATION_PROMPT": ("continuation_prompt", str),
    "THIMBLE_DEBUG_LOGGING": ("debug_logging", _flag),
    "THIMBLE_DEBUG_EVENT_LOGGING": ("debug_event_logging", _flag),
    "THIMBLE_REQUEST_TIMEOUT": ("request_timeout", float),
    "THIMBLE_TEMPERATURE": ("temperature", float),
    "THIMBLE_TOOL_TIMEOUT": ("tool_timeout", float),
    "THIMBLE_MAX_ROUNDS": ("max_rounds", int),
    "THIMBLE_MAX_RETRIES": ("max_retries", int),
    "THIMBLE_HISTORY_WINDOW": ("history_window_turns", int),
    "THIMBLE_HISTORY_TOKEN_BUDGET": ("history_token_budget", int),
}


@dataclass(slots=True)
class Settings:
    """Everything a user can configure, with working defaults."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    temperature: float = 0.2
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    response_format: str = DEFAULT_FORMAT
    max_rounds: int = 10
    history_window_turns: int | None = 20
    history_token_budget: int | None = None
    tool_timeout: float = 30.0
    continuation_prompt: str = DEFAULT_CONTINUATION_PROMPT
    role: str = "assistant"
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, str] = field(default_factory=dict)
    debug_logging: bool = False
    debug_event_logging: bool = False

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(item.name for item in fields(cls))

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            temperature=self.temperature,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            default_headers=self.default_headers or None,
            metadata=self.metadata or None,
            debug_logging=self.debug_logging,
        )

    def loop_config(self) -> LoopConfig:
        """Build the agent loop options; raises ``ValueError`` if they are invalid."""
        return LoopConfig(
            response_format=self.response_format,
            max_rounds=self.max_rounds,
            continuation_prompt=self.continuation_prompt,
            history_window_turns=self.history_window_turns,
            history_token_budget=self.history_token_budget,
            role=self.role,
        )

    def executor_config(self) -> ExecutorConfig:
        return ExecutorConfig(default_timeout=self.tool_timeout, log_arguments=self.debug_logging)


def _write_atomically(path: Path, data: bytes, *, private: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(path.name + ".tmp")
    staging.write_bytes(data)
    if private and os.name == "posix":
        staging.chmod(0o600)
    staging.replace(path)


class SecretVault:
    """Fernet encryption for secrets kept in the settings file.

    The key is generated on first use and written with owner-only
    permissions on POSIX systems.
    """

    backend = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self.key_path = key_path or SETTINGS_DIR / "settings.key"
        self._cipher: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return _TOKEN_PREFIX + self._fernet().encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str | None) -> str:
        """Recover the secret behind *token*.

        Raises:
            ValueError: If the token is not ``fernet:``-prefixed, or was made
                with a different key.
        """
        if not token:
            return ""
        if not token.startswith(_TOKEN_PREFIX) or len(token) == len(_TOKEN_PREFIX):
            raise ValueError(f"Unknown secret token format (prefix {token.partition(':')[0]!r})")
        try:
            return self._fernet().decrypt(token[len(_TOKEN_PREFIX):].encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            if self.key_path.exists():
                key = self.key_path.read_bytes().strip()
            else:
                key = Fernet.generate_key()
                _write_atomically(self.key_path, key, private=True)
            self._cipher = Fernet(key)
        return self._cipher


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self.path = path or SETTINGS_DIR / "settings.json"
        self.vault = vault or SecretVault(key_path=self.path.with_suffix(".key"))

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Return the effective settings.

        A file with a plaintext ``api_key`` (or from an older format version)
        is rewritten in the current format. A key that can no longer be
        decrypted is dropped with a warning.
        """
        raw = self._read()
        settings = self._from_payload(raw) if raw else Settings()
        if raw and ("api_key" in raw or raw.get("version") != FORMAT_VERSION):
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Could not upgrade %s: %s", self.path, exc)

        settings = _merge(settings, overrides or {}, source="command line")
        return _merge(settings, self._environment(), source="environment")

    def save(self, settings: Settings) -> Path:
        payload = asdict(settings)
        api_key = payload.pop("api_key") or ""
        if api_key:
            payload[_CIPHERTEXT_KEY] = self.vault.encrypt(api_key)
        payload.update(version=FORMAT_VERSION, secret_backend=self.vault.backend)
        _write_atomically(self.path, json.dumps(payload, indent=2, sort_keys=True).encode("utf-8"))
        LOGGER.debug("Settings written to %s", self.path)
        return self.path

    def _read(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Ignoring %s, it is not valid JSON: %s", self.path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring %s, it does not hold a JSON object", self.path)
            return {}
        return payload

    def _from_payload(self, payload: Mapping[str, Any]) -> Settings:
        known = Settings.field_names() - {"api_key"}
        try:
            settings = Settings(**{key: value for key, value in payload.items() if key in known})
        except TypeError as exc:
            LOGGER.warning("Settings file has unexpected values, using defaults: %s", exc)
            settings = Settings()

        if payload.get(_CIPHERTEXT_KEY):
            try:
                return replace(settings, api_key=self.vault.decrypt(payload[_CIPHERTEXT_KEY]))
            except ValueError as exc:
                LOGGER.warning("Stored API key could not be decrypted and was ignored: %s", exc)
                return settings
        if payload.get("api_key"):
            LOGGER.info("Encrypting plaintext API key found in %s", self.path)
            return replace(settings, api_key=str(payload["api_key"]))
        return settings

    @staticmethod
    def _environment() -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for name, (field_name, parse) in _ENVIRONMENT.items():
            raw = os.environ.get(name)
            if raw is None:
                continue
            try:
                values[field_name] = parse(raw)
            except ValueError:
                LOGGER.warning("Ignoring %s=%r: expected %s", name, raw, parse.__name__)
        return values


def _merge(settings: Settings, changes: Mapping[str, Any], *, source: str) -> Settings:
    usable = {key: value for key, value in changes.items() if value is not None and key in Settings.field_names()}
    if not usable:
        return settings
    LOGGER.debug("Settings from %s: %s", source, sorted(usable))
    return replace(settings, **usable)


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of *value*."""
    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]
