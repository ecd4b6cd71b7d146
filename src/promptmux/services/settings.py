"""LLM connection settings and their on-disk persistence.

Settings live in ``~/.promptmux/settings.json``. The API key never touches the
file in clear text: it is stored as a Fernet token whose key sits next to the
settings file. Files written by the desktop app's earlier releases (camelCase
keys, plaintext ``api_key``) are upgraded in place the first time they load.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "LlmSettings",
    "SettingsStore",
    "SecretVault",
    "PROVIDER_CHOICES",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

PROVIDER_CHOICES: tuple[str, ...] = ("openai", "anthropic")

_HOME_DIR = Path.home() / ".promptmux"
_FORMAT_VERSION = 1
_CIPHERTEXT_KEY = "api_key_ciphertext"
_TOKEN_SCHEME = "fernet"
_RENAMED_KEYS: Mapping[str, str] = {"apiKey": "api_key", "baseUrl": "base_url"}
# Environment variable -> (settings field, parser)
_ENVIRONMENT: Mapping[str, tuple[str, Callable[[str], Any]]] = {
    "PROMPTMUX_PROVIDER": ("provider", str),
    "PROMPTMUX_API_KEY": ("api_key", str),
    "PROMPTMUX_BASE_URL": ("base_url", str),
    "PROMPTMUX_MODEL": ("model", str),
    "PROMPTMUX_REQUEST_TIMEOUT": ("request_timeout", float),
    "PROMPTMUX_MAX_RETRIES": ("max_retries", int),
}


@dataclass(slots=True)
class LlmSettings:
    """Which LLM endpoint refinements go to, and how hard to try."""

    provider: str = "openai"
    api_key: str = ""
    base_url: str | None = None
    model: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0

    def public_dict(self) -> dict[str, Any]:
        """Settings safe to hand to a view: ``api_key`` becomes ``api_key_hint``."""

        payload = asdict(self)
        payload["api_key_hint"] = redact_secret(payload.pop("api_key"))
        return payload


class SecretVault:
    """Symmetric encryption for the API key.

    Tokens look like ``fernet:<token>``. The Fernet key is generated on first
    use and written with owner-only permissions.
    """

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_HOME_DIR / "settings.key")
        self._cipher: Fernet | None = None

    @property
    def strategy(self) -> str:
        return _TOKEN_SCHEME

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{_TOKEN_SCHEME}:{token}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``; raises ``ValueError`` if it is unusable."""

        if not token:
            return ""
        scheme, _, body = token.partition(":")
        if scheme != _TOKEN_SCHEME or not body:
            raise ValueError(f"Unknown secret token prefix {scheme!r}")
        try:
            return self._fernet().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._read_or_generate_key())
        return self._cipher

    def _read_or_generate_key(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        key = Fernet.generate_key()
        _atomic_write(self._key_path, key, private=True)
        LOGGER.info("Generated new settings key at %s", self._key_path)
        return key


class SettingsStore:
    """Loads and saves :class:`LlmSettings` as JSON."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or (_HOME_DIR / "settings.json")
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> LlmSettings:
        """Read the settings file and layer overrides on top.

        Precedence, lowest first: defaults, file, ``overrides`` (CLI),
        ``PROMPTMUX_*`` environment variables. A missing or unreadable file
        yields the defaults.
        """

        payload = self._read()
        settings = LlmSettings()
        if payload:
            upgraded = _rename_legacy_keys(payload)
            api_key, key_was_plaintext = self._recover_api_key(payload)
            try:
                settings = LlmSettings(**_known_fields(payload))
            except TypeError as exc:
                LOGGER.warning("Ignoring malformed settings in %s: %s", self._path, exc)
            settings = replace(settings, api_key=api_key)
            if upgraded or key_was_plaintext or payload.get("version") != _FORMAT_VERSION:
                self._rewrite(settings)

        if overrides:
            settings = _override(settings, overrides, source="CLI")
        return _override(settings, _environment_overrides(), source="environment")

    def save(self, settings: LlmSettings) -> Path:
        """Write ``settings`` (API key encrypted) and return the file path."""

        document = asdict(settings)
        secret = document.pop("api_key")
        if secret:
            document[_CIPHERTEXT_KEY] = self._vault.encrypt(secret)
        document["version"] = _FORMAT_VERSION
        _atomic_write(self._path, json.dumps(document, indent=2, sort_keys=True).encode("utf-8"))
        LOGGER.debug("Settings saved to %s (provider=%s)", self._path, settings.provider)
        return self._path

    def _read(self) -> Dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _recover_api_key(self, payload: Dict[str, Any]) -> tuple[str, bool]:
        """Pop the key fields from ``payload``; the flag is set for plaintext keys."""

        ciphertext = payload.pop(_CIPHERTEXT_KEY, None)
        plaintext = payload.pop("api_key", None)
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if plaintext:
            LOGGER.info("Found a plaintext API key in %s; re-saving it encrypted", self._path)
            return str(plaintext), True
        return "", False

    def _rewrite(self, settings: LlmSettings) -> None:
        try:
            self.save(settings)
        except OSError as exc:  # pragma: no cover - read-only home directories
            LOGGER.warning("Could not upgrade settings file %s: %s", self._path, exc)


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of a secret."""

    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]


def _rename_legacy_keys(payload: Dict[str, Any]) -> bool:
    renamed = False
    for old, new in _RENAMED_KEYS.items():
        if old in payload and new not in payload:
            payload[new] = payload.pop(old)
            renamed = True
    return renamed


def _known_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    names = {item.name for item in fields(LlmSettings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in names}


def _override(settings: LlmSettings, overrides: Mapping[str, Any], *, source: str) -> LlmSettings:
    changes = {key: value for key, value in _known_fields(overrides).items() if value is not None}
    if overrides.get("api_key") is not None:
        changes["api_key"] = overrides["api_key"]
    if not changes:
        return settings
    LOGGER.debug("Applying %s settings overrides: %s", source, sorted(changes))
    return replace(settings, **changes)


def _environment_overrides() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for variable, (field_name, parse) in _ENVIRONMENT.items():
        raw = os.environ.get(variable)
        if raw is None:
            continue
        try:
            values[field_name] = parse(raw)
        except ValueError:
            LOGGER.warning("Ignoring %s=%r: expected %s", variable, raw, parse.__name__)
    return values


def _atomic_write(path: Path, data: bytes, *, private: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_suffix(path.suffix + ".tmp")
    staging.write_bytes(data)
    if private and os.name != "nt":  # pragma: no cover - depends on OS
        os.chmod(staging, 0o600)
    staging.replace(path)
