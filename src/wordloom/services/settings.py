"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Literal, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "AutocompleteSettings",
    "ContextSettings",
    "PROVIDER_PROFILES",
    "ProviderProfile",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "apply_overrides",
    "normalize_settings",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".wordloom"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 2
_ENV_OVERRIDES: Mapping[str, str] = {
    "WORDLOOM_PROVIDER": "provider",
    "WORDLOOM_API_KEY": "api_key",
    "WORDLOOM_BASE_URL": "base_url",
    "WORDLOOM_MODEL": "model",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "WORDLOOM_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "WORDLOOM_REQUEST_TIMEOUT": "request_timeout",
}
_AUTOCOMPLETE_BOOL_ENV: Mapping[str, str] = {
    "WORDLOOM_AUTOCOMPLETE": "enabled",
}
_AUTOCOMPLETE_INT_ENV: Mapping[str, str] = {
    "WORDLOOM_TRIGGER_DELAY_MS": "trigger_delay_ms",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"
CompletionLength = Literal["short", "medium", "long"]
COMPLETION_LENGTH_CHOICES: tuple[str, ...] = ("short", "medium", "long")


@dataclass(slots=True, frozen=True)
class ProviderProfile:
    """Connection defaults for a local OpenAI-compatible server."""

    name: str
    base_url: str
    api_key: str
    model: str


PROVIDER_PROFILES: Mapping[str, ProviderProfile] = {
    "lmstudio": ProviderProfile("lmstudio", "http://127.0.0.1:1234/v1", "lm-studio", "lmstudio"),
    "ollama": ProviderProfile("ollama", "http://127.0.0.1:11434/v1", "ollama", "gemma3:4b"),
}


@dataclass(slots=True)
class AutocompleteSettings:
    """Inline completion behaviour.

    ``boundary_characters`` lists characters that, when they immediately
    precede the cursor, mark a non-completable position (a fresh empty line
    by default).
    """

    enabled: bool = True
    trigger_delay_ms: int = 500
    completion_length: CompletionLength = "medium"
    temperature: float = 0.7
    min_context_chars: int = 10
    boundary_characters: str = "\n"
    max_completion_chars: int = 150
    max_completion_tokens: int = 100
    cache_capacity: int = 50
    cache_ttl_seconds: float = 300.0


@dataclass(slots=True)
class ContextSettings:
    """Smart context assembly limits.

    ``short_doc_threshold`` and ``long_doc_threshold`` are the strategy
    thresholds T1 < T2, measured in estimated tokens.
    """

    total_token_limit: int = 3_000
    immediate_ratio: float = 0.40
    summary_ratio: float = 0.25
    metadata_ratio: float = 0.15
    semantic_ratio: float = 0.20
    window_chars: int = 800
    short_doc_threshold: int = 1_000
    long_doc_threshold: int = 3_000
    max_semantic_excerpts: int = 4
    summary_cache_capacity: int = 100
    summary_cache_ttl_seconds: float = 1_800.0


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    provider: str = "lmstudio"
    base_url: str = ""
    api_key: str = ""
    model: str = ""
    organization: str | None = None
    request_timeout: float = 60.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    document_temperature: float = 0.7
    embedding_model: str = ""
    default_headers: dict[str, str] = field(default_factory=dict)
    debug_logging: bool = False
    autocomplete: AutocompleteSettings = field(default_factory=AutocompleteSettings)
    context: ContextSettings = field(default_factory=ContextSettings)

    def resolved_profile(self) -> ProviderProfile:
        """Return connection details with provider defaults filled in."""

        profile = PROVIDER_PROFILES.get(self.provider, PROVIDER_PROFILES["lmstudio"])
        return ProviderProfile(
            name=self.provider or profile.name,
            base_url=self.base_url or profile.base_url,
            api_key=self.api_key or profile.api_key,
            model=self.model or profile.model,
        )


class SecretVault:
    """Encrypts and decrypts the API key using a Fernet key stored on disk."""

    strategy = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return f"{self.strategy}:{token.decode('ascii')}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if not payload:
            payload, prefix = prefix, self.strategy
        if prefix != self.strategy:
            raise ValueError(f"Unknown secret backend '{prefix}'")
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            api_key = self._decrypt_api_key(payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None))
            data = _filter_fields(payload, Settings)
            data["autocomplete"] = _load_section(data.get("autocomplete"), AutocompleteSettings)
            data["context"] = _load_section(data.get("context"), ContextSettings)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if api_key:
                settings = replace(settings, api_key=api_key)
            if payload.get("version") != _SETTINGS_VERSION:
                try:
                    self.save(settings)
                except OSError as exc:  # pragma: no cover
                    LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = apply_overrides(settings, overrides, source="CLI")
        settings = self._apply_env_overrides(settings)
        return normalize_settings(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        body = json.dumps(data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s (provider=%s)", self._path, settings.provider)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _decrypt_api_key(self, ciphertext: str | None, legacy_plaintext: str | None) -> str:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return ""
        if legacy_plaintext:
            LOGGER.info("Detected plaintext API key; it will be encrypted on next save.")
            return str(legacy_plaintext)
        return ""

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)

        autocomplete: Dict[str, Any] = {}
        for env_name, field_name in _AUTOCOMPLETE_BOOL_ENV.items():
            value = os.environ.get(env_name)
            if value is not None:
                autocomplete[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _AUTOCOMPLETE_INT_ENV.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                autocomplete[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        if autocomplete:
            overrides["autocomplete"] = replace(settings.autocomplete, **autocomplete)
        if overrides:
            settings = apply_overrides(settings, overrides, source="environment")
        return settings


def apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str = "runtime") -> Settings:
    """Return a copy of *settings* with known, non-``None`` fields replaced."""

    allowed = {item.name for item in fields(Settings)}
    filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
    for section, section_type in (("autocomplete", AutocompleteSettings), ("context", ContextSettings)):
        value = filtered.get(section)
        if isinstance(value, Mapping):
            current = getattr(settings, section)
            filtered[section] = replace(current, **_filter_fields(value, section_type))
    if filtered:
        LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
        settings = replace(settings, **filtered)
    return settings


def normalize_settings(settings: Settings) -> Settings:
    """Clamp values into operating ranges."""

    auto = settings.autocomplete
    length = auto.completion_length if auto.completion_length in COMPLETION_LENGTH_CHOICES else "medium"
    auto = replace(
        auto,
        trigger_delay_ms=max(0, int(auto.trigger_delay_ms)),
        completion_length=length,
        min_context_chars=max(0, int(auto.min_context_chars)),
        max_completion_chars=max(1, int(auto.max_completion_chars)),
        cache_capacity=max(1, int(auto.cache_capacity)),
    )
    ctx = settings.context
    short_threshold = max(1, int(ctx.short_doc_threshold))
    long_threshold = max(short_threshold + 1, int(ctx.long_doc_threshold))
    ctx = replace(
        ctx,
        total_token_limit=max(1, int(ctx.total_token_limit)),
        window_chars=max(0, int(ctx.window_chars)),
        short_doc_threshold=short_threshold,
        long_doc_threshold=long_threshold,
    )
    return replace(settings, autocomplete=auto, context=ctx, max_retries=max(1, int(settings.max_retries)))


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"


def _load_section(payload: Any, section_type: type) -> Any:
    if isinstance(payload, section_type):
        return payload
    if not isinstance(payload, Mapping):
        return section_type()
    try:
        return section_type(**_filter_fields(payload, section_type))
    except TypeError:
        return section_type()


def _filter_fields(payload: Mapping[str, Any], target: type) -> Dict[str, Any]:
    allowed = {item.name for item in fields(target)}
    if target is Settings:
        allowed.discard("api_key")
    return {key: value for key, value in payload.items() if key in allowed}
