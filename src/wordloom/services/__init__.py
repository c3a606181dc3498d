"""Service layer: settings persistence and telemetry."""

from .settings import AutocompleteSettings, ContextSettings, SecretVault, Settings, SettingsStore
from .telemetry import InMemoryTelemetrySink, emit, register_event_listener, unregister_event_listener

__all__ = [
    "AutocompleteSettings",
    "ContextSettings",
    "InMemoryTelemetrySink",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "emit",
    "register_event_listener",
    "unregister_event_listener",
]
