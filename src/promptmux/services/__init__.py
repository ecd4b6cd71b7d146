"""Service layer helpers (backend boundary, settings).

The backend boundary lives in :mod:`promptmux.services.backend`; it is not
re-exported here because it depends on :mod:`promptmux.ai`, which in turn
reads :mod:`promptmux.services.settings`.
"""

from .settings import LlmSettings, SecretVault, SettingsStore

__all__ = [
    "LlmSettings",
    "SecretVault",
    "SettingsStore",
]
