"""
Credential store for source API keys and OAuth client credentials.

Usage:
    from hybrid_health.config.secrets import CredentialStore

    store = CredentialStore()
    key = store.get_api_key("CDC_DATA_GOV")   # reads CDC_DATA_GOV_API_KEY

Environment variables per source id:
    <SOURCE_ID>_API_KEY
    <SOURCE_ID>_CLIENT_ID
    <SOURCE_ID>_CLIENT_SECRET

CLI check:
    hybrid-health check-keys
"""

import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from ..errors import MissingCredential

# Load .env file on module import: repo root first, then working directory
_repo_root = Path(__file__).resolve().parent.parent.parent
_env_path = _repo_root / ".env"
if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()


def env_prefix(source_id: str) -> str:
    return source_id.upper().replace("-", "_")


class CredentialStore:
    """Read-only view over static API keys and OAuth client credentials.

    Explicit ``values`` take precedence over the environment, which keeps
    tests independent of the host's variables.
    """

    def __init__(self, values: Optional[Mapping[str, str]] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self._values = dict(values or {})
        self._environ = environ if environ is not None else os.environ

    def _lookup(self, name: str) -> str:
        if name in self._values:
            return (self._values[name] or "").strip()
        return (self._environ.get(name, "") or "").strip()

    def get_api_key(self, source_id: str) -> str:
        """
        Get the static API key for a source.

        Raises:
            MissingCredential: If <SOURCE_ID>_API_KEY is not set
        """
        name = f"{env_prefix(source_id)}_API_KEY"
        key = self._lookup(name)
        if not key:
            raise MissingCredential(source_id, f"{name} not configured")
        return key

    def get_oauth_client(self, source_id: str) -> Tuple[str, str]:
        """
        Get OAuth client id and secret for a source.

        Raises:
            MissingCredential: If either value is missing
        """
        prefix = env_prefix(source_id)
        client_id = self._lookup(f"{prefix}_CLIENT_ID")
        client_secret = self._lookup(f"{prefix}_CLIENT_SECRET")
        if not client_id or not client_secret:
            raise MissingCredential(
                source_id, f"{prefix}_CLIENT_ID / {prefix}_CLIENT_SECRET not configured"
            )
        return client_id, client_secret


def check_keys(catalog, store: Optional[CredentialStore] = None) -> Dict[str, str]:
    """
    Check which sources have their credentials configured.

    Returns:
        dict: source_id -> "OK", "MISSING" or "NOT_REQUIRED"
    """
    from ..sources.catalog import AuthMode

    store = store or CredentialStore()
    status = {}

    for descriptor in catalog:
        try:
            if descriptor.auth_mode == AuthMode.API_KEY:
                store.get_api_key(descriptor.source_id)
            elif descriptor.auth_mode == AuthMode.OAUTH:
                store.get_oauth_client(descriptor.source_id)
            else:
                status[descriptor.source_id] = "NOT_REQUIRED"
                continue
            status[descriptor.source_id] = "OK"
        except MissingCredential:
            status[descriptor.source_id] = "MISSING"

    return status
