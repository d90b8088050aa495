"""Credential stores for provider secrets.

The core never ships default secrets. Keys are looked up by name
(``openrouter_api_key``, ``nopecha_api_key``) from whichever store the
caller wires in.
"""

import os
from typing import Dict, Optional

from dotenv import load_dotenv

from captcha_relay.interfaces import ICredentialStore

OPENROUTER_API_KEY = "openrouter_api_key"
NOPECHA_API_KEY = "nopecha_api_key"


class InMemoryCredentialStore(ICredentialStore):
    """Dictionary-backed store, used by tests and embedding applications."""
    
    def __init__(self, credentials: Optional[Dict[str, str]] = None):
        self._credentials = dict(credentials or {})
    
    def get(self, name: str) -> Optional[str]:
        return self._credentials.get(name) or None
    
    def set(self, name: str, value: str) -> None:
        self._credentials[name] = value


class EnvCredentialStore(ICredentialStore):
    """Reads secrets from the environment.
    
    ``openrouter_api_key`` maps to ``OPENROUTER_API_KEY`` (optionally with a
    prefix). A ``.env`` file is loaded on construction.
    """
    
    def __init__(self, prefix: str = "", env_file: Optional[str] = None):
        self.prefix = prefix
        load_dotenv(env_file)
    
    def get(self, name: str) -> Optional[str]:
        value = os.getenv(f"{self.prefix}{name.upper()}", "").strip()
        return value or None
