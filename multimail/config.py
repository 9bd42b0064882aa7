"""Runtime configuration, read once from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from multimail.mail.types import Provider

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
GRAPH_API_BASE = "https://graph.microsoft.com/v1.0/me"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"

_DEFAULT_COMPOSE_MODEL = "claude-sonnet-4-6"
_DEFAULT_EXTRACT_MODEL = "claude-haiku-4-5-20251001"
_DEFAULT_DB_PATH = Path("data/accounts.db")


@dataclass(frozen=True)
class ProviderConfig:
    """OAuth client credentials and endpoints for a single provider."""

    provider: Provider
    client_id: str
    client_secret: str
    token_url: str
    api_base: str
    scope: str = ""


@dataclass(frozen=True)
class Settings:
    """Everything the server needs, injected at construction time.

    Build with ``Settings.from_env()`` after ``load_dotenv()``; nothing else
    in the package reads ``os.environ``.
    """

    user_id: str
    providers: dict[Provider, ProviderConfig]
    store_url: str = ""
    store_key: str = ""
    db_path: Path = field(default_factory=lambda: _DEFAULT_DB_PATH)
    anthropic_api_key: str = ""
    compose_model: str = _DEFAULT_COMPOSE_MODEL
    extract_model: str = _DEFAULT_EXTRACT_MODEL
    http_timeout: float = 30.0

    @property
    def uses_remote_store(self) -> bool:
        return bool(self.store_url)

    def provider_config(self, provider: Provider) -> ProviderConfig:
        return self.providers[provider]

    @classmethod
    def from_env(cls, user_id: str | None = None) -> Settings:
        """Build Settings from environment variables.

        ``user_id`` overrides ``MULTIMAIL_USER_ID`` (e.g. from a CLI flag).
        """
        tenant = os.environ.get("MICROSOFT_TENANT_ID", "common") or "common"
        providers = {
            Provider.GMAIL: ProviderConfig(
                provider=Provider.GMAIL,
                client_id=os.environ.get("GOOGLE_CLIENT_ID", ""),
                client_secret=os.environ.get("GOOGLE_CLIENT_SECRET", ""),
                token_url=GOOGLE_TOKEN_URL,
                api_base=GMAIL_API_BASE,
            ),
            Provider.MICROSOFT: ProviderConfig(
                provider=Provider.MICROSOFT,
                client_id=os.environ.get("MICROSOFT_CLIENT_ID", ""),
                client_secret=os.environ.get("MICROSOFT_CLIENT_SECRET", ""),
                token_url=MICROSOFT_TOKEN_URL.format(tenant=tenant),
                api_base=GRAPH_API_BASE,
                scope=os.environ.get("MICROSOFT_SCOPES", ""),
            ),
        }
        return cls(
            user_id=user_id or os.environ.get("MULTIMAIL_USER_ID", ""),
            providers=providers,
            store_url=os.environ.get("ACCOUNT_STORE_URL", "").rstrip("/"),
            store_key=os.environ.get("ACCOUNT_STORE_KEY", ""),
            db_path=Path(os.environ.get("ACCOUNT_DB_PATH", str(_DEFAULT_DB_PATH))),
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            compose_model=os.environ.get("MULTIMAIL_COMPOSE_MODEL", _DEFAULT_COMPOSE_MODEL),
            extract_model=os.environ.get("MULTIMAIL_EXTRACT_MODEL", _DEFAULT_EXTRACT_MODEL),
            http_timeout=float(os.environ.get("HTTP_TIMEOUT_SECONDS", "30")),
        )
