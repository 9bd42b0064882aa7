"""SQLite account store: a local stand-in for the hosted store."""

import json
import logging
import sqlite3
import uuid
from pathlib import Path

from multimail.accounts.store import StoreUnavailable, account_from_row
from multimail.mail.types import EmailAccount

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/accounts.db")

_CREATE_ACCOUNTS = """
CREATE TABLE IF NOT EXISTS email_accounts (
    id             TEXT PRIMARY KEY,
    user_id        TEXT NOT NULL,
    provider       TEXT NOT NULL,
    email          TEXT NOT NULL,
    access_token   TEXT NOT NULL,
    refresh_token  TEXT NOT NULL DEFAULT '',
    expires_at     TEXT NOT NULL,
    account_data   TEXT NOT NULL DEFAULT '{}',
    updated_at     TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (user_id, provider, email)
)
"""


class SQLiteAccountStore:
    """AccountStore over a single SQLite file.

    Designed for single-threaded use from an async event loop; calls are
    synchronous but fast enough for a handful of accounts, so the async
    methods run them inline.

    Usage::

        store = SQLiteAccountStore()
        await store.upsert_account(account)
        accounts = await store.list_accounts("user-1")
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        with self._conn:
            self._conn.execute(_CREATE_ACCOUNTS)

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    async def list_accounts(self, owner_id: str) -> list[EmailAccount]:
        """Return the owner's accounts in connection order."""
        try:
            rows = self._conn.execute(
                """SELECT id, user_id, provider, email, access_token,
                          refresh_token, expires_at, account_data
                   FROM email_accounts WHERE user_id = ?
                   ORDER BY rowid""",
                (owner_id,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"list accounts: {exc}") from exc

        accounts = []
        for row in rows:
            d = dict(row)
            d["account_data"] = json.loads(d["account_data"] or "{}")
            account = account_from_row(d)
            if account is not None:
                accounts.append(account)
        return accounts

    async def upsert_account(self, account: EmailAccount) -> None:
        """Insert or update by (owner, provider, address); the row id is kept."""
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO email_accounts
                        (id, user_id, provider, email, access_token,
                         refresh_token, expires_at, account_data)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, provider, email) DO UPDATE SET
                        access_token  = excluded.access_token,
                        refresh_token = excluded.refresh_token,
                        expires_at    = excluded.expires_at,
                        account_data  = excluded.account_data,
                        updated_at    = datetime('now')
                    """,
                    (
                        account.id or uuid.uuid4().hex,
                        account.owner_id,
                        account.provider.value,
                        account.email_address,
                        account.access_token,
                        account.refresh_token,
                        account.expires_at.isoformat(),
                        json.dumps(account.provider_profile),
                    ),
                )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"upsert account: {exc}") from exc
        logger.debug("Stored %s account %s", account.provider.value, account.email_address)
