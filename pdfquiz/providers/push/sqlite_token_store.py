"""SQLite-backed store of device push tokens per owner."""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import structlog

logger = structlog.get_logger(logger_name=__name__)

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS push_tokens (
    token       TEXT PRIMARY KEY,
    owner_id    TEXT NOT NULL,
    platform    TEXT NOT NULL DEFAULT '',
    created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_CREATE_INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_push_tokens_owner ON push_tokens(owner_id);"

# A token moves to whichever owner registered it last (shared devices).
_UPSERT_SQL = """\
INSERT INTO push_tokens (token, owner_id, platform)
VALUES (?, ?, ?)
ON CONFLICT(token)
DO UPDATE SET owner_id = excluded.owner_id,
              platform = excluded.platform;
"""


class SQLitePushTokenStore:
    """Persists push tokens in the application database."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_TABLE_SQL)
            await db.execute(_CREATE_INDEX_SQL)
            await db.commit()
        logger.info("push_token_store_initialized", path=str(self._db_path))

    async def add(self, owner_id: str, token: str, platform: str = "") -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_UPSERT_SQL, (token, owner_id, platform))
            await db.commit()

    async def remove(self, owner_id: str, token: str) -> bool:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "DELETE FROM push_tokens WHERE token = ? AND owner_id = ?", (token, owner_id)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def list_for_owner(self, owner_id: str) -> list[str]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT token FROM push_tokens WHERE owner_id = ? ORDER BY created_at",
                (owner_id,),
            )
            rows = await cursor.fetchall()
        return [r[0] for r in rows]
