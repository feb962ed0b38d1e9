"""SQLite-backed repositories for documents, chunks, questions and conversations.

All of them share one database file (``Settings.database_path``) and use
``aiosqlite`` for async I/O, one short-lived connection per operation.

Embeddings and list-valued question fields are stored as JSON text.
There are no foreign-key cascades: deleting a document is an explicit
"delete chunks, delete questions, delete conversations, delete document"
sequence run by the pipeline.  Deleting a conversation removes its
messages in the same transaction.

Document status changes use compare-and-set
(``UPDATE ... WHERE id = ? AND status = ?``) so two concurrent deliveries
of the same job cannot both apply a transition.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from pdfquiz.interfaces.chunk_repository import IChunkRepository
from pdfquiz.interfaces.conversation_repository import IConversationRepository
from pdfquiz.interfaces.document_repository import IDocumentRepository
from pdfquiz.interfaces.question_repository import IQuestionRepository
from pdfquiz.models.chunk import Chunk
from pdfquiz.models.conversation import ChatMessage, Conversation
from pdfquiz.models.document import Document, DocumentStatus
from pdfquiz.models.question import Question

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/pdfquiz.db")

_CREATE_DOCUMENTS_SQL = """\
CREATE TABLE IF NOT EXISTS documents (
    id                     TEXT PRIMARY KEY,
    owner_id               TEXT NOT NULL,
    title                  TEXT NOT NULL,
    original_filename      TEXT NOT NULL,
    storage_key            TEXT,
    status                 TEXT NOT NULL,
    content_type           TEXT NOT NULL,
    file_size              INTEGER NOT NULL DEFAULT 0,
    error_message          TEXT,
    created_at             TEXT NOT NULL,
    updated_at             TEXT NOT NULL,
    processing_started_at  TEXT,
    completed_at           TEXT
);
"""

_CREATE_CHUNKS_SQL = """\
CREATE TABLE IF NOT EXISTS chunks (
    id           TEXT PRIMARY KEY,
    document_id  TEXT    NOT NULL,
    sequence     INTEGER NOT NULL,
    content      TEXT    NOT NULL,
    page_number  INTEGER NOT NULL,
    token_count  INTEGER NOT NULL,
    embedding    TEXT,
    UNIQUE(document_id, sequence)
);
"""

_CREATE_QUESTIONS_SQL = """\
CREATE TABLE IF NOT EXISTS questions (
    id                    TEXT PRIMARY KEY,
    document_id           TEXT    NOT NULL,
    position              INTEGER NOT NULL,
    question              TEXT    NOT NULL,
    options               TEXT    NOT NULL,
    correct_option_index  INTEGER NOT NULL,
    difficulty            TEXT    NOT NULL,
    question_type         TEXT    NOT NULL,
    source_chunk_ids      TEXT    NOT NULL,
    page_reference        TEXT    NOT NULL,
    explanation           TEXT    NOT NULL DEFAULT '',
    ai_generated          INTEGER NOT NULL DEFAULT 1
);
"""

_CREATE_CONVERSATIONS_SQL = """\
CREATE TABLE IF NOT EXISTS conversations (
    id           TEXT PRIMARY KEY,
    owner_id     TEXT NOT NULL,
    document_id  TEXT NOT NULL,
    title        TEXT NOT NULL,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);
"""

_CREATE_MESSAGES_SQL = """\
CREATE TABLE IF NOT EXISTS messages (
    id               TEXT PRIMARY KEY,
    conversation_id  TEXT NOT NULL,
    role             TEXT NOT NULL,
    content          TEXT NOT NULL,
    created_at       TEXT NOT NULL
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents(owner_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id, sequence);",
    "CREATE INDEX IF NOT EXISTS idx_questions_document ON questions(document_id, position);",
    "CREATE INDEX IF NOT EXISTS idx_conversations_owner ON conversations(owner_id, updated_at);",
    "CREATE INDEX IF NOT EXISTS idx_conversations_document ON conversations(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
    "ON messages(conversation_id, created_at);",
]

_CONVERSATION_COLUMNS = "id, owner_id, document_id, title, created_at, updated_at"
_MESSAGE_COLUMNS = "id, conversation_id, role, content, created_at"

_DOCUMENT_COLUMNS = (
    "id, owner_id, title, original_filename, storage_key, status, content_type, "
    "file_size, error_message, created_at, updated_at, processing_started_at, completed_at"
)

_UPSERT_DOCUMENT_SQL = f"""\
INSERT OR REPLACE INTO documents ({_DOCUMENT_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

# Columns update_status may touch besides status/updated_at.
_MUTABLE_DOCUMENT_FIELDS = frozenset(
    {"error_message", "processing_started_at", "completed_at", "storage_key"}
)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, DocumentStatus):
        return value.value
    return value


async def initialize_database(db_path: str | Path = _DEFAULT_DB_PATH) -> None:
    """Create every table and index if they don't exist."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(str(path)) as db:
        for sql in (
            _CREATE_DOCUMENTS_SQL,
            _CREATE_CHUNKS_SQL,
            _CREATE_QUESTIONS_SQL,
            _CREATE_CONVERSATIONS_SQL,
            _CREATE_MESSAGES_SQL,
        ):
            await db.execute(sql)
        for idx_sql in _CREATE_INDICES_SQL:
            await db.execute(idx_sql)
        await db.commit()
    logger.info("database_initialized", path=str(path))


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class SQLiteDocumentRepository(IDocumentRepository):
    """SQLite-backed :class:`IDocumentRepository`."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def get(self, document_id: str) -> Document | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,)
            )
            row = await cursor.fetchone()
        return Document(**dict(row)) if row else None

    async def get_for_owner(self, document_id: str, owner_id: str) -> Document | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ? AND owner_id = ?",
                (document_id, owner_id),
            )
            row = await cursor.fetchone()
        return Document(**dict(row)) if row else None

    async def list_for_owner(self, owner_id: str) -> list[Document]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE owner_id = ? "
                "ORDER BY created_at DESC",
                (owner_id,),
            )
            rows = await cursor.fetchall()
        return [Document(**dict(r)) for r in rows]

    async def save(self, document: Document) -> None:
        row = document.model_dump()
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _UPSERT_DOCUMENT_SQL,
                tuple(_to_db(row[col.strip()]) for col in _DOCUMENT_COLUMNS.split(",")),
            )
            await db.commit()

    async def update_status(
        self,
        document_id: str,
        expected: DocumentStatus,
        status: DocumentStatus,
        fields: dict[str, Any] | None = None,
    ) -> Document | None:
        fields = dict(fields or {})
        unknown = set(fields) - _MUTABLE_DOCUMENT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update document fields: {sorted(unknown)}")

        assignments = ["status = ?", "updated_at = ?"]
        params: list[Any] = [status.value, _utcnow().isoformat()]
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            params.append(_to_db(value))
        params.extend([document_id, expected.value])

        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                f"UPDATE documents SET {', '.join(assignments)} WHERE id = ? AND status = ?",
                params,
            )
            await db.commit()
            updated = cursor.rowcount
        if updated == 0:
            return None
        return await self.get(document_id)

    async def set_storage_key(self, document_id: str, storage_key: str) -> Document | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE documents SET storage_key = ?, updated_at = ? WHERE id = ?",
                (storage_key, _utcnow().isoformat(), document_id),
            )
            await db.commit()
        return await self.get(document_id)

    async def delete(self, document_id: str) -> bool:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            await db.commit()
            return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------

class SQLiteChunkRepository(IChunkRepository):
    """SQLite-backed :class:`IChunkRepository`.  Embeddings are JSON arrays."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def add_chunks(self, chunks: list[Chunk]) -> None:
        if not chunks:
            return
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.executemany(
                "INSERT INTO chunks "
                "(id, document_id, sequence, content, page_number, token_count, embedding) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        c.id,
                        c.document_id,
                        c.sequence,
                        c.content,
                        c.page_number,
                        c.token_count,
                        json.dumps(c.embedding) if c.embedding is not None else None,
                    )
                    for c in chunks
                ],
            )
            await db.commit()
        logger.debug("chunks_stored", document_id=chunks[0].document_id, count=len(chunks))

    async def list_by_document(self, document_id: str) -> list[Chunk]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, document_id, sequence, content, page_number, token_count, embedding "
                "FROM chunks WHERE document_id = ? ORDER BY sequence",
                (document_id,),
            )
            rows = await cursor.fetchall()
        chunks: list[Chunk] = []
        for row in rows:
            data = dict(row)
            raw = data.pop("embedding")
            chunks.append(Chunk(**data, embedding=json.loads(raw) if raw else None))
        return chunks

    async def set_embeddings(self, embeddings: dict[str, list[float]]) -> int:
        if not embeddings:
            return 0
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.executemany(
                "UPDATE chunks SET embedding = ? WHERE id = ?",
                [(json.dumps(vector), chunk_id) for chunk_id, vector in embeddings.items()],
            )
            await db.commit()
        return len(embeddings)

    async def delete_by_document(self, document_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            await db.commit()
            return cursor.rowcount

    async def count(self, document_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------

class SQLiteQuestionRepository(IQuestionRepository):
    """SQLite-backed :class:`IQuestionRepository`."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def replace_for_document(self, document_id: str, questions: list[Question]) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("DELETE FROM questions WHERE document_id = ?", (document_id,))
            await db.executemany(
                "INSERT INTO questions "
                "(id, document_id, position, question, options, correct_option_index, "
                "difficulty, question_type, source_chunk_ids, page_reference, explanation, "
                "ai_generated) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        q.id,
                        document_id,
                        position,
                        q.question,
                        json.dumps(q.options),
                        q.correct_option_index,
                        q.difficulty.value,
                        q.question_type,
                        json.dumps(q.source_chunk_ids),
                        q.page_reference,
                        q.explanation,
                        int(q.ai_generated),
                    )
                    for position, q in enumerate(questions)
                ],
            )
            await db.commit()
        logger.debug("questions_stored", document_id=document_id, count=len(questions))

    async def list_by_document(self, document_id: str) -> list[Question]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, document_id, question, options, correct_option_index, difficulty, "
                "question_type, source_chunk_ids, page_reference, explanation, ai_generated "
                "FROM questions WHERE document_id = ? ORDER BY position",
                (document_id,),
            )
            rows = await cursor.fetchall()
        questions: list[Question] = []
        for row in rows:
            data = dict(row)
            data["options"] = json.loads(data["options"])
            data["source_chunk_ids"] = json.loads(data["source_chunk_ids"])
            data["ai_generated"] = bool(data["ai_generated"])
            questions.append(Question(**data))
        return questions

    async def delete_by_document(self, document_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "DELETE FROM questions WHERE document_id = ?", (document_id,)
            )
            await db.commit()
            return cursor.rowcount

    async def count(self, document_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM questions WHERE document_id = ?", (document_id,)
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

class SQLiteConversationRepository(IConversationRepository):
    """SQLite-backed :class:`IConversationRepository`.

    Messages are ordered by ``created_at`` with ``rowid`` as the tie-breaker,
    so turns written within the same clock tick keep insertion order.
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def create(self, conversation: Conversation) -> Conversation:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                f"INSERT INTO conversations ({_CONVERSATION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    conversation.id,
                    conversation.owner_id,
                    conversation.document_id,
                    conversation.title,
                    conversation.created_at.isoformat(),
                    conversation.updated_at.isoformat(),
                ),
            )
            await db.commit()
        logger.debug(
            "conversation_created",
            conversation_id=conversation.id,
            document_id=conversation.document_id,
        )
        return conversation

    async def get_for_owner(self, conversation_id: str, owner_id: str) -> Conversation | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations "
                "WHERE id = ? AND owner_id = ?",
                (conversation_id, owner_id),
            )
            row = await cursor.fetchone()
        return Conversation(**dict(row)) if row else None

    async def list_for_owner(
        self, owner_id: str, document_id: str | None = None
    ) -> list[Conversation]:
        sql = f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE owner_id = ?"
        params: list[Any] = [owner_id]
        if document_id is not None:
            sql += " AND document_id = ?"
            params.append(document_id)
        sql += " ORDER BY updated_at DESC, rowid DESC"
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [Conversation(**dict(r)) for r in rows]

    async def add_message(self, message: ChatMessage) -> ChatMessage:
        created_at = message.created_at.isoformat()
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                (
                    message.id,
                    message.conversation_id,
                    message.role.value,
                    message.content,
                    created_at,
                ),
            )
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (created_at, message.conversation_id),
            )
            await db.commit()
        return message

    async def recent_messages(self, conversation_id: str, limit: int = 10) -> list[ChatMessage]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE conversation_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (conversation_id, limit),
            )
            rows = await cursor.fetchall()
        return [ChatMessage(**dict(r)) for r in reversed(rows)]

    async def list_messages(self, conversation_id: str) -> list[ChatMessage]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE conversation_id = ? "
                "ORDER BY created_at, rowid",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
        return [ChatMessage(**dict(r)) for r in rows]

    async def delete(self, conversation_id: str) -> bool:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            )
            cursor = await db.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def delete_by_document(self, document_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "DELETE FROM messages WHERE conversation_id IN "
                "(SELECT id FROM conversations WHERE document_id = ?)",
                (document_id,),
            )
            cursor = await db.execute(
                "DELETE FROM conversations WHERE document_id = ?", (document_id,)
            )
            await db.commit()
            return cursor.rowcount
