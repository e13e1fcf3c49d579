"""ExecutionHistoryStore — persisted record of executions started by the scheduler."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.config import settings
from src.db import get_connection
from src.scheduler.models import make_message_id, utc_now

if TYPE_CHECKING:
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS executions (
        id TEXT PRIMARY KEY,
        prompt TEXT NOT NULL,
        status TEXT NOT NULL,
        schedule_id TEXT,
        session_id TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS execution_messages (
        id TEXT PRIMARY KEY,
        execution_id TEXT NOT NULL REFERENCES executions(id) ON DELETE CASCADE,
        type TEXT NOT NULL,
        content TEXT NOT NULL,
        tool_name TEXT,
        tool_input TEXT,
        timestamp TEXT NOT NULL,
        sort_order INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS execution_todos (
        execution_id TEXT NOT NULL REFERENCES executions(id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        todo TEXT NOT NULL,
        PRIMARY KEY (execution_id, position)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_execution_messages ON execution_messages(execution_id)",
)


@dataclass
class ExecutionMessage:
    """One entry in an execution's transcript (``user``, ``assistant`` or ``tool``)."""

    type: str
    content: str
    id: str = ""
    tool_name: str | None = None
    tool_input: Any = None
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = make_message_id()
        if not self.timestamp:
            self.timestamp = utc_now()


@dataclass
class ExecutionRecord:
    id: str
    prompt: str
    status: str
    schedule_id: str | None = None
    session_id: str | None = None
    created_at: str = ""
    completed_at: str | None = None
    messages: list[ExecutionMessage] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utc_now()


def to_history_message(message: dict[str, Any]) -> ExecutionMessage | None:
    """Convert a raw runtime message into a transcript entry.

    Text parts become assistant messages and tool activity becomes tool
    messages. Anything else (including ``tool_use`` updates that have not
    finished yet) is dropped.
    """
    msg_type = message.get("type")
    part = message.get("part") or {}

    if msg_type == "text":
        text = part.get("text")
        if not text:
            return None
        return ExecutionMessage(type="assistant", content=text)

    if msg_type == "tool_call":
        tool = part.get("tool") or "unknown"
        return ExecutionMessage(
            type="tool",
            content=f"Using tool: {tool}",
            tool_name=tool,
            tool_input=part.get("input"),
        )

    if msg_type == "tool_use":
        tool = part.get("tool") or "unknown"
        state = part.get("state") or {}
        status = state.get("status")
        if status not in ("completed", "error"):
            return None
        return ExecutionMessage(
            type="tool",
            content=f"Tool {tool} {status}",
            tool_name=tool,
            tool_input=state.get("input"),
        )

    return None


class ExecutionHistoryStore:
    """Persists executions, their transcripts and todo lists in SQLite."""

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    async def _connect(self) -> aiosqlite.Connection:
        if self._initialised:
            return await get_connection(self._db_path)
        db = await get_connection(self._db_path, _SCHEMA)
        self._initialised = True
        return db

    # -- Executions ------------------------------------------------------------

    async def save_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        """Insert (or replace) an execution along with its initial messages."""
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT OR REPLACE INTO executions
                    (id, prompt, status, schedule_id, session_id, created_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.prompt,
                    record.status,
                    record.schedule_id,
                    record.session_id,
                    record.created_at,
                    record.completed_at,
                ),
            )
            for message in record.messages:
                await self._insert_message(db, record.id, message)
            await db.commit()
            logger.info("Saved execution %s (status=%s)", record.id, record.status)
            return record
        finally:
            await db.close()

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT id, prompt, status, schedule_id, session_id, created_at, completed_at
                FROM executions WHERE id = ?
                """,
                (execution_id,),
            )
            row = await cursor.fetchone()
        finally:
            await db.close()
        if row is None:
            return None
        return ExecutionRecord(
            id=row[0],
            prompt=row[1],
            status=row[2],
            schedule_id=row[3],
            session_id=row[4],
            created_at=row[5],
            completed_at=row[6],
            messages=await self.get_messages(execution_id),
        )

    async def update_status(
        self,
        execution_id: str,
        status: str,
        completed_at: str | None = None,
    ) -> None:
        db = await self._connect()
        try:
            if completed_at is None:
                await db.execute(
                    "UPDATE executions SET status = ? WHERE id = ?",
                    (status, execution_id),
                )
            else:
                await db.execute(
                    "UPDATE executions SET status = ?, completed_at = ? WHERE id = ?",
                    (status, completed_at, execution_id),
                )
            await db.commit()
        finally:
            await db.close()

    async def update_session_id(self, execution_id: str, session_id: str) -> None:
        db = await self._connect()
        try:
            await db.execute(
                "UPDATE executions SET session_id = ? WHERE id = ?",
                (session_id, execution_id),
            )
            await db.commit()
        finally:
            await db.close()

    # -- Messages --------------------------------------------------------------

    async def _insert_message(
        self,
        db: aiosqlite.Connection,
        execution_id: str,
        message: ExecutionMessage,
    ) -> None:
        await db.execute(
            """
            INSERT INTO execution_messages
                (id, execution_id, type, content, tool_name, tool_input, timestamp, sort_order)
            VALUES (?, ?, ?, ?, ?, ?, ?,
                (SELECT COALESCE(MAX(sort_order), -1) + 1
                 FROM execution_messages WHERE execution_id = ?))
            """,
            (
                message.id,
                execution_id,
                message.type,
                message.content,
                message.tool_name,
                json.dumps(message.tool_input) if message.tool_input is not None else None,
                message.timestamp,
                execution_id,
            ),
        )

    async def add_message(self, execution_id: str, message: ExecutionMessage) -> None:
        db = await self._connect()
        try:
            await self._insert_message(db, execution_id, message)
            await db.commit()
        finally:
            await db.close()

    async def get_messages(self, execution_id: str) -> list[ExecutionMessage]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT id, type, content, tool_name, tool_input, timestamp
                FROM execution_messages WHERE execution_id = ?
                ORDER BY sort_order
                """,
                (execution_id,),
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()
        return [
            ExecutionMessage(
                id=row[0],
                type=row[1],
                content=row[2],
                tool_name=row[3],
                tool_input=json.loads(row[4]) if row[4] is not None else None,
                timestamp=row[5],
            )
            for row in rows
        ]

    # -- Todos -----------------------------------------------------------------

    async def save_todos(self, execution_id: str, todos: list[dict[str, Any]]) -> None:
        """Replace the execution's todo list."""
        db = await self._connect()
        try:
            await db.execute("DELETE FROM execution_todos WHERE execution_id = ?", (execution_id,))
            for position, todo in enumerate(todos):
                await db.execute(
                    "INSERT INTO execution_todos (execution_id, position, todo) VALUES (?, ?, ?)",
                    (execution_id, position, json.dumps(todo)),
                )
            await db.commit()
        finally:
            await db.close()

    async def get_todos(self, execution_id: str) -> list[dict[str, Any]]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT todo FROM execution_todos WHERE execution_id = ? ORDER BY position",
                (execution_id,),
            )
            rows = await cursor.fetchall()
            return [json.loads(row[0]) for row in rows]
        finally:
            await db.close()

    async def clear_todos(self, execution_id: str) -> None:
        db = await self._connect()
        try:
            await db.execute("DELETE FROM execution_todos WHERE execution_id = ?", (execution_id,))
            await db.commit()
        finally:
            await db.close()
