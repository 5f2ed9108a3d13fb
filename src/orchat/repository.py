"""SQLite-backed repository for users, chats, prompts, and comments."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

Record = dict[str, Any]


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _normalize_db_timestamp(value: str | None) -> str | None:
    """Convert SQLite timestamp strings to ISO8601 in UTC."""

    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.isoformat()


def parse_db_timestamp(value: str | None) -> datetime | None:
    """Parse a timestamp stored in SQLite and normalize to UTC."""

    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed


def _encode_content(value: Any) -> str:
    return json.dumps(value if value is not None else "")


def _decode_content(value: str | None) -> Any:
    if value is None:
        return ""
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


_TIMESTAMP_COLUMNS = ("created_at", "updated_at", "timestamp", "expires_at")


def _row_to_record(row: aiosqlite.Row) -> Record:
    record = dict(row)
    for column in _TIMESTAMP_COLUMNS:
        if column in record:
            record[column] = _normalize_db_timestamp(record[column])
    if "content" in record and "role" in record:
        record["content"] = _decode_content(record["content"])
    return record


class ChatRepository:
    """Persist accounts, chats, messages, comments, and prompts."""

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                name TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS auth_sessions (
                token TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS chats (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                title TEXT,
                model TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                chat_id TEXT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS comments (
                id TEXT PRIMARY KEY,
                message_id TEXT NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                selected_text TEXT NOT NULL,
                start_offset INTEGER NOT NULL,
                end_offset INTEGER NOT NULL,
                user_comment TEXT NOT NULL,
                ai_response TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS prompts (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS password_reset_tokens (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                token TEXT NOT NULL UNIQUE,
                expires_at TEXT NOT NULL,
                used INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            -- Performance indexes
            CREATE INDEX IF NOT EXISTS idx_auth_sessions_user_id ON auth_sessions(user_id);
            CREATE INDEX IF NOT EXISTS idx_chats_user_id ON chats(user_id);
            CREATE INDEX IF NOT EXISTS idx_messages_chat_id ON messages(chat_id);
            CREATE INDEX IF NOT EXISTS idx_comments_message_id ON comments(message_id);
            CREATE INDEX IF NOT EXISTS idx_comments_user_id ON comments(user_id);
            CREATE INDEX IF NOT EXISTS idx_prompts_user_id ON prompts(user_id);
            CREATE INDEX IF NOT EXISTS idx_reset_tokens_user_id ON password_reset_tokens(user_id);
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def _fetchone(self, query: str, params: tuple[Any, ...] = ()) -> Record | None:
        assert self._connection is not None
        cursor = await self._connection.execute(query, params)
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return _row_to_record(row)

    async def _fetchall(self, query: str, params: tuple[Any, ...] = ()) -> list[Record]:
        assert self._connection is not None
        cursor = await self._connection.execute(query, params)
        rows = await cursor.fetchall()
        await cursor.close()
        return [_row_to_record(row) for row in rows]

    async def _execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        """Run a write statement, commit, and return the affected row count."""

        assert self._connection is not None
        cursor = await self._connection.execute(query, params)
        await self._connection.commit()
        try:
            return cursor.rowcount
        finally:
            await cursor.close()

    # Users -----------------------------------------------------------------

    async def create_user(
        self, email: str, password_hash: str, name: str | None = None
    ) -> Record:
        now = _to_db_timestamp(_utcnow())
        user_id = _new_id()
        await self._execute(
            """
            INSERT INTO users(id, email, password_hash, name, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, email, password_hash, name, now, now),
        )
        user = await self.get_user(user_id)
        assert user is not None
        return user

    async def get_user(self, user_id: str) -> Record | None:
        return await self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))

    async def get_user_by_email(self, email: str) -> Record | None:
        return await self._fetchone("SELECT * FROM users WHERE email = ?", (email,))

    async def count_users(self) -> int:
        assert self._connection is not None
        cursor = await self._connection.execute("SELECT COUNT(*) FROM users")
        row = await cursor.fetchone()
        await cursor.close()
        return int(row[0]) if row is not None else 0

    # Sessions --------------------------------------------------------------

    async def create_session(self, token: str, user_id: str, expires_at: datetime) -> None:
        await self._execute(
            """
            INSERT INTO auth_sessions(token, user_id, created_at, expires_at)
            VALUES (?, ?, ?, ?)
            """,
            (token, user_id, _to_db_timestamp(_utcnow()), _to_db_timestamp(expires_at)),
        )

    async def get_session_user(self, token: str) -> Record | None:
        """Return the user owning ``token`` when the session has not expired."""

        row = await self._fetchone(
            """
            SELECT users.*, auth_sessions.expires_at AS session_expires_at
            FROM auth_sessions
            JOIN users ON users.id = auth_sessions.user_id
            WHERE auth_sessions.token = ?
            """,
            (token,),
        )
        if row is None:
            return None
        expires_at = parse_db_timestamp(row.pop("session_expires_at"))
        if expires_at is None or expires_at <= _utcnow():
            await self.delete_session(token)
            return None
        return row

    async def delete_session(self, token: str) -> None:
        await self._execute("DELETE FROM auth_sessions WHERE token = ?", (token,))

    async def delete_expired_sessions(self, now: datetime | None = None) -> int:
        cutoff = _to_db_timestamp(now or _utcnow())
        return await self._execute(
            "DELETE FROM auth_sessions WHERE expires_at <= ?", (cutoff,)
        )

    # Chats -----------------------------------------------------------------

    async def list_chats(self, user_id: str) -> list[Record]:
        return await self._fetchall(
            """
            SELECT chats.*, COUNT(messages.id) AS message_count
            FROM chats
            LEFT JOIN messages ON messages.chat_id = chats.id
            WHERE chats.user_id = ?
            GROUP BY chats.id
            ORDER BY chats.updated_at DESC
            """,
            (user_id,),
        )

    async def create_chat(self, user_id: str, title: str | None, model: str) -> Record:
        now = _to_db_timestamp(_utcnow())
        chat_id = _new_id()
        await self._execute(
            """
            INSERT INTO chats(id, user_id, title, model, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (chat_id, user_id, title, model, now, now),
        )
        chat = await self.get_chat(chat_id, user_id)
        assert chat is not None
        return chat

    async def get_chat(self, chat_id: str, user_id: str) -> Record | None:
        """Return the chat only when it belongs to ``user_id``."""

        return await self._fetchone(
            "SELECT * FROM chats WHERE id = ? AND user_id = ?", (chat_id, user_id)
        )

    async def update_chat_title(
        self, chat_id: str, user_id: str, title: str | None
    ) -> Record | None:
        updated = await self._execute(
            "UPDATE chats SET title = ?, updated_at = ? WHERE id = ? AND user_id = ?",
            (title, _to_db_timestamp(_utcnow()), chat_id, user_id),
        )
        if not updated:
            return None
        return await self.get_chat(chat_id, user_id)

    async def delete_chat(self, chat_id: str, user_id: str) -> bool:
        deleted = await self._execute(
            "DELETE FROM chats WHERE id = ? AND user_id = ?", (chat_id, user_id)
        )
        return deleted > 0

    async def delete_all_chats(self, user_id: str) -> int:
        return await self._execute("DELETE FROM chats WHERE user_id = ?", (user_id,))

    # Messages --------------------------------------------------------------

    async def list_messages(self, chat_id: str) -> list[Record]:
        return await self._fetchall(
            "SELECT * FROM messages WHERE chat_id = ? ORDER BY timestamp ASC, rowid ASC",
            (chat_id,),
        )

    async def add_message(self, chat_id: str, role: str, content: Any) -> Record:
        """Persist a message and bump the owning chat's ``updated_at``."""

        assert self._connection is not None
        now = _to_db_timestamp(_utcnow())
        message_id = _new_id()
        await self._connection.execute(
            """
            INSERT INTO messages(id, chat_id, role, content, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (message_id, chat_id, role, _encode_content(content), now),
        )
        await self._connection.execute(
            "UPDATE chats SET updated_at = ? WHERE id = ?", (now, chat_id)
        )
        await self._connection.commit()
        message = await self._fetchone("SELECT * FROM messages WHERE id = ?", (message_id,))
        assert message is not None
        return message

    async def get_message_for_user(self, message_id: str, user_id: str) -> Record | None:
        """Return the message with its chat id and model when ``user_id`` owns the chat."""

        return await self._fetchone(
            """
            SELECT messages.*, chats.model AS chat_model
            FROM messages
            JOIN chats ON chats.id = messages.chat_id
            WHERE messages.id = ? AND chats.user_id = ?
            """,
            (message_id, user_id),
        )

    # Comments --------------------------------------------------------------

    async def list_comments(self, message_id: str) -> list[Record]:
        return await self._fetchall(
            "SELECT * FROM comments WHERE message_id = ? ORDER BY created_at ASC",
            (message_id,),
        )

    async def list_comments_for_chat(self, chat_id: str) -> list[Record]:
        return await self._fetchall(
            """
            SELECT comments.*
            FROM comments
            JOIN messages ON messages.id = comments.message_id
            WHERE messages.chat_id = ?
            ORDER BY comments.created_at ASC
            """,
            (chat_id,),
        )

    async def create_comment(
        self,
        *,
        message_id: str,
        user_id: str,
        selected_text: str,
        start_offset: int,
        end_offset: int,
        user_comment: str,
    ) -> Record:
        now = _to_db_timestamp(_utcnow())
        comment_id = _new_id()
        await self._execute(
            """
            INSERT INTO comments(
                id,
                message_id,
                user_id,
                selected_text,
                start_offset,
                end_offset,
                user_comment,
                ai_response,
                created_at,
                updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, NULL, ?, ?)
            """,
            (
                comment_id,
                message_id,
                user_id,
                selected_text,
                start_offset,
                end_offset,
                user_comment,
                now,
                now,
            ),
        )
        comment = await self.get_comment(comment_id)
        assert comment is not None
        return comment

    async def get_comment(self, comment_id: str) -> Record | None:
        return await self._fetchone("SELECT * FROM comments WHERE id = ?", (comment_id,))

    async def get_comment_for_user(self, comment_id: str, user_id: str) -> Record | None:
        """Return the comment plus its message's chat id and model if owned by ``user_id``."""

        return await self._fetchone(
            """
            SELECT comments.*, messages.chat_id AS chat_id, chats.model AS chat_model
            FROM comments
            JOIN messages ON messages.id = comments.message_id
            JOIN chats ON chats.id = messages.chat_id
            WHERE comments.id = ? AND comments.user_id = ? AND chats.user_id = ?
            """,
            (comment_id, user_id, user_id),
        )

    async def update_comment_ai_response(
        self, comment_id: str, ai_response: str
    ) -> Record | None:
        await self._execute(
            "UPDATE comments SET ai_response = ?, updated_at = ? WHERE id = ?",
            (ai_response, _to_db_timestamp(_utcnow()), comment_id),
        )
        return await self.get_comment(comment_id)

    # Prompts ---------------------------------------------------------------

    async def list_prompts(self, user_id: str) -> list[Record]:
        return await self._fetchall(
            "SELECT * FROM prompts WHERE user_id = ? ORDER BY updated_at DESC",
            (user_id,),
        )

    async def create_prompt(self, user_id: str, title: str, content: str) -> Record:
        now = _to_db_timestamp(_utcnow())
        prompt_id = _new_id()
        await self._execute(
            """
            INSERT INTO prompts(id, user_id, title, content, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (prompt_id, user_id, title, content, now, now),
        )
        prompt = await self.get_prompt(prompt_id, user_id)
        assert prompt is not None
        return prompt

    async def get_prompt(self, prompt_id: str, user_id: str) -> Record | None:
        return await self._fetchone(
            "SELECT * FROM prompts WHERE id = ? AND user_id = ?", (prompt_id, user_id)
        )

    async def find_prompt_by_title(self, user_id: str, title: str) -> Record | None:
        return await self._fetchone(
            """
            SELECT * FROM prompts
            WHERE user_id = ? AND lower(title) = lower(?)
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (user_id, title),
        )

    async def update_prompt(
        self,
        prompt_id: str,
        user_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
    ) -> Record | None:
        assignments: list[str] = []
        params: list[Any] = []
        if title is not None:
            assignments.append("title = ?")
            params.append(title)
        if content is not None:
            assignments.append("content = ?")
            params.append(content)
        assignments.append("updated_at = ?")
        params.append(_to_db_timestamp(_utcnow()))
        params.extend([prompt_id, user_id])
        updated = await self._execute(
            f"UPDATE prompts SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
            tuple(params),
        )
        if not updated:
            return None
        return await self.get_prompt(prompt_id, user_id)

    async def delete_prompt(self, prompt_id: str, user_id: str) -> bool:
        deleted = await self._execute(
            "DELETE FROM prompts WHERE id = ? AND user_id = ?", (prompt_id, user_id)
        )
        return deleted > 0

    async def delete_all_prompts(self, user_id: str) -> int:
        return await self._execute("DELETE FROM prompts WHERE user_id = ?", (user_id,))

    # Password reset --------------------------------------------------------

    async def replace_reset_token(
        self, user_id: str, token: str, expires_at: datetime
    ) -> None:
        """Drop any outstanding tokens for the user and store a new one."""

        assert self._connection is not None
        await self._connection.execute(
            "DELETE FROM password_reset_tokens WHERE user_id = ?", (user_id,)
        )
        await self._connection.execute(
            """
            INSERT INTO password_reset_tokens(id, user_id, token, expires_at, used, created_at)
            VALUES (?, ?, ?, ?, 0, ?)
            """,
            (
                _new_id(),
                user_id,
                token,
                _to_db_timestamp(expires_at),
                _to_db_timestamp(_utcnow()),
            ),
        )
        await self._connection.commit()

    async def get_reset_token(self, token: str) -> Record | None:
        record = await self._fetchone(
            "SELECT * FROM password_reset_tokens WHERE token = ?", (token,)
        )
        if record is not None:
            record["used"] = bool(record["used"])
        return record

    async def delete_reset_token(self, token_id: str) -> None:
        await self._execute("DELETE FROM password_reset_tokens WHERE id = ?", (token_id,))

    async def complete_password_reset(
        self, token_id: str, user_id: str, password_hash: str
    ) -> None:
        """Update the password and consume the token in a single transaction."""

        assert self._connection is not None
        now = _to_db_timestamp(_utcnow())
        try:
            await self._connection.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (password_hash, now, user_id),
            )
            await self._connection.execute(
                "UPDATE password_reset_tokens SET used = 1 WHERE id = ?", (token_id,)
            )
            await self._connection.execute(
                "DELETE FROM auth_sessions WHERE user_id = ?", (user_id,)
            )
        except Exception:
            await self._connection.rollback()
            raise
        await self._connection.commit()


__all__ = ["ChatRepository", "parse_db_timestamp"]
