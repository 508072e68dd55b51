"""SQLite-based persistent task storage for the generation API.

Holds generation tasks and their ordered outputs so that background
generations survive the request that started them and can be polled.
Uses aiosqlite for async database operations.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from models.generation import GenerationOutput, GenerationTask, TaskStatus
from utils.config import load_config

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = ".imagegen/tasks.db"

NON_TERMINAL_STATUSES = (TaskStatus.QUEUED.value, TaskStatus.RUNNING.value)


class TaskStoreError(Exception):
    """Error from the task store."""

    pass


class TaskNotFoundError(TaskStoreError):
    """No task with the given id."""

    pass


class TaskTransitionError(TaskStoreError):
    """A terminal task was asked to change state again."""

    pass


class TaskStore:
    """Async SQLite task storage.

    Every write commits immediately; SQLite serializes concurrent
    writers, so callers need no extra locking.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize task store with database path.

        Args:
            db_path: Path to SQLite database file. Parent directory
                     will be created if it doesn't exist.
        """
        self.db_path = Path(db_path)
        self.db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the database connection and create the schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db = await aiosqlite.connect(str(self.db_path))
        self.db.row_factory = aiosqlite.Row

        # WAL lets status polling read while a generation writes
        await self.db.execute("PRAGMA journal_mode=WAL")
        await self.db.execute("PRAGMA foreign_keys=ON")

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS generation_tasks (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL
                    CHECK (status IN ('queued', 'running', 'succeeded', 'failed')),
                style_id TEXT,
                prompt_id TEXT,
                prompt TEXT,
                params JSON,
                output_text TEXT,
                error TEXT,
                created_at TEXT NOT NULL,
                completed_at TEXT
            )
        """)

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS generation_outputs (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL REFERENCES generation_tasks(id) ON DELETE CASCADE,
                "index" INTEGER NOT NULL,
                storage_bucket TEXT NOT NULL,
                storage_path TEXT NOT NULL,
                mime TEXT,
                size INTEGER,
                width INTEGER,
                height INTEGER,
                metadata JSON,
                created_at TEXT NOT NULL,
                UNIQUE (task_id, "index")
            )
        """)

        await self.db.execute("""
            CREATE INDEX IF NOT EXISTS idx_generation_outputs_task
            ON generation_outputs (task_id)
        """)

        # Catalog tables, read through CatalogStore
        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS image_styles (
                id TEXT PRIMARY KEY,
                slug TEXT UNIQUE NOT NULL,
                name TEXT NOT NULL,
                base_prompt TEXT,
                active INTEGER NOT NULL DEFAULT 1
            )
        """)

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS prompt_presets (
                id TEXT PRIMARY KEY,
                style_id TEXT REFERENCES image_styles(id) ON DELETE SET NULL,
                slug TEXT UNIQUE,
                name TEXT NOT NULL,
                prompt_template TEXT NOT NULL,
                active INTEGER NOT NULL DEFAULT 1
            )
        """)

        await self.db.commit()
        logger.info(f"Task store connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self.db:
            await self.db.close()
            self.db = None
            logger.info("Task store connection closed")

    def _require_db(self) -> aiosqlite.Connection:
        if self.db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self.db

    async def insert_task(
        self,
        status: TaskStatus = TaskStatus.RUNNING,
        prompt: str = "",
        params: dict[str, Any] | None = None,
        style_id: str | None = None,
        prompt_id: str | None = None,
    ) -> GenerationTask:
        """Create a task with a generated id.

        Args:
            status: Initial status (non-terminal)
            prompt: Compiled instruction text
            params: Structured request metadata
            style_id: Catalog style reference
            prompt_id: Catalog prompt preset reference

        Returns:
            The created task
        """
        db = self._require_db()
        if status.is_terminal:
            raise TaskTransitionError(f"Cannot create a task in terminal state {status.value}")

        task = GenerationTask(
            id=str(uuid.uuid4()),
            status=status,
            prompt=prompt,
            params=dict(params or {}),
            style_id=style_id,
            prompt_id=prompt_id,
        )

        await db.execute(
            "INSERT INTO generation_tasks "
            "(id, status, style_id, prompt_id, prompt, params, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                task.id,
                task.status.value,
                task.style_id,
                task.prompt_id,
                task.prompt,
                json.dumps(task.params, default=str),
                task.created_at.isoformat(),
            ),
        )
        await db.commit()

        logger.info(f"Created task {task.id} ({task.status.value})")
        return task

    async def get_task(self, task_id: str) -> GenerationTask | None:
        """Get a task by ID, or None if not found."""
        db = self._require_db()

        async with db.execute(
            "SELECT * FROM generation_tasks WHERE id = ?", (task_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._row_to_task(row)

    async def update_task(
        self,
        task_id: str,
        params: dict[str, Any] | None = None,
        prompt: str | None = None,
    ) -> GenerationTask:
        """Apply a partial, non-state-changing patch to a task.

        Params are merged into the existing params, never replaced.

        Raises:
            TaskNotFoundError: If no such task exists
        """
        db = self._require_db()

        current = await self.get_task(task_id)
        if current is None:
            raise TaskNotFoundError(f"Task {task_id} not found")

        merged = dict(current.params)
        if params:
            merged.update(params)
        new_prompt = prompt if prompt is not None else current.prompt

        await db.execute(
            "UPDATE generation_tasks SET params = ?, prompt = ? WHERE id = ?",
            (json.dumps(merged, default=str), new_prompt, task_id),
        )
        await db.commit()

        logger.debug(f"Updated task {task_id}")
        return await self.get_task(task_id)

    async def finalize_task(
        self,
        task_id: str,
        status: TaskStatus,
        output_text: str | None = None,
        error: str | None = None,
    ) -> GenerationTask:
        """Move a task to its terminal state and stamp completed_at.

        The transition happens at most once; the WHERE clause makes the
        check and the write a single statement.

        Raises:
            TaskNotFoundError: If no such task exists
            TaskTransitionError: If status is not terminal or the task
                already finished
        """
        db = self._require_db()

        if not status.is_terminal:
            raise TaskTransitionError(f"{status.value} is not a terminal state")

        if status == TaskStatus.SUCCEEDED:
            error = None
        else:
            output_text = None

        cursor = await db.execute(
            "UPDATE generation_tasks SET status = ?, output_text = ?, error = ?, completed_at = ? "
            "WHERE id = ? AND status IN (?, ?)",
            (
                status.value,
                output_text,
                error,
                datetime.now().isoformat(),
                task_id,
                *NON_TERMINAL_STATUSES,
            ),
        )
        await db.commit()

        if cursor.rowcount == 0:
            current = await self.get_task(task_id)
            if current is None:
                raise TaskNotFoundError(f"Task {task_id} not found")
            raise TaskTransitionError(
                f"Task {task_id} already {current.status.value}; cannot move to {status.value}"
            )

        logger.info(f"Task {task_id} finalized: {status.value}")
        return await self.get_task(task_id)

    async def insert_output(
        self,
        task_id: str,
        index: int,
        storage_bucket: str,
        storage_path: str,
        mime: str | None = None,
        size: int | None = None,
        width: int | None = None,
        height: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GenerationOutput:
        """Record one produced output of a task."""
        db = self._require_db()

        output = GenerationOutput(
            id=str(uuid.uuid4()),
            task_id=task_id,
            index=index,
            storage_bucket=storage_bucket,
            storage_path=storage_path,
            mime=mime,
            size=size,
            width=width,
            height=height,
            metadata=dict(metadata or {}),
        )

        await db.execute(
            "INSERT INTO generation_outputs "
            '(id, task_id, "index", storage_bucket, storage_path, mime, size, width, height, metadata, created_at) '
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                output.id,
                output.task_id,
                output.index,
                output.storage_bucket,
                output.storage_path,
                output.mime,
                output.size,
                output.width,
                output.height,
                json.dumps(output.metadata, default=str),
                output.created_at.isoformat(),
            ),
        )
        await db.commit()

        logger.debug(f"Recorded output {index} for task {task_id}")
        return output

    async def list_outputs(self, task_id: str) -> list[GenerationOutput]:
        """List a task's outputs in index order."""
        db = self._require_db()

        async with db.execute(
            'SELECT * FROM generation_outputs WHERE task_id = ? ORDER BY "index" ASC',
            (task_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_output(row) for row in rows]

    async def get_primary_output(self, task_id: str) -> GenerationOutput | None:
        """Get the lowest-index output of a task, or None if it has none."""
        db = self._require_db()

        async with db.execute(
            'SELECT * FROM generation_outputs WHERE task_id = ? ORDER BY "index" ASC LIMIT 1',
            (task_id,),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_output(row) if row is not None else None

    @staticmethod
    def _load_json(value: str | None, row_id: str) -> dict[str, Any]:
        if not value:
            return {}
        try:
            data = json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse JSON column for row {row_id}")
            return {}
        return data if isinstance(data, dict) else {}

    def _row_to_task(self, row: aiosqlite.Row) -> GenerationTask:
        completed_at = row["completed_at"]
        return GenerationTask(
            id=row["id"],
            status=TaskStatus(row["status"]),
            prompt=row["prompt"] or "",
            params=self._load_json(row["params"], row["id"]),
            style_id=row["style_id"],
            prompt_id=row["prompt_id"],
            output_text=row["output_text"],
            error=row["error"],
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
        )

    def _row_to_output(self, row: aiosqlite.Row) -> GenerationOutput:
        return GenerationOutput(
            id=row["id"],
            task_id=row["task_id"],
            index=row["index"],
            storage_bucket=row["storage_bucket"],
            storage_path=row["storage_path"],
            mime=row["mime"],
            size=row["size"],
            width=row["width"],
            height=row["height"],
            metadata=self._load_json(row["metadata"], row["id"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


# Module-level singleton
_task_store: TaskStore | None = None
# Held across connect() so concurrent first callers share one connection
_task_store_lock = asyncio.Lock()


async def get_task_store() -> TaskStore:
    """Get or create the global TaskStore singleton.

    Creates the database connection if it doesn't exist.
    """
    global _task_store
    async with _task_store_lock:
        if _task_store is None:
            store = TaskStore(load_config()["task_db_path"])
            await store.connect()
            _task_store = store
    return _task_store


async def close_task_store() -> None:
    """Close the global TaskStore connection.

    Call this during application shutdown to properly close the database.
    """
    global _task_store
    async with _task_store_lock:
        if _task_store is not None:
            await _task_store.close()
            _task_store = None
