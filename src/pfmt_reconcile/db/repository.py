from __future__ import annotations

import json
import logging
import threading
from typing import Any, Protocol, runtime_checkable

import psycopg2
from psycopg2.extras import Json

from ..models.project import ProjectEntity

"""Project persistence.

The reconciliation core only needs "load one project by id" and "save one
project". Two implementations:

- InMemoryProjectRepository: mock mode (DISABLE_DB_CONNECT=1 or no database
  reachable); stores JSON round-tripped copies so callers never share state
  with the store.
- PostgresProjectRepository: one row per project in ``projects`` with the
  serialized entity in a JSONB ``data`` column. The first save of a new
  entity assigns the id via ``INSERT ... RETURNING id``. Each save is its own
  transaction (commit on success, rollback on failure).
"""

__all__ = [
    "InMemoryProjectRepository",
    "PostgresProjectRepository",
    "ProjectRepository",
    "RepositoryError",
]

logger = logging.getLogger(__name__)

TABLE_NAME = "projects"

CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    id BIGSERIAL PRIMARY KEY,
    data JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


class RepositoryError(Exception):
    pass


@runtime_checkable
class ProjectRepository(Protocol):
    def load_project_by_id(self, project_id: Any) -> ProjectEntity | None:
        ...

    def save_project(self, entity: ProjectEntity) -> None:
        ...


def _serialize(entity: ProjectEntity) -> dict[str, Any]:
    # id lives in its own column / dict key; the payload is JSON-safe
    data = entity.to_json()
    data.pop("id", None)
    return json.loads(json.dumps(data, default=str))


class InMemoryProjectRepository:
    """Dict-backed repository with integer ids starting at 1."""

    def __init__(self) -> None:
        self._rows: dict[int, dict[str, Any]] = {}
        self._next_id = 1
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._rows

    def load_project_by_id(self, project_id: Any) -> ProjectEntity | None:
        with self._guard:
            data = self._rows.get(project_id)
        if data is None:
            return None
        entity = ProjectEntity.from_json(json.loads(json.dumps(data)))
        entity.id = project_id
        return entity

    def save_project(self, entity: ProjectEntity) -> None:
        data = _serialize(entity)
        with self._guard:
            if entity.id is None:
                entity.id = self._next_id
                self._next_id += 1
            elif isinstance(entity.id, int) and entity.id >= self._next_id:
                self._next_id = entity.id + 1
            self._rows[entity.id] = data
        logger.debug(f"saved project id={entity.id} (memory)")


class PostgresProjectRepository:
    """psycopg2-backed repository over an open cursor.

    The cursor's connection must not be in autocommit mode; save_project()
    commits or rolls back itself.
    """

    def __init__(self, cursor: Any, table: str = TABLE_NAME) -> None:
        self.cursor = cursor
        self.table = table

    def ensure_schema(self) -> None:
        try:
            self.cursor.execute(CREATE_TABLE_SQL.replace(TABLE_NAME, self.table, 1))
            self.cursor.connection.commit()
        except psycopg2.Error as e:
            self.cursor.connection.rollback()
            raise RepositoryError(f"failed creating table {self.table}: {e}") from e

    def load_project_by_id(self, project_id: Any) -> ProjectEntity | None:
        try:
            self.cursor.execute(f"SELECT data FROM {self.table} WHERE id = %s", (project_id,))
            row = self.cursor.fetchone()
        except psycopg2.Error as e:
            self.cursor.connection.rollback()
            raise RepositoryError(f"failed loading project {project_id}: {e}") from e
        if row is None:
            return None
        data = row[0]
        if isinstance(data, str | bytes):
            data = json.loads(data)
        entity = ProjectEntity.from_json(data)
        entity.id = project_id
        return entity

    def save_project(self, entity: ProjectEntity) -> None:
        payload = Json(_serialize(entity))
        try:
            if entity.id is None:
                self.cursor.execute(
                    f"INSERT INTO {self.table} (data) VALUES (%s) RETURNING id", (payload,)
                )
                new_id = self.cursor.fetchone()[0]
            else:
                self.cursor.execute(
                    f"UPDATE {self.table} SET data = %s, updated_at = now() WHERE id = %s",
                    (payload, entity.id),
                )
                if self.cursor.rowcount == 0:
                    self.cursor.execute(
                        f"INSERT INTO {self.table} (id, data) VALUES (%s, %s)", (entity.id, payload)
                    )
                new_id = entity.id
            self.cursor.connection.commit()
        except psycopg2.Error as e:
            self.cursor.connection.rollback()
            raise RepositoryError(f"failed saving project {entity.id}: {e}") from e
        entity.id = new_id
        logger.debug(f"saved project id={entity.id} (postgres)")
