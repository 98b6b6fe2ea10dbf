import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type

from psycopg2.extras import Json


class BaseRepository:
    def __init__(self, manager, table_name: str, model_class: Optional[Type] = None):
        self.manager = manager
        self.table_name = table_name
        self.model_class = model_class

    @property
    def ph(self) -> str:
        return self.manager.placeholder

    def _to_model(self, row: Dict[str, Any]) -> Any:
        if self.model_class:
            return self.model_class(**row)
        return row

    def _json(self, value: Any) -> Any:
        """Adapt a JSON-able value for the current backend."""
        if value is None:
            return None
        if hasattr(value, "model_dump"):
            value = value.model_dump(mode="json")
        if self.manager.db_type == 'sqlite':
            return json.dumps(value)
        return Json(value)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def _fetch_one(self, query: str, params: tuple = ()) -> Optional[Any]:
        conn = self.manager.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(query, params)
            row = cursor.fetchone()
            return self._to_model(dict(row)) if row else None
        finally:
            conn.close()

    def _fetch_all(self, query: str, params: tuple = ()) -> List[Any]:
        conn = self.manager.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [self._to_model(dict(row)) for row in cursor.fetchall()]
        finally:
            conn.close()

    def _execute(self, query: str, params: tuple = ()) -> int:
        conn = self.manager.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(query, params)
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def get(self, id: Any) -> Optional[Any]:
        return self._fetch_one(
            f"SELECT * FROM {self.table_name} WHERE id = {self.ph}", (id,)
        )

    def get_all(self) -> List[Any]:
        return self._fetch_all(f"SELECT * FROM {self.table_name}")

    def delete(self, id: Any) -> bool:
        return self._execute(
            f"DELETE FROM {self.table_name} WHERE id = {self.ph}", (id,)
        ) > 0
