"""
File mapping repository.

Persists FileMapping rows: which owner a file belongs to and where its
replicas live. The bytes are never stored here.

Ordering rules for lookups by owner:
- without an identifier: the earliest created mapping (the original upload)
- with an identifier: the most recently created match
"""

import itertools
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from ....core.storage.errors import ActiveRecordObjectInvalid
from ....core.storage.models import FileMapping, ObjectId

logger = logging.getLogger(__name__)


CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS file_mappings (
        id NUMBER PRIMARY KEY,
        object_name VARCHAR NOT NULL,
        object_identifier VARCHAR NOT NULL,
        identifier VARCHAR,
        nodes VARCHAR NOT NULL,
        file_path VARCHAR NOT NULL,
        access_level VARCHAR NOT NULL,
        created_at TIMESTAMP_TZ NOT NULL,
        updated_at TIMESTAMP_TZ NOT NULL
    )
"""

CREATE_SEQUENCE_SQL = "CREATE SEQUENCE IF NOT EXISTS file_mappings_seq"

_COLUMNS = """
    id, object_name, object_identifier, identifier, nodes,
    file_path, access_level, created_at, updated_at
"""


def _restore_object_identifier(value: str) -> ObjectId:
    """Identifiers are stored as text; numeric ones come back as ints."""
    return int(value) if value.isdigit() else value


def _validate(mapping: FileMapping) -> None:
    errors = mapping.validation_errors()
    if errors:
        raise ActiveRecordObjectInvalid("; ".join(errors))


class SnowflakeMappingRepository:
    """
    FileMapping persistence in Snowflake.

    Ids come from a sequence because Snowflake has no RETURNING clause.
    """

    def __init__(self, connection) -> None:
        """
        Args:
            connection: Snowflake connection (or anything DB-API shaped)
        """
        self._conn = connection

    def ensure_schema(self) -> None:
        cursor = self._conn.cursor()
        try:
            cursor.execute(CREATE_SEQUENCE_SQL)
            cursor.execute(CREATE_TABLE_SQL)
            self._conn.commit()
        finally:
            cursor.close()

    def find_mapping(
        self,
        object_name: str,
        object_identifier: ObjectId,
        identifier: Optional[str] = None,
    ) -> Optional[FileMapping]:
        cursor = self._conn.cursor()

        try:
            if identifier is None:
                cursor.execute(f"""
                    SELECT {_COLUMNS}
                    FROM file_mappings
                    WHERE object_name = %s
                      AND object_identifier = %s
                    ORDER BY created_at ASC, id ASC
                    LIMIT 1
                """, (object_name, str(object_identifier)))
            else:
                cursor.execute(f"""
                    SELECT {_COLUMNS}
                    FROM file_mappings
                    WHERE object_name = %s
                      AND object_identifier = %s
                      AND identifier = %s
                    ORDER BY created_at DESC, id DESC
                    LIMIT 1
                """, (object_name, str(object_identifier), identifier))

            row = cursor.fetchone()
            return self._row_to_mapping(row) if row else None

        finally:
            cursor.close()

    def get_mapping(self, mapping_id: int) -> Optional[FileMapping]:
        cursor = self._conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {_COLUMNS}
                FROM file_mappings
                WHERE id = %s
            """, (mapping_id,))

            row = cursor.fetchone()
            return self._row_to_mapping(row) if row else None

        finally:
            cursor.close()

    def save_mapping(self, mapping: FileMapping) -> FileMapping:
        """Insert a new mapping or update an existing one (by id)."""
        _validate(mapping)

        now = datetime.now(timezone.utc)
        cursor = self._conn.cursor()

        try:
            if mapping.id is None:
                cursor.execute("SELECT file_mappings_seq.NEXTVAL")
                mapping_id = cursor.fetchone()[0]

                cursor.execute("""
                    INSERT INTO file_mappings (
                        id, object_name, object_identifier, identifier, nodes,
                        file_path, access_level, created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """, (
                    mapping_id,
                    mapping.object_name,
                    str(mapping.object_identifier),
                    mapping.identifier,
                    json.dumps(mapping.nodes),
                    mapping.file_path,
                    mapping.access_level,
                    now,
                    now,
                ))

                mapping.id = mapping_id
                mapping.created_at = now
            else:
                cursor.execute("""
                    UPDATE file_mappings
                    SET nodes = %s,
                        file_path = %s,
                        access_level = %s,
                        identifier = %s,
                        updated_at = %s
                    WHERE id = %s
                """, (
                    json.dumps(mapping.nodes),
                    mapping.file_path,
                    mapping.access_level,
                    mapping.identifier,
                    now,
                    mapping.id,
                ))

            mapping.updated_at = now
            self._conn.commit()

        except Exception as e:
            logger.error(
                "Failed to save file mapping",
                extra={"object_name": mapping.object_name, "error": str(e)}
            )
            raise
        finally:
            cursor.close()

        logger.debug("Saved file mapping", extra={"mapping_id": mapping.id})
        return mapping

    def delete_mapping(self, mapping: FileMapping) -> None:
        if mapping.id is None:
            return

        cursor = self._conn.cursor()
        try:
            cursor.execute("DELETE FROM file_mappings WHERE id = %s", (mapping.id,))
            self._conn.commit()
        finally:
            cursor.close()

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _row_to_mapping(self, row: tuple) -> FileMapping:
        (mapping_id, object_name, object_identifier, identifier, nodes,
         file_path, access_level, created_at, updated_at) = row

        return FileMapping(
            id=mapping_id,
            object_name=object_name,
            object_identifier=_restore_object_identifier(str(object_identifier)),
            identifier=identifier,
            nodes=json.loads(nodes) if isinstance(nodes, str) else list(nodes or []),
            file_path=file_path,
            access_level=access_level,
            created_at=created_at,
            updated_at=updated_at,
        )


class InMemoryMappingRepository:
    """
    FileMapping persistence in a dict, for local development and tests.

    Follows the same ordering rules as the Snowflake repository; creation
    order is tracked by id, so equal timestamps are not an issue.
    """

    def __init__(self) -> None:
        self._rows: dict[int, FileMapping] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def find_mapping(
        self,
        object_name: str,
        object_identifier: ObjectId,
        identifier: Optional[str] = None,
    ) -> Optional[FileMapping]:
        with self._lock:
            matches = [
                row for row in self._rows.values()
                if row.object_name == object_name
                and str(row.object_identifier) == str(object_identifier)
                and (identifier is None or row.identifier == identifier)
            ]

        if not matches:
            return None

        matches.sort(key=lambda row: row.id)
        return matches[0] if identifier is None else matches[-1]

    def get_mapping(self, mapping_id: int) -> Optional[FileMapping]:
        with self._lock:
            return self._rows.get(mapping_id)

    def save_mapping(self, mapping: FileMapping) -> FileMapping:
        _validate(mapping)

        now = datetime.now(timezone.utc)
        with self._lock:
            if mapping.id is None:
                mapping.id = next(self._ids)
                mapping.created_at = now
            mapping.updated_at = now
            self._rows[mapping.id] = mapping

        return mapping

    def delete_mapping(self, mapping: FileMapping) -> None:
        with self._lock:
            self._rows.pop(mapping.id, None)

    def all(self) -> list[FileMapping]:
        with self._lock:
            return sorted(self._rows.values(), key=lambda row: row.id)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()
