"""Build metadata database backed by SQLite.

Build library adapters record one row per index they produce. The same
image can accumulate several rows (a retried invocation building again into
the same database), so readers query every matching record and decide which
one is authoritative.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path

from soci_index_builder.core.errors import StorageError
from soci_index_builder.models.oci import IndexDescriptor, IndexRecord


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_INDEX_RECORDS = """
CREATE TABLE IF NOT EXISTS index_records (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    digest            TEXT NOT NULL,
    media_type        TEXT NOT NULL,
    size              INTEGER NOT NULL,
    artifact_type     TEXT NOT NULL DEFAULT '',
    annotations_json  TEXT NOT NULL DEFAULT '{}',
    image_digest      TEXT NOT NULL,
    platform          TEXT NOT NULL,
    manifest_type     TEXT NOT NULL DEFAULT 'v1',
    created_at        TEXT NOT NULL
);
"""

_CREATE_IDX_IMAGE = """
CREATE INDEX IF NOT EXISTS idx_image_platform ON index_records(image_digest, platform);
"""


class ArtifactsDb:
    """SQLite store of ``IndexRecord`` rows.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_schema()
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"cannot open artifacts database {self._db_path}: {exc}") from exc

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._db_path), check_same_thread=False)

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_INDEX_RECORDS)
            conn.execute(_CREATE_IDX_IMAGE)
            conn.commit()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def add(self, record: IndexRecord) -> IndexRecord:
        """Persist *record* and return it."""
        descriptor = record.descriptor
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO index_records
                    (digest, media_type, size, artifact_type, annotations_json,
                     image_digest, platform, manifest_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    descriptor.digest,
                    descriptor.media_type,
                    descriptor.size,
                    descriptor.artifact_type or "",
                    json.dumps(descriptor.annotations or {}),
                    record.image_digest,
                    record.platform,
                    record.manifest_type,
                    record.created_at.isoformat(),
                ),
            )
            conn.commit()
        return record

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def find(self, image_digest: str, platforms: list[str]) -> list[IndexRecord]:
        """Return every record for *image_digest* on any of *platforms*.

        Rows come back in insertion order; callers sort by ``created_at``.
        """
        if not platforms:
            return []
        placeholders = ",".join("?" for _ in platforms)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT digest, media_type, size, artifact_type, annotations_json, "
                f"image_digest, platform, manifest_type, created_at "
                f"FROM index_records WHERE image_digest = ? AND platform IN ({placeholders}) "
                f"ORDER BY id ASC",
                (image_digest, *platforms),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM index_records").fetchone()
        return row[0] if row else 0

    @staticmethod
    def _row_to_record(row: tuple) -> IndexRecord:
        (digest, media_type, size, artifact_type, annotations_json,
         image_digest, platform, manifest_type, created_at) = row
        annotations = json.loads(annotations_json) or None
        return IndexRecord(
            descriptor=IndexDescriptor(
                media_type=media_type,
                digest=digest,
                size=size,
                artifact_type=artifact_type or None,
                annotations=annotations,
            ),
            image_digest=image_digest,
            platform=platform,
            manifest_type=manifest_type,
            created_at=datetime.fromisoformat(created_at),
        )
