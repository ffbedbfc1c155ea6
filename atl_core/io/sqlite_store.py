"""
SQLite-backed DataStore.

Schema lives in schema.sql next to this module and is applied on open.
Identifier sequences are rows of the id_sequences table; each allocation is
an UPDATE + SELECT inside one write transaction, so concurrent processes
sharing the database file cannot hand out the same identifier.
"""

import os
import sqlite3
import logging
import threading
from typing import Iterable, List, Optional

from atl_core.proto.observation import AnchorNode, Observation
from atl_core.proto.position_estimate import PositionEstimate, ContributingLink
from atl_core.io.store import (
    DataStore,
    PersistenceError,
    RetrievalError,
    seed_from_max,
)

logger = logging.getLogger(__name__)

ESTIMATE_SEQUENCE = "position_estimates"
LINK_SEQUENCE = "contributing_links"


def get_connection(db_path: str) -> sqlite3.Connection:
    """
    Get a SQLite connection with foreign-keys enabled
    and rows returned as sqlite3.Row.
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_db(db_path: str) -> sqlite3.Connection:
    """
    Initialize the database by running the DDL in schema.sql,
    then return a live connection.
    """
    conn = get_connection(db_path)
    schema_path = os.path.join(os.path.dirname(__file__), "schema.sql")
    logger.info("Initializing DB schema: %s", schema_path)
    with open(schema_path, "r") as f:
        conn.executescript(f.read())
    conn.commit()
    return conn


class SQLiteDataStore(DataStore):
    """
    DataStore over a SQLite database file.

    Usage:
        store = SQLiteDataStore("atl.db")
        assembler = create_default_assembler(store)
        assembler.run()
        store.close()
    """

    def __init__(self, db_path: str):
        """
        Open (and migrate) the database and seed the identifier sequences.

        Raises:
            RetrievalError: If the database cannot be opened
        """
        self.db_path = db_path
        try:
            self.conn = init_db(db_path)
        except (sqlite3.Error, OSError) as e:
            raise RetrievalError(f"cannot open database {db_path}: {e}") from e
        self._lock = threading.Lock()

        self._seed_sequence(ESTIMATE_SEQUENCE, "position_estimates")
        self._seed_sequence(LINK_SEQUENCE, "contributing_links")

    def close(self):
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------

    def _read_max_id(self, table: str) -> Optional[int]:
        try:
            row = self.conn.execute(f"SELECT MAX(id) AS max_id FROM {table}").fetchone()
        except sqlite3.Error as e:
            raise RetrievalError(str(e)) from e
        return row["max_id"]

    def _seed_sequence(self, name: str, table: str):
        seed = seed_from_max(name, lambda: self._read_max_id(table))
        with self.conn:
            # Never move an existing sequence backwards
            self.conn.execute(
                """
                INSERT INTO id_sequences (name, value) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET value = MAX(value, excluded.value)
                """,
                (name, seed),
            )

    def _allocate(self, name: str) -> int:
        with self._lock:
            try:
                with self.conn:
                    # Take the write lock before reading the sequence row
                    self.conn.execute("BEGIN IMMEDIATE")
                    self.conn.execute(
                        "UPDATE id_sequences SET value = value + 1 WHERE name = ?",
                        (name,),
                    )
                    row = self.conn.execute(
                        "SELECT value FROM id_sequences WHERE name = ?",
                        (name,),
                    ).fetchone()
            except sqlite3.Error as e:
                raise PersistenceError(f"cannot allocate {name} id: {e}") from e
        return row["value"]

    def next_position_estimate_id(self) -> int:
        return self._allocate(ESTIMATE_SEQUENCE)

    def next_link_id(self) -> int:
        return self._allocate(LINK_SEQUENCE)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_tag_ids(self) -> List[str]:
        try:
            rows = self.conn.execute("SELECT id FROM tags ORDER BY id").fetchall()
        except sqlite3.Error as e:
            raise RetrievalError(f"cannot list tags: {e}") from e
        return [row["id"] for row in rows]

    def list_anchor_nodes(self) -> List[AnchorNode]:
        try:
            rows = self.conn.execute(
                "SELECT id, latitude, longitude FROM anchor_nodes ORDER BY id"
            ).fetchall()
        except sqlite3.Error as e:
            raise RetrievalError(f"cannot list anchor nodes: {e}") from e
        return [
            AnchorNode(anchor_id=row["id"], latitude=row["latitude"], longitude=row["longitude"])
            for row in rows
        ]

    def latest_computed_timestamp(self) -> Optional[float]:
        try:
            row = self.conn.execute(
                "SELECT MAX(timestamp) AS latest FROM position_estimates"
            ).fetchone()
        except sqlite3.Error as e:
            raise RetrievalError(f"cannot read latest estimate timestamp: {e}") from e
        return row["latest"]

    def fetch_observations(self, tag_id: str, since: Optional[float]) -> List[Observation]:
        query = "SELECT id, tag_id, anchor_id, timestamp, rssi FROM observations WHERE tag_id = ?"
        params: list = [tag_id]
        if since is not None:
            query += " AND timestamp > ?"
            params.append(since)
        query += " ORDER BY timestamp ASC, id ASC"

        try:
            rows = self.conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise RetrievalError(f"cannot fetch observations for tag {tag_id}: {e}") from e

        return [
            Observation(
                observation_id=row["id"],
                tag_id=row["tag_id"],
                anchor_id=row["anchor_id"],
                timestamp=row["timestamp"],
                rssi=row["rssi"],
            )
            for row in rows
        ]

    def links_for(self, estimate_id: int) -> List[ContributingLink]:
        """Links of one estimate, in allocation order."""
        rows = self.conn.execute(
            """
            SELECT id, estimate_id, observation_id, timestamp
            FROM contributing_links WHERE estimate_id = ? ORDER BY id
            """,
            (estimate_id,),
        ).fetchall()
        return [
            ContributingLink(
                link_id=row["id"],
                estimate_id=row["estimate_id"],
                observation_id=row["observation_id"],
                timestamp=row["timestamp"],
            )
            for row in rows
        ]

    def count_estimates(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM position_estimates").fetchone()[0]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def persist_position_estimate(self, estimate: PositionEstimate) -> None:
        if estimate.estimate_id is None:
            raise PersistenceError("estimate has no identifier")
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO position_estimates
                      (id, tag_id, timestamp, latitude, longitude, height_m, depth_m,
                       status, residual_rms, num_anchors_used, iterations)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        estimate.estimate_id,
                        estimate.tag_id,
                        estimate.timestamp,
                        estimate.latitude,
                        estimate.longitude,
                        estimate.height_m,
                        estimate.depth_m,
                        estimate.status.name,
                        estimate.residual_rms,
                        estimate.num_anchors_used,
                        estimate.iterations,
                    ),
                )
        except sqlite3.Error as e:
            raise PersistenceError(
                f"cannot persist estimate {estimate.estimate_id}: {e}"
            ) from e

    def persist_contributing_links(self, links: List[ContributingLink]) -> None:
        try:
            with self.conn:
                self.conn.executemany(
                    """
                    INSERT INTO contributing_links
                      (id, estimate_id, observation_id, timestamp)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        (l.link_id, l.estimate_id, l.observation_id, l.timestamp)
                        for l in links
                    ],
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot persist {len(links)} links: {e}") from e

    # ------------------------------------------------------------------
    # Ingestion helpers
    # ------------------------------------------------------------------

    def add_anchor_nodes(self, anchors: Iterable[AnchorNode]) -> None:
        """Insert or update anchor nodes."""
        with self.conn:
            self.conn.executemany(
                """
                INSERT INTO anchor_nodes (id, latitude, longitude) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  latitude  = excluded.latitude,
                  longitude = excluded.longitude
                """,
                [(a.anchor_id, a.latitude, a.longitude) for a in anchors],
            )

    def add_observations(self, observations: Iterable[Observation]) -> None:
        """Insert observations, registering their tags."""
        observations = list(observations)
        with self.conn:
            self.conn.executemany(
                "INSERT OR IGNORE INTO tags (id) VALUES (?)",
                [(tag_id,) for tag_id in sorted({o.tag_id for o in observations})],
            )
            self.conn.executemany(
                """
                INSERT INTO observations (id, tag_id, anchor_id, timestamp, rssi)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (o.observation_id, o.tag_id, o.anchor_id, o.timestamp, o.rssi)
                    for o in observations
                ],
            )
