"""
SQLite persistence for built wallet trees.

A build is written once, keyed by its ``BuildResult.build_id``, and never
updated: the layers are stored as an opaque blob (``MerkleTree.to_blob``)
next to the hseed, the build parameters and the inner trees.  Builds that
share a main root (same seed and schedule, different inner trees) are kept
apart.  Wallet addresses point at their current build, so extending a wallet
inserts a new build and moves the pointer.

Usage:
    store = TreeStore("data/otpwallet.db")
    build_id = store.save_build(result)
    store.set_wallet_build("0xabc...", build_id)
    ...
    result = store.load_wallet("0xabc...")
"""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from otpwallet_core.errors import ProofMismatchError
from otpwallet_core.hashing import from_hexstring, hexstring, normalize_address
from otpwallet_core.merkle import BuildResult, InnerTree, InnerTreeKind, MerkleTree

logger = logging.getLogger("otpwallet.storage")


class TreeStore:
    """Thin SQLite wrapper for persisting built trees."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/otpwallet.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Tree store opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS trees (
                build_id       TEXT PRIMARY KEY,
                root           TEXT NOT NULL,
                blob           BLOB NOT NULL,
                hseed          BLOB NOT NULL,
                effective_time INTEGER NOT NULL,
                duration       INTEGER NOT NULL,
                double_otp     INTEGER NOT NULL DEFAULT 0,
                randomness     INTEGER,
                multi_code     INTEGER NOT NULL DEFAULT 0,
                created        REAL NOT NULL
            )
        """)
        c.execute("CREATE INDEX IF NOT EXISTS idx_trees_root ON trees(root)")
        c.execute("""
            CREATE TABLE IF NOT EXISTS inner_trees (
                build_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                kind     INTEGER NOT NULL,
                "offset" INTEGER NOT NULL DEFAULT 0,
                blob     BLOB NOT NULL,
                PRIMARY KEY (build_id, position)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS wallets (
                address  TEXT PRIMARY KEY,
                build_id TEXT NOT NULL,
                updated  REAL NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Tree store schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION})"
            )

    # ── trees ────────────────────────────────────────────────────

    def save_build(self, result: BuildResult) -> str:
        """
        Insert a build and return its id.  Saving the same build again is a
        no-op; a stored row under that id with a different root raises
        ``ProofMismatchError``.
        """
        build_id = hexstring(result.build_id)
        root = hexstring(result.root)
        row = self._conn.execute(
            "SELECT root FROM trees WHERE build_id = ?", (build_id,)
        ).fetchone()
        if row is not None:
            if row["root"] != root:
                raise ProofMismatchError(
                    f"Build {build_id} is stored with root {row['root']}, not {root}"
                )
            logger.debug(f"Build {build_id} already stored")
            return build_id
        with self._conn:
            self._conn.execute(
                """INSERT INTO trees
                   (build_id, root, blob, hseed, effective_time, duration,
                    double_otp, randomness, multi_code, created)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (build_id, root, result.tree.to_blob(), result.hseed,
                 result.effective_time, result.duration, int(result.double_otp),
                 result.randomness, result.multi_code, time.time()),
            )
            self._conn.executemany(
                """INSERT INTO inner_trees (build_id, position, kind, "offset", blob)
                   VALUES (?, ?, ?, ?, ?)""",
                [(build_id, i, int(t.kind), t.offset, t.tree.to_blob())
                 for i, t in enumerate(result.inner_trees)],
            )
        logger.info(
            f"Stored build {build_id} root={root} ({len(result.inner_trees)} inner trees)"
        )
        return build_id

    def has_build(self, build_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM trees WHERE build_id = ?", (build_id.lower(),)
        ).fetchone()
        return row is not None

    def find_builds(self, root: str) -> list[str]:
        """Ids of every stored build whose main tree has ``root``, oldest first."""
        rows = self._conn.execute(
            "SELECT build_id FROM trees WHERE root = ? ORDER BY created, build_id",
            (root.lower(),),
        ).fetchall()
        return [r["build_id"] for r in rows]

    def load_build(self, build_id: str, verify: bool = True) -> BuildResult | None:
        """
        Rebuild a stored ``BuildResult``.  With ``verify`` every stored layer
        is rehashed and the rebuilt result must reproduce ``build_id``; a
        corrupt blob or row raises ``ProofMismatchError``.
        """
        build_id = build_id.lower()
        row = self._conn.execute(
            "SELECT * FROM trees WHERE build_id = ?", (build_id,)
        ).fetchone()
        if row is None:
            return None
        tree = MerkleTree.from_blob(row["blob"], verify=verify)
        inner_rows = self._conn.execute(
            'SELECT kind, "offset", blob FROM inner_trees WHERE build_id = ? ORDER BY position',
            (build_id,),
        ).fetchall()
        inner = tuple(
            InnerTree(InnerTreeKind(r["kind"]), MerkleTree.from_blob(r["blob"], verify=verify),
                      r["offset"])
            for r in inner_rows
        )
        result = BuildResult(
            tree=tree,
            hseed=bytes(row["hseed"]),
            effective_time=row["effective_time"],
            duration=row["duration"],
            inner_trees=inner,
            double_otp=bool(row["double_otp"]),
            randomness=row["randomness"],
            multi_code=row["multi_code"],
        )
        if verify and result.build_id != from_hexstring(build_id):
            logger.error(f"Stored build {build_id} rebuilds as {hexstring(result.build_id)}")
            raise ProofMismatchError(f"Stored build does not match key {build_id}")
        return result

    def list_trees(self) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT build_id, root, effective_time, duration, double_otp, randomness, "
            "multi_code, created FROM trees ORDER BY created"
        ).fetchall()
        return [dict(r) for r in rows]

    # ── wallets ──────────────────────────────────────────────────

    def set_wallet_build(self, address: str, build_id: str) -> None:
        if not self.has_build(build_id):
            raise KeyError(f"Build {build_id} not stored")
        self._conn.execute(
            "INSERT OR REPLACE INTO wallets (address, build_id, updated) VALUES (?, ?, ?)",
            (normalize_address(address), build_id.lower(), time.time()),
        )
        self._conn.commit()

    def get_wallet_build(self, address: str) -> str | None:
        row = self._conn.execute(
            "SELECT build_id FROM wallets WHERE address = ?", (normalize_address(address),)
        ).fetchone()
        return row["build_id"] if row else None

    def load_wallet(self, address: str, verify: bool = True) -> BuildResult | None:
        build_id = self.get_wallet_build(address)
        if build_id is None:
            return None
        return self.load_build(build_id, verify=verify)

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
