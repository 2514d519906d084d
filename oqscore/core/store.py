"""SQLite persistence for scores, provider telemetry and external snapshots."""

import json
import sqlite3
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from oqscore.core.errors import SnapshotExistsError
from oqscore.core.logger import logger
from oqscore.models.datatypes import (
    Article,
    CronRun,
    ExternalDataSnapshot,
    FundingEvent,
    ModelScore,
    PromptVersion,
    ScoreSnapshot,
    ScoreUpdate,
    Signal,
    UsageEntry,
    empty_pillar_scores,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS scores (
    id TEXT PRIMARY KEY,
    date TEXT NOT NULL UNIQUE,
    score REAL NOT NULL,
    score_technical REAL NOT NULL,
    score_economic REAL NOT NULL,
    delta REAL NOT NULL,
    delta_explanation TEXT,
    analysis TEXT NOT NULL,
    signals TEXT NOT NULL DEFAULT '[]',
    pillar_scores TEXT NOT NULL DEFAULT '{}',
    model_scores TEXT NOT NULL DEFAULT '[]',
    model_agreement TEXT NOT NULL,
    model_spread REAL NOT NULL DEFAULT 0,
    capability_gap TEXT,
    sanity_harness_note TEXT,
    economic_note TEXT,
    labour_note TEXT,
    model_summary TEXT,
    prompt_hash TEXT NOT NULL,
    external_data TEXT,
    is_decay INTEGER NOT NULL DEFAULT 0,
    data_quality_flags TEXT NOT NULL DEFAULT '[]',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    source TEXT NOT NULL,
    pillar TEXT NOT NULL,
    summary TEXT,
    published_at TEXT,
    fetched_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS score_articles (
    score_id TEXT NOT NULL,
    article_id TEXT NOT NULL,
    PRIMARY KEY (score_id, article_id)
);

CREATE TABLE IF NOT EXISTS model_responses (
    id TEXT PRIMARY KEY,
    score_id TEXT NOT NULL,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    raw_response TEXT,
    suggested_delta REAL NOT NULL,
    parsed TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS ai_usage (
    id TEXT PRIMARY KEY,
    score_id TEXT,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    input_tokens INTEGER,
    output_tokens INTEGER,
    total_tokens INTEGER,
    latency_ms INTEGER,
    attempts INTEGER NOT NULL DEFAULT 1,
    status TEXT NOT NULL,
    error TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS prompt_versions (
    hash TEXT PRIMARY KEY,
    prompt_text TEXT NOT NULL,
    first_used TEXT NOT NULL,
    last_used TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS external_data_history (
    id TEXT PRIMARY KEY,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    fetched_at TEXT NOT NULL,
    fetched_date TEXT NOT NULL,
    UNIQUE (key, fetched_date)
);

CREATE TABLE IF NOT EXISTS cron_runs (
    id TEXT PRIMARY KEY,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    fetch_status TEXT NOT NULL DEFAULT 'pending',
    score_status TEXT NOT NULL DEFAULT 'pending',
    error TEXT
);

CREATE TABLE IF NOT EXISTS funding_events (
    id TEXT PRIMARY KEY,
    company TEXT NOT NULL,
    amount TEXT,
    round TEXT,
    source_url TEXT,
    date TEXT,
    UNIQUE (company, amount, date)
);
"""

# Children first: deleting a snapshot must never leave orphans behind.
_SCORE_DEPENDENTS = ("score_articles", "model_responses", "ai_usage")

PROMPT_TEXT_CHARS = 10_000
ARTICLE_TEXT_CHARS = 500


def _new_id() -> str:
    return uuid.uuid4().hex


# ── (de)serialisation ─────────────────────────────────────────────────────────

def signal_from_dict(value: Dict[str, Any]) -> Signal:
    return Signal(
        text=value.get("text", ""),
        direction=value.get("direction", "neutral"),
        source=value.get("source", ""),
        impact=float(value.get("impact", 0)),
        url=value.get("url"),
    )


def model_score_from_dict(value: Dict[str, Any]) -> ModelScore:
    fields = dict(value)
    fields["top_signals"] = [signal_from_dict(s) for s in fields.get("top_signals", [])]
    known = ModelScore.__dataclass_fields__
    return ModelScore(**{k: v for k, v in fields.items() if k in known})


def _loads(raw: Optional[str], default: Any, label: str) -> Any:
    """Decode a JSON column, falling back to ``default`` when it is corrupt."""
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        logger.warning(f"ScoreStore: corrupt JSON in {label}: {exc}")
        return default


def _row_to_snapshot(row: sqlite3.Row) -> ScoreSnapshot:
    label = f"scores[{row['date']}]"
    return ScoreSnapshot(
        id=row["id"],
        date=row["date"],
        score=row["score"],
        score_technical=row["score_technical"],
        score_economic=row["score_economic"],
        delta=row["delta"],
        delta_explanation=row["delta_explanation"],
        analysis=row["analysis"],
        signals=[signal_from_dict(s) for s in _loads(row["signals"], [], label)],
        pillar_scores=_loads(row["pillar_scores"], empty_pillar_scores(), label),
        model_scores=[model_score_from_dict(m) for m in _loads(row["model_scores"], [], label)],
        model_agreement=row["model_agreement"],
        model_spread=row["model_spread"],
        capability_gap=row["capability_gap"],
        sanity_harness_note=row["sanity_harness_note"],
        economic_note=row["economic_note"],
        labour_note=row["labour_note"],
        model_summary=row["model_summary"],
        prompt_hash=row["prompt_hash"],
        external_data=_loads(row["external_data"], None, label),
        is_decay=bool(row["is_decay"]),
        data_quality_flags=_loads(row["data_quality_flags"], [], label),
        created_at=row["created_at"],
    )


def _row_to_article(row: sqlite3.Row) -> Article:
    return Article(
        id=row["id"],
        title=row["title"],
        url=row["url"],
        source=row["source"],
        pillar=row["pillar"],
        summary=row["summary"],
        published_at=row["published_at"],
        fetched_at=row["fetched_at"],
    )


class ScoreStore:
    """SQLite-backed store for the daily index.

    One calendar day holds at most one score row (``UNIQUE(date)``); that
    constraint is what keeps two racing runs from both publishing a score.
    """

    def __init__(self, db_path: str = "output/oqscore.db") -> None:
        """
        Initialize the store, creating tables on first use.

        Args:
            db_path (str): Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a connection to the SQLite database."""
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create all tables if they don't exist."""
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA)

    # ── scores ────────────────────────────────────────────────────────────────

    def get_snapshot(self, date: str) -> Optional[ScoreSnapshot]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM scores WHERE date = ?", (date,)).fetchone()
        return _row_to_snapshot(row) if row else None

    def latest_snapshot(self) -> Optional[ScoreSnapshot]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM scores ORDER BY date DESC LIMIT 1").fetchone()
        return _row_to_snapshot(row) if row else None

    def latest_evidence_snapshot(self) -> Optional[ScoreSnapshot]:
        """Most recent snapshot that was scored from evidence (not decay/no-articles)."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM scores WHERE is_decay = 0 ORDER BY date DESC LIMIT 1"
            ).fetchone()
        return _row_to_snapshot(row) if row else None

    def earliest_snapshot(self) -> Optional[ScoreSnapshot]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM scores ORDER BY date ASC LIMIT 1").fetchone()
        return _row_to_snapshot(row) if row else None

    def history(self, limit: int = 14) -> List[ScoreSnapshot]:
        """Newest-first snapshots."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM scores ORDER BY date DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_snapshot(r) for r in rows]

    def save_snapshot(
        self,
        snapshot: ScoreSnapshot,
        update: Optional[ScoreUpdate] = None,
        article_ids: Sequence[str] = (),
        now: Optional[str] = None,
    ) -> str:
        """Persist a snapshot and its dependents in one transaction.

        Args:
            snapshot: The day's score row.
            update: The scoring result, when providers were called. Its model
                responses, usage entries and prompt version are stored too.
            article_ids: Articles consumed by this score.
            now: Timestamp recorded on the prompt version.

        Returns:
            The new score id.

        Raises:
            SnapshotExistsError: A snapshot already exists for ``snapshot.date``.
        """
        score_id = snapshot.id or _new_id()
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO scores (
                        id, date, score, score_technical, score_economic, delta,
                        delta_explanation, analysis, signals, pillar_scores,
                        model_scores, model_agreement, model_spread, capability_gap,
                        sanity_harness_note, economic_note, labour_note, model_summary,
                        prompt_hash, external_data, is_decay, data_quality_flags
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        score_id, snapshot.date, snapshot.score, snapshot.score_technical,
                        snapshot.score_economic, snapshot.delta, snapshot.delta_explanation,
                        snapshot.analysis,
                        json.dumps([asdict(s) for s in snapshot.signals]),
                        json.dumps(snapshot.pillar_scores),
                        json.dumps([asdict(m) for m in snapshot.model_scores]),
                        snapshot.model_agreement, snapshot.model_spread,
                        snapshot.capability_gap, snapshot.sanity_harness_note,
                        snapshot.economic_note, snapshot.labour_note, snapshot.model_summary,
                        snapshot.prompt_hash,
                        json.dumps(snapshot.external_data) if snapshot.external_data is not None else None,
                        int(snapshot.is_decay),
                        json.dumps(snapshot.data_quality_flags),
                    ),
                )
                conn.executemany(
                    "INSERT OR IGNORE INTO score_articles (score_id, article_id) VALUES (?, ?)",
                    [(score_id, article_id) for article_id in article_ids],
                )
                if update is not None:
                    self._insert_update_rows(conn, score_id, update, now or snapshot.date)
        except sqlite3.IntegrityError as exc:
            if "scores.date" in str(exc):
                raise SnapshotExistsError(snapshot.date) from exc
            raise

        logger.info(
            f"ScoreStore: saved {snapshot.date} score={snapshot.score} "
            f"delta={snapshot.delta} hash={snapshot.prompt_hash}"
        )
        return score_id

    def _insert_update_rows(
        self, conn: sqlite3.Connection, score_id: str, update: ScoreUpdate, now: str
    ) -> None:
        conn.executemany(
            """
            INSERT INTO model_responses
                (id, score_id, provider, model, raw_response, suggested_delta, parsed)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    _new_id(), score_id, m.provider, m.model,
                    update.raw_responses.get(m.provider), m.suggested_delta,
                    json.dumps(asdict(m)),
                )
                for m in update.model_scores
            ],
        )
        self._insert_usages(conn, score_id, update.usages)
        self._upsert_prompt_version(conn, update.prompt_hash, update.prompt_text, now)

    @staticmethod
    def _insert_usages(
        conn: sqlite3.Connection, score_id: Optional[str], usages: Iterable[UsageEntry]
    ) -> None:
        conn.executemany(
            """
            INSERT INTO ai_usage (
                id, score_id, provider, model, input_tokens, output_tokens,
                total_tokens, latency_ms, attempts, status, error
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    _new_id(), score_id, u.provider, u.model, u.input_tokens,
                    u.output_tokens, u.total_tokens, u.latency_ms, u.attempts,
                    u.status, u.error,
                )
                for u in usages
            ],
        )

    @staticmethod
    def _upsert_prompt_version(conn: sqlite3.Connection, prompt_hash: str, text: str, now: str) -> None:
        conn.execute(
            """
            INSERT INTO prompt_versions (hash, prompt_text, first_used, last_used)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(hash) DO UPDATE SET last_used = excluded.last_used
            """,
            (prompt_hash, text[:PROMPT_TEXT_CHARS], now, now),
        )

    def record_usages(self, usages: Iterable[UsageEntry], score_id: Optional[str] = None) -> None:
        """Store usage entries outside a snapshot (e.g. when every provider failed)."""
        with self._get_connection() as conn:
            self._insert_usages(conn, score_id, usages)

    def delete_snapshot(self, date: str) -> bool:
        """Delete the snapshot for ``date`` and every dependent row, atomically.

        Returns:
            ``True`` when a snapshot existed.
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT id FROM scores WHERE date = ?", (date,)).fetchone()
            if not row:
                return False
            for table in _SCORE_DEPENDENTS:
                conn.execute(f"DELETE FROM {table} WHERE score_id = ?", (row["id"],))
            conn.execute("DELETE FROM scores WHERE id = ?", (row["id"],))
        logger.info(f"ScoreStore: deleted snapshot {date} and dependents")
        return True

    def model_responses(self, score_id: str) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT provider, model, raw_response, suggested_delta FROM model_responses "
                "WHERE score_id = ? ORDER BY provider",
                (score_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def usages(self, score_id: Optional[str] = None) -> List[UsageEntry]:
        query = "SELECT * FROM ai_usage"
        params: tuple = ()
        if score_id is not None:
            query += " WHERE score_id = ?"
            params = (score_id,)
        with self._get_connection() as conn:
            rows = conn.execute(query + " ORDER BY created_at, rowid", params).fetchall()
        return [
            UsageEntry(
                provider=r["provider"], model=r["model"], status=r["status"],
                latency_ms=r["latency_ms"] or 0, attempts=r["attempts"],
                input_tokens=r["input_tokens"], output_tokens=r["output_tokens"],
                total_tokens=r["total_tokens"], error=r["error"],
            )
            for r in rows
        ]

    def count_rows(self, table: str, score_id: str) -> int:
        if table not in _SCORE_DEPENDENTS:
            raise ValueError(f"not a score dependent table: {table}")
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM {table} WHERE score_id = ?", (score_id,)
            ).fetchone()
        return row["n"]

    # ── prompt versions ───────────────────────────────────────────────────────

    def save_prompt_version(self, prompt_hash: str, prompt_text: str, now: str) -> None:
        """Insert the prompt once per hash; later calls only refresh ``last_used``."""
        with self._get_connection() as conn:
            self._upsert_prompt_version(conn, prompt_hash, prompt_text, now)

    def get_prompt_version(self, prompt_hash: str) -> Optional[PromptVersion]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM prompt_versions WHERE hash = ?", (prompt_hash,)
            ).fetchone()
        if not row:
            return None
        return PromptVersion(row["hash"], row["prompt_text"], row["first_used"], row["last_used"])

    # ── external data ─────────────────────────────────────────────────────────

    def save_external(self, key: str, value: Dict[str, Any], fetched_at: str) -> None:
        """Append a snapshot; a second fetch on the same day replaces that day's row."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO external_data_history (id, key, value, fetched_at, fetched_date)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(key, fetched_date) DO UPDATE SET
                    value = excluded.value, fetched_at = excluded.fetched_at
                """,
                (_new_id(), key, json.dumps(value), fetched_at, fetched_at[:10]),
            )

    def external_history(self, key: str, limit: int = 2) -> List[ExternalDataSnapshot]:
        """Newest-first snapshots for ``key``; corrupt rows are skipped."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT key, value, fetched_at FROM external_data_history "
                "WHERE key = ? ORDER BY fetched_at DESC LIMIT ?",
                (key, limit),
            ).fetchall()
        snapshots = []
        for row in rows:
            value = _loads(row["value"], None, f"external_data_history[{key}]")
            if isinstance(value, dict):
                snapshots.append(ExternalDataSnapshot(row["key"], value, row["fetched_at"]))
        return snapshots

    def latest_external(self, keys: Iterable[str]) -> Dict[str, List[ExternalDataSnapshot]]:
        """Latest and previous snapshot per key. A corrupt key yields ``[]``."""
        return {key: self.external_history(key, limit=2) for key in keys}

    # ── articles & funding ────────────────────────────────────────────────────

    def insert_articles(self, articles: Iterable[Article]) -> int:
        """Insert articles, ignoring URLs already stored. Returns rows inserted."""
        inserted = 0
        with self._get_connection() as conn:
            for a in articles:
                cur = conn.execute(
                    """
                    INSERT INTO articles
                        (id, title, url, source, pillar, summary, published_at, fetched_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(url) DO NOTHING
                    """,
                    (
                        a.id or _new_id(), a.title[:ARTICLE_TEXT_CHARS], a.url, a.source,
                        a.pillar, (a.summary or "")[:ARTICLE_TEXT_CHARS] or None,
                        a.published_at, a.fetched_at,
                    ),
                )
                inserted += cur.rowcount
        return inserted

    def unscored_articles(self, since: str) -> List[Article]:
        """Articles fetched at or after ``since`` that no score has consumed yet."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM articles
                WHERE fetched_at >= ?
                  AND id NOT IN (SELECT article_id FROM score_articles)
                ORDER BY published_at DESC, id
                """,
                (since,),
            ).fetchall()
        return [_row_to_article(r) for r in rows]

    def insert_funding_events(self, events: Iterable[FundingEvent]) -> int:
        inserted = 0
        with self._get_connection() as conn:
            for e in events:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO funding_events
                        (id, company, amount, round, source_url, date)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (_new_id(), e.company, e.amount, e.round, e.source_url, e.date),
                )
                inserted += cur.rowcount
        return inserted

    def recent_funding(self, since_date: str) -> List[FundingEvent]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT company, amount, round, source_url, date FROM funding_events "
                "WHERE date >= ? ORDER BY date DESC, company",
                (since_date,),
            ).fetchall()
        return [FundingEvent(**dict(r)) for r in rows]

    # ── cron runs ─────────────────────────────────────────────────────────────

    def save_cron_run(self, run: CronRun) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO cron_runs
                    (id, started_at, completed_at, fetch_status, score_status, error)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    completed_at = excluded.completed_at,
                    fetch_status = excluded.fetch_status,
                    score_status = excluded.score_status,
                    error = excluded.error
                """,
                (run.id, run.started_at, run.completed_at, run.fetch_status,
                 run.score_status, run.error),
            )

    def cron_runs_for_date(self, date: str) -> List[CronRun]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM cron_runs WHERE substr(started_at, 1, 10) = ? ORDER BY started_at",
                (date,),
            ).fetchall()
        return [CronRun(**dict(r)) for r in rows]

    def cron_completed(self, date: str) -> bool:
        """True only when some run on ``date`` succeeded in both phases."""
        return any(run.completed for run in self.cron_runs_for_date(date))
