import json
from datetime import datetime
from typing import Any, List, Optional

import aiosqlite

from .schemas import AIReport, AIWorkItem, AIWorkResult, KnowledgeBaseEntry, ResearchFinding


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


def _json_loads(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


class Database:
    def __init__(self, path: str):
        self.path = path

    async def init(self) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.executescript(
                """
                PRAGMA journal_mode=WAL;
                CREATE TABLE IF NOT EXISTS work_items(
                    id TEXT PRIMARY KEY,
                    goal_id TEXT,
                    task_id TEXT,
                    type TEXT,
                    title TEXT,
                    status TEXT,
                    result_json TEXT,
                    error_text TEXT,
                    created_at TEXT,
                    started_at TEXT,
                    completed_at TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_work_items_goal ON work_items(goal_id, status);
                CREATE TABLE IF NOT EXISTS knowledge_entries(
                    id TEXT PRIMARY KEY,
                    goal_id TEXT,
                    type TEXT,
                    title TEXT,
                    content TEXT,
                    tags_json TEXT,
                    created_at TEXT
                );
                CREATE TABLE IF NOT EXISTS research_findings(
                    id TEXT PRIMARY KEY,
                    goal_id TEXT,
                    task_id TEXT,
                    query TEXT,
                    clarifications_json TEXT,
                    search_results TEXT,
                    was_auto_saved INTEGER,
                    created_at TEXT
                );
                CREATE TABLE IF NOT EXISTS reports(
                    id TEXT PRIMARY KEY,
                    goal_id TEXT,
                    task_id TEXT,
                    title TEXT,
                    summary TEXT,
                    details TEXT,
                    sources_json TEXT,
                    created_at TEXT
                );
                """
            )
            await db.commit()


class KnowledgeStore:
    """Durable research output: findings, knowledge-base entries and feed reports."""

    def __init__(self, path: str):
        self.path = path

    async def save_research(
        self,
        finding: ResearchFinding,
        entry: KnowledgeBaseEntry,
        report: AIReport,
    ) -> None:
        # One transaction so a finding never lands without its knowledge entry.
        async with aiosqlite.connect(self.path) as db:
            await db.execute(
                "INSERT INTO research_findings(id, goal_id, task_id, query, clarifications_json, search_results, "
                "was_auto_saved, created_at) VALUES (?,?,?,?,?,?,?,?)",
                (
                    finding.id,
                    report.goal_id,
                    report.task_id,
                    finding.query,
                    _json_dumps([pair.model_dump() for pair in finding.clarifying_qa]),
                    finding.search_results,
                    1 if finding.was_auto_saved else 0,
                    _dt(finding.timestamp),
                ),
            )
            await db.execute(
                "INSERT INTO knowledge_entries(id, goal_id, type, title, content, tags_json, created_at) "
                "VALUES (?,?,?,?,?,?,?)",
                (
                    entry.id,
                    entry.goal_id,
                    entry.type,
                    entry.title,
                    entry.content,
                    _json_dumps(entry.tags),
                    _dt(entry.created_at),
                ),
            )
            await db.execute(
                "INSERT INTO reports(id, goal_id, task_id, title, summary, details, sources_json, created_at) "
                "VALUES (?,?,?,?,?,?,?,?)",
                (
                    report.id,
                    report.goal_id,
                    report.task_id,
                    report.title,
                    report.summary,
                    report.details,
                    _json_dumps(report.sources) if report.sources is not None else None,
                    _dt(report.created_at),
                ),
            )
            await db.commit()

    async def knowledge_for(self, goal_id: str) -> List[KnowledgeBaseEntry]:
        async with aiosqlite.connect(self.path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM knowledge_entries WHERE goal_id=? ORDER BY created_at DESC",
                (goal_id,),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return [
            KnowledgeBaseEntry(
                id=row["id"],
                goal_id=row["goal_id"],
                type=row["type"],
                title=row["title"],
                content=row["content"],
                tags=_json_loads(row["tags_json"], []),
                created_at=_parse_dt(row["created_at"]),
            )
            for row in rows
        ]

    async def reports_for(self, goal_id: str) -> List[AIReport]:
        async with aiosqlite.connect(self.path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM reports WHERE goal_id=? ORDER BY created_at DESC",
                (goal_id,),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return [
            AIReport(
                id=row["id"],
                goal_id=row["goal_id"],
                task_id=row["task_id"],
                title=row["title"],
                summary=row["summary"],
                details=row["details"] or "",
                sources=_json_loads(row["sources_json"], None),
                created_at=_parse_dt(row["created_at"]),
            )
            for row in rows
        ]

    async def count_findings(self) -> int:
        async with aiosqlite.connect(self.path) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM research_findings")
            row = await cursor.fetchone()
            await cursor.close()
        return int(row[0]) if row else 0


class WorkItemStore:
    """Persistent work-item rows, written on every status change."""

    def __init__(self, path: str):
        self.path = path

    async def save(self, item: AIWorkItem) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.execute(
                "INSERT INTO work_items(id, goal_id, task_id, type, title, status, result_json, error_text, "
                "created_at, started_at, completed_at) VALUES (?,?,?,?,?,?,?,?,?,?,?) "
                "ON CONFLICT(id) DO UPDATE SET status=excluded.status, result_json=excluded.result_json, "
                "error_text=excluded.error_text, started_at=excluded.started_at, completed_at=excluded.completed_at",
                (
                    item.id,
                    item.goal_id,
                    item.task_id,
                    item.type,
                    item.title,
                    item.status,
                    item.result.model_dump_json() if item.result else None,
                    item.error,
                    _dt(item.created_at),
                    _dt(item.started_at),
                    _dt(item.completed_at),
                ),
            )
            await db.commit()

    def _row_to_item(self, row: aiosqlite.Row) -> AIWorkItem:
        result = None
        if row["result_json"]:
            result = AIWorkResult.model_validate_json(row["result_json"])
        return AIWorkItem(
            id=row["id"],
            goal_id=row["goal_id"],
            task_id=row["task_id"],
            type=row["type"],
            title=row["title"],
            status=row["status"],
            result=result,
            error=row["error_text"],
            created_at=_parse_dt(row["created_at"]),
            started_at=_parse_dt(row["started_at"]),
            completed_at=_parse_dt(row["completed_at"]),
        )

    async def get(self, item_id: str) -> Optional[AIWorkItem]:
        async with aiosqlite.connect(self.path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM work_items WHERE id=?", (item_id,))
            row = await cursor.fetchone()
            await cursor.close()
        return self._row_to_item(row) if row else None

    async def list(self, goal_id: Optional[str] = None, status: Optional[str] = None) -> List[AIWorkItem]:
        clauses: List[str] = []
        params: List[Any] = []
        if goal_id:
            clauses.append("goal_id=?")
            params.append(goal_id)
        if status:
            clauses.append("status=?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with aiosqlite.connect(self.path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(f"SELECT * FROM work_items {where} ORDER BY created_at ASC", tuple(params))
            rows = await cursor.fetchall()
            await cursor.close()
        return [self._row_to_item(row) for row in rows]
