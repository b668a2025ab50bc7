"""
Relational Store - SQLAlchemy-backed platform / analytics database.

Tables:
- conversation_sessions: one row per working session
- mcp_coordination_log: every cross-collaborator operation the conductor performs
- session_rules_analytics: rule enforcement outcomes per session
- unified_handoffs: handoff packages, one row per package
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from ..config import Settings, settings as default_settings
from ..models import DatabaseHealth, HandoffPackage, QueryResult, utcnow

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class ConversationSession(Base):
    __tablename__ = "conversation_sessions"

    session_id = Column(String, primary_key=True)
    project_name = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    token_count = Column(Integer, default=0)
    status = Column(String, default="active")  # active | handed_off | closed
    handoff_id = Column(String, nullable=True)


class CoordinationLogEntry(Base):
    __tablename__ = "mcp_coordination_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, nullable=True, index=True)
    collaborator = Column(String, nullable=False)
    operation = Column(String, nullable=False)
    status = Column(String, nullable=False)
    details = Column(Text, nullable=True)  # JSON document
    created_at = Column(DateTime, nullable=False)


class SessionRuleAnalytics(Base):
    __tablename__ = "session_rules_analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, nullable=True, index=True)
    rule_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    result = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False)


class UnifiedHandoff(Base):
    __tablename__ = "unified_handoffs"

    handoff_id = Column(String, primary_key=True)
    session_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    current_task = Column(Text, nullable=True)
    token_count = Column(Integer, default=0)
    package = Column(Text, nullable=False)  # JSON document


class SqlRelationalStore:
    """
    Relational store over an async SQLAlchemy engine.

    Any SQLAlchemy async URL works; SQLite (aiosqlite) gets the same PRAGMA
    tuning as the rest of the project's local storage.
    """

    def __init__(self, database_url: str, name: str = "platform"):
        self.database_url = database_url
        self.name = name
        self._engine = None
        self._session_factory = None
        self._initialized = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, name: str = "platform") -> "SqlRelationalStore":
        """Store at CONTINUITY_ANALYTICS_DATABASE_URL, else under the working directory."""
        settings = settings or default_settings
        return cls(settings.get_analytics_database_url(), name=name)

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def _get_engine(self):
        """Lazy engine creation - ensures it's created in the right event loop context."""
        if self._engine is None:
            if self.is_sqlite:
                self._engine = create_async_engine(
                    self.database_url,
                    connect_args={"check_same_thread": False},
                    poolclass=NullPool,
                )

                @event.listens_for(self._engine.sync_engine, "connect")
                def set_sqlite_pragmas(dbapi_conn, connection_record):
                    cursor = dbapi_conn.cursor()
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.execute("PRAGMA synchronous=NORMAL")
                    cursor.execute("PRAGMA busy_timeout=30000")
                    cursor.close()
            else:
                self._engine = create_async_engine(self.database_url, pool_pre_ping=True)

            self._session_factory = async_sessionmaker(
                bind=self._engine,
                expire_on_commit=False,
                class_=AsyncSession
            )
        return self._engine

    @property
    def engine(self):
        return self._get_engine()

    async def init_db(self) -> None:
        """Create the tables if they do not exist."""
        if self._initialized:
            return
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._initialized = True
        logger.info(f"{self.name} database initialized")

    @asynccontextmanager
    async def get_session(self):
        """Provide a transactional scope around a series of operations."""
        self._get_engine()
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        """
        Run one SQL statement with named parameters (``:name``).

        Returns rows for SELECT-like statements, the affected row count
        otherwise.
        """
        async with self.get_session() as session:
            result = await session.execute(text(sql), params or {})
            if result.returns_rows:
                rows = [dict(row._mapping) for row in result]
                return QueryResult(rows=rows, row_count=len(rows))
            return QueryResult(rows=[], row_count=max(result.rowcount, 0))

    async def health_check(self) -> DatabaseHealth:
        """Never raises; reports unhealthy with the error instead."""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            return DatabaseHealth(status="unhealthy", error_message=str(e))
        return DatabaseHealth(status="healthy")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


# ============================================================================
# Record helpers (work against any relational store client)
# ============================================================================

def _timestamp(value: Optional[datetime] = None) -> str:
    return (value or utcnow()).isoformat()


async def record_coordination(
    client,
    session_id: Optional[str],
    collaborator: str,
    operation: str,
    status: str,
    details: Optional[str] = None,
) -> QueryResult:
    return await client.query(
        "INSERT INTO mcp_coordination_log "
        "(session_id, collaborator, operation, status, details, created_at) "
        "VALUES (:session_id, :collaborator, :operation, :status, :details, :created_at)",
        {
            "session_id": session_id,
            "collaborator": collaborator,
            "operation": operation,
            "status": status,
            "details": details,
            "created_at": _timestamp(),
        },
    )


async def record_rule_outcome(
    client,
    session_id: Optional[str],
    rule_id: str,
    action: str,
    result: str,
) -> QueryResult:
    return await client.query(
        "INSERT INTO session_rules_analytics (session_id, rule_id, action, result, created_at) "
        "VALUES (:session_id, :rule_id, :action, :result, :created_at)",
        {
            "session_id": session_id,
            "rule_id": rule_id,
            "action": action,
            "result": result,
            "created_at": _timestamp(),
        },
    )


async def record_handoff(client, package: HandoffPackage) -> QueryResult:
    return await client.query(
        "INSERT INTO unified_handoffs "
        "(handoff_id, session_id, created_at, current_task, token_count, package) "
        "VALUES (:handoff_id, :session_id, :created_at, :current_task, :token_count, :package)",
        {
            "handoff_id": package.handoff_id,
            "session_id": package.session_id,
            "created_at": _timestamp(package.created_at),
            "current_task": package.current_task,
            "token_count": package.token_count,
            "package": package.model_dump_json(by_alias=True),
        },
    )


async def fetch_session_analytics(client, session_id: str) -> Dict[str, Any]:
    """Aggregate what the relational store knows about one session."""
    sessions = await client.query(
        "SELECT session_id, start_time, token_count, status FROM conversation_sessions "
        "WHERE session_id = :session_id",
        {"session_id": session_id},
    )
    outcomes = await client.query(
        "SELECT result, COUNT(*) AS total FROM session_rules_analytics "
        "WHERE session_id = :session_id GROUP BY result",
        {"session_id": session_id},
    )
    return {
        "session": sessions.rows[0] if sessions.rows else None,
        "rule_outcomes": {row["result"]: row["total"] for row in outcomes.rows},
    }


async def upsert_session(
    client,
    session_id: str,
    project_name: str,
    user_id: Optional[str],
    start_time: datetime,
    token_count: int,
    status: str = "active",
    handoff_id: Optional[str] = None,
) -> QueryResult:
    return await client.query(
        "INSERT INTO conversation_sessions "
        "(session_id, project_name, user_id, start_time, token_count, status, handoff_id) "
        "VALUES (:session_id, :project_name, :user_id, :start_time, :token_count, :status, :handoff_id) "
        "ON CONFLICT(session_id) DO UPDATE SET token_count = excluded.token_count, "
        "status = excluded.status, handoff_id = excluded.handoff_id",
        {
            "session_id": session_id,
            "project_name": project_name,
            "user_id": user_id,
            "start_time": _timestamp(start_time),
            "token_count": token_count,
            "status": status,
            "handoff_id": handoff_id,
        },
    )


def dumps_details(**details: Any) -> str:
    return json.dumps(details, default=str)
