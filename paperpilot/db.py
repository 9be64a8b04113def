"""Database session management and queries for paperpilot.

Workflow definitions and modification history are stored locally in
<data_dir>/paperpilot.db
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Iterable

from sqlalchemy import create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import WorkflowStructuralError
from .logger import get_logger
from .models import Base, ModificationHistory, Workflow, WorkflowAction, WorkflowTrigger

logger = get_logger(__name__)


def get_engine(db_path: Path | str | None = None, url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine for a SQLite file (or an explicit URL)."""
    if url is None:
        if db_path is None:
            db_path = Path.home() / ".paperpilot" / "paperpilot.db"
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{db_path}"

    kwargs: dict[str, Any] = {}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every checkout gets a new empty database
        kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}

    engine = create_engine(url, echo=False, **kwargs)

    # Enable foreign keys for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def get_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory whose objects stay usable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Provide a session with automatic commit/rollback."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine) -> None:
    """Create all tables."""
    Base.metadata.create_all(engine)


# === Workflows ===


def insert_workflows(session: Session, workflows: Iterable[Workflow]) -> list[Workflow]:
    """Insert workflows; ids are always assigned by the database."""
    inserted = []
    for workflow in workflows:
        workflow.id = None
        workflow.created_at = datetime.now(timezone.utc)
        session.add(workflow)
        inserted.append(workflow)
    session.flush()
    return inserted


def get_all_workflows(session: Session) -> list[Workflow]:
    """All workflows by run order, with triggers and ordered actions loaded."""
    stmt = (
        select(Workflow)
        .options(selectinload(Workflow.triggers), selectinload(Workflow.actions))
        .order_by(Workflow.run_order, Workflow.id)
    )
    return list(session.scalars(stmt))


def delete_all_workflows(session: Session) -> None:
    """Delete every action, trigger and workflow."""
    session.query(WorkflowAction).delete()
    session.query(WorkflowTrigger).delete()
    session.query(Workflow).delete()


def replace_workflows(session: Session, workflows: Iterable[Workflow]) -> list[Workflow]:
    """Swap the stored workflow set for a new one in a single transaction."""
    delete_all_workflows(session)
    return insert_workflows(session, workflows)


def _payload(value: Any) -> str:
    """Trigger and action payloads are stored as JSON text."""
    if value is None:
        return "[]"
    return value if isinstance(value, str) else json.dumps(value)


def workflow_from_dict(data: dict) -> Workflow:
    """Build a transient Workflow from its JSON representation.

    Payloads may be given as JSON text or as already-decoded lists.
    """
    return Workflow(
        name=data["name"],
        run_order=int(data.get("run_order", 0)),
        triggers=[
            WorkflowTrigger(
                match_action=t["match_action"],
                match_data=_payload(t.get("match_data")),
            )
            for t in data.get("triggers", [])
        ],
        actions=[
            WorkflowAction(
                execution_order=int(a.get("execution_order", i)),
                action_type=a["action_type"],
                action_data=_payload(a.get("action_data")),
            )
            for i, a in enumerate(data.get("actions", []))
        ],
    )


class WorkflowStore:
    """Read access to workflow definitions for the workflow engine."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def list_workflows_ordered_by_run_order(self) -> list[Workflow]:
        try:
            with session_scope(self.session_factory) as session:
                return get_all_workflows(session)
        except SQLAlchemyError as e:
            raise WorkflowStructuralError(f"failed to get workflows: {e}") from e


# === Modification history ===


def insert_modification(session: Session, record: ModificationHistory) -> ModificationHistory:
    record.date_changed = datetime.now(timezone.utc)
    session.add(record)
    session.flush()
    logger.debug("Recorded modification of %s on document %d", record.mod_field, record.document_id)
    return record


def get_modification(session: Session, record_id: int) -> ModificationHistory | None:
    return session.get(ModificationHistory, record_id)


def get_all_modifications(session: Session) -> list[ModificationHistory]:
    stmt = select(ModificationHistory).order_by(
        ModificationHistory.date_changed.desc(), ModificationHistory.id.desc()
    )
    return list(session.scalars(stmt))


def set_modification_undone(session: Session, record: ModificationHistory) -> None:
    record.undone = True
    record.undone_date = datetime.now(timezone.utc)
    session.add(record)
    session.flush()


class HistoryRecorder:
    """Writes modification records in their own transaction."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(self, document_id: int, field: str, previous: str, new: str) -> None:
        with session_scope(self.session_factory) as session:
            insert_modification(
                session,
                ModificationHistory(
                    document_id=document_id,
                    mod_field=field,
                    previous_value=previous,
                    new_value=new,
                ),
            )
