"""Persistent models for paperpilot.

Core entities:
- Workflow: named, ordered rule with triggers and an action pipeline
- WorkflowTrigger: selects documents for a workflow
- WorkflowAction: one step of a workflow's action pipeline
- ModificationHistory: one field change applied to a Paperless document
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# === Enums ===


class TriggerKind(str, enum.Enum):
    MATCH_TAGS = "Match tags"


class ActionKind(str, enum.Enum):
    AUTO_TITLE = "Auto title"
    AUTO_TAG = "Auto tag"
    AUTO_OCR = "Auto OCR"
    APPLY_TAGS = "Apply tags"


MANUAL_REVIEW_RUN_ORDER = -1


# === Workflows ===


class Workflow(Base):
    """A workflow configuration."""

    __tablename__ = "workflows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    run_order: Mapped[int] = mapped_column(Integer, index=True)  # -1 = manual review
    created_at: Mapped[datetime] = mapped_column(default=_utcnow)

    triggers: Mapped[list["WorkflowTrigger"]] = relationship(
        back_populates="workflow", cascade="all, delete-orphan"
    )
    actions: Mapped[list["WorkflowAction"]] = relationship(
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowAction.execution_order",
    )

    @property
    def is_manual_review(self) -> bool:
        return self.run_order == MANUAL_REVIEW_RUN_ORDER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "run_order": self.run_order,
            "triggers": [
                {"match_action": t.match_action, "match_data": t.match_data}
                for t in self.triggers
            ],
            "actions": [
                {
                    "execution_order": a.execution_order,
                    "action_type": a.action_type,
                    "action_data": a.action_data,
                }
                for a in self.actions
            ],
        }


class WorkflowTrigger(Base):
    """A condition that selects documents for a workflow."""

    __tablename__ = "workflow_triggers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_id: Mapped[int] = mapped_column(ForeignKey("workflows.id", ondelete="CASCADE"))
    match_action: Mapped[str] = mapped_column(String(255))
    match_data: Mapped[str] = mapped_column(Text, default="[]")  # JSON list of tag names

    workflow: Mapped["Workflow"] = relationship(back_populates="triggers")


class WorkflowAction(Base):
    """One step in a workflow's action pipeline."""

    __tablename__ = "workflow_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_id: Mapped[int] = mapped_column(ForeignKey("workflows.id", ondelete="CASCADE"))
    execution_order: Mapped[int] = mapped_column(Integer, default=0)
    action_type: Mapped[str] = mapped_column(String(255))
    action_data: Mapped[str] = mapped_column(Text, default="[]")

    workflow: Mapped["Workflow"] = relationship(back_populates="actions")


# === History ===


class ModificationHistory(Base):
    """A single field change written back to Paperless."""

    __tablename__ = "modification_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(Integer, index=True)
    date_changed: Mapped[datetime] = mapped_column(default=_utcnow)
    mod_field: Mapped[str] = mapped_column(String(255))  # title, tags, content
    previous_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    undone: Mapped[bool] = mapped_column(default=False)
    undone_date: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "date_changed": self.date_changed.isoformat() if self.date_changed else None,
            "mod_field": self.mod_field,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "undone": self.undone,
            "undone_date": self.undone_date.isoformat() if self.undone_date else None,
        }
