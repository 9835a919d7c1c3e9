"""Initial schema — inspection store tables touched by the chat engine.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("identity", sa.String(100), comment="Chat identity (phone)"),
        sa.Column("inspector_id", sa.String(100)),
        sa.Column("work_order_id", sa.String(100)),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_identity", "audit_log", ["identity"])
    op.create_index("ix_audit_log_work_order_id", "audit_log", ["work_order_id"])

    op.create_table(
        "inspectors",
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("mobile_phone", sa.String(30), comment="E.164, e.g. +6591234567"),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inspectors_mobile_phone", "inspectors", ["mobile_phone"])

    # ── Jobs and checklist tree ────────────────────────────────────────

    op.create_table(
        "work_orders",
        sa.Column("inspector_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("inspectors.id")),
        sa.Column("customer_name", sa.String(200), nullable=False),
        sa.Column("property_address", sa.String(500), nullable=False),
        sa.Column("postal_code", sa.String(20)),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(timezone=True)),
        sa.Column("actual_start", sa.DateTime(timezone=True)),
        sa.Column("actual_end", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(20), nullable=False, server_default="SCHEDULED"),
        sa.Column("remarks", sa.Text()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_work_orders_inspector_id", "work_orders", ["inspector_id"])
    op.create_index("ix_work_orders_scheduled_start", "work_orders", ["scheduled_start"])
    op.create_index("ix_work_orders_status", "work_orders", ["status"])

    op.create_table(
        "checklist_items",
        sa.Column("work_order_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("work_orders.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("condition", sa.String(30)),
        sa.Column("entered_on", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_checklist_items_work_order_id", "checklist_items", ["work_order_id"])

    op.create_table(
        "checklist_locations",
        sa.Column("item_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("checklist_items.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_checklist_locations_item_id", "checklist_locations", ["item_id"])

    op.create_table(
        "checklist_tasks",
        sa.Column("item_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("checklist_items.id"), nullable=False),
        sa.Column("location_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("checklist_locations.id")),
        sa.Column("inspector_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("inspectors.id")),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("condition", sa.String(30)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_checklist_tasks_item_id", "checklist_tasks", ["item_id"])
    op.create_index("ix_checklist_tasks_location_id", "checklist_tasks", ["location_id"])

    # ── Recorded findings ──────────────────────────────────────────────

    op.create_table(
        "item_entries",
        sa.Column("item_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("checklist_items.id"), nullable=False),
        sa.Column("task_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("checklist_tasks.id")),
        sa.Column("location_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("checklist_locations.id")),
        sa.Column("inspector_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("inspectors.id")),
        sa.Column("condition", sa.String(30)),
        sa.Column("remarks", sa.Text()),
        sa.Column("cause", sa.Text()),
        sa.Column("resolution", sa.Text()),
        sa.Column("commit_key", sa.String(64), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("commit_key", name="uq_item_entries_commit_key"),
    )
    op.create_index("ix_item_entries_item_id", "item_entries", ["item_id"])
    op.create_index("ix_item_entries_task_id", "item_entries", ["task_id"])

    op.create_table(
        "item_entry_media",
        sa.Column("entry_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("item_entries.id"), nullable=False),
        sa.Column("url", sa.String(1000), nullable=False),
        sa.Column("storage_key", sa.String(500), nullable=False),
        sa.Column("media_type", sa.String(10), nullable=False),
        sa.Column("caption", sa.Text()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id", "storage_key", name="uq_item_entry_media_key"),
    )
    op.create_index("ix_item_entry_media_entry_id", "item_entry_media", ["entry_id"])


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("item_entry_media")
    op.drop_table("item_entries")
    op.drop_table("checklist_tasks")
    op.drop_table("checklist_locations")
    op.drop_table("checklist_items")
    op.drop_table("work_orders")
    op.drop_table("inspectors")
    op.drop_table("audit_log")
