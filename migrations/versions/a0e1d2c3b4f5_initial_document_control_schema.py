"""Initial document control schema.

Revision ID: a0e1d2c3b4f5
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a0e1d2c3b4f5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("level", sa.String(16), nullable=False, server_default="INFO"),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
    )
    op.create_index("idx_audit_events_action", "audit_events", ["action"])
    op.create_index("idx_audit_events_actor", "audit_events", ["actor_user_id"])

    op.create_table(
        "code_sequences",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("module", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("document_type_id", sa.Integer(), nullable=True),
        sa.Column("revision_scheme", sa.String(16), nullable=False, server_default="ALPHABETICAL"),
        sa.Column("terminated_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("updated_by_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("code", "module", "entity_type", "entity_id", name="uq_documents_code_context"),
    )
    op.create_index("idx_documents_module", "documents", ["module"])
    op.create_index("idx_documents_document_type", "documents", ["document_type_id"])

    op.create_table(
        "revisions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("revision_code", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approved_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("updated_by_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("document_id", "revision_code", name="uq_revisions_document_code"),
    )
    op.create_index("idx_revisions_document_status", "revisions", ["document_id", "status"])

    op.create_table(
        "versions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("revision_id", sa.Integer(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("file_key", sa.String(512), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(128), nullable=False, server_default="application/octet-stream"),
        sa.Column("checksum", sa.String(128), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["revision_id"], ["revisions.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("revision_id", "version_number", name="uq_versions_revision_number"),
    )

    op.create_table(
        "review_workflows",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("revision_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="IN_PROGRESS"),
        sa.Column("initiated_at", sa.DateTime(), nullable=False),
        sa.Column("initiated_by_id", sa.Integer(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["revision_id"], ["revisions.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_review_workflows_revision", "review_workflows", ["revision_id"])
    op.create_index("idx_review_workflows_status", "review_workflows", ["status"])

    op.create_table(
        "review_steps",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("workflow_id", sa.Integer(), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("step_type", sa.String(16), nullable=False, server_default="REVIEW"),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("assigned_to_id", sa.Integer(), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_by_id", sa.Integer(), nullable=True),
        sa.Column("signature_hash", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["workflow_id"], ["review_workflows.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("workflow_id", "step_order", name="uq_review_steps_workflow_order"),
    )
    op.create_index("idx_review_steps_assignee_status", "review_steps", ["assigned_to_id", "status"])

    op.create_table(
        "transmittals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("issued_to", sa.String(255), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("issued_at", sa.DateTime(), nullable=True),
        sa.Column("issued_by_id", sa.Integer(), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(), nullable=True),
        sa.Column("response_at", sa.DateTime(), nullable=True),
        sa.Column("response_comments", sa.Text(), nullable=True),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("updated_by_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("code", name="uq_transmittals_code"),
    )
    op.create_index("idx_transmittals_project", "transmittals", ["project_id"])
    op.create_index("idx_transmittals_status", "transmittals", ["status"])

    op.create_table(
        "transmittal_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transmittal_id", sa.Integer(), nullable=False),
        sa.Column("revision_id", sa.Integer(), nullable=False),
        sa.Column("purpose_code", sa.String(64), nullable=False),
        sa.Column("client_status", sa.String(32), nullable=True),
        sa.Column("client_comments", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["transmittal_id"], ["transmittals.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["revision_id"], ["revisions.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("transmittal_id", "revision_id", name="uq_transmittal_items_revision"),
    )

    op.create_table(
        "scanned_files",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("original_reference", sa.String(255), nullable=True),
        sa.Column("physical_location", sa.String(255), nullable=True),
        sa.Column("file_key", sa.String(512), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(128), nullable=False, server_default="application/pdf"),
        sa.Column("digital_disposition", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("document_type_id", sa.Integer(), nullable=True),
        sa.Column("classification_notes", sa.Text(), nullable=True),
        sa.Column("discard_reason", sa.Text(), nullable=True),
        sa.Column("classified_at", sa.DateTime(), nullable=True),
        sa.Column("classified_by_id", sa.Integer(), nullable=True),
        sa.Column("external_reference", sa.String(255), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(), nullable=True),
        sa.Column("physical_disposition", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("physical_confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("physical_confirmed_by_id", sa.Integer(), nullable=True),
        sa.Column("terminated_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("updated_by_id", sa.Integer(), nullable=False),
    )
    op.create_index("idx_scanned_files_project", "scanned_files", ["project_id"])
    op.create_index("idx_scanned_files_digital", "scanned_files", ["digital_disposition"])
    op.create_index("idx_scanned_files_physical", "scanned_files", ["physical_disposition"])


def downgrade() -> None:
    op.drop_index("idx_scanned_files_physical", table_name="scanned_files")
    op.drop_index("idx_scanned_files_digital", table_name="scanned_files")
    op.drop_index("idx_scanned_files_project", table_name="scanned_files")
    op.drop_table("scanned_files")
    op.drop_table("transmittal_items")
    op.drop_index("idx_transmittals_status", table_name="transmittals")
    op.drop_index("idx_transmittals_project", table_name="transmittals")
    op.drop_table("transmittals")
    op.drop_index("idx_review_steps_assignee_status", table_name="review_steps")
    op.drop_table("review_steps")
    op.drop_index("idx_review_workflows_status", table_name="review_workflows")
    op.drop_index("idx_review_workflows_revision", table_name="review_workflows")
    op.drop_table("review_workflows")
    op.drop_table("versions")
    op.drop_index("idx_revisions_document_status", table_name="revisions")
    op.drop_table("revisions")
    op.drop_index("idx_documents_document_type", table_name="documents")
    op.drop_index("idx_documents_module", table_name="documents")
    op.drop_table("documents")
    op.drop_table("code_sequences")
    op.drop_index("idx_audit_events_actor", table_name="audit_events")
    op.drop_index("idx_audit_events_action", table_name="audit_events")
    op.drop_table("audit_events")
