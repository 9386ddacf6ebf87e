"""signature tables

Revision ID: 0001_signature_tables
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_signature_tables"
down_revision = None
branch_labels = None
depends_on = None

signature_status = sa.Enum(
    "NOT_SENT",
    "PENDING",
    "SIGNED",
    "DECLINED",
    "CANCELLED",
    "EXPIRED",
    name="signaturestatus",
)


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False, primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("owner_email", sa.String(), nullable=True),
        sa.Column("file_url", sa.String(), nullable=True),
        sa.Column("signature_required", sa.Boolean(), nullable=False),
        sa.Column("signature_status", signature_status, nullable=False),
        sa.Column("signature_request_id", sa.String(length=64), nullable=True),
        sa.Column("signature_metadata", sa.JSON(), nullable=True),
        sa.Column("signed_at", sa.DateTime(), nullable=True),
        sa.Column("last_event_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_documents_id", "documents", ["id"])
    op.create_index("ix_documents_owner_id", "documents", ["owner_id"])
    op.create_index("ix_documents_signature_status", "documents", ["signature_status"])
    op.create_index("ix_documents_signature_request_id", "documents", ["signature_request_id"], unique=True)

    op.create_table(
        "audit_records",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False, primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("document_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("record_type", sa.String(length=64), nullable=False),
        sa.Column("recipient_email", sa.String(), nullable=True),
        sa.Column("subject", sa.String(), nullable=True),
        sa.Column("content", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], name="fk_audit_records_document"),
    )
    op.create_index("ix_audit_records_id", "audit_records", ["id"])
    op.create_index("ix_audit_records_document_id", "audit_records", ["document_id"])
    op.create_index("ix_audit_records_record_type", "audit_records", ["record_type"])

    op.create_table(
        "user_notifications",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False, primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("document_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("recipient_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("action_url", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], name="fk_notifications_document"),
    )
    op.create_index("ix_user_notifications_id", "user_notifications", ["id"])
    op.create_index("ix_user_notifications_document_id", "user_notifications", ["document_id"])
    op.create_index("ix_user_notifications_recipient_id", "user_notifications", ["recipient_id"])
    op.create_index("ix_user_notifications_read_at", "user_notifications", ["read_at"])

    op.create_table(
        "signature_events",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False, primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("signature_request_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("event_time", sa.String(length=32), nullable=False),
        sa.Column("document_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], name="fk_signature_events_document"),
        sa.UniqueConstraint(
            "signature_request_id",
            "event_type",
            "event_time",
            name="uq_signature_events_request_type_time",
        ),
    )
    op.create_index("ix_signature_events_id", "signature_events", ["id"])
    op.create_index("ix_signature_events_signature_request_id", "signature_events", ["signature_request_id"])
    op.create_index("ix_signature_events_document_id", "signature_events", ["document_id"])


def downgrade() -> None:
    op.drop_table("signature_events")
    op.drop_table("user_notifications")
    op.drop_table("audit_records")
    op.drop_index("ix_documents_signature_request_id", table_name="documents")
    op.drop_index("ix_documents_signature_status", table_name="documents")
    op.drop_index("ix_documents_owner_id", table_name="documents")
    op.drop_index("ix_documents_id", table_name="documents")
    op.drop_table("documents")
    signature_status.drop(op.get_bind(), checkfirst=True)
