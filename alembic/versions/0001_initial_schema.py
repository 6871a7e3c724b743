"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

principal_role = postgresql.ENUM('patient', 'doctor', 'admin', name='principal_role', create_type=False)
record_type = postgresql.ENUM(
    'lab_result', 'prescription', 'visit_note', 'imaging', 'other',
    name='record_type', create_type=False,
)
urgency = postgresql.ENUM('routine', 'urgent', 'emergency', name='urgency', create_type=False)
access_request_status = postgresql.ENUM(
    'draft', 'sent', 'approved', 'denied', 'expired', 'revoked',
    name='access_request_status', create_type=False,
)
transfer_source_status = postgresql.ENUM(
    'awaiting_upload', 'uploaded', 'rejected', 'granted', 'failed',
    name='transfer_source_status', create_type=False,
)
transfer_patient_status = postgresql.ENUM(
    'pending', 'approved', 'denied',
    name='transfer_patient_status', create_type=False,
)

ENUMS = (
    principal_role,
    record_type,
    urgency,
    access_request_status,
    transfer_source_status,
    transfer_patient_status,
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    """Create principals, records, requests, audit and API key tables."""
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        'principals',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('wallet_address', sa.String(length=128), nullable=False),
        sa.Column('role', principal_role, nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('organization_name', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_principals_wallet_address', 'principals', ['wallet_address'], unique=True)

    op.create_table(
        'health_records',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('patient_wallet', sa.String(length=128), nullable=False),
        sa.Column('uploaded_by', sa.String(length=128), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('record_type', record_type, nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('blob_locator', sa.String(length=512), nullable=False),
        sa.Column('wrapped_key', sa.Text(), nullable=False),
        sa.Column('authorized_principals', postgresql.ARRAY(sa.String(length=128)), nullable=False),
        sa.Column('policy_version', sa.Integer(), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=True),
        sa.Column('mime_type', sa.String(length=255), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_health_records_patient_wallet', 'health_records', ['patient_wallet'])
    op.create_index(
        'ix_health_records_authorized_principals', 'health_records',
        ['authorized_principals'], postgresql_using='gin',
    )

    op.create_table(
        'access_requests',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('patient_wallet', sa.String(length=128), nullable=False),
        sa.Column('doctor_wallet', sa.String(length=128), nullable=False),
        sa.Column('requested_record_ids', postgresql.ARRAY(sa.UUID()), nullable=False),
        sa.Column('deleted_record_ids', postgresql.ARRAY(sa.UUID()), nullable=False),
        sa.Column('snapshot_document_titles', postgresql.ARRAY(sa.String(length=255)), nullable=False),
        sa.Column('purpose', sa.Text(), nullable=False),
        sa.Column('urgency', urgency, nullable=False),
        sa.Column('status', access_request_status, nullable=False),
        sa.Column('patient_response', sa.Text(), nullable=True),
        sa.Column('denial_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('grant_success_count', sa.Integer(), nullable=False),
        sa.Column('grant_failure_count', sa.Integer(), nullable=False),
        sa.Column('grant_errors', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_access_requests_patient_wallet', 'access_requests', ['patient_wallet'])
    op.create_index('ix_access_requests_doctor_wallet', 'access_requests', ['doctor_wallet'])
    op.create_index('ix_access_requests_patient_status', 'access_requests', ['patient_wallet', 'status'])
    op.create_index('ix_access_requests_doctor_status', 'access_requests', ['doctor_wallet', 'status'])
    op.create_index(
        'ix_access_requests_requested_record_ids', 'access_requests',
        ['requested_record_ids'], postgresql_using='gin',
    )

    op.create_table(
        'transfer_requests',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('patient_wallet', sa.String(length=128), nullable=False),
        sa.Column('requesting_doctor_wallet', sa.String(length=128), nullable=False),
        sa.Column('source_doctor_wallet', sa.String(length=128), nullable=False),
        sa.Column('requesting_organization', sa.String(length=255), nullable=True),
        sa.Column('source_organization', sa.String(length=255), nullable=True),
        sa.Column('document_description', sa.Text(), nullable=False),
        sa.Column('requested_record_ids', postgresql.ARRAY(sa.UUID()), nullable=False),
        sa.Column('deleted_record_ids', postgresql.ARRAY(sa.UUID()), nullable=False),
        sa.Column('snapshot_document_titles', postgresql.ARRAY(sa.String(length=255)), nullable=False),
        sa.Column('purpose', sa.Text(), nullable=False),
        sa.Column('urgency', urgency, nullable=False),
        sa.Column('source_status', transfer_source_status, nullable=False),
        sa.Column('patient_status', transfer_patient_status, nullable=False),
        sa.Column('source_rejection_reason', sa.Text(), nullable=True),
        sa.Column('source_failure_reason', sa.Text(), nullable=True),
        sa.Column('patient_denial_reason', sa.Text(), nullable=True),
        sa.Column('source_responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('patient_responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_transfer_requests_patient_wallet', 'transfer_requests', ['patient_wallet'])
    op.create_index('ix_transfer_requests_requesting_doctor_wallet', 'transfer_requests', ['requesting_doctor_wallet'])
    op.create_index('ix_transfer_requests_source_doctor_wallet', 'transfer_requests', ['source_doctor_wallet'])
    op.create_index(
        'ix_transfer_requests_patient_source_status', 'transfer_requests',
        ['patient_wallet', 'source_status'],
    )
    op.create_index(
        'ix_transfer_requests_requested_record_ids', 'transfer_requests',
        ['requested_record_ids'], postgresql_using='gin',
    )

    op.create_table(
        'audit_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('event_name', sa.String(length=100), nullable=False),
        sa.Column('actor_wallet', sa.String(length=128), nullable=True),
        sa.Column('subject_type', sa.String(length=50), nullable=False),
        sa.Column('subject_id', sa.UUID(), nullable=True),
        sa.Column('properties', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_events_event_name', 'audit_events', ['event_name'])
    op.create_index('ix_audit_events_actor_wallet', 'audit_events', ['actor_wallet'])
    op.create_index('ix_audit_events_subject', 'audit_events', ['subject_type', 'subject_id'])

    op.create_table(
        'api_keys',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('key_hash', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_api_keys_key_hash', 'api_keys', ['key_hash'], unique=True)


def downgrade() -> None:
    """Drop every table and enum type."""
    op.drop_table('api_keys')
    op.drop_table('audit_events')
    op.drop_table('transfer_requests')
    op.drop_table('access_requests')
    op.drop_table('health_records')
    op.drop_table('principals')
    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
