"""Engagement lifecycle schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

WHY: Users, intake requests, proposals with their services and credits,
project stages and amendment requests.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUM_TYPES = {
    'userrole': ('SUPER_ADMIN', 'ADMIN', 'PROJECT_MANAGER', 'HIGHER_MANAGER', 'FINANCE', 'EMPLOYEE', 'CLIENT'),
    'requeststatus': ('pending', 'reviewed', 'scheduled', 'active', 'completed', 'cancelled'),
    'servicetype': ('new_construction', 'renovation', 'addition', 'interior_design', 'landscape_design', 'other'),
    'projectcategory': ('residential', 'commercial', 'institutional', 'landscape', 'interior', 'urban_planning'),
    'proposalstatus': ('draft', 'sent', 'viewed', 'accepted', 'rejected', 'expired'),
    'proposaltype': ('normal', 'amendment'),
    'serviceapprovalstatus': ('pending_approval', 'approved', 'rejected'),
    'credittype': ('dollar_amount', 'percent'),
    'stagestatus': ('not_started', 'in_progress', 'completed', 'on_hold'),
    'amendmentstatus': ('pending', 'approved', 'rejected', 'under_review', 'completed'),
    'amendmenturgency': ('low', 'medium', 'high', 'urgent'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade() -> None:
    """
    Create the lifecycle tables.

    WHY: Enum types are created up front with IF NOT EXISTS so a database
    where model metadata already registered them still upgrades cleanly.
    """
    for name, values in ENUM_TYPES.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(f"""
            DO $$
            BEGIN
                IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{name}') THEN
                    CREATE TYPE {name} AS ENUM ({labels});
                END IF;
            END$$;
        """)

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', _enum('userrole'), nullable=False, server_default='CLIENT'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'project_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_first_name', sa.String(length=100), nullable=False),
        sa.Column('client_middle_name', sa.String(length=100), nullable=True),
        sa.Column('client_last_name', sa.String(length=100), nullable=False),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('country', sa.String(length=100), nullable=False, server_default='United States'),
        sa.Column('state', sa.String(length=100), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('street_address', sa.String(length=255), nullable=True),
        sa.Column('project_name', sa.String(length=255), nullable=False),
        sa.Column('project_country', sa.String(length=100), nullable=True),
        sa.Column('project_state', sa.String(length=100), nullable=True),
        sa.Column('project_city', sa.String(length=100), nullable=True),
        sa.Column('project_street_address', sa.String(length=255), nullable=True),
        sa.Column('service_type', _enum('servicetype'), nullable=False),
        sa.Column('project_category', _enum('projectcategory'), nullable=False),
        sa.Column('budget_range', sa.String(length=100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', _enum('requeststatus'), nullable=False, server_default='pending'),
        sa.Column('user_id', sa.Integer(), nullable=True, comment='Registered client account'),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_project_requests_id', 'project_requests', ['id'])
    op.create_index('ix_project_requests_email', 'project_requests', ['email'])
    op.create_index('ix_project_requests_status', 'project_requests', ['status'])
    op.create_index('ix_project_requests_user_id', 'project_requests', ['user_id'])
    op.create_index('ix_project_requests_deleted_at', 'project_requests', ['deleted_at'])

    op.create_table(
        'proposals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('proposal_number', sa.String(length=50), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('client_name', sa.String(length=255), nullable=False),
        sa.Column('client_email', sa.String(length=255), nullable=False),
        sa.Column('client_phone', sa.String(length=50), nullable=True),
        sa.Column('client_company', sa.String(length=255), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('project_location', sa.String(length=500), nullable=True),
        sa.Column('service_type', _enum('servicetype'), nullable=True),
        sa.Column('project_category', _enum('projectcategory'), nullable=True),
        sa.Column('square_footage', sa.Integer(), nullable=True),
        sa.Column('budget_range', sa.String(length=100), nullable=True),
        sa.Column('expected_timeline', sa.String(length=100), nullable=True),
        sa.Column('status', _enum('proposalstatus'), nullable=False, server_default='draft'),
        sa.Column('proposal_type', _enum('proposaltype'), nullable=False, server_default='normal'),
        sa.Column('parent_proposal_id', sa.Integer(), nullable=True),
        sa.Column('owner_signature', sa.Text(), nullable=True),
        sa.Column('owner_signed_by', sa.String(length=255), nullable=True),
        sa.Column('owner_signed_at', sa.DateTime(), nullable=True),
        sa.Column('architect_signature', sa.Text(), nullable=True),
        sa.Column('architect_signed_by', sa.String(length=255), nullable=True),
        sa.Column('architect_signed_at', sa.DateTime(), nullable=True),
        sa.Column('architect_signer_id', sa.Integer(), nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('credits_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False, server_default='0', comment='Tax percentage'),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=100), nullable=True),
        sa.Column('payment_terms', sa.Text(), nullable=True),
        sa.Column('terms_and_conditions', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('viewed_at', sa.DateTime(), nullable=True),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['request_id'], ['project_requests.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['architect_signer_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['parent_proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_proposals_id', 'proposals', ['id'])
    op.create_index('ix_proposals_proposal_number', 'proposals', ['proposal_number'], unique=True)
    op.create_index('ix_proposals_request_id', 'proposals', ['request_id'])
    op.create_index('ix_proposals_user_id', 'proposals', ['user_id'])
    op.create_index('ix_proposals_client_email', 'proposals', ['client_email'])
    op.create_index('ix_proposals_status', 'proposals', ['status'])
    op.create_index('ix_proposals_parent_proposal_id', 'proposals', ['parent_proposal_id'])

    op.create_table(
        'proposal_services',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('proposal_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requires_approval', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approval_status', _enum('serviceapprovalstatus'), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('approved_by_id', sa.Integer(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_by_id', sa.Integer(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['approved_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['rejected_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_proposal_services_id', 'proposal_services', ['id'])
    op.create_index('ix_proposal_services_proposal_id', 'proposal_services', ['proposal_id'])

    op.create_table(
        'proposal_credits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('proposal_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('type', _enum('credittype'), nullable=False, server_default='dollar_amount'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_proposal_credits_id', 'proposal_credits', ['id'])
    op.create_index('ix_proposal_credits_proposal_id', 'proposal_credits', ['proposal_id'])

    op.create_table(
        'project_stages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('proposal_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('status', _enum('stagestatus'), nullable=False, server_default='not_started'),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_tasks', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('completed_tasks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assigned_to_id', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=True),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assigned_to_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        # WHY: a second acceptance fan-out for the same proposal fails here
        sa.UniqueConstraint('proposal_id', 'order', name='uq_project_stages_proposal_order'),
    )
    op.create_index('ix_project_stages_id', 'project_stages', ['id'])
    op.create_index('ix_project_stages_proposal_id', 'project_stages', ['proposal_id'])
    op.create_index('ix_project_stages_status', 'project_stages', ['status'])
    op.create_index('ix_project_stages_assigned_to_id', 'project_stages', ['assigned_to_id'])

    op.create_table(
        'amendment_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('proposal_id', sa.Integer(), nullable=False),
        sa.Column('requested_by_id', sa.Integer(), nullable=False),
        sa.Column('project_name', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('requested_services', sa.JSON(), nullable=True),
        sa.Column('urgency', _enum('amendmenturgency'), nullable=False, server_default='medium'),
        sa.Column('status', _enum('amendmentstatus'), nullable=False, server_default='pending'),
        sa.Column('reviewed_by_id', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('amendment_proposal_id', sa.Integer(), nullable=True, comment='Generated amendment proposal'),
        sa.Column('completed_by_id', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['requested_by_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['reviewed_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['completed_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['amendment_proposal_id'], ['proposals.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('amendment_proposal_id'),
    )
    op.create_index('ix_amendment_requests_id', 'amendment_requests', ['id'])
    op.create_index('ix_amendment_requests_proposal_id', 'amendment_requests', ['proposal_id'])
    op.create_index('ix_amendment_requests_requested_by_id', 'amendment_requests', ['requested_by_id'])
    op.create_index('ix_amendment_requests_status', 'amendment_requests', ['status'])


def downgrade() -> None:
    """
    Drop the lifecycle tables and enum types.
    """
    op.drop_table('amendment_requests')
    op.drop_table('project_stages')
    op.drop_table('proposal_credits')
    op.drop_table('proposal_services')
    op.drop_table('proposals')
    op.drop_table('project_requests')
    op.drop_table('users')
    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
