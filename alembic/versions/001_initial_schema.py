"""Initial schema: accounts, membership requests, groups, documents and grants

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial schema."""

    # Accounts: users and institutes
    op.create_table('account',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('admin_name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_account'),
        sa.UniqueConstraint('role', 'email', name='uq_account_role_email')
    )

    op.create_table('member_group',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('institute_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('name_key', sa.String(length=120), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['institute_id'], ['account.id'], name='fk_member_group_institute_id_account', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_member_group'),
        sa.UniqueConstraint('institute_id', 'name_key', name='uq_member_group_institute_name')
    )

    op.create_table('membership_request',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('institute_id', sa.Uuid(), nullable=False),
        sa.Column('state', sa.String(length=20), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('requested_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('group_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['account.id'], name='fk_membership_request_user_id_account', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['institute_id'], ['account.id'], name='fk_membership_request_institute_id_account', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['group_id'], ['member_group.id'], name='fk_membership_request_group_id_member_group', ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name='pk_membership_request'),
        sa.UniqueConstraint('user_id', 'institute_id', name='uq_membership_request_pair')
    )
    op.create_index('idx_membership_institute_state', 'membership_request', ['institute_id', 'state', 'requested_at'], unique=False)

    op.create_table('group_member',
        sa.Column('group_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('added_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['group_id'], ['member_group.id'], name='fk_group_member_group_id_member_group', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['account.id'], name='fk_group_member_user_id_account', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('group_id', 'user_id', name='pk_group_member')
    )

    op.create_table('document',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('institute_id', sa.Uuid(), nullable=False),
        sa.Column('owner_admin_id', sa.Uuid(), nullable=False),
        sa.Column('storage_ref', sa.String(length=500), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False),
        sa.Column('content_type', sa.String(length=255), nullable=False),
        sa.Column('size_bytes', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expiry_days', sa.Integer(), nullable=False),
        sa.Column('view_once', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('watermark', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(['institute_id'], ['account.id'], name='fk_document_institute_id_account', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['owner_admin_id'], ['account.id'], name='fk_document_owner_admin_id_account', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_document'),
        sa.CheckConstraint('expiry_days >= 1', name='ck_document_expiry_days_positive')
    )
    op.create_index('ix_document_institute_id', 'document', ['institute_id'], unique=False)

    op.create_table('document_target',
        sa.Column('document_id', sa.Uuid(), nullable=False),
        sa.Column('group_id', sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['document.id'], name='fk_document_target_document_id_document', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['group_id'], ['member_group.id'], name='fk_document_target_group_id_member_group', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('document_id', 'group_id', name='pk_document_target')
    )

    op.create_table('access_grant',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('document_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('view_once', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['document_id'], ['document.id'], name='fk_access_grant_document_id_document', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['account.id'], name='fk_access_grant_user_id_account', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_access_grant'),
        sa.UniqueConstraint('document_id', 'user_id', name='uq_access_grant_document_user')
    )
    op.create_index('idx_access_grant_user', 'access_grant', ['user_id'], unique=False)
    op.create_index('idx_access_grant_expires', 'access_grant', ['expires_at'], unique=False)


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse order
    op.drop_table('access_grant')
    op.drop_table('document_target')
    op.drop_table('document')
    op.drop_table('group_member')
    op.drop_table('membership_request')
    op.drop_table('member_group')
    op.drop_table('account')
