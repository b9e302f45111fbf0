"""Create upload sessions

Revision ID: 5b2e7c41d9a3
Revises:
Create Date: 2026-10-19 09:12:44.318205

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5b2e7c41d9a3'
down_revision = None
branch_labels = None
depends_on = None

upload_status = sa.Enum(
    'UPLOADING', 'STORED', 'COMPRESSING', 'COMPRESSED', 'TRANSFERRING', 'ACTIVE', 'FAILED',
    name='uploadstatus'
)


def upgrade():
    """Create the upload_sessions table"""
    op.create_table(
        'upload_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('upload_id', sa.String(length=64), nullable=False),
        sa.Column('attempt_id', sa.String(length=128), nullable=False),
        sa.Column('owner_session_id', sa.Integer(), nullable=True),
        sa.Column('filename', sa.String(length=500), nullable=False),
        sa.Column('mime_type', sa.String(length=100), nullable=False),
        sa.Column('declared_size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('storage_key', sa.String(length=1000), nullable=False),
        sa.Column('proxy_storage_key', sa.String(length=1000), nullable=True),
        sa.Column('proxy_size_bytes', sa.BigInteger(), nullable=True),
        sa.Column('status', upload_status, nullable=False),
        sa.Column('progress', sa.JSON(), nullable=True),
        sa.Column('remote_file_name', sa.String(length=500), nullable=True),
        sa.Column('remote_file_handle', sa.String(length=1000), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_upload_sessions_upload_id', 'upload_sessions', ['upload_id'], unique=True)
    op.create_index('ix_upload_sessions_attempt_id', 'upload_sessions', ['attempt_id'], unique=True)
    op.create_index('ix_upload_sessions_owner_session_id', 'upload_sessions', ['owner_session_id'], unique=False)
    op.create_index('ix_upload_sessions_status', 'upload_sessions', ['status'], unique=False)


def downgrade():
    """Drop the upload_sessions table"""
    op.drop_index('ix_upload_sessions_status', table_name='upload_sessions')
    op.drop_index('ix_upload_sessions_owner_session_id', table_name='upload_sessions')
    op.drop_index('ix_upload_sessions_attempt_id', table_name='upload_sessions')
    op.drop_index('ix_upload_sessions_upload_id', table_name='upload_sessions')
    op.drop_table('upload_sessions')
    upload_status.drop(op.get_bind(), checkfirst=True)
