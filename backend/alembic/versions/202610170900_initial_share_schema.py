from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610170900_a41c7e2d"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('hashed_password', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.text('1')),
        sa.Column('is_admin', sa.Boolean(), nullable=True, server_default=sa.text('0')),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'shares',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('file_name', sa.String(), nullable=False),
        sa.Column('blob_location', sa.String(), nullable=False, unique=True),
        sa.Column('mime_type', sa.String(), nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('recipient_email', sa.String(), nullable=False),
        sa.Column('uploader_id', sa.String(length=36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('iv', sa.String(length=24), nullable=False),
        sa.Column('auth_tag', sa.String(length=32), nullable=False),
        sa.Column('download_token', sa.String(length=64), nullable=True, unique=True),
        sa.Column('token_digest', sa.String(length=64), nullable=False),
        sa.Column('token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_shares_recipient_email', 'shares', ['recipient_email'])
    op.create_index('ix_shares_uploader_id', 'shares', ['uploader_id'])
    op.create_index('ix_shares_token_digest', 'shares', ['token_digest'], unique=True)

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('actor_email', sa.String(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_activity_logs_actor_email', 'activity_logs', ['actor_email'])
    op.create_index('ix_activity_logs_created_at', 'activity_logs', ['created_at'])

def downgrade() -> None:
    op.drop_index('ix_activity_logs_created_at', table_name='activity_logs')
    op.drop_index('ix_activity_logs_actor_email', table_name='activity_logs')
    op.drop_table('activity_logs')
    op.drop_index('ix_shares_token_digest', table_name='shares')
    op.drop_index('ix_shares_uploader_id', table_name='shares')
    op.drop_index('ix_shares_recipient_email', table_name='shares')
    op.drop_table('shares')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
