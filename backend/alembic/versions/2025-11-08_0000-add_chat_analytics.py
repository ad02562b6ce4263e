"""add_chat_analytics

Revision ID: 9c3e5a7b1d20
Revises: 4b1f0c2d9e7a
Create Date: 2025-11-08 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '9c3e5a7b1d20'
down_revision: Union[str, None] = '4b1f0c2d9e7a'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Record every answered chat turn."""
    op.create_table(
        'chat_analytics',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='Auto-incrementing primary key'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was created (UTC)'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was last updated (UTC)'),
        sa.Column('session_id', sa.Integer(), nullable=True, comment='Foreign key to conversation_sessions table'),
        sa.Column('query', sa.Text(), nullable=False, comment='User prompt'),
        sa.Column('response', sa.Text(), nullable=False, comment='Assistant reply'),
        sa.Column('response_time', sa.Float(), nullable=True, comment='Seconds from prompt to saved reply'),
        sa.Column('search_results', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='[{content_type, content_id, title, similarity}] used as context'),
        sa.ForeignKeyConstraint(['session_id'], ['conversation_sessions.id'], name=op.f('fk_chat_analytics_session_id_conversation_sessions'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_chat_analytics')),
    )
    op.create_index(op.f('ix_chat_analytics_session_id'), 'chat_analytics', ['session_id'])


def downgrade() -> None:
    op.drop_index(op.f('ix_chat_analytics_session_id'), table_name='chat_analytics')
    op.drop_table('chat_analytics')
