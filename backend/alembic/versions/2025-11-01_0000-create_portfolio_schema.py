"""create_portfolio_schema

Revision ID: 4b1f0c2d9e7a
Revises:
Create Date: 2025-11-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision: str = '4b1f0c2d9e7a'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSION = 384


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='Auto-incrementing primary key'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was created (UTC)'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was last updated (UTC)'),
    ]


def upgrade() -> None:
    """
    Create the portfolio schema.

    Tables:
    1. facts, projects, project_images, tools, tags (+ junction tables)
    2. embeddings - one vector per (content_id, content_type)
    3. conversation_sessions, chat_messages, chat_project_links

    Indexes:
    - HNSW cosine index on embeddings.embedding
    - B-tree indexes for foreign keys and lookups
    """

    # ================================
    # Enable pgvector extension if not already enabled
    # ================================
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    # ================================
    # Content tables
    # ================================
    op.create_table(
        'facts',
        *_timestamps(),
        sa.Column('title', sa.String(length=255), nullable=False, comment='Short fact title shown in context headers'),
        sa.Column('content', sa.Text(), nullable=False, comment='Fact body'),
        sa.Column('category', sa.String(length=100), nullable=True, comment='Free-form grouping (skills, experience, education...)'),
        sa.Column('keywords', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Extra search keywords'),
        sa.Column('priority', sa.Integer(), nullable=False, comment='Display weight, higher first'),
        sa.Column('parent_id', sa.Integer(), nullable=True, comment='Parent fact when a long fact is split into chunks'),
        sa.ForeignKeyConstraint(['parent_id'], ['facts.id'], name=op.f('fk_facts_parent_id_facts'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_facts')),
    )
    op.create_index(op.f('ix_facts_category'), 'facts', ['category'])
    op.create_index(op.f('ix_facts_parent_id'), 'facts', ['parent_id'])

    op.create_table(
        'projects',
        *_timestamps(),
        sa.Column('title', sa.String(length=255), nullable=False, comment='Project name'),
        sa.Column('slug', sa.String(length=255), nullable=False, comment='URL-safe unique identifier'),
        sa.Column('summary', sa.Text(), nullable=True, comment='One-paragraph summary'),
        sa.Column('description', sa.Text(), nullable=True, comment='Long description'),
        sa.Column('features', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Key feature bullets'),
        sa.Column('url', sa.String(length=500), nullable=True, comment='Live demo or repository URL'),
        sa.Column('featured', sa.Boolean(), nullable=False, comment='Highlighted on the portfolio front page'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_projects')),
        sa.UniqueConstraint('slug', name=op.f('uq_projects_slug')),
    )

    op.create_table(
        'project_images',
        *_timestamps(),
        sa.Column('project_id', sa.Integer(), nullable=False, comment='Foreign key to projects table'),
        sa.Column('url', sa.String(length=1000), nullable=False, comment='Public image URL'),
        sa.Column('alt_text', sa.String(length=255), nullable=True, comment='Accessible description'),
        sa.Column('order_index', sa.Integer(), nullable=False, comment='Display order within the project (0 = first)'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], name=op.f('fk_project_images_project_id_projects'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_project_images')),
    )
    op.create_index(op.f('ix_project_images_project_id'), 'project_images', ['project_id'])

    for table, comment in (('tools', 'Tool name'), ('tags', 'Tag name')):
        op.create_table(
            table,
            *_timestamps(),
            sa.Column('name', sa.String(length=100), nullable=False, comment=comment),
            sa.PrimaryKeyConstraint('id', name=op.f(f'pk_{table}')),
            sa.UniqueConstraint('name', name=op.f(f'uq_{table}_name')),
        )

    op.create_table(
        'project_tools',
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('tool_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], name=op.f('fk_project_tools_project_id_projects'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['tool_id'], ['tools.id'], name=op.f('fk_project_tools_tool_id_tools'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('project_id', 'tool_id', name=op.f('pk_project_tools')),
        comment='Tools used by each project'
    )

    op.create_table(
        'project_tags',
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('tag_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], name=op.f('fk_project_tags_project_id_projects'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['tag_id'], ['tags.id'], name=op.f('fk_project_tags_tag_id_tags'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('project_id', 'tag_id', name=op.f('pk_project_tags')),
        comment='Tags attached to each project'
    )

    # ================================
    # Embeddings
    # ================================
    op.create_table(
        'embeddings',
        *_timestamps(),
        sa.Column('content_id', sa.Integer(), nullable=False, comment='Primary key of the fact or project'),
        sa.Column('content_type', sa.String(length=20), nullable=False, comment='fact or project'),
        sa.Column('embedding', Vector(EMBEDDING_DIMENSION), nullable=False, comment='Normalized embedding vector'),
        sa.Column('embedded_text', sa.Text(), nullable=False, comment='Exact text that produced the vector'),
        sa.Column('embedding_model', sa.String(length=255), nullable=False, comment='Model identifier used to embed'),
        sa.Column('chunk_index', sa.Integer(), nullable=False, comment='Chunk position (single-chunk items use 0)'),
        sa.Column('chunk_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Free-form metadata about the embedded chunk'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_embeddings')),
        sa.UniqueConstraint('content_id', 'content_type', name='uq_embeddings_content_key'),
    )
    op.create_index(op.f('ix_embeddings_content_type'), 'embeddings', ['content_type'])

    # HNSW index for cosine similarity search
    # m=16 (max connections per layer), ef_construction=64 (quality during build)
    op.execute("""
        CREATE INDEX ix_embeddings_embedding_hnsw
        ON embeddings
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
    """)

    # ================================
    # Conversations
    # ================================
    op.create_table(
        'conversation_sessions',
        *_timestamps(),
        sa.Column('session_key', sa.String(length=255), nullable=False, comment='Opaque caller-generated session identifier'),
        sa.Column('title', sa.String(length=255), nullable=False, comment='Display title, set from the first prompt'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_conversation_sessions')),
        sa.UniqueConstraint('session_key', name=op.f('uq_conversation_sessions_session_key')),
    )
    op.create_index('ix_conversation_sessions_updated_at', 'conversation_sessions', ['updated_at'])

    op.create_table(
        'chat_messages',
        *_timestamps(),
        sa.Column('session_id', sa.Integer(), nullable=False, comment='Foreign key to conversation_sessions table'),
        sa.Column('role', sa.String(length=20), nullable=False, comment='user or assistant'),
        sa.Column('content', sa.Text(), nullable=False, comment='Message text'),
        sa.ForeignKeyConstraint(['session_id'], ['conversation_sessions.id'], name=op.f('fk_chat_messages_session_id_conversation_sessions'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_chat_messages')),
    )
    op.create_index('ix_chat_messages_session_created', 'chat_messages', ['session_id', 'created_at'])

    op.create_table(
        'chat_project_links',
        *_timestamps(),
        sa.Column('message_id', sa.Integer(), nullable=False, comment='Foreign key to chat_messages table (one link per message)'),
        sa.Column('project_id', sa.Integer(), nullable=False, comment='Foreign key to projects table'),
        sa.Column('project_image', sa.String(length=1000), nullable=True, comment='Image URL frozen at link time'),
        sa.Column('relevance', sa.Float(), nullable=False, comment='Relevance score of the project for the reply (0-1)'),
        sa.ForeignKeyConstraint(['message_id'], ['chat_messages.id'], name=op.f('fk_chat_project_links_message_id_chat_messages'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], name=op.f('fk_chat_project_links_project_id_projects'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_chat_project_links')),
        sa.UniqueConstraint('message_id', name=op.f('uq_chat_project_links_message_id')),
    )
    op.create_index(op.f('ix_chat_project_links_project_id'), 'chat_project_links', ['project_id'])


def downgrade() -> None:
    """Drop the portfolio schema (the vector extension is left installed)."""
    op.drop_index(op.f('ix_chat_project_links_project_id'), table_name='chat_project_links')
    op.drop_table('chat_project_links')

    op.drop_index('ix_chat_messages_session_created', table_name='chat_messages')
    op.drop_table('chat_messages')

    op.drop_index('ix_conversation_sessions_updated_at', table_name='conversation_sessions')
    op.drop_table('conversation_sessions')

    op.execute('DROP INDEX IF EXISTS ix_embeddings_embedding_hnsw')
    op.drop_index(op.f('ix_embeddings_content_type'), table_name='embeddings')
    op.drop_table('embeddings')

    op.drop_table('project_tags')
    op.drop_table('project_tools')
    op.drop_table('tags')
    op.drop_table('tools')

    op.drop_index(op.f('ix_project_images_project_id'), table_name='project_images')
    op.drop_table('project_images')
    op.drop_table('projects')

    op.drop_index(op.f('ix_facts_parent_id'), table_name='facts')
    op.drop_index(op.f('ix_facts_category'), table_name='facts')
    op.drop_table('facts')
