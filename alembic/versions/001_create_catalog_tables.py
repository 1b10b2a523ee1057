"""Create catalog cache tables

Revision ID: 001_create_catalog_tables
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_create_catalog_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create games, franchise, lock and token tables."""
    op.create_table(
        'games',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('external_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('search_title', sa.String(length=500), nullable=False),
        sa.Column('release_year', sa.Integer(), nullable=True),
        sa.Column('type_code', sa.SmallInteger(), nullable=True),
        sa.Column('category_code', sa.SmallInteger(), nullable=True),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('version_parent_id', sa.Integer(), nullable=True),
        sa.Column('franchise_names', sa.JSON(), nullable=True),
        sa.Column('cover_url', sa.String(length=500), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_games_external_id', 'games', ['external_id'], unique=True)
    op.create_index('ix_games_search_title', 'games', ['search_title'], unique=False)

    op.create_table(
        'game_franchises',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('external_id', sa.Integer(), nullable=False),
        sa.Column('franchise_key', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id', 'franchise_key', name='uq_game_franchise')
    )
    op.create_index('ix_game_franchises_external_id', 'game_franchises', ['external_id'], unique=False)
    op.create_index('ix_game_franchises_franchise_key', 'game_franchises', ['franchise_key'], unique=False)

    op.create_table(
        'franchise_metadata',
        sa.Column('franchise_key', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False),
        sa.Column('total_known_upstream', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cached_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_checked_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('franchise_key')
    )

    op.create_table(
        'search_locks',
        sa.Column('query_key', sa.String(length=255), nullable=False),
        sa.Column('owner', sa.String(length=64), nullable=False),
        sa.Column('acquired_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('query_key')
    )
    op.create_index('ix_search_locks_expires_at', 'search_locks', ['expires_at'], unique=False)

    op.create_table(
        'api_tokens',
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('access_token', sa.String(length=500), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('provider')
    )


def downgrade() -> None:
    """Drop catalog cache tables."""
    op.drop_table('api_tokens')
    op.drop_index('ix_search_locks_expires_at', table_name='search_locks')
    op.drop_table('search_locks')
    op.drop_table('franchise_metadata')
    op.drop_index('ix_game_franchises_franchise_key', table_name='game_franchises')
    op.drop_index('ix_game_franchises_external_id', table_name='game_franchises')
    op.drop_table('game_franchises')
    op.drop_index('ix_games_search_title', table_name='games')
    op.drop_index('ix_games_external_id', table_name='games')
    op.drop_table('games')
