"""create analytics tables

Revision ID: c4f1a9e2b7d3
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = 'c4f1a9e2b7d3'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('analytics_visitors',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('fingerprint', sa.String(length=64), nullable=True),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('country', sa.String(length=2), nullable=True),
        sa.Column('region', sa.String(length=100), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('device_type', sa.String(length=20), nullable=False, server_default='other'),
        sa.Column('browser', sa.String(length=50), nullable=True),
        sa.Column('browser_version', sa.String(length=20), nullable=True),
        sa.Column('os', sa.String(length=50), nullable=True),
        sa.Column('os_version', sa.String(length=20), nullable=True),
        sa.Column('screen_width', sa.Integer(), nullable=True),
        sa.Column('screen_height', sa.Integer(), nullable=True),
        sa.Column('language', sa.String(length=10), nullable=True),
        sa.Column('timezone', sa.String(length=50), nullable=True),
        sa.Column('total_sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_pageviews', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_events', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tenant_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'fingerprint', name='uq_analytics_visitors_site_fingerprint')
    )
    op.create_index(op.f('ix_analytics_visitors_site_id'), 'analytics_visitors', ['site_id'], unique=False)
    op.create_index(op.f('ix_analytics_visitors_tenant_id'), 'analytics_visitors', ['tenant_id'], unique=False)
    op.create_index('ix_analytics_visitors_site_last_seen', 'analytics_visitors', ['site_id', 'last_seen_at'], unique=False)
    op.create_index('ix_analytics_visitors_site_first_seen', 'analytics_visitors', ['site_id', 'first_seen_at'], unique=False)

    op.create_table('analytics_sessions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('visitor_id', sa.String(length=36), nullable=False),
        sa.Column('session_token', sa.String(length=64), nullable=False),
        sa.Column('active_token', sa.String(length=64), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('last_activity_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('entry_page', sa.String(length=2048), nullable=False, server_default='/'),
        sa.Column('exit_page', sa.String(length=2048), nullable=True),
        sa.Column('landing_page_title', sa.String(length=500), nullable=True),
        sa.Column('page_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_bounce', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('referrer', sa.String(length=2048), nullable=True),
        sa.Column('referrer_domain', sa.String(length=255), nullable=True),
        sa.Column('referrer_type', sa.String(length=20), nullable=False, server_default='direct'),
        sa.Column('utm_source', sa.String(length=255), nullable=True),
        sa.Column('utm_medium', sa.String(length=255), nullable=True),
        sa.Column('utm_campaign', sa.String(length=255), nullable=True),
        sa.Column('utm_term', sa.String(length=255), nullable=True),
        sa.Column('utm_content', sa.String(length=255), nullable=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['visitor_id'], ['analytics_visitors.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'active_token', name='uq_analytics_sessions_site_active_token')
    )
    op.create_index(op.f('ix_analytics_sessions_site_id'), 'analytics_sessions', ['site_id'], unique=False)
    op.create_index(op.f('ix_analytics_sessions_session_token'), 'analytics_sessions', ['session_token'], unique=False)
    op.create_index(op.f('ix_analytics_sessions_tenant_id'), 'analytics_sessions', ['tenant_id'], unique=False)
    op.create_index('ix_analytics_sessions_site_visitor', 'analytics_sessions', ['site_id', 'visitor_id'], unique=False)
    op.create_index('ix_analytics_sessions_site_started', 'analytics_sessions', ['site_id', 'started_at'], unique=False)
    op.create_index('ix_analytics_sessions_site_ended', 'analytics_sessions', ['site_id', 'ended_at'], unique=False)

    op.create_table('analytics_page_views',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=True),
        sa.Column('visitor_id', sa.String(length=36), nullable=False),
        sa.Column('path', sa.String(length=2048), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=True),
        sa.Column('referrer', sa.String(length=2048), nullable=True),
        sa.Column('query_string', sa.String(length=2048), nullable=True),
        sa.Column('time_on_page', sa.Integer(), nullable=True),
        sa.Column('engaged_time', sa.Integer(), nullable=True),
        sa.Column('scroll_depth', sa.Integer(), nullable=True),
        sa.Column('load_time', sa.Integer(), nullable=True),
        sa.Column('custom_data', sa.JSON(), nullable=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['analytics_sessions.id'], ),
        sa.ForeignKeyConstraint(['visitor_id'], ['analytics_visitors.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_analytics_page_views_tenant_id'), 'analytics_page_views', ['tenant_id'], unique=False)
    op.create_index('ix_analytics_page_views_site_session', 'analytics_page_views', ['site_id', 'session_id'], unique=False)
    op.create_index('ix_analytics_page_views_site_visitor', 'analytics_page_views', ['site_id', 'visitor_id'], unique=False)
    op.create_index('ix_analytics_page_views_site_created', 'analytics_page_views', ['site_id', 'created_at'], unique=False)

    op.create_table('analytics_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=True),
        sa.Column('visitor_id', sa.String(length=36), nullable=True),
        sa.Column('page_view_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=True),
        sa.Column('label', sa.String(length=255), nullable=True),
        sa.Column('properties', sa.JSON(), nullable=True),
        sa.Column('value', sa.Float(), nullable=True),
        sa.Column('source_package', sa.String(length=100), nullable=True),
        sa.Column('path', sa.String(length=2048), nullable=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['analytics_sessions.id'], ),
        sa.ForeignKeyConstraint(['visitor_id'], ['analytics_visitors.id'], ),
        sa.ForeignKeyConstraint(['page_view_id'], ['analytics_page_views.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_analytics_events_tenant_id'), 'analytics_events', ['tenant_id'], unique=False)
    op.create_index('ix_analytics_events_site_name', 'analytics_events', ['site_id', 'name'], unique=False)
    op.create_index('ix_analytics_events_site_session', 'analytics_events', ['site_id', 'session_id'], unique=False)
    op.create_index('ix_analytics_events_site_created', 'analytics_events', ['site_id', 'created_at'], unique=False)
    op.create_index('ix_analytics_events_name_created', 'analytics_events', ['name', 'created_at'], unique=False)

    op.create_table('analytics_goals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('conditions', sa.JSON(), nullable=False),
        sa.Column('value_type', sa.String(length=20), nullable=False, server_default='none'),
        sa.Column('fixed_value', sa.Float(), nullable=True),
        sa.Column('dynamic_value_path', sa.String(length=255), nullable=True),
        sa.Column('funnel_steps', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('tenant_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_analytics_goals_tenant_id'), 'analytics_goals', ['tenant_id'], unique=False)
    op.create_index('ix_analytics_goals_site_active', 'analytics_goals', ['site_id', 'is_active'], unique=False)
    op.create_index('ix_analytics_goals_site_type', 'analytics_goals', ['site_id', 'type'], unique=False)

    op.create_table('analytics_conversions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=True),
        sa.Column('goal_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=True),
        sa.Column('visitor_id', sa.String(length=36), nullable=True),
        sa.Column('event_id', sa.Integer(), nullable=True),
        sa.Column('page_view_id', sa.Integer(), nullable=True),
        sa.Column('value', sa.Float(), nullable=True),
        sa.Column('meta_json', sa.Text(), nullable=True),
        sa.Column('dedupe_key', sa.String(length=80), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['goal_id'], ['analytics_goals.id'], ),
        sa.ForeignKeyConstraint(['session_id'], ['analytics_sessions.id'], ),
        sa.ForeignKeyConstraint(['visitor_id'], ['analytics_visitors.id'], ),
        sa.ForeignKeyConstraint(['event_id'], ['analytics_events.id'], ),
        sa.ForeignKeyConstraint(['page_view_id'], ['analytics_page_views.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('goal_id', 'dedupe_key', name='uq_analytics_conversions_goal_dedupe')
    )
    op.create_index(op.f('ix_analytics_conversions_tenant_id'), 'analytics_conversions', ['tenant_id'], unique=False)
    op.create_index('ix_analytics_conversions_site_goal', 'analytics_conversions', ['site_id', 'goal_id'], unique=False)
    op.create_index('ix_analytics_conversions_goal_created', 'analytics_conversions', ['goal_id', 'created_at'], unique=False)
    op.create_index('ix_analytics_conversions_goal_session', 'analytics_conversions', ['goal_id', 'session_id'], unique=False)
    op.create_index('ix_analytics_conversions_goal_visitor', 'analytics_conversions', ['goal_id', 'visitor_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('analytics_conversions')
    op.drop_table('analytics_goals')
    op.drop_table('analytics_events')
    op.drop_table('analytics_page_views')
    op.drop_table('analytics_sessions')
    op.drop_table('analytics_visitors')
