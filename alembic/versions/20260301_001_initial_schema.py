"""Initial schema - owners, agents, channel bindings, sessions, cron, activity, transactions

Revision ID: 001_initial
Revises:
Create Date: 2026-03-01
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Owners
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), unique=True, nullable=True),
        sa.Column('wallet_address', sa.String(42), nullable=True, index=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('openrouter_api_key', sa.Text, nullable=True),
        sa.Column('openai_api_key', sa.Text, nullable=True),
        sa.Column('groq_api_key', sa.Text, nullable=True),
        sa.Column('grok_api_key', sa.Text, nullable=True),
        sa.Column('gemini_api_key', sa.Text, nullable=True),
        sa.Column('deepseek_api_key', sa.Text, nullable=True),
        sa.Column('zai_api_key', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    # Agents
    op.create_table(
        'agents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), sa.ForeignKey('users.id'), index=True, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('template_type', sa.String(30), nullable=False, server_default='custom'),
        sa.Column('system_prompt', sa.Text, nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='deploying', index=True),
        sa.Column('llm_provider', sa.String(30), nullable=False, server_default='openrouter'),
        sa.Column('llm_model', sa.String(200), nullable=False),
        sa.Column('agent_wallet_address', sa.String(42), nullable=True),
        sa.Column('wallet_derivation_index', sa.Integer, nullable=True),
        sa.Column('spending_limit', sa.Float, nullable=True),
        sa.Column('spending_used', sa.Float, nullable=False, server_default='0'),
        sa.Column('pairing_code', sa.String(6), nullable=True, index=True),
        sa.Column('pairing_code_expires_at', sa.DateTime, nullable=True),
        sa.Column('telegram_bot_token', sa.Text, nullable=True),
        sa.Column('telegram_chat_ids', sa.Text, nullable=True),
        sa.Column('webhook_secret', sa.String(128), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('deployed_at', sa.DateTime, nullable=True),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # Channel bindings (sender → agent)
    op.create_table(
        'channel_bindings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('agent_id', sa.String(36), sa.ForeignKey('agents.id'), index=True, nullable=False),
        sa.Column('channel_type', sa.String(20), nullable=False),
        sa.Column('sender_identifier', sa.String(255), nullable=False),
        sa.Column('sender_name', sa.String(255), nullable=True),
        sa.Column('chat_identifier', sa.String(255), nullable=True),
        sa.Column('pairing_code', sa.String(6), nullable=True),
        sa.Column('binding_type', sa.String(20), nullable=False, server_default='pairing'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('paired_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('last_message_at', sa.DateTime, nullable=True),
    )
    # At most one active binding per sender
    op.create_index(
        'uq_channel_bindings_active_sender',
        'channel_bindings',
        ['channel_type', 'sender_identifier'],
        unique=True,
        sqlite_where=sa.text('is_active'),
        postgresql_where=sa.text('is_active'),
    )

    # Per-binding conversation history
    op.create_table(
        'session_messages',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('binding_id', sa.String(36), sa.ForeignKey('channel_bindings.id'), index=True, nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('metadata_json', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), index=True),
    )

    # Scheduled jobs
    op.create_table(
        'cron_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('agent_id', sa.String(36), sa.ForeignKey('agents.id'), index=True, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('schedule_kind', sa.String(20), nullable=False),
        sa.Column('schedule_spec', sa.String(200), nullable=False),
        sa.Column('schedule_at', sa.DateTime, nullable=True),
        sa.Column('schedule_interval_seconds', sa.Integer, nullable=True),
        sa.Column('schedule_cron_expr', sa.String(100), nullable=True),
        sa.Column('skill_prompt', sa.Text, nullable=False),
        sa.Column('enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('last_run_at', sa.DateTime, nullable=True),
        sa.Column('last_result', sa.String(200), nullable=True),
        sa.Column('run_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    # Activity feed
    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('agent_id', sa.String(36), sa.ForeignKey('agents.id'), index=True, nullable=False),
        sa.Column('type', sa.String(20), nullable=False, server_default='action'),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('metadata_json', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), index=True),
    )

    # On-chain transfers
    op.create_table(
        'transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('agent_id', sa.String(36), sa.ForeignKey('agents.id'), index=True, nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=True, index=True),
        sa.Column('type', sa.String(20), nullable=False, server_default='send'),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('to_address', sa.String(42), nullable=True),
        sa.Column('amount', sa.Float, nullable=True),
        sa.Column('currency', sa.String(42), nullable=True),
        sa.Column('block_number', sa.BigInteger, nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('transactions')
    op.drop_table('activity_logs')
    op.drop_table('cron_jobs')
    op.drop_table('session_messages')
    op.drop_index('uq_channel_bindings_active_sender', table_name='channel_bindings')
    op.drop_table('channel_bindings')
    op.drop_table('agents')
    op.drop_table('users')
