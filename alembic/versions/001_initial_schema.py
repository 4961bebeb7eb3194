"""Initial schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

Adds:
- pool_snapshots: append-only APY/TVL/score time series per pool
- automation_records: one audit row per automation cycle
- market_averages: TVL-weighted APY (all pools + per input token)
- vault_snapshots: vault idle/allocated distribution per cycle
- scheduled_task_executions: scheduler run tracking
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

DECISIONS = ("no_action", "deposit_idle", "reallocate_to_better_pool", "error")


def upgrade() -> None:
    op.create_table(
        'pool_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('pool_address', sa.String(42), nullable=False),
        sa.Column('chain', sa.String(50), nullable=False),
        sa.Column('description', sa.String(255), nullable=True),
        sa.Column('url', sa.String(500), nullable=True),
        sa.Column('input_token', sa.String(42), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('historic_apy', sa.Float(), nullable=False),
        sa.Column('rewards_apy', sa.Float(), nullable=False),
        sa.Column('total_apy', sa.Float(), nullable=False),
        sa.Column('tvl', sa.Float(), nullable=True),
        sa.Column('tvl_usd', sa.Float(), nullable=True),
        sa.Column('opportunity_score', sa.Float(), nullable=True),
        sa.Column('opportunity_score_details', sa.JSON(), nullable=True),
        sa.Column('opportunity_score_asset_size', sa.Float(), nullable=True),
        sa.Column('raw_response', sa.JSON(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
    )
    op.create_index('ix_pool_snapshots_pool_address', 'pool_snapshots', ['pool_address'])
    op.create_index('ix_pool_snapshots_input_token', 'pool_snapshots', ['input_token'])
    op.create_index('ix_pool_snapshots_timestamp', 'pool_snapshots', ['timestamp'])
    op.create_index('ix_pool_snapshots_success', 'pool_snapshots', ['success'])
    op.create_index('idx_snapshot_pool_time', 'pool_snapshots', ['pool_address', 'timestamp'])
    op.create_index('idx_snapshot_success_time', 'pool_snapshots', ['success', 'timestamp'])

    op.create_table(
        'automation_records',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('vault_address', sa.String(42), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('best_pool', sa.JSON(), nullable=True),
        sa.Column('current_pool', sa.JSON(), nullable=True),
        sa.Column('available_pools', sa.JSON(), nullable=True),
        sa.Column('vault_state', sa.JSON(), nullable=True),
        sa.Column('decision', sa.Enum(*DECISIONS, name='automation_decision'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('action', sa.JSON(), nullable=True),
        sa.Column('better_pool_found', sa.Boolean(), nullable=False),
        sa.Column('opportunity_score_difference', sa.Float(), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
    )
    op.create_index('ix_automation_records_vault_address', 'automation_records', ['vault_address'])
    op.create_index('ix_automation_records_timestamp', 'automation_records', ['timestamp'])
    op.create_index('ix_automation_records_decision', 'automation_records', ['decision'])
    op.create_index('idx_automation_vault_time', 'automation_records', ['vault_address', 'timestamp'])
    op.create_index('idx_automation_decision_time', 'automation_records', ['decision', 'timestamp'])

    op.create_table(
        'market_averages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('token_address', sa.String(42), nullable=True),
        sa.Column('market_avg_apy', sa.Float(), nullable=False),
        sa.Column('total_tvl', sa.Float(), nullable=False),
        sa.Column('total_tvl_usd', sa.Float(), nullable=False),
        sa.Column('pool_count', sa.Integer(), nullable=False),
        sa.Column('pool_breakdown', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_market_averages_token_address', 'market_averages', ['token_address'])
    op.create_index('ix_market_averages_timestamp', 'market_averages', ['timestamp'])
    op.create_index('idx_market_avg_token_time', 'market_averages', ['token_address', 'timestamp'])

    op.create_table(
        'vault_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('vault_address', sa.String(42), nullable=False),
        sa.Column('idle_balance', sa.String(80), nullable=False),
        sa.Column('total_allocated', sa.String(80), nullable=False),
        sa.Column('total_assets', sa.String(80), nullable=False),
        sa.Column('total_tvl', sa.Float(), nullable=False),
        sa.Column('allocations', sa.JSON(), nullable=True),
        sa.Column('tvl_mismatch', sa.Boolean(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_vault_snapshots_vault_address', 'vault_snapshots', ['vault_address'])
    op.create_index('ix_vault_snapshots_timestamp', 'vault_snapshots', ['timestamp'])

    op.create_table(
        'scheduled_task_executions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('task_name', sa.String(100), nullable=False),
        sa.Column('task_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('triggered_by', sa.String(100), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('task_metadata', sa.JSON(), nullable=True),
    )
    op.create_index('ix_scheduled_task_executions_task_name', 'scheduled_task_executions', ['task_name'])
    op.create_index('ix_scheduled_task_executions_status', 'scheduled_task_executions', ['status'])
    op.create_index('ix_scheduled_task_executions_started_at', 'scheduled_task_executions', ['started_at'])


def downgrade() -> None:
    op.drop_table('scheduled_task_executions')
    op.drop_table('vault_snapshots')
    op.drop_table('market_averages')
    op.drop_table('automation_records')
    op.drop_table('pool_snapshots')
    sa.Enum(name='automation_decision').drop(op.get_bind(), checkfirst=True)
