"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create agents table
    op.create_table(
        'agents',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('sip_username', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('api_token', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_agents_sip_username'), 'agents', ['sip_username'], unique=True)
    op.create_index(op.f('ix_agents_api_token'), 'agents', ['api_token'], unique=True)

    # Create inbound_numbers table
    op.create_table(
        'inbound_numbers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('e164', sa.String(), nullable=False),
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_inbound_numbers_id'), 'inbound_numbers', ['id'], unique=False)
    op.create_index(op.f('ix_inbound_numbers_e164'), 'inbound_numbers', ['e164'], unique=False)
    op.create_index(op.f('ix_inbound_numbers_org_id'), 'inbound_numbers', ['org_id'], unique=False)

    # Create org_voice_settings table
    op.create_table(
        'org_voice_settings',
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('fallback_mode', sa.String(), nullable=False),
        sa.Column('fallback_sip_username', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('org_id')
    )

    # Create agent_active_calls table (one row per agent)
    op.create_table(
        'agent_active_calls',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('agent_id', sa.String(), nullable=False),
        sa.Column('customer_leg_id', sa.String(), nullable=False),
        sa.Column('agent_leg_id', sa.String(), nullable=True),
        sa.Column('hold_state', sa.String(), nullable=False),
        sa.Column('playback_state', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_agent_active_calls_agent_id'), 'agent_active_calls', ['agent_id'], unique=True)
    op.create_index(
        op.f('ix_agent_active_calls_customer_leg_id'), 'agent_active_calls', ['customer_leg_id'], unique=False
    )

    # Create call_session_links table
    op.create_table(
        'call_session_links',
        sa.Column('call_session_id', sa.String(), nullable=False),
        sa.Column('call_control_id', sa.String(), nullable=False),
        sa.Column('direction', sa.String(), nullable=True),
        sa.Column('state', sa.String(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('call_session_id')
    )

    # Create calls table
    op.create_table(
        'calls',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('call_sid', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('direction', sa.String(), nullable=True),
        sa.Column('from_number', sa.String(), nullable=True),
        sa.Column('to_number', sa.String(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('call_session_id', sa.String(), nullable=True),
        sa.Column('call_leg_id', sa.String(), nullable=True),
        sa.Column('telnyx_recording_id', sa.String(), nullable=True),
        sa.Column('recording_state', sa.String(), nullable=False),
        sa.Column('recording_duration_ms', sa.Integer(), nullable=True),
        sa.Column('recording_started_at', sa.DateTime(), nullable=True),
        sa.Column('recording_ended_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_calls_id'), 'calls', ['id'], unique=False)
    op.create_index(op.f('ix_calls_call_sid'), 'calls', ['call_sid'], unique=True)
    op.create_index(op.f('ix_calls_call_session_id'), 'calls', ['call_session_id'], unique=False)
    op.create_index(op.f('ix_calls_call_leg_id'), 'calls', ['call_leg_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_calls_call_leg_id'), table_name='calls')
    op.drop_index(op.f('ix_calls_call_session_id'), table_name='calls')
    op.drop_index(op.f('ix_calls_call_sid'), table_name='calls')
    op.drop_index(op.f('ix_calls_id'), table_name='calls')
    op.drop_table('calls')
    op.drop_table('call_session_links')
    op.drop_index(op.f('ix_agent_active_calls_customer_leg_id'), table_name='agent_active_calls')
    op.drop_index(op.f('ix_agent_active_calls_agent_id'), table_name='agent_active_calls')
    op.drop_table('agent_active_calls')
    op.drop_table('org_voice_settings')
    op.drop_index(op.f('ix_inbound_numbers_org_id'), table_name='inbound_numbers')
    op.drop_index(op.f('ix_inbound_numbers_e164'), table_name='inbound_numbers')
    op.drop_index(op.f('ix_inbound_numbers_id'), table_name='inbound_numbers')
    op.drop_table('inbound_numbers')
    op.drop_index(op.f('ix_agents_api_token'), table_name='agents')
    op.drop_index(op.f('ix_agents_sip_username'), table_name='agents')
    op.drop_table('agents')
