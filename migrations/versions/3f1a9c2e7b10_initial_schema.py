"""Initial schema

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    # ── Ownership graph ─────────────────────────────────────────────────────────
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('supervisor_agent_id', sa.String(), nullable=True, unique=True),
        sa.Column('guardian_agent_id', sa.String(), nullable=True, unique=True),
        _ts('created_at'),
    )
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('lead_agent_id', sa.String(), nullable=True),
        _ts('created_at'),
    )
    op.create_index('ix_projects_user_id', 'projects', ['user_id'])
    op.create_index('ix_projects_lead_agent_id', 'projects', ['lead_agent_id'])

    op.create_table(
        'provider_accounts',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('api_key', sa.Text(), nullable=True),
        sa.Column('config_json', sa.JSON(), nullable=False),
        _ts('created_at'),
    )
    op.create_index('ix_provider_accounts_project_id', 'provider_accounts', ['project_id'])

    op.create_table(
        'agents',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('system_prompt', sa.Text(), nullable=False),
        sa.Column('default_model', sa.String(), nullable=False),
        sa.Column('provider_account_id', sa.String(),
                  sa.ForeignKey('provider_accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('tool_names', sa.JSON(), nullable=False),
        sa.Column('skill_paths', sa.JSON(), nullable=False),
        sa.Column('is_sleeping', sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts('sleeping_since'),
        _ts('context_reset_at'),
        sa.Column('is_supervisor', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_guardian', sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts('created_at'),
    )
    op.create_index('ix_agents_project_id', 'agents', ['project_id'])

    # users/projects -> agents close the cycle once agents exists
    op.create_foreign_key('fk_users_supervisor_agent', 'users', 'agents',
                          ['supervisor_agent_id'], ['id'], ondelete='SET NULL')
    op.create_foreign_key('fk_users_guardian_agent', 'users', 'agents',
                          ['guardian_agent_id'], ['id'], ondelete='SET NULL')
    op.create_foreign_key('fk_projects_lead_agent', 'projects', 'agents',
                          ['lead_agent_id'], ['id'], ondelete='SET NULL')

    op.create_table(
        'groups',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('notice', sa.Text(), nullable=True),
        sa.Column('owner_agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='SET NULL'), nullable=True),
        _ts('created_at'),
        sa.UniqueConstraint('project_id', 'name'),
    )
    op.create_index('ix_groups_project_id', 'groups', ['project_id'])
    op.create_index('ix_groups_owner_agent_id', 'groups', ['owner_agent_id'])

    op.create_table(
        'group_members',
        sa.Column('group_id', sa.String(), sa.ForeignKey('groups.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('role', sa.String(), nullable=False),
        _ts('created_at'),
    )
    op.create_index('ix_group_members_agent_id', 'group_members', ['agent_id'])

    op.create_table(
        'group_messages',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('group_id', sa.String(), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_type', sa.String(), nullable=False),
        sa.Column('sender_user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('sender_agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='SET NULL'), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        _ts('created_at'),
    )
    op.create_index('ix_group_messages_group_id', 'group_messages', ['group_id'])
    op.create_index('ix_group_messages_sender_agent_id', 'group_messages', ['sender_agent_id'])
    op.create_index('ix_group_messages_created_at', 'group_messages', ['created_at'])

    # ── Sessions ────────────────────────────────────────────────────────────────
    op.create_table(
        'sessions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('ix_sessions_project_id', 'sessions', ['project_id'])
    op.create_index('ix_sessions_agent_id', 'sessions', ['agent_id'])

    op.create_table(
        'messages',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('tool_name', sa.String(), nullable=True),
        sa.Column('tool_call_id', sa.String(), nullable=True),
        sa.Column('token_input', sa.Integer(), nullable=True),
        sa.Column('token_input_cached', sa.Integer(), nullable=True),
        sa.Column('token_input_uncached', sa.Integer(), nullable=True),
        sa.Column('token_output', sa.Integer(), nullable=True),
        sa.Column('token_total', sa.Integer(), nullable=True),
        _ts('created_at'),
        sa.CheckConstraint(
            "role <> 'tool' OR (tool_name IS NOT NULL AND tool_call_id IS NOT NULL)",
            name='ck_messages_tool_linkage',
        ),
    )
    op.create_index('ix_messages_session_id', 'messages', ['session_id'])
    op.create_index('ix_messages_created_at', 'messages', ['created_at'])

    op.create_table(
        'session_summaries',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), sa.ForeignKey('sessions.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('up_to_message_id', sa.String(), nullable=True),
        sa.Column('summary_markdown', sa.Text(), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
    )

    # ── Runs ────────────────────────────────────────────────────────────────────
    op.create_table(
        'runs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', sa.String(), sa.ForeignKey('sessions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('input', sa.JSON(), nullable=False),
        sa.Column('output_json', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        _ts('created_at'),
        _ts('started_at'),
        _ts('finished_at'),
    )
    op.create_index('ix_runs_project_id', 'runs', ['project_id'])
    op.create_index('ix_runs_agent_id', 'runs', ['agent_id'])
    op.create_index('ix_runs_session_id', 'runs', ['session_id'])
    op.create_index('ix_runs_status', 'runs', ['status'])
    op.create_index('ix_runs_created_at', 'runs', ['created_at'])

    op.create_table(
        'run_events',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('run_id', sa.String(), sa.ForeignKey('runs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        _ts('created_at'),
        sa.UniqueConstraint('run_id', 'seq', name='uq_run_events_run_seq'),
    )
    op.create_index('ix_run_events_run_id', 'run_events', ['run_id'])

    # ── Routines ────────────────────────────────────────────────────────────────
    op.create_table(
        'agent_routines',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('cron', sa.String(), nullable=False),
        sa.Column('timezone', sa.String(), nullable=False, server_default='UTC'),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('payload', sa.JSON(), nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
        sa.UniqueConstraint('agent_id', 'name', name='uq_agent_routines_agent_name'),
    )
    op.create_index('ix_agent_routines_agent_id', 'agent_routines', ['agent_id'])
    op.create_index('ix_agent_routines_enabled', 'agent_routines', ['enabled'])

    op.create_table(
        'agent_routine_logs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('routine_id', sa.String(), sa.ForeignKey('agent_routines.id', ondelete='CASCADE'), nullable=False),
        sa.Column('agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        _ts('created_at'),
    )
    op.create_index('ix_agent_routine_logs_routine_id', 'agent_routine_logs', ['routine_id'])
    op.create_index('ix_agent_routine_logs_agent_id', 'agent_routine_logs', ['agent_id'])
    op.create_index('ix_agent_routine_logs_created_at', 'agent_routine_logs', ['created_at'])

    # ── Skills ──────────────────────────────────────────────────────────────────
    op.create_table(
        'generated_skills',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rel_path', sa.String(), nullable=False),
        sa.Column('skill_ref', sa.String(), nullable=False),
        _ts('created_at'),
        sa.UniqueConstraint('agent_id', 'rel_path'),
    )
    op.create_index('ix_generated_skills_agent_id', 'generated_skills', ['agent_id'])

    op.create_table(
        'skill_ratings',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('generated_skill_id', sa.String(),
                  sa.ForeignKey('generated_skills.id', ondelete='SET NULL'), nullable=True),
        sa.Column('skill_path', sa.String(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        _ts('created_at'),
    )
    op.create_index('ix_skill_ratings_agent_id', 'skill_ratings', ['agent_id'])
    op.create_index('ix_skill_ratings_generated_skill_id', 'skill_ratings', ['generated_skill_id'])
    op.create_index('ix_skill_ratings_skill_path', 'skill_ratings', ['skill_path'])

    # ── Operations ──────────────────────────────────────────────────────────────
    op.create_table(
        'agent_mail',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('from_agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('to_agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('body_markdown', sa.Text(), nullable=False),
        _ts('created_at'),
        _ts('read_at'),
    )
    op.create_index('ix_agent_mail_from_agent_id', 'agent_mail', ['from_agent_id'])
    op.create_index('ix_agent_mail_to_agent_id', 'agent_mail', ['to_agent_id'])

    op.create_table(
        'email_outbox',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='SET NULL'), nullable=True),
        sa.Column('to', sa.String(), nullable=False),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('body_markdown', sa.Text(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='stored'),
        sa.Column('error', sa.Text(), nullable=True),
        _ts('created_at'),
        _ts('sent_at'),
    )
    op.create_index('ix_email_outbox_user_id', 'email_outbox', ['user_id'])
    op.create_index('ix_email_outbox_agent_id', 'email_outbox', ['agent_id'])

    op.create_table(
        'system_logs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('service', sa.String(), nullable=False),
        sa.Column('level', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('stack', sa.Text(), nullable=True),
        sa.Column('meta_json', sa.JSON(), nullable=True),
        _ts('created_at'),
    )
    op.create_index('ix_system_logs_user_id', 'system_logs', ['user_id'])
    op.create_index('ix_system_logs_created_at', 'system_logs', ['created_at'])

    op.create_table(
        'patch_proposals',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('agent_id', sa.String(), sa.ForeignKey('agents.id', ondelete='SET NULL'), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('patch_text', sa.Text(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='proposed'),
        _ts('created_at'),
    )
    op.create_index('ix_patch_proposals_user_id', 'patch_proposals', ['user_id'])

    # ── Documents ───────────────────────────────────────────────────────────────
    op.create_table(
        'documents',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('mime', sa.String(), nullable=False),
        sa.Column('storage_path', sa.String(), nullable=False),
        _ts('created_at'),
    )
    op.create_index('ix_documents_project_id', 'documents', ['project_id'])

    op.create_table(
        'document_chunks',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('document_id', sa.String(), sa.ForeignKey('documents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('idx', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('metadata_json', sa.JSON(), nullable=False),
        _ts('created_at'),
    )
    op.create_index('ix_document_chunks_document_id', 'document_chunks', ['document_id'])


def downgrade() -> None:
    op.drop_table('document_chunks')
    op.drop_table('documents')
    op.drop_table('patch_proposals')
    op.drop_table('system_logs')
    op.drop_table('email_outbox')
    op.drop_table('agent_mail')
    op.drop_table('skill_ratings')
    op.drop_table('generated_skills')
    op.drop_table('agent_routine_logs')
    op.drop_table('agent_routines')
    op.drop_table('run_events')
    op.drop_table('runs')
    op.drop_table('session_summaries')
    op.drop_table('messages')
    op.drop_table('sessions')
    op.drop_table('group_messages')
    op.drop_table('group_members')
    op.drop_table('groups')
    op.drop_constraint('fk_projects_lead_agent', 'projects', type_='foreignkey')
    op.drop_constraint('fk_users_guardian_agent', 'users', type_='foreignkey')
    op.drop_constraint('fk_users_supervisor_agent', 'users', type_='foreignkey')
    op.drop_table('agents')
    op.drop_table('provider_accounts')
    op.drop_table('projects')
    op.drop_table('users')
