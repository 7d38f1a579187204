"""AI core schema: registry, prompt templates, conversations, usage logs

Revision ID: 001
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'ai_services',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column('provider', sa.String(30), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), default=True),
        sa.Column('priority', sa.Integer(), default=1),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        'ai_models',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('service_id', sa.Integer(), sa.ForeignKey('ai_services.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column('model_identifier', sa.String(100), nullable=False),
        sa.Column('cost_per_input_token', sa.Float()),
        sa.Column('cost_per_output_token', sa.Float()),
        sa.Column('is_enabled', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_ai_models_service_id', 'ai_models', ['service_id'])

    op.create_table(
        'prompt_templates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer()),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False, unique=True),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('template', sa.Text(), nullable=False),
        sa.Column('variables', sa.JSON()),
        sa.Column('example_data', sa.JSON()),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_rating', sa.Float()),
        sa.Column('rating_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_prompt_templates_owner_id', 'prompt_templates', ['owner_id'])
    op.create_index('ix_prompt_templates_category', 'prompt_templates', ['category'])

    op.create_table(
        'prompt_template_tags',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('template_id', sa.Integer(), sa.ForeignKey('prompt_templates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tag', sa.String(50), nullable=False),
        sa.UniqueConstraint('template_id', 'tag', name='uix_template_tag'),
    )
    op.create_index('ix_prompt_template_tags_template_id', 'prompt_template_tags', ['template_id'])
    op.create_index('ix_prompt_template_tags_tag', 'prompt_template_tags', ['tag'])

    op.create_table(
        'conversations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('model_id', sa.Integer(), sa.ForeignKey('ai_models.id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('context_type', sa.String(50)),
        sa.Column('context_id', sa.Integer()),
        sa.Column('message_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('last_message_at', sa.DateTime()),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('metadata', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_conversations_owner_id', 'conversations', ['owner_id'])
    op.create_index('ix_conversations_model_id', 'conversations', ['model_id'])
    op.create_index('ix_conversations_context_type', 'conversations', ['context_type'])
    op.create_index('ix_conversations_last_message_at', 'conversations', ['last_message_at'])

    op.create_table(
        'conversation_messages',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('metadata', sa.JSON()),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('conversation_id', 'sequence', name='uix_conversation_sequence'),
    )
    op.create_index('idx_conversation_messages_conversation', 'conversation_messages', ['conversation_id', 'sequence'])

    op.create_table(
        'usage_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('model_id', sa.Integer(), sa.ForeignKey('ai_models.id'), nullable=False),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id', ondelete='SET NULL')),
        sa.Column('template_id', sa.Integer(), sa.ForeignKey('prompt_templates.id')),
        sa.Column('operation_type', sa.String(20), nullable=False),
        sa.Column('context_type', sa.String(50)),
        sa.Column('context_id', sa.Integer()),
        sa.Column('prompt', sa.Text()),
        sa.Column('response', sa.Text()),
        sa.Column('input_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('output_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('response_time_ms', sa.Integer()),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('error_message', sa.Text()),
        sa.Column('metadata', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_usage_logs_user_id', 'usage_logs', ['user_id'])
    op.create_index('ix_usage_logs_model_id', 'usage_logs', ['model_id'])
    op.create_index('ix_usage_logs_conversation_id', 'usage_logs', ['conversation_id'])
    op.create_index('ix_usage_logs_template_id', 'usage_logs', ['template_id'])
    op.create_index('idx_usage_logs_created', 'usage_logs', ['created_at'])
    op.create_index('idx_usage_logs_user_created', 'usage_logs', ['user_id', 'created_at'])
    op.create_index('idx_usage_logs_status_created', 'usage_logs', ['status', 'created_at'])


def downgrade():
    op.drop_table('usage_logs')
    op.drop_table('conversation_messages')
    op.drop_table('conversations')
    op.drop_table('prompt_template_tags')
    op.drop_table('prompt_templates')
    op.drop_table('ai_models')
    op.drop_table('ai_services')
