"""Coaching schema - sessions, messages, escalations, feedback, curriculum read models

Revision ID: 0001
Revises: 
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Curriculum read models (owned by the course service)
    op.create_table(
        'courses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_courses_status', 'courses', ['status'])

    op.create_table(
        'lessons',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('course_id', sa.Uuid(), sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('content_text', sa.Text(), nullable=True),
        sa.Column('learning_objectives', sa.JSON(), nullable=False),
        sa.Column('sequence_order', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_lessons_course_id', 'lessons', ['course_id'])

    # Coaching sessions
    op.create_table(
        'coaching_sessions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('context_summary', sa.Text(), nullable=True),
        sa.Column('long_term_summary', sa.Text(), nullable=True),
        sa.Column('summary_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_tokens_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('message_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('summarized_through', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tokens_since_summary', sa.Integer(), nullable=False, server_default='0'),
    )
    # At most one open session per user
    op.create_index(
        'uq_coaching_sessions_user_open',
        'coaching_sessions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text('ended_at IS NULL'),
        sqlite_where=sa.text('ended_at IS NULL'),
    )
    op.create_index('ix_coaching_sessions_user_started', 'coaching_sessions', ['user_id', 'started_at'])

    # Append-only message log
    op.create_table(
        'conversation_messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('session_id', sa.Uuid(), sa.ForeignKey('coaching_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('sender', sa.String(20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('token_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sentiment_score', sa.Float(), nullable=True),
        sa.Column('risk_signals', sa.JSON(), nullable=False),
        sa.Column('citations', sa.JSON(), nullable=False),
        sa.Column('flagged_for_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reviewed_by', sa.Uuid(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('session_id', 'sequence', name='uq_conversation_messages_session_sequence'),
    )
    op.create_index('ix_conversation_messages_session_created', 'conversation_messages', ['session_id', 'created_at'])
    op.create_index('ix_conversation_messages_review', 'conversation_messages', ['flagged_for_review', 'created_at'])

    # Human review queue; never holds unredacted content
    op.create_table(
        'escalation_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('session_id', sa.Uuid(), sa.ForeignKey('coaching_sessions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('message_id', sa.Uuid(), sa.ForeignKey('conversation_messages.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('content_type', sa.String(50), nullable=False, server_default='crisis_detection'),
        sa.Column('risk_score', sa.Float(), nullable=False),
        sa.Column('signals', sa.JSON(), nullable=False),
        sa.Column('redacted_content', sa.Text(), nullable=True),
        sa.Column('content_withheld', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('suggested_resources', sa.JSON(), nullable=False),
        sa.Column('priority', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('reviewed_by', sa.Uuid(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("priority IN ('high', 'urgent')", name='ck_escalation_records_priority'),
        sa.CheckConstraint(
            "status IN ('pending', 'in_review', 'completed', 'escalated')",
            name='ck_escalation_records_status',
        ),
    )
    op.create_index('ix_escalation_records_status_priority', 'escalation_records', ['status', 'priority', 'created_at'])
    op.create_index('ix_escalation_records_user', 'escalation_records', ['user_id', 'created_at'])

    # Reply ratings
    op.create_table(
        'message_feedback',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('message_id', sa.Uuid(), sa.ForeignKey('conversation_messages.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('comment', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('message_id', 'user_id', name='uq_message_feedback_message_user'),
        sa.CheckConstraint('rating >= 1 AND rating <= 5', name='ck_message_feedback_rating'),
    )


def downgrade() -> None:
    op.drop_table('message_feedback')
    op.drop_index('ix_escalation_records_user', table_name='escalation_records')
    op.drop_index('ix_escalation_records_status_priority', table_name='escalation_records')
    op.drop_table('escalation_records')
    op.drop_index('ix_conversation_messages_review', table_name='conversation_messages')
    op.drop_index('ix_conversation_messages_session_created', table_name='conversation_messages')
    op.drop_table('conversation_messages')
    op.drop_index('ix_coaching_sessions_user_started', table_name='coaching_sessions')
    op.drop_index('uq_coaching_sessions_user_open', table_name='coaching_sessions')
    op.drop_table('coaching_sessions')
    op.drop_index('ix_lessons_course_id', table_name='lessons')
    op.drop_table('lessons')
    op.drop_index('ix_courses_status', table_name='courses')
    op.drop_table('courses')
