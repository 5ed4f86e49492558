"""Initial migration - create all tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-17

Creates all database tables for the Quiz Attempt Engine:
- quizzes: Quiz configuration (attempt cap, grading strategy, status)
- attempts: Attempt state (durations, pending gap, ledger, final scores)
- conversation_messages: Grading conversation messages per attempt

Also creates indexes for common query patterns.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Quizzes Table ─────────────────────────────────────────
    op.create_table(
        'quizzes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('classroom_id', sa.String(36), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('grading_strategy', sa.Text(), nullable=False, server_default='HIGHEST'),
        sa.Column('status', sa.Text(), nullable=False, server_default='DRAFT'),
        sa.Column('question_count', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
    )
    op.create_index('ix_quizzes_classroom_id', 'quizzes', ['classroom_id'])

    # ── Attempts Table ────────────────────────────────────────
    op.create_table(
        'attempts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('quiz_id', sa.String(36), sa.ForeignKey('quizzes.id'), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('total_duration_ms', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('unfocused_duration_ms', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('modal_closed_at', sa.DateTime(), nullable=True),
        sa.Column('question_results', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('partial_credit_percentage', sa.Float(), nullable=True),
        sa.Column('first_attempt_percentage', sa.Float(), nullable=True),
        sa.Column('session_status', sa.Text(), nullable=False, server_default='in_progress'),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )

    # Indexes for common query patterns on attempts
    op.create_index('ix_attempts_quiz_user', 'attempts', ['quiz_id', 'user_id'])
    op.create_index('ix_attempts_user_id', 'attempts', ['user_id'])
    op.create_index('ix_attempts_completed_at', 'attempts', ['completed_at'])

    # ── Conversation Messages Table ───────────────────────────
    op.create_table(
        'conversation_messages',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('attempt_id', sa.String(36), sa.ForeignKey('attempts.id'), nullable=False),
        sa.Column('role', sa.Text(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_conversation_messages_attempt_id', 'conversation_messages', ['attempt_id'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index('ix_conversation_messages_attempt_id', table_name='conversation_messages')
    op.drop_table('conversation_messages')
    op.drop_index('ix_attempts_completed_at', table_name='attempts')
    op.drop_index('ix_attempts_user_id', table_name='attempts')
    op.drop_index('ix_attempts_quiz_user', table_name='attempts')
    op.drop_table('attempts')
    op.drop_index('ix_quizzes_classroom_id', table_name='quizzes')
    op.drop_table('quizzes')
