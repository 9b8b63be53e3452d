"""work-day time tracking and quality control

Revision ID: pf002
Revises: pf001
Create Date: 2026-10-18 12:00:00.000000

Adds:
- time_tracking_settings: single settings row
- attendance_sessions, attendance_breaks: work days and their breaks
- quality_check_templates, quality_checks: checklists and recorded results
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'pf002'
down_revision = 'pf001'
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def _updated_at():
    return sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # Time tracking
    # ============================================================================
    op.create_table(
        'time_tracking_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('enable_break_button', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('min_session_duration', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_session_duration', sa.Integer(), nullable=False, server_default='720'),
        sa.Column('max_break_duration', sa.Integer(), nullable=False, server_default='60'),
        _updated_at(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'attendance_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('total_duration', sa.Integer(), nullable=True),
        sa.Column('total_break_duration', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_attendance_sessions_user_id', 'attendance_sessions', ['user_id'])
    op.create_index('ix_attendance_sessions_user_status', 'attendance_sessions', ['user_id', 'status'])
    op.create_index('ix_attendance_sessions_start', 'attendance_sessions', ['start_time'])

    op.create_table(
        'attendance_breaks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.ForeignKeyConstraint(['session_id'], ['attendance_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_attendance_breaks_session_id', 'attendance_breaks', ['session_id'])

    # ============================================================================
    # Quality control
    # ============================================================================
    op.create_table(
        'quality_check_templates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'quality_checks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('template_id', sa.Integer(), nullable=False),
        sa.Column('guide_id', sa.Integer(), nullable=True),
        sa.Column('step_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('results', sa.JSON(), nullable=False),
        sa.Column('passed', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['template_id'], ['quality_check_templates.id'], ),
        sa.ForeignKeyConstraint(['guide_id'], ['production_guides.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['step_id'], ['production_steps.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_quality_checks_template_id', 'quality_checks', ['template_id'])
    op.create_index('ix_quality_checks_guide_id', 'quality_checks', ['guide_id'])
    op.create_index('ix_quality_checks_step_id', 'quality_checks', ['step_id'])
    op.create_index('ix_quality_checks_user_id', 'quality_checks', ['user_id'])
    op.create_index('ix_quality_checks_created', 'quality_checks', ['created_at'])


def downgrade():
    for table in (
        'quality_checks',
        'quality_check_templates',
        'attendance_breaks',
        'attendance_sessions',
        'time_tracking_settings',
    ):
        op.drop_table(table)
