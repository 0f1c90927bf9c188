"""Create course portal tables

Revision ID: 5b1c2d3e4f60
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1c2d3e4f60'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'app_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('roster_verification_enabled', sa.Boolean(), nullable=False),
        sa.Column('tickets_enabled', sa.Boolean(), nullable=False),
        sa.Column('show_test_student_in_ta', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('test_student_overrides', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('id = 1', name='ck_app_settings_single_row')
    )

    op.create_table(
        'ta_allowlist',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('initial_password', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_ta_allowlist_email', 'ta_allowlist', ['email'], unique=True)

    op.create_table(
        'students_roster',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('class_no', sa.String(), nullable=False),
        sa.Column('student_name', sa.String(), nullable=False),
        sa.Column('erp', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_students_roster_erp', 'students_roster', ['erp'], unique=True)

    op.create_table(
        'sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_number', sa.Integer(), nullable=False),
        sa.Column('session_date', sa.Date(), nullable=False),
        sa.Column('day_of_week', sa.String(), nullable=False),
        sa.Column('start_time', sa.String(), nullable=True),
        sa.Column('end_time', sa.String(), nullable=True),
        sa.Column('zoom_report', sa.JSON(), nullable=True),
        sa.Column('zoom_report_saved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_number')
    )

    op.create_table(
        'attendance',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('erp', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('naming_penalty', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['erp'], ['students_roster.erp'], ondelete='CASCADE', onupdate='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'erp', name='uq_attendance_session_erp')
    )
    op.create_index('ix_attendance_session_id', 'attendance', ['session_id'])
    op.create_index('ix_attendance_erp', 'attendance', ['erp'])

    op.create_table(
        'tickets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entered_erp', sa.String(), nullable=False),
        sa.Column('roster_name', sa.String(), nullable=True),
        sa.Column('roster_class_no', sa.String(), nullable=True),
        sa.Column('created_by_email', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('group_type', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=False),
        sa.Column('subcategory', sa.String(), nullable=True),
        sa.Column('details_text', sa.Text(), nullable=True),
        sa.Column('details_json', sa.JSON(), nullable=True),
        sa.Column('ta_response', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tickets_entered_erp', 'tickets', ['entered_erp'])

    op.create_table(
        'late_day_assignments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'late_day_claims',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('assignment_id', sa.Integer(), nullable=False),
        sa.Column('student_email', sa.String(), nullable=False),
        sa.Column('student_erp', sa.String(), nullable=False),
        sa.Column('days_used', sa.Integer(), nullable=False),
        sa.Column('claimed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('due_at_before_claim', sa.DateTime(timezone=True), nullable=False),
        sa.Column('due_at_after_claim', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['assignment_id'], ['late_day_assignments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('days_used > 0', name='ck_late_day_claims_days_used_positive')
    )
    op.create_index('ix_late_day_claims_assignment_id', 'late_day_claims', ['assignment_id'])
    op.create_index('ix_late_day_claims_student_erp', 'late_day_claims', ['student_erp'])

    op.create_table(
        'late_day_adjustments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('student_erp', sa.String(), nullable=False),
        sa.Column('days_delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_by_email', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_late_day_adjustments_student_erp', 'late_day_adjustments', ['student_erp'])

    op.create_table(
        'submissions_list',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sort_order', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'penalty_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('time_window_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'rule_exceptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('erp', sa.String(), nullable=False),
        sa.Column('student_name', sa.String(), nullable=True),
        sa.Column('class_no', sa.String(), nullable=True),
        sa.Column('issue_type', sa.String(), nullable=True),
        sa.Column('assigned_day', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_rule_exceptions_erp', 'rule_exceptions', ['erp'])

    op.execute("INSERT INTO app_settings (id, roster_verification_enabled, tickets_enabled, show_test_student_in_ta) VALUES (1, true, true, false)")


def downgrade() -> None:
    op.drop_table('rule_exceptions')
    op.drop_table('penalty_types')
    op.drop_table('submissions_list')
    op.drop_table('late_day_adjustments')
    op.drop_table('late_day_claims')
    op.drop_table('late_day_assignments')
    op.drop_table('tickets')
    op.drop_table('attendance')
    op.drop_table('sessions')
    op.drop_table('students_roster')
    op.drop_table('ta_allowlist')
    op.drop_table('app_settings')
