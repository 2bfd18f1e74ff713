"""academy core schema

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 00:01:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261017_0001'
down_revision = None
branch_labels = None
depends_on = None


COLUMN_INDEXES = {
    'users': ('id', 'email', 'role', 'is_active', 'created_at'),
    'batches': ('id', 'subject', 'teacher_id', 'is_active', 'created_at'),
    'batch_students': ('id', 'batch_id', 'student_id'),
    'attendance': ('id', 'student_id', 'batch_id', 'attendance_date', 'status', 'marked_by_id'),
    'assignments': ('id', 'batch_id', 'assigned_by_id', 'due_date', 'is_active', 'created_at'),
    'submissions': ('id', 'assignment_id', 'student_id', 'status'),
    'assignment_files': ('id', 'assignment_id', 'submission_id'),
    'materials': ('id', 'batch_id', 'uploaded_by_id', 'is_active', 'created_at'),
    'payments': ('id', 'student_id', 'batch_id', 'month', 'status', 'gateway_order_ref', 'created_at'),
}
COMPOSITE_INDEXES = (
    ('ix_users_role_active', 'users', ['role', 'is_active']),
    ('ix_batches_teacher_active', 'batches', ['teacher_id', 'is_active']),
    ('ix_attendance_batch_date', 'attendance', ['batch_id', 'attendance_date']),
    ('ix_assignments_batch_due', 'assignments', ['batch_id', 'due_date']),
    ('ix_submissions_student_status', 'submissions', ['student_id', 'status']),
    ('ix_materials_batch_active', 'materials', ['batch_id', 'is_active']),
    ('ix_payments_batch_status', 'payments', ['batch_id', 'status']),
)


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='student'),
        sa.Column('phone', sa.String(length=32), nullable=False, server_default=''),
        sa.Column('street', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('city', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('state', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('zip_code', sa.String(length=20), nullable=False, server_default=''),
        sa.Column('country', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    op.create_table(
        'batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('subject', sa.String(length=120), nullable=False),
        sa.Column('teacher_id', sa.Integer(), nullable=False),
        sa.Column('schedule_days', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('start_time', sa.String(length=5), nullable=False),
        sa.Column('end_time', sa.String(length=5), nullable=False),
        sa.Column('fee', sa.Float(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('max_students', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['teacher_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'batch_students',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('enrolled_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('batch_id', 'student_id', name='uq_batch_students_batch_student'),
    )

    op.create_table(
        'attendance',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('attendance_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='present'),
        sa.Column('notes', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('marked_by_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['student_id'], ['users.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['marked_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('student_id', 'batch_id', 'attendance_date', name='uq_attendance_student_batch_date'),
    )

    op.create_table(
        'assignments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('assigned_by_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('due_date', sa.DateTime(), nullable=False),
        sa.Column('total_marks', sa.Float(), nullable=False),
        sa.Column('allow_late_submission', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assigned_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'submissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('assignment_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='submitted'),
        sa.Column('is_late', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notes', sa.String(length=1000), nullable=False, server_default=''),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
        sa.Column('resubmitted_at', sa.DateTime(), nullable=True),
        sa.Column('marks_obtained', sa.Float(), nullable=True),
        sa.Column('feedback', sa.String(length=1000), nullable=False, server_default=''),
        sa.Column('graded_by_id', sa.Integer(), nullable=True),
        sa.Column('graded_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['assignment_id'], ['assignments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_id'], ['users.id']),
        sa.ForeignKeyConstraint(['graded_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('assignment_id', 'student_id', name='uq_submissions_assignment_student'),
    )

    op.create_table(
        'assignment_files',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('assignment_id', sa.Integer(), nullable=False),
        sa.Column('submission_id', sa.Integer(), nullable=True),
        sa.Column('stored_name', sa.String(length=255), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False),
        sa.Column('mime_type', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['assignment_id'], ['assignments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['submission_id'], ['submissions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stored_name'),
    )

    op.create_table(
        'materials',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('uploaded_by_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.String(length=1000), nullable=False, server_default=''),
        sa.Column('tags', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('stored_name', sa.String(length=255), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False),
        sa.Column('mime_type', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['uploaded_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stored_name'),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('month', sa.String(length=7), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('payment_date', sa.DateTime(), nullable=False),
        sa.Column('transaction_id', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('receipt_number', sa.String(length=40), nullable=True),
        sa.Column('gateway_order_ref', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('notes', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('recorded_by_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['student_id'], ['users.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['recorded_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('student_id', 'batch_id', 'month', name='uq_payments_student_batch_month'),
        sa.UniqueConstraint('receipt_number', name='uq_payments_receipt_number'),
    )
    op.create_index('ix_payments_recorded_by_id', 'payments', ['recorded_by_id'])

    for table, columns in COLUMN_INDEXES.items():
        for column in columns:
            op.create_index(f'ix_{table}_{column}', table, [column])
    for name, table, columns in COMPOSITE_INDEXES:
        op.create_index(name, table, columns)


def downgrade() -> None:
    for name, table, _ in reversed(COMPOSITE_INDEXES):
        op.drop_index(name, table_name=table)
    for table, columns in reversed(list(COLUMN_INDEXES.items())):
        for column in columns:
            op.drop_index(f'ix_{table}_{column}', table_name=table)
    op.drop_index('ix_payments_recorded_by_id', table_name='payments')

    for table in (
        'payments',
        'materials',
        'assignment_files',
        'submissions',
        'assignments',
        'attendance',
        'batch_students',
        'batches',
        'users',
    ):
        op.drop_table(table)
