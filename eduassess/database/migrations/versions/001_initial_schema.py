"""Initial assessment schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

OPEN_ATTEMPT_CLAUSE = "status = 'in-progress'"


def upgrade():
    # Create assessment_tests table
    op.create_table(
        'assessment_tests',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('instructions', sa.Text(), nullable=False),
        sa.Column('teacher_id', sa.String(255), nullable=False),
        sa.Column('teacher_name', sa.String(255), nullable=True),
        sa.Column('subject_content_id', sa.String(255), nullable=True),
        sa.Column('course_id', sa.String(255), nullable=True),
        sa.Column('course_name', sa.String(255), nullable=True),
        sa.Column('subject_name', sa.String(255), nullable=True),
        sa.Column('module_number', sa.Integer(), nullable=True),
        sa.Column('module_name', sa.String(255), nullable=True),
        sa.Column('test_type', sa.String(20), nullable=False),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('questions', sa.JSON(), nullable=False),
        sa.Column('total_marks', sa.Float(), nullable=False),
        sa.Column('passing_marks', sa.Float(), nullable=True),
        sa.Column('pdf_url', sa.String(1024), nullable=True),
        sa.Column('pdf_file_name', sa.String(255), nullable=True),
        sa.Column('answer_key_url', sa.String(1024), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('is_untimed', sa.Boolean(), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('show_results_immediately', sa.Boolean(), nullable=False),
        sa.Column('show_correct_answers', sa.Boolean(), nullable=False),
        sa.Column('shuffle_questions', sa.Boolean(), nullable=False),
        sa.Column('shuffle_options', sa.Boolean(), nullable=False),
        sa.Column('allow_multiple_attempts', sa.Boolean(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('target_audience', sa.String(20), nullable=False),
        sa.Column('batch_ids', sa.JSON(), nullable=False),
        sa.Column('student_ids', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('total_attempts', sa.Integer(), nullable=False),
        sa.Column('avg_score', sa.Float(), nullable=True),
        sa.Column('pass_rate', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_assessment_tests'),
    )
    op.create_index('ix_assessment_tests_teacher_id', 'assessment_tests', ['teacher_id'])
    op.create_index('ix_assessment_tests_subject_content_id', 'assessment_tests', ['subject_content_id'])
    op.create_index('ix_assessment_tests_course_id', 'assessment_tests', ['course_id'])
    op.create_index('ix_assessment_tests_status', 'assessment_tests', ['status'])
    op.create_index('idx_assessment_tests_teacher_status', 'assessment_tests', ['teacher_id', 'status'])

    # Create assessment_attempts table
    op.create_table(
        'assessment_attempts',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('test_id', sa.String(36), nullable=False),
        sa.Column('student_id', sa.String(255), nullable=False),
        sa.Column('student_name', sa.String(255), nullable=True),
        sa.Column('student_email', sa.String(255), nullable=True),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('answers', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('total_score', sa.Float(), nullable=False),
        sa.Column('percentage', sa.Float(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('time_spent', sa.Integer(), nullable=True),
        sa.Column('is_late', sa.Boolean(), nullable=False),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('graded_at', sa.DateTime(), nullable=True),
        sa.Column('graded_by', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_assessment_attempts'),
        sa.ForeignKeyConstraint(
            ['test_id'], ['assessment_tests.id'],
            name='fk_assessment_attempts_test_id_assessment_tests',
        ),
        sa.UniqueConstraint(
            'test_id', 'student_id', 'attempt_number',
            name='uq_assessment_attempts_test_student_number',
        ),
    )
    op.create_index('ix_assessment_attempts_test_id', 'assessment_attempts', ['test_id'])
    op.create_index('ix_assessment_attempts_student_id', 'assessment_attempts', ['student_id'])
    op.create_index('ix_assessment_attempts_status', 'assessment_attempts', ['status'])
    # At most one open attempt per student and test
    op.create_index(
        'uq_assessment_attempts_open_attempt',
        'assessment_attempts',
        ['test_id', 'student_id'],
        unique=True,
        sqlite_where=sa.text(OPEN_ATTEMPT_CLAUSE),
        postgresql_where=sa.text(OPEN_ATTEMPT_CLAUSE),
    )


def downgrade():
    op.drop_index('uq_assessment_attempts_open_attempt', table_name='assessment_attempts')
    op.drop_index('ix_assessment_attempts_status', table_name='assessment_attempts')
    op.drop_index('ix_assessment_attempts_student_id', table_name='assessment_attempts')
    op.drop_index('ix_assessment_attempts_test_id', table_name='assessment_attempts')
    op.drop_table('assessment_attempts')

    op.drop_index('idx_assessment_tests_teacher_status', table_name='assessment_tests')
    op.drop_index('ix_assessment_tests_status', table_name='assessment_tests')
    op.drop_index('ix_assessment_tests_course_id', table_name='assessment_tests')
    op.drop_index('ix_assessment_tests_subject_content_id', table_name='assessment_tests')
    op.drop_index('ix_assessment_tests_teacher_id', table_name='assessment_tests')
    op.drop_table('assessment_tests')
