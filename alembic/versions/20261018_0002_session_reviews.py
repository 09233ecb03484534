"""session reviews: student ratings of completed sessions

Revision ID: 20261018_0002
Revises: 20261001_0001
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '20261018_0002'
down_revision = '20261001_0001'
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)
TS = sa.DateTime(timezone=True)

RATINGS = ('overall_rating', 'teaching_quality', 'communication', 'punctuality', 'preparedness')


def upgrade() -> None:
    op.create_table(
        'session_reviews',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('session_id', UUID, sa.ForeignKey('tutoring_sessions.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('student_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tutor_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        *[sa.Column(name, sa.Integer, nullable=False) for name in RATINGS],
        sa.Column('comment', sa.Text, nullable=True),
        sa.Column('would_recommend', sa.Boolean, nullable=False),
        sa.Column('is_public', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('is_edited', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('edited_at', TS, nullable=True),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', TS, nullable=False, server_default=sa.text('NOW()')),
        *[sa.CheckConstraint(f'{name} BETWEEN 1 AND 5', name=f'ck_session_reviews_{name}') for name in RATINGS],
    )
    for col in ('student_id', 'tutor_id', 'is_public'):
        op.create_index(f'ix_session_reviews_{col}', 'session_reviews', [col])


def downgrade() -> None:
    op.drop_table('session_reviews')
