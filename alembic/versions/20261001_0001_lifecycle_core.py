"""lifecycle core: users, requests, chats, sessions, feedback, subscriptions

Revision ID: 20261001_0001
Revises:
Create Date: 2026-10-01
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '20261001_0001'
down_revision = None
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)
TS = sa.DateTime(timezone=True)

REQUEST_STATUSES = ('PENDING', 'ACCEPTED', 'EXPIRED', 'CANCELLED')
TIERS = ('FLEXIBLE', 'REGULAR', 'LONG_TERM')


def _timestamps():
    return [
        sa.Column('created_at', TS, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', TS, nullable=False, server_default=sa.text('NOW()')),
    ]


def _request_lifecycle_columns(status_enum_name):
    return [
        sa.Column('status', sa.Enum(*REQUEST_STATUSES, name=status_enum_name),
                  nullable=False, server_default='PENDING'),
        sa.Column('expires_at', TS, nullable=False),
        sa.Column('reminder_sent_at', TS, nullable=True),
        sa.Column('final_expires_at', TS, nullable=True),
        sa.Column('is_extended', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('extension_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('accepted_tutor_id', UUID, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('chat_id', UUID, nullable=True),
        sa.Column('accepted_at', TS, nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.Column('cancelled_at', TS, nullable=True),
    ]


def upgrade() -> None:
    # ── Users & Subjects ──────────────────────────────────────────────────────
    op.create_table(
        'users',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('hashed_password', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('avatar_url', sa.Text, nullable=True),
        sa.Column('phone', sa.String(30), nullable=True),
        sa.Column('date_of_birth', sa.Date, nullable=True),
        sa.Column('role', sa.Enum('student', 'tutor', 'admin', 'applicant', name='user_role_enum'),
                  nullable=False, server_default='student'),
        sa.Column('has_completed_trial', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('trial_requests_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('session_requests_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('subscription_tier', sa.String(20), nullable=True),
        sa.Column('payment_customer_id', sa.String(255), nullable=True),
        sa.Column('default_payment_method_id', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('is_guest_signup', sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.Column('last_login_at', TS, nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table(
        'refresh_tokens',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('user_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token_hash', sa.String(255), nullable=False, unique=True),
        sa.Column('expires_at', TS, nullable=False),
        sa.Column('is_revoked', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_refresh_tokens_user_id', 'refresh_tokens', ['user_id'])

    op.create_table(
        'subjects',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_subjects_name', 'subjects', ['name'])

    # ── Tutors ────────────────────────────────────────────────────────────────
    op.create_table(
        'tutor_profiles',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('user_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('bio', sa.Text, nullable=True),
        sa.Column('is_verified', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('verified_at', TS, nullable=True),
        sa.Column('average_rating', sa.Float, nullable=True),
        sa.Column('ratings_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('pending_feedback_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('completed_sessions', sa.Integer, nullable=False, server_default='0'),
        sa.Column('level', sa.Enum('STARTER', 'INTERMEDIATE', 'EXPERT', name='tutor_level_enum'),
                  nullable=False, server_default='STARTER'),
        sa.Column('level_updated_at', TS, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_tutor_profiles_user_id', 'tutor_profiles', ['user_id'])
    op.create_index('ix_tutor_profiles_is_verified', 'tutor_profiles', ['is_verified'])

    op.create_table(
        'tutor_subjects',
        sa.Column('tutor_profile_id', UUID, sa.ForeignKey('tutor_profiles.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('subject_id', UUID, sa.ForeignKey('subjects.id', ondelete='CASCADE'), primary_key=True),
    )

    # ── Requests ──────────────────────────────────────────────────────────────
    op.create_table(
        'trial_requests',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('student_id', UUID, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('student_name', sa.String(255), nullable=False),
        sa.Column('student_email', sa.String(255), nullable=True),
        sa.Column('student_is_under_18', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('student_date_of_birth', sa.Date, nullable=True),
        sa.Column('guardian_name', sa.String(255), nullable=True),
        sa.Column('guardian_email', sa.String(255), nullable=True),
        sa.Column('guardian_phone', sa.String(30), nullable=True),
        sa.Column('subject_id', UUID, sa.ForeignKey('subjects.id'), nullable=False),
        sa.Column('grade_level', sa.String(50), nullable=True),
        sa.Column('school_type', sa.String(50), nullable=True),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('learning_goals', sa.Text, nullable=True),
        sa.Column('preferred_language', sa.Enum('ENGLISH', 'GERMAN', name='preferred_language_enum'),
                  nullable=False, server_default='GERMAN'),
        sa.Column('preferred_date_time', TS, nullable=True),
        sa.Column('documents', sa.JSON, nullable=True),
        *_request_lifecycle_columns('trial_request_status_enum'),
        *_timestamps(),
    )
    for col in ('student_id', 'student_email', 'guardian_email', 'subject_id',
                'status', 'expires_at', 'final_expires_at', 'created_at'):
        op.create_index(f'ix_trial_requests_{col}', 'trial_requests', [col])

    op.create_table(
        'session_requests',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('student_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('subject_id', UUID, sa.ForeignKey('subjects.id'), nullable=False),
        sa.Column('grade_level', sa.String(50), nullable=True),
        sa.Column('school_type', sa.String(50), nullable=True),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('learning_goals', sa.Text, nullable=True),
        sa.Column('documents', sa.JSON, nullable=True),
        *_request_lifecycle_columns('session_request_status_enum'),
        *_timestamps(),
    )
    for col in ('student_id', 'subject_id', 'status', 'expires_at', 'final_expires_at', 'created_at'):
        op.create_index(f'ix_session_requests_{col}', 'session_requests', [col])

    # ── Chats ─────────────────────────────────────────────────────────────────
    op.create_table(
        'chats',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('trial_request_id', UUID, sa.ForeignKey('trial_requests.id', ondelete='SET NULL'), nullable=True),
        sa.Column('session_request_id', UUID, sa.ForeignKey('session_requests.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('last_message_at', TS, nullable=True),
    )

    op.create_table(
        'chat_participants',
        sa.Column('chat_id', UUID, sa.ForeignKey('chats.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
    )

    op.create_table(
        'messages',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('chat_id', UUID, sa.ForeignKey('chats.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('message_type', sa.Enum('TEXT', 'SESSION_PROPOSAL', name='message_type_enum'),
                  nullable=False, server_default='TEXT'),
        sa.Column('text', sa.Text, nullable=True),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_messages_chat_id', 'messages', ['chat_id'])
    op.create_index('ix_messages_created_at', 'messages', ['created_at'])

    # ── Sessions ──────────────────────────────────────────────────────────────
    op.create_table(
        'tutoring_sessions',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('student_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tutor_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('subject', sa.String(100), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('start_time', TS, nullable=False),
        sa.Column('end_time', TS, nullable=False),
        sa.Column('duration', sa.Integer, nullable=False),
        sa.Column('price_per_hour', sa.Float, nullable=False),
        sa.Column('total_price', sa.Float, nullable=False),
        sa.Column('payment_status',
                  sa.Enum('PENDING', 'PAID', 'FAILED', 'REFUNDED', name='session_payment_status_enum'),
                  nullable=False, server_default='PENDING'),
        sa.Column('status', sa.Enum(
            'SCHEDULED', 'STARTING_SOON', 'IN_PROGRESS', 'AWAITING_RESPONSE',
            'RESCHEDULE_REQUESTED', 'COMPLETED', 'CANCELLED', 'NO_SHOW', 'EXPIRED',
            name='session_status_enum',
        ), nullable=False, server_default='SCHEDULED'),
        sa.Column('chat_id', UUID, sa.ForeignKey('chats.id', ondelete='SET NULL'), nullable=True),
        sa.Column('message_id', UUID, nullable=True),
        sa.Column('is_trial', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('trial_request_id', UUID, nullable=True),
        sa.Column('reschedule_request', sa.JSON, nullable=True),
        sa.Column('previous_start_time', TS, nullable=True),
        sa.Column('previous_end_time', TS, nullable=True),
        sa.Column('started_at', TS, nullable=True),
        sa.Column('completed_at', TS, nullable=True),
        sa.Column('expired_at', TS, nullable=True),
        sa.Column('cancelled_at', TS, nullable=True),
        sa.Column('cancelled_by', UUID, nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.Column('teacher_completion_status',
                  sa.Enum('NOT_APPLICABLE', 'PENDING', 'COMPLETED', name='teacher_completion_status_enum'),
                  nullable=False, server_default='NOT_APPLICABLE'),
        sa.Column('teacher_completed_at', TS, nullable=True),
        sa.Column('tutor_feedback_id', UUID, nullable=True),
        *_timestamps(),
    )
    for col in ('student_id', 'tutor_id', 'start_time', 'end_time', 'status', 'chat_id'):
        op.create_index(f'ix_tutoring_sessions_{col}', 'tutoring_sessions', [col])

    op.create_table(
        'session_proposals',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('message_id', UUID, sa.ForeignKey('messages.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('subject', sa.String(100), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('start_time', TS, nullable=False),
        sa.Column('end_time', TS, nullable=False),
        sa.Column('duration', sa.Integer, nullable=False),
        sa.Column('price_per_hour', sa.Float, nullable=False),
        sa.Column('total_price', sa.Float, nullable=False),
        sa.Column('status', sa.Enum(
            'PROPOSED', 'ACCEPTED', 'REJECTED', 'COUNTER_PROPOSED', 'EXPIRED', 'CANCELLED',
            name='proposal_status_enum',
        ), nullable=False, server_default='PROPOSED'),
        sa.Column('expires_at', TS, nullable=False),
        sa.Column('rejection_reason', sa.Text, nullable=True),
        sa.Column('responded_at', TS, nullable=True),
        sa.Column('session_id', UUID, sa.ForeignKey('tutoring_sessions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('original_proposal_id', UUID, sa.ForeignKey('session_proposals.id'), nullable=True),
    )
    op.create_index('ix_session_proposals_status', 'session_proposals', ['status'])

    # ── Tutor Feedback ────────────────────────────────────────────────────────
    op.create_table(
        'tutor_session_feedback',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('session_id', UUID, sa.ForeignKey('tutoring_sessions.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('tutor_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rating', sa.Integer, nullable=True),
        sa.Column('feedback_type', sa.Enum('TEXT', 'AUDIO', name='feedback_type_enum'), nullable=True),
        sa.Column('feedback_text', sa.Text, nullable=True),
        sa.Column('feedback_audio_url', sa.Text, nullable=True),
        sa.Column('audio_duration', sa.Integer, nullable=True),
        sa.Column('due_date', TS, nullable=False),
        sa.Column('submitted_at', TS, nullable=True),
        sa.Column('is_late', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('status', sa.Enum('PENDING', 'SUBMITTED', name='feedback_status_enum'),
                  nullable=False, server_default='PENDING'),
        sa.Column('payment_forfeited', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('forfeited_amount', sa.Float, nullable=True),
        sa.Column('forfeited_at', TS, nullable=True),
        *_timestamps(),
    )
    for col in ('tutor_id', 'student_id', 'due_date', 'status', 'payment_forfeited'):
        op.create_index(f'ix_tutor_session_feedback_{col}', 'tutor_session_feedback', [col])

    # ── Subscriptions & Payments ──────────────────────────────────────────────
    op.create_table(
        'pricing_plans',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('tier', sa.Enum(*TIERS, name='subscription_tier_enum'), nullable=False, unique=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('price_per_hour', sa.Float, nullable=False),
        sa.Column('commitment_months', sa.Integer, nullable=False, server_default='0'),
        sa.Column('minimum_hours', sa.Integer, nullable=False, server_default='0'),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('inclusions', sa.JSON, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('sort_order', sa.Integer, nullable=False, server_default='0'),
        *_timestamps(),
    )

    op.create_table(
        'student_subscriptions',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('student_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        # enum type already created with pricing_plans
        sa.Column('tier', postgresql.ENUM(*TIERS, name='subscription_tier_enum', create_type=False), nullable=False),
        sa.Column('price_per_hour', sa.Float, nullable=False),
        sa.Column('commitment_months', sa.Integer, nullable=False, server_default='0'),
        sa.Column('minimum_hours', sa.Integer, nullable=False, server_default='0'),
        sa.Column('start_date', TS, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('end_date', TS, nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'ACTIVE', 'EXPIRED', 'CANCELLED',
                                    name='student_subscription_status_enum'),
                  nullable=False, server_default='PENDING'),
        sa.Column('total_hours_taken', sa.Float, nullable=False, server_default='0'),
        sa.Column('payment_customer_id', sa.String(255), nullable=True),
        sa.Column('payment_intent_id', sa.String(255), nullable=True),
        sa.Column('payment_intent_kind', sa.Enum('payment', 'setup', name='payment_intent_kind_enum'), nullable=True),
        sa.Column('upfront_amount', sa.Float, nullable=False, server_default='0'),
        sa.Column('paid_at', TS, nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.Column('cancelled_at', TS, nullable=True),
        *_timestamps(),
    )
    for col in ('student_id', 'end_date', 'status', 'payment_intent_id'):
        op.create_index(f'ix_student_subscriptions_{col}', 'student_subscriptions', [col])

    op.create_table(
        'payments',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('subscription_id', UUID, sa.ForeignKey('student_subscriptions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('user_id', UUID, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('amount_cents', sa.Integer, nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='EUR'),
        sa.Column('status', sa.Enum('captured', 'setup', 'failed', 'refunded', name='payment_status_enum'),
                  nullable=False),
        sa.Column('provider_order_id', sa.String(255), nullable=True),
        sa.Column('provider_payment_id', sa.String(255), nullable=True, unique=True),
        sa.Column('payment_method_id', sa.String(255), nullable=True),
        sa.Column('raw_payload', sa.JSON, nullable=True),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text('NOW()')),
    )
    for col in ('subscription_id', 'user_id', 'provider_order_id'):
        op.create_index(f'ix_payments_{col}', 'payments', [col])

    # ── Notifications ─────────────────────────────────────────────────────────
    op.create_table(
        'notifications',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('user_id', UUID, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('notification_type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('body', sa.Text, nullable=True),
        sa.Column('action_url', sa.String(512), nullable=True),
        sa.Column('extra_data', sa.JSON, nullable=True),
        sa.Column('is_read', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('read_at', TS, nullable=True),
        sa.Column('email_sent', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('email_sent_at', TS, nullable=True),
        sa.Column('email_error', sa.Text, nullable=True),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text('NOW()')),
    )
    for col in ('user_id', 'notification_type', 'is_read', 'created_at'):
        op.create_index(f'ix_notifications_{col}', 'notifications', [col])


def downgrade() -> None:
    for table in (
        'notifications', 'payments', 'student_subscriptions', 'pricing_plans',
        'tutor_session_feedback', 'session_proposals', 'tutoring_sessions',
        'messages', 'chat_participants', 'chats', 'session_requests',
        'trial_requests', 'tutor_subjects', 'tutor_profiles', 'subjects',
        'refresh_tokens', 'users',
    ):
        op.drop_table(table)

    for enum_name in (
        'user_role_enum', 'tutor_level_enum', 'preferred_language_enum',
        'trial_request_status_enum', 'session_request_status_enum', 'message_type_enum',
        'session_payment_status_enum', 'session_status_enum', 'teacher_completion_status_enum',
        'proposal_status_enum', 'feedback_type_enum', 'feedback_status_enum',
        'subscription_tier_enum', 'student_subscription_status_enum',
        'payment_intent_kind_enum', 'payment_status_enum',
    ):
        op.execute(f'DROP TYPE IF EXISTS {enum_name}')
