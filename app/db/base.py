# app/db/base.py
# Alembic model registry -- imports Base + every model so Alembic detects all tables.
# Do NOT import this file from model files (use app.db.base_class instead).
# This file is imported by:
#   - alembic/env.py        (schema detection)
#   - app/db/init_db.py     (seeding)
#   - endpoint modules      (so relationship() strings resolve)

from app.db.base_class import Base  # noqa: F401

# ── Import all models here so Alembic can detect them ────────────────────────
# Order matters: parent tables before child tables (foreign key dependencies)

from app.models.user import User, RefreshToken                          # noqa: F401, E402
from app.models.subject import Subject                                  # noqa: F401, E402
from app.models.tutor import TutorProfile, tutor_subjects               # noqa: F401, E402
from app.models.trial_request import TrialRequest                       # noqa: F401, E402
from app.models.session_request import SessionRequest                   # noqa: F401, E402
from app.models.chat import (                                           # noqa: F401, E402
    Chat,
    Message,
    SessionProposal,
    chat_participants,
)
from app.models.tutoring_session import TutoringSession                 # noqa: F401, E402
from app.models.feedback import TutorSessionFeedback                    # noqa: F401, E402
from app.models.session_review import SessionReview                     # noqa: F401, E402
from app.models.subscription import (                                   # noqa: F401, E402
    Payment,
    PricingPlan,
    StudentSubscription,
)
from app.models.notification import Notification                        # noqa: F401, E402
