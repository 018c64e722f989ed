from quizroster.models.base import Base
from quizroster.models.group import Group, GroupStudent
from quizroster.models.invite import PendingInvite
from quizroster.models.join_session import GroupJoinSession
from quizroster.models.quiz import Quiz, QuizAssignment, QuizInstance
from quizroster.models.telemetry_event import TelemetryEvent
from quizroster.models.user import User

__all__ = [
    "Base",
    "Group",
    "GroupJoinSession",
    "GroupStudent",
    "PendingInvite",
    "Quiz",
    "QuizAssignment",
    "QuizInstance",
    "TelemetryEvent",
    "User",
]
