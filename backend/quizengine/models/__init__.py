from quizengine.models.quiz import Quiz, GradingStrategy, QuizStatus
from quizengine.models.attempt import Attempt
from quizengine.models.conversation import ConversationMessage
from quizengine.models.question_result import QuestionResult
from quizengine.models.membership import Membership, Role

__all__ = [
    "Quiz", "GradingStrategy", "QuizStatus", "Attempt",
    "ConversationMessage", "QuestionResult", "Membership", "Role",
]
