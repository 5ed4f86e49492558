"""
Error taxonomy for the quiz-attempt engine.

Only true failures are exceptions. Expected races (completed, gap pending,
stale beacon) are returned as `skipped` markers and soft refusals on attempt
creation are returned as result dicts; neither appears here.
"""


class QuizEngineError(Exception):
    """Base class for errors that propagate to the caller unmodified."""

    status_code = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class AttemptNotFound(QuizEngineError):
    status_code = 404

    def __init__(self, attempt_id: str):
        super().__init__(f"Attempt not found: {attempt_id}", attempt_id=attempt_id)


class QuizNotFound(QuizEngineError):
    status_code = 404

    def __init__(self, quiz_id: str):
        super().__init__(f"Quiz not found: {quiz_id}", quiz_id=quiz_id)


class TenantMismatch(QuizEngineError):
    """The caller's classroom does not own the quiz."""

    status_code = 403

    def __init__(self, quiz_id: str, classroom_id: str):
        super().__init__("Membership does not match quiz classroom",
                         quiz_id=quiz_id, classroom_id=classroom_id)


class MissingCompletionData(QuizEngineError):
    """Neither the ledger nor the conversation holds scores for the attempt."""

    status_code = 422

    def __init__(self, attempt_id: str, reason: str = "Could not locate completion payload"):
        super().__init__(f"{reason} for attempt {attempt_id}", attempt_id=attempt_id)
