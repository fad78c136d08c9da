class QuizroomError(Exception):
    """Base class for every domain failure reported to callers."""


class NotFound(QuizroomError):
    pass


class NotEnrolled(QuizroomError):
    pass


class NotJoinable(QuizroomError):
    """Quiz is not active, or a scheduled quiz is outside its window."""


class QuotaExceeded(QuizroomError):
    pass


class AttemptClosed(QuizroomError):
    """Mutation of an attempt that is submitted or past its time limit."""


class InvalidAnswerShape(QuizroomError):
    pass


class CodeNotFound(QuizroomError):
    pass


class ClassCodeTaken(QuizroomError):
    pass


class InvalidStatusTransition(QuizroomError):
    pass


class AlreadyEnrolled(QuizroomError):
    pass


class PermissionDenied(QuizroomError):
    pass


class DuplicateUser(QuizroomError):
    pass


class StorageFailure(Exception):
    """Persistence layer failure; never a domain outcome."""
