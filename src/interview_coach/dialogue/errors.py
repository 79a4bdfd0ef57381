"""Controller misuse errors. These are programming errors raised at the call site."""


class DialogueError(Exception):
    """Base class for dialogue controller errors."""


class InvalidStateError(DialogueError):
    """Operation not allowed in the controller's current state."""


class InvalidQuestionSetError(DialogueError):
    """A session was started with questions that cannot be asked."""


class EmptyQuestionSetError(InvalidQuestionSetError):
    """A session was started without any questions."""
