"""Domain-level exceptions for the story engine."""

GENERIC_FAILURE_MESSAGE = "Something went wrong while writing the story. Please try again."
INSUFFICIENT_CREDITS_MESSAGE = (
    "You are out of credits for the ultra-realistic style. "
    "Top up to continue, or switch to another style."
)


class StoryEngineError(Exception):
    """Base class for failures raised by the prompt pipeline."""


class TransportError(StoryEngineError):
    """Network failure before any response was received."""


class HttpError(StoryEngineError):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message


class MalformedResponseError(StoryEngineError):
    """Response body could not be read as the expected envelope."""


class StreamDecodeError(StoryEngineError):
    """A single server-sent event line could not be decoded."""


class StreamAbortedError(StoryEngineError):
    """The caller aborted an in-progress stream."""


class JSONRecoveryError(StoryEngineError):
    def __init__(self, message: str, excerpt: str) -> None:
        super().__init__(f"{message}; content starts with: {excerpt!r}")
        self.excerpt = excerpt


class CreditServiceError(StoryEngineError):
    """Credit deduction failed for a reason other than an empty balance."""


class InsufficientCreditsError(CreditServiceError):
    """The account has no credits left for premium generation."""


def user_message_for(error: BaseException) -> str:
    if isinstance(error, InsufficientCreditsError):
        return INSUFFICIENT_CREDITS_MESSAGE
    return GENERIC_FAILURE_MESSAGE
