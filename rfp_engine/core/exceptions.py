"""Custom exception hierarchy."""

class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when an external API call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class PipelineError(AppError):
    """Base exception for answer pipeline errors."""
    pass


class EmbeddingError(PipelineError):
    """Embedding a question failed."""
    def __init__(self, message: str, question_id: str = None, original_error: Exception = None):
        super().__init__(message, original_error)
        self.question_id = question_id


class ClusteringError(PipelineError):
    """Clustering stage failed as a whole."""
    pass


class AnswerGenerationError(PipelineError):
    """Generating the answer for one question failed."""
    def __init__(self, message: str, question_id: str = None, original_error: Exception = None):
        super().__init__(message, original_error)
        self.question_id = question_id


class PropagationError(PipelineError):
    """Propagating master answers to cluster members failed."""
    pass


class PipelineAlreadyRunningError(PipelineError):
    """Raised when a run is triggered for a project that already has one in flight."""
    pass


class QuestionNotFoundError(AppError):
    """Raised when a question is not found."""
    pass


class PipelineRunNotFoundError(AppError):
    """Raised when a pipeline run is not found."""
    pass
