from typing import Optional


class BatchingError(Exception):
    """Base exception for claim batching errors."""
    pass


class ConfigurationError(BatchingError):
    """Exception raised for structurally invalid insurer configuration."""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class CostEstimationError(BatchingError):
    """Exception raised when a cost estimate cannot be computed from its inputs."""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StorageFailure(BatchingError):
    """Exception raised when the claims store cannot be read or written."""
    pass


class BatchingFailure(BatchingError):
    """A single insurer's batching run failed and was rolled back."""
    def __init__(self, message: str, insurer_code: str, pending_count: int = 0):
        super().__init__(message)
        self.insurer_code = insurer_code
        self.pending_count = pending_count

    def to_dict(self) -> dict:
        return {
            "insurer_code": self.insurer_code,
            "pending_count": self.pending_count,
            "error": str(self),
            "cause": repr(self.__cause__) if self.__cause__ else None,
        }
