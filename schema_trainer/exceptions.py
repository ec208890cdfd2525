"""Error taxonomy for the job queue and schema training.

Every error carries two decisions:

- ``status_code``: how the HTTP layer reports it.
- ``retryable``: whether the job queue schedules another attempt when a
  handler raises it. Exceptions outside this hierarchy are retried.
"""


class SchemaTrainerError(Exception):
    """Base exception for the service."""

    status_code = 500
    retryable = True

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class ValidationError(SchemaTrainerError):
    """Invalid input."""

    status_code = 400
    retryable = False


class UnsupportedDatabaseError(ValidationError):
    """Database type has no introspection adapter."""


class PolicyError(SchemaTrainerError):
    """Unknown job type or disallowed state transition."""

    status_code = 400
    retryable = False


class JobNotFoundError(SchemaTrainerError):
    """Job not found."""

    status_code = 404
    retryable = False


class ConnectionNotFoundError(SchemaTrainerError):
    """Connection not found."""

    status_code = 404
    retryable = False


class TrainingInProgressError(SchemaTrainerError):
    """Schema training is already in progress."""

    status_code = 409
    retryable = False


class RecentlyTrainedError(SchemaTrainerError):
    """Schema was recently trained. Use force=true to re-train."""

    status_code = 429
    retryable = False


class TargetUnavailableError(SchemaTrainerError):
    """Target database is unreachable."""

    status_code = 502


class IntrospectionError(SchemaTrainerError):
    """Schema metadata could not be read from the target database."""

    status_code = 502


class PerTableIntrospectionError(IntrospectionError):
    """Metadata for a single table could not be read.

    Raised by adapters and absorbed by the training engine; it never
    reaches the job queue.
    """

    def __init__(self, schema: str, table: str, component: str, message: str = ""):
        self.schema = schema
        self.table = table
        self.component = component
        super().__init__(message or f"Failed to read {component} for {schema}.{table}")


class JobTimeoutError(SchemaTrainerError):
    """Job exceeded its expiry window."""

    status_code = 504
    retryable = False
