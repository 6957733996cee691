"""
Custom exception hierarchy for DynamoDB operations.

Repositories translate botocore errors into these types so callers can tell
a missing action from an overloaded or misconfigured table.
"""


class DynamoDBException(Exception):
    """Base exception for all store errors."""

    pass


class NotFoundError(DynamoDBException):
    """
    Raised when an update targets an action that does not exist.

    Reads return None for missing items; deletes of missing items succeed.
    """

    pass


class ThrottlingError(DynamoDBException):
    """Raised when DynamoDB keeps throttling after retry exhaustion."""

    pass


class NetworkError(DynamoDBException):
    """Raised on connection-level failures (timeouts, DNS, endpoint errors)."""

    pass


class PermissionError(DynamoDBException):
    """Raised when IAM permissions are insufficient for the operation."""

    pass
