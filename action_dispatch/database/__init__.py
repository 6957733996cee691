"""Database module - DynamoDB repository pattern implementation."""

from .dynamodb_client import ActionConfigRepository, DeliveryLogRepository
from .exceptions import (
    DynamoDBException,
    NotFoundError,
    ThrottlingError,
    NetworkError,
    PermissionError,
)

__all__ = [
    "ActionConfigRepository",
    "DeliveryLogRepository",
    "DynamoDBException",
    "NotFoundError",
    "ThrottlingError",
    "NetworkError",
    "PermissionError",
]
