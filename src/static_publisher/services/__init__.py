"""Publish, collection management and clean services."""

from static_publisher.services.clean import CleanResult, CleanService
from static_publisher.services.collections import (
    CollectionInfo,
    CollectionService,
    DefaultCollectionError,
)
from static_publisher.services.publish import PublishOptions, PublishResult, PublishService

__all__ = [
    "CleanResult",
    "CleanService",
    "CollectionInfo",
    "CollectionService",
    "DefaultCollectionError",
    "PublishOptions",
    "PublishResult",
    "PublishService",
]
