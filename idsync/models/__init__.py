"""Data models for the import pipeline."""

from .connection import (
    AttributeMapping,
    ConnectionConfig,
    Region,
    SourceType,
    SyncStatus,
    default_attribute_mappings,
    default_group_mappings,
)
from .record import (
    ExistingRecord,
    MappedRecord,
    MatchResult,
    ProcessedSample,
    RecordAction,
    ResourceType,
    SourceRecord,
    ValidationResult,
)
from .task import (
    ImportStats,
    ImportTask,
    TaskStatus,
    TaskType,
)

__all__ = [
    "AttributeMapping",
    "ConnectionConfig",
    "Region",
    "SourceType",
    "SyncStatus",
    "default_attribute_mappings",
    "default_group_mappings",
    "ExistingRecord",
    "MappedRecord",
    "MatchResult",
    "ProcessedSample",
    "RecordAction",
    "ResourceType",
    "SourceRecord",
    "ValidationResult",
    "ImportStats",
    "ImportTask",
    "TaskStatus",
    "TaskType",
]
