"""Services for mapping, validating, matching and previewing records."""

from .mapper import AttributeMapper, build_mapping, compile_mappings, detected_fields, suggest_destination
from .matcher import GroupMatcher, RecordMatcher
from .preview import PreviewAnalysis, PreviewService
from .transforms import PassThrough, RegexSubstitution, Transform, parse_transform
from .validator import GroupValidator, RecordValidator, validate_attribute_mappings

__all__ = [
    "AttributeMapper",
    "build_mapping",
    "compile_mappings",
    "detected_fields",
    "suggest_destination",
    "GroupMatcher",
    "RecordMatcher",
    "PreviewAnalysis",
    "PreviewService",
    "PassThrough",
    "RegexSubstitution",
    "Transform",
    "parse_transform",
    "GroupValidator",
    "RecordValidator",
    "validate_attribute_mappings",
]
