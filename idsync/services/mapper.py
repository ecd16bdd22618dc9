"""Attribute mapping from source records to canonical records."""

import copy
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..models.connection import AttributeMapping
from ..models.record import MappedRecord, SourceRecord
from .transforms import Transform, parse_transform

logger = logging.getLogger(__name__)

PathSegment = Union[str, int]

_SEGMENT = re.compile(r"^([^\[\]]+)((?:\[\d+\])*)$")
_INDEX = re.compile(r"\[(\d+)\]")


@dataclass
class CompiledMapping:
    """An attribute mapping with its transform parsed and its path split."""
    source: str
    destination: str
    transform: Transform
    required: bool
    path: List[PathSegment]


def compile_mappings(
    mappings: Iterable[AttributeMapping],
    strict: bool = False
) -> List[CompiledMapping]:
    """
    Parse every transform and destination path once for a run.

    Mappings with an empty source or destination are dropped.

    Args:
        mappings: Ordered attribute mappings
        strict: Reject malformed transforms instead of passing values through

    Returns:
        Compiled mappings in the original order
    """
    compiled = []
    for mapping in mappings:
        if not mapping.source or not mapping.destination:
            continue
        compiled.append(CompiledMapping(
            source=mapping.source,
            destination=mapping.destination,
            transform=parse_transform(mapping.transform, strict=strict),
            required=mapping.required,
            path=split_path(mapping.destination),
        ))
    return compiled


def split_path(path: str) -> List[PathSegment]:
    """
    Split a destination path into keys and list indices.

    ``name.given`` -> ``["name", "given"]``,
    ``phoneNumbers[0].value`` -> ``["phoneNumbers", 0, "value"]``. A leading
    SCIM schema URN is one key:
    ``urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:department``
    -> ``["urn:ietf:params:scim:schemas:extension:enterprise:2.0:User",
    "department"]``.
    """
    segments: List[PathSegment] = []

    if path.startswith("urn:") and ":" in path[4:]:
        urn, _, path = path.rpartition(":")
        segments.append(urn)

    for part in path.split("."):
        match = _SEGMENT.match(part)
        if not match:
            segments.append(part)
            continue
        segments.append(match.group(1))
        segments.extend(int(index) for index in _INDEX.findall(match.group(2)))

    return segments


def get_path(data: Any, path: Union[str, Sequence[PathSegment]]) -> Any:
    """Read the value at a destination path, or None when absent."""
    segments = split_path(path) if isinstance(path, str) else path
    value = data

    for segment in segments:
        if isinstance(segment, int):
            if not isinstance(value, list) or segment >= len(value):
                return None
            value = value[segment]
        elif isinstance(value, dict):
            value = value.get(segment)
        else:
            return None
        if value is None:
            return None

    return value


def set_path(data: Dict[str, Any], segments: Sequence[PathSegment], value: Any) -> None:
    """Write ``value`` at a destination path, creating containers on the way."""
    current: Any = data

    for segment, following in zip(segments, segments[1:]):
        factory = list if isinstance(following, int) else dict
        existing = _get_slot(current, segment)
        if not isinstance(existing, factory):
            existing = factory()
            _set_slot(current, segment, existing)
        current = existing

    _set_slot(current, segments[-1], value)


def _get_slot(container: Any, segment: PathSegment) -> Any:
    if isinstance(segment, int):
        return container[segment] if segment < len(container) else None
    return container.get(segment)


def _set_slot(container: Any, segment: PathSegment, value: Any) -> None:
    if isinstance(segment, int):
        while len(container) <= segment:
            container.append(None)
    container[segment] = value


class AttributeMapper:
    """
    Projects source records onto canonical records.

    Mapping is pure: the source record is never modified and the same
    inputs always produce the same output.
    """

    def map(
        self,
        record: SourceRecord,
        mappings: Sequence[Union[CompiledMapping, AttributeMapping]]
    ) -> MappedRecord:
        """
        Map one source record.

        Args:
            record: Raw record from the identity source
            mappings: Compiled mappings, or raw AttributeMappings which are
                compiled leniently on the fly

        Returns:
            The mapped record keyed by destination paths
        """
        compiled = self._ensure_compiled(mappings)
        result: MappedRecord = {}

        for mapping in compiled:
            # Absent source keys leave the destination unset
            if mapping.source not in record:
                continue
            value = copy.deepcopy(record[mapping.source])
            set_path(result, mapping.path, mapping.transform.apply(value))

        return result

    def _ensure_compiled(
        self,
        mappings: Sequence[Union[CompiledMapping, AttributeMapping]]
    ) -> List[CompiledMapping]:
        if all(isinstance(m, CompiledMapping) for m in mappings):
            return list(mappings)
        return compile_mappings(mappings)


def detected_fields(records: Iterable[Any]) -> List[str]:
    """Ordered union of field names holding a value (not None, not "") in ``records``."""
    seen: Dict[str, None] = {}
    for record in records:
        if not isinstance(record, dict):
            continue
        for key, value in record.items():
            if value is not None and value != "" and key not in seen:
                seen[key] = None
    return list(seen)


def suggest_destination(field_name: str) -> str:
    """
    Suggest a canonical destination for a source field name.

    Case-insensitive substring rules, first match wins. Returns "" when no
    rule applies.
    """
    lower = field_name.lower()

    if "email" in lower:
        return "email"
    if "username" in lower or "login" in lower:
        return "username"
    if "first" in lower and "name" in lower:
        return "first_name"
    if "last" in lower and "name" in lower:
        return "last_name"
    if "name" in lower:
        return "display_name"
    if "phone" in lower:
        return "phone_number"
    if "title" in lower:
        return "title"
    if "department" in lower:
        return "department"
    return ""


def build_mapping(
    field_mapping: Optional[Dict[str, str]],
    attribute_mappings: Sequence[AttributeMapping],
    detected_fields: Sequence[str] = ()
) -> List[AttributeMapping]:
    """
    Resolve the effective mapping list for one import.

    Args:
        field_mapping: Caller supplied ``{source: destination}``; an empty
            destination means the field is skipped
        attribute_mappings: The connection's configured mappings; entries
            with the same source and destination lend their transform and
            required flag
        detected_fields: Field names seen in the fetched records; fields the
            caller did not mention get a heuristic destination if free

    Returns:
        Ordered list of AttributeMapping
    """
    if not field_mapping:
        result = [m for m in attribute_mappings if m.source and m.destination]
        explicit: Dict[str, str] = {m.source: m.destination for m in result}
    else:
        configured = {(m.source, m.destination): m for m in attribute_mappings}
        result = []
        explicit = dict(field_mapping)
        for source, destination in field_mapping.items():
            if not destination:
                continue
            inherited = configured.get((source, destination))
            result.append(AttributeMapping(
                source=source,
                destination=destination,
                transform=inherited.transform if inherited else "",
                required=inherited.required if inherited else False,
            ))

    taken = {m.destination for m in result}
    for field_name in detected_fields:
        if field_name in explicit:
            continue
        suggestion = suggest_destination(field_name)
        if suggestion and suggestion not in taken:
            result.append(AttributeMapping(source=field_name, destination=suggestion))
            taken.add(suggestion)
            logger.debug(f"Mapped unmapped field {field_name} to {suggestion}")

    return result
