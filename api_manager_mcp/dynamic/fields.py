"""Field schema management for endpoint responses.

This module provides the FieldSchemaManager class which keeps per-endpoint
field definitions, infers them from sample responses and uses them to project
and coerce response data.
"""

import logging
import math
import random
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .models import FieldDefinition, FieldType, FormatType
from .storage import JsonFileStore

LOCAL_FIELDS_NAME = "api_field_definitions"

FIELD_COLORS = [
    "#2196F3", "#4CAF50", "#FF9800", "#E91E63", "#9C27B0",
    "#00BCD4", "#3F51B5", "#8BC34A", "#FFC107", "#607D8B",
    "#795548", "#9E9E9E", "#673AB7", "#FFEB3B", "#CDDC39",
]

DATE_RE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})$")
DATETIME_RE = re.compile(
    r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})[T ](\d{1,2}):(\d{1,2})(?::(\d{1,2}))?(\.\d+)?(Z|[+-]\d{2}:?\d{2})?$"
)


def _valid_date(year: str, month: str, day: str) -> bool:
    try:
        date(int(year), int(month), int(day))
    except ValueError:
        return False
    return True


def is_date_string(value: str) -> bool:
    match = DATE_RE.match(value)
    return bool(match) and _valid_date(*match.groups())


def is_datetime_string(value: str) -> bool:
    match = DATETIME_RE.match(value)
    if not match:
        return False
    hour, minute, second = int(match.group(4)), int(match.group(5)), int(match.group(6) or 0)
    return _valid_date(*match.group(1, 2, 3)) and hour < 24 and minute < 60 and second < 60


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO date / date-time strings and epoch milliseconds; None if invalid"""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None

    text = value.strip()
    match = DATE_RE.match(text)
    if match:
        try:
            return datetime(*(int(part) for part in match.groups()))
        except ValueError:
            return None
    match = DATETIME_RE.match(text)
    if not match:
        return None
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    try:
        parsed = datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second or 0),
            int(round(float(fraction) * 1_000_000)) if fraction else 0,
        )
    except ValueError:
        return None
    if zone:
        if zone == "Z":
            return parsed.replace(tzinfo=timezone.utc)
        return datetime.fromisoformat(parsed.isoformat() + zone[:3] + ":" + zone[-2:])
    return parsed


def generate_label(key: str) -> str:
    """``created_at`` / ``createdAt`` -> ``Created At``"""
    spaced = re.sub(r"([A-Z])", r" \1", key.replace("_", " "))
    return " ".join(word[:1].upper() + word[1:] for word in spaced.split())


class FieldSchemaManager:
    """Per-endpoint field definitions, persisted to the local store on every change

    Args:
        store: Local durable store; definitions live in memory only when None
    """

    def __init__(self, store: Optional[JsonFileStore] = None):
        self.store = store
        self.definitions: Dict[str, Dict[str, FieldDefinition]] = {}
        self._load()

    def _load(self) -> None:
        if self.store is None:
            return
        saved = self.store.get(LOCAL_FIELDS_NAME) or {}
        for key, items in saved.items():
            try:
                self.definitions[key] = {item["key"]: FieldDefinition.from_dict(item) for item in items}
            except (KeyError, TypeError, ValueError) as e:
                logging.error(f"[FieldManager] Ignoring invalid field definitions of '{key}': {e}")
        logging.info(f"[FieldManager] Loaded field definitions for {len(self.definitions)} endpoint(s)")

    def _save(self) -> None:
        if self.store is None:
            return
        payload = {
            key: [definition.to_dict() for definition in fields.values()]
            for key, fields in self.definitions.items()
        }
        try:
            self.store.set(LOCAL_FIELDS_NAME, payload)
        except OSError as e:
            logging.error(f"[FieldManager] Failed to save field definitions: {e}")

    # -- CRUD --------------------------------------------------------------

    def get_fields(self, key: str) -> List[FieldDefinition]:
        return list(self.definitions.get(key, {}).values())

    def get_field(self, key: str, field_key: str) -> Optional[FieldDefinition]:
        return self.definitions.get(key, {}).get(field_key)

    def set_fields(self, key: str, fields: List[Union[FieldDefinition, Dict[str, Any]]]) -> None:
        """Replace all field definitions of an endpoint

        Raises:
            ValueError: If ``fields`` is not a list or holds an invalid definition
        """
        if not isinstance(fields, list):
            raise ValueError("Field definitions must be a list")
        parsed = [FieldDefinition.from_dict(item) for item in fields]
        self.definitions[key] = {definition.key: definition for definition in parsed}
        self._save()

    def add_field(self, key: str, field: Union[FieldDefinition, Dict[str, Any]]) -> FieldDefinition:
        """Add a field, or shallow-merge into the existing field with the same key"""
        fields = self.definitions.setdefault(key, {})
        if isinstance(field, dict) and field.get("key") in fields:
            merged = {**fields[field["key"]].to_dict(), **field}
            definition = FieldDefinition.from_dict(merged)
        else:
            definition = FieldDefinition.from_dict(field)
        fields[definition.key] = definition
        self._save()
        return definition

    def remove_field(self, key: str, field_key: str) -> bool:
        fields = self.definitions.get(key, {})
        if field_key not in fields:
            return False
        del fields[field_key]
        self._save()
        return True

    def clear_fields(self, key: str) -> None:
        if self.definitions.pop(key, None) is not None:
            logging.info(f"[FieldManager] Cleared field definitions of '{key}'")
        self._save()

    # -- detection ---------------------------------------------------------

    @staticmethod
    def detect_field_type(value: Any) -> FieldType:
        if value is None:
            return FieldType.STRING
        if isinstance(value, bool):
            return FieldType.BOOLEAN
        if isinstance(value, (int, float)):
            return FieldType.NUMBER
        if isinstance(value, str):
            if is_date_string(value):
                return FieldType.DATE
            if is_datetime_string(value):
                return FieldType.DATETIME
            return FieldType.STRING
        if isinstance(value, (list, tuple)):
            return FieldType.ARRAY
        if isinstance(value, dict):
            return FieldType.OBJECT
        return FieldType.STRING

    @staticmethod
    def detect_field_format(value: Any, field_type: FieldType) -> FormatType:
        if field_type == FieldType.NUMBER:
            if isinstance(value, int) or (isinstance(value, float) and value.is_integer()):
                return FormatType.INTEGER
            return FormatType.DECIMAL
        if field_type == FieldType.DATE:
            return FormatType.DATE
        if field_type == FieldType.DATETIME:
            return FormatType.DATETIME
        return FormatType.NONE

    def detect_fields(self, key: str, sample_data: Any, save: bool = False) -> List[FieldDefinition]:
        """Infer field definitions from a sample record

        Fields already defined for the endpoint are kept untouched; only keys
        without a definition are inferred.

        Args:
            key: Endpoint key
            sample_data: Sample record, or a list whose first element is used
            save: Persist the merged definitions

        Returns:
            The merged list of field definitions
        """
        sample = sample_data[0] if isinstance(sample_data, list) and sample_data else sample_data
        if not isinstance(sample, dict):
            logging.warning(f"[FieldManager] Cannot detect fields of '{key}': sample is not an object")
            return self.get_fields(key)

        merged = dict(self.definitions.get(key, {}))
        detected = 0
        for name, value in sample.items():
            if name in merged:
                continue
            field_type = self.detect_field_type(value)
            merged[name] = FieldDefinition(
                key=name,
                label=generate_label(name),
                type=field_type,
                format=self.detect_field_format(value, field_type),
                unit="" if field_type == FieldType.NUMBER else None,
                color=random.choice(FIELD_COLORS),
            )
            detected += 1

        logging.info(f"[FieldManager] Detected {detected} new field(s) for '{key}'")
        if save:
            self.definitions[key] = merged
            self._save()
        return list(merged.values())

    # -- transformation ----------------------------------------------------

    def transform_data(self, key: str, data: Any, visible_only: bool = False) -> Any:
        """Project and coerce response data onto the endpoint's field definitions

        Data passes through unchanged when the endpoint has no definitions.
        """
        fields = self.get_fields(key)
        if not fields or data is None:
            return data
        if isinstance(data, list):
            return [self._transform_record(item, fields, visible_only) for item in data]
        return self._transform_record(data, fields, visible_only)

    def _transform_record(self, record: Any, fields: List[FieldDefinition], visible_only: bool) -> Any:
        if not isinstance(record, dict):
            return record
        result = {}
        for definition in fields:
            if visible_only and not definition.visible:
                continue
            result[definition.key] = self.transform_value(record.get(definition.key), definition)
        return result

    def transform_value(self, value: Any, definition: FieldDefinition) -> Any:
        if value is None:
            return definition.default_value
        if definition.type == FieldType.NUMBER:
            return self._to_number(value, definition)
        if definition.type in (FieldType.DATE, FieldType.DATETIME):
            parsed = parse_datetime(value)
            if parsed is None:
                return definition.default_value if definition.default_value is not None else datetime.now()
            return value if isinstance(value, (date, datetime)) else parsed
        if definition.type == FieldType.BOOLEAN:
            return bool(value)
        if definition.type == FieldType.STRING:
            return value if isinstance(value, str) else str(value)
        return value

    @staticmethod
    def _to_number(value: Any, definition: FieldDefinition) -> Any:
        fallback = definition.default_value if definition.default_value is not None else value
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (int, float)):
            return fallback if isinstance(value, float) and math.isnan(value) else value
        try:
            text = str(value).strip()
            if not text:
                return 0
            number = int(text) if re.fullmatch(r"[-+]?\d+", text) else float(text)
        except (TypeError, ValueError):
            return fallback
        if isinstance(number, float) and (math.isnan(number) or math.isinf(number)):
            return fallback
        return number

    # -- validation --------------------------------------------------------

    def validate_record(self, key: str, record: Dict[str, Any]) -> List[str]:
        """Check a record against required flags, enum options and validation patterns

        Returns:
            List of problems, empty when the record is valid
        """
        errors = []
        for definition in self.get_fields(key):
            value = record.get(definition.key) if isinstance(record, dict) else None
            if value is None or value == "":
                if definition.required:
                    errors.append(f"{definition.label or definition.key} is required")
                continue
            if definition.type == FieldType.ENUM and definition.options:
                allowed = [option.value for option in definition.options]
                if value not in allowed:
                    errors.append(f"{definition.label or definition.key} must be one of {allowed}")
            if definition.validation and isinstance(value, str) and not re.fullmatch(definition.validation, value):
                errors.append(f"{definition.label or definition.key} has an invalid format")
        return errors


__all__ = [
    "FieldSchemaManager",
    "LOCAL_FIELDS_NAME",
    "generate_label",
    "is_date_string",
    "is_datetime_string",
    "parse_datetime",
]
