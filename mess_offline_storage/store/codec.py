"""
Record codec.

Translates between caller records (plain dicts with scalar or nested
values) and table rows. Nested values are JSON text, booleans are 0/1,
and keys without a dedicated column travel in the ``payload`` column.
The engine never looks at field shapes itself.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from .schema import PAYLOAD_COLUMN, ColumnType, Table, columns_for

logger = logging.getLogger(__name__)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, separators=(",", ":"))


def _loads(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        # Legacy rows may hold plain text in a JSON column
        return value


class RecordCodec:
    """Encode records into rows and decode rows back into records for one table."""

    def __init__(self, table: Table):
        self.table = table
        self._types = {c.name: c.type for c in columns_for(table)}

    def encode(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Map record keys onto column values.

        Keys that are not columns are collected into the payload column.
        """
        row: dict[str, Any] = {}
        extras: dict[str, Any] = {}

        for key, value in record.items():
            column_type = self._types.get(key)
            if column_type is None or key == PAYLOAD_COLUMN:
                extras[key] = value
                continue
            row[key] = self._encode_value(column_type, value)

        if extras:
            row[PAYLOAD_COLUMN] = _dumps(extras)
        return row

    def decode(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Map a row back to a caller record."""
        record: dict[str, Any] = {}
        payload = None

        for key, value in row.items():
            if key == PAYLOAD_COLUMN:
                payload = value
                continue
            column_type = self._types.get(key)
            record[key] = self._decode_value(column_type, value)

        if payload:
            extras = _loads(payload)
            if isinstance(extras, dict):
                for key, value in extras.items():
                    record.setdefault(key, value)
            else:
                logger.warning(f"Ignoring malformed payload in {self.table.value}: {payload!r}")
        return record

    def merge_payload(self, existing: str | None, update: str) -> str:
        """Merge an encoded payload update into an existing payload."""
        current = _loads(existing) if existing else {}
        if not isinstance(current, dict):
            current = {}
        current.update(_loads(update))
        return _dumps(current)

    @staticmethod
    def _encode_value(column_type: ColumnType, value: Any) -> Any:
        if value is None:
            return None
        if column_type == ColumnType.JSON:
            return _dumps(value)
        if column_type == ColumnType.BOOL:
            return 1 if value else 0
        if isinstance(value, (dict, list, tuple)):
            return _dumps(value)
        if isinstance(value, bool):
            return int(value)
        return value

    @staticmethod
    def _decode_value(column_type: ColumnType | None, value: Any) -> Any:
        if value is None:
            return None
        if column_type == ColumnType.JSON:
            return _loads(value)
        if column_type == ColumnType.BOOL:
            return bool(value)
        return value


_CODECS: dict[Table, RecordCodec] = {}


def codec_for(table: Table) -> RecordCodec:
    codec = _CODECS.get(table)
    if codec is None:
        codec = _CODECS[table] = RecordCodec(table)
    return codec
