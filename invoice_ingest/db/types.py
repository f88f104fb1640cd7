"""Custom column types."""

import json
import logging
from typing import Any

from sqlalchemy import Text
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator

logger = logging.getLogger(__name__)


class JSONMapping(TypeDecorator[dict[str, Any]]):
    """A string-keyed mapping stored as JSON text.

    Serialization happens only here, at the persistence edge. Values read back
    are validated: a malformed document yields an empty mapping, and entries
    whose value is not of ``value_type`` are dropped. Reads never raise.
    """

    impl = Text
    cache_ok = True

    def __init__(self, value_type: type | tuple[type, ...] | None = None) -> None:
        super().__init__()
        self.value_type = value_type

    def process_bind_param(self, value: dict[str, Any] | None, dialect: Dialect) -> str | None:
        if value is None:
            return None
        return json.dumps(dict(value), sort_keys=True, default=str)

    def process_result_value(self, value: str | None, dialect: Dialect) -> dict[str, Any]:
        if value is None:
            return {}
        try:
            parsed = json.loads(value)
        except (TypeError, ValueError):
            logger.warning(f"Discarding malformed JSON mapping ({len(value)} chars)")
            return {}
        if not isinstance(parsed, dict):
            logger.warning(f"Discarding non-object JSON mapping of type {type(parsed).__name__}")
            return {}
        if self.value_type is None:
            return parsed

        valid = {
            key: item
            for key, item in parsed.items()
            if isinstance(item, self.value_type) and not isinstance(item, bool)
        }
        if len(valid) != len(parsed):
            logger.warning(f"Dropped {len(parsed) - len(valid)} malformed mapping entries")
        return valid
