"""Decoding of serialized session collections.

Stored collections (question order, answer maps, bookmark/flag sets) are
JSON. Older rows and some callers hand them over as JSON text, so every
reader goes through these helpers. Decoding of *stored* data fails closed:
a corrupt value is logged and read as empty. Decoding of *caller* input
fails loudly with ``InvalidInputError``.
"""

import json
from typing import Any

from examcore.core.app_exceptions import InvalidInputError
from examcore.core.logging import get_logger

logger = get_logger(__name__)


def _maybe_parse(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def coerce_question_ids(value: Any) -> list[str]:
    """Resolve caller-provided question ids to a non-empty list of strings."""
    if value is None:
        raise InvalidInputError("questionIds is required", code="QUESTION_IDS_REQUIRED")
    try:
        parsed = _maybe_parse(value)
    except ValueError as e:
        raise InvalidInputError(
            "questionIds is a string but not valid JSON",
            code="QUESTION_IDS_UNPARSEABLE",
            details={"error": str(e)},
        ) from e
    if isinstance(parsed, tuple):
        parsed = list(parsed)
    if not isinstance(parsed, list):
        raise InvalidInputError(
            f"questionIds must be a list, got {type(parsed).__name__}",
            code="QUESTION_IDS_NOT_A_LIST",
        )
    if not parsed:
        raise InvalidInputError("questionIds must not be empty", code="QUESTION_IDS_EMPTY")
    if not all(isinstance(qid, str) and qid for qid in parsed):
        raise InvalidInputError(
            "questionIds must contain non-empty strings", code="QUESTION_IDS_INVALID"
        )
    return list(parsed)


def decode_id_list(value: Any, *, field: str, record_id: Any = None) -> list[str]:
    """Decode a stored list of ids; corrupt values read as empty."""
    if value is None:
        return []
    try:
        parsed = _maybe_parse(value)
    except ValueError:
        logger.error(
            "stored_collection_unparseable",
            extra={"field": field, "record_id": str(record_id)},
        )
        return []
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        logger.error(
            "stored_collection_not_a_list",
            extra={"field": field, "record_id": str(record_id), "value_type": type(parsed).__name__},
        )
        return []
    return list(parsed)


def decode_position_list(value: Any, *, field: str, record_id: Any = None) -> list[int]:
    """Decode a stored list of question positions; corrupt values read as empty."""
    if value is None:
        return []
    try:
        parsed = _maybe_parse(value)
    except ValueError:
        logger.error(
            "stored_collection_unparseable",
            extra={"field": field, "record_id": str(record_id)},
        )
        return []
    if not isinstance(parsed, list):
        logger.error(
            "stored_collection_not_a_list",
            extra={"field": field, "record_id": str(record_id), "value_type": type(parsed).__name__},
        )
        return []
    positions = []
    for item in parsed:
        if isinstance(item, bool) or not isinstance(item, int):
            logger.error(
                "stored_collection_bad_item",
                extra={"field": field, "record_id": str(record_id)},
            )
            return []
        positions.append(item)
    return positions


def decode_map(value: Any, *, field: str, record_id: Any = None) -> dict[str, Any]:
    """Decode a stored JSON object; corrupt values read as empty."""
    if value is None:
        return {}
    try:
        parsed = _maybe_parse(value)
    except ValueError:
        logger.error(
            "stored_collection_unparseable",
            extra={"field": field, "record_id": str(record_id)},
        )
        return {}
    if not isinstance(parsed, dict):
        logger.error(
            "stored_collection_not_a_map",
            extra={"field": field, "record_id": str(record_id), "value_type": type(parsed).__name__},
        )
        return {}
    return {str(key): item for key, item in parsed.items()}


def _is_selection(value: Any) -> bool:
    return isinstance(value, list) and all(
        isinstance(item, int) and not isinstance(item, bool) for item in value
    )


def decode_selection_map(value: Any, *, field: str, record_id: Any = None) -> dict[str, list[int]]:
    """
    Decode a stored position -> selected option indices map.

    Entries whose value is not a list of integers are dropped one by one;
    the rest of the map survives.
    """
    selections = {}
    for key, item in decode_map(value, field=field, record_id=record_id).items():
        if not _is_selection(item):
            logger.error(
                "stored_collection_bad_item",
                extra={"field": field, "record_id": str(record_id), "key": key},
            )
            continue
        selections[key] = list(item)
    return selections


def normalize_selection(value: Any) -> list[int]:
    """Normalize a selected-option collection to a sorted, de-duplicated list."""
    if value is None:
        return []
    if isinstance(value, (str, bytes, dict)) or not hasattr(value, "__iter__"):
        raise InvalidInputError("selectedAnswers must be a list of option indices")
    selection = set()
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int) or item < 0:
            raise InvalidInputError(
                "selectedAnswers must contain non-negative integers",
                details={"value": repr(item)},
            )
        selection.add(item)
    return sorted(selection)


def unique_in_order(items: list[str]) -> list[str]:
    """Drop repeated ids, keeping the first occurrence."""
    return list(dict.fromkeys(items))
