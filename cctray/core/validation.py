"""
Response validation and repair.

ccusage output is checked with cheap heuristics before the full parse, so
truncated output is reported as such instead of as an obscure decode error.
"""

import json
import logging

from .errors import EmptyResponse, MalformedResponse
from .usage import UsageResponse

_LOG = logging.getLogger(__name__)


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedResponse(f"output is not valid UTF-8: {e}")


def validate(data: bytes) -> bytes:
    """Check that raw command output looks like complete JSON.

    Args:
        data: Raw stdout bytes

    Returns:
        The same bytes, unchanged

    Raises:
        EmptyResponse: If the output is empty or whitespace only
        MalformedResponse: If the output is truncated or does not parse
    """
    text = _decode_text(data).strip()
    if not text:
        raise EmptyResponse()

    # Truncation heuristic, checked before the full parse
    if text[0] not in "{[":
        raise MalformedResponse(f"expected JSON object or array, got {text[:20]!r}")
    if text[-1] not in "}]":
        raise MalformedResponse(f"response appears truncated: ...{text[-20:]!r}")

    try:
        json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(str(e))

    return data


def repair(data: bytes) -> bytes:
    """Best-effort repair of a truncated JSON object.

    Appends missing closing braces to text that opens with ``{``. Valid
    input is returned unchanged.

    Raises:
        MalformedResponse: If the text cannot be repaired
    """
    text = _decode_text(data).strip()
    try:
        json.loads(text)
        return data
    except json.JSONDecodeError:
        pass

    if not text.startswith("{"):
        raise MalformedResponse("cannot repair: response is not a JSON object")

    missing = text.count("{") - text.count("}")
    if missing <= 0:
        raise MalformedResponse("cannot repair: braces are balanced")

    repaired = text + "}" * missing
    try:
        json.loads(repaired)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"repair failed: {e}")

    _LOG.warning("Repaired truncated ccusage output by appending %d brace(s)", missing)
    return repaired.encode("utf-8")


def validate_and_repair(data: bytes) -> bytes:
    """Validate output, falling back to repair for malformed JSON.

    A failed repair re-raises the original validation error.
    """
    try:
        return validate(data)
    except MalformedResponse as original:
        try:
            return repair(data)
        except MalformedResponse:
            raise original


def decode_usage_response(data: bytes) -> UsageResponse:
    """Validate, repair if needed, and decode ccusage output."""
    payload = json.loads(validate_and_repair(data).decode("utf-8"))
    try:
        return UsageResponse.from_dict(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponse(f"unexpected response shape: {e}")
