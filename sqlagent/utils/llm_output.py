"""
LLM Output Cleanup

Helpers that strip markdown artifacts from model replies before they are
used as SQL or decoded as JSON.
"""

import json
import re
from typing import Any

from sqlagent.models.errors import LLMResponseError

_FENCED_BLOCK = re.compile(r"```[a-zA-Z]*\s*(.*?)```", re.DOTALL)
_OPEN_FENCE = re.compile(r"```[a-zA-Z]*\s*([\s\S]+)$")
_SQL_PREFIX = re.compile(r"^\s*(?:sql|query)\s*[:=]\s*", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """
    Return the body of the first fenced block, or the text itself.

    Handles ```json / ```sql fences and a truncated opening fence with no
    closing one.
    """
    if not text:
        return ""
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    match = _OPEN_FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def clean_sql(text: str) -> str:
    """Strip fences, a leading ``sql:`` label and trailing semicolons."""
    sql = strip_code_fences(text)
    sql = _SQL_PREFIX.sub("", sql)
    return sql.strip().rstrip(";").strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Decode the JSON object in an LLM reply.

    Raises:
        LLMResponseError: No decodable JSON object in the reply
    """
    body = strip_code_fences(text)
    start, end = body.find("{"), body.rfind("}")
    if start == -1 or end <= start:
        raise LLMResponseError("LLM response contains no JSON object", raw_response=text)
    try:
        payload = json.loads(body[start : end + 1])
    except json.JSONDecodeError as e:
        raise LLMResponseError(f"LLM response is not valid JSON: {e}", raw_response=text) from e
    if not isinstance(payload, dict):
        raise LLMResponseError("LLM response JSON is not an object", raw_response=text)
    return payload
