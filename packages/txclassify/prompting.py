"""Prompt construction and response schemas for the OpenAI ranking oracle.

This module builds:
- A deterministic JSON serialization of merchant ranking requests with a
  fixed field order.
- The system instructions and user content for batched category ranking.
- The strict ``text.format`` JSON Schema objects for the Responses API.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .models import Category, as_jsonable
from .oracle import RankingRequest

BEGIN = "BEGIN_MERCHANTS_JSON\n"
END = "\nEND_MERCHANTS_JSON"

MAX_RANKINGS_PER_MERCHANT = 5


def serialize_requests_to_json(requests: Sequence[RankingRequest]) -> str:
    """Serialize ranking requests with field order ``merchant_id, merchant_name, transaction_count, sample``."""

    arr: list[dict[str, Any]] = []
    for r in requests:
        arr.append(
            {
                "merchant_id": r.merchant_id,
                "merchant_name": r.merchant_name,
                "transaction_count": r.transaction_count,
                "sample": as_jsonable(r.sample_transaction),
            }
        )
    return json.dumps(arr, ensure_ascii=False)


def build_system_instructions() -> str:
    return (
        "You classify bank transactions by merchant. For every merchant, rank up to "
        f"{MAX_RANKINGS_PER_MERCHANT} categories from the provided list with a score between "
        "0 and 1 reflecting your confidence. Only propose a category that is not in the list "
        "when none fits; mark it is_new=true and give a one-sentence description. "
        "Output JSON only that conforms to the specified schema."
    )


def build_batch_user_content(
    requests: Sequence[RankingRequest], categories: Sequence[Category]
) -> str:
    """User content: the category list, then the merchants between BEGIN_/END_ markers."""

    lines: list[str] = ["Categories:"]
    for c in sorted(categories, key=lambda c: c.name.casefold()):
        if c.description:
            lines.append(f"  - {c.name}: {c.description}")
        else:
            lines.append(f"  - {c.name}")
    lines.append("")
    lines.append(
        "Amounts are positive for money spent and negative for money received. "
        "Return one entry per merchant_id."
    )
    lines.append("")
    return "\n".join(lines) + BEGIN + serialize_requests_to_json(requests) + END


def build_ranking_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Strict schema: ``{"results": [{"merchant_id", "rankings": [...]}]}``."""

    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "merchant_category_rankings",
        "schema": {
            "type": "object",
            "properties": {
                "results": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "merchant_id": {"type": "string"},
                            "rankings": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "category": {"type": "string"},
                                        "score": {"type": "number", "minimum": 0, "maximum": 1},
                                        "is_new": {"type": "boolean"},
                                        "description": {"type": "string"},
                                    },
                                    "required": ["category", "score", "is_new", "description"],
                                    "additionalProperties": False,
                                },
                            },
                        },
                        "required": ["merchant_id", "rankings"],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["results"],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


def build_description_input(category_name: str) -> str:
    return (
        f"Write a one-sentence description of the personal-finance category "
        f"{category_name!r} suitable for guiding future transaction classification, "
        "and a confidence between 0 and 1."
    )


def build_description_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "category_description",
        "schema": {
            "type": "object",
            "properties": {
                "description": {"type": "string"},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            },
            "required": ["description", "confidence"],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


__all__ = [
    "BEGIN",
    "END",
    "build_batch_user_content",
    "build_description_input",
    "build_description_response_format",
    "build_ranking_response_format",
    "build_system_instructions",
    "serialize_requests_to_json",
]
