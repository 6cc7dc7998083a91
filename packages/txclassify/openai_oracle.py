"""Ranking oracle backed by the OpenAI Responses API.

No client is created at import time; the first call builds one (reading
``OPENAI_API_KEY`` from the environment) unless a client is injected.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any

import openai
from openai import OpenAI
from openai.types.responses import ResponseTextConfigParam

from . import prompting
from .errors import RateLimitError
from .logging_setup import get_logger
from .models import (
    BatchRankingResponse,
    Category,
    CategoryDescriptionResponse,
    CategoryRankings,
)
from .oracle import RankingRequest

_MODEL: str = "gpt-5"

_logger = get_logger("txclassify.openai_oracle")


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON mapping from a Responses SDK result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text``. Raises ``ValueError`` when no text is
    found or it is not valid JSON.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except Exception:  # noqa: BLE001 - tolerate SDK shape differences
            text = None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded: Mapping[str, Any] = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    return decoded


class OpenAIRankingOracle:
    def __init__(self, client: OpenAI | None = None, *, model: str = _MODEL) -> None:
        self._client = client
        self._model = model

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def _create(self, *, instructions: str, input: str, text: ResponseTextConfigParam) -> Any:
        try:
            return self.client.responses.create(
                model=self._model,
                instructions=instructions,
                input=input,
                text=text,
            )
        except openai.RateLimitError as e:
            raise RateLimitError(str(e)) from e

    def suggest_category_batch(
        self,
        requests: Sequence[RankingRequest],
        categories: Sequence[Category],
    ) -> dict[str, CategoryRankings]:
        t0 = time.perf_counter()
        resp = self._create(
            instructions=prompting.build_system_instructions(),
            input=prompting.build_batch_user_content(requests, categories),
            text=ResponseTextConfigParam(format=prompting.build_ranking_response_format()),
        )
        parsed = BatchRankingResponse.model_validate(_extract_response_json_mapping(resp))

        known = {c.name.casefold() for c in categories}
        wanted = {r.merchant_id for r in requests}
        out: dict[str, CategoryRankings] = {}
        for merchant_id, rankings in parsed.by_merchant().items():
            if merchant_id not in wanted:
                _logger.warning("openai_oracle:unexpected_merchant merchant_id=%s", merchant_id)
                continue
            out[merchant_id] = CategoryRankings(
                r if r.is_new or r.category.casefold() in known else replace(r, is_new=True)
                for r in rankings.top_n(prompting.MAX_RANKINGS_PER_MERCHANT)
            )
        _logger.info(
            "openai_oracle:batch_done merchants=%d returned=%d latency_ms=%.2f",
            len(requests),
            len(out),
            (time.perf_counter() - t0) * 1000.0,
        )
        return out

    def generate_category_description(self, category_name: str) -> tuple[str, float]:
        resp = self._create(
            instructions="You write concise category descriptions for a budgeting app.",
            input=prompting.build_description_input(category_name),
            text=ResponseTextConfigParam(format=prompting.build_description_response_format()),
        )
        parsed = CategoryDescriptionResponse.model_validate(_extract_response_json_mapping(resp))
        return parsed.description, parsed.confidence


__all__ = ["OpenAIRankingOracle"]
