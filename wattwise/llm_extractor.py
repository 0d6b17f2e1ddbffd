"""
LLM-powered power and thermal extraction for BOM line items.

Sends batches of BOM rows (or previously analyzed records) to an
OpenAI-compatible chat-completion endpoint and turns the reply into
validated AnalysisRecords. Each request, including parsing of the reply,
runs under the retry orchestrator, so a truncated or garbled response
triggers a complete new request.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

import httpx

from .errors import (
    BackendError,
    ConfigurationError,
    EmptyResponse,
    MalformedResponse,
    NetworkError,
    RateLimited,
)
from .models import AnalysisRecord, RawRow
from .retry import RetryCallback, with_retry
from .sanitizer import clean_and_parse_json
from .validation import coerce_items, coerce_record


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], object]

DEFAULT_MODEL = "tngtech/deepseek-r1t2-chimera:free"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


@dataclass
class LLMConfig:
    """Configuration for the chat-completion backend."""
    api_key: str
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    max_tokens: int = 4000
    max_retries: int = 3
    # Keeps one reply inside max_tokens; lower it for more verbose models.
    batch_size: int = 20
    retry_base_delay: float = 2.0
    timeout: float = 120.0
    temperature: float = 0.1

    @classmethod
    def from_env(cls, **overrides) -> "LLMConfig":
        """Build a config from WATTWISE_* / OPENROUTER_API_KEY variables."""
        values = {
            "api_key": os.getenv("OPENROUTER_API_KEY", ""),
            "model": os.getenv("WATTWISE_MODEL", DEFAULT_MODEL),
            "base_url": os.getenv("WATTWISE_BASE_URL", DEFAULT_BASE_URL),
            "max_tokens": int(os.getenv("WATTWISE_MAX_TOKENS", 4000)),
            "max_retries": int(os.getenv("WATTWISE_MAX_RETRIES", 3)),
            "batch_size": int(os.getenv("WATTWISE_BATCH_SIZE", 20)),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


ANALYSIS_SYSTEM_PROMPT = """You are a Senior Data Center Infrastructure Engineer.
I will provide a list of BOM (Bill of Materials) items.

Your task is to identify components and provide professional-grade power and thermal estimation.

REQUIREMENTS:
1. Identification: Identify the Part Number/Model. Normalize names into a "modelFamily"
   (e.g., group "C9300-48P" and "C9300-NM" under "Cisco Catalyst 9300").
2. Power Analysis:
   - Typical Power: the average operational power draw (wall draw).
   - Max Power: the maximum power draw (wall draw), never below typical.

   POWER SUPPLY UNITS (PSU) listed as separate line items carry no load of their own:
   their load is already counted on the chassis or server they belong to.
   - Set typicalPowerWatts, maxPowerWatts and heatDissipationBTU to 0.
   - Set methodology to "Ignored: Power accounted for in Chassis".

3. Data Provenance & Citations:
   - For EACH value, state whether it comes from a Datasheet (exact match found) or an Estimation.
   - If a datasheet is found, give its direct URL in sourceUrl and its title in sourceTitle.
   - Copy the exact datasheet text giving each power value into typicalPowerCitation and maxPowerCitation.
   - Copy the text proving the datasheet matches the model into matchedModelSnippet.
   - The URL must be a DIRECT manufacturer page or PDF. Never give google.com/search,
     google.com/url or bing.com links; leave sourceUrl empty instead.
   - Heat calculated from watts (1 W = 3.412 BTU/hr) is marked Formula.
4. Passive components (cables, racks, patch panels) have 0 W and 0 BTU.

Return a JSON object with a single key "items", one entry per input row:
{
  "partNumber": "string",
  "description": "string",
  "modelFamily": "string",
  "quantity": number,
  "category": "string (Compute, Network, Storage, Infrastructure, Peripheral)",
  "typicalPowerWatts": number,
  "typicalSource": "Datasheet | Estimation",
  "typicalPowerCitation": "string or null",
  "maxPowerWatts": number,
  "maxSource": "Datasheet | Estimation",
  "maxPowerCitation": "string or null",
  "heatDissipationBTU": number,
  "heatSource": "Datasheet | Formula",
  "methodology": "short explanation, e.g. 'Datasheet Spec', 'Est. 60% of Max', 'Ignored: PSU'",
  "sourceUrl": "direct URL or null",
  "sourceTitle": "string or null",
  "matchedModelSnippet": "string or null",
  "confidence": "High | Medium | Low",
  "notes": "string"
}"""


RE_ESTIMATE_SYSTEM_PROMPT = """You are a Senior Data Center Power Engineer.
RE-EVALUATE the power and thermal metrics for the provided items, consulting specific datasheets.

RULES:
1. PSU IGNORE: if the item is a Power Supply Unit, set all watts and BTU to 0 and set
   methodology to "Ignored: Power accounted for in Chassis".
2. URL & CITATION: give a direct datasheet URL in sourceUrl and its title in sourceTitle,
   copy the supporting text into typicalPowerCitation / maxPowerCitation and the model
   match proof into matchedModelSnippet. Never give google.com/search, google.com/url or
   bing.com links; use null when no direct link is known.
3. Classify the SOURCE of every value:
   - Datasheet: you are certain of the spec (provide URL, title, proof and citation).
   - Estimation: inferred from the component class.
   - Formula: calculated (e.g. watts to BTU/hr).

Explain your logic in methodology.
Return a JSON object with a key "items" containing exactly one updated entry per input
item, IN THE SAME ORDER, following the same schema as the input."""


class LLMExtractor:
    """Batch analyzer backed by an OpenAI-compatible chat-completion API."""

    def __init__(self, config: Optional[LLMConfig] = None, client: Optional[httpx.AsyncClient] = None):
        """
        Args:
            config: Backend configuration; read from the environment when omitted
            client: Pre-built HTTP client (tests pass one with a mock transport)

        Raises:
            ConfigurationError: no API key configured
        """
        self.config = config or LLMConfig.from_env()
        if not self.config.api_key or not self.config.api_key.strip():
            raise ConfigurationError(
                "An API key is required. Set OPENROUTER_API_KEY or pass one explicitly."
            )
        if self.config.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.config.timeout)

    @property
    def model(self) -> str:
        return self.config.model

    async def _call_llm(self, system_prompt: str, user_content: str) -> str:
        """Make one chat-completion call and return the message content."""
        url = f"{self.config.base_url.rstrip('/')}/chat/completions"

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            "response_format": {"type": "json_object"},
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }

        try:
            response = await self.client.post(url, headers=headers, json=payload)
        except httpx.TransportError as e:
            raise NetworkError(f"Connection to model backend failed: {e}") from e

        status = response.status_code
        if status == 429:
            raise RateLimited(f"Model backend rate limit exceeded (HTTP 429): {_error_detail(response)}")
        if status in (401, 403):
            raise ConfigurationError(f"Model backend rejected the API key (HTTP {status})")
        if status >= 500:
            raise NetworkError(f"Model backend unavailable (HTTP {status}): {_error_detail(response)}")
        if status >= 400:
            raise BackendError(f"Model backend error (HTTP {status}): {_error_detail(response)}", status)

        try:
            result = response.json()
        except ValueError as e:
            raise MalformedResponse("Model backend returned a non-JSON body", raw=response.text) from e

        # OpenRouter reports upstream failures inside a 200 body.
        if isinstance(result, dict) and result.get("error"):
            error = result["error"]
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if code == 429:
                raise RateLimited(f"Model backend rate limit exceeded: {message}")
            raise NetworkError(f"Model backend error: {message}")

        try:
            content = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if content is not None and not isinstance(content, str):
            raise MalformedResponse(
                f"Expected text content from the model, got {type(content).__name__}", raw=repr(content)
            )
        if not content or not content.strip():
            raise EmptyResponse("No response from AI")
        return content

    def _extract_items(self, content: str) -> List[Any]:
        parsed = clean_and_parse_json(content)
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict):
            items = parsed.get("items") or []
            if isinstance(items, list):
                return items
        raise MalformedResponse(
            "Model response does not contain an \"items\" array", raw=content
        )

    async def analyze_batch(
        self,
        rows: Sequence[RawRow],
        on_retry: Optional[RetryCallback] = None,
    ) -> List[AnalysisRecord]:
        """
        Analyze at most ``batch_size`` raw BOM rows in one request.

        Returns:
            Validated records; may be shorter than ``rows``
        """
        rows_to_process = list(rows[:self.config.batch_size])
        if len(rows) > len(rows_to_process):
            logger.warning(
                "Batch of %d rows exceeds cap of %d; extra rows dropped",
                len(rows), self.config.batch_size,
            )
        user_content = f"Input Data: {json.dumps(rows_to_process, default=str)}"

        async def attempt() -> List[Any]:
            content = await self._call_llm(ANALYSIS_SYSTEM_PROMPT, user_content)
            return self._extract_items(content)

        items = await with_retry(
            attempt, self.config.max_retries, self.config.retry_base_delay, on_retry
        )
        records = coerce_items(items)
        logger.info("Model returned %d record(s) for %d row(s)", len(records), len(rows_to_process))
        return records

    async def re_estimate_batch(
        self,
        records: Sequence[AnalysisRecord],
        on_retry: Optional[RetryCallback] = None,
    ) -> List[Optional[AnalysisRecord]]:
        """
        Re-estimate at most ``batch_size`` records in one request.

        The i-th output answers the i-th input. Outputs that fail validation
        are None so later positions stay aligned.
        """
        to_process = list(records[:self.config.batch_size])
        payload = [record.to_wire() for record in to_process]
        user_content = f"Items to Re-Estimate: {json.dumps(payload)}"

        async def attempt() -> List[Any]:
            content = await self._call_llm(RE_ESTIMATE_SYSTEM_PROMPT, user_content)
            return self._extract_items(content)

        items = await with_retry(
            attempt, self.config.max_retries, self.config.retry_base_delay, on_retry
        )
        if len(items) != len(to_process):
            logger.warning(
                "Re-estimation returned %d item(s) for %d input(s)", len(items), len(to_process)
            )
        return [coerce_record(item) for item in items[:len(to_process)]]

    async def analyze_bom(
        self,
        rows: Sequence[RawRow],
        on_retry: Optional[RetryCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[AnalysisRecord]:
        """Analyze every row, one capped batch at a time."""
        batches = list(_chunks(list(rows), self.config.batch_size))
        results: List[AnalysisRecord] = []
        for number, batch in enumerate(batches, start=1):
            if on_progress:
                on_progress(f"Analyzing batch {number} of {len(batches)}...")
            logger.info("Analyzing batch %d/%d (%d rows)", number, len(batches), len(batch))
            results.extend(await self.analyze_batch(batch, on_retry))
        return results

    async def re_estimate(
        self,
        records: Sequence[AnalysisRecord],
        on_retry: Optional[RetryCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Tuple[int, AnalysisRecord]]:
        """
        Re-estimate records in capped batches.

        Returns:
            (position in ``records``, updated record) pairs; positions the
            model did not answer are absent
        """
        positions = list(range(len(records)))
        batches = list(_chunks(positions, self.config.batch_size))
        updates: List[Tuple[int, AnalysisRecord]] = []
        for number, batch in enumerate(batches, start=1):
            if on_progress:
                on_progress(f"Re-estimating batch {number} of {len(batches)}...")
            updated = await self.re_estimate_batch([records[i] for i in batch], on_retry)
            updates.extend(
                (position, record)
                for position, record in zip(batch, updated)
                if record is not None
            )
        return updates

    async def aclose(self):
        """Close the HTTP client if this extractor created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


def _chunks(items: list, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message", body["error"]))
    return str(body)[:200]
