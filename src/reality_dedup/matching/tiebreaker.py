"""AI tie-breaker for ambiguous listing pairs using Claude."""

import asyncio
import json
import time
from typing import TYPE_CHECKING, Any, Final, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reality_dedup.logging import get_logger
from reality_dedup.models import Listing, TieBreakVerdict

if TYPE_CHECKING:
    import anthropic

logger = get_logger(__name__)

DEFAULT_MODEL: Final = "claude-sonnet-4-5-20250929"
DEFAULT_TIMEOUT: Final = 20.0
DESCRIPTION_EXCERPT_CHARS: Final = 400

# Circuit breaker: stop hammering the API after consecutive outage-indicating errors
_CIRCUIT_BREAKER_THRESHOLD: Final = 3
_CIRCUIT_BREAKER_COOLDOWN: Final = 300  # seconds (5 min)

TIEBREAK_SYSTEM_PROMPT: Final = """\
You compare two residential real-estate listings scraped from different Slovak \
portals (nehnutelnosti.sk, reality.sk, topreality.sk, bazos.sk) and decide \
whether they advertise the same physical property.

Listings of the same flat often differ in title wording, marketing phrases, \
photos order, a few square metres of floor area and a few percent of price. \
Different flats in the same building often share the street and even the \
description template of the agency, but differ in floor, room count, area or \
house number.

Answer "match" only when the evidence points to the same property. When the \
evidence is insufficient, answer "no_match". Keep the rationale to one or two \
sentences."""


class TieBreakUnavailableError(Exception):
    """Raised when the Anthropic API is failing and the circuit breaker should count it."""


class TieBreaker(Protocol):
    """Anything that can resolve an ambiguous pair, returning None for no verdict."""

    async def decide(self, listing1: Listing, listing2: Listing) -> TieBreakVerdict | None: ...

    async def close(self) -> None: ...


class _TieBreakResponse(BaseModel):
    """Structured verdict returned through tool use."""

    model_config = ConfigDict(extra="forbid")

    verdict: Literal["match", "no_match"] = Field(
        description="Whether both listings advertise the same property"
    )
    rationale: str = Field(description="One or two sentences explaining the verdict")


def _build_tool_schema(name: str, description: str, model: type[BaseModel]) -> dict[str, Any]:
    """Build an Anthropic tool schema from a Pydantic model class."""

    def _strip_titles(node: Any) -> Any:
        if isinstance(node, dict):
            return {k: _strip_titles(v) for k, v in node.items() if k != "title"}
        if isinstance(node, list):
            return [_strip_titles(item) for item in node]
        return node

    schema: dict[str, Any] = _strip_titles(model.model_json_schema())
    schema.pop("description", None)  # Strip Pydantic docstring
    return {"name": name, "description": description, "input_schema": schema}


TIEBREAK_TOOL: Final[dict[str, Any]] = _build_tool_schema(
    "listing_match_verdict",
    "Return whether two real-estate listings describe the same property",
    _TieBreakResponse,
)


def summarize_listing(listing: Listing) -> dict[str, Any]:
    """Compact listing summary sent to the model."""
    description = (listing.description or "")[:DESCRIPTION_EXCERPT_CHARS]
    return {
        "source": listing.source.display_name,
        "title": listing.title,
        "description": description or None,
        "street": listing.street,
        "address": listing.address,
        "district": listing.district,
        "city": listing.city,
        "price_eur": listing.price or None,
        "area_m2": listing.area_m2 or None,
        "rooms": listing.rooms,
        "floor": listing.floor,
    }


def build_tiebreak_prompt(listing1: Listing, listing2: Listing) -> str:
    """User prompt presenting both listings."""
    first = json.dumps(summarize_listing(listing1), ensure_ascii=False, indent=2)
    second = json.dumps(summarize_listing(listing2), ensure_ascii=False, indent=2)
    return (
        f"<listing_a>\n{first}\n</listing_a>\n\n"
        f"<listing_b>\n{second}\n</listing_b>\n\n"
        "Do these two listings advertise the same property?"
    )


class AnthropicTieBreaker:
    """Resolve ambiguous pairs with Claude tool use.

    Requests are bounded by a semaphore (excess requests queue) and a hard
    timeout. Any failure yields None so the pair stays unresolved.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT,
        max_concurrency: int = 4,
        max_retries: int = 1,
    ) -> None:
        """Initialize the tie-breaker.

        Args:
            api_key: Anthropic API key.
            model: Claude model name.
            timeout_seconds: Hard limit per verdict, including SDK retries.
            max_concurrency: Maximum in-flight requests.
            max_retries: SDK retry count for transient errors.
        """
        self._api_key = api_key
        self._model = model
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._client: anthropic.AsyncAnthropic | None = None
        # Circuit breaker state (asyncio is single-threaded, no lock needed)
        self._consecutive_api_failures = 0
        self._circuit_open = False
        self._circuit_opened_at: float | None = None

    def _get_client(self) -> "anthropic.AsyncAnthropic":
        """Get or create the Anthropic client."""
        if self._client is None:
            import anthropic as _anthropic
            import httpx

            self._client = _anthropic.AsyncAnthropic(
                api_key=self._api_key,
                max_retries=self._max_retries,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    def _record_api_failure(self) -> None:
        """Record a consecutive API failure and open circuit if threshold reached."""
        self._consecutive_api_failures += 1
        if self._consecutive_api_failures >= _CIRCUIT_BREAKER_THRESHOLD:
            self._circuit_open = True
            self._circuit_opened_at = time.monotonic()
            logger.warning(
                "api_circuit_breaker_open",
                consecutive_failures=self._consecutive_api_failures,
            )

    def _record_api_success(self) -> None:
        """Reset failure counter and close circuit if it was open (half-open recovery)."""
        if self._circuit_open:
            logger.info("api_circuit_breaker_closed")
        self._consecutive_api_failures = 0
        self._circuit_open = False
        self._circuit_opened_at = None

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open, with half-open recovery after cooldown."""
        if not self._circuit_open:
            return False
        elapsed = time.monotonic() - self._circuit_opened_at  # type: ignore[operator]
        if elapsed >= _CIRCUIT_BREAKER_COOLDOWN:
            logger.info(
                "circuit_breaker_half_open",
                cooldown_seconds=_CIRCUIT_BREAKER_COOLDOWN,
                elapsed_seconds=round(elapsed, 1),
            )
            return False  # Allow one retry attempt
        return True

    async def decide(self, listing1: Listing, listing2: Listing) -> TieBreakVerdict | None:
        """Ask Claude whether two listings are the same property.

        Returns:
            The verdict, or None on timeout, API error, malformed output or
            while the circuit breaker is open.
        """
        pair = (listing1.id, listing2.id)
        if self._is_circuit_open():
            logger.info("tiebreak_skipped", pair=pair, reason="circuit_open")
            return None

        async with self._semaphore:
            try:
                return await asyncio.wait_for(
                    self._request_verdict(listing1, listing2), timeout=self._timeout
                )
            except TimeoutError:
                self._record_api_failure()
                logger.warning("tiebreak_timeout", pair=pair, timeout_seconds=self._timeout)
            except TieBreakUnavailableError:
                pass  # Already logged and counted
            except ValidationError as e:
                logger.warning(
                    "tiebreak_malformed_response",
                    pair=pair,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            except Exception as e:
                logger.warning(
                    "tiebreak_failed",
                    pair=pair,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
        return None

    async def _request_verdict(self, listing1: Listing, listing2: Listing) -> TieBreakVerdict | None:
        from anthropic import (
            APIConnectionError,
            APIStatusError,
            InternalServerError,
            RateLimitError,
        )
        from anthropic.types import ToolParam, ToolUseBlock

        client = self._get_client()
        tool: ToolParam = TIEBREAK_TOOL  # type: ignore[assignment]
        pair = (listing1.id, listing2.id)

        try:
            response = await client.messages.create(
                model=self._model,
                max_tokens=512,
                system=TIEBREAK_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_tiebreak_prompt(listing1, listing2)}],
                tools=[tool],
                tool_choice={"type": "tool", "name": TIEBREAK_TOOL["name"]},
            )
        except (RateLimitError, InternalServerError, APIConnectionError) as e:
            self._record_api_failure()
            log_event = (
                "rate_limit_exhausted"
                if isinstance(e, RateLimitError)
                else "server_error"
                if isinstance(e, InternalServerError)
                else "connection_error"
            )
            logger.error(log_event, pair=pair, error=str(e))
            raise TieBreakUnavailableError(str(e)) from e
        except APIStatusError as e:
            logger.warning(
                "api_status_error",
                pair=pair,
                status_code=e.status_code,
                error=str(e),
            )
            return None

        tool_use_block = next(
            (block for block in response.content if isinstance(block, ToolUseBlock)),
            None,
        )
        if tool_use_block is None:
            logger.warning(
                "no_tool_use_in_response",
                pair=pair,
                stop_reason=response.stop_reason,
            )
            return None

        parsed = _TieBreakResponse.model_validate(tool_use_block.input)
        self._record_api_success()
        logger.info("tiebreak_verdict", pair=pair, verdict=parsed.verdict)
        return TieBreakVerdict(is_match=parsed.verdict == "match", rationale=parsed.rationale)

    async def close(self) -> None:
        """Close the API client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
