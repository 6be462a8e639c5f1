import asyncio
import logging
import os
import string
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Hashable, List, Optional, Tuple

from google import genai

from tour_backend.errors import ExternalServiceFailure
from tour_backend.models import NarratedWaypoint, Waypoint

logger = logging.getLogger(__name__)

PROMPT_FIELDS = frozenset({"route_name", "route_description", "waypoint_name", "base_description"})
DEFAULT_ROUTE_DESCRIPTION = "An interesting guided tour"
DEFAULT_PROMPT_TEMPLATE = """
Act as an expert museum guide and write a detailed, engaging description of one
stop of a robot-guided tour.

TOUR:
- Name: {route_name}
- Description: {route_description}

STOP:
- Name: {waypoint_name}
- Base description: {base_description}

INSTRUCTIONS:
1. Write 2-3 informative, engaging sentences.
2. The text will be read aloud by a speech synthesizer; keep it clear.
3. Include an interesting fact or curiosity when possible.
4. Keep a friendly, educational tone.
5. It should take roughly 10-15 seconds to read aloud.
6. Without specific information, write a general but engaging description of this kind of place.
7. Explain what visitors are looking at right now in the museum.

Return only the improved description, without introductions or explanations.
"""

CacheKey = Tuple[int, int, str, str]


class NarrationCache:
    """Least-recently-used memo of generated narrations."""

    def __init__(self, max_size: int = 512):
        self.max_size = max_size
        self._entries: "OrderedDict[Hashable, str]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def get(self, key: Hashable) -> Optional[str]:
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def put(self, key: Hashable, value: str):
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)


class NarrationService:
    """Turns terse waypoint records into guide speech with the Gemini API."""

    def __init__(
        self,
        client: Optional[genai.Client] = None,
        model_id: Optional[str] = None,
        prompt_text: Optional[str] = None,
        cache: Optional[NarrationCache] = None,
        timeout: float = 20.0,
        prompt_path: Optional[str] = None,
    ):
        api_key = os.getenv("GEMINI_API_KEY")
        if not api_key and client is None:
            raise RuntimeError("GEMINI_API_KEY environment variable is not set")
        self.client = client or genai.Client(api_key=api_key)
        self.model_id = model_id or os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.prompt_template = self._checked_template(
            prompt_text or self._load_prompt(prompt_path or os.getenv("NARRATION_PROMPT_PATH"))
        )
        self.cache = cache or NarrationCache()
        self.timeout = timeout
        self._inflight: Dict[CacheKey, "asyncio.Future[str]"] = {}

    @staticmethod
    def _load_prompt(path: Optional[str]) -> str:
        if path:
            try:
                return Path(path).read_text(encoding="utf-8")
            except OSError:
                logger.warning(f"Could not read narration prompt at {path}, using the built-in one")
        return DEFAULT_PROMPT_TEMPLATE

    @staticmethod
    def _checked_template(template: str) -> str:
        """Reject prompts whose placeholders ``str.format`` cannot fill, e.g. literal JSON braces."""
        try:
            fields = {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}
        except ValueError as exc:
            logger.warning(f"Narration prompt is not a valid template ({exc}), using the built-in one")
            return DEFAULT_PROMPT_TEMPLATE
        unknown = fields - PROMPT_FIELDS
        if unknown:
            logger.warning(
                f"Narration prompt uses unknown placeholders {sorted(unknown)}, using the built-in one. "
                "Double literal braces as '{{' and '}}'."
            )
            return DEFAULT_PROMPT_TEMPLATE
        return template

    @staticmethod
    def cache_key(route_id: int, waypoint: Waypoint) -> CacheKey:
        return (route_id, waypoint.id, waypoint.display_name, waypoint.base_description)

    @staticmethod
    def fallback(waypoint: Waypoint) -> str:
        if waypoint.description:
            return waypoint.description
        return f"Welcome to {waypoint.display_name}. This is an important point of interest on our tour."

    async def narrate(
        self,
        route_id: int,
        waypoint: Waypoint,
        route_name: str,
        route_description: Optional[str] = None,
    ) -> str:
        """
        Return the narration for a waypoint, generating it at most once per key.

        Never raises: a failing or empty model response falls back to the base
        description (or a generic sentence) and that fallback is memoized too.
        """
        key = self.cache_key(route_id, waypoint)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._narrate_uncached(key, waypoint, route_name, route_description))
        self._inflight[key] = task
        # Cancelling one caller leaves the shared generation running for the others.
        task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _narrate_uncached(
        self, key: CacheKey, waypoint: Waypoint, route_name: str, route_description: Optional[str]
    ) -> str:
        try:
            text = await self._generate(waypoint, route_name, route_description or DEFAULT_ROUTE_DESCRIPTION)
        except ExternalServiceFailure as exc:
            logger.warning(f"Narration fallback for '{waypoint.display_name}': {exc.message}")
            text = self.fallback(waypoint)
        self.cache.put(key, text)
        return text

    async def _generate(self, waypoint: Waypoint, route_name: str, route_description: str) -> str:
        try:
            prompt = self.prompt_template.format(
                route_name=route_name,
                route_description=route_description,
                waypoint_name=waypoint.display_name,
                base_description=waypoint.base_description,
            )
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(model=self.model_id, contents=prompt),
                timeout=self.timeout,
            )
            text = (response.text or "").strip()
        except Exception as exc:
            raise ExternalServiceFailure(f"{type(exc).__name__}: {exc}") from exc
        if not text:
            raise ExternalServiceFailure("empty narration")
        logger.info(f"Generated narration for '{waypoint.display_name}': {text[:100]}")
        return text

    async def narrate_route(
        self,
        route_id: int,
        route_name: str,
        route_description: Optional[str],
        waypoints: List[Waypoint],
    ) -> List[NarratedWaypoint]:
        """Narrate all waypoints concurrently and return them in sequence order."""
        ordered = sorted(waypoints, key=lambda wp: wp.sequence_order)
        texts = await asyncio.gather(
            *(self.narrate(route_id, wp, route_name, route_description) for wp in ordered)
        )
        return [NarratedWaypoint.from_waypoint(wp, text) for wp, text in zip(ordered, texts)]
