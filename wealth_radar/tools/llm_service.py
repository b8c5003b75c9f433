"""
LLM Service — the pipeline's intelligence service, backed by pydantic-ai.

Every agent talks to the model through `generate_json`, which never raises:
it returns the parsed JSON payload or {"error": ...}. Agents validate the
payload against their own pydantic models and apply explicit defaults.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic_ai import Agent
from pydantic_ai.exceptions import FallbackExceptionGroup
from pydantic_ai.messages import (
    ModelMessage, ModelRequest, ModelResponse, SystemPromptPart, TextPart, UserPromptPart,
)
from pydantic_ai.settings import ModelSettings

from ..config import get_settings
from . import json_repair
from .provider_manager import ProviderManager

logger = logging.getLogger(__name__)

JSON_INSTRUCTION = "\nYou must respond with valid JSON only. No markdown, no explanation."

# (user prompt, expected assistant JSON) pairs
FewShot = Sequence[Tuple[str, str]]


class LLMService:
    """High-level LLM access with cached agents and provider failover."""

    # Agents cached by (system prompt, retries, mock, cooldown state) across instances
    _agent_cache: Dict[tuple, Agent] = {}

    def __init__(self, mock_mode: bool = False):
        self.settings = get_settings()
        self.mock_mode = mock_mode or self.settings.mock_mode
        self.provider_manager = ProviderManager(settings=self.settings, mock_mode=self.mock_mode)
        self.last_provider: Optional[str] = None
        if self.mock_mode:
            logger.info("LLM: MOCK mode")
        else:
            logger.info(f"LLM: providers configured → {self.provider_manager.configured_provider_names() or 'none'}")

    def _get_or_create_agent(self, system_prompt: str, retries: int) -> Agent:
        """Get or create a cached Agent.

        The cooldown state is part of the key so the FallbackModel is rebuilt
        when providers enter or leave cooldown.
        """
        cooldown_key = frozenset(
            list(ProviderManager._cooldown_until) + list(ProviderManager._disabled_for_session)
        )
        key = (hash(system_prompt), retries, self.mock_mode, cooldown_key)
        if key not in self._agent_cache:
            self._agent_cache[key] = Agent(
                self.provider_manager.get_model(),
                output_type=str,
                system_prompt=system_prompt,
                retries=retries,
            )
        return self._agent_cache[key]

    async def _get_agent_with_cooldown_wait(self, system_prompt: str, retries: int) -> Agent:
        """Create the agent, waiting once for a cooldown when every provider is down."""
        max_wait = self.settings.llm_max_provider_wait
        try:
            return self._get_or_create_agent(system_prompt, retries)
        except RuntimeError as e:
            if "No LLM providers available" not in str(e):
                raise
            wait_sec = self.provider_manager.get_shortest_cooldown_remaining()
            if wait_sec <= 0 or wait_sec > max_wait:
                raise RuntimeError(
                    f"All LLM providers exhausted (next available in {wait_sec:.0f}s, "
                    f"max wait {max_wait:.0f}s)"
                ) from e
            logger.info(f"All providers in cooldown — waiting {wait_sec:.1f}s (max {max_wait:.0f}s)")
            await asyncio.sleep(wait_sec + 1.0)
            return self._get_or_create_agent(system_prompt, retries)

    def has_available_provider(self) -> bool:
        """True when at least one provider is configured and not cooling down."""
        if self.mock_mode:
            return True
        return bool(self.provider_manager._get_available_providers())

    @staticmethod
    def _few_shot_history(system_prompt: str, examples: FewShot) -> List[ModelMessage]:
        """Replay examples as prior turns. The system prompt must lead the history."""
        history: List[ModelMessage] = []
        for i, (user, assistant) in enumerate(examples):
            parts = [UserPromptPart(content=user)]
            if i == 0:
                parts.insert(0, SystemPromptPart(content=system_prompt))
            history.append(ModelRequest(parts=parts))
            history.append(ModelResponse(parts=[TextPart(content=assistant)]))
        return history

    async def _run(
        self,
        prompt: str,
        system_prompt: str,
        examples: Optional[FewShot],
        temperature: float,
        retries: int,
    ) -> str:
        agent = await self._get_agent_with_cooldown_wait(system_prompt, retries)
        history = self._few_shot_history(system_prompt, examples) if examples else None
        try:
            result = await agent.run(
                prompt,
                message_history=history,
                model_settings=ModelSettings(temperature=temperature),
            )
        except FallbackExceptionGroup as eg:
            self._process_failures(eg)
            raise RuntimeError(f"All LLM providers failed: {eg}") from eg
        self.last_provider = self._extract_provider_name(result)
        return result.output

    async def generate_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        examples: Optional[FewShot] = None,
        temperature: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> Any:
        """Ask for JSON. Returns the parsed payload, or {"error": ...} on any failure."""
        retries = max_retries if max_retries is not None else self.settings.llm_json_max_retries
        temp = temperature if temperature is not None else self.settings.llm_temperature
        sys_prompt = (system_prompt or "") + JSON_INSTRUCTION
        try:
            text = await self._run(prompt, sys_prompt, examples, temp, retries)
        except Exception as e:
            logger.error(f"generate_json failed: {e}")
            return {"error": str(e)}
        return json_repair.parse_json_response(text)

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Plain-text generation. Raises RuntimeError when no provider answers."""
        temp = temperature if temperature is not None else self.settings.llm_temperature
        response = await self._run(prompt, system_prompt or "", None, temp, retries=1)
        if not response:
            raise ValueError("Empty response")
        return response

    # ── Internal helpers ─────────────────────────────────────────────

    def _process_failures(self, eg: BaseException):
        """Record cooldowns for every provider failure inside a fallback group."""
        for exc in getattr(eg, "exceptions", [eg]):
            provider_name = self.provider_manager.infer_provider_from_error(exc)
            err_msg = str(exc)[:150]
            if "429" in err_msg:
                logger.warning(f"  {provider_name}: Rate limited (429)")
            elif "timeout" in err_msg.lower():
                logger.warning(f"  {provider_name}: Timeout")
            else:
                logger.warning(f"  {provider_name}: {err_msg}")
            self.provider_manager.record_failure(provider_name, exc)

    def _extract_provider_name(self, result) -> str:
        for msg in reversed(result.all_messages()):
            model_name = getattr(msg, "model_name", None)
            if model_name:
                return model_name
        names = self.provider_manager.get_provider_names()
        return names[0] if names else "unknown"

    @classmethod
    def clear_cache(cls):
        """Clear the agent cache (tests, config changes)."""
        cls._agent_cache.clear()
