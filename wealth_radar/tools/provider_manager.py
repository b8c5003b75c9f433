"""
LLM provider manager with cooldown-aware failover.

Builds pydantic-ai model instances for the configured providers and keeps
track of which ones are temporarily unusable. Cooldown state is class-level
so every LLMService instance in the process skips a rate-limited provider.

Priority: OpenAI-compatible → Groq → Ollama. Mock mode returns a
deterministic FunctionModel and never touches the network.
"""

import logging
import re
import threading
import time
from typing import Dict, List, Set, Tuple

from groq import AsyncGroq
from pydantic_ai.models import Model
from pydantic_ai.models.fallback import FallbackModel
from pydantic_ai.models.function import FunctionModel
from pydantic_ai.models.groq import GroqModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.groq import GroqProvider
from pydantic_ai.providers.openai import OpenAIProvider

from ..config import get_settings

logger = logging.getLogger(__name__)


class ProviderManager:
    """Builds the provider chain and applies cooldowns on hard failures."""

    _cooldown_until: Dict[str, float] = {}
    _failure_counts: Dict[str, int] = {}   # for exponential backoff on 429
    _disabled_for_session: Set[str] = set()  # auth / billing / unknown model
    _RATELIMIT_COOLDOWN = 30.0  # base; doubles per consecutive 429
    _TIMEOUT_COOLDOWN = 10.0
    _lock = threading.Lock()

    def __init__(self, settings=None, mock_mode: bool = False):
        self.settings = settings or get_settings()
        self.mock_mode = mock_mode
        self._provider_order: List[str] = []

    # ── Model construction ───────────────────────────────────────────

    def get_model(self):
        """FunctionModel in mock mode, else the available providers as a FallbackModel."""
        if self.mock_mode:
            from . import mock_responses
            return FunctionModel(mock_responses.get_mock_response_for_function_model)

        available = self._get_available_providers()
        if not available:
            raise RuntimeError("No LLM providers available (all in cooldown or unconfigured)")
        if len(available) == 1:
            return available[0][1]

        models = [m for _, m in available]
        return FallbackModel(models[0], *models[1:], fallback_on=self._should_fallback)

    def _get_available_providers(self) -> List[Tuple[str, Model]]:
        providers = []
        now = time.time()
        s = self.settings

        if s.openai_api_key and self._is_available("OpenAI", now):
            providers.append(("OpenAI", self._build_openai_model()))

        if s.groq_api_key and self._is_available("Groq", now):
            providers.append(("Groq", self._build_groq_model()))

        if s.use_ollama and self._is_available("Ollama", now):
            providers.append(("Ollama", self._build_ollama_model()))

        self._provider_order = [name for name, _ in providers]
        return providers

    def _build_openai_model(self):
        """OpenAI, or any OpenAI-compatible endpoint when OPENAI_BASE_URL is set."""
        provider_kwargs = {"api_key": self.settings.openai_api_key}
        if self.settings.openai_base_url:
            provider_kwargs["base_url"] = self.settings.openai_base_url
        return OpenAIChatModel(
            model_name=self.settings.openai_model,
            provider=OpenAIProvider(**provider_kwargs),
        )

    def _build_groq_model(self):
        # max_retries=0: the FallbackModel switches provider on 429 instead
        # of the SDK retrying internally
        groq_client = AsyncGroq(api_key=self.settings.groq_api_key, max_retries=0)
        return GroqModel(
            model_name=self.settings.groq_model,
            provider=GroqProvider(groq_client=groq_client),
        )

    def _build_ollama_model(self):
        """Ollama via its OpenAI-compatible endpoint."""
        return OpenAIChatModel(
            model_name=self.settings.ollama_model,
            provider=OpenAIProvider(base_url=f"{self.settings.ollama_base_url}/v1"),
        )

    # ── Configuration / status ───────────────────────────────────────

    def configured_provider_names(self) -> List[str]:
        """Providers with credentials configured, regardless of cooldown."""
        s = self.settings
        names = []
        if s.openai_api_key:
            names.append("OpenAI")
        if s.groq_api_key:
            names.append("Groq")
        if s.use_ollama:
            names.append("Ollama")
        return names

    def get_provider_names(self) -> List[str]:
        """Provider order of the last get_model() call."""
        return list(self._provider_order)

    # ── Failure handling ─────────────────────────────────────────────

    def _should_fallback(self, exc: Exception) -> bool:
        """Always try the next provider; cool down the failing one on hard errors."""
        error_str = str(exc)
        lowered = error_str.lower()
        is_hard_failure = (
            "402" in error_str or "429" in error_str or "401" in error_str
            or "rate limit" in lowered or "timeout" in lowered or "timed out" in lowered
        )
        if is_hard_failure:
            provider_name = self.infer_provider_from_error(exc)
            if provider_name != "unknown":
                logger.warning(f"Hard failure on {provider_name}, applying cooldown: {error_str[:200]}")
                self.record_failure(provider_name, exc)
        return True

    def record_failure(self, provider_name: str, error: BaseException):
        """Put a provider into cooldown according to the kind of failure."""
        error_str = str(error)
        lowered = error_str.lower()
        now = time.time()
        with self._lock:
            if "401" in error_str or "402" in error_str or "invalid api key" in lowered:
                if provider_name not in self._disabled_for_session:
                    logger.warning(f"{provider_name}: auth/billing failure — disabled for session")
                self._disabled_for_session.add(provider_name)
            elif "404" in error_str and "model" in lowered:
                self._disabled_for_session.add(provider_name)
                logger.warning(f"{provider_name}: model not found — disabled for session. Check model name in config.")
            elif "429" in error_str or "rate limit" in lowered:
                count = self._failure_counts.get(provider_name, 0) + 1
                self._failure_counts[provider_name] = count
                cooldown = min(
                    self._RATELIMIT_COOLDOWN * (2 ** (count - 1)),
                    self.settings.provider_ratelimit_max_seconds,
                )
                logger.info(f"{provider_name}: Rate limited — {int(cooldown)}s cooldown (#{count})")
                self._cooldown_until[provider_name] = now + cooldown
            elif "timeout" in lowered or "timed out" in lowered:
                logger.warning(f"{provider_name}: Timeout — cooldown {int(self._TIMEOUT_COOLDOWN)}s")
                self._cooldown_until[provider_name] = now + self._TIMEOUT_COOLDOWN
            else:
                logger.info(f"{provider_name}: Transient error (no cooldown): {error_str[:200]}")

    def _is_available(self, provider_name: str, now: float) -> bool:
        with self._lock:
            if provider_name in self._disabled_for_session:
                return False
            until = self._cooldown_until.get(provider_name)
            if until is None:
                return True
            if now < until:
                return False
            del self._cooldown_until[provider_name]
            self._failure_counts.pop(provider_name, None)
        logger.info(f"{provider_name} cooldown expired, re-enabling")
        return True

    def infer_provider_from_error(self, exc: BaseException) -> str:
        """Map an exception back to its provider via the model name in the message."""
        err = str(exc)
        s = self.settings
        match = re.search(r'model_name:\s*([^,\s]+)', err)
        model_name = match.group(1) if match else ""

        if model_name == s.openai_model:
            return "OpenAI"
        if model_name == s.groq_model:
            return "Groq"
        if model_name == s.ollama_model:
            return "Ollama"

        lowered = err.lower()
        if "groq" in lowered:
            return "Groq"
        if "openai" in lowered:
            return "OpenAI"
        if "11434" in lowered or "ollama" in lowered:
            return "Ollama"
        return "unknown"

    def get_shortest_cooldown_remaining(self) -> float:
        """Seconds until a cooled-down provider becomes usable again (0 if one already is)."""
        if self._get_available_providers():
            return 0.0
        now = time.time()
        with self._lock:
            remaining = [
                until - now for name, until in self._cooldown_until.items()
                if name not in self._disabled_for_session
            ]
        valid = [r for r in remaining if r > 0]
        return min(valid) if valid else 0.0

    @classmethod
    def reset_cooldowns(cls):
        """Clear all cooldowns and failure counts for a fresh pipeline run."""
        with cls._lock:
            cls._cooldown_until.clear()
            cls._failure_counts.clear()
            cls._disabled_for_session.clear()
