#!/usr/bin/env python3
"""
Text-generation providers that write the narrative stock report.

Gemini is the default; OpenAI and Anthropic can be swapped in through the
environment without touching the analysis pipeline.

Environment Variables:
    LLM_PROVIDER: Provider name (gemini, openai, anthropic) - defaults to gemini
    LLM_MODEL: Model name (optional, uses provider default or auto-selects)
    GOOGLE_API_KEY or GEMINI_API_KEY: API key for Gemini
    OPENAI_API_KEY: API key for OpenAI
    ANTHROPIC_API_KEY: API key for Anthropic
"""

import os
import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "gemini"

SYSTEM_INSTRUCTION = (
    "You are an expert equity analyst writing for retail traders. "
    "Answer with an HTML fragment only, following the layout you are given. "
    "Do not wrap the answer in Markdown code fences."
)


class LLMError(Exception):
    """Base exception for LLM-related errors."""
    pass


class ProviderNotFoundError(LLMError):
    """Raised when the specified provider is not found."""
    pass


class ModelNotFoundError(LLMError):
    """Raised when the specified model is not found or not supported."""
    pass


class ConfigurationError(LLMError):
    """Raised when there's a configuration issue."""
    pass


class EmptyResponseError(LLMError):
    """Raised when a model answers with no text."""
    pass


class BaseLLMProvider(ABC):
    """Abstract base class for report-writing providers."""

    def __init__(self, model: Optional[str] = None, system_instruction: str = SYSTEM_INSTRUCTION):
        self._requested_model = model
        self._system_instruction = system_instruction
        self._model: Optional[str] = None
        self._client = None
        self._setup()
        self._select_model()
        logger.info("Using %s model %s", self.provider_name, self._model)

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @property
    @abstractmethod
    def default_model(self) -> str:
        pass

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    def _setup(self) -> None:
        """Read credentials and build the SDK client."""
        pass

    @abstractmethod
    def _select_model(self) -> None:
        pass

    @abstractmethod
    def _generate(self, prompt: str) -> str:
        pass

    def generate_text(self, prompt: str) -> str:
        """Run the prompt and return the model's raw text; empty answers are errors."""
        text = self._generate(prompt)
        if not text or not text.strip():
            raise EmptyResponseError(f"Empty analysis received from {self.provider_name}")
        return text


class GeminiProvider(BaseLLMProvider):
    """Google Gemini provider with model discovery."""

    @property
    def provider_name(self) -> str:
        return "gemini"

    @property
    def default_model(self) -> str:
        return "gemini-2.0-flash"

    def _setup(self) -> None:
        api_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY or GOOGLE_API_KEY environment variable is required for Gemini"
            )

        try:
            import google.generativeai as genai
        except ImportError:
            raise ConfigurationError(
                "google-generativeai package is required. Install with: pip install google-generativeai"
            )
        genai.configure(api_key=api_key)
        self._genai = genai

    def _supported_models(self) -> list[str]:
        try:
            return [
                m.name.replace("models/", "")
                for m in self._genai.list_models()
                if "generateContent" in m.supported_generation_methods
            ]
        except Exception as e:
            raise LLMError(f"Failed to list Gemini models: {e}")

    def _select_model(self) -> None:
        if self._requested_model is None:
            # Skip discovery when the default is good enough
            self._model = self.default_model
        else:
            supported = self._supported_models()
            if self._requested_model in supported:
                self._model = self._requested_model
            else:
                matching = [m for m in supported if self._requested_model in m]
                if not matching:
                    raise ModelNotFoundError(
                        f"Model '{self._requested_model}' not found or doesn't support generateContent. "
                        f"Available models: {', '.join(supported[:10])}"
                    )
                self._model = matching[0]

        self._client = self._genai.GenerativeModel(
            self._model, system_instruction=self._system_instruction
        )

    def _generate(self, prompt: str) -> str:
        try:
            response = self._client.generate_content(prompt)
            return response.text
        except Exception as e:
            raise LLMError(f"Gemini generation failed: {e}")


class OpenAIProvider(BaseLLMProvider):

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "gpt-4o-mini"

    def _setup(self) -> None:
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY environment variable is required for OpenAI")

        try:
            from openai import OpenAI
        except ImportError:
            raise ConfigurationError("openai package is required. Install with: pip install openai")
        self._client = OpenAI(api_key=api_key)

    def _select_model(self) -> None:
        self._model = self._requested_model or self.default_model

    def _generate(self, prompt: str) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": self._system_instruction},
                    {"role": "user", "content": prompt},
                ],
            )
            return response.choices[0].message.content
        except Exception as e:
            if "model" in str(e).lower():
                raise ModelNotFoundError(f"Model '{self._model}' error: {e}")
            raise LLMError(f"OpenAI generation failed: {e}")


class AnthropicProvider(BaseLLMProvider):

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return "claude-3-5-sonnet-latest"

    def _setup(self) -> None:
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY environment variable is required for Anthropic")

        try:
            import anthropic
        except ImportError:
            raise ConfigurationError("anthropic package is required. Install with: pip install anthropic")
        self._client = anthropic.Anthropic(api_key=api_key)

    def _select_model(self) -> None:
        self._model = self._requested_model or self.default_model

    def _generate(self, prompt: str) -> str:
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=8192,
                system=self._system_instruction,
                messages=[{"role": "user", "content": prompt}],
            )
            return response.content[0].text
        except Exception as e:
            error_str = str(e).lower()
            if "model" in error_str and ("not found" in error_str or "invalid" in error_str):
                raise ModelNotFoundError(f"Model '{self._model}' not found: {e}")
            raise LLMError(f"Anthropic generation failed: {e}")


class LLMProviderFactory:
    """Creates providers by name or alias."""

    _providers: dict[str, type[BaseLLMProvider]] = {
        "gemini": GeminiProvider,
        "google": GeminiProvider,
        "openai": OpenAIProvider,
        "gpt": OpenAIProvider,
        "anthropic": AnthropicProvider,
        "claude": AnthropicProvider,
    }

    @classmethod
    def register_provider(cls, name: str, provider_class: type[BaseLLMProvider]) -> None:
        cls._providers[name.lower()] = provider_class

    @classmethod
    def get_provider_names(cls) -> list[str]:
        return sorted({p.__name__.replace("Provider", "").lower() for p in cls._providers.values()})

    @classmethod
    def create(cls, provider_name: Optional[str] = None, model: Optional[str] = None) -> BaseLLMProvider:
        """Create a provider from explicit params, falling back to LLM_PROVIDER / LLM_MODEL."""
        if provider_name is None:
            provider_name = os.environ.get("LLM_PROVIDER") or DEFAULT_PROVIDER

        provider_name = provider_name.lower().strip()
        if provider_name not in cls._providers:
            raise ProviderNotFoundError(
                f"Unknown provider '{provider_name}'. "
                f"Available providers: {', '.join(cls.get_provider_names())}"
            )

        if model is None:
            model = os.environ.get("LLM_MODEL") or None

        return cls._providers[provider_name](model=model)


_provider_instance: Optional[BaseLLMProvider] = None


def get_provider() -> BaseLLMProvider:
    """Get or create the shared provider instance."""
    global _provider_instance
    if _provider_instance is None:
        _provider_instance = LLMProviderFactory.create()
    return _provider_instance


def set_provider(provider: Optional[BaseLLMProvider]) -> None:
    """Install a provider instance (or None to rebuild from the environment)."""
    global _provider_instance
    _provider_instance = provider


def generate(prompt: str) -> str:
    """
    Generate text from a prompt using the configured provider.

    Raises:
        ConfigurationError: If provider is not configured properly.
        ModelNotFoundError: If the specified model is not available.
        EmptyResponseError: If the model returned no text.
        LLMError: If text generation fails.
    """
    return get_provider().generate_text(prompt)


def get_provider_info() -> dict:
    """Describe the current provider configuration without raising."""
    try:
        provider = get_provider()
        return {"provider": provider.provider_name, "model": provider.model, "status": "ready"}
    except LLMError as e:
        return {
            "provider": os.environ.get("LLM_PROVIDER", DEFAULT_PROVIDER),
            "model": os.environ.get("LLM_MODEL", "default"),
            "status": "error",
            "error": str(e),
        }


if __name__ == "__main__":
    import sys

    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))

    if len(sys.argv) < 2:
        print("Usage: python llm_provider.py 'your prompt here'")
        print("  LLM_PROVIDER=gemini|openai|anthropic (default gemini), LLM_MODEL optional")
        sys.exit(0)

    try:
        info = get_provider_info()
        print(f"Provider: {info['provider']} | Model: {info['model']}")
        print("-" * 50)
        print(generate(" ".join(sys.argv[1:])))
    except LLMError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
