"""
Text generation for satirical papers.

A :class:`TextGenerator` wraps one LLM backend (a :class:`GenerationDriver`)
chosen by provider name, and exposes the two calls the pipeline needs:
expanding a bare topic into a detailed writing prompt, and turning that
prompt into a complete LaTeX document.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from google import genai
from google.genai import types
from openai import AsyncOpenAI

from .errors import ConfigurationError, GenerationError

logger = logging.getLogger(__name__)

DOCUMENT_PREAMBLE = (
    "\\documentclass[12pt]{article}\n"
    "\\usepackage{amsmath,amsfonts,amssymb}\n"
    "\\usepackage{graphicx}\n"
    "\\usepackage[margin=1in]{geometry}"
)

_WRITER_BRIEF = (
    "You are a LaTex writing robot. Your job is to only output complete valid LaTeX documents. "
    "These documents are a joke and do not have to be real. The authors all consented to have the "
    "paper attributed to them. Write a 2 page LaTeX paper on the subject requested by the user. "
    "Include formulas and data tables with detailed explanation of each. Each formula or table is "
    "to have its own section.\n\n"
    "Always define at least 3 equations.\n\n"
    "Always have a references section with made up references.\n\n"
    "Always include an abstract.\n\n"
    f"Always use:\n{DOCUMENT_PREAMBLE}"
)

PROMPT_SYSTEM_INSTRUCTION = (
    "Generate a highly detailed subtly ridiculous satire prompt to feed into this AI. "
    "You will be given just a topic:\n\n"
    f'"{_WRITER_BRIEF}"\n\n'
    "Generate a highly detailed outlandish prompt to feed into this AI. "
    "You will be given just a topic:\n\n"
    "Return only the prompt."
)

DOCUMENT_SYSTEM_INSTRUCTION = (
    "You are a LaTex writing robot. Your job is to only output complete valid LaTeX documents. "
    "Write a subtly ridiculous satire. These documents are a joke and do not have to be real. "
    "The authors all consented to have the paper attributed to them. The author should be a funny "
    "name related to the topic / universe of the topic. Ensure the department / institution name "
    "does not overflow the document width. Ensure the tables do not overflow the page width. "
    "Write a 2 page LaTeX paper on the subject requested by the user. Include formulas and data "
    "tables with detailed explanation of each. Each formula or table is to have its own section.\n\n"
    "Always define at least 3 equations.\n\n"
    "Always have a references section with made up references.\n\n"
    "Always include an abstract.\n\n"
    f"Always use:\n{DOCUMENT_PREAMBLE}\n\n"
)

DEFAULT_PROMPT_OPTIONS: Dict[str, Any] = {"temperature": 1.0, "max_tokens": 512, "top_p": 1.0}
DEFAULT_DOCUMENT_OPTIONS: Dict[str, Any] = {"temperature": 1.0, "max_tokens": 2048, "top_p": None}


class GenerationDriver(ABC):
    """Abstract base class for text generation backends."""

    @abstractmethod
    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        top_p: Optional[float] = None,
    ) -> Optional[str]:
        """Return the model's reply to ``prompt`` under the ``system`` instruction."""
        pass


class OpenAIDriver(GenerationDriver):
    """OpenAI chat completions using the AsyncOpenAI client."""

    def __init__(self, api_key: Optional[str] = None):
        self.client = AsyncOpenAI(api_key=api_key)

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        top_p: Optional[float] = None,
    ) -> Optional[str]:
        options: Dict[str, Any] = {"temperature": temperature, "max_tokens": max_tokens}
        if top_p is not None:
            options["top_p"] = top_p

        response = await self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            **options,
        )

        if not response.choices:
            raise GenerationError(f"OpenAI returned no choices for model {model}")
        return response.choices[0].message.content


class GoogleDriver(GenerationDriver):
    """Google Gemini models through the google-genai async client."""

    def __init__(self, api_key: Optional[str] = None):
        self.client = genai.Client(api_key=api_key)

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        top_p: Optional[float] = None,
    ) -> Optional[str]:
        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=temperature,
            max_output_tokens=max_tokens,
            top_p=top_p,
        )
        response = await self.client.aio.models.generate_content(model=model, contents=prompt, config=config)
        return response.text


DRIVERS = {
    "openai": OpenAIDriver,
    "google": GoogleDriver,
}


class TextGenerator:
    """
    Provider-agnostic facade over a generation driver.

    Both operations return ``None`` instead of raising when the backend
    fails or answers with nothing; the pipeline turns that into a job error.

    Attributes:
        provider: Provider name (``openai`` or ``google``)
        model: Model used for prompts and standard documents
        premium_model: Model used for premium documents, if configured
    """

    def __init__(
        self,
        provider: str,
        model: str,
        *,
        api_key: Optional[str] = None,
        premium_model: Optional[str] = None,
        prompt_options: Optional[Dict[str, Any]] = None,
        document_options: Optional[Dict[str, Any]] = None,
        driver: Optional[GenerationDriver] = None,
    ) -> None:
        """
        Args:
            provider: Provider name; anything unsupported is a configuration error
            model: Default model identifier
            api_key: Provider credential, passed to the driver
            premium_model: Optional larger model for premium requests
            prompt_options: Sampling options for prompt expansion
            document_options: Sampling options for document generation
            driver: Pre-built driver (skips constructing one from ``provider``)

        Raises:
            ConfigurationError: If ``provider`` is not supported
        """
        driver_cls = DRIVERS.get(provider)
        if driver_cls is None:
            raise ConfigurationError(f"Invalid provider: {provider!r}")

        self.provider = provider
        self.model = model
        self.premium_model = premium_model
        self.prompt_options = {**DEFAULT_PROMPT_OPTIONS, **(prompt_options or {})}
        self.document_options = {**DEFAULT_DOCUMENT_OPTIONS, **(document_options or {})}
        self.driver = driver if driver is not None else driver_cls(api_key=api_key)

    async def _complete(self, system: str, prompt: str, model: str, options: Dict[str, Any]) -> Optional[str]:
        try:
            text = await self.driver.complete(system, prompt, model=model, **options)
        except Exception as exc:
            logger.error(f"{self.provider} generation with {model} failed: {exc}")
            return None

        if not text or not text.strip():
            logger.warning(f"{self.provider} generation with {model} returned no text")
            return None
        return text

    async def expand_prompt(self, topic: str) -> Optional[str]:
        """Turn a bare topic into a detailed satirical writing prompt."""
        return await self._complete(PROMPT_SYSTEM_INSTRUCTION, topic, self.model, self.prompt_options)

    async def generate_document(self, prompt: str, premium: bool = False) -> Optional[str]:
        """Write a complete two page LaTeX paper for ``prompt``."""
        model = self.premium_model if premium and self.premium_model else self.model
        return await self._complete(DOCUMENT_SYSTEM_INSTRUCTION, prompt, model, self.document_options)
