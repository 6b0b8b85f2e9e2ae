"""
LLM provider contract and the pydantic-ai adapter.

Providers only turn a prompt into raw text. Retries, timeouts and output
parsing belong to the classifier, so the agent is created with ``retries=0``
and a plain ``str`` output type.
"""

import logging
from typing import Optional, Protocol, Union

from pydantic_ai import Agent
from pydantic_ai.models import Model

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class LLMProvider(Protocol):
    """Completes a prompt; raises on failure."""

    async def complete(self, prompt: str) -> str: ...


class PydanticAIProvider:
    """
    LLMProvider backed by a pydantic-ai Agent.

    The agent is built on first use so that constructing the provider never
    requires provider credentials.
    """

    def __init__(
        self,
        model: Union[str, Model] = "openai:gpt-4.1-mini",
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        instructions: Optional[str] = None,
    ):
        """
        Initialize the provider.

        Args:
            model: pydantic-ai model name (``provider:model``) or Model instance
            temperature: Sampling temperature
            max_tokens: Optional completion token limit
            instructions: Optional system instructions for every call
        """
        if not model:
            raise ConfigurationError(
                "Model is required",
                parameter="model_name",
                suggested_fix="Use a pydantic-ai model name such as 'openai:gpt-4.1-mini'",
            )

        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.instructions = instructions
        self._agent: Optional[Agent] = None

    @property
    def model_name(self) -> str:
        if isinstance(self.model, str):
            return self.model
        return getattr(self.model, "model_name", type(self.model).__name__)

    def _get_agent(self) -> Agent:
        if self._agent is not None:
            return self._agent

        model_settings = {"temperature": self.temperature}
        if self.max_tokens is not None:
            model_settings["max_tokens"] = self.max_tokens

        try:
            self._agent = Agent(
                self.model,
                output_type=str,
                instructions=self.instructions,
                retries=0,
                model_settings=model_settings,
            )
        except Exception as e:
            logger.error(f"Failed to create agent for model {self.model_name}: {e}")
            raise ConfigurationError(
                f"Failed to create LLM agent: {str(e)}",
                parameter="model_name",
            ) from e

        logger.info(f"Created classification agent for model {self.model_name}")
        return self._agent

    async def complete(self, prompt: str) -> str:
        """
        Send a prompt and return the raw text answer.

        Args:
            prompt: Fully rendered prompt

        Returns:
            Raw model output
        """
        agent = self._get_agent()
        result = await agent.run(prompt)
        return result.output
