"""
LLM collaborator that analyses learning conversations.

Two structured-output agents: a cheap relevance check that decides whether a
conversation is about programming at all, and a full analysis that extracts
the concepts discussed with a proficiency estimate for each. The model's
output is untrusted; whenever it is unusable the collaborator logs an
AnalysisFailureError and returns a documented safe default instead.
"""

import logging
from typing import Optional, Union

import logfire
from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.models import Model
from pydantic_ai.models.anthropic import AnthropicModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.anthropic import AnthropicProvider
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from mentor_config import get_config, LLMProvider, RuntimeConfig
from mentor_errors import AnalysisFailureError
from knowledge_state import ConversationAnalysis


logger = logging.getLogger(__name__)


DEFAULT_TOPIC = "programming"
DEFAULT_UNDERSTANDING = 2.5


class RelevanceCheck(BaseModel):
    """Output of the relevance agent."""
    is_programming_related: bool = Field(description="True if the text discusses programming")
    reason: str = Field(default="", description="One-sentence justification")


RELEVANCE_PROMPT = """You screen conversations for a programming mentor.
Decide whether the conversation is about programming, software development or
computer science. Casual chat, and questions that only mention a computer in
passing, are not programming related."""


ANALYSIS_PROMPT = """You analyse a conversation between a learner and a programming mentor.
Identify the programming concepts the learner engaged with. For each concept give:
- name: the canonical concept name, e.g. "Recursion" or "List Comprehension"
- proficiency: the learner's demonstrated proficiency from 0 (none) to 5 (expert)
- event_type: one of learned, practiced, confused, mastered
- details: a short note on what the learner showed or struggled with
Also estimate the learner's overall understanding (0-5), list any misconceptions
they revealed, and name the main topic (a language, framework, paradigm or
concept area). Only report concepts that were actually discussed."""


def default_analysis(topic_hint: Optional[str] = None) -> ConversationAnalysis:
    """The analysis used when the model output is unusable."""
    return ConversationAnalysis(
        concepts=[],
        overall_understanding=DEFAULT_UNDERSTANDING,
        misconceptions=[],
        detected_topic=topic_hint or DEFAULT_TOPIC,
    )


def build_model(config: RuntimeConfig) -> Union[Model, str]:
    """Build the pydantic_ai model from the LLM settings.

    Without an explicit API key the provider falls back to its own
    environment variable (ANTHROPIC_API_KEY / OPENAI_API_KEY).
    """
    llm = config.llm
    api_key = llm.api_key.get_secret_value() if llm.api_key else None

    if llm.provider == LLMProvider.OPENAI:
        if api_key:
            return OpenAIChatModel(llm.model_name, provider=OpenAIProvider(api_key=api_key))
        return f"openai:{llm.model_name}"

    if api_key:
        return AnthropicModel(llm.model_name, provider=AnthropicProvider(api_key=api_key))
    return f"anthropic:{llm.model_name}"


class ConversationAnalyzer:
    """Analyses conversations with pydantic_ai agents, never raising on bad output."""

    def __init__(self,
                 model: Optional[Union[Model, str]] = None,
                 config: Optional[RuntimeConfig] = None):
        """Initialize the analyzer.

        Args:
            model: Model to use; built from the LLM settings when omitted
            config: Runtime configuration
        """
        self.config = config or get_config()
        self._model = model
        self._relevance_agent: Optional[Agent] = None
        self._analysis_agent: Optional[Agent] = None

    @property
    def enabled(self) -> bool:
        return self.config.app.enable_llm_analysis

    def _model_settings(self) -> ModelSettings:
        return ModelSettings(
            temperature=self.config.llm.temperature,
            max_tokens=self.config.llm.max_tokens,
            timeout=self.config.llm.request_timeout,
        )

    def _get_model(self) -> Union[Model, str]:
        if self._model is None:
            self._model = build_model(self.config)
        return self._model

    @property
    def relevance_agent(self) -> Agent:
        if self._relevance_agent is None:
            self._relevance_agent = Agent(
                self._get_model(),
                output_type=RelevanceCheck,
                system_prompt=RELEVANCE_PROMPT,
                model_settings=self._model_settings(),
                retries=2,
            )
        return self._relevance_agent

    @property
    def analysis_agent(self) -> Agent:
        if self._analysis_agent is None:
            self._analysis_agent = Agent(
                self._get_model(),
                output_type=ConversationAnalysis,
                system_prompt=ANALYSIS_PROMPT,
                model_settings=self._model_settings(),
                retries=2,
            )
        return self._analysis_agent

    async def is_programming_related(self, text: str) -> bool:
        """Decide whether a conversation is about programming.

        Args:
            text: Conversation text

        Returns:
            The model's verdict, or False if it could not be obtained
        """
        if not self.enabled or not text or not text.strip():
            return False

        with logfire.span('is_programming_related', length=len(text)):
            try:
                result = await self.relevance_agent.run(text)
                verdict = result.output
            except Exception as e:
                self._log_failure("relevance check failed", e, fallback="not programming related")
                return False

            logfire.info('relevance checked', related=verdict.is_programming_related)
            return verdict.is_programming_related

    async def analyze_conversation(self, text: str, topic_hint: Optional[str] = None) -> ConversationAnalysis:
        """Extract concepts and proficiency estimates from a conversation.

        Args:
            text: Conversation text
            topic_hint: Main topic, when the caller already knows it

        Returns:
            The analysis, or the default analysis if the model failed
        """
        if not self.enabled or not text or not text.strip():
            return default_analysis(topic_hint)

        prompt = text if not topic_hint else f"Main topic: {topic_hint}\n\n{text}"

        with logfire.span('analyze_conversation', length=len(text), topic_hint=topic_hint):
            try:
                result = await self.analysis_agent.run(prompt)
                analysis = result.output
            except Exception as e:
                self._log_failure("conversation analysis failed", e, fallback="default analysis")
                return default_analysis(topic_hint)

            if not analysis.detected_topic.strip():
                analysis.detected_topic = topic_hint or DEFAULT_TOPIC

            logfire.info(
                'conversation analysed',
                concepts=[c.name for c in analysis.concepts],
                understanding=analysis.overall_understanding,
                topic=analysis.detected_topic,
            )
            return analysis

    def _log_failure(self, message: str, cause: Exception, fallback: str) -> None:
        error = AnalysisFailureError(
            f"{message}: {cause}",
            context={'cause': type(cause).__name__, 'fallback': fallback},
        )
        logger.warning(f"{error.message}; using {fallback}")
        logfire.warning('analysis failure, using {fallback}', fallback=fallback, error=error.to_log_dict())
