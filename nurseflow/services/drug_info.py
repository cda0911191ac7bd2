"""
Clinical drug information lookup using Pydantic AI.

The lookup is an asynchronous call made from the presentation layer only.
Its outcome is an explicit Result: failures are expected (missing key, rate
limits, network trouble) and are turned into short advisory messages for the
nurse instead of exceptions.
"""

import asyncio
from enum import Enum
from typing import Any, cast

import structlog
from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError

from nurseflow.config import AIProviderConfig
from nurseflow.services.result import Result

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful medical assistant for a nurse. Keep answers extremely brief, "
    "concise, and clinically relevant."
)

NO_ANSWER_TEXT = "No information available."


class DrugInfoErrorKind(str, Enum):
    MISSING_KEY = "missing_key"
    PERMISSION_DENIED = "permission_denied"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    EMPTY_QUERY = "empty_query"


_ADVISORIES = {
    DrugInfoErrorKind.MISSING_KEY: (
        "AI Service Unavailable: Missing API Key. Please configure GEMINI_API_KEY in Settings."
    ),
    DrugInfoErrorKind.PERMISSION_DENIED: (
        "Permission Denied (403). Please configure a valid API key in Settings."
    ),
    DrugInfoErrorKind.RATE_LIMITED: (
        "Rate limit exceeded (429). The free tier limit has been reached. "
        "Please try again in a minute."
    ),
    DrugInfoErrorKind.UNAVAILABLE: "Error retrieving information. Please check your connection.",
    DrugInfoErrorKind.EMPTY_QUERY: "Please enter a question about a drug.",
}


class DrugInfoError(Exception):
    """A failed lookup, classified for the user-facing advisory."""

    def __init__(self, kind: DrugInfoErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

    @property
    def advisory(self) -> str:
        return _ADVISORIES[self.kind]


def classify_error(error: Exception) -> DrugInfoError:
    if isinstance(error, DrugInfoError):
        return error
    if isinstance(error, ModelHTTPError):
        if error.status_code == 403:
            return DrugInfoError(DrugInfoErrorKind.PERMISSION_DENIED, str(error))
        if error.status_code == 429:
            return DrugInfoError(DrugInfoErrorKind.RATE_LIMITED, str(error))
    return DrugInfoError(DrugInfoErrorKind.UNAVAILABLE, str(error) or type(error).__name__)


def clinical_summary_prompt(medication_name: str) -> str:
    """Question asked when a nurse opens the drug card of a medication."""
    return (
        f"Provide a concise clinical summary for {medication_name.strip()} including "
        "indications, common dosage, and key nursing warnings/adverse effects. "
        "Keep it under 100 words."
    )


class DrugInfoAnswer(BaseModel):
    query: str
    text: str = Field(min_length=1)


class DrugInfoService:
    """
    Answers free-text clinical questions about drugs.

    The underlying agent is created lazily so a missing API key is reported
    as a result instead of failing at construction.
    """

    def __init__(self, config: AIProviderConfig, agent: Agent[None, str] | None = None) -> None:
        self.config = config
        self._agent = agent
        self.logger = logger.bind(component="drug_info_service")

    def _get_agent(self) -> Agent[None, str]:
        if self._agent is None:
            if self.config.gemini_api_key is None:
                raise DrugInfoError(DrugInfoErrorKind.MISSING_KEY)
            from pydantic_ai.models.google import GoogleModel
            from pydantic_ai.providers.google import GoogleProvider

            model_name = self.config.drug_info_model.split(":", 1)[-1]
            self._agent = Agent(
                model=GoogleModel(
                    model_name, provider=GoogleProvider(api_key=self.config.gemini_api_key)
                ),
                output_type=str,
                system_prompt=SYSTEM_PROMPT,
            )
        return self._agent

    async def ask(self, query: str) -> Result[DrugInfoAnswer, DrugInfoError]:
        query = (query or "").strip()
        if not query:
            return Result.err(DrugInfoError(DrugInfoErrorKind.EMPTY_QUERY))

        try:
            agent = self._get_agent()
            result = await asyncio.wait_for(
                agent.run(f"Query: {query}"), timeout=self.config.timeout_seconds
            )
        except TimeoutError:
            self.logger.error("drug_info_timeout", timeout_seconds=self.config.timeout_seconds)
            return Result.err(DrugInfoError(DrugInfoErrorKind.UNAVAILABLE, "timeout"))
        except Exception as e:
            error = classify_error(e)
            self.logger.error("drug_info_failed", kind=error.kind.value, error=str(e))
            return Result.err(error)

        text = cast(str, cast(Any, result).output or "").strip() or NO_ANSWER_TEXT
        self.logger.info("drug_info_answered", query_length=len(query), answer_length=len(text))
        return Result.ok(DrugInfoAnswer(query=query, text=text))

    async def ask_text(self, query: str) -> str:
        """The answer text, or the advisory message when the lookup failed."""
        result = await self.ask(query)
        if result.is_ok():
            return result.unwrap().text
        return result.unwrap_err().advisory

    async def summarize(self, medication_name: str) -> str:
        return await self.ask_text(clinical_summary_prompt(medication_name))
