"""
Reasoning service for SRE Dreamer.

Provides high-level reasoning operations (diagnosis, visual assessment,
post-mortems, embeddings, action resolution) with documented fallbacks
when the LLM is disabled, unreachable, or returns malformed output.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from sre_dreamer.core.models import Diagnosis, Incident
from sre_dreamer.llm.client import ChatMessage, LLMClient, LLMClientError
from sre_dreamer.llm.config import LLMConfig, ReasoningTask
from sre_dreamer.llm.prompts import (
    KNOWN_STRATEGIES,
    PromptType,
    format_prompt,
    get_prompt,
)

if TYPE_CHECKING:
    from sre_dreamer.profiles.models import SiteProfile

logger = structlog.get_logger(__name__)

DIAGNOSIS_DOM_LIMIT = 4000
VISUAL_DOM_LIMIT = 3000
EXPECTATION_DOM_LIMIT = 3000
ACTION_DOM_LIMIT = 3000


@dataclass
class LLMResult:
    """Result from an LLM operation."""

    success: bool
    content: str
    parsed_data: dict[str, Any] | list[Any] | None = None
    error: str | None = None
    tokens_used: int = 0
    fallback_used: bool = False


@dataclass
class VisualAssessment:
    """LLM judgement of whether a page looks functional."""

    page_appears_functional: bool
    overall_score: float
    issues_found: list[str] = field(default_factory=list)
    details: str = ""
    fallback_used: bool = False


def fallback_diagnosis(reason: str) -> Diagnosis:
    """Conservative diagnosis used when no usable LLM answer exists."""
    return Diagnosis(
        root_cause=reason,
        confidence=0.3,
        category="unknown",
        suggested_strategies=("rollback_simulation", "css_patch_targeted"),
        reasoning="LLM response was not usable. Falling back to default strategies.",
    )


def fallback_visual_assessment(reason: str) -> VisualAssessment:
    return VisualAssessment(
        page_appears_functional=False,
        overall_score=0.5,
        issues_found=[reason],
        details="LLM assessment failed",
        fallback_used=True,
    )


def extract_json(content: str) -> Any:
    """
    Decode a JSON answer, tolerating markdown code fences.

    Raises:
        json.JSONDecodeError: When the content is not JSON
    """
    content = content.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content = "\n".join(lines)
    return json.loads(content)


def _clamp(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return min(1.0, max(0.0, number))


class ReasoningService:
    """
    High-level reasoning operations over an OpenAI-compatible endpoint.

    The service owns its HTTP clients; callers close it through
    ``close()`` or ``async with``.
    """

    def __init__(
        self,
        config: LLMConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._http_client = http_client
        self._log = logger.bind(component="reasoning")
        self._clients: dict[str, LLMClient] = {}

    @property
    def config(self) -> LLMConfig:
        return self._config

    def is_enabled(self, task: ReasoningTask) -> bool:
        return self._config.is_task_enabled(task)

    def _get_client(self, task: ReasoningTask) -> LLMClient | None:
        """Get or create the client serving a task."""
        if not self.is_enabled(task):
            return None

        endpoint = self._config.get_effective_endpoint(task)
        key = f"{endpoint.base_url}:{endpoint.model}:{endpoint.embedding_model}"
        if key not in self._clients:
            self._clients[key] = LLMClient(endpoint, http_client=self._http_client)
        return self._clients[key]

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

    async def __aenter__(self) -> ReasoningService:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _execute_prompt(
        self,
        task: ReasoningTask,
        prompt_type: PromptType,
        variables: dict[str, Any],
        system_variables: dict[str, Any] | None = None,
        image_png: bytes | None = None,
    ) -> LLMResult:
        """Execute a prompt and return the result."""
        client = self._get_client(task)
        if client is None:
            return LLMResult(
                success=False,
                content="",
                error="LLM not enabled for this task",
                fallback_used=True,
            )

        template = get_prompt(prompt_type)
        system_prompt, user_prompt = format_prompt(
            prompt_type, system_variables=system_variables, **variables
        )

        user_content: str | list[dict[str, Any]] = user_prompt
        if image_png is not None:
            encoded = base64.b64encode(image_png).decode("ascii")
            user_content = [
                {"type": "text", "text": user_prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{encoded}", "detail": "low"},
                },
            ]

        extra: dict[str, Any] = {}
        if template.expected_format == "json":
            extra["response_format"] = {"type": "json_object"}

        try:
            result = await client.chat(
                [
                    ChatMessage(role="system", content=system_prompt),
                    ChatMessage(role="user", content=user_content),
                ],
                temperature=self._config.get_effective_temperature(task, template.temperature),
                max_tokens=self._config.get_effective_max_tokens(task, template.max_tokens),
                **extra,
            )
        except (LLMClientError, httpx.HTTPError) as e:
            self._log.error(
                "LLM request failed",
                task=task,
                prompt_type=prompt_type,
                error=str(e),
            )
            return LLMResult(success=False, content="", error=str(e), fallback_used=True)

        parsed_data = None
        if template.expected_format == "json":
            try:
                parsed_data = extract_json(result.content)
            except json.JSONDecodeError as e:
                self._log.warning(
                    "Failed to parse JSON response",
                    prompt_type=prompt_type,
                    error=str(e),
                    content=result.content[:200],
                )

        return LLMResult(
            success=True,
            content=result.content,
            parsed_data=parsed_data,
            tokens_used=result.usage.get("total_tokens", 0),
        )

    # =========================================================================
    # Diagnosis
    # =========================================================================

    async def diagnose_root_cause(
        self,
        incident: Incident,
        profile: SiteProfile,
    ) -> Diagnosis:
        """
        Produce a root-cause hypothesis and ranked candidate strategies.

        Never raises for LLM problems: an unreachable or disabled LLM and a
        malformed answer both yield the conservative fallback diagnosis.
        """
        knowledge = ""
        if profile.knowledge_base:
            facts = "\n".join(f"{i}. {fact}" for i, fact in enumerate(profile.knowledge_base, 1))
            knowledge = f"\n\nRelevant knowledge:\n{facts}"

        result = await self._execute_prompt(
            ReasoningTask.DIAGNOSIS,
            PromptType.DIAGNOSE_ROOT_CAUSE,
            {
                "site_name": profile.name,
                "site_url": profile.url,
                "site_description": profile.description,
                "incident_type": incident.type,
                "error_message": incident.error_message or "none",
                "blocking_element": incident.blocking_element or "unknown",
                "dom_snapshot": (incident.dom_snapshot or "(no snapshot)")[:DIAGNOSIS_DOM_LIMIT],
                "strategies": ", ".join(KNOWN_STRATEGIES),
            },
            system_variables={"knowledge": knowledge},
        )

        if not result.success:
            return fallback_diagnosis(f"LLM diagnosis unavailable: {result.error}")
        if not isinstance(result.parsed_data, dict):
            return fallback_diagnosis("Failed to parse LLM diagnosis")

        return self._parse_diagnosis(result.parsed_data)

    @staticmethod
    def _parse_diagnosis(data: dict[str, Any]) -> Diagnosis:
        strategies = data.get("suggestedStrategies")
        if isinstance(strategies, str):
            strategies = [strategies]
        if not isinstance(strategies, list):
            strategies = ["rollback_simulation"]
        names = tuple(
            s.strip() for s in strategies if isinstance(s, str) and s.strip()
        ) or ("rollback_simulation",)

        return Diagnosis(
            root_cause=str(data.get("rootCause") or "Unknown"),
            confidence=_clamp(data.get("confidence", 0.5), 0.5),
            category=str(data.get("category") or "unknown"),
            suggested_strategies=names,
            reasoning=str(data.get("reasoning") or ""),
        )

    # =========================================================================
    # Visual checks
    # =========================================================================

    async def assess_page_visually(
        self,
        dom_summary: str,
        page_state: str,
        profile: SiteProfile,
        screenshot_png: bytes | None = None,
    ) -> VisualAssessment:
        """Judge whether a page looks functional; falls back to a neutral 0.5."""
        expected = "\n".join(f"- {e.description}" for e in profile.expected_elements)

        result = await self._execute_prompt(
            ReasoningTask.VISUAL_ASSESSMENT,
            PromptType.ASSESS_PAGE_VISUALLY,
            {
                "site_name": profile.name,
                "expected_elements": expected
                or "- (none specified - use general web page expectations)",
                "dom_summary": dom_summary[:VISUAL_DOM_LIMIT],
                "page_state": page_state,
            },
            image_png=screenshot_png,
        )

        if not result.success:
            return fallback_visual_assessment(result.error or "LLM unavailable")
        data = result.parsed_data
        if not isinstance(data, dict):
            return fallback_visual_assessment("Failed to parse visual assessment")

        issues = data.get("issuesFound") or []
        return VisualAssessment(
            page_appears_functional=bool(data.get("pageAppearsFunctional", False)),
            overall_score=_clamp(data.get("overallScore", 0.5), 0.5),
            issues_found=[str(i) for i in issues] if isinstance(issues, list) else [str(issues)],
            details=str(data.get("details") or ""),
        )

    async def check_visual_expectation(
        self,
        expectation: str,
        dom_summary: str,
        page_url: str,
    ) -> bool:
        """Yes/no check of a plain-language statement; any failure counts as no."""
        result = await self._execute_prompt(
            ReasoningTask.VISUAL_ASSESSMENT,
            PromptType.CHECK_VISUAL_EXPECTATION,
            {
                "expectation": expectation,
                "page_url": page_url,
                "dom_summary": dom_summary[:EXPECTATION_DOM_LIMIT],
            },
        )
        if not result.success:
            return False
        if isinstance(result.parsed_data, dict):
            answer = str(result.parsed_data.get("answer", ""))
        else:
            answer = result.content
        return "yes" in answer.lower()

    async def resolve_action_target(self, instruction: str, dom_summary: str) -> str | None:
        """Map a natural-language action to a selector, or None."""
        result = await self._execute_prompt(
            ReasoningTask.ACTION_RESOLUTION,
            PromptType.RESOLVE_ACTION_TARGET,
            {"instruction": instruction, "dom_summary": dom_summary[:ACTION_DOM_LIMIT]},
        )
        if not result.success or not isinstance(result.parsed_data, dict):
            return None
        selector = result.parsed_data.get("selector")
        if isinstance(selector, str) and selector.strip():
            return selector.strip()
        return None

    # =========================================================================
    # Learning
    # =========================================================================

    async def generate_post_mortem(
        self,
        incident: Incident,
        diagnosis: Diagnosis,
        strategy: str,
        success: bool,
    ) -> str:
        """One-paragraph post-mortem; a deterministic sentence when the LLM fails."""
        fallback = (
            f"Incident {incident.id}: {incident.type} at {incident.url}. "
            f"Root cause: {diagnosis.root_cause}. "
            f"{'Fixed' if success else 'Attempted fix'} via {strategy}."
        )

        result = await self._execute_prompt(
            ReasoningTask.POST_MORTEM,
            PromptType.POST_MORTEM,
            {
                "incident_type": incident.type,
                "incident_url": incident.url,
                "error_message": incident.error_message or "none",
                "blocking_element": incident.blocking_element or "unknown",
                "root_cause": diagnosis.root_cause,
                "category": diagnosis.category,
                "strategy": strategy,
                "success": str(success).lower(),
                "reasoning": diagnosis.reasoning,
            },
        )
        if not result.success or not result.content.strip():
            return fallback
        return result.content.strip()

    async def generate_embedding(self, text: str) -> list[float] | None:
        """Embedding vector for a text, or None when embeddings are unavailable."""
        client = self._get_client(ReasoningTask.EMBEDDING)
        if client is None:
            return None
        try:
            return await client.embed(text)
        except (LLMClientError, httpx.HTTPError) as e:
            self._log.warning("Embedding generation failed", error=str(e))
            return None
