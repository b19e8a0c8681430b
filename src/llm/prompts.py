"""
Prompts for the reasoning layer.

Provides prompts for:
- Root-cause diagnosis of a detected incident
- Visual assessment of a page state inside a dream
- Yes/no checks of a flow's visual expectation
- Post-mortem summaries for incident memory
- Resolving a natural-language action to a CSS selector
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class PromptType(StrEnum):
    """Types of prompts available."""

    DIAGNOSE_ROOT_CAUSE = "diagnose_root_cause"
    ASSESS_PAGE_VISUALLY = "assess_page_visually"
    CHECK_VISUAL_EXPECTATION = "check_visual_expectation"
    POST_MORTEM = "post_mortem"
    RESOLVE_ACTION_TARGET = "resolve_action_target"


@dataclass(frozen=True)
class PromptTemplate:
    """A prompt template with system and user prompt components."""

    system_prompt: str
    user_prompt_template: str
    expected_format: str | None = None
    max_tokens: int = 512
    temperature: float = 0.2


KNOWN_STRATEGIES = (
    "css_patch_targeted",
    "dom_removal",
    "rollback_simulation",
    "cache_clear",
    "js_injection",
    "style_override",
)


DIAGNOSE_ROOT_CAUSE = PromptTemplate(
    system_prompt="""You are an expert SRE agent diagnosing visual regressions in web applications.
You analyze DOM snapshots and error messages to determine root causes.
Always respond with valid JSON.{knowledge}""",
    user_prompt_template="""Diagnose this incident:

Site: {site_name} ({site_url})
Description: {site_description}

Incident:
- Type: {incident_type}
- Error: {error_message}
- Blocking element: {blocking_element}

DOM snapshot (truncated):
{dom_snapshot}

Respond with JSON:
{{
  "rootCause": "Brief description of the root cause",
  "confidence": 0.0-1.0,
  "category": "z_index_overlap|missing_element|layout_shift|js_error|css_regression|unknown",
  "suggestedStrategies": ["strategy_name_1", "strategy_name_2"],
  "reasoning": "Step-by-step reasoning about why this is the root cause"
}}

Valid strategies: {strategies}""",
    expected_format="json",
    max_tokens=800,
    temperature=0.2,
)

ASSESS_PAGE_VISUALLY = PromptTemplate(
    system_prompt="""You are a visual QA agent evaluating whether a web page appears functional.
You check for visual integrity, layout issues, and missing elements. Respond with JSON.""",
    user_prompt_template="""Evaluate this page state:

Site: {site_name}
Expected elements:
{expected_elements}

Page DOM summary:
{dom_summary}

Page description/state:
{page_state}

Respond with JSON:
{{
  "pageAppearsFunctional": true/false,
  "issuesFound": ["list of issues"],
  "overallScore": 0.0-1.0,
  "details": "Brief assessment"
}}""",
    expected_format="json",
    max_tokens=400,
    temperature=0.1,
)

CHECK_VISUAL_EXPECTATION = PromptTemplate(
    system_prompt="""You verify statements about the current state of a web page from its DOM summary.
Respond with JSON containing a single "answer" field set to "yes" or "no".""",
    user_prompt_template="""Is the following true about this page?
"{expectation}"

Page URL: {page_url}

Page DOM summary:
{dom_summary}

Respond with JSON: {{"answer": "yes"}} or {{"answer": "no"}}""",
    expected_format="json",
    max_tokens=20,
    temperature=0.0,
)

POST_MORTEM = PromptTemplate(
    system_prompt=(
        "Write concise post-mortem summaries for SRE incidents. One paragraph, focus on: "
        "what happened, root cause, how it was fixed, and what to watch for next time."
    ),
    user_prompt_template="""Summarize this incident:
- Type: {incident_type}
- URL: {incident_url}
- Error: {error_message}
- Blocking element: {blocking_element}
- Root cause: {root_cause} ({category})
- Strategy used: {strategy}
- Success: {success}
- Reasoning: {reasoning}""",
    expected_format=None,
    max_tokens=200,
    temperature=0.3,
)

RESOLVE_ACTION_TARGET = PromptTemplate(
    system_prompt="""You translate a natural-language browser action into a CSS selector.
Pick the single element on the page the user means to interact with.
Respond with JSON only.""",
    user_prompt_template="""Action: "{instruction}"

Page DOM summary:
{dom_summary}

Respond with JSON:
{{
  "selector": "CSS selector of the target element, or null if none matches",
  "confidence": 0.0-1.0
}}""",
    expected_format="json",
    max_tokens=120,
    temperature=0.0,
)


PROMPT_REGISTRY: dict[PromptType, PromptTemplate] = {
    PromptType.DIAGNOSE_ROOT_CAUSE: DIAGNOSE_ROOT_CAUSE,
    PromptType.ASSESS_PAGE_VISUALLY: ASSESS_PAGE_VISUALLY,
    PromptType.CHECK_VISUAL_EXPECTATION: CHECK_VISUAL_EXPECTATION,
    PromptType.POST_MORTEM: POST_MORTEM,
    PromptType.RESOLVE_ACTION_TARGET: RESOLVE_ACTION_TARGET,
}


def get_prompt(prompt_type: PromptType) -> PromptTemplate:
    """Get a prompt template by type."""
    if prompt_type not in PROMPT_REGISTRY:
        raise ValueError(f"Unknown prompt type: {prompt_type}")
    return PROMPT_REGISTRY[prompt_type]


def format_prompt(
    prompt_type: PromptType,
    system_variables: dict[str, Any] | None = None,
    **kwargs: Any,
) -> tuple[str, str]:
    """
    Format a prompt template with the given variables.

    Returns:
        Tuple of (system_prompt, user_prompt)
    """
    template = get_prompt(prompt_type)
    system_prompt = template.system_prompt
    if system_variables is not None:
        system_prompt = system_prompt.format(**system_variables)
    user_prompt = template.user_prompt_template.format(**kwargs)
    return system_prompt, user_prompt
