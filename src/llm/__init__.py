"""
Reasoning layer backed by OpenAI-compatible LLM endpoints.

Provides:
- LLMClient: async httpx client with rate limiting and retries
- ReasoningService: diagnosis, visual assessment, post-mortems, embeddings
- Configuration models loaded from YAML and the environment
"""

from sre_dreamer.llm.client import (
    ChatCompletion,
    ChatMessage,
    LLMAPIError,
    LLMAuthenticationError,
    LLMClient,
    LLMClientError,
    LLMRateLimitError,
    create_llm_client,
)
from sre_dreamer.llm.config import (
    LLMConfig,
    LLMEndpointConfig,
    LLMProvider,
    LLMSettings,
    RateLimitConfig,
    ReasoningTask,
    RetryConfig,
    TaskLLMConfig,
    load_llm_config,
)
from sre_dreamer.llm.prompts import KNOWN_STRATEGIES, PromptTemplate, PromptType
from sre_dreamer.llm.service import (
    LLMResult,
    ReasoningService,
    VisualAssessment,
    extract_json,
    fallback_diagnosis,
)

__all__ = [
    # Client
    "ChatCompletion",
    "ChatMessage",
    "LLMAPIError",
    "LLMAuthenticationError",
    "LLMClient",
    "LLMClientError",
    "LLMRateLimitError",
    "create_llm_client",
    # Configuration
    "LLMConfig",
    "LLMEndpointConfig",
    "LLMProvider",
    "LLMSettings",
    "RateLimitConfig",
    "ReasoningTask",
    "RetryConfig",
    "TaskLLMConfig",
    "load_llm_config",
    # Prompts
    "KNOWN_STRATEGIES",
    "PromptTemplate",
    "PromptType",
    # Service
    "LLMResult",
    "ReasoningService",
    "VisualAssessment",
    "extract_json",
    "fallback_diagnosis",
]
