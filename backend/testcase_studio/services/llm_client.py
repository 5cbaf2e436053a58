"""
OpenAI client for generating QA test cases from a JIRA issue.

Uses OpenAI's /chat/completions API via httpx.
One call = one attempt; retrying is the caller's job (see RetryPolicy).

Configuration:
  OPENAI_API_KEY — server-side only (never exposed to clients)
  OPENAI_MODEL   — defaults to gpt-4o-mini (fast, cheap)

Safety:
  • Bounded max_completion_tokens
  • System prompt forbids inventing requirements
  • Empty completions are treated as failures
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx

from testcase_studio.models.generation import GenerationMode
from testcase_studio.services.cost_calculator import calculate_cost

logger = logging.getLogger(__name__)

# ── System prompts ──────────────────────────────────────────
MANUAL_PROMPT = """\
You are an expert manual QA Engineer. Generate comprehensive test cases from JIRA issue descriptions.

**Context:** You will receive JIRA issue details including title and description.
Use ONLY this information - never invent requirements.

**Output Requirements:**
1. Use proper markdown with ## for main headings and - for bullet points
2. Include a title: "# Test Cases for [JIRA-ID]: [Issue Title]"
3. Structure by categories: ## **Functional Requirements**, ## **UI & Visual Validation**,
   ## **Edge Cases**, ## **Data Integrity** (if applicable)
4. Include blank lines before and after lists
5. Each test case should be:
   - Clear and actionable
   - Cover specific acceptance criteria
   - Include preconditions, steps, and expected results
   - Prioritized (High/Medium/Low)

**Must NOT:**
- Never mention specific individual names
- Never include implementation details (HTML classes, functions)
- Never invent requirements not in the JIRA issue

**Coverage:**
- Positive and negative test cases
- Edge cases and boundary conditions
- Error handling
- User workflows
- Form validations
- State transitions
- Accessibility considerations (if UI-related)

Generate comprehensive test cases now.\
"""

AUTO_PROMPT = """\
You are an expert QA automation engineer. Generate test cases from JIRA issue descriptions
that are ready to be turned into automated tests.

**Context:** You will receive JIRA issue details including title and description.
Use ONLY this information - never invent requirements.

**Output Requirements:**
1. Use proper markdown with ## for main headings and - for bullet points
2. Include a title: "# Test Cases for [JIRA-ID]: [Issue Title]"
3. Write every test case in Given / When / Then form
4. Give each test case a stable identifier (TC-001, TC-002, ...)
5. Name the test data each case needs and the observable assertion it makes
6. Mark cases that cannot be automated reliably as **Manual only** and say why

**Must NOT:**
- Never mention specific individual names
- Never guess selectors, endpoints or function names
- Never invent requirements not in the JIRA issue

Generate the automation-ready test cases now.\
"""

_PROMPTS: dict[GenerationMode, str] = {
    GenerationMode.MANUAL: MANUAL_PROMPT,
    GenerationMode.AUTO: AUTO_PROMPT,
}


class ContentGenerationError(RuntimeError):
    """One generation attempt failed (HTTP error, bad payload, empty output)."""


@dataclass(frozen=True, slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True, slots=True)
class GeneratedContent:
    content: str
    token_usage: TokenUsage | None = None
    cost: Decimal | None = None


class OpenAIChatClient:
    """Single-attempt test case generator backed by chat completions."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        max_completion_tokens: int = 8000,
        temperature: float = 0.7,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("OPENAI_API_KEY must be configured")
        self._api_key = api_key
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._max_completion_tokens = max_completion_tokens
        self._temperature = temperature
        self._timeout = timeout
        self._transport = transport

    async def generate(
        self,
        context: str,
        issue_key: str,
        mode: GenerationMode,
    ) -> GeneratedContent:
        """
        Ask the model for markdown test cases for one issue.

        Raises:
            ContentGenerationError: If the call fails or returns no content.
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _PROMPTS[mode]},
                {"role": "user", "content": f"### JIRA Issue: {issue_key}\n\n{context}"},
            ],
            "max_completion_tokens": self._max_completion_tokens,
            "temperature": self._temperature,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport,
            ) as client:
                response = await client.post(
                    f"{self._base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise ContentGenerationError(f"OpenAI request failed: {exc}") from exc

        if response.status_code != 200:
            logger.error(
                "OpenAI API error: status=%d body=%s",
                response.status_code,
                response.text[:500],
            )
            raise ContentGenerationError(
                f"OpenAI API returned status {response.status_code}"
            )

        # ── Parse the completion ────────────────────────────
        try:
            data = response.json()
            content = (data["choices"][0]["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error("Failed to parse OpenAI response: %s", exc)
            raise ContentGenerationError("Could not parse OpenAI response") from exc

        if not content:
            raise ContentGenerationError("Empty response from OpenAI")

        usage = data.get("usage") or {}
        token_usage = TokenUsage(
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
            total_tokens=int(usage.get("total_tokens") or 0),
        )

        cost: Decimal | None
        try:
            cost = calculate_cost(
                self.model,
                token_usage.prompt_tokens,
                token_usage.completion_tokens,
            )
        except ValueError:
            logger.warning("No pricing for model %s — cost not recorded", self.model)
            cost = None

        logger.info(
            "OpenAI generation for %s succeeded (%d tokens, $%s)",
            issue_key, token_usage.total_tokens, cost,
        )
        return GeneratedContent(content=content, token_usage=token_usage, cost=cost)
