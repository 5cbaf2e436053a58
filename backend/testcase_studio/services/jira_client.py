"""
JIRA Cloud client — fetches one issue over REST API v3.

Auth is HTTP Basic with the service account's email + API token.
Every failure is reported as IssueFetchError with a typed reason so the
HTTP layer can pick a status code without parsing messages.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from testcase_studio.services.errors import FetchFailureReason

logger = logging.getLogger(__name__)

# PROJECT-NUMBER, e.g. TES-1, KAN-123
_ISSUE_KEY_RE = re.compile(r"^[A-Z][A-Z0-9]*-\d+$")


class IssueFetchError(Exception):
    """Raised when an issue cannot be fetched from JIRA."""

    def __init__(self, reason: FetchFailureReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True, slots=True)
class IssueDetails:
    key: str
    title: str
    description: str
    attachment_count: int
    image_attachment_count: int

    def as_context(self) -> str:
        """Prompt context handed to the content generator."""
        return f"Title: {self.title}\n\nDescription: {self.description}"


def normalize_issue_key(issue_key: str) -> str:
    return issue_key.strip().upper()


def extract_text_from_adf(node: Any) -> str:
    """Flatten an Atlassian Document Format tree into plain text."""
    if not isinstance(node, dict):
        return ""

    parts: list[str] = []
    for child in node.get("content") or []:
        if not isinstance(child, dict):
            continue
        if child.get("type") == "text" and child.get("text"):
            parts.append(child["text"])
        elif child.get("content"):
            text = extract_text_from_adf(child)
            if text:
                parts.append(text)
    return " ".join(parts)


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of JIRA's error text."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"JIRA API error: {response.status_code}"

    if isinstance(body, dict):
        messages = body.get("errorMessages") or []
        if messages:
            return str(messages[0])
        if body.get("message"):
            return str(body["message"])
    return f"JIRA API error: {response.status_code}"


def _issue_fields(body: Any, key: str) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Return (fields, attachments) or raise if the payload is not issue-shaped."""
    fields = (body.get("fields") or {}) if isinstance(body, dict) else None
    attachments = (fields.get("attachment") or []) if isinstance(fields, dict) else None
    if not isinstance(attachments, list) or not all(isinstance(a, dict) for a in attachments):
        logger.error("Unexpected JIRA payload shape for %s", key)
        raise IssueFetchError(
            FetchFailureReason.OTHER, f"JIRA returned an unexpected payload for {key}.",
        )
    return fields, attachments


class JiraClient:
    """Thin async wrapper around GET /rest/api/3/issue/{key}."""

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not email or not api_token:
            raise ValueError("JIRA_EMAIL and JIRA_API_TOKEN must be configured")
        self._base_url = base_url.rstrip("/")
        self._auth = httpx.BasicAuth(email, api_token)
        self._timeout = timeout
        self._transport = transport

    async def fetch_issue(self, issue_key: str) -> IssueDetails:
        """
        Fetch an issue and reduce it to the fields generation needs.

        Raises:
            IssueFetchError: For invalid keys, HTTP errors and network errors.
        """
        key = normalize_issue_key(issue_key)
        if not _ISSUE_KEY_RE.match(key):
            raise IssueFetchError(
                FetchFailureReason.INVALID_KEY,
                f'Invalid issue key format: "{issue_key}". '
                "Expected format: PROJECT-NUMBER (e.g., TES-1, KAN-123).",
            )

        url = f"{self._base_url}/rest/api/3/issue/{key}"
        logger.info("Fetching JIRA issue %s from %s", key, self._base_url)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                auth=self._auth,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    url,
                    params={"expand": "attachments,comments,issuelinks"},
                    headers={"Accept": "application/json"},
                )
        except httpx.TransportError as exc:
            logger.error("Cannot reach JIRA for %s: %s", key, exc)
            raise IssueFetchError(
                FetchFailureReason.NETWORK,
                f"Cannot connect to JIRA at {self._base_url}. "
                "Please check JIRA_BASE_URL configuration.",
            ) from exc

        if response.status_code != 200:
            detail = _error_message(response)
            logger.error(
                "JIRA API error for %s: status=%d %s",
                key, response.status_code, detail[:500],
            )
            raise self._classify(response.status_code, key, detail)

        try:
            body = response.json()
        except ValueError as exc:
            raise IssueFetchError(
                FetchFailureReason.OTHER, "JIRA returned an unreadable response.",
            ) from exc

        fields, attachments = _issue_fields(body, key)
        images = [
            att for att in attachments
            if str(att.get("mimeType", "")).startswith("image/")
        ]

        logger.info("Fetched JIRA issue %s", key)
        return IssueDetails(
            key=key,
            title=str(fields.get("summary") or ""),
            description=extract_text_from_adf(fields.get("description")),
            attachment_count=len(attachments),
            image_attachment_count=len(images),
        )

    @staticmethod
    def _classify(status_code: int, key: str, detail: str) -> IssueFetchError:
        if status_code == 401:
            return IssueFetchError(
                FetchFailureReason.AUTH,
                "JIRA authentication failed. Please check the JIRA credentials.",
            )
        if status_code == 403:
            return IssueFetchError(
                FetchFailureReason.FORBIDDEN,
                f"JIRA access forbidden for issue {key}.",
            )
        if status_code == 404:
            return IssueFetchError(
                FetchFailureReason.NOT_FOUND,
                f"Issue {key} not found or you don't have permission to view it.",
            )
        return IssueFetchError(FetchFailureReason.OTHER, detail)
