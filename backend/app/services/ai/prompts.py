"""Prompt builders and keyword constants for AI workflows."""

from __future__ import annotations

TECHNICAL_KEYWORDS = [
    "api",
    "database",
    "server",
    "integration",
    "authentication",
    "ssl",
    "certificate",
    "network",
    "deployment",
    "configuration",
]

COMPLEXITY_KEYWORDS = [
    "multiple",
    "intermittent",
    "random",
    "sometimes",
    "all users",
    "production",
    "data loss",
    "corrupt",
    "migration",
    "performance",
]

RESOLUTION_KEYWORDS = [
    "fix",
    "resolve",
    "solution",
    "solved",
    "workaround",
    "worked",
    "restored",
    "root cause",
]

TAG_KEYWORDS = [
    "login",
    "authentication",
    "password",
    "performance",
    "error",
    "api",
    "database",
    "integration",
    "deployment",
    "configuration",
]


def build_triage_prompt(
    *,
    title: str,
    description: str,
    category: str,
    priority: str,
    knowledge_section: str = "",
    thread: str = "",
    max_response_length: int = 1000,
) -> str:
    knowledge = knowledge_section.strip() or "No relevant articles found."
    conversation = f"\nConversation so far (oldest first):\n{thread.strip()}\n" if thread.strip() else ""
    return f"""You are an expert helpdesk analyst and support agent.
Analyze the ticket below and draft a first reply for the requester.

Ticket:
Title: {title}
Description: {description or "No description provided"}
Current category: {category}
Current priority: {priority}
{conversation}
Relevant knowledge base articles:
{knowledge}

Respond ONLY with a JSON object using these exact keys:
{{
  "keyIssues": ["issue1", "issue2"],
  "suggestedCategory": "bug|feature|support|enhancement|incident|request",
  "suggestedPriority": "low|medium|high|urgent",
  "complexityScore": 0-100,
  "requiredExpertise": ["skill1"],
  "estimatedHours": number,
  "reasoning": "one or two sentences",
  "autoResponse": "reply to the requester, at most {max_response_length} characters, empty if you cannot help",
  "confidence": 0.0-1.0
}}

Only give a high confidence when the reply fully resolves the request without
human follow-up. Never invent account details or internal procedures."""


def build_knowledge_extraction_prompt(
    *,
    title: str,
    description: str,
    category: str,
    resolution_thread: str,
) -> str:
    return f"""You are a knowledge management expert. Extract reusable knowledge
from this resolved support ticket so similar issues can be solved faster.

Ticket:
Title: {title}
Description: {description or "No description provided"}
Category: {category}

Resolution thread (oldest first):
{resolution_thread}

Respond ONLY with a JSON object:
{{
  "title": "brief descriptive title",
  "summary": "one sentence problem summary",
  "problem": "what went wrong",
  "resolutionSteps": ["step 1", "step 2"],
  "rootCause": "root cause if known, else empty",
  "prevention": ["tip 1"],
  "tags": ["keyword1", "keyword2"]
}}"""
