"""Task prompt for the analysis agent and the payload screen that guards it."""

import json
import logging
import re
from typing import Any, Dict

from lineu_worker.agent.errors import PromptInjectionError
from lineu_worker.routing import RoutingRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_ACTIONS = 6

INJECTION_PATTERNS = (
    re.compile(r"ignore\s+(all\s+)?previous\s+instructions", re.IGNORECASE),
    re.compile(r"ignore\s+the\s+above", re.IGNORECASE),
    re.compile(r"disregard\s+(all\s+)?prior", re.IGNORECASE),
    re.compile(r"new\s+instructions?\s*:", re.IGNORECASE),
    re.compile(r"system\s*:\s*you\s+are", re.IGNORECASE),
    re.compile(r"run\s+(this\s+)?command", re.IGNORECASE),
    re.compile(r"execute\s+(the\s+)?following", re.IGNORECASE),
    re.compile(r"use\s+the\s+bash\s+tool", re.IGNORECASE),
    re.compile(r"curl\s+.*\|\s*bash", re.IGNORECASE),
    re.compile(r"wget\s+.*\|\s*sh", re.IGNORECASE),
)

OUTPUT_SCHEMA = """{
  "category": "bug|infrastructure|database|external-service|configuration|performance|security",
  "priority": "critical|high|medium|low",
  "summary": "Concise problem title (max 80 chars)",
  "exception": {
    "type": "Exception class (e.g. TypeError, NoMethodError)",
    "message": "Main error message"
  },
  "stack_trace_summary": "The 3-5 most relevant stack trace lines",
  "affected_files": ["path/to/file.rb:line"],
  "root_cause": {
    "hypothesis": "Detailed technical explanation of the root cause",
    "confidence": "high|medium|low",
    "evidence": "What you found in the code that supports this hypothesis"
  },
  "impact": {
    "description": "Impact on users, customers or the business",
    "scope": "Estimate of how many users or operations are affected"
  },
  "fix": {
    "suggestion": "Clear description of the proposed fix",
    "code_example": "Code snippet showing the fix (if applicable)",
    "files_to_modify": ["file1.rb", "file2.rb"]
  },
  "prevention": {
    "test_suggestion": "Test to add to prevent a regression",
    "monitoring_suggestion": "Alert or metric to add (if applicable)"
  },
  "investigation_log": ["Step 1: what you did", "Step 2: what you found"],
  "related_code_snippets": [
    {
      "file": "path/to/file.rb",
      "lines": "10-25",
      "code": "relevant code you found",
      "relevance": "Why this code matters"
    }
  ],
  "suggested_team": "TEAM_KEY or null",
  "additional_context": "Anything else relevant (background jobs, external services, etc.)"
}"""


def screen_payload(payload: Dict[str, Any]) -> None:
    """Raise PromptInjectionError if the serialized payload looks like an instruction override."""
    serialized = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)
    for pattern in INJECTION_PATTERNS:
        if pattern.search(serialized):
            logger.warning(f"Rejected payload matching injection pattern {pattern.pattern!r}")
            raise PromptInjectionError("Payload contains suspicious content")


def _team_section(routing: RoutingRegistry | None) -> str:
    if not routing:
        return ""
    return f"""
## Available Teams

{routing.format_for_prompt()}

To choose a team:
1. If you find a CODEOWNERS file, use the owner of the affected files
2. Otherwise, choose based on the technical context of the error (domain, module, service)
3. If still unsure, return null
"""


def build_prompt(
    payload: Dict[str, Any],
    routing: RoutingRegistry | None = None,
    max_actions: int = DEFAULT_MAX_ACTIONS,
) -> str:
    payload_json = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    return f"""# You are a Senior Software Engineer specialized in investigating production bugs

Your mission is to analyze this error and propose a fix. Be EFFICIENT: your actions are limited.

## HARD LIMIT: At most {max_actions} searches (grep/glob/read), then you MUST answer with JSON

## Error Context

```json
{payload_json}
```
{_team_section(routing)}
## Investigation Strategy (FAST)

1. Locate the job or service named in the error (grep for the class name)
2. Read the main files you found
3. Look for the specific validation or error if needed
4. STOP AND ANSWER: form a hypothesis from what you found

Do NOT keep searching indefinitely. {max_actions} searches give you enough information.

## Priority Criteria

- **critical**: System down, data loss, security compromised
- **high**: Core functionality broken, many users affected
- **medium**: Secondary flow affected, workaround available
- **low**: Cosmetic, rare edge case

## Required Answer

After your searches (at most {max_actions}), answer IMMEDIATELY with this JSON:

```json
{OUTPUT_SCHEMA}
```

## MANDATORY Rules

1. **At most {max_actions} searches**: after {max_actions} search or read operations you MUST stop and answer
2. **Be specific**: point to concrete files and lines
3. **Propose real fixes**: an implementable change, not "investigate further"
4. **OUTPUT FORMAT**:
   - Answer ONLY with the JSON block
   - Start with ```json and end with ```
   - NO text before or after the JSON"""
