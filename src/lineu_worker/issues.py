"""Linear issue creation over the GraphQL API."""

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List

import httpx

from lineu_core.config.routing import load_routing_file
from lineu_core.config.settings import Settings
from lineu_server.schemas.jobs import TicketRef
from lineu_worker.agent.schemas import Analysis
from lineu_worker.routing import RoutingRegistry, Team

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
RETRY_DELAY = 1.0

PRIORITY_MAP = {
    "critical": 1,
    "high": 2,
    "medium": 3,
    "low": 4,
}

TEAMS_QUERY = """
query Teams($first: Int!) {
  teams(first: $first) {
    nodes { id key name }
  }
}
"""

ISSUE_CREATE_MUTATION = """
mutation IssueCreate($input: IssueCreateInput!) {
  issueCreate(input: $input) {
    success
    issue { id identifier url }
  }
}
"""


class IssueServiceError(Exception):
    """The issue tracker rejected a request or returned an unusable response."""


class RoutingError(Exception):
    """No team could be resolved for an analysis."""


def format_title(analysis: Analysis, prefix: str | None = None) -> str:
    summary = analysis.summary or "Unsummarized incident"
    title = f"[{analysis.category.upper()}] {summary}"
    return f"{prefix}: {title}" if prefix else title


def _code_list(items: Iterable[str]) -> str:
    return ", ".join(f"`{item}`" for item in items)


def build_description(payload: Dict[str, Any], analysis: Analysis, fingerprint: str) -> str:
    """Markdown body of the issue."""
    sections: List[str] = []

    if analysis.exception and (analysis.exception.type or analysis.exception.message):
        sections.append(f"## Exception\n\n**{analysis.exception.type}**: {analysis.exception.message}")

    sections.append("## Analysis")

    if analysis.stack_trace_summary:
        sections.append(f"### Stack Trace (Summary)\n```\n{analysis.stack_trace_summary}\n```")

    if analysis.root_cause:
        root_cause = (
            f"**Hypothesis**: {analysis.root_cause.hypothesis}\n\n"
            f"**Confidence**: {analysis.root_cause.confidence}\n\n"
            f"**Evidence**: {analysis.root_cause.evidence}"
        )
    else:
        root_cause = analysis.root_cause_hypothesis or "Not identified"
    sections.append(f"### Root Cause\n\n{root_cause}")

    if analysis.impact:
        sections.append(
            f"### Impact\n\n**Description**: {analysis.impact.description}\n\n**Scope**: {analysis.impact.scope}"
        )

    files = "\n".join(f"- `{path}`" for path in analysis.affected_files) or "- Not identified"
    sections.append(f"### Affected Files\n\n{files}")

    if analysis.related_code_snippets:
        snippets = []
        for snippet in analysis.related_code_snippets:
            snippets.append(f"**{snippet.file}** (lines {snippet.lines})\n*{snippet.relevance}*\n```\n{snippet.code}\n```")
        sections.append("### Related Code\n\n" + "\n\n".join(snippets))
    elif analysis.related_code:
        sections.append(f"### Related Code\n```\n{analysis.related_code}\n```")

    if analysis.fix:
        fix = f"### Proposed Fix\n\n{analysis.fix.suggestion}"
        if analysis.fix.code_example:
            fix += f"\n\n**Code example**:\n```\n{analysis.fix.code_example}\n```"
        if analysis.fix.files_to_modify:
            fix += f"\n\n**Files to modify**: {_code_list(analysis.fix.files_to_modify)}"
        sections.append(fix)
    elif analysis.suggested_fix:
        sections.append(f"### Suggested Fix\n\n{analysis.suggested_fix}")

    if analysis.prevention:
        prevention = f"### Prevention\n\n**Suggested test**: {analysis.prevention.test_suggestion}"
        if analysis.prevention.monitoring_suggestion:
            prevention += f"\n\n**Monitoring**: {analysis.prevention.monitoring_suggestion}"
        sections.append(prevention)

    steps = "\n".join(f"{i}. {step}" for i, step in enumerate(analysis.steps, start=1))
    sections.append(f"### Investigation Log\n\n{steps}")

    if analysis.additional_context:
        sections.append(f"### Additional Context\n\n{analysis.additional_context}")

    payload_json = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    sections.append(f"---\n\n## Original Payload\n\n```json\n{payload_json}\n```")
    sections.append(
        "---\n\n### Next Steps\n\n"
        "- [ ] Investigate the root cause\n"
        "- [ ] Implement the fix\n"
        "- [ ] Add a regression test\n"
        "- [ ] Validate in production"
    )
    sections.append(f"---\n*Fingerprint: `{fingerprint}`*\n*Analyzed by lineu*")

    return "\n\n".join(sections)


class LinearIssueService:
    """Creates issues in Linear and resolves which team they belong to."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.linear.app/graphql",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": api_key, "Content-Type": "application/json"}
        self.routing = RoutingRegistry()

    @classmethod
    def from_settings(cls, settings: Settings) -> "LinearIssueService":
        return cls(api_key=settings.linear_api_key, api_url=settings.linear_api_url)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request_with_retry(self, body: Dict[str, Any], idempotent: bool = True) -> httpx.Response:
        """POST ``body``, retrying failures.

        Non-idempotent requests are retried only when no connection was established.
        """
        for attempt in range(MAX_RETRIES):
            last_attempt = attempt == MAX_RETRIES - 1
            try:
                response = await self._client.post(self.api_url, json=body, headers=self._headers)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                if e.response.status_code >= 500 and idempotent and not last_attempt:
                    logger.warning(f"Linear request failed with {e.response.status_code}, retrying in {RETRY_DELAY}s...")
                    await asyncio.sleep(RETRY_DELAY)
                    continue
                raise IssueServiceError(f"Linear API returned {e.response.status_code}: {e.response.text}") from e
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                if last_attempt:
                    raise IssueServiceError(f"Linear API unreachable: {e}") from e
                logger.warning(f"Linear connection error: {e}, retrying in {RETRY_DELAY}s...")
                await asyncio.sleep(RETRY_DELAY)
            except httpx.TimeoutException as e:
                if not idempotent or last_attempt:
                    raise IssueServiceError(f"Linear API timed out: {e}") from e
                logger.warning(f"Linear request timed out, retrying in {RETRY_DELAY}s...")
                await asyncio.sleep(RETRY_DELAY)
        raise IssueServiceError("Linear request retries exhausted")

    async def _graphql(self, query: str, variables: Dict[str, Any], idempotent: bool = True) -> Dict[str, Any]:
        response = await self._request_with_retry({"query": query, "variables": variables}, idempotent=idempotent)
        body = response.json()
        if body.get("errors"):
            messages = "; ".join(str(error.get("message", error)) for error in body["errors"])
            raise IssueServiceError(f"Linear API error: {messages}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise IssueServiceError("Linear API returned no data")
        return data

    async def fetch_teams(self) -> List[Team]:
        data = await self._graphql(TEAMS_QUERY, {"first": 100})
        nodes = (data.get("teams") or {}).get("nodes") or []
        return [Team(id=node["id"], key=node["key"], name=node["name"]) for node in nodes]

    async def load_routing(
        self,
        allowed_keys: Iterable[str] | None = None,
        prefix: str | None = None,
        default_team: str | None = None,
    ) -> RoutingRegistry:
        """Fetch teams, keep those on the allow-list and install the resulting registry."""
        teams = await self.fetch_teams()
        if allowed_keys is not None:
            allowed = set(allowed_keys)
            teams = [team for team in teams if team.key in allowed]
            missing = allowed - {team.key for team in teams}
            if missing:
                logger.warning(f"Teams not found in Linear: {', '.join(sorted(missing))}")

        if default_team and default_team not in {team.key for team in teams}:
            logger.warning(f"Default team {default_team} is not among the loaded teams")

        self.routing = RoutingRegistry.from_teams(teams, default_team=default_team, prefix=prefix)
        logger.info(f"Loaded {len(teams)} Linear teams")
        return self.routing

    async def load_configured_routing(self, settings: Settings) -> RoutingRegistry | None:
        """Load routing as described by the routing file in ``settings``.

        In dry-run mode a Linear failure is logged and ``None`` returned instead.
        """
        routing_file = load_routing_file(settings.config_path, explicit=settings.config_file is not None)
        try:
            return await self.load_routing(
                allowed_keys=routing_file.teams if routing_file else None,
                prefix=routing_file.prefix if routing_file else None,
                default_team=routing_file.default_team if routing_file else None,
            )
        except IssueServiceError as e:
            if not settings.dry_run:
                raise
            logger.warning(f"Failed to load Linear teams, continuing in dry-run mode: {e}")
            return None

    def resolve_destination(self, key: str | None) -> Team | None:
        team = self.routing.get(key)
        if team is not None:
            return team
        if key:
            logger.warning(f"Team {key!r} not found")
        fallback = self.routing.get(self.routing.default_team)
        if fallback is not None:
            logger.info(f"Routing to default team {fallback.key}")
        return fallback

    async def create_ticket(
        self,
        team: Team,
        payload: Dict[str, Any],
        analysis: Analysis,
        fingerprint: str,
    ) -> TicketRef:
        issue_input: Dict[str, Any] = {
            "teamId": team.id,
            "title": format_title(analysis, self.routing.prefix),
            "description": build_description(payload, analysis, fingerprint),
        }
        priority = PRIORITY_MAP.get(analysis.priority.lower())
        if priority is not None:
            issue_input["priority"] = priority

        data = await self._graphql(ISSUE_CREATE_MUTATION, {"input": issue_input}, idempotent=False)
        result = data.get("issueCreate") or {}
        issue = result.get("issue")
        if not result.get("success") or not issue:
            raise IssueServiceError("Linear API returned no issue")

        return TicketRef(id=issue["id"], identifier=issue["identifier"], url=issue.get("url"))
