import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from lineu_core.config.settings import Settings
from lineu_worker import issues
from lineu_worker.agent.schemas import Analysis
from lineu_worker.issues import IssueServiceError, LinearIssueService, build_description, format_title
from lineu_worker.routing import Team

TEAMS = [
    {"id": "t-eng", "key": "ENG", "name": "Engineering"},
    {"id": "t-ops", "key": "OPS", "name": "Operations"},
    {"id": "t-mkt", "key": "MKT", "name": "Marketing"},
]

ISSUE = {"id": "issue-1", "identifier": "ENG-42", "url": "https://linear.app/acme/issue/ENG-42"}

ANALYSIS = Analysis.model_validate(
    {
        "category": "bug",
        "priority": "high",
        "summary": "Nil user in CheckoutJob",
        "exception": {"type": "NoMethodError", "message": "undefined method `name' for nil"},
        "root_cause": {"hypothesis": "User deleted before job ran", "confidence": "high", "evidence": "no guard"},
        "affected_files": ["app/jobs/checkout_job.rb:42"],
        "fix": {"suggestion": "Guard against missing user", "files_to_modify": ["app/jobs/checkout_job.rb"]},
        "investigation_log": ["Found CheckoutJob", "Read perform"],
        "suggested_team": "ENG",
    }
)


def _service(handler: Callable[[httpx.Request], httpx.Response]) -> LinearIssueService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LinearIssueService(api_key="lin_test", api_url="https://linear.test/graphql", client=client)


def _linear(requests: List[Dict[str, Any]], issue: Dict[str, Any] | None = ISSUE) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append({"headers": request.headers, "body": body})
        if "teams" in body["query"]:
            return httpx.Response(200, json={"data": {"teams": {"nodes": TEAMS}}})
        return httpx.Response(200, json={"data": {"issueCreate": {"success": issue is not None, "issue": issue}}})

    return handler


@pytest.mark.asyncio
async def test_load_routing_keeps_allowed_teams() -> None:
    requests: List[Dict[str, Any]] = []
    service = _service(_linear(requests))

    routing = await service.load_routing(allowed_keys=["ENG", "OPS", "GONE"], prefix="PROD", default_team="OPS")

    assert sorted(routing.teams) == ["ENG", "OPS"]
    assert routing.prefix == "PROD"
    assert service.routing is routing
    assert requests[0]["headers"]["authorization"] == "lin_test"
    await service.aclose()


@pytest.mark.asyncio
async def test_load_routing_without_allow_list_keeps_every_team() -> None:
    service = _service(_linear([]))

    routing = await service.load_routing()

    assert sorted(routing.teams) == ["ENG", "MKT", "OPS"]
    await service.aclose()


@pytest.mark.asyncio
async def test_resolve_destination_falls_back_to_default_team() -> None:
    service = _service(_linear([]))
    await service.load_routing(allowed_keys=["ENG", "OPS"], default_team="OPS")

    assert service.resolve_destination("ENG").key == "ENG"
    assert service.resolve_destination("MKT").key == "OPS"
    assert service.resolve_destination(None).key == "OPS"
    await service.aclose()


@pytest.mark.asyncio
async def test_resolve_destination_without_default_is_none() -> None:
    service = _service(_linear([]))
    await service.load_routing(allowed_keys=["ENG"])

    assert service.resolve_destination("OPS") is None
    await service.aclose()


@pytest.mark.asyncio
async def test_create_ticket_sends_title_priority_and_description() -> None:
    requests: List[Dict[str, Any]] = []
    service = _service(_linear(requests))
    await service.load_routing(prefix="PROD")

    ticket = await service.create_ticket(
        Team(id="t-eng", key="ENG", name="Engineering"), {"message": "boom"}, ANALYSIS, "abc123"
    )

    assert ticket.identifier == "ENG-42"
    assert ticket.url == ISSUE["url"]
    issue_input = requests[-1]["body"]["variables"]["input"]
    assert issue_input["teamId"] == "t-eng"
    assert issue_input["title"] == "PROD: [BUG] Nil user in CheckoutJob"
    assert issue_input["priority"] == 2
    assert "*Fingerprint: `abc123`*" in issue_input["description"]
    await service.aclose()


@pytest.mark.asyncio
async def test_create_ticket_without_issue_fails() -> None:
    service = _service(_linear([], issue=None))

    with pytest.raises(IssueServiceError, match="Linear API returned no issue"):
        await service.create_ticket(Team(id="t-eng", key="ENG", name="Engineering"), {}, ANALYSIS, "abc123")
    await service.aclose()


@pytest.mark.asyncio
async def test_graphql_errors_are_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"errors": [{"message": "Authentication required"}]})

    service = _service(handler)
    with pytest.raises(IssueServiceError, match="Authentication required"):
        await service.fetch_teams()
    await service.aclose()


@pytest.mark.asyncio
async def test_server_errors_are_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(issues, "RETRY_DELAY", 0)
    attempts: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) < 3:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json={"data": {"teams": {"nodes": TEAMS[:1]}}})

    service = _service(handler)
    teams = await service.fetch_teams()

    assert [team.key for team in teams] == ["ENG"]
    assert len(attempts) == 3
    await service.aclose()


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(issues, "RETRY_DELAY", 0)
    attempts: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(400, text="bad request")

    service = _service(handler)
    with pytest.raises(IssueServiceError, match="400"):
        await service.fetch_teams()
    assert len(attempts) == 1
    await service.aclose()


def test_format_title_without_summary_or_prefix() -> None:
    analysis = Analysis.model_validate({"category": "database"})
    assert format_title(analysis) == "[DATABASE] Unsummarized incident"


def test_description_renders_analysis_sections() -> None:
    description = build_description({"message": "boom"}, ANALYSIS, "abc123")

    assert "**NoMethodError**: undefined method `name' for nil" in description
    assert "**Hypothesis**: User deleted before job ran" in description
    assert "- `app/jobs/checkout_job.rb:42`" in description
    assert "**Files to modify**: `app/jobs/checkout_job.rb`" in description
    assert "1. Found CheckoutJob\n2. Read perform" in description
    assert '"message": "boom"' in description


def test_description_uses_flat_legacy_fields() -> None:
    analysis = Analysis.model_validate(
        {
            "category": "bug",
            "summary": "Old style",
            "root_cause_hypothesis": "Race in cache warmup",
            "suggested_fix": "Add a lock",
            "investigation_steps": ["Read cache.rb"],
            "suggested_team": "null",
        }
    )

    description = build_description({}, analysis, "fp")

    assert analysis.suggested_team is None
    assert "### Root Cause\n\nRace in cache warmup" in description
    assert "### Suggested Fix\n\nAdd a lock" in description
    assert "1. Read cache.rb" in description
    assert "- Not identified" in description


@pytest.mark.asyncio
async def test_create_ticket_is_not_resent_after_read_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(issues, "RETRY_DELAY", 0)
    attempts: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        raise httpx.ReadTimeout("timed out", request=request)

    service = _service(handler)
    with pytest.raises(IssueServiceError, match="timed out"):
        await service.create_ticket(Team(id="t-eng", key="ENG", name="Engineering"), {}, ANALYSIS, "abc123")
    assert len(attempts) == 1
    await service.aclose()


@pytest.mark.asyncio
async def test_create_ticket_is_not_resent_after_server_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(issues, "RETRY_DELAY", 0)
    attempts: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(502, text="bad gateway")

    service = _service(handler)
    with pytest.raises(IssueServiceError, match="502"):
        await service.create_ticket(Team(id="t-eng", key="ENG", name="Engineering"), {}, ANALYSIS, "abc123")
    assert len(attempts) == 1
    await service.aclose()


@pytest.mark.asyncio
async def test_create_ticket_retries_refused_connections(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(issues, "RETRY_DELAY", 0)
    requests: List[Dict[str, Any]] = []
    linear = _linear(requests)

    def handler(request: httpx.Request) -> httpx.Response:
        if not requests:
            requests.append({})
            raise httpx.ConnectError("connection refused", request=request)
        return linear(request)

    service = _service(handler)
    ticket = await service.create_ticket(Team(id="t-eng", key="ENG", name="Engineering"), {}, ANALYSIS, "abc123")

    assert ticket.identifier == "ENG-42"
    assert len(requests) == 2
    await service.aclose()


@pytest.mark.asyncio
async def test_teams_query_retries_read_timeouts(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(issues, "RETRY_DELAY", 0)
    attempts: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"data": {"teams": {"nodes": TEAMS[:1]}}})

    service = _service(handler)
    teams = await service.fetch_teams()

    assert [team.key for team in teams] == ["ENG"]
    assert len(attempts) == 2
    await service.aclose()


@pytest.mark.asyncio
async def test_configured_routing_uses_routing_file(settings: Settings) -> None:
    settings.data_path.mkdir(parents=True, exist_ok=True)
    settings.config_path.write_text("teams: [ENG, OPS]\nprefix: PROD\ndefault_team: OPS\n", encoding="utf-8")
    service = _service(_linear([]))

    routing = await service.load_configured_routing(settings)

    assert routing is service.routing
    assert sorted(routing.teams) == ["ENG", "OPS"]
    assert routing.prefix == "PROD"
    assert routing.default_team == "OPS"
    await service.aclose()


@pytest.mark.asyncio
async def test_configured_routing_tolerates_linear_errors_in_dry_run(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"errors": [{"message": "Authentication required"}]})

    service = _service(handler)
    assert await service.load_configured_routing(settings) is None
    assert not service.routing

    with pytest.raises(IssueServiceError, match="Authentication required"):
        await service.load_configured_routing(settings.model_copy(update={"dry_run": False}))
    await service.aclose()
