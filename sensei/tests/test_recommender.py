"""Tests for the recommendation engine."""

import asyncio
from datetime import datetime

import pytest

from sensei.analysis import EventType, SessionKey
from sensei.analysis.models import DIAGNOSTIC_PREFIX, MAX_RECOMMENDATIONS
from sensei.analysis.recommender import parse_reply
from sensei.llm import AnalysisResponse, MissingCredentialError, RateLimitedError, RecommendationReply
from sensei.tests.conftest import MOCK_MODEL, enable, reply, settle


def collect(monitor, *event_types):
    seen = []
    for event_type in event_types:
        monitor.subscribe(event_type, seen.append)
    return seen


class TestParseReply:

    def test_structured_payload_wins(self):
        structured = RecommendationReply(recommendation="Run tests", confidence=0.9)
        assert parse_reply(AnalysisResponse(text="ignored", structured=structured)) is structured

    def test_json_text(self):
        parsed = parse_reply(AnalysisResponse(
            text='{"recommendation": "Run tests", "command": "npm test", "confidence": 0.9}'))
        assert (parsed.recommendation, parsed.command, parsed.confidence) == ("Run tests", "npm test", 0.9)

    def test_fenced_json(self):
        text = 'Here you go:\n```json\n{"recommendation": "Fix the import", "confidence": 0.7}\n```'
        parsed = parse_reply(AnalysisResponse(text=text))
        assert parsed.recommendation == "Fix the import"
        assert parsed.confidence == 0.7

    def test_raw_text_falls_back_with_default_confidence(self):
        parsed = parse_reply(AnalysisResponse(text="  Just restart the server.  "))
        assert parsed.recommendation == "Just restart the server."
        assert parsed.command is None
        assert parsed.confidence == 0.5

    @pytest.mark.parametrize("raw,expected", [
        (None, 0.5),
        ("high", 0.5),
        (1.7, 1.0),
        (-0.2, 0.0),
        ("0.65", 0.65),
        (True, 0.5),
    ])
    def test_confidence_normalization(self, raw, expected):
        data = '{"recommendation": "x", "confidence": %s}' % ("null" if raw is None else
                                                               "true" if raw is True else
                                                               f'"{raw}"' if isinstance(raw, str) else raw)
        assert parse_reply(AnalysisResponse(text=data)).confidence == expected

    def test_missing_confidence(self):
        assert parse_reply(AnalysisResponse(text='{"recommendation": "x"}')).confidence == 0.5

    def test_json_without_recommendation_is_raw_text(self):
        text = '{"answer": "nope"}'
        assert parse_reply(AnalysisResponse(text=text)).recommendation == text


@pytest.mark.asyncio
async def test_analyze_builds_request_from_session_config(monitor, key, mock_provider):
    enable(monitor, key, temperature=0.3, max_tokens=800, system_prompt="Be brief. Reply with valid JSON.")
    await monitor.engine.analyze(key, "npm ERR! missing script: test")

    request = mock_provider.requests[0]
    assert request.model == MOCK_MODEL
    assert request.temperature == 0.3
    assert request.max_tokens == 800
    assert request.system_prompt == "Be brief. Reply with valid JSON."
    assert request.text == "npm ERR! missing script: test"
    assert request.timeout_ms == 120_000
    assert request.max_retries == 3


@pytest.mark.asyncio
async def test_successful_analysis_records_recommendation_and_usage(monitor, key, mock_provider):
    enable(monitor, key, auto_approve=False)
    mock_provider.set_responses([reply("Add a test script", 0.9, "npm pkg set scripts.test=jest")])

    rec = await monitor.engine.analyze(key, "npm ERR! missing script: test")

    session = monitor.registry.get(key)
    assert session.recommendations == [rec]
    assert rec.source == "sensei"
    assert rec.id.startswith("sensei-rec-")
    assert rec.input == "npm ERR! missing script: test"
    assert rec.command == "npm pkg set scripts.test=jest"
    assert not rec.executed
    assert session.token_usage.to_dict() == {
        'prompt_tokens': 100, 'completion_tokens': 50, 'total_tokens': 150, 'request_count': 1,
    }


@pytest.mark.asyncio
async def test_lifecycle_events_wrap_the_call(monitor, key, mock_provider):
    enable(monitor, key, auto_approve=False)
    seen = collect(monitor, EventType.ANALYZING_STARTED, EventType.RECOMMENDATION_AVAILABLE,
                   EventType.PENDING_COUNT_CHANGED, EventType.ANALYZING_ENDED)
    await monitor.engine.analyze(key, "output")

    assert [e.type for e in seen] == [
        EventType.ANALYZING_STARTED,
        EventType.RECOMMENDATION_AVAILABLE,
        EventType.PENDING_COUNT_CHANGED,
        EventType.ANALYZING_ENDED,
    ]
    assert seen[2].data == {"count": 1}


@pytest.mark.asyncio
async def test_missing_credential_becomes_diagnostic(monitor, key, mock_provider):
    enable(monitor, key, confidence_threshold=0.0)
    mock_provider.set_responses([MissingCredentialError("no key")])
    seen = collect(monitor, EventType.ANALYZING_STARTED, EventType.ANALYZING_ENDED, EventType.APPROVED)

    rec = await monitor.engine.analyze(key, "output")

    assert rec.recommendation.startswith(DIAGNOSTIC_PREFIX)
    assert "API key" in rec.recommendation
    assert rec.confidence == 0.0
    assert rec.is_diagnostic
    assert not rec.executed
    assert mock_provider.call_count == 1
    assert [e.type for e in seen] == [EventType.ANALYZING_STARTED, EventType.ANALYZING_ENDED]


@pytest.mark.asyncio
async def test_rate_limit_is_retried_then_reported(monitor, key, mock_provider):
    enable(monitor, key)
    mock_provider.set_responses([RateLimitedError("429")] * 3)

    rec = await monitor.engine.analyze(key, "output")

    assert mock_provider.call_count == 3
    assert rec.recommendation.startswith(f"{DIAGNOSTIC_PREFIX}Rate limit reached")


@pytest.mark.asyncio
async def test_transient_failure_recovers_within_budget(monitor, key, mock_provider):
    enable(monitor, key, auto_approve=False)
    mock_provider.set_responses([RuntimeError("connection reset"), reply("Retry worked", 0.7)])

    rec = await monitor.engine.analyze(key, "output")

    assert mock_provider.call_count == 2
    assert rec.recommendation == "Retry worked"


@pytest.mark.asyncio
async def test_generic_failure_message_is_kept(monitor, key, mock_provider):
    enable(monitor, key)
    mock_provider.set_responses([RuntimeError("boom")] * 3)

    rec = await monitor.engine.analyze(key, "output")

    assert rec.recommendation.startswith(DIAGNOSTIC_PREFIX)
    assert "boom" in rec.recommendation
    assert rec.input == "output"
    assert monitor.registry.get(key).token_usage is None


class BlockingClient:
    """Client whose single call waits until released."""

    timeout_ms = 120_000
    max_retries = 3

    def __init__(self):
        self.release = asyncio.Event()

    async def analyze(self, request):
        await self.release.wait()
        return AnalysisResponse(text='{"recommendation": "late", "confidence": 0.9}')


@pytest.mark.asyncio
async def test_result_is_discarded_when_session_cleaned_up_mid_call(store, key):
    from sensei.analysis import TerminalMonitor

    client = BlockingClient()
    monitor = TerminalMonitor({}, store=store, client=client)
    enable(monitor, key)
    seen = collect(monitor, EventType.ANALYZING_ENDED, EventType.RECOMMENDATION_AVAILABLE)

    task = asyncio.ensure_future(monitor.engine.analyze(key, "output"))
    await settle()
    monitor.cleanup(key)
    client.release.set()

    assert await task is None
    assert [e.type for e in seen] == [EventType.ANALYZING_ENDED]
    assert monitor.registry.get(key) is None


@pytest.mark.asyncio
async def test_analyze_agent_response_wraps_prompt(monitor, key, mock_provider):
    enable(monitor, key, auto_approve=False, system_prompt="BASE PROMPT")
    rec = await monitor.engine.analyze_agent_response(key, "I refactored the auth module.", "claude-code")

    request = mock_provider.requests[0]
    assert request.system_prompt.startswith("BASE PROMPT")
    assert "The AI agent (claude-code) just responded with:\nI refactored the auth module." in request.system_prompt
    assert request.text == "I refactored the auth module."
    assert rec.source == "sensei"


@pytest.mark.asyncio
async def test_analyze_agent_response_needs_enabled_session(monitor, key, mock_provider):
    monitor.initialize(key)
    assert await monitor.engine.analyze_agent_response(key, "anything") is None
    assert mock_provider.call_count == 0


class TestDirectRecommendations:

    def test_direct_recommendation_creates_enabled_session(self, monitor, key):
        rec = monitor.engine.add_direct_recommendation(key, "why is CI red?", "Pin the node version.", "helper")
        assert rec.source == "helper"
        assert rec.id.startswith("helper-rec-")
        assert rec.confidence == 0.0
        assert monitor.registry.is_enabled(key)

    def test_same_id_replaces_pending_entry_in_place(self, monitor, key):
        first = monitor.engine.add_direct_recommendation(key, "q", "draft", recommendation_id="r-1")
        monitor.engine.add_direct_recommendation(key, "q", "other", recommendation_id="r-2")
        monitor.engine.add_direct_recommendation(key, "q", "final", confidence=0.4, recommendation_id="r-1")

        recs = monitor.recommendations(key)
        assert [r.id for r in recs] == ["r-1", "r-2"]
        assert recs[0].recommendation == "final"
        assert recs[0].confidence == 0.4
        assert first.recommendation == "draft"

    def test_executed_entry_is_not_replaced(self, monitor, key):
        monitor.engine.add_direct_recommendation(key, "q", "done", recommendation_id="r-1")
        monitor.approve(key, "r-1")
        kept = monitor.engine.add_direct_recommendation(key, "q", "rewrite", recommendation_id="r-1")
        assert kept.recommendation == "done"
        assert kept.executed

    def test_streaming_updates_one_entry(self, monitor, key):
        seen = collect(monitor, EventType.RECOMMENDATION_AVAILABLE)
        rec_id = monitor.engine.start_streaming_recommendation(key, "explain", "helper")
        assert monitor.recommendations(key)[0].recommendation == "..."

        monitor.engine.update_streaming_recommendation(key, rec_id, "explain", "Partial answer", "helper")
        monitor.engine.update_streaming_recommendation(key, rec_id, "explain", "Partial answer, finished.", "helper")

        recs = monitor.recommendations(key)
        assert len(recs) == 1
        assert recs[0].id == rec_id
        assert recs[0].recommendation == "Partial answer, finished."
        assert len(seen) == 3
        assert seen[-1].data["recommendation"]["recommendation"] == "Partial answer, finished."

    def test_recommendations_are_capped(self, monitor, key):
        for i in range(MAX_RECOMMENDATIONS + 5):
            monitor.engine.add_direct_recommendation(key, "q", f"rec {i}", recommendation_id=f"r-{i}")
        recs = monitor.recommendations(key)
        assert len(recs) == MAX_RECOMMENDATIONS
        assert recs[0].id == "r-5"


class TestProjectContext:

    def test_empty_without_recommendations(self, monitor):
        assert monitor.engine.project_context() == ""

    def test_lists_most_recent_first_across_sessions(self, monitor, key):
        other = SessionKey("srv-2", "sess-9")
        oldest = monitor.engine.add_direct_recommendation(key, "q", "oldest")
        middle = monitor.engine.add_direct_recommendation(other, "q", "middle")
        newest = monitor.engine.add_direct_recommendation(key, "q", "newest")
        for minute, rec in enumerate([oldest, middle, newest]):
            rec.timestamp = datetime(2026, 1, 5, 10, minute)
        newest.command = "make test"

        context = monitor.engine.project_context(limit=2)
        assert context.startswith("## Recent Project Activity and Recommendations\n")
        assert "1. **" in context and ": newest" in context
        assert "   - Suggested command: `make test`" in context
        assert ": middle" in context
        assert "oldest" not in context
