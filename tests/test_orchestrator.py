"""Tests for the per-job orchestration state machine."""

import json

import pytest

from owlbridge.assembler import FOLLOW_UP_SUFFIX
from owlbridge.config import PollConfig, RetryConfig, SalesforceConfig
from owlbridge.contracts import Job, JobState
from owlbridge.errors import UpstreamError, ValidationError
from owlbridge.orchestrator import JobOrchestrator
from owlbridge.store import InMemoryConnector, RecordStoreAdapter
from owlbridge.wiseowl import WiseOwlClient

OBJ = "WO_Conversation__c"


def _client(fake, sleep):
    return WiseOwlClient(
        "token",
        retry=RetryConfig(base_delay=0.01),
        poll=PollConfig(interval=0.01),
        http_client=fake.client(),
        sleep=sleep,
    )


class StaticCollector:
    def __init__(self, data=None, error=None):
        self.data = data or {}
        self.error = error
        self.calls = []

    async def collect(self, cta_id):
        self.calls.append(cta_id)
        if self.error:
            raise self.error
        return self.data


@pytest.mark.asyncio
async def test_execute_creates_conversation_and_completes(fake_wiseowl, fake_sleep):
    orchestrator = JobOrchestrator(Job(auth_credential="token"), _client(fake_wiseowl, fake_sleep))

    result = await orchestrator.execute("hello")

    assert result.state is JobState.COMPLETED
    assert result.conversation_id == "conv-1"
    assert result.run_id == "run-1"
    assert result.content == "<p>answer</p>"
    assert orchestrator.transitions == [
        JobState.CREATED,
        JobState.CONVERSATION_RESOLVED,
        JobState.INPUT_SUBMITTED,
        JobState.POLLING,
        JobState.COMPLETED,
    ]


@pytest.mark.asyncio
async def test_execute_reuses_supplied_conversation(fake_wiseowl, fake_sleep):
    job = Job(auth_credential="token", conversation_id="existing")
    result = await JobOrchestrator(job, _client(fake_wiseowl, fake_sleep)).execute("hi")

    assert result.conversation_id == "existing"
    assert fake_wiseowl.calls("POST") == []
    assert fake_wiseowl.calls("PUT")[0].url.path.endswith("/conversations/existing")


@pytest.mark.asyncio
async def test_execute_fails_when_no_run_id(fake_wiseowl, fake_sleep):
    fake_wiseowl.submit_responses.append((200, {"status": "ok"}))
    orchestrator = JobOrchestrator(Job(auth_credential="token"), _client(fake_wiseowl, fake_sleep))

    with pytest.raises(UpstreamError):
        await orchestrator.execute("hi")
    assert orchestrator.state is JobState.FAILED
    assert fake_wiseowl.calls("GET") == []


@pytest.mark.asyncio
async def test_run_patches_tracking_record(fake_wiseowl, fake_sleep):
    connector = InMemoryConnector()
    store = RecordStoreAdapter(connector)
    record_id = connector.seed(OBJ, {"Conversation_History__c": "<ul><li>old</li></ul>"})
    job = Job(
        external_record_key="cta-1",
        auth_credential="token",
        conversation_id="conv-1",
        prompt_input="follow up",
        record_id=record_id,
        is_existing=True,
    )

    result = await JobOrchestrator(job, _client(fake_wiseowl, fake_sleep), store=store).run()

    assert result.succeeded
    record = await store.get_tracking_record(record_id)
    assert record.history == "<ul><li>old</li><li>&lt;p&gt;answer&lt;/p&gt;</li></ul>"
    assert record.done is True
    assert record.latest_response == "<p>answer</p>"
    body = json.loads(fake_wiseowl.calls("PUT")[0].content)
    assert body["input"] == f"follow up{FOLLOW_UP_SUFFIX}"


@pytest.mark.asyncio
async def test_run_builds_briefing_from_crm_context(fake_wiseowl, fake_sleep):
    collector = StaticCollector({"accountData": {"accountName": "Acme"}})
    job = Job(external_record_key="cta-1", auth_credential="token", conversation_id="conv-1")

    await JobOrchestrator(job, _client(fake_wiseowl, fake_sleep), collector=collector).run()

    assert collector.calls == ["cta-1"]
    body = json.loads(fake_wiseowl.calls("PUT")[0].content)
    assert '"accountName": "Acme"' in body["input"]


@pytest.mark.asyncio
async def test_run_skips_context_for_existing_conversation(fake_wiseowl, fake_sleep):
    collector = StaticCollector()
    job = Job(
        external_record_key="cta-1", auth_credential="token", conversation_id="c", is_existing=True
    )
    await JobOrchestrator(job, _client(fake_wiseowl, fake_sleep), collector=collector).run()
    assert collector.calls == []


@pytest.mark.asyncio
async def test_run_context_failure_degrades_to_empty(fake_wiseowl, fake_sleep):
    collector = StaticCollector(error=RuntimeError("INVALID_SESSION_ID"))
    job = Job(external_record_key="cta-1", auth_credential="token", conversation_id="conv-1")

    result = await JobOrchestrator(job, _client(fake_wiseowl, fake_sleep), collector=collector).run()

    assert result.succeeded
    body = json.loads(fake_wiseowl.calls("PUT")[0].content)
    assert "{}" in body["input"]


@pytest.mark.asyncio
async def test_run_failure_leaves_record_unfinished(fake_wiseowl, fake_sleep):
    connector = InMemoryConnector()
    store = RecordStoreAdapter(connector)
    record_id = connector.seed(OBJ, {"Chat_Done__c": False})
    fake_wiseowl.poll_responses.append((403, {"message": "forbidden"}))
    job = Job(
        external_record_key="cta-1",
        auth_credential="token",
        conversation_id="conv-1",
        prompt_input="hi",
        record_id=record_id,
    )

    result = await JobOrchestrator(job, _client(fake_wiseowl, fake_sleep), store=store).run()

    assert result.state is JobState.FAILED
    assert result.error
    record = await store.get_tracking_record(record_id)
    assert record.done is False
    assert record.history == ""


@pytest.mark.asyncio
async def test_run_patch_failure_keeps_completed_state(fake_wiseowl, fake_sleep):
    store = RecordStoreAdapter(InMemoryConnector(), SalesforceConfig())
    job = Job(
        external_record_key="cta-1",
        auth_credential="token",
        conversation_id="conv-1",
        prompt_input="hi",
        record_id="does-not-exist",
    )

    result = await JobOrchestrator(job, _client(fake_wiseowl, fake_sleep), store=store).run()

    assert result.state is JobState.COMPLETED
    assert result.content == "<p>answer</p>"


@pytest.mark.asyncio
async def test_run_sync_submits_input_verbatim(fake_wiseowl, fake_sleep):
    job = Job(auth_credential="token", conversation_id="conv-1", prompt_input="hello")

    result = await JobOrchestrator(job, _client(fake_wiseowl, fake_sleep)).run_sync()

    assert result.content == "<p>answer</p>"
    body = json.loads(fake_wiseowl.calls("PUT")[0].content)
    assert body["input"] == "hello"


@pytest.mark.asyncio
async def test_run_sync_requires_input(fake_wiseowl, fake_sleep):
    orchestrator = JobOrchestrator(Job(auth_credential="token"), _client(fake_wiseowl, fake_sleep))
    with pytest.raises(ValidationError):
        await orchestrator.run_sync()
    assert fake_wiseowl.requests == []
