"""Per-job state machine: resolve conversation, submit, poll, patch."""

from __future__ import annotations

import json
import logging
from typing import Optional

from .assembler import build_prompt, extract_assistant_content
from .contracts import Job, JobResult, JobState
from .crm_context import CrmContextCollector
from .errors import OwlBridgeError, UpstreamError, ValidationError
from .store import RecordStoreAdapter
from .wiseowl import WiseOwlClient

logger = logging.getLogger(__name__)


class JobOrchestrator:
    """Drive one job through ``Created → ... → Completed | Failed``.

    Steps are strictly sequential. ``run_sync`` raises the first fatal error
    and is used by the synchronous endpoint; ``run`` is the background path,
    which also builds the prompt, patches the tracking record and never
    raises.
    """

    def __init__(
        self,
        job: Job,
        client: WiseOwlClient,
        store: Optional[RecordStoreAdapter] = None,
        collector: Optional[CrmContextCollector] = None,
    ) -> None:
        self.job = job
        self._client = client
        self._store = store
        self._collector = collector
        self.state = JobState.CREATED
        self.transitions: list[JobState] = [JobState.CREATED]
        self.conversation_id: Optional[str] = job.conversation_id
        self.run_id: Optional[str] = None

    def _transition(self, state: JobState) -> None:
        logger.info(
            f"Job {self.job.job_id} ({self.job.external_record_key}): "
            f"{self.state.value} -> {state.value}"
        )
        self.state = state
        self.transitions.append(state)

    def _result(self, content: Optional[str] = None, error: Optional[str] = None) -> JobResult:
        return JobResult(
            job_id=self.job.job_id,
            state=self.state,
            conversation_id=self.conversation_id,
            run_id=self.run_id,
            content=content,
            error=error,
        )

    # ------------------------------------------------------------------
    async def build_input(self) -> str:
        """Assemble the prompt, gathering CRM context for fresh briefings."""
        crm_data = "{}"
        needs_context = (
            not self.job.prompt_input
            and not self.job.is_existing
            and self.job.external_record_key
        )
        if needs_context and self._collector is not None:
            try:
                data = await self._collector.collect(self.job.external_record_key)
                crm_data = json.dumps(data, indent=2, default=str)
                logger.info(f"Collected CRM context for {self.job.external_record_key}")
            except Exception as e:
                logger.error(
                    f"Error collecting CRM context for {self.job.external_record_key}: {e}"
                )
        return build_prompt(self.job.prompt_input, self.job.conversation_id, crm_data)

    async def execute(self, input: str) -> JobResult:
        """Run the conversation lifecycle and return the extracted content."""
        try:
            if not self.conversation_id:
                self.conversation_id = await self._client.create_conversation()
            if not self.conversation_id:
                raise UpstreamError("Failed to obtain conversationId from WiseOwl API")
            self._transition(JobState.CONVERSATION_RESOLVED)

            self.run_id = await self._client.submit_input(
                self.conversation_id, input, self.job.page_context
            )
            self._transition(JobState.INPUT_SUBMITTED)

            self._transition(JobState.POLLING)
            payload = await self._client.wait_for_run(self.conversation_id, self.run_id)
        except Exception:
            self._transition(JobState.FAILED)
            raise

        content = extract_assistant_content(payload)
        self._transition(JobState.COMPLETED)
        return self._result(content=content)

    async def run_sync(self) -> JobResult:
        """Synchronous path: submit the caller's input as-is, no CRM patch."""
        if not self.job.prompt_input:
            raise ValidationError("Missing input")
        return await self.execute(self.job.prompt_input)

    async def run(self) -> JobResult:
        """Background path. Failures are logged and returned, never raised."""
        try:
            prompt = await self.build_input()
            result = await self.execute(prompt)
        except OwlBridgeError as e:
            logger.error(f"Background job {self.job.job_id} failed: {e.message}")
            if self.state is not JobState.FAILED:
                self._transition(JobState.FAILED)
            return self._result(error=e.message)
        except Exception as e:
            logger.exception(f"Background job {self.job.job_id} failed: {e}")
            if self.state is not JobState.FAILED:
                self._transition(JobState.FAILED)
            return self._result(error=str(e))

        if self._store is not None and self.job.record_id:
            try:
                await self._store.append_history(self.job.record_id, result.content or "")
            except Exception as e:
                logger.error(
                    f"Run completed but patching record {self.job.record_id} failed: {e}"
                )
        logger.info(f"Background processing completed for record {self.job.record_id}")
        return result
