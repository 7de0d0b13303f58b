"""Reconcile an inbound job request with CRM state before acknowledging it."""

from __future__ import annotations

import logging

from .constants import DEFAULT_PAGE_CONTEXT
from .contracts import Job, JobRequest
from .errors import StoreError, ValidationError
from .service import BridgeService

logger = logging.getLogger(__name__)


class JobIntake:
    """Resolve or create the tracking record and conversation for a request.

    Calling ``accept`` twice for the same parent record reuses the existing
    tracking record and its stored conversation id.
    """

    def __init__(self, service: BridgeService) -> None:
        self._service = service

    async def accept(self, request: JobRequest) -> Job:
        """Validate, reconcile and enqueue. Returns the queued job."""
        parent_key = request.parent_key
        if not request.sfdc_token or not parent_key:
            raise ValidationError(
                "Missing required parameter: sfdcToken and parentRecordId required"
            )
        if not request.access_token:
            raise ValidationError(
                "Missing access_token: required to initialize or continue the conversation"
            )

        try:
            connector = self._service.connector_for(request.sfdc_token)
        except Exception as e:
            logger.error(f"Failed to create Salesforce connection: {e}")
            raise StoreError("Failed to connect to Salesforce", details=str(e)) from e
        store = self._service.store_for(connector)

        existing = await store.find_tracking_record(parent_key)
        record_id = existing.record_id if existing else None
        conversation_id = (
            (existing.conversation_id if existing else None) or request.conversation_id
        )
        if existing and existing.conversation_id:
            logger.info(f"Using existing conversation: {existing.conversation_id}")

        if not conversation_id:
            logger.info("Creating new conversation...")
            client = self._service.client_for(request.access_token, request.is_prod)
            conversation_id = await client.create_conversation()
            if record_id:
                await store.set_conversation_id(record_id, conversation_id)
        elif record_id and not (existing and existing.conversation_id):
            await store.set_conversation_id(record_id, conversation_id)

        if not record_id:
            record_id = await store.create_tracking_record(parent_key, conversation_id)

        await store.mark_processing(record_id)

        job = Job(
            external_record_key=parent_key,
            auth_credential=request.access_token,
            conversation_id=conversation_id,
            prompt_input=request.prompt_message,
            page_context=request.context or DEFAULT_PAGE_CONTEXT,
            is_prod=request.is_prod,
            record_id=record_id,
            is_existing=existing is not None and bool(existing.conversation_id),
            crm_token=request.sfdc_token,
        )
        self._service.enqueue(job)
        logger.info(f"Accepted job {job.job_id} for record {record_id}")
        return job
