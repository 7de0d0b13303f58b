"""Process-wide wiring of clients, stores and the scheduler."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

import httpx

from .config import OwlBridgeConfig, load_config
from .contracts import Job
from .crm_context import CrmContextCollector
from .orchestrator import JobOrchestrator
from .scheduler import Scheduler
from .store import CrmConnector, RecordLocks, RecordStoreAdapter, get_connector
from .utils.retry import Sleep
from .wiseowl import WiseOwlClient, get_http_client

ConnectorFactory = Callable[[str], CrmConnector]


class BridgeService:
    """Builds per-job collaborators from shared process state.

    One instance per process, held on the FastAPI app. It owns the scheduler,
    the HTTP connection pool and the per-record append locks.
    """

    def __init__(
        self,
        config: Optional[OwlBridgeConfig] = None,
        connector_factory: Optional[ConnectorFactory] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        scheduler: Optional[Scheduler] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config or load_config()
        self._connector_factory = connector_factory or (
            lambda token: get_connector(token, self.config)
        )
        self._http_client = http_client
        self.scheduler = scheduler or Scheduler(self.config.scheduler.max_concurrent_jobs)
        self._sleep = sleep
        self._locks = RecordLocks()

    def connector_for(self, crm_token: str) -> CrmConnector:
        return self._connector_factory(crm_token)

    def store_for(self, connector: CrmConnector) -> RecordStoreAdapter:
        return RecordStoreAdapter(connector, self.config.salesforce, locks=self._locks)

    def client_for(self, access_token: str, is_prod: bool = True) -> WiseOwlClient:
        return WiseOwlClient(
            access_token,
            is_prod=is_prod,
            config=self.config.wiseowl,
            retry=self.config.retry,
            poll=self.config.poll,
            http_client=self._http_client or get_http_client(self.config.wiseowl.timeout),
            sleep=self._sleep,
        )

    def orchestrator_for(self, job: Job) -> JobOrchestrator:
        client = self.client_for(job.auth_credential, job.is_prod)
        if not job.crm_token:
            return JobOrchestrator(job, client)
        connector = self.connector_for(job.crm_token)
        return JobOrchestrator(
            job,
            client,
            store=self.store_for(connector),
            collector=CrmContextCollector(connector),
        )

    def enqueue(self, job: Job) -> None:
        """Hand ``job`` to the scheduler for background processing."""
        orchestrator = self.orchestrator_for(job)
        self.scheduler.submit(orchestrator.run, name=f"job-{job.job_id}")
