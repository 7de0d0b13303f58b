from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel

from .constants import (
    APPLICATION_ID,
    DEFAULT_MAX_CONCURRENT_JOBS,
    DEFAULT_MAX_CONSECUTIVE_POLL_ERRORS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_SFDC_INSTANCE_URL,
    DEFAULT_SFDC_OBJECT,
    DEV_BASE_URL,
    PROD_BASE_URL,
)


class RetryConfig(BaseModel):
    """Single-call retry settings shared by both external systems."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_RETRY_BASE_DELAY


class PollConfig(BaseModel):
    """Settings for the run polling loop."""

    interval: float = DEFAULT_POLL_INTERVAL
    max_consecutive_errors: int = DEFAULT_MAX_CONSECUTIVE_POLL_ERRORS


class WiseOwlConfig(BaseModel):
    """Conversation backend endpoints."""

    prod_base_url: str = PROD_BASE_URL
    dev_base_url: str = DEV_BASE_URL
    application_id: str = APPLICATION_ID
    timeout: float = 30.0

    def base_url(self, is_prod: bool = True) -> str:
        return self.prod_base_url if is_prod else self.dev_base_url


class SalesforceFields(BaseModel):
    """Field API names on the tracking object."""

    conversation_id: str = "Conversation_Id__c"
    parent_record_id: str = "Parent_Record_Id__c"
    history: str = "Conversation_History__c"
    done: str = "Chat_Done__c"
    latest_response: str = "current_conversation__c"


class SalesforceConfig(BaseModel):
    """CRM connection and tracking object settings."""

    instance_url: str = DEFAULT_SFDC_INSTANCE_URL
    object_name: str = DEFAULT_SFDC_OBJECT
    api_version: str = "59.0"
    fields: SalesforceFields = SalesforceFields()
    serialize_appends: bool = False


class SchedulerConfig(BaseModel):
    """Admission control for background orchestrations."""

    max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000


class OwlBridgeConfig(BaseModel):
    """Top-level configuration model."""

    wiseowl: WiseOwlConfig = WiseOwlConfig()
    retry: RetryConfig = RetryConfig()
    poll: PollConfig = PollConfig()
    salesforce: SalesforceConfig = SalesforceConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    server: ServerConfig = ServerConfig()


def load_config(path: Optional[str] = None) -> OwlBridgeConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to OWLBRIDGE_CONFIG env
            variable or 'config.yaml' in the current directory.

    Environment variables ``SFDC_INSTANCE_URL``, ``SFDC_OBJECT_API_NAME``,
    ``OWLBRIDGE_MAX_CONCURRENT_JOBS`` and ``PORT`` override file values.
    """

    config_path = path or os.getenv("OWLBRIDGE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = OwlBridgeConfig(**data)
    else:
        config = OwlBridgeConfig()

    instance_url = os.getenv("SFDC_INSTANCE_URL")
    if instance_url:
        config.salesforce.instance_url = instance_url
    object_name = os.getenv("SFDC_OBJECT_API_NAME")
    if object_name:
        config.salesforce.object_name = object_name
    max_jobs = os.getenv("OWLBRIDGE_MAX_CONCURRENT_JOBS")
    if max_jobs:
        config.scheduler.max_concurrent_jobs = int(max_jobs)
    port = os.getenv("PORT")
    if port:
        config.server.port = int(port)
    return config
