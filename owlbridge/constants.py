"""Shared constants for owlbridge."""

INGRESS = "SALESFORCE"
APPLICATION_ID = "wiseowl-salesforce-application"

PROD_BASE_URL = "https://www.twilio.com/wise-owl/api/v2"
DEV_BASE_URL = "https://www.dev.twilio.com/wise-owl/api/v2"

DEFAULT_PAGE_CONTEXT = "the user is not on a record page to provide any context"
DONE_MARKER = "done"

DEFAULT_SFDC_INSTANCE_URL = "https://twlo--full.sandbox.my.salesforce.com"
DEFAULT_SFDC_OBJECT = "WO_Conversation__c"

DEFAULT_MAX_CONCURRENT_JOBS = 5
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_CONSECUTIVE_POLL_ERRORS = 5
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 0.5
