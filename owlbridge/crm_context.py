"""Gather the CRM data embedded in the briefing prompt for a CTA record."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import date, datetime
from typing import Any, Optional, Union

from simple_salesforce import format_soql

from .store.connector import CrmConnector

logger = logging.getLogger(__name__)

MISSING_CTA = {"error": "No FSR record found or no account associated"}


def _name(record: dict[str, Any], relation: str) -> Optional[str]:
    related = record.get(relation)
    return related.get("Name") if isinstance(related, dict) else None


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


_DATETIME_FORMATS = ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S")


def _parse_timestamp(value: Any) -> Union[date, datetime, None]:
    """Parse a Salesforce date or datetime string. Unparseable values yield ``None``."""
    if not isinstance(value, str) or not value:
        return None
    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def format_short_date(value: Any) -> Optional[str]:
    """``2024-05-01`` -> ``5/1/2024``."""
    parsed = _parse_timestamp(value)
    if parsed is None:
        return None
    return f"{parsed.month}/{parsed.day}/{parsed.year}"


def format_meeting_date(value: Any) -> Optional[str]:
    """``2024-05-01T15:04:00.000+0000`` -> ``May 1, 2024, 3:04 PM``."""
    parsed = _parse_timestamp(value)
    if parsed is None:
        return None
    if not isinstance(parsed, datetime):
        parsed = datetime(parsed.year, parsed.month, parsed.day)
    hour = parsed.hour % 12 or 12
    return f"{parsed:%b} {parsed.day}, {parsed.year}, {hour}:{parsed:%M} {parsed:%p}"


# ----------------------------------------------------------------------
# Record shaping


def process_account_data(accounts: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "accountId": a.get("Id"),
            "accountName": a.get("Name"),
            "industry": a.get("Industry"),
            "annualRevenue": _str_or_none(a.get("AnnualRevenue")),
            "employeeCount": a.get("Employee_Count__c"),
            "accountLink": f"/{a.get('Id')}",
            "customerSince": _str_or_none(a.get("CreatedDate")),
            "healthScore": a.get("Twilio_Account_Tier_Final__c"),
        }
        for a in accounts or []
    ]


def process_contact_data(
    contacts: list[dict[str, Any]], primary_contact_id: Optional[str]
) -> list[dict[str, Any]]:
    """Shape contacts, flagging the primary one (first contact if none match)."""
    result = [
        {
            "contactId": c.get("Id"),
            "contactName": c.get("Name"),
            "title": c.get("Title"),
            "email": c.get("Email"),
            "phone": c.get("Phone"),
            "isPrimary": c.get("Id") == primary_contact_id,
            "contactLink": f"/{c.get('Id')}",
            "lastContact": _str_or_none(c.get("Last_FSR_Activity__c")),
        }
        for c in contacts or []
    ]
    if result and not any(c["isPrimary"] for c in result):
        result[0]["isPrimary"] = True
    return result


def process_cta_data(
    cta_records: list[dict[str, Any]], current_cta_id: str
) -> list[dict[str, Any]]:
    return [
        {
            "ctaName": cta.get("Name"),
            "recordId": cta.get("Id"),
            "isPrimary": cta.get("Id") == current_cta_id,
            "ctaInquiryAccountName": _name(cta, "inquiry_account__r"),
            "ownerName": _name(cta, "Owner"),
            "product": cta.get("product_category__c"),
            "scoreGrade": cta.get("Current_Interested_Product_Score_Grade__c"),
            "campaign": _name(cta, "campaign__r"),
            "expectedRevenue": _str_or_none(cta.get("Inquiry_Volume__c")),
            "status": cta.get("MQL_Status__c"),
        }
        for cta in cta_records or []
    ]


def process_activity_data(tasks: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "id": t.get("Id"),
            "activityType": t.get("Type"),
            "activityDate": t.get("ActivityDate"),
            "description": t.get("Description"),
            "outcome": t.get("CallDisposition"),
            "contactPerson": _name(t, "Who"),
            "ownerName": _name(t, "Owner"),
            "subject": t.get("Subject"),
        }
        for t in tasks or []
    ]


def process_opportunity_data(opportunities: list[dict[str, Any]]) -> list[dict[str, Any]]:
    result = []
    for opp in opportunities or []:
        stage = opp.get("StageName")
        status = stage
        if stage and "Won" in stage:
            status = "Won"
        elif stage and "Lost" in stage:
            status = "Lost"
        amount = opp.get("Amount")
        result.append(
            {
                "id": opp.get("Id"),
                "name": opp.get("Name"),
                "amount": amount,
                "stageName": stage,
                "closedDate": opp.get("CloseDate"),
                "ownerName": _name(opp, "Owner"),
                "status": status,
                "formattedAmount": f"${float(amount):,.0f}" if amount is not None else None,
                "formattedDate": format_short_date(opp.get("CloseDate")),
                "isRelatedToPrimaryContact": False,
            }
        )
    return result


def count_attendees(details: Any) -> str:
    """Count attendees in a comma-separated or JSON-array details string."""
    if not details or not isinstance(details, str):
        return "N/A"
    if "," in details:
        return str(len(details.split(",")))
    if "[" in details:
        try:
            attendees = json.loads(details)
        except ValueError:
            return "1"
        return str(len(attendees)) if isinstance(attendees, list) else "N/A"
    return "1"


def process_salesloft_data(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    result = []
    for r in records or []:
        summary = r.get("meetingsummary__c") or ""
        result.append(
            {
                "accountId": r.get("accountid__c"),
                "attendeesDetails": r.get("attendeesdetails__c"),
                "createdDate": r.get("createddate__c"),
                "dataSource": r.get("DataSource__c"),
                "dataSourceObject": r.get("DataSourceObject__c"),
                "internalOrganization": r.get("InternalOrganization__c"),
                "kqMeetingId": r.get("KQ_meetingid__c"),
                "meetingId": r.get("meetingid__c"),
                "meetingSummary": r.get("meetingsummary__c"),
                "meetingTranscript": r.get("meetingtranscript__c"),
                "formattedDate": format_meeting_date(r.get("createddate__c")),
                "attendeeCount": count_attendees(r.get("attendeesdetails__c")),
                "summaryPreview": summary[:150] + "..." if len(summary) > 150 else summary,
            }
        )
    return result


def split_conversations(
    conversations: list[dict[str, Any]], contact_name: Optional[str]
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Split into (mentioning the contact by name, the rest)."""
    if not contact_name:
        return [], list(conversations)
    needle = contact_name.lower()
    primary = [
        c for c in conversations
        if c.get("attendeesDetails") and needle in c["attendeesDetails"].lower()
    ]
    primary_ids = {c.get("meetingId") or c.get("kqMeetingId") for c in primary} - {None}
    rest = [
        c for c in conversations
        if c not in primary
        and c.get("meetingId") not in primary_ids
        and c.get("kqMeetingId") not in primary_ids
    ]
    return primary, rest


def _has_contact_role(opportunity: dict[str, Any]) -> bool:
    roles = opportunity.get("OpportunityContactRoles")
    if isinstance(roles, dict):
        roles = roles.get("records")
    return bool(roles)


# ----------------------------------------------------------------------
# Collection


class CrmContextCollector:
    """Run the CTA data queries and assemble the briefing structure."""

    def __init__(self, connector: CrmConnector) -> None:
        self._connector = connector

    async def _query(self, template: str, *args: Any) -> list[dict[str, Any]]:
        return await self._connector.query(format_soql(template, *args))

    async def _product_summary(self, account_id: str) -> list[dict[str, Any]]:
        """Opportunity line items for the account. Failures yield ``[]``."""
        try:
            return await self._query(
                "SELECT Id, Name, Product2Id, Product2.Name, Product2.Family, "
                "Product2.Description, OpportunityId, Opportunity.Name, Opportunity.StageName, "
                "Opportunity.CloseDate, Quantity, UnitPrice, TotalPrice, Description "
                "FROM OpportunityLineItem WHERE Opportunity.AccountId = {} "
                "ORDER BY Opportunity.CloseDate DESC, CreatedDate DESC",
                account_id,
            )
        except Exception as e:
            logger.error(f"Error fetching product summary for account {account_id}: {e}")
            return []

    async def _contact_role_opportunities(
        self, opportunity_ids: list[str], contact_id: str
    ) -> set[str]:
        """Ids of the opportunities where ``contact_id`` holds a contact role."""
        if not opportunity_ids or not contact_id:
            return set()
        try:
            rows = await self._query(
                "SELECT Id, (SELECT ContactId FROM OpportunityContactRoles WHERE ContactId = {}) "
                "FROM Opportunity WHERE Id IN {} LIMIT 50",
                contact_id,
                opportunity_ids,
            )
        except Exception as e:
            logger.error(f"Error fetching opportunity contact roles for {contact_id}: {e}")
            return set()
        return {row.get("Id") for row in rows if _has_contact_role(row)}

    async def collect(self, cta_id: str) -> dict[str, Any]:
        rows = await self._query(
            "SELECT Id, Name, Inquiry_Account__c, contact__c FROM FSR__c WHERE Id = {} LIMIT 1",
            cta_id,
        )
        cta = rows[0] if rows else None
        if not cta or not cta.get("Inquiry_Account__c"):
            return dict(MISSING_CTA)

        account_id = cta["Inquiry_Account__c"]
        primary_contact_id = cta.get("contact__c")

        (
            accounts,
            ctas,
            contacts,
            account_tasks,
            opportunities,
            conversations,
            product_summary,
        ) = await asyncio.gather(
            self._query(
                "SELECT Id, Name, Industry, AnnualRevenue, Employee_Count__c, CreatedDate, "
                "Twilio_Account_Tier_Final__c FROM Account WHERE Id = {} LIMIT 1",
                account_id,
            ),
            self._query(
                "SELECT Id, Name, OwnerId, Owner.Name, product_category__c, "
                "Current_Interested_Product_Score_Grade__c, campaign__r.Name, Inquiry_Volume__c, "
                "MQL_Status__c, inquiry_account__r.Name FROM FSR__c "
                "WHERE inquiry_account__c = {} AND MQL_Status__c != '1 - Open'",
                account_id,
            ),
            self._query(
                "SELECT Id, Name, Title, Email, Phone, Last_FSR_Activity__c FROM Contact "
                "WHERE AccountId = {}",
                account_id,
            ),
            self._query(
                "SELECT Id, Subject, ActivityDate, Description, CallDisposition, Owner.Name, Type, "
                "Who.Name, Status FROM Task WHERE WhatId = {} ORDER BY CreatedDate DESC LIMIT 50",
                account_id,
            ),
            self._query(
                "SELECT Id, Name, Amount, StageName, CloseDate, Owner.Name FROM Opportunity "
                "WHERE AccountId = {} AND CreatedDate = LAST_N_MONTHS:6 "
                "ORDER BY CreatedDate DESC LIMIT 50",
                account_id,
            ),
            self._query(
                "SELECT accountid__c, attendeesdetails__c, createddate__c, DataSource__c, "
                "DataSourceObject__c, InternalOrganization__c, KQ_meetingid__c, meetingid__c, "
                "meetingsummary__c, meetingtranscript__c FROM Salesloft_Conversations__dlm "
                "WHERE accountid__c = {} ORDER BY createddate__c DESC LIMIT 50",
                account_id,
            ),
            self._product_summary(account_id),
        )

        contact_tasks: list[dict[str, Any]] = []
        if primary_contact_id:
            try:
                contact_tasks = await self._query(
                    "SELECT Id, Subject, ActivityDate, Description, CallDisposition, Owner.Name, "
                    "Type, Who.Name, Status FROM Task WHERE WhoId = {} "
                    "ORDER BY CreatedDate DESC LIMIT 25",
                    primary_contact_id,
                )
            except Exception as e:
                logger.warning(f"Failed to fetch tasks for contact {primary_contact_id}: {e}")

        contact_list = process_contact_data(contacts, primary_contact_id)
        cta_list = process_cta_data(ctas, cta_id)
        account_list = process_account_data(accounts)
        opportunity_list = process_opportunity_data(opportunities)
        related_contact = next((c for c in contact_list if c["isPrimary"]), None)

        related_ids = await self._contact_role_opportunities(
            [o["id"] for o in opportunity_list], primary_contact_id
        )
        for opp in opportunity_list:
            opp["isRelatedToPrimaryContact"] = opp["id"] in related_ids

        contact_conversations, other_conversations = split_conversations(
            process_salesloft_data(conversations),
            related_contact["contactName"] if related_contact else None,
        )

        return {
            "primaryContext": {
                "primaryCTA": next((c for c in cta_list if c["isPrimary"]), None),
                "relatedContact": related_contact,
                "relatedOpportunities": [
                    o for o in opportunity_list if o["isRelatedToPrimaryContact"]
                ],
                "contactActivities": process_activity_data(contact_tasks),
                "contactConversations": contact_conversations,
            },
            "additionalCTAs": [c for c in cta_list if not c["isPrimary"]],
            "accountData": account_list[0] if account_list else None,
            "additionalContacts": [c for c in contact_list if not c["isPrimary"]],
            "accountLevelActivities": process_activity_data(account_tasks),
            "additionalOpportunities": [
                o for o in opportunity_list if not o["isRelatedToPrimaryContact"]
            ],
            "additionalConversations": other_conversations,
            "productSummaryWrapperResponse": product_summary,
        }
