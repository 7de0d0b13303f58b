"""Tests for CRM context collection and record shaping."""

import pytest

from owlbridge.crm_context import (
    MISSING_CTA,
    CrmContextCollector,
    count_attendees,
    format_meeting_date,
    process_contact_data,
    process_opportunity_data,
    process_salesloft_data,
)


class QueryConnector:
    """Answer queries by matching a fragment of the SOQL text."""

    def __init__(self, routes):
        self.routes = routes
        self.queries = []

    async def query(self, soql):
        self.queries.append(soql)
        for fragment, records in self.routes:
            if fragment in soql:
                if isinstance(records, Exception):
                    raise records
                return records
        return []


def test_contact_primary_falls_back_to_first():
    contacts = [{"Id": "c1", "Name": "Ann"}, {"Id": "c2", "Name": "Bo"}]
    shaped = process_contact_data(contacts, "unknown")
    assert [c["isPrimary"] for c in shaped] == [True, False]
    assert process_contact_data(contacts, "c2")[1]["isPrimary"] is True
    assert process_contact_data([], "c1") == []


def test_opportunity_status_and_amount():
    shaped = process_opportunity_data(
        [
            {"Id": "o1", "StageName": "Closed Won", "Amount": 12500},
            {"Id": "o2", "StageName": "Closed Lost", "Amount": None},
            {"Id": "o3", "StageName": "Discovery", "Owner": {"Name": "Sam"}},
        ]
    )
    assert [o["status"] for o in shaped] == ["Won", "Lost", "Discovery"]
    assert shaped[0]["formattedAmount"] == "$12,500"
    assert shaped[1]["formattedAmount"] is None
    assert shaped[2]["ownerName"] == "Sam"


def test_opportunity_formatted_close_date():
    shaped = process_opportunity_data(
        [{"Id": "o1", "CloseDate": "2024-05-01"}, {"Id": "o2", "CloseDate": None}]
    )
    assert shaped[0]["formattedDate"] == "5/1/2024"
    assert shaped[1]["formattedDate"] is None


def test_salesloft_shaping():
    long_summary = "x" * 200
    shaped = process_salesloft_data(
        [
            {
                "meetingid__c": "m1",
                "attendeesdetails__c": "Ann Lee, Kim Park, Sam Roe",
                "createddate__c": "2024-05-01T15:04:00.000+0000",
                "meetingsummary__c": long_summary,
            },
            {"meetingid__c": "m2", "meetingsummary__c": "short"},
        ]
    )
    assert shaped[0]["attendeeCount"] == "3"
    assert shaped[0]["formattedDate"] == "May 1, 2024, 3:04 PM"
    assert shaped[0]["summaryPreview"] == "x" * 150 + "..."
    assert shaped[1]["attendeeCount"] == "N/A"
    assert shaped[1]["summaryPreview"] == "short"
    assert shaped[1]["formattedDate"] is None


def test_count_attendees_formats():
    assert count_attendees('["Ann"]') == "1"
    assert count_attendees("[not json") == "1"
    assert count_attendees("Ann Lee") == "1"
    assert count_attendees("") == "N/A"
    assert format_meeting_date("2024-05-01T00:30:00.000+0000") == "May 1, 2024, 12:30 AM"


@pytest.mark.asyncio
async def test_collect_missing_cta_returns_error_marker():
    collector = CrmContextCollector(QueryConnector([]))
    assert await collector.collect("a0X1") == MISSING_CTA


@pytest.mark.asyncio
async def test_collect_assembles_briefing_structure():
    connector = QueryConnector(
        [
            ("FROM FSR__c WHERE Id", [{"Id": "cta-1", "Inquiry_Account__c": "acc-1", "contact__c": "c2"}]),
            ("FROM Account", [{"Id": "acc-1", "Name": "Acme", "Industry": "Retail", "AnnualRevenue": 10}]),
            (
                "FROM FSR__c WHERE inquiry_account__c",
                [
                    {"Id": "cta-1", "Name": "CTA one", "Owner": {"Name": "Kim"}},
                    {"Id": "cta-2", "Name": "CTA two"},
                ],
            ),
            ("FROM Contact", [{"Id": "c1", "Name": "Ann"}, {"Id": "c2", "Name": "Bo"}]),
            ("WHERE WhatId", [{"Id": "t1", "Subject": "Call", "Who": {"Name": "Bo"}}]),
            ("WHERE WhoId", [{"Id": "t2", "Subject": "Email"}]),
            ("FROM Opportunity", [{"Id": "o1", "StageName": "Closed Won", "Amount": 5}]),
        ]
    )
    data = await CrmContextCollector(connector).collect("cta-1")

    assert data["accountData"]["accountName"] == "Acme"
    assert data["accountData"]["annualRevenue"] == "10"
    assert data["primaryContext"]["primaryCTA"]["ownerName"] == "Kim"
    assert data["primaryContext"]["relatedContact"]["contactId"] == "c2"
    assert data["primaryContext"]["contactActivities"][0]["subject"] == "Email"
    assert [c["recordId"] for c in data["additionalCTAs"]] == ["cta-2"]
    assert [c["contactId"] for c in data["additionalContacts"]] == ["c1"]
    assert data["accountLevelActivities"][0]["contactPerson"] == "Bo"
    assert data["additionalOpportunities"][0]["status"] == "Won"
    assert "'cta-1'" in connector.queries[0]


@pytest.mark.asyncio
async def test_collect_propagates_query_failures():
    connector = QueryConnector(
        [
            ("FROM FSR__c WHERE Id", [{"Id": "cta-1", "Inquiry_Account__c": "acc-1"}]),
            ("FROM Account", RuntimeError("INVALID_SESSION_ID")),
        ]
    )
    with pytest.raises(RuntimeError):
        await CrmContextCollector(connector).collect("cta-1")


def _account_routes(*extra):
    return [
        *extra,
        ("FROM FSR__c WHERE Id", [{"Id": "cta-1", "Inquiry_Account__c": "acc-1", "contact__c": "c1"}]),
        ("FROM Account", [{"Id": "acc-1", "Name": "Acme"}]),
        ("FROM Contact", [{"Id": "c1", "Name": "Ann Lee"}, {"Id": "c2", "Name": "Bo"}]),
        (
            "FROM Opportunity WHERE AccountId",
            [
                {"Id": "o1", "StageName": "Discovery", "CloseDate": "2024-06-30"},
                {"Id": "o2", "StageName": "Closed Won"},
            ],
        ),
    ]


@pytest.mark.asyncio
async def test_collect_splits_opportunities_by_contact_role():
    connector = QueryConnector(
        _account_routes(
            (
                "FROM OpportunityContactRoles",
                [
                    {"Id": "o1", "OpportunityContactRoles": {"totalSize": 1, "records": [{"ContactId": "c1"}]}},
                    {"Id": "o2", "OpportunityContactRoles": None},
                ],
            ),
        )
    )

    data = await CrmContextCollector(connector).collect("cta-1")

    related = data["primaryContext"]["relatedOpportunities"]
    assert [o["id"] for o in related] == ["o1"]
    assert related[0]["isRelatedToPrimaryContact"] is True
    assert related[0]["formattedDate"] == "6/30/2024"
    assert [o["id"] for o in data["additionalOpportunities"]] == ["o2"]
    assert data["additionalOpportunities"][0]["isRelatedToPrimaryContact"] is False
    roles_query = next(q for q in connector.queries if "OpportunityContactRoles" in q)
    assert "ContactId = 'c1'" in roles_query
    assert "IN ('o1','o2')" in roles_query.replace(", ", ",")


@pytest.mark.asyncio
async def test_collect_contact_role_failure_keeps_all_opportunities_additional():
    connector = QueryConnector(
        _account_routes(("FROM OpportunityContactRoles", RuntimeError("MALFORMED_QUERY")))
    )

    data = await CrmContextCollector(connector).collect("cta-1")

    assert data["primaryContext"]["relatedOpportunities"] == []
    assert [o["id"] for o in data["additionalOpportunities"]] == ["o1", "o2"]


@pytest.mark.asyncio
async def test_collect_product_summary_and_its_failure():
    line_items = [{"Id": "li1", "Product2": {"Name": "Voice"}, "TotalPrice": 100}]
    connector = QueryConnector(_account_routes(("FROM OpportunityLineItem", line_items)))
    data = await CrmContextCollector(connector).collect("cta-1")
    assert data["productSummaryWrapperResponse"] == line_items
    assert any("Opportunity.AccountId = 'acc-1'" in q for q in connector.queries)

    failing = QueryConnector(
        _account_routes(("FROM OpportunityLineItem", RuntimeError("INVALID_FIELD")))
    )
    data = await CrmContextCollector(failing).collect("cta-1")
    assert data["productSummaryWrapperResponse"] == []


@pytest.mark.asyncio
async def test_collect_moves_conversations_naming_primary_contact():
    connector = QueryConnector(
        _account_routes(
            (
                "FROM Salesloft_Conversations__dlm",
                [
                    {"meetingid__c": "m1", "attendeesdetails__c": "ann lee, Kim Park"},
                    {"meetingid__c": "m2", "attendeesdetails__c": "Kim Park"},
                    {"KQ_meetingid__c": "k3", "attendeesdetails__c": "ANN LEE"},
                ],
            ),
        )
    )

    data = await CrmContextCollector(connector).collect("cta-1")

    primary = data["primaryContext"]["contactConversations"]
    assert [c["meetingId"] or c["kqMeetingId"] for c in primary] == ["m1", "k3"]
    assert [c["meetingId"] for c in data["additionalConversations"]] == ["m2"]
    salesloft_query = next(q for q in connector.queries if "Salesloft" in q)
    assert "accountid__c = 'acc-1'" in salesloft_query


@pytest.mark.asyncio
async def test_collect_salesloft_failure_propagates():
    connector = QueryConnector(
        _account_routes(("FROM Salesloft_Conversations__dlm", RuntimeError("INVALID_TYPE")))
    )
    with pytest.raises(RuntimeError):
        await CrmContextCollector(connector).collect("cta-1")
