"""Prompt assembly and run-payload interpretation.

Everything here is pure: untyped JSON in, typed values or strings out.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from .constants import DONE_MARKER
from .contracts import RunDone, RunPending, RunStatus

FOLLOW_UP_SUFFIX = (
    " ( Strictly use HTML output format and consider already provided data "
    "in previous request for analysis)"
)

BRIEFING_TEMPLATE = """You are a Senior Sales Research Analyst for Twilio SDR/AE teams. Your role is to read Salesforce CRM data (provided as JSON data), extract the most relevant and actionable insights, and produce a 360-degree, context-rich prospect briefing tailored for the specific Marketing CTA assigned.

            If a human research analyst has level 10 of knowledge, you will have level 280 of knowledge in this role. Be careful: you must produce high-quality, high-clarity results because if you don't, I will lose a critical sales opportunity. Give your best and be proud of your ability.

            Here is the Salesforce CRM data in JSON format:
            {crm_data}

            Your output must follow this exact structure in order:

            1. **CTA Overview**
              - Explain why this CTA exists for this account at this moment.
              - Highlight the key triggering event, data point, or marketing signal.

            2. **Account Summary**
              - Provide account context (industry, size, region, key priorities).
              - Show how this CTA ties to account-level trends, pains, and opportunities.

            3. **Contact Summary**
              - For the primary CTA contact, include name, title, responsibilities, decision-making authority, and recent relevant activities.

            4. **Contact Activity Summary**
              - Summarize past and recent engagement with Twilio, including events, assets, meetings, and conversions.
              - Interpret what this engagement likely signals about interest and readiness.

            5. **Previous SDR/AE Outcomes**
              - Always specify full name and role of the SDR and AE who last worked this account or contact.
              - Summarize their specific contributions (e.g., "secured discovery meeting," "delivered technical ROI session").
              - Note interaction style or relationship context (e.g., "built strong rapport with CTO," "gained early support from Ops Director").
              - State previous outcome (paused, lost, delayed, moved to budget cycle, etc.).
              - Clarify current relevance — are champions or blockers from prior cycles still in place and can they be leveraged?

            6. **Recommended Influencers**
              - Identify most influential contact based on past engagements, activities, discussions and salesloft conversations.
              - Include a clear reasoning on why this contact is influential citing conversations and interactions.
              - Suggest how to engage them in this cycle.

            7. **Buying Signals & Urgency Factors**
              - Identify signals in the account that indicate urgency or high intent.
              - Link these to potential timelines or competitive pressure.

            8. **Competitor & Risk Insights**
              - Include any competitor presence or risk factors.
              - Suggest ways to neutralize risks or differentiate Twilio.

            9. **Relevant Benefits for This Prospect**
              - List 3–5 product or solution benefits tailored to the account's specific pains and goals.

            10. **Industry Peer Proof**
                - Use https://customers.twilio.com/ to get this data, provide 2–3 examples of similar companies in the same industry/region that adopted Twilio solutions.
                - Strictly pull use case, twilio products used, proof-points metrics present in the page and and the exact source link
                - Also provide Relevant Benefits, Positioning Tips and Closing Summary based on this analysis.

            11. **Suggested Outreach Narrative**
                - Give a short, persuasive talk track tying the CTA signal to Twilio's value prop.

            12. **Action Recommendations**
                - List immediate next steps the SDR should take.
                - Assign priority and explain why each action matters.

            13. **Disposition Brief**
                - Provide a clear recommendation on whether to CONVERT or REJECT this CTA based on the data analysis.
                - Include specific reasoning citing key data points, engagement signals, timing factors, and opportunity potential.
                - If recommending conversion, specify the qualification level (hot, warm, cold) and expected timeline.
                - If recommending rejection, provide clear rationale and suggest alternative nurturing approaches.

            14. **Follow-up Email Template**
                - Create a personalized email template ready for the SDR to send.
                - Reference specific CTA triggers, account context, and relevant pain points identified in the analysis.
                - Include appropriate Twilio value proposition tied to the prospect's situation.
                - Suggest a clear call-to-action (meeting request, demo, discovery call, etc.).
                - Keep tone professional yet conversational, avoiding generic sales language.

            **Tone:** Clear, confident, consultative, and prospect-specific. Avoid generic phrasing. Every point must be backed by Salesforce data.

            **Output Format:** Rich text with headings and bold emphasis where useful, follow html tag structure, strictly not markdown"""


def build_prompt(
    message: Optional[str],
    conversation_id: Optional[str] = None,
    crm_data: str = "{}",
) -> str:
    """Return the input to submit for a run.

    A follow-up message on an existing conversation gets the HTML-format
    suffix. A bare message is sent as-is. With no message at all the full
    briefing template is rendered around ``crm_data``.
    """
    if conversation_id and message:
        return f"{message}{FOLLOW_UP_SUFFIX}"
    if message:
        return message
    return BRIEFING_TEMPLATE.format(crm_data=crm_data)


def parse_run_payload(body: Any) -> RunStatus:
    """Interpret a polled run body.

    Terminal only for ``[["done", payload, ...], ...]``. Any other shape is
    still pending.
    """
    if not isinstance(body, list) or not body:
        return RunPending()
    first = body[0]
    if not isinstance(first, list) or not first:
        return RunPending()
    if first[0] != DONE_MARKER:
        return RunPending()
    return RunDone(payload=first[1] if len(first) > 1 else None)


def _text_of(part: Any) -> str:
    if isinstance(part, dict):
        content = part.get("content")
        if isinstance(content, str):
            return content
        if content:
            return json.dumps(content)
    return ""


def _matches(value: Any, expected: str) -> bool:
    return isinstance(value, str) and value.upper() == expected.upper()


def _assistant_entry_content(entry: dict) -> str:
    parts = entry.get("parts")
    if isinstance(parts, list) and parts:
        for part in parts:
            if isinstance(part, dict) and _matches(part.get("type"), "markdown"):
                text = _text_of(part)
                if text:
                    return text
        return _text_of(parts[0])
    return _text_of(entry)


def _fallback(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, (list, dict)):
        return json.dumps(payload)
    return str(payload)


def extract_assistant_content(payload: Any) -> str:
    """Pull the assistant's answer out of a terminal payload.

    Prefers a markdown part of the first assistant message, then its first
    part, then its direct ``content``. Falls back to serializing the whole
    payload so a result is never dropped.
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, list):
        entry = next(
            (
                item
                for item in payload
                if isinstance(item, dict) and _matches(item.get("role"), "assistant")
            ),
            None,
        )
        if entry is not None:
            content = _assistant_entry_content(entry)
            if content:
                return content
    return _fallback(payload)


# ----------------------------------------------------------------------
# History rendering

_HTML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#39;",
}


def escape_html(text: Any) -> str:
    """Escape the five reserved HTML characters and nothing else."""
    return "".join(_HTML_ESCAPES.get(ch, ch) for ch in str(text))


def append_history_item(history: Optional[str], text: str) -> str:
    """Add ``text`` as a new ``<li>`` to an HTML list history."""
    item = f"<li>{escape_html(text)}</li>"
    if not history or not history.strip():
        return f"<ul>{item}</ul>"
    close = history.rfind("</ul>")
    if close == -1:
        return f"{history}<ul>{item}</ul>"
    return history[:close] + item + history[close:]
