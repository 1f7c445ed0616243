"""
Trigger Nodes

Triggers start a workflow. When the poller or webhook ingress has already
fetched the new items it passes them as input_data["items"]; otherwise
(manual test runs) the trigger fetches the latest items itself.
"""

import base64
import binascii
import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Mapping

from autoflow.core.nodes.builtin._helpers import TRUE_FALSE_OPTIONS, auth_headers, first, options
from autoflow.core.nodes.registry import register_node
from autoflow.exceptions import ProviderError
from autoflow.schemas.workflow import NodeCategory, NodeKind, PortType
from autoflow.utils.timezone import parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"
FORMS_API = "https://forms.googleapis.com/v1/forms"
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
DRIVE_API = "https://www.googleapis.com/drive/v3/files"
SLACK_HISTORY_URL = "https://slack.com/api/conversations.history"
DISCORD_API = "https://discord.com/api/v10"
GITHUB_API = "https://api.github.com"

DEFAULT_LOOKBACK = timedelta(hours=1)

EMAIL_OUTPUTS = [
    {"name": "emails", "type": PortType.ARRAY, "description": "New emails"},
    {"name": "email", "type": PortType.OBJECT, "description": "Most recent email"},
    {"name": "count", "type": PortType.NUMBER},
]


def polled_items(input_data: Any) -> List[Any]:
    """Items pre-fetched by the poller, if any."""
    if isinstance(input_data, Mapping) and isinstance(input_data.get("items"), list):
        return input_data["items"]
    return []


def batch(items: List[Any], plural: str, singular: str) -> Dict[str, Any]:
    return {plural: items, singular: first(items), "count": len(items)}


# --- Gmail message normalization ------------------------------------------------


def gmail_header(message: Mapping[str, Any], name: str) -> str:
    headers = (message.get("payload") or {}).get("headers") or []
    for header in headers:
        if str(header.get("name", "")).lower() == name.lower():
            return header.get("value", "")
    return ""


def _decode_part(data: str) -> str:
    try:
        return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4)).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def _find_part(parts: List[Mapping[str, Any]], mime_type: str) -> Any:
    for part in parts:
        if part.get("mimeType") == mime_type and (part.get("body") or {}).get("data"):
            return part
        nested = _find_part(part.get("parts") or [], mime_type)
        if nested is not None:
            return nested
    return None


def gmail_body(message: Mapping[str, Any]) -> str:
    """Plain-text body, falling back to HTML and then the snippet."""
    payload = message.get("payload")
    if not payload:
        return message.get("snippet", "")
    if (payload.get("body") or {}).get("data"):
        return _decode_part(payload["body"]["data"])
    parts = payload.get("parts") or []
    part = _find_part(parts, "text/plain") or _find_part(parts, "text/html")
    if part is not None:
        return _decode_part(part["body"]["data"])
    return message.get("snippet", "")


def extract_email(address: str) -> str:
    match = re.search(r"<([^>]+)>", address)
    return match.group(1).strip() if match else address.strip()


def extract_name(address: str) -> str:
    match = re.match(r'^"?([^"<]+?)"?\s*<', address)
    return match.group(1).strip() if match else ""


def normalize_gmail_message(message: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Flatten a Gmail API message into a template-friendly object.

    Already-normalized messages (no payload headers) pass through with any
    missing fields filled in.
    """
    if not (message.get("payload") or {}).get("headers"):
        sender = message.get("from", "")
        return {
            "id": message.get("id"),
            "threadId": message.get("threadId"),
            "from": sender,
            "fromEmail": message.get("fromEmail") or extract_email(sender),
            "fromName": message.get("fromName") or extract_name(sender),
            "to": message.get("to", ""),
            "subject": message.get("subject", ""),
            "date": message.get("date", ""),
            "snippet": message.get("snippet", ""),
            "body": message.get("body") or message.get("snippet", ""),
            "labelIds": message.get("labelIds", []),
        }

    sender = gmail_header(message, "From")
    return {
        "id": message.get("id"),
        "threadId": message.get("threadId"),
        "from": sender,
        "fromEmail": extract_email(sender),
        "fromName": extract_name(sender),
        "to": gmail_header(message, "To"),
        "subject": gmail_header(message, "Subject"),
        "date": gmail_header(message, "Date"),
        "snippet": message.get("snippet", ""),
        "body": gmail_body(message),
        "labelIds": message.get("labelIds", []),
    }


# --- Triggers ------------------------------------------------------------------


@register_node(
    node_type="new-form-submission",
    name="New Form Submission",
    kind=NodeKind.TRIGGER,
    category=NodeCategory.TRIGGERS,
    description="Triggers when a new submission is received in a Google Form.",
    icon="FileText",
    outputs=[
        {"name": "submissions", "type": PortType.ARRAY},
        {"name": "submission", "type": PortType.OBJECT, "description": "Most recent submission"},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={"formId": {"type": "string", "label": "Form", "description": "Select a Google Form", "required": True}},
    services=("google-forms",),
)
async def new_form_submission(input_data, config, context):
    items = polled_items(input_data)
    if items:
        return batch(items, "submissions", "submission")

    credential = await context.credentials.get("google-forms")
    response = await context.http.get(
        f"{FORMS_API}/{config['formId']}/responses",
        params={"pageSize": 10},
        headers=auth_headers(credential),
        provider="google",
    )
    return batch(response.get("responses") or [], "submissions", "submission")


@register_node(
    node_type="new-email-received",
    name="New Email Received",
    kind=NodeKind.TRIGGER,
    category=NodeCategory.TRIGGERS,
    description="Triggers when a new email arrives in Gmail.",
    icon="Mail",
    outputs=EMAIL_OUTPUTS,
    config_schema={
        "categoryId": {
            "type": "select",
            "label": "Category",
            "description": "Inbox category to watch",
            "default": "CATEGORY_PERSONAL",
            "options": options("all", "CATEGORY_PERSONAL", "CATEGORY_PROMOTIONS", "CATEGORY_SOCIAL",
                               "CATEGORY_UPDATES", "CATEGORY_FORUMS"),
        },
        "lastCheck": {"type": "string", "label": "Last Check", "description": "Unix seconds (auto-managed)"},
    },
    services=("google-gmail",),
)
async def new_email_received(input_data, config, context):
    items = polled_items(input_data)
    if items:
        return batch([normalize_gmail_message(item) for item in items], "emails", "email")

    category = config.get("categoryId") or "all"
    label_query = "in:inbox" if category == "all" else f"in:inbox category:{category.replace('CATEGORY_', '').lower()}"
    since = config.get("lastCheck") or int((utc_now() - DEFAULT_LOOKBACK).timestamp())

    credential = await context.credentials.get("google-gmail")
    headers = auth_headers(credential)
    listing = await context.http.get(
        f"{GMAIL_API}/messages", params={"q": f"{label_query} after:{since}", "maxResults": 20},
        headers=headers, provider="google",
    )
    emails = []
    for stub in listing.get("messages") or []:
        message = await context.http.get(f"{GMAIL_API}/messages/{stub['id']}", headers=headers, provider="google")
        emails.append(normalize_gmail_message(message))
    return batch(emails, "emails", "email")


@register_node(
    node_type="new-row-in-google-sheet",
    name="New Row in Google Sheet",
    kind=NodeKind.TRIGGER,
    category=NodeCategory.TRIGGERS,
    description="Triggers when new rows are added to a Google Sheet.",
    icon="Sheet",
    outputs=[
        {"name": "rows", "type": PortType.ARRAY},
        {"name": "row", "type": PortType.ARRAY},
        {"name": "count", "type": PortType.NUMBER},
        {"name": "lastRow", "type": PortType.NUMBER, "description": "Row count after this check"},
    ],
    config_schema={
        "spreadsheetId": {"type": "string", "label": "Spreadsheet ID", "description": "Found in the spreadsheet URL",
                          "required": True},
        "sheetName": {"type": "string", "label": "Sheet Name", "description": 'e.g. "Sheet1"', "required": True},
        "lastRow": {"type": "integer", "label": "Last Row", "description": "Last checked row number (auto-managed)"},
    },
    services=("google-sheets",),
)
async def new_row_in_google_sheet(input_data, config, context):
    credential = await context.credentials.get("google-sheets")
    response = await context.http.get(
        f"{SHEETS_API}/{config['spreadsheetId']}/values/{config['sheetName']}",
        headers=auth_headers(credential),
        provider="google",
    )
    rows = response.get("values") or []
    last_row = config.get("lastRow")
    new_rows = rows[int(last_row):] if last_row not in (None, "") else rows[-1:]
    return {**batch(new_rows, "rows", "row"), "lastRow": len(rows)}


@register_node(
    node_type="new-message-in-slack",
    name="New Message in Slack",
    kind=NodeKind.TRIGGER,
    category=NodeCategory.TRIGGERS,
    description="Triggers when a new message is posted in a Slack channel.",
    icon="MessageSquare",
    outputs=[
        {"name": "messages", "type": PortType.ARRAY},
        {"name": "message", "type": PortType.OBJECT},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={
        "channel": {"type": "string", "label": "Channel", "description": "Select a Slack channel", "required": True},
        "lastTs": {"type": "string", "label": "Last TS", "description": "Last message timestamp (auto-managed)"},
    },
    services=("slack",),
)
async def new_message_in_slack(input_data, config, context):
    items = polled_items(input_data)
    if items:
        return batch(items, "messages", "message")

    credential = await context.credentials.get("slack")
    response = await context.http.get(
        SLACK_HISTORY_URL,
        params={"channel": config["channel"], "oldest": config.get("lastTs") or "0"},
        headers=auth_headers(credential),
        provider="slack",
    )
    if not isinstance(response, dict) or response.get("ok") is False:
        error = response.get("error") if isinstance(response, dict) else None
        raise ProviderError(error or "Failed to fetch Slack messages", upstream_status=200, body=response,
                            provider="slack")
    return batch(response.get("messages") or [], "messages", "message")


@register_node(
    node_type="new-discord-message",
    name="New Discord Message",
    kind=NodeKind.TRIGGER,
    category=NodeCategory.TRIGGERS,
    description="Triggers when a new message is posted in a Discord channel.",
    icon="MessageCircle",
    outputs=[
        {"name": "messages", "type": PortType.ARRAY},
        {"name": "message", "type": PortType.OBJECT},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={
        "guildId": {"type": "string", "label": "Server", "description": "Select a Discord server", "required": True},
        "channelId": {"type": "string", "label": "Channel", "description": "Select a channel to monitor", "required": True},
        "after": {"type": "string", "label": "After Message", "description": "Last seen message ID (auto-managed)"},
    },
    services=("discord",),
)
async def new_discord_message(input_data, config, context):
    items = polled_items(input_data)
    if items:
        return batch(items, "messages", "message")

    params: Dict[str, Any] = {"limit": 20}
    if config.get("after"):
        params["after"] = config["after"]

    credential = await context.credentials.get("discord")
    messages = await context.http.get(
        f"{DISCORD_API}/channels/{config['channelId']}/messages",
        params=params,
        headers=auth_headers(credential),
        provider="discord",
    )
    return batch(messages if isinstance(messages, list) else [], "messages", "message")


@register_node(
    node_type="scheduled-time-trigger",
    name="Time Schedule",
    kind=NodeKind.TRIGGER,
    category=NodeCategory.TRIGGERS,
    description="Runs the workflow on a schedule. The scheduler fires it; this node reports the tick.",
    icon="Clock",
    outputs=[
        {"name": "triggerTime", "type": PortType.TEXT},
        {"name": "schedule", "type": PortType.TEXT},
    ],
    config_schema={
        "schedule": {"type": "string", "label": "Schedule", "description": "Cron expression or frequency",
                     "required": True},
        "timezone": {"type": "string", "label": "Timezone", "description": 'e.g. "America/New_York"', "default": "UTC"},
    },
)
async def scheduled_time_trigger(input_data, config, context):
    return {"triggerTime": to_iso(utc_now()), "schedule": config["schedule"], "timezone": config["timezone"]}


@register_node(
    node_type="webhook-trigger",
    name="Webhook Trigger",
    kind=NodeKind.TRIGGER,
    category=NodeCategory.TRIGGERS,
    description="Starts the workflow when a request hits the webhook path; the payload passes through.",
    icon="Webhook",
    outputs=[{"name": "payload", "type": PortType.UNIVERSAL, "description": "The received webhook body"}],
    config_schema={
        "path": {"type": "string", "label": "Webhook Path", "description": 'Unique path, e.g. "new-signup"',
                 "required": True},
    },
)
async def webhook_trigger(input_data, config, context):
    # Fields stay directly addressable as {{inputData.field}}
    return input_data


@register_node(
    node_type="new-github-issue",
    name="New GitHub Issue",
    kind=NodeKind.TRIGGER,
    category=NodeCategory.TRIGGERS,
    description="Triggers when issues are opened or updated in a repository.",
    icon="Github",
    outputs=[
        {"name": "issues", "type": PortType.ARRAY},
        {"name": "issue", "type": PortType.OBJECT},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={
        "owner": {"type": "string", "label": "Owner", "description": "Repository owner", "required": True},
        "repo": {"type": "string", "label": "Repository", "description": "Select a GitHub repository", "required": True},
        "lastCheck": {"type": "string", "label": "Last Check", "description": "ISO timestamp (auto-managed)"},
    },
    services=("github",),
)
async def new_github_issue(input_data, config, context):
    since = config.get("lastCheck") or to_iso(utc_now() - DEFAULT_LOOKBACK)

    credential = await context.credentials.get("github")
    response = await context.http.get(
        f"{GITHUB_API}/repos/{config['owner']}/{config['repo']}/issues",
        params={"since": since, "state": "open"},
        headers=auth_headers(credential, {"Accept": "application/vnd.github.v3+json"}),
        provider="github",
    )
    # The issues endpoint also lists pull requests
    issues = [issue for issue in response if "pull_request" not in issue] if isinstance(response, list) else []
    return batch(issues, "issues", "issue")


@register_node(
    node_type="file-uploaded",
    name="File Uploaded",
    kind=NodeKind.TRIGGER,
    category=NodeCategory.TRIGGERS,
    description="Triggers when a file is added to a Google Drive folder.",
    icon="Upload",
    outputs=[
        {"name": "files", "type": PortType.ARRAY},
        {"name": "file", "type": PortType.OBJECT},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={
        "folderId": {"type": "string", "label": "Folder", "description": "Select a Google Drive folder", "required": True},
        "driveId": {"type": "string", "label": "Drive ID", "description": "Shared drive ID (optional)"},
        "lastCheck": {"type": "string", "label": "Last Check", "description": "ISO timestamp (auto-managed)"},
    },
    services=("google-drive",),
)
async def file_uploaded(input_data, config, context):
    items = polled_items(input_data)
    if items:
        return batch(items, "files", "file")

    cutoff = config.get("lastCheck")
    cutoff_iso = to_iso(parse_timestamp(cutoff)) if cutoff else to_iso(utc_now() - DEFAULT_LOOKBACK)
    params: Dict[str, Any] = {
        "q": f"'{config['folderId']}' in parents and createdTime > '{cutoff_iso}' and trashed = false",
        "orderBy": "createdTime desc",
        "pageSize": 20,
        "fields": "files(id,name,mimeType,createdTime,modifiedTime,size,webViewLink,parents)",
    }
    if config.get("driveId"):
        params.update({"driveId": config["driveId"], "corpora": "drive",
                       "includeItemsFromAllDrives": "true", "supportsAllDrives": "true"})

    credential = await context.credentials.get("google-drive")
    response = await context.http.get(DRIVE_API, params=params, headers=auth_headers(credential), provider="google")
    return batch(response.get("files") or [], "files", "file")


@register_node(
    node_type="manual-trigger",
    name="Manual Trigger",
    kind=NodeKind.TRIGGER,
    category=NodeCategory.TRIGGERS,
    description="Starts the workflow by hand (Run button or API call).",
    icon="Play",
    outputs=[
        {"name": "triggeredAt", "type": PortType.TEXT},
        {"name": "inputData", "type": PortType.UNIVERSAL},
    ],
    config_schema={
        "triggerName": {"type": "string", "label": "Trigger Name", "description": "Unique name for this trigger",
                        "required": True},
        "requireAuth": {"type": "select", "label": "Require Authentication", "default": "true",
                        "options": TRUE_FALSE_OPTIONS},
    },
)
async def manual_trigger(input_data, config, context):
    return {"triggeredAt": to_iso(utc_now()), "triggerName": config["triggerName"], "inputData": input_data or {}}
