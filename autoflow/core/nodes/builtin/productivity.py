"""
Productivity Nodes - documents, tasks, calendars, CRMs

Notion, Trello, Airtable, Google Calendar/Drive/Sheets, HubSpot, Asana,
Jira, GitHub and Shopify actions.
"""

import json
import logging
import uuid
from typing import Any, Dict, List

from autoflow.core.nodes.builtin._helpers import DATA_INPUT, auth_headers, decode_content, parse_json_field
from autoflow.core.nodes.registry import register_node
from autoflow.schemas.workflow import NodeCategory, NodeKind, PortType

logger = logging.getLogger(__name__)

NOTION_API = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
TRELLO_API = "https://api.trello.com/1"
AIRTABLE_API = "https://api.airtable.com/v0"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files?uploadType=multipart&fields=id,name,webViewLink"
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
HUBSPOT_API = "https://api.hubapi.com"
ASANA_API = "https://app.asana.com/api/1.0"
JIRA_CLOUD_API = "https://api.atlassian.com/ex/jira"
GITHUB_API = "https://api.github.com"
SHOPIFY_API_VERSION = "2024-01"


def notion_blocks(content: Any) -> List[Dict[str, Any]]:
    """Content as Notion blocks: a JSON block list, or plain text paragraphs."""
    if content in (None, ""):
        return []
    if isinstance(content, str):
        stripped = content.strip()
        if stripped.startswith("["):
            return parse_json_field(stripped, "content")
        return [
            {
                "object": "block",
                "type": "paragraph",
                "paragraph": {"rich_text": [{"type": "text", "text": {"content": paragraph}}]},
            }
            for paragraph in stripped.split("\n\n")
            if paragraph.strip()
        ]
    if isinstance(content, list):
        return content
    raise ValueError("Content must be a list of Notion blocks or text")


@register_node(
    node_type="create-notion-page",
    name="Create Notion Page",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Creates a new page in a Notion database.",
    icon="FileText",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "pageId", "type": PortType.TEXT, "description": "Created page ID"},
        {"name": "url", "type": PortType.TEXT, "description": "URL of created page"},
    ],
    config_schema={
        "databaseId": {"type": "string", "label": "Database", "description": "Select a Notion database", "required": True},
        "title": {"type": "string", "label": "Title", "description": "Page title", "required": True},
        "content": {"type": "text", "label": "Content", "description": "Page content (text or JSON blocks)"},
    },
    services=("notion",),
)
async def create_notion_page(input_data, config, context):
    credential = await context.credentials.get("notion")
    result = await context.http.post(
        f"{NOTION_API}/pages",
        {
            "parent": {"database_id": config["databaseId"]},
            "properties": {"title": {"title": [{"text": {"content": config["title"]}}]}},
            "children": notion_blocks(config.get("content")),
        },
        headers=auth_headers(credential, {"Notion-Version": NOTION_VERSION}),
        provider="notion",
    )
    return {**result, "success": True, "pageId": result.get("id"), "url": result.get("url")}


@register_node(
    node_type="create-trello-card",
    name="Create Trello Card",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Creates a new card in a Trello board list.",
    icon="Trello",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "cardId", "type": PortType.TEXT, "description": "Created card ID"},
        {"name": "url", "type": PortType.TEXT, "description": "URL of created card"},
    ],
    config_schema={
        "boardId": {"type": "string", "label": "Board", "description": "Select a Trello board", "required": True},
        "idList": {"type": "string", "label": "List", "description": "Select a list in the board", "required": True},
        "name": {"type": "string", "label": "Card Name", "description": "Card title", "required": True},
        "desc": {"type": "text", "label": "Description", "description": "Card description (supports Markdown)"},
        "dueDate": {"type": "datetime", "label": "Due Date", "description": "Due date (ISO format)"},
    },
    services=("trello",),
)
async def create_trello_card(input_data, config, context):
    credential = await context.credentials.get("trello")
    api_key = credential.extras.get("api_key") or credential.metadata.get("api_key")
    if not api_key:
        raise ValueError("Trello API key missing. Reconnect Trello with both an API key and a token.")

    payload = {"idList": config["idList"], "name": config["name"]}
    if config.get("desc"):
        payload["desc"] = config["desc"]
    if config.get("dueDate"):
        payload["due"] = config["dueDate"]

    result = await context.http.post(
        f"{TRELLO_API}/cards",
        payload,
        params={"key": api_key, "token": credential.token},
        provider="trello",
    )
    return {**result, "success": True, "cardId": result.get("id"), "url": result.get("url")}


@register_node(
    node_type="update-airtable-record",
    name="Update Airtable Record",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Updates an existing record in an Airtable base.",
    icon="Database",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "id", "type": PortType.TEXT, "description": "Updated record ID"},
        {"name": "fields", "type": PortType.OBJECT, "description": "Updated fields"},
    ],
    config_schema={
        "baseId": {"type": "string", "label": "Base", "description": "Select an Airtable base", "required": True},
        "tableId": {"type": "string", "label": "Table", "description": "Select a table in the base", "required": True},
        "recordId": {"type": "string", "label": "Record ID", "description": "Record ID to update", "required": True},
        "fields": {"type": "json", "label": "Fields", "description": 'Fields to update, e.g. {"Name": "John"}',
                   "required": True},
    },
    services=("airtable",),
)
async def update_airtable_record(input_data, config, context):
    fields = parse_json_field(config["fields"], "fields")
    if not isinstance(fields, dict):
        raise ValueError("Fields must be a JSON object")

    credential = await context.credentials.get("airtable")
    result = await context.http.patch(
        f"{AIRTABLE_API}/{config['baseId']}/{config['tableId']}/{config['recordId']}",
        {"fields": fields},
        headers=auth_headers(credential),
        provider="airtable",
    )
    return {**result, "success": True, "id": result.get("id"), "fields": result.get("fields")}


@register_node(
    node_type="create-airtable-record",
    name="Create Airtable Record",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Creates a record in an Airtable table.",
    icon="Database",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "id", "type": PortType.TEXT, "description": "Created record ID"},
        {"name": "fields", "type": PortType.OBJECT},
    ],
    config_schema={
        "baseId": {"type": "string", "label": "Base", "required": True},
        "tableId": {"type": "string", "label": "Table", "required": True},
        "fields": {"type": "json", "label": "Fields", "description": "Record fields (JSON object)", "required": True},
    },
    services=("airtable",),
)
async def create_airtable_record(input_data, config, context):
    fields = parse_json_field(config["fields"], "fields")
    if not isinstance(fields, dict):
        raise ValueError("Fields must be a JSON object")

    credential = await context.credentials.get("airtable")
    result = await context.http.post(
        f"{AIRTABLE_API}/{config['baseId']}/{config['tableId']}",
        {"fields": fields, "typecast": True},
        headers=auth_headers(credential),
        provider="airtable",
    )
    return {"success": True, "id": result.get("id"), "fields": result.get("fields"), "createdTime": result.get("createdTime")}


@register_node(
    node_type="create-calendar-event",
    name="Create Calendar Event",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Creates a new event in Google Calendar.",
    icon="Calendar",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "eventId", "type": PortType.TEXT, "description": "Created event ID"},
        {"name": "htmlLink", "type": PortType.TEXT, "description": "URL of calendar event"},
    ],
    config_schema={
        "calendarId": {"type": "string", "label": "Calendar", "description": "Select a Google Calendar",
                       "required": True, "default": "primary"},
        "summary": {"type": "string", "label": "Title", "description": "Event title", "required": True},
        "description": {"type": "text", "label": "Description", "description": "Event description"},
        "start": {"type": "datetime", "label": "Start Time", "description": "Start datetime (ISO format)", "required": True},
        "end": {"type": "datetime", "label": "End Time", "description": "End datetime (ISO format)", "required": True},
        "timeZone": {"type": "string", "label": "Time Zone", "default": "UTC"},
        "attendees": {"type": "array", "label": "Attendees", "description": 'Attendee emails, e.g. ["a@example.com"]'},
    },
    services=("google-calendar",),
)
async def create_calendar_event(input_data, config, context):
    attendees = parse_json_field(config.get("attendees"), "attendees") or []
    if isinstance(attendees, str):
        attendees = [attendees]
    if not isinstance(attendees, list):
        raise ValueError("Attendees must be a list of email addresses")

    event = {
        "summary": config["summary"],
        "description": config.get("description") or "",
        "start": {"dateTime": config["start"], "timeZone": config["timeZone"]},
        "end": {"dateTime": config["end"], "timeZone": config["timeZone"]},
        "attendees": [{"email": email} for email in attendees if email],
    }

    credential = await context.credentials.get("google-calendar")
    result = await context.http.post(
        f"{CALENDAR_API}/calendars/{config['calendarId']}/events",
        event,
        headers=auth_headers(credential),
        provider="google",
    )
    return {**result, "success": True, "eventId": result.get("id"), "htmlLink": result.get("htmlLink")}


@register_node(
    node_type="upload-file-to-google-drive",
    name="Upload File to Google Drive",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Uploads a file to Google Drive.",
    icon="Upload",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "fileId", "type": PortType.TEXT, "description": "Uploaded file ID"},
        {"name": "webViewLink", "type": PortType.TEXT, "description": "Web view link"},
    ],
    config_schema={
        "folderId": {"type": "string", "label": "Folder", "description": "Google Drive folder (optional)"},
        "fileName": {"type": "string", "label": "File Name", "description": 'Name of the file, e.g. "report.pdf"',
                     "required": True},
        "fileContent": {"type": "text", "label": "File Content", "description": "File content (base64 or text)",
                        "required": True},
        "mimeType": {"type": "string", "label": "MIME Type", "default": "application/octet-stream"},
    },
    services=("google-drive",),
)
async def upload_file_to_google_drive(input_data, config, context):
    metadata: Dict[str, Any] = {"name": config["fileName"]}
    if config.get("folderId"):
        metadata["parents"] = [config["folderId"]]

    # Drive expects multipart/related, not multipart/form-data
    boundary = f"autoflow-{uuid.uuid4().hex}"
    body = b"".join([
        f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode(),
        json.dumps(metadata).encode("utf-8"),
        f"\r\n--{boundary}\r\nContent-Type: {config['mimeType']}\r\n\r\n".encode(),
        decode_content(config["fileContent"]),
        f"\r\n--{boundary}--".encode(),
    ])

    credential = await context.credentials.get("google-drive")
    result = await context.http.request(
        "POST",
        DRIVE_UPLOAD_URL,
        content=body,
        headers=auth_headers(credential, {"Content-Type": f"multipart/related; boundary={boundary}"}),
        provider="google",
    )
    return {**result, "success": True, "fileId": result.get("id"), "webViewLink": result.get("webViewLink")}


@register_node(
    node_type="append-row-to-google-sheet",
    name="Append Row to Google Sheet",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Appends a row of values to a Google Sheet.",
    icon="Sheet",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "updatedRange", "type": PortType.TEXT},
        {"name": "updatedRows", "type": PortType.NUMBER},
    ],
    config_schema={
        "spreadsheetId": {"type": "string", "label": "Spreadsheet", "required": True},
        "sheetName": {"type": "string", "label": "Sheet Name", "required": True, "default": "Sheet1"},
        "values": {"type": "array", "label": "Values", "description": 'Row values, e.g. ["Alice", "alice@example.com"]',
                   "required": True},
    },
    services=("google-sheets",),
)
async def append_row_to_google_sheet(input_data, config, context):
    values = parse_json_field(config["values"], "values")
    if isinstance(values, dict):
        values = list(values.values())
    if not isinstance(values, list):
        values = [values]
    rows = values if values and all(isinstance(row, list) for row in values) else [values]

    credential = await context.credentials.get("google-sheets")
    result = await context.http.post(
        f"{SHEETS_API}/{config['spreadsheetId']}/values/{config['sheetName']}:append",
        {"values": rows},
        params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
        headers=auth_headers(credential),
        provider="google",
    )
    updates = result.get("updates") or {}
    return {
        "success": True,
        "updatedRange": updates.get("updatedRange"),
        "updatedRows": updates.get("updatedRows", len(rows)),
    }


@register_node(
    node_type="create-hubspot-contact",
    name="Create HubSpot Contact",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Creates a contact in HubSpot CRM.",
    icon="Users",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "contactId", "type": PortType.TEXT},
        {"name": "properties", "type": PortType.OBJECT},
    ],
    config_schema={
        "email": {"type": "email", "label": "Email", "required": True},
        "firstname": {"type": "string", "label": "First Name"},
        "lastname": {"type": "string", "label": "Last Name"},
        "phone": {"type": "string", "label": "Phone"},
        "company": {"type": "string", "label": "Company"},
        "properties": {"type": "json", "label": "Additional Properties", "description": "Extra contact properties (JSON)"},
    },
    services=("hubspot",),
)
async def create_hubspot_contact(input_data, config, context):
    properties = {
        key: config[key]
        for key in ("email", "firstname", "lastname", "phone", "company")
        if config.get(key)
    }
    extra = parse_json_field(config.get("properties"), "properties") or {}
    if not isinstance(extra, dict):
        raise ValueError("Additional properties must be a JSON object")
    properties.update({key: str(value) for key, value in extra.items()})

    credential = await context.credentials.get("hubspot")
    result = await context.http.post(
        f"{HUBSPOT_API}/crm/v3/objects/contacts",
        {"properties": properties},
        headers=auth_headers(credential),
        provider="hubspot",
    )
    return {"success": True, "contactId": result.get("id"), "properties": result.get("properties", {})}


@register_node(
    node_type="create-hubspot-ticket",
    name="Create HubSpot Ticket",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Opens a support ticket in HubSpot.",
    icon="Ticket",
    inputs=DATA_INPUT,
    outputs=[{"name": "ticketId", "type": PortType.TEXT}],
    config_schema={
        "subject": {"type": "string", "label": "Subject", "required": True},
        "content": {"type": "text", "label": "Description"},
        "pipeline": {"type": "string", "label": "Pipeline", "default": "0"},
        "pipelineStage": {"type": "string", "label": "Pipeline Stage", "default": "1"},
        "priority": {"type": "select", "label": "Priority", "default": "MEDIUM",
                     "options": [{"value": value, "label": value.title()} for value in ("LOW", "MEDIUM", "HIGH")]},
    },
    services=("hubspot",),
)
async def create_hubspot_ticket(input_data, config, context):
    credential = await context.credentials.get("hubspot")
    result = await context.http.post(
        f"{HUBSPOT_API}/crm/v3/objects/tickets",
        {
            "properties": {
                "subject": config["subject"],
                "content": config.get("content") or "",
                "hs_pipeline": config["pipeline"],
                "hs_pipeline_stage": config["pipelineStage"],
                "hs_ticket_priority": config["priority"],
            }
        },
        headers=auth_headers(credential),
        provider="hubspot",
    )
    return {"success": True, "ticketId": result.get("id"), "properties": result.get("properties", {})}


@register_node(
    node_type="create-asana-task",
    name="Create Asana Task",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Creates a task in Asana.",
    icon="CheckSquare",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "taskId", "type": PortType.TEXT},
        {"name": "url", "type": PortType.TEXT},
    ],
    config_schema={
        "name": {"type": "string", "label": "Task Name", "required": True},
        "notes": {"type": "text", "label": "Notes"},
        "project": {"type": "string", "label": "Project", "description": "Project GID"},
        "workspace": {"type": "string", "label": "Workspace", "description": "Workspace GID (needed without a project)"},
        "assignee": {"type": "string", "label": "Assignee", "description": 'User GID, email, or "me"'},
        "dueOn": {"type": "string", "label": "Due Date", "description": "YYYY-MM-DD"},
    },
    services=("asana",),
)
async def create_asana_task(input_data, config, context):
    if not config.get("project") and not config.get("workspace"):
        raise ValueError("Either a project or a workspace is required to create an Asana task")

    task: Dict[str, Any] = {"name": config["name"]}
    if config.get("notes"):
        task["notes"] = config["notes"]
    if config.get("project"):
        task["projects"] = [config["project"]]
    if config.get("workspace"):
        task["workspace"] = config["workspace"]
    if config.get("assignee"):
        task["assignee"] = config["assignee"]
    if config.get("dueOn"):
        task["due_on"] = config["dueOn"]

    credential = await context.credentials.get("asana")
    result = await context.http.post(f"{ASANA_API}/tasks", {"data": task}, headers=auth_headers(credential),
                                     provider="asana")
    data = result.get("data") or {}
    return {"success": True, "taskId": data.get("gid"), "url": data.get("permalink_url"), "task": data}


def jira_document(text: str) -> Dict[str, Any]:
    """Plain text as an Atlassian Document Format body."""
    return {
        "type": "doc",
        "version": 1,
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": line}]}
            for line in text.split("\n")
            if line.strip()
        ],
    }


@register_node(
    node_type="create-jira-issue",
    name="Create Jira Issue",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Creates an issue in a Jira Cloud project.",
    icon="Bug",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "issueKey", "type": PortType.TEXT},
        {"name": "issueId", "type": PortType.TEXT},
    ],
    config_schema={
        "projectKey": {"type": "string", "label": "Project Key", "description": 'e.g. "ENG"', "required": True},
        "summary": {"type": "string", "label": "Summary", "required": True},
        "description": {"type": "text", "label": "Description"},
        "issueType": {"type": "string", "label": "Issue Type", "default": "Task", "required": True},
        "siteUrl": {"type": "url", "label": "Site URL",
                    "description": "https://your-site.atlassian.net (only for API token connections)"},
    },
    services=("jira",),
)
async def create_jira_issue(input_data, config, context):
    credential = await context.credentials.get("jira")
    cloud_id = credential.metadata.get("cloud_id") or credential.metadata.get("cloudId")
    if cloud_id:
        base_url = f"{JIRA_CLOUD_API}/{cloud_id}"
    elif config.get("siteUrl") or credential.metadata.get("site_url"):
        base_url = (config.get("siteUrl") or credential.metadata["site_url"]).rstrip("/")
    else:
        raise ValueError("Jira site unknown: set Site URL or reconnect Jira")

    fields: Dict[str, Any] = {
        "project": {"key": config["projectKey"]},
        "summary": config["summary"],
        "issuetype": {"name": config["issueType"]},
    }
    if config.get("description"):
        fields["description"] = jira_document(config["description"])

    result = await context.http.post(
        f"{base_url}/rest/api/3/issue",
        {"fields": fields},
        headers=auth_headers(credential, {"Accept": "application/json"}),
        provider="jira",
    )
    return {"success": True, "issueKey": result.get("key"), "issueId": result.get("id"), "url": result.get("self")}


@register_node(
    node_type="create-github-issue",
    name="Create GitHub Issue",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Opens an issue in a GitHub repository.",
    icon="Github",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "number", "type": PortType.NUMBER},
        {"name": "url", "type": PortType.TEXT},
    ],
    config_schema={
        "owner": {"type": "string", "label": "Owner", "required": True},
        "repo": {"type": "string", "label": "Repository", "required": True},
        "title": {"type": "string", "label": "Title", "required": True},
        "body": {"type": "text", "label": "Body"},
        "labels": {"type": "array", "label": "Labels", "description": 'e.g. ["bug"]'},
    },
    services=("github",),
)
async def create_github_issue(input_data, config, context):
    payload: Dict[str, Any] = {"title": config["title"]}
    if config.get("body"):
        payload["body"] = config["body"]
    labels = parse_json_field(config.get("labels"), "labels")
    if labels:
        payload["labels"] = labels if isinstance(labels, list) else [labels]

    credential = await context.credentials.get("github")
    result = await context.http.post(
        f"{GITHUB_API}/repos/{config['owner']}/{config['repo']}/issues",
        payload,
        headers=auth_headers(credential, {"Accept": "application/vnd.github.v3+json"}),
        provider="github",
    )
    return {"success": True, "number": result.get("number"), "url": result.get("html_url"), "id": result.get("id")}


@register_node(
    node_type="create-shopify-product",
    name="Create Shopify Product",
    kind=NodeKind.ACTION,
    category=NodeCategory.PRODUCTIVITY,
    description="Creates a product in a Shopify store.",
    icon="ShoppingBag",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "productId", "type": PortType.TEXT},
        {"name": "handle", "type": PortType.TEXT},
    ],
    config_schema={
        "shop": {"type": "string", "label": "Shop", "description": "Store subdomain (defaults to the connected store)"},
        "title": {"type": "string", "label": "Title", "required": True},
        "bodyHtml": {"type": "text", "label": "Description"},
        "vendor": {"type": "string", "label": "Vendor"},
        "productType": {"type": "string", "label": "Product Type"},
        "price": {"type": "string", "label": "Price", "description": 'e.g. "19.99"'},
        "tags": {"type": "array", "label": "Tags"},
    },
    services=("shopify",),
)
async def create_shopify_product(input_data, config, context):
    credential = await context.credentials.get("shopify")
    shop = config.get("shop") or credential.metadata.get("shop")
    if not shop:
        raise ValueError("Shopify store unknown: set Shop or reconnect Shopify")
    shop = shop.replace(".myshopify.com", "")

    product: Dict[str, Any] = {"title": config["title"]}
    for source, target in (("bodyHtml", "body_html"), ("vendor", "vendor"), ("productType", "product_type")):
        if config.get(source):
            product[target] = config[source]
    tags = parse_json_field(config.get("tags"), "tags")
    if tags:
        product["tags"] = ", ".join(tags) if isinstance(tags, list) else str(tags)
    if config.get("price"):
        product["variants"] = [{"price": str(config["price"])}]

    result = await context.http.post(
        f"https://{shop}.myshopify.com/admin/api/{SHOPIFY_API_VERSION}/products.json",
        {"product": product},
        headers={"X-Shopify-Access-Token": credential.token},
        provider="shopify",
    )
    created = result.get("product") or {}
    return {"success": True, "productId": created.get("id"), "handle": created.get("handle"), "product": created}
