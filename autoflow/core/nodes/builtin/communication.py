"""
Communication Nodes - email, chat and SMS actions

Gmail, SendGrid, Slack, Discord, Twilio, X and Microsoft Teams/Outlook.
Each node pulls its credential lazily through context.credentials and
normalizes the provider response into a small flat output.
"""

import base64
import logging
from typing import Any, Dict, List

from autoflow.core.nodes.builtin._helpers import DATA_INPUT, auth_headers, options, parse_json_field
from autoflow.core.nodes.registry import register_node
from autoflow.exceptions import ProviderError
from autoflow.schemas.workflow import NodeCategory, NodeKind, PortType
from autoflow.utils.timezone import to_iso, utc_now

logger = logging.getLogger(__name__)

GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
SLACK_POST_URL = "https://slack.com/api/chat.postMessage"
DISCORD_API = "https://discord.com/api/v10"
TWILIO_API = "https://api.twilio.com/2010-04-01"
X_TWEETS_URL = "https://api.twitter.com/2/tweets"
GRAPH_API = "https://graph.microsoft.com/v1.0"

DEFAULT_SENDER = "noreply@autoflow.dev"
SMS_MAX_LENGTH = 1600
TWEET_MAX_LENGTH = 280


def build_mime_message(to: str, subject: str, body: str, cc: str = "", bcc: str = "") -> str:
    """
    RFC 2822 message, base64url-encoded without padding (Gmail `raw` format).
    """
    lines = [f"To: {to}"]
    if cc:
        lines.append(f"Cc: {cc}")
    if bcc:
        lines.append(f"Bcc: {bcc}")
    lines += [
        f"Subject: {subject}",
        "MIME-Version: 1.0",
        "Content-Type: text/html; charset=utf-8",
        "",
        body or "",
    ]
    raw = "\r\n".join(lines).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def parse_address(value: str) -> Dict[str, str]:
    """'Name <a@b.co>' or 'a@b.co' -> SendGrid address object."""
    value = value.strip()
    if "<" in value and value.endswith(">"):
        name, _, email = value[:-1].partition("<")
        name = name.strip().strip('"')
        address = {"email": email.strip()}
        if name:
            address["name"] = name
        return address
    return {"email": value}


def check_slack_response(response: Any, action: str) -> Dict[str, Any]:
    """Slack answers 200 with {"ok": false} on failure."""
    if not isinstance(response, dict) or response.get("ok") is False:
        error = response.get("error") if isinstance(response, dict) else None
        raise ProviderError(error or f"Failed to {action}", upstream_status=200, body=response, provider="slack")
    return response


@register_node(
    node_type="send-email-gmail",
    name="Send Email via Gmail",
    kind=NodeKind.ACTION,
    category=NodeCategory.COMMUNICATION,
    description="Send an email from your connected Gmail account.",
    icon="Mail",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "success", "type": PortType.BOOLEAN, "description": "Whether the email was sent successfully"},
        {"name": "messageId", "type": PortType.TEXT, "description": "Gmail message ID"},
        {"name": "threadId", "type": PortType.TEXT, "description": "Gmail thread ID"},
    ],
    config_schema={
        "to": {"type": "email", "label": "To", "description": "Who to send the email to", "required": True,
               "placeholder": "e.g. friend@example.com or {{inputData.email.fromEmail}}"},
        "subject": {"type": "string", "label": "Subject", "description": "Email subject line", "required": True},
        "body": {"type": "text", "label": "Message", "description": "Email body. HTML is supported.", "required": True},
        "cc": {"type": "email", "label": "CC (optional)", "description": "Send a copy to another address"},
        "bcc": {"type": "email", "label": "BCC (optional)", "description": "Send a hidden copy to another address"},
        "replyToThread": {
            "type": "select",
            "label": "Send as a reply?",
            "description": "Reply inside an existing email thread",
            "default": "no",
            "options": [
                {"value": "no", "label": "No, start a new email"},
                {"value": "yes", "label": "Yes, reply in an existing thread"},
            ],
        },
        "threadId": {"type": "string", "label": "Thread ID", "description": "The email thread to reply to",
                     "placeholder": "{{inputData.email.threadId}}"},
    },
    services=("google-gmail",),
)
async def send_email_gmail(input_data, config, context):
    credential = await context.credentials.get("google-gmail")
    payload: Dict[str, Any] = {
        "raw": build_mime_message(
            config["to"], config["subject"], config.get("body", ""), config.get("cc") or "", config.get("bcc") or ""
        )
    }

    # Unresolved templates are skipped
    thread_id = (config.get("threadId") or "").strip()
    if config.get("replyToThread") == "yes" and thread_id and "{{" not in thread_id:
        payload["threadId"] = thread_id

    result = await context.http.post(GMAIL_SEND_URL, payload, headers=auth_headers(credential), provider="google")
    context.logger.info(f"Sent Gmail message {result.get('id')}")
    return {"success": True, "messageId": result.get("id"), "threadId": result.get("threadId"), "status": "sent"}


@register_node(
    node_type="send-email",
    name="Send Email via SendGrid",
    kind=NodeKind.ACTION,
    category=NodeCategory.COMMUNICATION,
    description="Sends an email using a connected SendGrid account.",
    icon="Mail",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "success", "type": PortType.BOOLEAN},
        {"name": "messageId", "type": PortType.TEXT, "description": "Message ID from SendGrid"},
    ],
    config_schema={
        "to": {"type": "email", "label": "To", "description": "Recipient email address", "required": True},
        "subject": {"type": "string", "label": "Subject", "description": "Email subject line", "required": True},
        "body": {"type": "text", "label": "Body", "description": "Email body content (HTML supported)", "required": True},
        "from": {"type": "email", "label": "From", "description": f"Sender address (defaults to {DEFAULT_SENDER})"},
        "cc": {"type": "email", "label": "CC", "description": "CC recipient email address"},
        "bcc": {"type": "email", "label": "BCC", "description": "BCC recipient email address"},
    },
    services=("sendgrid",),
)
async def send_email_sendgrid(input_data, config, context):
    credential = await context.credentials.get("sendgrid")

    personalization: Dict[str, Any] = {"to": [parse_address(config["to"])], "subject": config["subject"]}
    if config.get("cc"):
        personalization["cc"] = [parse_address(config["cc"])]
    if config.get("bcc"):
        personalization["bcc"] = [parse_address(config["bcc"])]

    response = await context.http.send(
        "POST",
        SENDGRID_SEND_URL,
        body={
            "personalizations": [personalization],
            "from": parse_address(config.get("from") or DEFAULT_SENDER),
            "content": [{"type": "text/html", "value": config["body"]}],
        },
        headers=auth_headers(credential),
        provider="sendgrid",
    )
    return {"success": True, "messageId": response.headers.get("x-message-id", "unknown"), "status": "sent"}


@register_node(
    node_type="post-to-slack-channel",
    name="Post to Slack Channel",
    kind=NodeKind.ACTION,
    category=NodeCategory.COMMUNICATION,
    description="Posts a message to a Slack channel.",
    icon="MessageSquare",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "ts", "type": PortType.TEXT, "description": "Message timestamp"},
        {"name": "channel", "type": PortType.TEXT, "description": "Channel ID"},
    ],
    config_schema={
        "channel": {"type": "string", "label": "Channel", "description": "Select a Slack channel", "required": True},
        "message": {"type": "text", "label": "Message", "description": "Message text to post", "required": True},
        "threadTs": {"type": "string", "label": "Thread TS", "description": "Thread timestamp to reply to (optional)"},
    },
    services=("slack",),
)
async def post_to_slack_channel(input_data, config, context):
    credential = await context.credentials.get("slack")
    payload = {"channel": config["channel"], "text": config["message"]}
    if config.get("threadTs"):
        payload["thread_ts"] = config["threadTs"]

    response = await context.http.post(SLACK_POST_URL, payload, headers=auth_headers(credential), provider="slack")
    check_slack_response(response, "post to Slack")
    return {**response, "success": True, "ts": response.get("ts"), "channel": response.get("channel")}


@register_node(
    node_type="send-discord-message",
    name="Send Discord Message",
    kind=NodeKind.ACTION,
    category=NodeCategory.COMMUNICATION,
    description="Sends a message to a Discord channel.",
    icon="MessageCircle",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "success", "type": PortType.BOOLEAN, "description": "Whether message was sent"},
        {"name": "id", "type": PortType.TEXT, "description": "Message ID"},
    ],
    config_schema={
        "guildId": {"type": "string", "label": "Server", "description": "Select a Discord server", "required": True},
        "channelId": {"type": "string", "label": "Channel", "description": "Select a Discord channel", "required": True},
        "message": {"type": "text", "label": "Message", "description": "Message content to send", "required": True},
        "embeds": {"type": "json", "label": "Embeds", "description": "Discord embed objects (JSON, optional)"},
    },
    services=("discord",),
)
async def send_discord_message(input_data, config, context):
    embeds = parse_json_field(config.get("embeds"), "embeds") or []
    if isinstance(embeds, dict):
        embeds = [embeds]

    # Bot tokens are presented as "Bot <token>", OAuth tokens as "Bearer <token>"
    credential = await context.credentials.get("discord")
    result = await context.http.post(
        f"{DISCORD_API}/channels/{config['channelId']}/messages",
        {"content": config["message"], "embeds": embeds},
        headers=auth_headers(credential),
        provider="discord",
    )
    return {
        "success": True,
        "id": result.get("id"),
        "channel_id": result.get("channel_id"),
        "content": result.get("content"),
    }


@register_node(
    node_type="send-sms-via-twilio",
    name="Send SMS via Twilio",
    kind=NodeKind.ACTION,
    category=NodeCategory.COMMUNICATION,
    description="Sends an SMS message using Twilio.",
    icon="Smartphone",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "messageSid", "type": PortType.TEXT, "description": "Twilio message SID"},
        {"name": "status", "type": PortType.TEXT, "description": "Message status"},
    ],
    config_schema={
        "to": {"type": "string", "label": "To", "description": "Recipient phone number (E.164, e.g. +1234567890)",
               "required": True},
        "message": {"type": "text", "label": "Message", "description": "SMS text (max 1600 characters)", "required": True},
        "from": {"type": "string", "label": "From", "description": "Your Twilio phone number (E.164)", "required": True},
    },
    services=("twilio",),
)
async def send_sms_via_twilio(input_data, config, context):
    message = config["message"]
    if len(message) > SMS_MAX_LENGTH:
        raise ValueError(f"SMS message is {len(message)} characters; the limit is {SMS_MAX_LENGTH}")

    credential = await context.credentials.get("twilio")
    account_sid = credential.extras.get("account_sid")
    result = await context.http.post(
        f"{TWILIO_API}/Accounts/{account_sid}/Messages.json",
        data={"To": config["to"], "From": config["from"], "Body": message},
        headers=auth_headers(credential),
        provider="twilio",
    )
    return {
        "success": True,
        "messageSid": result.get("sid"),
        "status": result.get("status"),
        "to": result.get("to"),
        "from": result.get("from"),
    }


@register_node(
    node_type="make-phone-call",
    name="Make Phone Call via Twilio",
    kind=NodeKind.ACTION,
    category=NodeCategory.COMMUNICATION,
    description="Places an outbound call that plays a TwiML document.",
    icon="Phone",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "callSid", "type": PortType.TEXT},
        {"name": "status", "type": PortType.TEXT},
    ],
    config_schema={
        "to": {"type": "string", "label": "To", "description": "Number to call (E.164)", "required": True},
        "from": {"type": "string", "label": "From", "description": "Your Twilio phone number (E.164)", "required": True},
        "twimlUrl": {"type": "url", "label": "TwiML URL", "description": "URL returning the call instructions",
                     "required": True},
    },
    services=("twilio",),
)
async def make_phone_call(input_data, config, context):
    credential = await context.credentials.get("twilio")
    account_sid = credential.extras.get("account_sid")
    result = await context.http.post(
        f"{TWILIO_API}/Accounts/{account_sid}/Calls.json",
        data={"To": config["to"], "From": config["from"], "Url": config["twimlUrl"]},
        headers=auth_headers(credential),
        provider="twilio",
    )
    return {"success": True, "callSid": result.get("sid"), "status": result.get("status")}


@register_node(
    node_type="post-to-x",
    name="Post to X",
    kind=NodeKind.ACTION,
    category=NodeCategory.COMMUNICATION,
    description="Posts a tweet to X (Twitter).",
    icon="Twitter",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "success", "type": PortType.BOOLEAN},
        {"name": "id", "type": PortType.TEXT, "description": "Tweet ID"},
        {"name": "text", "type": PortType.TEXT, "description": "Tweet text"},
        {"name": "created_at", "type": PortType.TEXT, "description": "Tweet creation timestamp"},
    ],
    config_schema={
        "text": {"type": "text", "label": "Tweet Text", "description": "Content of the tweet (280 character limit)",
                 "required": True},
        "replyTo": {"type": "string", "label": "Reply To", "description": "Tweet ID to reply to (optional)"},
    },
    services=("twitter",),
)
async def post_to_x(input_data, config, context):
    text = config["text"]
    if len(text) > TWEET_MAX_LENGTH:
        raise ValueError(f"Tweet is {len(text)} characters; the limit is {TWEET_MAX_LENGTH}")

    payload: Dict[str, Any] = {"text": text}
    if config.get("replyTo"):
        payload["reply"] = {"in_reply_to_tweet_id": config["replyTo"]}

    credential = await context.credentials.get("twitter")
    result = await context.http.post(X_TWEETS_URL, payload, headers=auth_headers(credential), provider="twitter")
    data = (result or {}).get("data") or {}
    return {
        "success": True,
        "id": data.get("id"),
        "text": data.get("text"),
        "created_at": data.get("created_at") or to_iso(utc_now()),
    }


def _recipients(value: str) -> List[Dict[str, Any]]:
    return [
        {"emailAddress": {"address": address.strip()}}
        for address in value.split(",")
        if address.strip()
    ]


@register_node(
    node_type="send-outlook-email",
    name="Send Email via Outlook",
    kind=NodeKind.ACTION,
    category=NodeCategory.COMMUNICATION,
    description="Sends an email from your connected Microsoft account.",
    icon="Mail",
    inputs=DATA_INPUT,
    outputs=[{"name": "success", "type": PortType.BOOLEAN}],
    config_schema={
        "to": {"type": "string", "label": "To", "description": "Recipients (comma separated)", "required": True},
        "subject": {"type": "string", "label": "Subject", "required": True},
        "body": {"type": "text", "label": "Body", "description": "HTML supported", "required": True},
        "cc": {"type": "string", "label": "CC", "description": "CC recipients (comma separated)"},
        "saveToSentItems": {"type": "select", "label": "Save to Sent Items", "default": "true",
                            "options": options("true", "false")},
    },
    services=("outlook",),
)
async def send_outlook_email(input_data, config, context):
    credential = await context.credentials.get("outlook")
    message: Dict[str, Any] = {
        "subject": config["subject"],
        "body": {"contentType": "HTML", "content": config["body"]},
        "toRecipients": _recipients(config["to"]),
    }
    if config.get("cc"):
        message["ccRecipients"] = _recipients(config["cc"])

    await context.http.post(
        f"{GRAPH_API}/me/sendMail",
        {"message": message, "saveToSentItems": config.get("saveToSentItems") != "false"},
        headers=auth_headers(credential),
        provider="microsoft",
    )
    return {"success": True, "status": "sent"}


@register_node(
    node_type="send-teams-message",
    name="Send Microsoft Teams Message",
    kind=NodeKind.ACTION,
    category=NodeCategory.COMMUNICATION,
    description="Posts a message to a Microsoft Teams channel.",
    icon="MessageSquare",
    inputs=DATA_INPUT,
    outputs=[{"name": "id", "type": PortType.TEXT, "description": "Message ID"}],
    config_schema={
        "teamId": {"type": "string", "label": "Team", "required": True},
        "channelId": {"type": "string", "label": "Channel", "required": True},
        "message": {"type": "text", "label": "Message", "description": "HTML supported", "required": True},
    },
    services=("teams",),
)
async def send_teams_message(input_data, config, context):
    credential = await context.credentials.get("teams")
    result = await context.http.post(
        f"{GRAPH_API}/teams/{config['teamId']}/channels/{config['channelId']}/messages",
        {"body": {"contentType": "html", "content": config["message"]}},
        headers=auth_headers(credential),
        provider="microsoft",
    )
    return {"success": True, "id": result.get("id"), "webUrl": result.get("webUrl")}
