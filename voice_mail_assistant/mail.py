#!/usr/bin/env python3
"""
Mail tools exposed to the language model.

``MailToolbox`` holds the tool schemas and turns each tool call into a
``MailClient`` operation whose result is formatted as plain text for the model.
``NylasMailClient`` implements the operations against the Nylas v3 API.
"""

import asyncio
import html
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from nylas import Client

from .config import default_config
from .errors import MailError

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {".txt", ".csv", ".html", ".htm", ".json", ".xml", ".md", ".log", ".tsv"}
TEXT_MIME_TYPES = ("application/json", "application/xml")

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "search_emails",
            "description": "Search the user's email inbox by query string. Supports searching by sender, "
                           "subject, keywords, etc. Returns a summary list of matching emails.",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "The search query (sender name, subject keywords, etc.)"},
                    "limit": {"type": "number", "description": "Maximum number of results to return (default 5)"},
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "read_email",
            "description": "Fetch the full content of a specific email by its message ID. Returns the email body "
                           "and attachment metadata. Use this after search_emails to read a specific message.",
            "parameters": {
                "type": "object",
                "properties": {
                    "message_id": {"type": "string", "description": "The ID of the email message to read"},
                },
                "required": ["message_id"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "read_attachment",
            "description": "Download an email attachment and return its text content when it is a text "
                           "format, or its metadata otherwise.",
            "parameters": {
                "type": "object",
                "properties": {
                    "message_id": {"type": "string", "description": "The ID of the email the attachment belongs to"},
                    "attachment_id": {"type": "string", "description": "The ID of the attachment to read"},
                },
                "required": ["message_id", "attachment_id"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "send_email",
            "description": "Compose and send a new email. Only call this after the user has verbally confirmed the draft.",
            "parameters": {
                "type": "object",
                "properties": {
                    "to": {"type": "string", "description": "Recipient email address"},
                    "subject": {"type": "string", "description": "Email subject line"},
                    "body": {"type": "string", "description": "Email body text"},
                },
                "required": ["to", "subject", "body"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "reply_to_email",
            "description": "Reply to an existing email by message ID. Only call this after the user has "
                           "verbally confirmed the draft.",
            "parameters": {
                "type": "object",
                "properties": {
                    "message_id": {"type": "string", "description": "The ID of the email message to reply to"},
                    "body": {"type": "string", "description": "Reply body text"},
                },
                "required": ["message_id", "body"],
            },
        },
    },
]


def strip_html(text: str) -> str:
    text = re.sub(r'<style[^>]*>.*?</style>', '', text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r'<script[^>]*>.*?</script>', '', text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r'<[^>]+>', ' ', text)
    text = html.unescape(text).replace('\xa0', ' ')
    return re.sub(r'\s+', ' ', text).strip()


def truncate(text: str, limit: int) -> str:
    return text[:limit] + "... [truncated]" if len(text) > limit else text


def snippet(text: str, limit: int = 100) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _get(obj, key: str, default=None):
    """Read a field from an SDK model or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _format_date(timestamp) -> str:
    if not timestamp:
        return "unknown date"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")


def _format_size(size) -> str:
    return f"{round(size / 1024)} KB" if size else "unknown size"


def _sender(message) -> List[Any]:
    return _get(message, 'from_') or _get(message, 'from') or []


def is_text_type(content_type: str, filename: str) -> bool:
    if content_type.startswith("text/") or content_type.startswith(TEXT_MIME_TYPES):
        return True
    return any(filename.lower().endswith(ext) for ext in TEXT_EXTENSIONS)


class MailClient:
    """Mail provider operations. Implementations raise MailError on failure."""

    async def search(self, query: str, limit: int) -> list:  # pragma: no cover - interface
        raise NotImplementedError

    async def read(self, message_id: str):  # pragma: no cover - interface
        raise NotImplementedError

    async def read_attachment(self, message_id: str, attachment_id: str):  # pragma: no cover - interface
        """Return ``(attachment metadata, content bytes)``."""
        raise NotImplementedError

    async def send(self, to: str, subject: str, body: str, reply_to_message_id: Optional[str] = None) -> str:  # pragma: no cover - interface
        """Send a message and return the new message id."""
        raise NotImplementedError


class NylasMailClient(MailClient):
    """Nylas v3 mailbox access. The SDK is synchronous, so calls run in a worker thread."""

    def __init__(self, config=None, client: Optional[Client] = None):
        self.config = config or default_config
        if not self.config.nylas_grant_id:
            raise MailError("NYLAS_GRANT_ID is not configured")
        if client is None:
            if not self.config.nylas_api_key:
                raise MailError("NYLAS_API_KEY is not configured")
            client = Client(api_key=self.config.nylas_api_key, api_uri=self.config.nylas_api_uri)
        self.client = client
        self.grant_id = self.config.nylas_grant_id

    async def _call(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except Exception as e:
            raise MailError(str(e)) from e

    async def search(self, query: str, limit: int) -> list:
        response = await self._call(
            self.client.messages.list,
            identifier=self.grant_id,
            query_params={"search_query_native": query, "limit": limit},
        )
        return list(response.data)

    async def read(self, message_id: str):
        response = await self._call(
            self.client.messages.find, identifier=self.grant_id, message_id=message_id
        )
        return response.data

    async def read_attachment(self, message_id: str, attachment_id: str):
        query = {"message_id": message_id}
        meta = await self._call(
            self.client.attachments.find,
            identifier=self.grant_id, attachment_id=attachment_id, query_params=query,
        )
        content = await self._call(
            self.client.attachments.download_bytes,
            identifier=self.grant_id, attachment_id=attachment_id, query_params=query,
        )
        return meta.data, content

    async def send(self, to: str, subject: str, body: str, reply_to_message_id: Optional[str] = None) -> str:
        request = {"to": [{"email": to}], "subject": subject, "body": body}
        if reply_to_message_id:
            request["reply_to_message_id"] = reply_to_message_id
        response = await self._call(
            self.client.messages.send, identifier=self.grant_id, request_body=request
        )
        return _get(response.data, 'id', '')


class MailToolbox:
    """Dispatches model tool calls to mail operations and formats the results."""

    def __init__(self, mail: MailClient, config=None):
        self.mail = mail
        self.config = config or default_config
        self.tools = TOOLS
        self._handlers = {
            "search_emails": self.search_emails,
            "read_email": self.read_email,
            "read_attachment": self.read_attachment,
            "send_email": self.send_email,
            "reply_to_email": self.reply_to_email,
        }

    async def execute(self, name: str, arguments: Dict[str, Any]) -> str:
        handler = self._handlers.get(name)
        if handler is None:
            return f'Error: unknown tool "{name}"'
        try:
            return await handler(**arguments)
        except MailError as e:
            logger.warning("Tool %s failed: %s", name, e)
            return f"Error: {e}"
        except TypeError as e:
            return f"Error: invalid arguments for {name}: {e}"

    async def search_emails(self, query: str, limit: Optional[int] = None) -> str:
        messages = await self.mail.search(query, int(limit or self.config.search_limit))
        if not messages:
            return f'No emails found matching "{query}".'
        results = []
        for msg in messages:
            sender = ", ".join(_get(p, 'name') or _get(p, 'email', '') for p in _sender(msg)) or "Unknown"
            attachments = [a for a in (_get(msg, 'attachments') or []) if not _get(a, 'is_inline')]
            lines = [
                f"ID: {_get(msg, 'id')}",
                f"From: {sender}",
                f"Subject: {_get(msg, 'subject') or '(no subject)'}",
                f"Date: {_format_date(_get(msg, 'date'))}",
                f"Snippet: {_get(msg, 'snippet') or ''}",
            ]
            if attachments:
                lines.append(f"Attachments: {len(attachments)}")
            results.append("\n".join(lines))
        return "\n---\n".join(results)

    async def read_email(self, message_id: str) -> str:
        msg = await self.mail.read(message_id)

        def people(field):
            return ", ".join(f"{_get(p, 'name') or ''} <{_get(p, 'email', '')}>" for p in field or [])

        body = strip_html(_get(msg, 'body') or '') or "(no body)"
        parts = [
            f"From: {people(_sender(msg)) or 'Unknown'}",
            f"To: {people(_get(msg, 'to'))}",
            f"Subject: {_get(msg, 'subject') or '(no subject)'}",
            f"Date: {_format_date(_get(msg, 'date'))}",
            "",
            truncate(body, self.config.max_body_chars),
        ]
        attachments = [a for a in (_get(msg, 'attachments') or []) if not _get(a, 'is_inline')]
        if attachments:
            parts += ["", f"Attachments ({len(attachments)}):"]
            parts += [
                f"- {_get(a, 'filename')} ({_get(a, 'content_type')}, {_format_size(_get(a, 'size'))}, "
                f"attachment_id: {_get(a, 'id')})"
                for a in attachments
            ]
        return "\n".join(parts)

    async def read_attachment(self, message_id: str, attachment_id: str) -> str:
        meta, content = await self.mail.read_attachment(message_id, attachment_id)
        content_type = (_get(meta, 'content_type') or '').lower().split(';')[0].strip()
        filename = _get(meta, 'filename') or "unknown"
        if is_text_type(content_type, filename):
            text = content.decode("utf-8", errors="replace")
            return f"File: {filename}\n\n{truncate(text, self.config.max_attachment_chars)}"
        return (f"File: {filename} ({content_type}, {_format_size(_get(meta, 'size'))})\n\n"
                "This file format is not supported for content extraction.")

    async def send_email(self, to: str, subject: str, body: str) -> str:
        message_id = await self.mail.send(to, subject, body)
        return (f"Email sent successfully.\nTo: {to}\nSubject: {subject}\n"
                f"Snippet: {snippet(body)}\nMessage ID: {message_id}")

    async def reply_to_email(self, message_id: str, body: str) -> str:
        original = await self.mail.read(message_id)
        senders = _sender(original)
        reply_to = _get(senders[0], 'email') if senders else None
        if not reply_to:
            return "Error: could not determine the sender of the original email."
        subject = _get(original, 'subject') or "(no subject)"
        if not subject.startswith("Re:"):
            subject = f"Re: {subject}"
        sent_id = await self.mail.send(reply_to, subject, body, reply_to_message_id=message_id)
        return (f"Reply sent successfully.\nTo: {reply_to}\nSubject: {subject}\n"
                f"Snippet: {snippet(body)}\nMessage ID: {sent_id}")
