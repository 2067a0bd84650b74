# Gmail Client - HTTP client for the Gmail API using OAuth tokens.
# Created: 2026-09-11

from __future__ import annotations

import base64
import logging
from typing import Any

from myme.auth.oauth import OAuthManager
from myme.errors import MymeError, PermanentError
from myme.net.retry import RequestExecutor, decode_json
from myme.sync.queue import Mutation, MutationKind

logger = logging.getLogger(__name__)

_GMAIL_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
SERVICE = "google"

# Label changes for the simple label-toggle mutations: (add, remove).
_LABEL_ACTIONS: dict[MutationKind, tuple[list[str], list[str]]] = {
    MutationKind.GMAIL_MARK_READ: ([], ["UNREAD"]),
    MutationKind.GMAIL_MARK_UNREAD: (["UNREAD"], []),
    MutationKind.GMAIL_STAR: (["STARRED"], []),
    MutationKind.GMAIL_UNSTAR: ([], ["STARRED"]),
    MutationKind.GMAIL_ARCHIVE: ([], ["INBOX"]),
}


class GmailClient:
    """HTTP client for the Gmail API.

    Every call goes through ``OAuthManager.call_with_token`` so an expired
    token is refreshed once on a 401.
    """

    def __init__(self, oauth: OAuthManager, executor: RequestExecutor | None = None):
        self._oauth = oauth
        self._executor = executor or RequestExecutor()

    async def _call(self, method: str, path: str, context: str, **kwargs: Any) -> Any:
        async def send(token: str) -> Any:
            resp = await self._executor.request(
                method,
                f"{_GMAIL_BASE}{path}",
                headers={"Authorization": f"Bearer {token}"},
                context=context,
                **kwargs,
            )
            return decode_json(resp, context, default={})

        return await self._oauth.call_with_token(SERVICE, send)

    async def list_inbox(self, max_results: int = 20, query: str = "") -> list[dict[str, Any]]:
        """List inbox messages with subject, sender, date and snippet.

        Messages whose metadata cannot be fetched are skipped with a warning.
        """
        params: dict[str, Any] = {"labelIds": "INBOX", "maxResults": max_results}
        if query:
            params["q"] = query
        data = await self._call("GET", "/messages", "gmail list", params=params)

        results = []
        for msg in data.get("messages", [])[:max_results]:
            try:
                msg_data = await self._call(
                    "GET",
                    f"/messages/{msg['id']}",
                    "gmail message",
                    params={"format": "metadata", "metadataHeaders": ["From", "Subject", "Date"]},
                )
            except MymeError as e:
                if e.retryable:
                    raise
                logger.warning("Failed to fetch message %s: %s", msg["id"], e)
                continue

            headers = {
                h["name"]: h["value"] for h in msg_data.get("payload", {}).get("headers", [])
            }
            labels = msg_data.get("labelIds", [])
            results.append(
                {
                    "id": msg["id"],
                    "thread_id": msg_data.get("threadId", ""),
                    "subject": headers.get("Subject", "(no subject)"),
                    "from": headers.get("From", ""),
                    "date": headers.get("Date", ""),
                    "snippet": msg_data.get("snippet", ""),
                    "unread": "UNREAD" in labels,
                    "starred": "STARRED" in labels,
                }
            )
        return results

    async def read(self, message_id: str) -> dict[str, Any]:
        """Read a full message with its plain text body."""
        data = await self._call(
            "GET", f"/messages/{message_id}", "gmail read", params={"format": "full"}
        )
        headers = {h["name"]: h["value"] for h in data.get("payload", {}).get("headers", [])}
        return {
            "id": message_id,
            "subject": headers.get("Subject", "(no subject)"),
            "from": headers.get("From", ""),
            "to": headers.get("To", ""),
            "date": headers.get("Date", ""),
            "body": self._extract_body(data.get("payload", {})),
            "snippet": data.get("snippet", ""),
        }

    async def modify_message(
        self,
        message_id: str,
        add_labels: list[str] | None = None,
        remove_labels: list[str] | None = None,
    ) -> dict[str, Any]:
        """Modify a message's labels (archive, mark read, star, ...).

        Common label IDs: INBOX, UNREAD, STARRED, TRASH, SPAM, IMPORTANT.
        """
        body: dict[str, Any] = {}
        if add_labels:
            body["addLabelIds"] = add_labels
        if remove_labels:
            body["removeLabelIds"] = remove_labels

        data = await self._call(
            "POST", f"/messages/{message_id}/modify", "gmail modify", json=body
        )
        return {"id": data.get("id", message_id), "labelIds": data.get("labelIds", [])}

    async def trash(self, message_id: str) -> dict[str, str]:
        await self._call("POST", f"/messages/{message_id}/trash", "gmail trash")
        return {"id": message_id}

    async def apply(self, mutation: Mutation) -> Any:
        """Perform a queued Gmail mutation."""
        kind = mutation.kind
        if kind in _LABEL_ACTIONS:
            add, remove = _LABEL_ACTIONS[kind]
            return await self.modify_message(mutation.target, add, remove)
        if kind is MutationKind.GMAIL_TRASH:
            return await self.trash(mutation.target)
        if kind is MutationKind.GMAIL_ADD_LABELS:
            return await self.modify_message(
                mutation.target, add_labels=list(mutation.params.get("labels", []))
            )
        if kind is MutationKind.GMAIL_REMOVE_LABELS:
            return await self.modify_message(
                mutation.target, remove_labels=list(mutation.params.get("labels", []))
            )
        raise PermanentError(f"Gmail cannot apply {kind.value}")

    @staticmethod
    def _extract_body(payload: dict) -> str:
        """Extract the plain text body from a message payload."""
        if payload.get("mimeType") == "text/plain":
            data = payload.get("body", {}).get("data", "")
            if data:
                return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")

        # Multipart, possibly nested
        for part in payload.get("parts", []):
            found = GmailClient._extract_body(part)
            if found != "(no text content)":
                return found

        return "(no text content)"
