# Tests for integrations/gmail.py
# Created: 2026-09-11

import base64
import json

import httpx
import pytest

from myme.auth.oauth import OAuthManager
from myme.auth.providers import GoogleProvider
from myme.errors import NotFoundError, PermanentError, TransientError
from myme.integrations.gmail import GmailClient
from myme.sync.queue import Mutation, MutationKind, OfflineQueue
from myme.sync.replay import MutationReplayer, ReplayOutcome


def _b64(text: bytes) -> str:
    return base64.urlsafe_b64encode(text).decode()


@pytest.fixture
def make_gmail(token_store, make_executor, make_tokens):
    def factory(handler, max_retries=0) -> GmailClient:
        executor = make_executor(handler, max_retries=max_retries)
        token_store.store("google", make_tokens(access_token="g-token"))
        provider = GoogleProvider("id", "secret", executor=executor)
        oauth = OAuthManager(token_store, {"google": provider})
        return GmailClient(oauth, executor)

    return factory


# ---------------------------------------------------------------------------
# GmailClient._extract_body
# ---------------------------------------------------------------------------


class TestExtractBody:
    def test_plain_text_direct(self):
        payload = {"mimeType": "text/plain", "body": {"data": _b64(b"Hello world")}}
        assert GmailClient._extract_body(payload) == "Hello world"

    def test_multipart_prefers_plain_text(self):
        payload = {
            "mimeType": "multipart/alternative",
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64(b"<p>HTML</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64(b"Text body")}},
            ],
        }
        assert GmailClient._extract_body(payload) == "Text body"

    def test_no_text_content(self):
        assert GmailClient._extract_body({"mimeType": "multipart/mixed", "parts": []}) == (
            "(no text content)"
        )

    def test_nested_multipart(self):
        payload = {
            "mimeType": "multipart/mixed",
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [{"mimeType": "text/plain", "body": {"data": _b64(b"Nested")}}],
                }
            ],
        }
        assert GmailClient._extract_body(payload) == "Nested"


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def _recording_handler(requests, status=200):
    def handler(request):
        requests.append(request)
        return httpx.Response(status, json={"id": "m1", "labelIds": ["INBOX"]})

    return handler


class TestApply:
    @pytest.mark.parametrize(
        ("kind", "add", "remove"),
        [
            (MutationKind.GMAIL_MARK_READ, None, ["UNREAD"]),
            (MutationKind.GMAIL_MARK_UNREAD, ["UNREAD"], None),
            (MutationKind.GMAIL_STAR, ["STARRED"], None),
            (MutationKind.GMAIL_UNSTAR, None, ["STARRED"]),
            (MutationKind.GMAIL_ARCHIVE, None, ["INBOX"]),
        ],
    )
    async def test_label_toggles(self, make_gmail, kind, add, remove):
        requests = []
        client = make_gmail(_recording_handler(requests))
        await client.apply(Mutation(kind, "m1"))

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/gmail/v1/users/me/messages/m1/modify"
        assert request.headers["authorization"] == "Bearer g-token"
        body = json.loads(request.content)
        assert body.get("addLabelIds") == add
        assert body.get("removeLabelIds") == remove

    async def test_trash(self, make_gmail):
        requests = []
        client = make_gmail(_recording_handler(requests))
        assert await client.apply(Mutation(MutationKind.GMAIL_TRASH, "m9")) == {"id": "m9"}
        assert requests[0].url.path.endswith("/messages/m9/trash")

    async def test_custom_labels(self, make_gmail):
        requests = []
        client = make_gmail(_recording_handler(requests))
        await client.apply(
            Mutation(MutationKind.GMAIL_ADD_LABELS, "m1", {"labels": ["Label_1", "Label_2"]})
        )
        await client.apply(
            Mutation(MutationKind.GMAIL_REMOVE_LABELS, "m1", {"labels": ["Label_1"]})
        )
        assert json.loads(requests[0].content) == {"addLabelIds": ["Label_1", "Label_2"]}
        assert json.loads(requests[1].content) == {"removeLabelIds": ["Label_1"]}

    async def test_github_kind_is_rejected(self, make_gmail):
        client = make_gmail(_recording_handler([]))
        with pytest.raises(PermanentError):
            await client.apply(Mutation(MutationKind.GITHUB_CREATE_ISSUE, "x/a"))

    async def test_missing_message_is_not_found(self, make_gmail):
        client = make_gmail(_recording_handler([], status=404))
        with pytest.raises(NotFoundError):
            await client.apply(Mutation(MutationKind.GMAIL_STAR, "gone"))

    async def test_server_error_is_transient(self, make_gmail):
        client = make_gmail(_recording_handler([], status=503))
        with pytest.raises(TransientError):
            await client.apply(Mutation(MutationKind.GMAIL_STAR, "m1"))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    async def test_list_inbox(self, make_gmail):
        def handler(request):
            path = request.url.path
            if path.endswith("/messages"):
                assert request.url.params["labelIds"] == "INBOX"
                return httpx.Response(200, json={"messages": [{"id": "a"}, {"id": "b"}]})
            if path.endswith("/messages/a"):
                return httpx.Response(
                    200,
                    json={
                        "threadId": "t1",
                        "snippet": "hi",
                        "labelIds": ["INBOX", "UNREAD"],
                        "payload": {
                            "headers": [
                                {"name": "Subject", "value": "Hello"},
                                {"name": "From", "value": "a@example.com"},
                            ]
                        },
                    },
                )
            return httpx.Response(404)

        inbox = await make_gmail(handler).list_inbox()
        assert len(inbox) == 1
        assert inbox[0]["id"] == "a"
        assert inbox[0]["subject"] == "Hello"
        assert inbox[0]["unread"] is True
        assert inbox[0]["starred"] is False

    async def test_list_inbox_propagates_transient(self, make_gmail):
        def handler(request):
            if request.url.path.endswith("/messages"):
                return httpx.Response(200, json={"messages": [{"id": "a"}]})
            return httpx.Response(503)

        with pytest.raises(TransientError):
            await make_gmail(handler).list_inbox()

    async def test_read(self, make_gmail):
        def handler(request):
            assert request.url.params["format"] == "full"
            return httpx.Response(
                200,
                json={
                    "snippet": "s",
                    "payload": {
                        "mimeType": "text/plain",
                        "headers": [{"name": "To", "value": "me@example.com"}],
                        "body": {"data": _b64(b"Body text")},
                    },
                },
            )

        message = await make_gmail(handler).read("m1")
        assert message["body"] == "Body text"
        assert message["to"] == "me@example.com"
        assert message["subject"] == "(no subject)"

    async def test_401_refreshes_once(self, make_gmail, token_store):
        seen = []

        def handler(request):
            if request.url.host == "oauth2.googleapis.com":
                return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})
            seen.append(request.headers["authorization"])
            if request.headers["authorization"] == "Bearer g-token":
                return httpx.Response(401)
            return httpx.Response(200, json={"id": "m1"})

        client = make_gmail(handler)
        await client.trash("m1")
        assert seen == ["Bearer g-token", "Bearer fresh"]
        assert token_store.retrieve("google").access_token == "fresh"


# ---------------------------------------------------------------------------
# Non-JSON bodies
# ---------------------------------------------------------------------------


def _proxy_page(request):
    return httpx.Response(
        200, text="<html>proxy login</html>", headers={"content-type": "text/html"}
    )


class TestMalformedResponses:
    async def test_html_body_is_permanent(self, make_gmail):
        with pytest.raises(PermanentError, match="malformed JSON"):
            await make_gmail(_proxy_page).apply(Mutation(MutationKind.GMAIL_STAR, "m1"))

    async def test_replay_drops_entries_answered_with_html(self, make_gmail):
        client = make_gmail(_proxy_page)
        queue = OfflineQueue(":memory:")
        try:
            queue.enqueue(Mutation(MutationKind.GMAIL_STAR, "m1"))
            queue.enqueue(Mutation(MutationKind.GMAIL_STAR, "m2"))

            report = await MutationReplayer(queue, client.apply).replay_once()

            assert [e.outcome for e in report.events] == [
                ReplayOutcome.PERMANENT,
                ReplayOutcome.PERMANENT,
            ]
            assert report.remaining == 0
            assert queue.peek() is None
        finally:
            queue.close()
