"""
Tests for inbox reading and verification-code extraction.
"""

import httpx
import pytest

from factories import create_token, create_transaction, make_result, queue_results
from tokenhub.db.models import EmailExtractionPattern
from tokenhub.exceptions import InvalidTokenError, TokenRequiredError
from tokenhub.services.inbox import (
    InboxService,
    extract_code,
    format_received,
    split_credential,
)

CREDENTIAL = "box@hotmail.com|pw|rt-123|client-1"

MESSAGES = {
    "value": [
        {
            "subject": "Your code",
            "from": {"emailAddress": {"address": "noreply@service.test"}},
            "bodyPreview": "Use 482913 to sign in",
            "receivedDateTime": "2026-01-15T09:05:00Z",
        },
        {
            "subject": None,
            "bodyPreview": "Reference ABC-77 code 9981",
            "receivedDateTime": "2026-01-14T23:59:00Z",
        },
    ]
}


def mail_provider(request: httpx.Request) -> httpx.Response:
    if request.method == "POST":
        form = request.content.decode()
        if "rt-bad" in form:
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "at-1"})
    assert request.headers["Authorization"] == "Bearer at-1"
    return httpx.Response(200, json=MESSAGES)


def make_service(db_session) -> InboxService:
    return InboxService(
        db_session, http_client=httpx.AsyncClient(transport=httpx.MockTransport(mail_provider))
    )


def pattern(sender: str, regex: str) -> EmailExtractionPattern:
    return EmailExtractionPattern(from_email=sender, regex_pattern=regex)


class TestHelpers:
    def test_format_received(self):
        assert format_received("2026-01-15T09:05:00Z") == "09:05 - 15/01/2026"
        assert format_received(None) == ""
        assert format_received("yesterday") == ""

    def test_extract_code_default_pattern(self):
        assert extract_code(r"\b\d{4,8}\b", "code: 123456.") == "123456"
        assert extract_code(r"\b\d{4,8}\b", "no digits") == ""

    def test_extract_code_invalid_regex(self):
        assert extract_code("([", "123456") == ""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (CREDENTIAL, ("box@hotmail.com", "rt-123", "client-1")),
            ("a|b|c|d|extra", ("a", "c", "d")),
            ("a|b|c", None),
            ("a|b||d", None),
        ],
    )
    def test_split_credential(self, value, expected):
        assert split_credential(value) == expected


class TestRead:
    async def test_email_strings_require_token(self, db_session):
        with pytest.raises(TokenRequiredError):
            await make_service(db_session).read([], [CREDENTIAL], token=None)

    async def test_unknown_token(self, db_session):
        queue_results(db_session, make_result(scalar=None), make_result(scalar=None))
        with pytest.raises(InvalidTokenError):
            await make_service(db_session).read([], [CREDENTIAL], token="tok-unknown")

    async def test_email_string_messages(self, db_session):
        queue_results(
            db_session,
            make_result(scalar=create_token().id),
            make_result(rows=[pattern("noreply@service.test", r"\d{6}")]),
        )

        messages = await make_service(db_session).read([], [CREDENTIAL], token="tok-regular")

        assert len(messages) == 2
        first, second = messages
        assert first.mail == "box@hotmail.com"
        assert first.sender == "noreply@service.test"
        assert first.time == "09:05 - 15/01/2026"
        assert first.code == "482913"
        assert first.content == (
            "Subject: Your code\nFrom: noreply@service.test\nPreview: Use 482913 to sign in"
        )
        assert second.sender == "(unknown sender)"
        assert second.code == "9981"

    async def test_transactions_filtered_by_product(self, db_session):
        allowed = create_transaction(product_name="HOTMAIL-NEW-LIVE-1-12H", output_result=[CREDENTIAL])
        other = create_transaction(product_name="OTHER", output_result=[CREDENTIAL])
        queue_results(db_session, make_result(rows=[allowed, other]), make_result(rows=[]))

        messages = await make_service(db_session).read([str(allowed.id), str(other.id), "junk"], [])

        assert len(messages) == 2
        assert {m.mail for m in messages} == {"box@hotmail.com"}

    async def test_failing_credential_contributes_nothing(self, db_session):
        queue_results(db_session, make_result(scalar=create_token().id), make_result(rows=[]))

        messages = await make_service(db_session).read(
            [], ["dead@hotmail.com|pw|rt-bad|client-1", "malformed"], token="tok-regular"
        )

        assert messages == []
