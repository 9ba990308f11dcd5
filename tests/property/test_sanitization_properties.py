"""Property-based tests for secret redaction."""

from __future__ import annotations

import pytest
from hypothesis import given, strategies as st

from event_notifications.utils.sanitization import REDACTED, sanitize_exception, sanitize_url, sanitize_value

pytestmark = pytest.mark.property

tokens = st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789", min_size=12, max_size=40)


@st.composite
def webhook_url_with_token(draw: st.DrawFn) -> tuple[str, str]:
    """Generate a webhook URL carrying a secret token, plus the token."""
    token = draw(tokens)
    host = draw(st.sampled_from(["hooks.example.com", "api.example.org", "notify.internal"]))
    placement = draw(st.sampled_from(["query", "path", "userinfo"]))
    if placement == "query":
        url = f"https://{host}/send?channel=ops&token={token}"
    elif placement == "path":
        url = f"https://{host}/api-key/{token}/send"
    else:
        url = f"https://svc:{token}@{host}/send"
    return url, token


class TestRedactionInvariants:
    @given(webhook_url_with_token())
    def test_token_never_survives(self, case: tuple[str, str]) -> None:
        """Property: embedded tokens are always redacted."""
        url, token = case
        sanitized = sanitize_url(url)

        assert token not in sanitized
        assert REDACTED in sanitized

    @given(st.text())
    def test_sanitize_url_never_crashes(self, text: str) -> None:
        _ = sanitize_url(text)

    @given(webhook_url_with_token())
    def test_exception_messages_are_redacted(self, case: tuple[str, str]) -> None:
        url, token = case
        rendered = sanitize_exception(ConnectionError(f"POST {url} failed"))

        assert rendered.startswith("ConnectionError: ")
        assert token not in rendered

    @given(st.dictionaries(st.sampled_from(["api_key", "password", "client_secret"]), st.text(), min_size=1))
    def test_sensitive_fields_always_redacted(self, data: dict[str, str]) -> None:
        sanitized = sanitize_value(data)

        assert isinstance(sanitized, dict)
        assert all(value == REDACTED for value in sanitized.values())
