import pytest

from location_mcp.utilities.logging import redact_key


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        (None, "<none>"),
        ("", "<none>"),
        ("short", "***"),
        ("lmcp_abcdefghijkl", "lmcp_abc..."),
    ],
)
def test_redact_key(key, expected):
    assert redact_key(key) == expected
