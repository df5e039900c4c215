import uuid
from datetime import datetime, timezone

import pytest

from app.core.paging import decode_position, encode_position


def test_position_cursor_round_trip():
    at = datetime(2025, 3, 10, 12, 0, 0, 1234, tzinfo=timezone.utc)
    rid = uuid.uuid4()
    assert decode_position(encode_position(at, rid)) == (at, rid)


def test_empty_cursor_means_start():
    assert decode_position(None) is None
    assert decode_position("") is None


@pytest.mark.parametrize("token", ["not-base64!!", "eyJ4IjoxfQ==", "W10="])
def test_malformed_cursor_raises_value_error(token):
    with pytest.raises(ValueError):
        decode_position(token)
