from __future__ import annotations

from eventboard import database
from eventboard.storage import fetch_root_token, read_root_token, rotate_root_token


def test_root_token_is_created_once():
    first = fetch_root_token()
    assert isinstance(first, str) and first
    assert fetch_root_token() == first
    with database.get_session() as session:
        assert read_root_token(session) == first


def test_rotate_replaces_token():
    first = fetch_root_token()
    rotated = rotate_root_token()
    assert rotated != first
    assert fetch_root_token() == rotated


def test_read_root_token_without_token():
    with database.get_session() as session:
        assert read_root_token(session) is None
