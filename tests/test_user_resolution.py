from __future__ import annotations

import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from app.services.user_resolution import parse_user_id_from_reference, resolve_user_id


def test_metadata_user_id_wins() -> None:
    assert resolve_user_id("u1", "rbc:u2:99:pix") == "u1"


def test_metadata_user_id_is_trimmed() -> None:
    assert resolve_user_id("  u1  ", None) == "u1"


def test_structured_reference() -> None:
    assert resolve_user_id(None, "rbc:u2:99:pix") == "u2"
    assert resolve_user_id("   ", "rbc:u2:99:pix") == "u2"


def test_legacy_reference_is_the_user_id() -> None:
    assert resolve_user_id(None, "abcdef") == "abcdef"


def test_short_reference_fails() -> None:
    assert resolve_user_id(None, "ab") is None
    assert resolve_user_id(None, None) is None
    assert resolve_user_id("", "") is None


def test_unknown_prefix_falls_back_to_whole_string() -> None:
    assert parse_user_id_from_reference("xyz:u2:1:pix") == "xyz:u2:1:pix"


def test_custom_prefixes() -> None:
    assert parse_user_id_from_reference("shop:u7:1:card", prefixes=("shop",)) == "u7"


def test_prefixed_reference_with_empty_user_segment() -> None:
    assert parse_user_id_from_reference("rbc::99:pix") is None
