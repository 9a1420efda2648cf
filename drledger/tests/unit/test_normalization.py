from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from drledger.core.errors import ValidationError
from drledger.domain.normalization import (
    BACKUP_TYPES,
    KEY_MAX_LENGTH,
    assert_in_set,
    coerce_integer,
    coerce_non_negative_integer,
    coerce_positive_integer,
    coerce_timestamp,
    normalize_dataset_scope,
    normalize_issues,
    normalize_key,
    sanitize_choice,
    to_iso,
)


@pytest.mark.parametrize(
    "raw",
    [
        "Prod Full 2024/10/01",
        "  --Weird__Key..With---Runs--  ",
        "ALREADY-normal",
        "a" * 400,
        "-._",
        "prod.db_primary-01",
        "ünïcode keys",
    ],
)
def test_normalize_key_is_idempotent(raw: str) -> None:
    # Re-normalizing a stored key must never change it.
    once = normalize_key(raw)
    assert normalize_key(once) == once


def test_normalize_key_lowercases_and_collapses_separators() -> None:
    # Invalid characters become dashes and separator runs collapse to the first one.
    assert normalize_key("Prod Full 2024/10/01") == "prod-full-2024-10-01"
    assert normalize_key("a__b--c..d") == "a_b-c.d"
    assert normalize_key("--edge--") == "edge"


def test_normalize_key_caps_length_without_trailing_separator() -> None:
    # Truncation must not leave a dangling separator at the cut point.
    raw = ("x" * (KEY_MAX_LENGTH - 1)) + "-tail"
    key = normalize_key(raw)
    assert len(key) <= KEY_MAX_LENGTH
    assert not key.endswith("-")


def test_normalize_key_of_empty_values() -> None:
    assert normalize_key(None) == ""
    assert normalize_key("   ") == ""
    assert normalize_key("///") == ""


def test_sanitize_choice_falls_back_silently() -> None:
    # Persistence-time enums downgrade to the default instead of raising.
    assert sanitize_choice("bogus", BACKUP_TYPES, "full") == "full"
    assert sanitize_choice(" Incremental ", BACKUP_TYPES, "full") == "incremental"
    assert sanitize_choice(None, BACKUP_TYPES, "full") == "full"


def test_assert_in_set_is_strict() -> None:
    # Filter paths reject unknown values outright.
    assert assert_in_set(None, BACKUP_TYPES, "bad") is None
    assert assert_in_set("LOGICAL", BACKUP_TYPES, "bad") == "logical"
    with pytest.raises(ValidationError) as exc_info:
        assert_in_set("bogus", BACKUP_TYPES, "Unsupported backup type.")
    assert exc_info.value.kind == "validation"
    assert exc_info.value.message == "Unsupported backup type."


def test_integer_coercion_rules() -> None:
    # Numbers truncate, junk and booleans fall back, negatives collapse to null.
    assert coerce_integer("42") == 42
    assert coerce_integer(12.9) == 12
    assert coerce_integer("7.8") == 7
    assert coerce_integer("nan") is None
    assert coerce_integer(True, 3) == 3
    assert coerce_non_negative_integer(-5) is None
    assert coerce_non_negative_integer(0) == 0
    assert coerce_positive_integer(0, 30) == 30
    assert coerce_positive_integer("45", 30) == 45


def test_coerce_timestamp_assumes_utc_for_naive_values() -> None:
    naive = datetime(2024, 1, 2, 10, 0, 0)
    assert coerce_timestamp(naive) == naive.replace(tzinfo=timezone.utc)
    offset = datetime(2024, 1, 2, 12, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    assert coerce_timestamp(offset) == datetime(2024, 1, 2, 10, 0, 0, tzinfo=timezone.utc)
    assert coerce_timestamp("2024-01-02T10:00:00+00:00").hour == 10
    assert coerce_timestamp("not a date") is None
    assert to_iso(None) is None
    assert to_iso(naive) == "2024-01-02T10:00:00+00:00"


def test_normalize_dataset_scope_shapes() -> None:
    # Lists wrap under datasets, scalars become a description, empties become {}.
    assert normalize_dataset_scope(["orders", "users"]) == {"datasets": ["orders", "users"]}
    assert normalize_dataset_scope({"tables": ["a"]}) == {"tables": ["a"]}
    assert normalize_dataset_scope("nightly tables") == {"description": "nightly tables"}
    assert normalize_dataset_scope(None) == {}
    assert normalize_dataset_scope([]) == {}


def test_normalize_issues_drops_blank_entries() -> None:
    assert normalize_issues(["  dns lag ", "", None, "replica stale"]) == ["dns lag", "replica stale"]
    assert normalize_issues("single issue") == ["single issue"]
    assert normalize_issues({"not": "a list"}) == []
