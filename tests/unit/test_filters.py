"""
Unit tests for activity filter criteria.
"""

import pytest
from datetime import datetime
import pytz

from planhub.database.store import Filter
from planhub.exceptions import ValidationError
from planhub.services.filters import build_activity_filters


class TestBuildActivityFilters:
    """Test translation of criteria into store filters."""

    def test_empty_criteria(self):
        assert build_activity_filters(None, "UTC") == []
        assert build_activity_filters({}, "UTC") == []

    def test_single_enum_value(self):
        assert build_activity_filters({"status": "completed"}, "UTC") == [Filter("status", "==", "completed")]

    def test_enum_list_becomes_in(self):
        filters = build_activity_filters({"priority": ["high", "urgent"]}, "UTC")
        assert filters == [Filter("priority", "in", ["high", "urgent"])]

    def test_invalid_enum_value(self):
        with pytest.raises(ValidationError):
            build_activity_filters({"status": "done-ish"}, "UTC")

    def test_equality_fields(self):
        filters = build_activity_filters({"assignee": "u1", "section_id": "s1"}, "UTC")
        assert Filter("assignee", "==", "u1") in filters
        assert Filter("section_id", "==", "s1") in filters

    def test_tags_match_any(self):
        assert build_activity_filters({"tags": "urgent"}, "UTC") == [
            Filter("tags", "array-contains-any", ["urgent"])
        ]

    def test_due_range_from_iso_strings(self):
        filters = build_activity_filters({
            "due_after": "2026-03-01T00:00:00",
            "due_before": "2026-03-31T23:59:00",
        }, "UTC")

        assert Filter("due_date", ">=", datetime(2026, 3, 1)) in filters
        assert Filter("due_date", "<=", datetime(2026, 3, 31, 23, 59)) in filters

    def test_aware_due_date_is_normalized(self):
        aware = datetime(2026, 3, 1, 12, 0, tzinfo=pytz.UTC)

        (f,) = build_activity_filters({"due_before": aware}, "UTC")

        assert f.value.tzinfo is None

    def test_aware_due_date_uses_given_timezone(self):
        aware = datetime(2026, 3, 1, 4, 0, tzinfo=pytz.UTC)

        (f,) = build_activity_filters({"due_after": aware}, "Asia/Tokyo")

        assert f == Filter("due_date", ">=", datetime(2026, 3, 1, 13, 0))

    def test_invalid_date(self):
        with pytest.raises(ValidationError):
            build_activity_filters({"due_before": "next tuesday"}, "UTC")

    def test_none_values_ignored(self):
        assert build_activity_filters({"status": None}, "UTC") == []

    def test_unknown_key(self):
        with pytest.raises(ValidationError):
            build_activity_filters({"owner": "u1"}, "UTC")
