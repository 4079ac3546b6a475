"""Tests for Record defined-field tracking and path helpers."""

from enum import Enum

import pytest

from upsert_orm.records import get_path, is_zero, set_path

from sample_models import Blog, Simple, User


class Color(str, Enum):
    RED = "red"


class TestIsZero:
    """Verify zero-value detection."""

    @pytest.mark.parametrize("value", [None, "", b"", [], {}, (), set(), 0, 0.0, False])
    def test_zero_values(self, value: object) -> None:
        """Empty and falsy scalars are zero."""
        assert is_zero(value)

    @pytest.mark.parametrize("value", ["a", [0], {"a": None}, 1, -1, True, Color.RED, object()])
    def test_non_zero_values(self, value: object) -> None:
        """Everything else is non-zero."""
        assert not is_zero(value)


class TestDefinedFields:
    """Verify full-replace vs partial mode."""

    def test_full_mode_defines_everything(self) -> None:
        """Records are full-replace by default."""
        record = Simple(name="a")
        assert not record.is_partial
        assert record.is_field_defined("type")

    def test_partial_mode_uses_fields_set(self) -> None:
        """Partial records define only provided or non-zero fields."""
        record = Simple(name="a", type="").mark_partial()
        assert record.is_partial
        assert record.is_field_defined("name")
        assert record.is_field_defined("type")
        assert not record.is_field_defined("id")

    def test_partial_mode_counts_later_assignments(self) -> None:
        """Values set after construction count as defined."""
        record = Simple().mark_partial()
        assert not record.is_field_defined("name")
        record.name = "later"
        assert record.is_field_defined("name")

    def test_mark_partial_can_be_undone(self) -> None:
        """mark_partial(False) returns to full-replace mode."""
        record = Simple().mark_partial().mark_partial(False)
        assert record.is_field_defined("type")


class TestPaths:
    """Verify dotted path access."""

    def test_get_path(self) -> None:
        """Dotted paths walk related records."""
        blog = Blog(name="b", author=User(name="ann"))
        assert get_path(blog, "author.name") == "ann"

    def test_get_path_through_none(self) -> None:
        """A None hop yields None."""
        assert get_path(Blog(name="b"), "author.name") is None

    def test_set_path(self) -> None:
        """Dotted paths assign on nested records."""
        blog = Blog(name="b", author=User())
        set_path(blog, "author.name", "ann")
        assert blog.author.name == "ann"

    def test_set_path_through_none(self) -> None:
        """Assigning through a None hop is an error."""
        with pytest.raises(ValueError, match="'author' is empty"):
            set_path(Blog(name="b"), "author.name", "ann")
