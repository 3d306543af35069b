"""Tests for grouping CSV rows into conversations."""

import pytest

from convosim.services.conversation_grouper import (
    RowShape,
    Turn,
    classify_row,
    group_conversations,
    is_wide,
    parse_turn_number,
)
from convosim.services.errors import EmptyInputError


def texts(turns: list[Turn]) -> list[str]:
    return [t.text for t in turns]


class TestClassifyRow:
    """Each row maps to exactly one shape."""

    @pytest.mark.parametrize(
        "row, expected",
        [
            ({"conversation_id": "A", "user_input": "hi"}, RowShape.EXPLICIT),
            (
                {"conversation_id": "A", "user_input": "hi", "turn_number": "1"},
                RowShape.EXPLICIT,
            ),
            ({"test_name": "greet", "message": "hello"}, RowShape.EXPLICIT),
            ({"id": "A", "t1": "hi", "t2": "bye"}, RowShape.WIDE),
            ({"name": "A", "t1": "hi", "t2": "bye"}, RowShape.WIDE),
            ({"case": "A", "opening": "hi"}, RowShape.WIDE),
            ({"user_input": "hi"}, RowShape.SINGLETON),
            ({"query": "hi", "user_input": ""}, RowShape.SINGLETON),
            ({"conversation_id": "A", "user_input": ""}, RowShape.DROPPED),
            ({"notes": ""}, RowShape.DROPPED),
        ],
    )
    def test_decision_table(self, row, expected):
        """Rows classify per the explicit-id / utterance / wide table."""
        assert classify_row(row) is expected

    def test_two_columns_with_utterance_second_is_not_wide(self):
        assert not is_wide({"test_name": "greet", "message": "hello"})

    def test_two_columns_without_utterance_second_is_wide(self):
        assert is_wide({"case": "A", "opening": "hi"})


class TestParseTurnNumber:
    """Turn numbers default to zero."""

    @pytest.mark.parametrize(
        "raw, expected", [("3", 3), (" 7 ", 7), ("", 0), (None, 0), ("abc", 0)]
    )
    def test_parse(self, raw, expected):
        assert parse_turn_number(raw) == expected


class TestGroupConversations:
    """Grouping rows into ordered conversations."""

    def test_explicit_rows_keep_input_order(self):
        """Two rows sharing a test_name become one two-turn conversation."""
        rows = [
            {"test_name": "greet", "message": "hello"},
            {"test_name": "greet", "message": "how are you"},
        ]

        result = group_conversations(rows)

        assert list(result) == ["greet"]
        assert texts(result["greet"]) == ["hello", "how are you"]

    def test_turns_sorted_by_turn_number(self):
        rows = [
            {"conversation_id": "A", "user_input": "hi", "turn_number": "2"},
            {"conversation_id": "A", "user_input": "bye", "turn_number": "1"},
        ]

        result = group_conversations(rows)

        assert texts(result["A"]) == ["bye", "hi"]

    def test_equal_turn_numbers_keep_input_order(self):
        rows = [
            {"conversation_id": "A", "user_input": "first"},
            {"conversation_id": "A", "user_input": "second"},
            {"conversation_id": "A", "user_input": "third"},
        ]

        result = group_conversations(rows)

        assert texts(result["A"]) == ["first", "second", "third"]
        assert [t.turn_number for t in result["A"]] == [1, 2, 3]

    def test_unnumbered_turns_numbered_by_position(self):
        rows = [
            {"test_name": "greet", "message": "hello"},
            {"test_name": "greet", "message": "how are you"},
        ]

        result = group_conversations(rows)

        assert [(t.turn_number, t.text) for t in result["greet"]] == [
            (1, "hello"),
            (2, "how are you"),
        ]

    def test_explicit_numbers_kept_alongside_unnumbered(self):
        rows = [
            {"conversation_id": "A", "user_input": "late", "turn_number": "5"},
            {"conversation_id": "A", "user_input": "early", "turn_number": ""},
        ]

        result = group_conversations(rows)

        assert [(t.turn_number, t.text) for t in result["A"]] == [
            (1, "early"),
            (5, "late"),
        ]

    def test_conversation_ids_in_first_appearance_order(self):
        rows = [
            {"conversation_id": "B", "user_input": "b1"},
            {"conversation_id": "A", "user_input": "a1"},
            {"conversation_id": "B", "user_input": "b2"},
        ]

        assert list(group_conversations(rows)) == ["B", "A"]

    def test_singleton_rows_named_by_row_index(self):
        rows = [{"user_input": "hi"}, {"user_input": "bye"}]

        result = group_conversations(rows)

        assert list(result) == ["conv_1", "conv_2"]
        assert texts(result["conv_2"]) == ["bye"]

    def test_wide_row_uses_first_column_as_id(self):
        rows = [{"name": "order", "t1": "I want pizza", "t2": "large", "t3": "thanks"}]

        result = group_conversations(rows)

        assert texts(result["order"]) == ["I want pizza", "large", "thanks"]
        assert [t.turn_number for t in result["order"]] == [1, 2, 3]

    def test_wide_row_with_explicit_id_column(self):
        rows = [{"t1": "hi", "id": "X", "t2": "bye"}]

        result = group_conversations(rows)

        assert texts(result["X"]) == ["hi", "bye"]

    def test_wide_row_with_blank_id_uses_row_index(self):
        rows = [
            {"name": "a", "t1": "x", "t2": "y"},
            {"name": "", "t1": "hello", "t2": "there"},
        ]

        result = group_conversations(rows)

        assert texts(result["conv_2"]) == ["hello", "there"]

    def test_wide_row_skips_empty_cells(self):
        rows = [{"name": "A", "t1": "hi", "t2": "", "t3": "bye"}]

        result = group_conversations(rows)

        assert texts(result["A"]) == ["hi", "bye"]
        assert [t.turn_number for t in result["A"]] == [1, 2]

    def test_wide_rows_continue_numbering(self):
        """A conversation spread over two wide rows keeps row order."""
        rows = [
            {"name": "A", "t1": "one", "t2": "two"},
            {"name": "A", "t1": "three", "t2": "four"},
        ]

        result = group_conversations(rows)

        assert texts(result["A"]) == ["one", "two", "three", "four"]
        assert [t.turn_number for t in result["A"]] == [1, 2, 3, 4]

    def test_explicit_id_wins_over_wide_layout(self):
        rows = [
            {"conversation_id": "A", "user_input": "hi", "turn_number": "1", "notes": "x"}
        ]

        result = group_conversations(rows)

        assert texts(result["A"]) == ["hi"]

    def test_utterance_field_priority(self):
        rows = [{"conversation_id": "A", "input": "second", "user_input": "first"}]

        assert texts(group_conversations(rows)["A"]) == ["first"]

    def test_dropped_rows_are_ignored(self):
        rows = [
            {"conversation_id": "A", "user_input": ""},
            {"conversation_id": "A", "user_input": "kept"},
        ]

        assert texts(group_conversations(rows)["A"]) == ["kept"]

    def test_turn_count_never_exceeds_usable_rows(self):
        rows = [
            {"conversation_id": "A", "user_input": "1"},
            {"conversation_id": "B", "user_input": ""},
            {"conversation_id": "C", "user_input": "3"},
        ]

        result = group_conversations(rows)

        assert sum(len(t) for t in result.values()) <= 2

    def test_grouping_is_idempotent(self):
        rows = [
            {"conversation_id": "A", "user_input": "hi", "turn_number": "2"},
            {"user_input": "lonely"},
            {"conversation_id": "A", "user_input": "bye", "turn_number": "1"},
        ]

        assert group_conversations(rows) == group_conversations(rows)

    def test_does_not_mutate_input_rows(self):
        rows = [{"conversation_id": "A", "user_input": " hi "}]
        snapshot = [dict(r) for r in rows]

        group_conversations(rows)

        assert rows == snapshot


class TestEmptyInput:
    """Inputs without usable turns are rejected."""

    def test_no_rows(self):
        with pytest.raises(EmptyInputError) as exc_info:
            group_conversations([])
        assert exc_info.value.code == "E-1002"

    def test_every_row_dropped(self):
        rows = [{"conversation_id": "A", "user_input": ""}, {"notes": ""}]

        with pytest.raises(EmptyInputError):
            group_conversations(rows)
