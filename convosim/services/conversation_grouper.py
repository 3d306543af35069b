"""Group flat CSV rows into ordered conversations.

Each row is classified into exactly one shape by an explicit decision
table, then expanded into turns:

    explicit id | utterance | wide | shape
    ------------+-----------+------+-----------
    yes         | yes       | any  | EXPLICIT   one turn under the explicit id
    yes         | no        | yes  | WIDE       other columns are turns, id from the id column
    no          | any       | yes  | WIDE       first column is the id, the rest are turns
    no          | yes       | no   | SINGLETON  one turn under conv_<row index + 1>
    otherwise                      | DROPPED

A row is "wide" when it has more than two columns, or exactly two columns
whose second column is not a recognised utterance field.

Grouping is pure and deterministic: the same rows always produce the same
mapping, with conversation ids in first-appearance order and turns stably
sorted by turn_number.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Mapping, Sequence

from convosim.services.errors import EmptyInputError

UTTERANCE_FIELDS = ("user_input", "input", "query", "message")
ID_FIELDS = ("conversation_id", "test_name", "case_name", "id")
TURN_NUMBER_FIELD = "turn_number"


class RowShape(str, Enum):
    """How a single input row contributes to the grouping."""

    EXPLICIT = "explicit"
    WIDE = "wide"
    SINGLETON = "singleton"
    DROPPED = "dropped"


@dataclass(frozen=True)
class Turn:
    """One user utterance to replay, in conversation order."""

    conversation_id: str
    turn_number: int
    text: str


# (has explicit id, has utterance, is wide) -> shape
_SHAPE_TABLE: dict[tuple[bool, bool, bool], RowShape] = {
    (True, True, True): RowShape.EXPLICIT,
    (True, True, False): RowShape.EXPLICIT,
    (True, False, True): RowShape.WIDE,
    (True, False, False): RowShape.DROPPED,
    (False, True, True): RowShape.WIDE,
    (False, False, True): RowShape.WIDE,
    (False, True, False): RowShape.SINGLETON,
    (False, False, False): RowShape.DROPPED,
}


def _first_value(row: Mapping[str, str], fields: Sequence[str]) -> tuple[str, str] | None:
    """Return (column, value) of the first non-empty recognised field."""
    for name in fields:
        value = (row.get(name) or "").strip()
        if value:
            return name, value
    return None


def is_wide(row: Mapping[str, str]) -> bool:
    """True when the row lays out several turns across its columns."""
    keys = list(row.keys())
    if len(keys) > 2:
        return True
    return len(keys) == 2 and keys[1] not in UTTERANCE_FIELDS


def classify_row(row: Mapping[str, str]) -> RowShape:
    """Look up the row's shape in the decision table."""
    key = (
        _first_value(row, ID_FIELDS) is not None,
        _first_value(row, UTTERANCE_FIELDS) is not None,
        is_wide(row),
    )
    return _SHAPE_TABLE[key]


def parse_turn_number(raw: str | None) -> int:
    """Parse a turn_number cell, treating blanks and junk as 0."""
    try:
        return int((raw or "").strip())
    except ValueError:
        return 0


def _wide_identity(row: Mapping[str, str], row_index: int) -> tuple[str, str]:
    """Return (id column, conversation id) for a wide row."""
    explicit = _first_value(row, ID_FIELDS)
    if explicit is not None:
        return explicit
    id_column = next(iter(row.keys()))
    return id_column, (row.get(id_column) or "").strip() or f"conv_{row_index + 1}"


def _wide_cells(row: Mapping[str, str], id_column: str) -> list[str]:
    """Non-empty turn texts of a wide row, in column order."""
    cells = []
    for key, value in row.items():
        if key == id_column:
            continue
        text = (value or "").strip()
        if text:
            cells.append(text)
    return cells


def group_conversations(rows: Sequence[Mapping[str, str]]) -> dict[str, list[Turn]]:
    """Group ordered rows into conversation id -> ordered turns.

    Args:
        rows: Ordered rows as produced by the CSV reader.

    Returns:
        Mapping of conversation id to its turns, sorted by turn number.
        Turns without a usable turn_number sort as 0 and are then numbered
        by their 1-based position in the conversation.

    Raises:
        EmptyInputError: If there are no rows, or no row yields a turn.
    """
    if not rows:
        raise EmptyInputError()

    groups: dict[str, list[Turn]] = {}

    for row_index, row in enumerate(rows):
        shape = classify_row(row)

        if shape is RowShape.DROPPED:
            continue

        if shape is RowShape.WIDE:
            id_column, conversation_id = _wide_identity(row, row_index)
            cells = _wide_cells(row, id_column)
            if not cells:
                continue
            bucket = groups.setdefault(conversation_id, [])
            # Numbering continues across rows of the same conversation
            start = len(bucket)
            bucket.extend(
                Turn(conversation_id, start + offset, text)
                for offset, text in enumerate(cells, 1)
            )
            continue

        _, text = _first_value(row, UTTERANCE_FIELDS)  # type: ignore[misc]
        if shape is RowShape.EXPLICIT:
            _, conversation_id = _first_value(row, ID_FIELDS)  # type: ignore[misc]
        else:
            conversation_id = f"conv_{row_index + 1}"
        groups.setdefault(conversation_id, []).append(
            Turn(conversation_id, parse_turn_number(row.get(TURN_NUMBER_FIELD)), text)
        )

    if not groups:
        raise EmptyInputError()

    # sorted() is stable, so equal turn numbers keep input order
    return {
        conversation_id: _number_by_position(sorted(turns, key=lambda t: t.turn_number))
        for conversation_id, turns in groups.items()
    }


def _number_by_position(turns: list[Turn]) -> list[Turn]:
    """Give unnumbered turns (turn_number 0) their 1-based position."""
    return [
        turn if turn.turn_number else replace(turn, turn_number=position)
        for position, turn in enumerate(turns, 1)
    ]
