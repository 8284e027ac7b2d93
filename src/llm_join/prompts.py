from typing import Iterable, Tuple

from .formatting import format_cell

EQUALITY_SEPARATOR = " is equal to "

JOIN_PREAMBLE = (
    "I will provide you with two columns. Please perform a SQL-style FULL JOIN operation "
    "to combine the two columns into a single table based on their relationships.\r\n"
    "Note that the two columns may not match exactly or could even be in different languages.\r\n"
    "I command you to match carefully with the highest possible accuracy. Leave any unmatched "
    "entries blank, and do not generate any data that does not exist in the original tables.\r\n"
    "Repeat: NEVER generate ANY data that does not exist in the tables provided; otherwise, "
    "someone could get hurt as a result.\r\n"
    "The final output must be a table in CSV format, with no instructions or additional "
    "content included.\r\n\n"
)

CHECK_PREAMBLE = (
    "Below are some phrases for judgment. "
    "Please identify any that may be problematic, "
    "filter them out, and return only the problematic phrases. "
    "Do not include any unexpected information: \n\n"
)


def build_join_prompt(left_table: str, right_table: str) -> str:
    return f"{JOIN_PREAMBLE}column 1:\r\n{left_table}\r\n\ncolumn 2:\r\n{right_table}"


def build_check_prompt(pairs: Iterable[Tuple[object, object]]) -> str:
    """Ask the model to echo back only the suspicious "X is equal to Y" phrases."""
    phrases = "".join(
        f"{format_cell(left)}{EQUALITY_SEPARATOR}{format_cell(right)},\n" for left, right in pairs
    )
    return CHECK_PREAMBLE + phrases
