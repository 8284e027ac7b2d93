from typing import Optional, Sequence, Union

import pandas as pd

from .exceptions import InvalidInputError

TableLike = Union[pd.DataFrame, pd.Series, Sequence]


def format_cell(value) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value)


def format_table(tbl: TableLike, name: Optional[str] = None) -> str:
    """
    Render a DataFrame, Series or bare sequence as a markdown-style table.

    Parameters
    ----------
    tbl : pd.DataFrame, pd.Series or sequence
        Values to render. A DataFrame supplies its own column names.
    name : str, optional
        Column name for a Series or bare sequence. Required for a bare
        sequence (and for a Series without a name).

    Returns
    -------
    str
        Header line, rule line and one line per row, pipe-delimited.
    """
    if isinstance(tbl, pd.DataFrame):
        names = [str(c) for c in tbl.columns]
        rows = [[format_cell(v) for v in row] for row in tbl.itertuples(index=False, name=None)]
    else:
        if name is None and isinstance(tbl, pd.Series) and tbl.name is not None:
            name = tbl.name
        if name is None:
            raise InvalidInputError("provide a valid name for the input vector.")
        if isinstance(tbl, (str, bytes)):
            raise InvalidInputError("expected a sequence of values, got a single string.")
        names = [str(name)]
        rows = [[format_cell(v)] for v in tbl]

    if not names:
        raise InvalidInputError("cannot format a table without columns.")

    header = "| " + " | ".join(names) + " |"
    rule = "| " + " | ".join(["---"] * len(names)) + " |"
    content = ["| " + " | ".join(row) + " |" for row in rows]
    return "\n".join([header, rule, *content])
