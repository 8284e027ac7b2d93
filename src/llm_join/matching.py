import io
import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

import httpx
import pandas as pd
from tqdm.auto import tqdm

from .config import LLMRequestConfig, validate_llm_config
from .exceptions import InvalidInputError, ParseError
from .formatting import format_table
from .llm import chat_llm
from .preprocess import clean_cells, normalize_series, unique_keys, validate_join_inputs
from .prompts import EQUALITY_SEPARATOR, build_check_prompt, build_join_prompt

logger = logging.getLogger(__name__)

# models like to wrap the table in a ```csv fence
_FENCE_RE = re.compile(r"```|csv")
_RULE_CELL_RE = re.compile(r"^:?-+:?$")
_BULLET_RE = re.compile(r"^[-*•]\s+")
_PHRASE_STRIP = " \t,;.\"'`"

_LEFT_BRIDGE = "__llm_join_left_key"
_RIGHT_BRIDGE = "__llm_join_right_key"


def connector_names(key1: str, key2: str) -> Tuple[str, str]:
    return (key1, key2) if key1 != key2 else (key1, f"{key2}_y")

def _split_pipe_row(line: str) -> List[str]:
    line = line.strip()
    if line.startswith("|"):
        line = line[1:]
    if line.endswith("|"):
        line = line[:-1]
    return [cell.strip() for cell in line.split("|")]

def _read_csv_rows(lines: List[str], text: str) -> pd.DataFrame:
    # header=None/index_col=False: pandas must not turn a surplus first field into the index
    long_rows = []
    try:
        raw = pd.read_csv(
            io.StringIO("\n".join(lines)),
            header=None,
            index_col=False,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            engine="python",
            on_bad_lines=lambda fields: long_rows.append(fields),
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ParseError(f"Failed to parse connector: {e}\nRaw response: {text}") from e

    # short rows are padded with NaN, explicit blanks stay ""
    short_rows = raw.index[raw.isna().any(axis=1)].tolist()
    if long_rows or short_rows:
        example = long_rows[0] if long_rows else raw.loc[short_rows[0]].tolist()
        raise ParseError(
            f"Inconsistent column count in connector: expected {raw.shape[1]}, got row {example}\nRaw response: {text}"
        )

    header = [str(c) for c in raw.iloc[0]]
    return pd.DataFrame(raw.iloc[1:].to_numpy(), columns=header, dtype="string")

def parse_connector(text: str, names: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Turn the raw connector reply into a two-column table.

    Code fences and the literal "csv" are removed first. Pipe-delimited
    markdown tables and comma-separated text are both accepted; the first
    row is the header. Blank cells become ``<NA>``.

    Parameters
    ----------
    text : str
        Raw LLM reply.
    names : sequence of str, optional
        Column labels to apply, in order (left key, right key).

    Returns
    -------
    pd.DataFrame
        Two columns of dtype ``string``.

    Raises
    ------
    ParseError
        If the reply is empty or does not parse into exactly two columns.
    """
    if text is None:
        raise ParseError("LLM returned no connector text")

    cleaned = _FENCE_RE.sub("", str(text))
    lines = [ln.strip() for ln in cleaned.splitlines() if ln.strip()]
    if not lines:
        raise ParseError("LLM returned an empty connector")

    if lines[0].startswith("|"):
        rows = [_split_pipe_row(ln) for ln in lines]
        rows = [r for r in rows if not all(_RULE_CELL_RE.match(c) for c in r)]
        if not rows:
            raise ParseError(f"Connector has no header row\nRaw response: {text}")
        header, body = rows[0], rows[1:]
        bad = [r for r in body if len(r) != len(header)]
        if bad:
            raise ParseError(f"Inconsistent column count in connector: expected {len(header)}, got row {bad[0]}\nRaw response: {text}")
        df = pd.DataFrame(body, columns=header, dtype="string")
    else:
        df = _read_csv_rows(lines, text)

    if df.shape[1] != 2:
        raise ParseError(f"Connector must have 2 columns, got {df.shape[1]}: {list(df.columns)}\nRaw response: {text}")

    df = clean_cells(df)
    if names is not None:
        df.columns = list(names)
    return df

def build_connector(
    x: pd.DataFrame,
    y: pd.DataFrame,
    key1: str,
    key2: str,
    config: LLMRequestConfig,
    client: Optional[httpx.Client] = None,
) -> pd.DataFrame:
    """Ask the LLM to align the distinct values of ``x[key1]`` and ``y[key2]``."""
    left = unique_keys(x[key1]).to_frame(name=key1)
    right = unique_keys(y[key2]).to_frame(name=key2)
    logger.info(f"Building connector for {len(left)} left and {len(right)} right keys")

    prompt = build_join_prompt(format_table(left), format_table(right))
    reply = chat_llm(prompt, config, client=client)
    connector = parse_connector(reply, names=connector_names(key1, key2))
    logger.info(f"Connector has {len(connector)} rows")
    return connector

def _split_phrases(text: str) -> List[str]:
    """Split the reply into single "X is equal to Y" phrases, several per line allowed."""
    phrases = []
    for line in text.splitlines():
        if EQUALITY_SEPARATOR not in line:
            continue
        current = ""
        for piece in re.split(r"(,\s*)", line):
            if EQUALITY_SEPARATOR in piece and EQUALITY_SEPARATOR in current:
                phrases.append(current)
                current = ""
            current += piece
        if EQUALITY_SEPARATOR in current:
            phrases.append(current)
    return phrases

def parse_flagged_pairs(text: str) -> List[Tuple[str, str]]:
    """
    Read "X is equal to Y" lines back from the verification reply.

    A reply without the separator means nothing was flagged.
    """
    if not text or EQUALITY_SEPARATOR not in text:
        logger.debug("Verification reply flagged nothing")
        return []

    pairs = []
    for phrase in _split_phrases(str(text)):
        left, right = phrase.split(EQUALITY_SEPARATOR, 1)
        left = _BULLET_RE.sub("", left.strip()).strip(_PHRASE_STRIP)
        pairs.append((left, right.strip(_PHRASE_STRIP)))
    return pairs

def filter_connector(
    connector: pd.DataFrame,
    flagged: Sequence[Tuple[str, str]],
    exact: bool = False,
) -> pd.DataFrame:
    """
    Drop connector rows whose left value was flagged.

    By default a row goes when its left value contains any flagged left
    value, so a short flagged key such as "1" also removes "10" and "21".
    Pass ``exact=True`` to remove only exact matches. Rows are never added
    or altered.
    """
    lefts = list(dict.fromkeys(left for left, _ in flagged if left))
    if connector.empty or not lefts:
        return connector.reset_index(drop=True)

    col = connector.iloc[:, 0].astype("string")
    if exact:
        hit = col.isin(lefts)
    else:
        hit = col.str.contains("|".join(re.escape(v) for v in lefts), regex=True)
    hit = hit.fillna(False).astype(bool).to_numpy()

    if hit.any():
        removed = connector[hit].iloc[:, :2].itertuples(index=False, name=None)
        logger.warning(
            f"Verification removed {int(hit.sum())} connector row(s): {list(removed)}"
        )
    return connector[~hit].reset_index(drop=True)

def check_connector(
    connector: pd.DataFrame,
    config: LLMRequestConfig,
    client: Optional[httpx.Client] = None,
    exact: bool = False,
) -> pd.DataFrame:
    """Second LLM pass: let the model flag suspicious pairs and drop them."""
    if connector.empty:
        return connector.reset_index(drop=True)

    prompt = build_check_prompt(connector.iloc[:, :2].itertuples(index=False, name=None))
    reply = chat_llm(prompt, config, client=client)
    return filter_connector(connector, parse_flagged_pairs(reply), exact=exact)

def _bridge(connector: pd.DataFrame) -> pd.DataFrame:
    if connector.shape[1] < 2:
        raise InvalidInputError(f"Connector must have 2 columns, got {connector.shape[1]}")
    bridge = connector.iloc[:, :2].copy()
    bridge.columns = [_LEFT_BRIDGE, _RIGHT_BRIDGE]
    bridge = clean_cells(bridge)
    return bridge.dropna(subset=[_LEFT_BRIDGE]).drop_duplicates()

def join_with_connector(
    x: pd.DataFrame,
    y: pd.DataFrame,
    key1: str,
    key2: str,
    connector: pd.DataFrame,
    suffixes: Tuple[str, str] = ("_x", "_y"),
) -> pd.DataFrame:
    """
    Left-join ``x`` to the connector, then the result to ``y``.

    Keys are compared as stripped strings. The connector's first column
    holds ``x[key1]`` values and its second ``y[key2]`` values.
    """
    bridge = _bridge(connector)

    left = x.assign(**{_LEFT_BRIDGE: normalize_series(x[key1])})
    merged = left.merge(bridge, on=_LEFT_BRIDGE, how="left")

    right = y.assign(**{_RIGHT_BRIDGE: normalize_series(y[key2])}).dropna(subset=[_RIGHT_BRIDGE])
    merged = merged.merge(right, on=_RIGHT_BRIDGE, how="left", suffixes=suffixes)
    return merged.drop(columns=[_LEFT_BRIDGE, _RIGHT_BRIDGE])

def join_summary(
    x: pd.DataFrame,
    y: pd.DataFrame,
    key1: str,
    key2: str,
    connector: pd.DataFrame,
) -> Dict:
    bridge = _bridge(connector)
    right_keys = normalize_series(y[key2]).dropna()
    linked = bridge[bridge[_RIGHT_BRIDGE].isin(right_keys)]
    matched_mask = normalize_series(x[key1]).isin(linked[_LEFT_BRIDGE]).fillna(False).astype(bool)

    total_left = len(x)
    match_count = int(matched_mask.sum())
    return {
        "total_left_rows": total_left,
        "total_right_rows": int(len(y)),
        "connector_rows": int(len(connector)),
        "match_count": match_count,
        "unmatched_count": total_left - match_count,
        "matched_ratio": float(match_count / total_left) if total_left > 0 else 0.0,
    }

def llm_join(
    x: pd.DataFrame,
    y: pd.DataFrame,
    key1: str,
    key2: str,
    config: Optional[LLMRequestConfig] = None,
    *,
    verify: bool = True,
    exact: bool = False,
    suffixes: Tuple[str, str] = ("_x", "_y"),
    show_progress: bool = False,
    client: Optional[httpx.Client] = None,
    **options,
) -> pd.DataFrame:
    """
    Fuzzy-join two dataframes whose key columns do not match exactly.

    Parameters
    ----------
    x : pd.DataFrame
        Left-hand table; every row is kept.
    y : pd.DataFrame
        Right-hand table.
    key1 : str
        Key column of ``x``.
    key2 : str
        Key column of ``y``.
    config : LLMRequestConfig, optional
        Endpoint configuration. Loaded (and verified once) from the
        credential file when omitted.
    verify : bool, default True
        Run the second LLM pass that removes suspicious pairs.
    exact : bool, default False
        Remove only exact left-value matches during verification.
    suffixes : tuple of str
        Suffixes for overlapping column names, as in ``DataFrame.merge``.
    show_progress : bool, default False
        Show a progress bar over the join stages.
    client : httpx.Client, optional
        HTTP client used for every request.
    **options
        ``model``, ``temperature``, ``max_tokens`` or ``timeout`` overrides.

    Returns
    -------
    pd.DataFrame
        Rows of ``x`` with the columns of ``y`` attached where a match exists.

    Examples
    --------
    >>> x = pd.DataFrame({"id": ["01", "02", "04"], "value": [10, 20, 40]})
    >>> y = pd.DataFrame({"month": ["January", "Feb", "May"], "amount": [100, 200, 400]})
    >>> llm_join(x, y, key1="id", key2="month", model="gpt-4.1-mini")  # doctest: +SKIP
    """
    validate_join_inputs(x, y, key1, key2)
    if config is None:
        config = validate_llm_config(client=client)
    config = config.with_options(**options)

    n_stages = 3 if verify else 2
    with tqdm(total=n_stages, desc="LLM join", unit="stage", disable=not show_progress) as bar:
        connector = build_connector(x, y, key1, key2, config, client=client)
        bar.update(1)

        if verify:
            connector = check_connector(connector, config, exact=exact, client=client)
            bar.update(1)

        result = join_with_connector(x, y, key1, key2, connector, suffixes=suffixes)
        bar.update(1)

    stats = join_summary(x, y, key1, key2, connector)
    logger.info(
        f"Joined {stats['match_count']:,} of {stats['total_left_rows']:,} left rows "
        f"({stats['matched_ratio']:.1%}) through {stats['connector_rows']:,} connector rows"
    )
    return result
