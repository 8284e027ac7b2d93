import pandas as pd

from .exceptions import InvalidInputError


def normalize_series(ser: pd.Series) -> pd.Series:
    return ser.astype("string").str.strip().replace("", pd.NA)

def clean_cells(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for i in range(df.shape[1]):
        df.isetitem(i, normalize_series(df.iloc[:, i]))
    return df

def unique_keys(values) -> pd.Series:
    """
    Collapse a key column to its distinct values, in order of first appearance.

    Missing values are dropped: they cannot be matched and would only
    show up as blank lines in the prompt.
    """
    ser = values if isinstance(values, pd.Series) else pd.Series(list(values))
    return ser.dropna().drop_duplicates().reset_index(drop=True)

def check_key_column(df: pd.DataFrame, key: str) -> dict:
    """
    Describe a key column before it is sent to the LLM.

    Parameters
    ----------
    df : pd.DataFrame
        Input dataframe
    key : str
        Name of the key column

    Returns
    -------
    dict
        - exists: bool
        - n_total: int
        - n_unique: int
        - n_missing: int
        - n_duplicates: int
    """
    if key not in df.columns:
        return {
            "exists": False,
            "error": f"Variable '{key}' not found in dataframe"
        }

    n_total = len(df)
    n_missing = int(df[key].isna().sum())
    n_unique = int(df[key].nunique(dropna=True))
    return {
        "exists": True,
        "n_total": n_total,
        "n_unique": n_unique,
        "n_missing": n_missing,
        "n_duplicates": n_total - n_missing - n_unique,
    }

def validate_join_inputs(x: pd.DataFrame, y: pd.DataFrame, key1: str, key2: str) -> dict:
    """
    Check that both key columns exist and hold at least one value.

    Returns the ``check_key_column`` stats of both sides; raises
    ``InvalidInputError`` listing every issue found otherwise.
    """
    issues = []
    stats = {}
    for side, df, key in (("Left", x, key1), ("Right", y, key2)):
        if not isinstance(df, pd.DataFrame):
            issues.append(f"{side} input is not a DataFrame")
            continue
        key_stats = check_key_column(df, key)
        stats[side.lower()] = key_stats
        if not key_stats["exists"]:
            issues.append(f"{side} key column '{key}' not found")
        elif key_stats["n_unique"] == 0:
            issues.append(f"{side} key column '{key}' has no values")

    if issues:
        raise InvalidInputError(f"Validation failed: {issues}")
    return stats
