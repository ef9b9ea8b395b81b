import logging
from pathlib import Path
from typing import Optional, Dict, Any, List, Mapping, Sequence, Union

import duckdb
import numpy as np
import pandas as pd

from .inference import DEFAULT_CONFIDENCE_LEVEL
from .poolers import DEFAULT_COLUMNS, Engine, get_pooler
from .exceptions import InvalidRecord
from .records import PerImputationResult
from .table import ResultTable

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("coefficient", "estimate", "std_error", "df")
_POSITION_COL = "_mipool_pos"
_REGISTERED_VIEW = "_mipool_records"


# ============================================================================
# Data Source Utilities
# ============================================================================

_FILE_READERS = {".csv": "read_csv", ".parquet": "read_parquet"}


def _resolve_table_name(data_path: Path) -> str:
    """Create DuckDB table reference from data path"""
    if data_path.is_file():
        suffix = data_path.suffix.lower()
        if suffix not in _FILE_READERS:
            raise ValueError(f"Unsupported file format: {suffix}. Supported: {list(_FILE_READERS.keys())}")
        return f"{_FILE_READERS[suffix]}('{data_path}')"
    elif data_path.is_dir():
        return f"read_parquet('{data_path}/**/*.parquet')"
    raise ValueError(f"Data path not found: {data_path}")


def _resolve_columns(columns: Optional[Mapping[str, str]]) -> Dict[str, str]:
    resolved = {**DEFAULT_COLUMNS, **(columns or {})}
    unknown = set(resolved) - set(DEFAULT_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown column keys: {sorted(unknown)}. Expected: {list(DEFAULT_COLUMNS)}")
    return resolved


def _check_columns(available, columns: Dict[str, str]):
    missing = [columns[key] for key in REQUIRED_COLUMNS if columns[key] not in available]
    if missing:
        raise KeyError(f"Missing columns in per-imputation data: {missing}")


def _apply_duckdb_config(conn: duckdb.DuckDBPyConnection, config: Optional[Dict[str, Any]]):
    """Apply DuckDB configuration settings"""
    if config:
        for key, value in config.items():
            conn.execute(f"SET {key} = '{value}'")


# ============================================================================
# DataFrame Conversion
# ============================================================================

def _imputation_label(value):
    if value is None or pd.isna(value):
        return None
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return int(value)
    # Non-numeric labels (e.g. "imp1") are kept as given
    return value


def records_from_dataframe(
    df: pd.DataFrame,
    columns: Optional[Mapping[str, str]] = None,
) -> List[PerImputationResult]:
    """Convert a long-format DataFrame (one row per imputation and coefficient) to records.

    Args:
        df: Per-imputation estimates
        columns: Mapping from logical names (coefficient, estimate, std_error, df,
            imputation) to the DataFrame's column names

    Returns:
        List of PerImputationResult in row order
    """
    columns = _resolve_columns(columns)
    _check_columns(df.columns, columns)

    has_imputation = columns["imputation"] in df.columns
    imputations = df[columns["imputation"]] if has_imputation else [None] * len(df)

    names = df[columns["coefficient"]]
    if names.isna().any():
        raise InvalidRecord(f"{int(names.isna().sum())} records have no coefficient name")

    records = []
    for name, estimate, se, dof, imp in zip(
        names,
        df[columns["estimate"]].astype(float),
        df[columns["std_error"]].astype(float),
        df[columns["df"]].astype(float),
        imputations,
    ):
        records.append(PerImputationResult(
            coefficient_name=str(name),
            estimate=float(estimate),
            standard_error=float(se),
            degrees_of_freedom=float(dof),
            imputation=_imputation_label(imp),
        ))
    return records


def _imputation_column(labels: List[Any]):
    if all(label is None or isinstance(label, int) for label in labels):
        return pd.array(labels, dtype="Int64")
    return pd.Series(labels, dtype=object)


def records_to_dataframe(records: Sequence[PerImputationResult]) -> pd.DataFrame:
    """Inverse of records_from_dataframe using the default column names."""
    return pd.DataFrame({
        DEFAULT_COLUMNS["coefficient"]: [r.coefficient_name for r in records],
        DEFAULT_COLUMNS["estimate"]: np.array([r.estimate for r in records], dtype=float),
        DEFAULT_COLUMNS["std_error"]: np.array([r.standard_error for r in records], dtype=float),
        DEFAULT_COLUMNS["df"]: np.array([r.degrees_of_freedom for r in records], dtype=float),
        DEFAULT_COLUMNS["imputation"]: _imputation_column([r.imputation for r in records]),
    })


# ============================================================================
# High-level API
# ============================================================================

def pool_imputations(
    data: Union[Sequence[PerImputationResult], pd.DataFrame, str, Path],
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    null_values: Optional[Mapping[str, float]] = None,
    engine: str = Engine.NUMPY,
    columns: Optional[Mapping[str, str]] = None,
    n_jobs: int = 1,
    progress: bool = False,
    conn: Optional[duckdb.DuckDBPyConnection] = None,
    duckdb_kwargs: Optional[Dict[str, Any]] = None,
) -> ResultTable:
    """High-level API pooling per-imputation estimates with Barnard-Rubin degrees of freedom

    Args:
        data: Sequence of PerImputationResult, a long-format DataFrame, or a path to a
            .csv/.parquet file or directory of .parquet files
        confidence_level: Coverage of the two-sided confidence intervals
        null_values: Per-coefficient null hypothesis values (default 0)
        engine: 'numpy' for in-memory pooling or 'duckdb' for grouped SQL aggregation
        columns: Column name mapping for DataFrame/file input
        n_jobs: Number of parallel jobs across coefficients
        progress: Show a progress bar
        conn: Existing DuckDB connection; an in-memory one is opened (and closed) otherwise
        duckdb_kwargs: Dictionary of DuckDB configuration settings

    Returns:
        ResultTable with one row per coefficient in first-seen order
    """
    logger.debug(f"=== pool_imputations START (engine={engine}) ===")

    if engine not in (Engine.NUMPY, Engine.DUCKDB):
        raise ValueError(f"Unknown engine: {engine}. Use 'numpy' or 'duckdb'")
    columns = _resolve_columns(columns)
    table_kwargs = dict(confidence_level=confidence_level, null_values=null_values,
                        n_jobs=n_jobs, progress=progress)

    is_path = isinstance(data, (str, Path))
    if engine == Engine.NUMPY and not is_path:
        records = records_from_dataframe(data, columns) if isinstance(data, pd.DataFrame) else list(data)
        table = ResultTable.build(records, **table_kwargs)
        logger.debug(f"=== pool_imputations END ===")
        return table

    owns_conn = conn is None
    if owns_conn:
        conn = duckdb.connect()
    _apply_duckdb_config(conn, duckdb_kwargs)

    try:
        if is_path:
            source = _resolve_table_name(Path(data).resolve())
            available = {col[0] for col in conn.execute(f"SELECT * FROM {source} LIMIT 0").description}
            _check_columns(available, columns)
            if engine == Engine.NUMPY:
                df = conn.execute(f"SELECT * FROM {source}").fetchdf()
                records = records_from_dataframe(df, columns)
            else:
                stats = get_pooler(engine, conn).sufficient_stats(source, columns)
        else:
            if isinstance(data, pd.DataFrame):
                df = data
                _check_columns(df.columns, columns)
            else:
                df = records_to_dataframe(list(data))
                columns = dict(DEFAULT_COLUMNS)
            conn.register(_REGISTERED_VIEW, df.assign(**{_POSITION_COL: np.arange(len(df))}))
            try:
                stats = get_pooler(engine, conn).sufficient_stats(
                    _REGISTERED_VIEW, columns, order_col=_POSITION_COL
                )
            finally:
                conn.unregister(_REGISTERED_VIEW)
    finally:
        if owns_conn:
            conn.close()

    if engine == Engine.NUMPY:
        table = ResultTable.build(records, **table_kwargs)
    else:
        table = ResultTable.from_sufficient_stats(stats, **table_kwargs)
    logger.debug(f"=== pool_imputations END ===")
    return table


__all__ = [
    'pool_imputations',
    'records_from_dataframe',
    'records_to_dataframe',
    'REQUIRED_COLUMNS',
]
