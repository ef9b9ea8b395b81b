"""
Pooling engines for combining per-imputation estimates.

Provides two approaches:
- NumpyPooler: In-memory pooling of a sequence of PerImputationResult records
- DuckDBPooler: Grouped sufficient statistics computed by a single DuckDB query

Both engines reduce each coefficient's imputations to the same sufficient
statistics and then apply the shared Barnard-Rubin combination in
``combine_moments``.
"""

import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Dict

import duckdb
import numpy as np

from .exceptions import (
    InsufficientImputations,
    DegenerateVariance,
    FractionMissingInfoOutOfRange,
    NonPositiveDegreesOfFreedom,
    InvalidRecord,
)
from .records import PerImputationResult, PooledResult

logger = logging.getLogger(__name__)

# Constants
MIN_IMPUTATIONS = 2
DEFAULT_COLUMNS = {
    "coefficient": "coefficient",
    "estimate": "estimate",
    "std_error": "std_error",
    "df": "df",
    "imputation": "imputation",
}


class Engine:
    """Pooling engines"""
    NUMPY = "numpy"
    DUCKDB = "duckdb"


# ============================================================================
# Sufficient Statistics
# ============================================================================

@dataclass(frozen=True)
class SufficientStats:
    """Per-coefficient moments plus counts of unusable inputs.

    The moment fields are only meaningful when all ``n_bad_*`` counts are zero;
    ``check_sufficient_stats`` enforces that before any combination happens.
    """
    coefficient_name: str
    m: int
    beta_bar: Optional[float] = None
    V_bar: Optional[float] = None
    B: Optional[float] = None
    eta_bar: Optional[float] = None
    n_bad_df: int = 0
    n_bad_estimate: int = 0
    n_bad_se: int = 0


def check_sufficient_stats(stats: SufficientStats) -> None:
    """Raise the matching PoolingError if a group cannot be pooled."""
    name = stats.coefficient_name
    if stats.m < MIN_IMPUTATIONS:
        raise InsufficientImputations(
            f"need at least {MIN_IMPUTATIONS} imputations to estimate "
            f"between-imputation variance, got {stats.m}",
            coefficient_name=name,
        )
    if stats.n_bad_df:
        raise NonPositiveDegreesOfFreedom(
            f"{stats.n_bad_df} of {stats.m} imputations have non-positive "
            f"or non-finite degrees of freedom",
            coefficient_name=name,
        )
    if stats.n_bad_estimate:
        raise InvalidRecord(
            f"{stats.n_bad_estimate} of {stats.m} estimates are not finite",
            coefficient_name=name,
        )
    if stats.n_bad_se:
        raise InvalidRecord(
            f"{stats.n_bad_se} of {stats.m} standard errors are negative or not finite",
            coefficient_name=name,
        )


def combine_moments(stats: SufficientStats) -> PooledResult:
    """Apply the Barnard-Rubin combination to validated moments.

    Returns
    -------
    PooledResult with total variance, fraction of missing information and
    the small-sample combined degrees of freedom.
    """
    name = stats.coefficient_name
    m = stats.m
    inflation = (m + 1) / m

    V_total = stats.V_bar + stats.B * inflation
    if V_total == 0:
        raise DegenerateVariance(
            "total pooled variance is zero (identical estimates and zero standard errors)",
            coefficient_name=name,
        )

    gamma = inflation * stats.B / V_total
    if not 0 <= gamma < 1:
        raise FractionMissingInfoOutOfRange(
            f"fraction of missing information {gamma:.6g} outside [0, 1); "
            f"within-imputation variance is {stats.V_bar:.6g}",
            coefficient_name=name,
        )

    # gamma ** 2 underflows to 0.0 for tiny positive gamma
    gamma_sq = gamma ** 2
    df_m = math.inf if gamma_sq == 0 else (m - 1) / gamma_sq
    eta = stats.eta_bar
    df_obs = eta * (eta + 1) * (1 - gamma) / (eta + 3)
    if math.isinf(df_m):
        df_total = df_obs
    else:
        df_total = 1 / (1 / df_m + 1 / df_obs)

    logger.debug(f"Pooled {name}: m={m}, beta_bar={stats.beta_bar:.6g}, "
                 f"V_total={V_total:.6g}, gamma={gamma:.4f}, df_total={df_total:.4f}")

    return PooledResult(
        coefficient_name=name,
        m=m,
        beta_bar=stats.beta_bar,
        V_bar=stats.V_bar,
        B=stats.B,
        eta_bar=eta,
        V_total=V_total,
        gamma=gamma,
        df_m=df_m,
        df_obs=df_obs,
        df_total=df_total,
    )


def pool_sufficient_stats(stats: SufficientStats) -> PooledResult:
    """Validate and combine one coefficient's sufficient statistics."""
    check_sufficient_stats(stats)
    return combine_moments(stats)


def _quote(identifier: str) -> str:
    """Quote a SQL identifier for DuckDB."""
    return '"' + identifier.replace('"', '""') + '"'


def group_records(records: Sequence[PerImputationResult]) -> Dict[str, List[PerImputationResult]]:
    """Group records by coefficient name, preserving first-seen order."""
    groups: Dict[str, List[PerImputationResult]] = {}
    for record in records:
        if record.coefficient_name is None:
            raise InvalidRecord("record has no coefficient name")
        groups.setdefault(record.coefficient_name, []).append(record)
    return groups


# ============================================================================
# Abstract Base Pooler
# ============================================================================

class BasePooler(ABC):
    """Abstract base class for pooling engines."""

    engine: str = ""

    @abstractmethod
    def sufficient_stats(self, *args, **kwargs) -> List[SufficientStats]:
        """Reduce input to per-coefficient sufficient statistics."""
        pass


# ============================================================================
# Numpy Pooler (In-Memory)
# ============================================================================

class NumpyPooler(BasePooler):
    """
    In-memory pooling of per-imputation records.

    Means and sums of squares use exactly rounded summation (``math.fsum``)
    so the pooled values do not depend on the order of the records.
    """

    engine = Engine.NUMPY

    def pool(self, records: Sequence[PerImputationResult]) -> PooledResult:
        """
        Pool one coefficient's records across imputations.

        Parameters
        ----------
        records : Sequence[PerImputationResult]
            All imputations for a single coefficient

        Returns
        -------
        PooledResult
        """
        return pool_sufficient_stats(self._group_stats(list(records)))

    def sufficient_stats(self, records: Sequence[PerImputationResult]) -> List[SufficientStats]:
        """Sufficient statistics for every coefficient, in first-seen order."""
        return [self._group_stats(group) for group in group_records(records).values()]

    def _group_stats(self, records: List[PerImputationResult]) -> SufficientStats:
        if not records:
            raise InsufficientImputations("no imputations supplied")

        names = {r.coefficient_name for r in records}
        if len(names) > 1:
            raise InvalidRecord(f"records mix coefficients {sorted(names)}")
        name = records[0].coefficient_name

        estimates = np.array([r.estimate for r in records], dtype=float)
        std_errors = np.array([r.standard_error for r in records], dtype=float)
        dfs = np.array([r.degrees_of_freedom for r in records], dtype=float)
        m = len(records)

        counts = dict(
            n_bad_df=int(np.count_nonzero(~np.isfinite(dfs) | ~(dfs > 0))),
            n_bad_estimate=int(np.count_nonzero(~np.isfinite(estimates))),
            n_bad_se=int(np.count_nonzero(~np.isfinite(std_errors) | (std_errors < 0))),
        )
        if m < MIN_IMPUTATIONS or any(counts.values()):
            return SufficientStats(coefficient_name=name, m=m, **counts)

        V_bar = math.fsum(std_errors ** 2) / m
        eta_bar = math.fsum(dfs) / m
        if np.all(estimates == estimates[0]):
            beta_bar, B = float(estimates[0]), 0.0
        else:
            beta_bar = math.fsum(estimates) / m
            B = math.fsum((estimates - beta_bar) ** 2) / (m - 1)

        return SufficientStats(
            coefficient_name=name,
            m=m,
            beta_bar=beta_bar,
            V_bar=V_bar,
            B=B,
            eta_bar=eta_bar,
            **counts,
        )


# ============================================================================
# DuckDB Pooler (Out-of-Core)
# ============================================================================

class DuckDBPooler(BasePooler):
    """
    Grouped pooling using DuckDB aggregate queries.

    Suitable when the per-imputation estimates already live in a DuckDB
    table, a Parquet/CSV file or a large DataFrame; only one row of
    sufficient statistics per coefficient is brought back into Python.
    """

    engine = Engine.DUCKDB

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def sufficient_stats(
        self,
        table_name: str,
        columns: Optional[Dict[str, str]] = None,
        order_col: Optional[str] = None,
    ) -> List[SufficientStats]:
        """
        Compute sufficient statistics for every coefficient with one query.

        Parameters
        ----------
        table_name : str
            Table, view or table function (e.g. ``read_parquet('...')``)
        columns : Dict[str, str], optional
            Mapping of logical column names to source columns
        order_col : str, optional
            Column giving the input position; defaults to scan order

        Returns
        -------
        List of SufficientStats in first-seen coefficient order
        """
        query = self._build_query(table_name, {**DEFAULT_COLUMNS, **(columns or {})}, order_col)
        logger.debug(f"Executing sufficient stats query")
        df = self.conn.execute(query).fetchdf()
        logger.debug(f"DuckDB returned {len(df)} coefficient groups")

        missing = df["coefficient_name"].isna()
        if missing.any():
            n_missing = int(df.loc[missing, "m"].sum())
            raise InvalidRecord(f"{n_missing} records have no coefficient name")

        stats = []
        for row in df.itertuples(index=False):
            m = int(row.m)
            counts = dict(
                n_bad_df=int(row.n_bad_df),
                n_bad_estimate=int(row.n_bad_estimate),
                n_bad_se=int(row.n_bad_se),
            )
            if m < MIN_IMPUTATIONS or any(counts.values()):
                stats.append(SufficientStats(coefficient_name=row.coefficient_name, m=m, **counts))
                continue
            stats.append(SufficientStats(
                coefficient_name=row.coefficient_name,
                m=m,
                beta_bar=float(row.beta_bar),
                V_bar=float(row.V_bar),
                B=0.0 if row.constant_estimate else float(row.B),
                eta_bar=float(row.eta_bar),
                **counts,
            ))
        return stats

    @staticmethod
    def _build_query(table_name: str, columns: Dict[str, str], order_col: Optional[str]) -> str:
        position = _quote(order_col) if order_col else "row_number() OVER ()"
        return f"""
        WITH src AS (
            SELECT
                CAST({_quote(columns['coefficient'])} AS VARCHAR) AS coefficient_name,
                CAST({_quote(columns['estimate'])} AS DOUBLE) AS estimate,
                CAST({_quote(columns['std_error'])} AS DOUBLE) AS standard_error,
                CAST({_quote(columns['df'])} AS DOUBLE) AS degrees_of_freedom,
                {position} AS _pos
            FROM {table_name}
        )
        SELECT
            coefficient_name,
            COUNT(*) AS m,
            MIN(_pos) AS first_seen,
            COUNT(*) FILTER (WHERE degrees_of_freedom IS NULL
                OR NOT isfinite(degrees_of_freedom) OR degrees_of_freedom <= 0) AS n_bad_df,
            COUNT(*) FILTER (WHERE estimate IS NULL OR NOT isfinite(estimate)) AS n_bad_estimate,
            COUNT(*) FILTER (WHERE standard_error IS NULL
                OR NOT isfinite(standard_error) OR standard_error < 0) AS n_bad_se,
            AVG(estimate) FILTER (WHERE isfinite(estimate)) AS beta_bar,
            AVG(standard_error * standard_error) FILTER (WHERE isfinite(standard_error)) AS V_bar,
            AVG(degrees_of_freedom) FILTER (WHERE isfinite(degrees_of_freedom)) AS eta_bar,
            VAR_SAMP(estimate) FILTER (WHERE isfinite(estimate)) AS B,
            MIN(estimate) = MAX(estimate) AS constant_estimate
        FROM src
        GROUP BY coefficient_name
        ORDER BY first_seen
        """


# ============================================================================
# Factory Function
# ============================================================================

def get_pooler(
    engine: str = Engine.NUMPY,
    conn: Optional[duckdb.DuckDBPyConnection] = None,
) -> BasePooler:
    """
    Factory function to get the appropriate pooler.

    Parameters
    ----------
    engine : str
        Either "numpy" for in-memory or "duckdb" for query-based pooling
    conn : duckdb.DuckDBPyConnection, optional
        DuckDB connection (required for duckdb engine)

    Returns
    -------
    BasePooler instance
    """
    if engine == Engine.NUMPY:
        return NumpyPooler()
    elif engine == Engine.DUCKDB:
        if conn is None:
            raise ValueError("DuckDB connection required for duckdb engine")
        return DuckDBPooler(conn=conn)
    else:
        raise ValueError(f"Unknown engine: {engine}. Use 'numpy' or 'duckdb'")


def pool(records: Sequence[PerImputationResult]) -> PooledResult:
    """Pool one coefficient's per-imputation records (in-memory engine)."""
    return NumpyPooler().pool(records)


__all__ = [
    'Engine',
    'SufficientStats',
    'check_sufficient_stats',
    'combine_moments',
    'pool_sufficient_stats',
    'group_records',
    'BasePooler',
    'NumpyPooler',
    'DuckDBPooler',
    'get_pooler',
    'pool',
    'MIN_IMPUTATIONS',
    'DEFAULT_COLUMNS',
]
