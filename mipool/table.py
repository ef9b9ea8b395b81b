"""
Result table assembling pooled inference for every coefficient.

Per-imputation records are grouped by coefficient name in first-seen order;
each group is pooled and summarized independently. A coefficient whose group
fails validation still gets a row, carrying the error instead of numbers.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any, Sequence, Mapping, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm

from ._version import __version__
from .exceptions import PoolingError
from .inference import DEFAULT_CONFIDENCE_LEVEL, check_confidence_level, summarize
from .poolers import NumpyPooler, SufficientStats, group_records, pool_sufficient_stats
from .records import PerImputationResult, PooledResult, InferenceSummary

logger = logging.getLogger(__name__)

TABLE_COLUMNS = [
    'coefficient',
    'estimate',
    'standard_error',
    't_statistic',
    'df',
    'p_value',
    'ci_lower',
    'ci_upper',
    'fraction_missing_info',
    'm',
    'error',
]


def _get_timestamp() -> str:
    """Get current ISO timestamp."""
    return datetime.now().isoformat()


@dataclass(frozen=True)
class TableRow:
    """One coefficient's row: pooled inference, or the error that prevented it."""
    coefficient: str
    m: int
    pooled: Optional[PooledResult] = None
    summary: Optional[InferenceSummary] = None
    exception: Optional[PoolingError] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.exception is None

    @property
    def error(self) -> Optional[str]:
        if self.exception is None:
            return None
        return f"{type(self.exception).__name__}: {self.exception}"

    def to_record(self) -> Dict[str, Any]:
        """Flat mapping with the table's column names."""
        if not self.ok:
            record = dict.fromkeys(TABLE_COLUMNS, np.nan)
            record.update(coefficient=self.coefficient, m=self.m, error=self.error)
            return record
        return {
            'coefficient': self.coefficient,
            'estimate': self.summary.estimate,
            'standard_error': self.summary.std_error,
            't_statistic': self.summary.t_statistic,
            'df': self.summary.df,
            'p_value': self.summary.p_value,
            'ci_lower': self.summary.ci_lower,
            'ci_upper': self.summary.ci_upper,
            'fraction_missing_info': self.pooled.gamma,
            'm': self.m,
            'error': None,
        }


# ============================================================================
# Row Evaluation (module-level for parallel execution)
# ============================================================================

def _evaluate_row(args: Tuple) -> TableRow:
    """Pool and summarize one coefficient, capturing validation failures."""
    name, m, pool_fn, payload, confidence_level, null_value = args
    try:
        pooled = pool_fn(payload)
        summary = summarize(pooled, confidence_level=confidence_level, null_value=null_value)
    except PoolingError as exc:
        return TableRow(coefficient=name, m=m, exception=exc)
    return TableRow(coefficient=name, m=m, pooled=pooled, summary=summary)


def _run_rows(args_list: List[Tuple], n_jobs: int, progress: bool) -> List[TableRow]:
    if n_jobs == 1:
        iterator = tqdm(args_list, desc="Pooling", disable=not progress)
        return [_evaluate_row(args) for args in iterator]

    from joblib import Parallel, delayed

    logger.debug(f"Pooling {len(args_list)} coefficients with {n_jobs} jobs")
    # Parallel returns results in submission order
    return Parallel(n_jobs=n_jobs, verbose=10 if progress else 0)(
        delayed(_evaluate_row)(args) for args in args_list
    )


# ============================================================================
# Result Table
# ============================================================================

class ResultTable:
    """Pooled inference table, one row per coefficient.

    Failed coefficients are kept as rows with ``ok == False`` and an ``error``
    string; call ``raise_for_errors()`` to turn any failure into an exception.
    """

    def __init__(self, rows: List[TableRow], confidence_level: float = DEFAULT_CONFIDENCE_LEVEL):
        self.rows = rows
        self.confidence_level = confidence_level
        self.mipool_version = __version__
        self.computed_at = _get_timestamp()

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def build(
        cls,
        all_records: Sequence[PerImputationResult],
        confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
        null_values: Optional[Mapping[str, float]] = None,
        pooler: Optional[NumpyPooler] = None,
        n_jobs: int = 1,
        progress: bool = False,
    ) -> "ResultTable":
        """Pool every coefficient found in a flat sequence of records.

        Args:
            all_records: Per-imputation, per-coefficient records
            confidence_level: Coverage of the two-sided intervals
            null_values: Optional per-coefficient null hypothesis values (default 0)
            pooler: In-memory pooler to use
            n_jobs: Number of parallel jobs (joblib) across coefficients
            progress: Show a progress bar

        Returns:
            ResultTable with rows in first-seen coefficient order
        """
        check_confidence_level(confidence_level)
        pooler = pooler or NumpyPooler()
        groups = group_records(all_records)
        logger.debug(f"ResultTable.build: {len(groups)} coefficients "
                     f"from {sum(len(g) for g in groups.values())} records")

        null_values = cls._check_null_values(null_values, groups.keys())
        args_list = [
            (name, len(group), pooler.pool, group, confidence_level, null_values.get(name, 0.0))
            for name, group in groups.items()
        ]
        return cls._from_args(args_list, confidence_level, n_jobs, progress)

    @classmethod
    def from_sufficient_stats(
        cls,
        stats: Sequence[SufficientStats],
        confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
        null_values: Optional[Mapping[str, float]] = None,
        n_jobs: int = 1,
        progress: bool = False,
    ) -> "ResultTable":
        """Build the table from precomputed sufficient statistics (e.g. DuckDB)."""
        check_confidence_level(confidence_level)
        null_values = cls._check_null_values(null_values, [s.coefficient_name for s in stats])
        args_list = [
            (s.coefficient_name, s.m, pool_sufficient_stats, s, confidence_level,
             null_values.get(s.coefficient_name, 0.0))
            for s in stats
        ]
        return cls._from_args(args_list, confidence_level, n_jobs, progress)

    @classmethod
    def _from_args(cls, args_list: List[Tuple], confidence_level: float,
                   n_jobs: int, progress: bool) -> "ResultTable":
        rows = _run_rows(args_list, n_jobs, progress)
        for row in rows:
            if not row.ok:
                logger.warning(f"Pooling failed for {row.coefficient}: {row.error}")
        return cls(rows, confidence_level=confidence_level)

    @staticmethod
    def _check_null_values(null_values: Optional[Mapping[str, float]], names) -> Dict[str, float]:
        null_values = dict(null_values or {})
        unknown = set(null_values) - set(names)
        if unknown:
            logger.warning(f"null_values given for unknown coefficients: {sorted(unknown)}")
        return null_values

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def coefficient_names(self) -> List[str]:
        return [row.coefficient for row in self.rows]

    @property
    def failed(self) -> List[TableRow]:
        return [row for row in self.rows if not row.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def __getitem__(self, coefficient: str) -> TableRow:
        for row in self.rows:
            if row.coefficient == coefficient:
                return row
        raise KeyError(coefficient)

    def raise_for_errors(self):
        """Raise the first row's pooling error, if any row failed."""
        failed = self.failed
        if failed:
            raise failed[0].exception

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to pandas DataFrame indexed by coefficient"""
        return self.to_tidy_df().set_index('coefficient')

    def to_tidy_df(self) -> pd.DataFrame:
        """Convert to tidy DataFrame, one row per coefficient.

        Returns:
            DataFrame with columns: coefficient, estimate, standard_error, t_statistic,
            df, p_value, ci_lower, ci_upper, fraction_missing_info, m, error
        """
        return pd.DataFrame([row.to_record() for row in self.rows], columns=TABLE_COLUMNS)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization.

        Infinite or missing values are stored as None.
        """
        def _clean(value):
            if isinstance(value, float) and not np.isfinite(value):
                return None
            return value

        return {
            'mipool_version': self.mipool_version,
            'computed_at': self.computed_at,
            'confidence_level': self.confidence_level,
            'rows': [
                {key: _clean(value) for key, value in row.to_record().items()}
                for row in self.rows
            ],
        }

    def to_string(self, precision: int = 4) -> str:
        """Generate a printable text summary of the pooled table."""
        from .summary import format_pooled_summary
        return format_pooled_summary(self.to_dict(), precision=precision)

    def print_summary(self, precision: int = 4):
        """Print pooled results summary to console."""
        print(self.to_string(precision=precision))

    def __repr__(self) -> str:
        return (f"ResultTable(n_coefficients={len(self.rows)}, "
                f"n_failed={len(self.failed)}, confidence_level={self.confidence_level})")


def build(
    all_records: Sequence[PerImputationResult],
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    null_values: Optional[Mapping[str, float]] = None,
    **kwargs
) -> ResultTable:
    """Build a ResultTable from a flat sequence of per-imputation records."""
    return ResultTable.build(all_records, confidence_level=confidence_level,
                             null_values=null_values, **kwargs)


__all__ = [
    'TABLE_COLUMNS',
    'TableRow',
    'ResultTable',
    'build',
]
