"""
Pooling of cluster-robust regression estimates across multiply imputed
datasets, with the Barnard-Rubin small-sample degrees of freedom.
"""

from ._version import __version__, get_version, get_version_info
from .mipool import pool_imputations, records_from_dataframe, records_to_dataframe
from .poolers import (
    Engine,
    SufficientStats,
    NumpyPooler,
    DuckDBPooler,
    get_pooler,
    combine_moments,
    pool,
)
from .inference import summarize, DEFAULT_CONFIDENCE_LEVEL
from .table import ResultTable, TableRow, build
from .records import PerImputationResult, PooledResult, InferenceSummary
from .exceptions import (
    PoolingError,
    InsufficientImputations,
    DegenerateVariance,
    FractionMissingInfoOutOfRange,
    NonPositiveDegreesOfFreedom,
    InvalidConfidenceLevel,
    InvalidRecord,
)

__all__ = [
    # Version
    "__version__",
    "get_version",
    "get_version_info",
    # High-level API
    "pool_imputations",
    "records_from_dataframe",
    "records_to_dataframe",
    # Pooling
    "pool",
    "summarize",
    "build",
    "Engine",
    "SufficientStats",
    "NumpyPooler",
    "DuckDBPooler",
    "get_pooler",
    "combine_moments",
    "DEFAULT_CONFIDENCE_LEVEL",
    # Result containers
    "PerImputationResult",
    "PooledResult",
    "InferenceSummary",
    "ResultTable",
    "TableRow",
    # Errors
    "PoolingError",
    "InsufficientImputations",
    "DegenerateVariance",
    "FractionMissingInfoOutOfRange",
    "NonPositiveDegreesOfFreedom",
    "InvalidConfidenceLevel",
    "InvalidRecord",
]
