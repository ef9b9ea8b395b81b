"""
Value containers for pooling input and output.

Contains only immutable data carriers: the per-imputation record produced by
an upstream fit, the pooled moments for one coefficient, and the inference
summary derived from them.
"""

import math
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, Union


@dataclass(frozen=True)
class PerImputationResult:
    """One coefficient's estimate from one imputed dataset.

    ``standard_error`` is the cluster-robust standard error reported by the
    upstream fit and ``degrees_of_freedom`` its complete-data degrees of
    freedom (possibly non-integer, e.g. Satterthwaite). ``imputation`` is an
    optional label for the imputed dataset (an index or a string such as
    "imp1"); it is never used in the arithmetic.
    """
    coefficient_name: str
    estimate: float
    standard_error: float
    degrees_of_freedom: float
    imputation: Optional[Union[int, str]] = None


@dataclass(frozen=True)
class PooledResult:
    """Barnard-Rubin pooled moments for a single coefficient."""
    coefficient_name: str
    m: int
    beta_bar: float
    V_bar: float
    B: float
    eta_bar: float
    V_total: float
    gamma: float
    df_m: float
    df_obs: float
    df_total: float

    @property
    def std_error(self) -> float:
        return math.sqrt(self.V_total)

    @property
    def relative_increase_in_variance(self) -> float:
        """Rubin's r: between-imputation share relative to within variance."""
        between = (1 + 1 / self.m) * self.B
        if self.V_bar == 0:
            return math.inf
        return between / self.V_bar

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class InferenceSummary:
    """t-based test and confidence interval for a pooled coefficient."""
    coefficient_name: str
    estimate: float
    std_error: float
    t_statistic: float
    df: float
    p_value: float
    critical_value: float
    ci_lower: float
    ci_upper: float
    confidence_level: float
    null_value: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    'PerImputationResult',
    'PooledResult',
    'InferenceSummary',
]
