"""
t-based inference for pooled coefficients.

Turns a PooledResult into a t-statistic, two-sided p-value, critical value and
confidence interval using the Student-t reference distribution with the
Barnard-Rubin degrees of freedom. Infinite degrees of freedom fall back to the
standard normal distribution.
"""

import math
import logging

from scipy import stats

from .exceptions import InvalidConfidenceLevel
from .records import PooledResult, InferenceSummary

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_LEVEL = 0.95


def check_confidence_level(confidence_level: float) -> None:
    if not 0 < confidence_level < 1:
        raise InvalidConfidenceLevel(
            f"confidence_level must be strictly between 0 and 1, got {confidence_level}"
        )


def reference_distribution(df: float):
    """Frozen scipy distribution for the given degrees of freedom."""
    if math.isinf(df):
        return stats.norm()
    return stats.t(df)


def summarize(
    pooled: PooledResult,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    null_value: float = 0.0,
) -> InferenceSummary:
    """Compute the test statistic and confidence interval for one coefficient.

    Args:
        pooled: Pooled moments for the coefficient
        confidence_level: Coverage of the two-sided interval, in (0, 1)
        null_value: Hypothesized value under the null

    Returns:
        InferenceSummary for the coefficient
    """
    check_confidence_level(confidence_level)

    se = math.sqrt(pooled.V_total)
    t_statistic = (pooled.beta_bar - null_value) / se
    dist = reference_distribution(pooled.df_total)

    # 2 * sf(|t|), equal to 2 * (1 - cdf(|t|))
    p_value = float(2 * dist.sf(abs(t_statistic)))
    critical_value = float(dist.ppf(1 - (1 - confidence_level) / 2))
    margin = se * critical_value

    return InferenceSummary(
        coefficient_name=pooled.coefficient_name,
        estimate=pooled.beta_bar,
        std_error=se,
        t_statistic=t_statistic,
        df=pooled.df_total,
        p_value=p_value,
        critical_value=critical_value,
        ci_lower=pooled.beta_bar - margin,
        ci_upper=pooled.beta_bar + margin,
        confidence_level=confidence_level,
        null_value=null_value,
    )


__all__ = [
    'DEFAULT_CONFIDENCE_LEVEL',
    'check_confidence_level',
    'reference_distribution',
    'summarize',
]
