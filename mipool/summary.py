"""
Summary formatting for pooled multiple-imputation results.

This module renders a pooled result table as plain text, including:
- Version and timestamp for provenance
- Coefficient results with significance indicators
- Barnard-Rubin degrees of freedom and fraction of missing information
- Failed coefficients with their error
"""

from typing import Dict, Any, Optional


def _significance(p: float) -> str:
    if p < 0.001:
        return "***"
    elif p < 0.01:
        return "**"
    elif p < 0.05:
        return "*"
    elif p < 0.10:
        return "."
    return ""


def format_pooled_summary(
    table: Dict[str, Any],
    title: Optional[str] = None,
    precision: int = 4
) -> str:
    """Format a pooled result table for printing and storage.

    Args:
        table: Dictionary from ResultTable.to_dict()
        title: Optional heading replacing the default one
        precision: Number of decimal places for display

    Returns:
        Formatted string suitable for console output and file storage
    """
    lines = []
    width = 100

    # Header
    lines.append("=" * width)
    lines.append(title or "POOLED MULTIPLE-IMPUTATION RESULTS (Barnard-Rubin)")
    lines.append("=" * width)

    lines.append(f"\nmipool Version: {table.get('mipool_version', 'unknown')}")
    lines.append(f"Computed at: {table.get('computed_at', 'unknown')}")

    confidence_level = table.get('confidence_level')
    ci_label = f"{confidence_level:.0%} CI" if confidence_level is not None else "CI"

    rows = table.get('rows', [])
    if not rows:
        lines.append("\nNo coefficients.")
        lines.append("=" * width)
        return "\n".join(lines)

    lines.append("\nCOEFFICIENT RESULTS")
    lines.append("-" * width)

    fmt_str = "{:<24} {:>11} {:>11} {:>9} {:>8} {:>9} {:>23} {:>6} {:>3}"
    lines.append(fmt_str.format(
        "Variable", "Estimate", "Std. Error", "t-stat", "df", "p-value", ci_label, "FMI", ""
    ))
    lines.append("-" * width)

    failed = []
    for row in rows:
        name = row['coefficient']
        if row.get('error'):
            failed.append(row)
            lines.append(f"{name[:23]:<24} {'(failed)':>11}")
            continue

        ci = f"[{row['ci_lower']:.{precision}f}, {row['ci_upper']:.{precision}f}]"
        df = row['df']
        df_str = "inf" if df is None else f"{df:.2f}"
        lines.append(fmt_str.format(
            name[:23],
            f"{row['estimate']:.{precision}f}",
            f"{row['standard_error']:.{precision}f}",
            f"{row['t_statistic']:.{precision}f}",
            df_str,
            f"{row['p_value']:.{precision}f}",
            ci,
            f"{row['fraction_missing_info']:.3f}",
            _significance(row['p_value']),
        ))

    lines.append("-" * width)
    lines.append("Significance: *** p<0.001, ** p<0.01, * p<0.05, . p<0.10")
    lines.append("FMI: fraction of missing information; df: Barnard-Rubin degrees of freedom")

    if failed:
        lines.append("\nFAILED COEFFICIENTS")
        lines.append("-" * width)
        for row in failed:
            lines.append(f"{row['coefficient']} (m={row['m']}): {row['error']}")

    lines.append("=" * width)
    return "\n".join(lines)


__all__ = [
    'format_pooled_summary',
]
