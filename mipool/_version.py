"""
Version information for mipool.

Every result table is stamped with the package version so that pooled output
computed with an affected release can be identified and recomputed.

Version history:
- 0.1.0: Barnard-Rubin pooling with numpy and duckdb engines
"""

__version__ = "0.1.0"

# Git commit hash (populated during build/install if available)
__git_commit__ = None


def get_version() -> str:
    """Get the current version string."""
    return __version__


def get_version_info() -> dict:
    """Get version information for result tracking.
    
    Returns:
        Dictionary containing:
        - version: The semantic version string
        - git_commit: Git commit hash if available
    """
    return {
        "version": __version__,
        "git_commit": __git_commit__,
    }
