"""
Package selection -- precedence policy between NPM and PyPI candidates.
"""

from .selector import PackageSelector, SelectionReason, SelectionResult

__all__ = ["PackageSelector", "SelectionReason", "SelectionResult"]
