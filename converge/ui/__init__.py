"""
Converge UI - Console rendering.
"""

from converge.ui.console import CONVERGE_THEME, ConsoleUI

__all__ = ["CONVERGE_THEME", "ConsoleUI"]
