"""
upskill -- find a package on NPM or PyPI, install it into a fixed global
root and generate a skill bundle describing how to use it.
"""

__version__ = "0.3.0"
