"""
HTControl CLI - Command-line interface for home theatre control.

Usage:
    htcontrol serve
    htcontrol send sonytv on
    htcontrol --config ~/.htcontrol.yaml --debug serve
"""

__version__ = "1.0.0"
