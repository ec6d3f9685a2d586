"""
Entry point for ``python -m salonboard``.
"""

from .cli.app import app

if __name__ == "__main__":
    app()
