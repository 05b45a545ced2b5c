"""gas-flattener.

A build utility that flattens a tree of ES modules into one self-contained
script with no ``import``/``export`` syntax, for hosts that only run flat
top-level declarations in a single global scope (e.g. Google Apps Script).
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
