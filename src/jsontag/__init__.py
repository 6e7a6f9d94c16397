"""jsontag package root."""

from jsontag.exceptions import JsonTagError, NeverThrown
from jsontag.invariants import never

__all__ = ["__version__", "JsonTagError", "NeverThrown", "never"]

__version__ = "0.1.0"
