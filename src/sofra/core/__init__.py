"""
Sofra Core - Tagged results shared by every layer.
"""

from sofra.core.result import Err, ErrorKind, Ok, Result

__all__ = [
    "Err",
    "ErrorKind",
    "Ok",
    "Result",
]
