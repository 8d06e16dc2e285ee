"""
Exceptions raised by ARBOR.

Construction and invariant errors abort the operation that detected them.
A run that fails to accept a tree is not an error: runs report failure
through their boolean result.
"""


class ArborError(Exception):
    """Base class for all ARBOR errors."""


class ArityError(ArborError, ValueError):
    """A symbol was given a number of children different from its arity."""


class UnknownSymbolError(ArborError, KeyError):
    """A symbol is not declared in the alphabet it is used with."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable
        return str(self.args[0]) if self.args else ""


class CaptureError(ArborError, IndexError):
    """A capture position does not exist on the node a rule matched."""


class SignatureMismatchError(ArborError, ValueError):
    """Two automata over different signatures were compared or combined."""
