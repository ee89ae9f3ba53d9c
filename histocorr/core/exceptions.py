from dataclasses import dataclass
from typing import Optional

class HistocorrError(Exception):
    """Base exception for all histocorr errors"""

class OutOfBoundsCoordinate(HistocorrError):
    """Raised when a scaled spot coordinate falls outside the channel image"""

    def __init__(self, barcode=None, row=None, col=None, shape=None):
        msg = f"Spot {barcode} at (row={row}, col={col}) is outside image bounds {shape}"
        super().__init__(msg)
        self.barcode = barcode
        self.row = row
        self.col = col
        self.shape = shape

class InsufficientData(HistocorrError):
    """Raised when too few non-missing observations remain for a column"""

    def __init__(self, column=None, n_observations=0, required=0, feature=None):
        target = f"{column} vs {feature}" if feature is not None else f"{column}"
        msg = f"Insufficient data for {target}: {n_observations} observations, {required} required"
        super().__init__(msg)
        self.column = column
        self.n_observations = n_observations
        self.required = required
        self.feature = feature

class GeneNameNotFound(HistocorrError):
    """Raised when gene identifiers (or names) have no counterpart in the lookup"""

    def __init__(self, identifiers=()):
        self.identifiers = list(identifiers)
        shown = ", ".join(str(i) for i in self.identifiers[:10])
        if len(self.identifiers) > 10:
            shown += f", ... ({len(self.identifiers)} total)"
        super().__init__(f"No gene name found for: {shown}")

class MalformedInput(HistocorrError):
    """Raised when input tables are structurally incompatible"""

@dataclass(frozen=True)
class ColumnFailure:
    """A column-local failure recorded during a batch run"""

    column: str
    kind: str
    message: str
    feature: Optional[str] = None

    @classmethod
    def from_exception(cls, column, exc, feature=None):
        if feature is None:
            feature = getattr(exc, 'feature', None)
        return cls(column=column, kind=type(exc).__name__, message=str(exc), feature=feature)
