from . import track_dal
from . import cycle_dal
from . import ledger_dal
from . import feedback_dal

__all__ = (
    "track_dal",
    "cycle_dal",
    "ledger_dal",
    "feedback_dal",
)
