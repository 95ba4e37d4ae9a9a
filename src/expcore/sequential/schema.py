from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd


class BoundaryFamily(str, Enum):
    OBRIEN_FLEMING = "obrien_fleming"
    POCOCK = "pocock"
    WANG_TSIATIS = "wang_tsiatis"
    FIXED = "fixed"  # no interim adjustment


class Decision(str, Enum):
    CONTINUE = "continue"
    STOP_SUCCESS = "stop_success"
    STOP_FUTILITY = "stop_futility"
    STOP_HARM = "stop_harm"


@dataclass(frozen=True)
class SequentialConfig:
    alpha: float = 0.05
    beta: float = 0.2

    boundary: BoundaryFamily = BoundaryFamily.OBRIEN_FLEMING
    n_analyses: int = 5  # Pocock: planned number of looks
    wt_delta: float = 0.25  # Wang-Tsiatis shape

    futility_enabled: bool = True
    harm_enabled: bool = True

    history_steps: int = 20


@dataclass(frozen=True)
class SequentialBounds:
    """Stopping boundaries on the z scale at one information fraction."""

    upper: float
    lower: float
    futility: float
    information_fraction: float


@dataclass(frozen=True)
class BoundaryPoint:
    n: float
    information_fraction: float
    upper: float
    lower: float
    futility: float
    observed_z: Optional[float] = None


@dataclass
class SequentialResult:
    current_n: int
    max_n: int
    current_z: float
    current_p: float
    bounds: SequentialBounds
    decision: Decision
    probability_of_success: float
    expected_sample_size: float

    history: pd.DataFrame
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["decision"] = self.decision.value
        d["history"] = self.history.to_dict(orient="list") if self.history is not None else None
        return d
