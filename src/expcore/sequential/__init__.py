"""Sequential monitoring utilities.

Group sequential monitoring of a two-proportion A/B test:

* Stopping boundaries on the z scale as a function of the information
  fraction t = n / n_max (O'Brien-Fleming, Pocock, Wang-Tsiatis or a fixed
  single-look boundary), symmetric for efficacy and harm.
* A constant futility boundary Phi^-1(beta).
* A decision (continue / stop for success, futility or harm) recomputed from
  the current counts on every call.
* Heuristic probability of success and expected sample size for planning.
"""

from expcore.sequential.schema import (
    BoundaryFamily,
    BoundaryPoint,
    Decision,
    SequentialBounds,
    SequentialConfig,
    SequentialResult,
)
from expcore.sequential.group_sequential import (
    BoundaryHistory,
    analyze_sequential,
    evaluate_bounds,
    evaluate_decision,
    expected_sample_size,
    information_fraction,
    probability_of_success,
)
