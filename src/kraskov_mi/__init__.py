# kraskov_mi - Mutual information between multivariate continuous variables
# Based on k-NN algorithms from Kraskov, Stogbauer, Grassberger (2004)
#
# Both KSG estimators, with dynamic correlation exclusion, multiple
# observation sets, local values and scoring of new observations.

from .core import (
    KraskovMutualInfo,
    Algorithm,
    NeighbourCounts,
    ReferenceSnapshot,
    build_snapshot,
    compute_MI,
    compute_local_MI,
)

from .commons import (
    get_last_info,
    get_defaults,
    set_verbosity,
    get_verbosity,
    set_Theiler,
    choose_algorithm,
    multithreading,
    get_threads_number,
)

from .observations import ObservationStore

from .neighbours import (
    NeighbourIndex,
    Boundary,
)

from .tools import (
    reorder,
    normalise,
    normalise_with,
    add_noise,
    gaussian_entropy,
)

from .masks import (
    mask_finite,
    mask_clean,
    valid_runs,
)

from .surrogates import (
    surrogate,
    EmpiricalDistribution,
)

__version__ = "1.0.0"
__all__ = [
    # Calculator and functions
    "KraskovMutualInfo",
    "Algorithm",
    "NeighbourCounts",
    "ReferenceSnapshot",
    "build_snapshot",
    "compute_MI",
    "compute_local_MI",
    # Configuration
    "get_last_info",
    "get_defaults",
    "set_verbosity",
    "get_verbosity",
    "set_Theiler",
    "choose_algorithm",
    "multithreading",
    "get_threads_number",
    # Building blocks
    "ObservationStore",
    "NeighbourIndex",
    "Boundary",
    # Tools
    "reorder",
    "normalise",
    "normalise_with",
    "add_noise",
    "gaussian_entropy",
    # Masks
    "mask_finite",
    "mask_clean",
    "valid_runs",
    # Surrogates
    "surrogate",
    "EmpiricalDistribution",
]
