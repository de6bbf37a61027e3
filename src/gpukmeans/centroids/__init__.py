from .convergence import ConvergenceState
from .cpu_model import (
    DispatchReport,
    hillis_steele_inclusive_scan,
    masked_lane_values,
    run_cpu_dispatch,
)
from .errors import LookbackLivelockError
from .reference import (
    reference_cluster_total,
    reference_group_totals,
    reference_update,
)
from .update import run_update_round, update_centroid
from .workspace import LookbackWorkspace
