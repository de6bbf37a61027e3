"""
Dispatch constants shared by the Triton kernel, the CPU model and the host.
"""

# Workers per group (one Triton program covers one group)
WORKGROUP_SIZE = 256

# Pixels folded by each worker before the group scan
N_SEQ = 24

# Centroid distance below which a cluster counts as converged
DEFAULT_EPSILON = 1e-3

# Look-back re-reads of a NOT_READY predecessor before the dispatch is declared livelocked
DEFAULT_MAX_SPINS = 1 << 22

# Components per centroid / per scan value: r, g, b, weight
VEC_WIDTH = 4
