VERBOSE = 3

BIG_NUMBER = 1e10
TINY_NUMBER = 1e-12
SUPERTINY_NUMBER = 1e-24

# default level of confidence intervals
CONFIDENCE_LEVEL = 0.95

# number of points used to interpolate values along each edge
EDGE_GRID_SIZE = 20

# discrete traits
MISSING_DATA = '?'

# bounds of the free rates of discrete models, in units of changes per total tree length
RATE_LOWER_BOUND = 1e-6
RATE_UPPER_BOUND = 1e3
OPT_MAX_ITER = 1000
OPT_FTOL = 1e-12
HESSIAN_STEP = 1e-3 # step in log-rate space for numerical second derivatives

#
SUCCESS = "success"
