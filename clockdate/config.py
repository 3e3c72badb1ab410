from clockdate import ConfigurationError

VERBOSE = 1

BIG_NUMBER = 1e10
TINY_NUMBER = 1e-12

# likelihood parameters
MIN_EXPECTED = 1e-6        # floor of the expected number of substitutions on a branch
ORDER_PENALTY = 1e6        # per unit of time of an ordering violation
MIN_DISPERSION = 1e-6      # below this the relaxed clock is evaluated as Poisson
MAX_DISPERSION = 1e3
INITIAL_DISPERSION = 0.1

# optimizer parameters
MIN_OFFSET = 1e-6          # smallest initial distance between a node and its earliest child
CONVERGENCE_TOLERANCE = 1e-10
MAX_ITER = 2000
N_RESTARTS = 0
RESTART_JITTER = 0.5       # relative jitter of offsets and rate in restarts
ROOT_TIE_TOL = 1e-9        # relative objective difference treated as a tie

# diagnostics
NIQD = 3
ALPHA = 0.05

# bootstrap
BOOTSTRAP_QUANTILES = (0.025, 0.975)
LTT_POINTS = 50

CLOCK_MODELS = ["strict", "uncorrelated"]
CLOCK_ALIASES = {"relaxed":"uncorrelated", "ucld":"uncorrelated", "poisson":"strict"}


class DatingOptions(object):
    """
    Container for the options of a dating run. All values are validated on
    construction, invalid values raise ConfigurationError naming the option.

    Parameters
    ----------
     clock : str
        'strict' or 'uncorrelated' (relaxed clock with Gamma distributed rates)

     initial_rate : float, optional
        starting value of the substitution rate (>=0). Inferred if None

     fixed_rate : float, optional
        if given, the substitution rate is fixed to this value

     n_jobs : int
        number of worker processes, 1 runs everything sequentially

     max_root_candidates : int, optional
        number of root edges evaluated for unrooted trees. None evaluates all edges

     convergence_tolerance : float
        relative tolerance of the objective for the continuous optimization

     max_iter : int
        iteration budget of each continuous optimization

     n_restarts : int
        number of additional jittered optimizer starts per root candidate

     n_bootstrap : int
        number of parametric bootstrap replicates

     seed : int, optional
        seed for restarts and bootstrap simulations

     rooted : bool, optional
        override whether the input tree is treated as rooted
    """
    fields = ['clock', 'initial_rate', 'fixed_rate', 'n_jobs', 'max_root_candidates',
              'convergence_tolerance', 'max_iter', 'n_restarts', 'n_bootstrap', 'seed', 'rooted']

    def __init__(self, clock='strict', initial_rate=None, fixed_rate=None, n_jobs=1,
                 max_root_candidates=None, convergence_tolerance=CONVERGENCE_TOLERANCE,
                 max_iter=MAX_ITER, n_restarts=N_RESTARTS, n_bootstrap=0, seed=None,
                 rooted=None):
        if not isinstance(clock, str):
            raise ConfigurationError("option 'clock' has to be one of %s, got %r"%(CLOCK_MODELS, clock))
        clock = CLOCK_ALIASES.get(clock.lower(), clock.lower())
        if clock not in CLOCK_MODELS:
            raise ConfigurationError("option 'clock' has to be one of %s, got %r"%(CLOCK_MODELS, clock))
        self.clock = clock

        self.initial_rate = _optional_number('initial_rate', initial_rate, minimum=0.0)
        self.fixed_rate = _optional_number('fixed_rate', fixed_rate, minimum=0.0, strict=True)
        self.n_jobs = _integer('n_jobs', n_jobs, minimum=1)
        self.max_root_candidates = None if max_root_candidates is None \
                                   else _integer('max_root_candidates', max_root_candidates, minimum=1)
        self.convergence_tolerance = _optional_number('convergence_tolerance', convergence_tolerance,
                                                      minimum=0.0, strict=True)
        if self.convergence_tolerance is None:
            raise ConfigurationError("option 'convergence_tolerance' is required")
        self.max_iter = _integer('max_iter', max_iter, minimum=1)
        self.n_restarts = _integer('n_restarts', n_restarts, minimum=0)
        self.n_bootstrap = _integer('n_bootstrap', n_bootstrap, minimum=0)
        self.seed = None if seed is None else _integer('seed', seed, minimum=0)
        if rooted not in [None, True, False]:
            raise ConfigurationError("option 'rooted' has to be True, False, or None, got %r"%(rooted,))
        self.rooted = rooted

    @classmethod
    def from_kwargs(cls, options=None, **kwargs):
        """
        build options from an existing DatingOptions instance, updated with kwargs.
        Unknown keyword arguments raise ConfigurationError.
        """
        unknown = [k for k in kwargs if k not in cls.fields]
        if unknown:
            raise ConfigurationError("unknown option(s): %s"%", ".join(sorted(unknown)))
        params = options.as_dict() if options is not None else {}
        params.update(kwargs)
        return cls(**params)

    def as_dict(self):
        return {k:getattr(self, k) for k in self.fields}

    def replace(self, **kwargs):
        return DatingOptions.from_kwargs(self, **kwargs)

    def __repr__(self):
        return "DatingOptions(%s)"%", ".join("%s=%r"%(k, getattr(self, k)) for k in self.fields)


def _optional_number(name, value, minimum=None, strict=False):
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError("option '%s' has to be a number, got %r"%(name, value))
    if value!=value or value in [float('inf'), float('-inf')]:
        raise ConfigurationError("option '%s' has to be finite, got %r"%(name, value))
    if minimum is not None and (value<minimum or (strict and value==minimum)):
        raise ConfigurationError("option '%s' has to be %s %s, got %r"
                                 %(name, '>' if strict else '>=', minimum, value))
    return value


def _integer(name, value, minimum=None):
    if isinstance(value, bool) or not isinstance(value, (int,)) and not hasattr(value, '__index__'):
        raise ConfigurationError("option '%s' has to be an integer, got %r"%(name, value))
    value = int(value)
    if minimum is not None and value<minimum:
        raise ConfigurationError("option '%s' has to be >= %d, got %r"%(name, minimum, value))
    return value
