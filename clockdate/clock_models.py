"""
Molecular clock likelihoods for substitution counts on the branches of a
dated tree.

The expected number of substitutions on a branch is
``rate * (t_child - t_parent) * seq_len``. Under the strict clock the
observed count is Poisson distributed around this expectation. Under the
uncorrelated relaxed clock each branch draws its own rate from a Gamma
distribution with mean ``rate`` and squared coefficient of variation
``dispersion``, which makes the count negative binomial.
"""
import numpy as np
from scipy.special import gammaln, digamma
from clockdate import config as cdconf
from clockdate import ConfigurationError, MalformedTreeError


class ClockModel(object):
    """common interface of the strict and the relaxed clock"""
    name = None
    relaxed = False

    def neg_log_lh(self, k, m, dispersion=0.0):
        raise NotImplementedError

    def dnll_dm(self, k, m, dispersion=0.0):
        raise NotImplementedError

    def dnll_dlogdisp(self, k, m, dispersion=0.0):
        return np.zeros_like(np.asarray(m, dtype=float))

    def variance(self, m, dispersion=0.0):
        """variance of the count with expectation m"""
        raise NotImplementedError

    def simulate(self, m, dispersion, rng):
        raise NotImplementedError

    def branch_rates(self, k, dt, rate, dispersion, seq_len):
        raise NotImplementedError

    def __repr__(self):
        return "%s()"%self.__class__.__name__


class StrictClock(ClockModel):
    """one substitution rate shared by all branches, Poisson counts"""
    name = 'strict'
    relaxed = False

    def neg_log_lh(self, k, m, dispersion=0.0):
        return m - k*np.log(m) + gammaln(k+1)

    def dnll_dm(self, k, m, dispersion=0.0):
        return 1.0 - k/m

    def variance(self, m, dispersion=0.0):
        return np.asarray(m, dtype=float)

    def simulate(self, m, dispersion, rng):
        return rng.poisson(m).astype(float)

    def branch_rates(self, k, dt, rate, dispersion, seq_len):
        return np.full(len(k), rate, dtype=float)


class RelaxedClock(ClockModel):
    """
    uncorrelated relaxed clock: branch rates are Gamma distributed with
    shape 1/dispersion and mean `rate`, counts are Poisson given the rate.
    The resulting marginal distribution of the counts is negative binomial.
    For dispersion below MIN_DISPERSION the Poisson limit is used.
    """
    name = 'uncorrelated'
    relaxed = True
    _poisson = StrictClock()

    def neg_log_lh(self, k, m, dispersion=0.0):
        if dispersion<cdconf.MIN_DISPERSION:
            return self._poisson.neg_log_lh(k, m)
        a = 1.0/dispersion
        return -(gammaln(k+a) - gammaln(a) - gammaln(k+1)
                 - a*np.log1p(m/a) + k*(np.log(m) - np.log(a+m)))

    def dnll_dm(self, k, m, dispersion=0.0):
        if dispersion<cdconf.MIN_DISPERSION:
            return self._poisson.dnll_dm(k, m)
        a = 1.0/dispersion
        return (a+k)/(a+m) - k/m

    def dnll_dlogdisp(self, k, m, dispersion=0.0):
        if dispersion<cdconf.MIN_DISPERSION:
            return np.zeros_like(np.asarray(m, dtype=float))
        a = 1.0/dispersion
        dll_da = digamma(k+a) - digamma(a) - np.log1p(m/a) + 1.0 - (a+k)/(a+m)
        return a*dll_da

    def variance(self, m, dispersion=0.0):
        m = np.asarray(m, dtype=float)
        return m + dispersion*m**2

    def simulate(self, m, dispersion, rng):
        m = np.asarray(m, dtype=float)
        if dispersion<cdconf.MIN_DISPERSION:
            return rng.poisson(m).astype(float)
        a = 1.0/dispersion
        gamma = rng.gamma(shape=a, scale=1.0/a, size=m.shape)
        return rng.poisson(m*gamma).astype(float)

    def branch_rates(self, k, dt, rate, dispersion, seq_len):
        """posterior mean rate of each branch given its count and duration"""
        if dispersion<cdconf.MIN_DISPERSION:
            return np.full(len(k), rate, dtype=float)
        a = 1.0/dispersion
        return (a + k)/(a/rate + np.maximum(dt, 0)*seq_len)


def make_clock_model(clock):
    """return the clock model for the name 'strict' or 'uncorrelated' (alias 'relaxed')"""
    if isinstance(clock, ClockModel):
        return clock
    name = cdconf.CLOCK_ALIASES.get(str(clock).lower(), str(clock).lower())
    if name=='strict':
        return StrictClock()
    elif name=='uncorrelated':
        return RelaxedClock()
    raise ConfigurationError("unknown clock model %r, use one of %s"%(clock, cdconf.CLOCK_MODELS))


class EdgeLayout(object):
    """
    Maps the branches of a rooted tree to observations. If `merge_root`
    is set, the two branches below a bifurcating root came from a single
    edge of an unrooted tree and are scored as one observation.
    """
    def __init__(self, tree, merge_root=False):
        self.tree = tree
        self.edges = tree.edges()
        self.parents = tree.parent[self.edges]
        obs_index = np.arange(len(self.edges))
        root_children = list(tree.children[tree.root])
        self.merge_root = bool(merge_root) and len(root_children)==2
        if self.merge_root:
            pos = {e:i for i, e in enumerate(self.edges)}
            i, j = pos[root_children[0]], pos[root_children[1]]
            obs_index[obs_index>j] -= 1
            obs_index[j] = i
        self.obs_index = obs_index
        self.n_obs = int(obs_index.max())+1
        self.k = np.bincount(obs_index, weights=tree.mutations[self.edges], minlength=self.n_obs)

    def elapsed(self, times):
        """duration of each branch (edge order)"""
        return times[self.edges] - times[self.parents]

    def observation_durations(self, times):
        return np.bincount(self.obs_index, weights=self.elapsed(times), minlength=self.n_obs)


class ClockObjective(object):
    """
    Negative log-likelihood of the branch substitution counts of a tree
    given node times, a global rate and a dispersion.

    Parameters
    ----------
     tree : IndexedTree
        rooted or unrooted tree with substitution counts
     clock_model : str or ClockModel
        'strict' or 'uncorrelated'
    """
    def __init__(self, tree, clock_model='strict'):
        self.tree = tree
        self.clock_model = make_clock_model(clock_model)
        self._base = None
        self._rooted = {}
        self._layouts = {}

    @property
    def unrooted_tree(self):
        """unrooted view of the tree, its edges are the valid root choices"""
        if self._base is None:
            self._base = self.tree if not self.tree.rooted else self.tree.merged_root()
        return self._base

    def rooted_tree(self, root_choice=None):
        """
        the rooted tree on which node times are defined. With root_choice None,
        the input tree has to be rooted. Otherwise root_choice is an edge
        (child node index) of `unrooted_tree` and the root is inserted on it.
        """
        if root_choice is None:
            if not self.tree.rooted:
                raise MalformedTreeError("the tree is unrooted, a root edge has to be chosen")
            return self.tree
        if root_choice not in self._rooted:
            self._rooted[root_choice] = self.unrooted_tree.reroot(root_choice, 0.5)
        return self._rooted[root_choice]

    def layout(self, root_choice=None):
        if root_choice not in self._layouts:
            self._layouts[root_choice] = EdgeLayout(self.rooted_tree(root_choice),
                                                    merge_root=root_choice is not None)
        return self._layouts[root_choice]

    def objective(self, node_times, root_choice=None, rate=1.0, dispersion=0.0):
        """
        Negative log-likelihood plus ordering penalty.

        Parameters
        ----------
         node_times : dict or array
            node name -> time, or an array aligned with rooted_tree(root_choice)
         root_choice : int, optional
            root edge of the unrooted tree, None for rooted input
         rate : float
            substitution rate per site and unit of time
         dispersion : float
            squared coefficient of variation of branch rates (relaxed clock)

        Returns
        -------
         float
        """
        layout = EdgeLayout(self.rooted_tree(root_choice), merge_root=root_choice is not None)
        times = self._times_array(layout.tree, node_times)
        return self.value_and_grad(layout, times, rate, dispersion)[0]

    def _times_array(self, tree, node_times):
        if isinstance(node_times, dict):
            try:
                return np.array([node_times[name] for name in tree.names], dtype=float)
            except KeyError as e:
                raise MalformedTreeError("no time given for node %s"%e.args[0])
        times = np.asarray(node_times, dtype=float)
        if times.shape!=(tree.n_nodes,):
            raise MalformedTreeError("expected %d node times, got array of shape %s"%(tree.n_nodes, times.shape))
        return times

    def value_and_grad(self, layout, times, rate, dispersion=0.0):
        """
        objective and its derivatives with respect to node times, the rate,
        and the logarithm of the dispersion.

        Returns
        -------
         tuple
            (objective, d/d times (per node), d/d rate, d/d log(dispersion))
        """
        L = layout.tree.seq_len
        cm = self.clock_model
        dt_edge = layout.elapsed(times)
        dt = np.bincount(layout.obs_index, weights=dt_edge, minlength=layout.n_obs)
        m = np.maximum(rate*L*dt, cdconf.MIN_EXPECTED)
        k = layout.k

        violation = np.maximum(0.0, -dt_edge)
        value = np.sum(cm.neg_log_lh(k, m, dispersion)) + cdconf.ORDER_PENALTY*np.sum(violation)

        dm = cm.dnll_dm(k, m, dispersion)
        # derivative with respect to the duration of each branch, merged
        # branches share the derivative of their observation
        d_dt_edge = dm[layout.obs_index]*rate*L - cdconf.ORDER_PENALTY*(violation>0)
        grad_t = np.zeros(layout.tree.n_nodes)
        np.add.at(grad_t, layout.edges, d_dt_edge)
        np.add.at(grad_t, layout.parents, -d_dt_edge)
        grad_rate = np.sum(dm*L*np.maximum(dt, 0))
        grad_logdisp = np.sum(cm.dnll_dlogdisp(k, m, dispersion)) if cm.relaxed else 0.0
        return value, grad_t, grad_rate, grad_logdisp

    def expected_counts(self, layout, times, rate):
        dt = layout.observation_durations(times)
        return np.maximum(rate*layout.tree.seq_len*dt, cdconf.MIN_EXPECTED)
