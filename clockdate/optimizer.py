"""
Root and time optimizer.

The continuous part expresses the time of every internal node as the time
of its earliest child minus a non-negative offset, so any state vector
within the box bounds of L-BFGS-B yields node times that respect the
ancestor-precedes-descendant order. The discrete part evaluates root
candidates of an unrooted tree independently and picks the best.
"""
import warnings
import numpy as np
import pandas as pd
from scipy.optimize import minimize
from clockdate import config as cdconf
from clockdate import ConfigurationError, ConvergenceWarning
from clockdate.config import DatingOptions
from clockdate.tree_model import IndexedTree
from clockdate.sample_times import TimeConstraints
from clockdate.clock_models import ClockObjective, make_clock_model
from clockdate.treeregression import TreeRegression
from clockdate.dispatch import map_tasks
from clockdate.timetree_fit import TimeTreeFit
from clockdate.utils import silent_logger


class TimeParameterization(object):
    """
    State vector of the continuous optimization for one rooted tree.

    Layout: offsets of the internal nodes (postorder), free leaf times,
    log(rate) unless the rate is fixed, log(dispersion) for relaxed clocks.
    """
    def __init__(self, objective, root_choice, constraints, fixed_rate=None):
        self.objective = objective
        self.root_choice = root_choice
        self.layout = objective.layout(root_choice)
        self.tree = tree = self.layout.tree
        self.constraints = constraints if constraints.tree is tree else constraints.for_tree(tree)
        self.relaxed = objective.clock_model.relaxed
        self.fixed_rate = fixed_rate

        self.internal = np.array([n for n in tree.postorder if not tree.is_leaf[n]], dtype=int)
        self.n_offsets = len(self.internal)
        n_free = self.constraints.n_free
        self.free_slice = slice(self.n_offsets, self.n_offsets+n_free)
        i = self.n_offsets + n_free
        self.rate_index = None
        if fixed_rate is None:
            self.rate_index = i
            i += 1
        self.disp_index = None
        if self.relaxed:
            self.disp_index = i
            i += 1
        self.size = i

    def rate(self, x):
        return self.fixed_rate if self.rate_index is None else float(np.exp(x[self.rate_index]))

    def dispersion(self, x):
        return float(np.exp(x[self.disp_index])) if self.relaxed else 0.0

    def node_times(self, x):
        """
        times of all nodes and, for each internal node, the child whose
        time it is tied to (-1 for leaves)
        """
        tree = self.tree
        t = self.constraints.leaf_times(x[self.free_slice])
        argmin = np.full(tree.n_nodes, -1, dtype=int)
        for pos, node in enumerate(self.internal):
            ch = tree.children[node]
            c_times = t[list(ch)]
            j = int(np.argmin(c_times))
            argmin[node] = ch[j]
            t[node] = c_times[j] - x[pos]
        return t, argmin

    def value_and_grad(self, x):
        tree = self.tree
        t, argmin = self.node_times(x)
        rate = self.rate(x)
        value, G, g_rate, g_logdisp = self.objective.value_and_grad(self.layout, t, rate,
                                                                   self.dispersion(x))
        # total derivative with respect to each node time, including the
        # ancestors whose times are tied to it
        A = np.array(G)
        for node in tree.preorder[1:]:
            p = tree.parent[node]
            if argmin[p]==node:
                A[node] += A[p]

        grad = np.zeros(self.size)
        grad[:self.n_offsets] = -A[self.internal]
        grad[self.free_slice] = A[self.constraints.free_leaves]
        if self.rate_index is not None:
            grad[self.rate_index] = g_rate*rate
        if self.disp_index is not None:
            grad[self.disp_index] = g_logdisp
        return value, grad

    def bounds(self):
        b = [(0.0, None)]*self.n_offsets
        b += list(zip(self.constraints.lower, self.constraints.upper))
        if self.rate_index is not None:
            b.append((np.log(cdconf.TINY_NUMBER), np.log(cdconf.BIG_NUMBER)))
        if self.disp_index is not None:
            b.append((np.log(cdconf.MIN_DISPERSION), np.log(cdconf.MAX_DISPERSION)))
        return b

    def initial_state(self, rate, dispersion=cdconf.INITIAL_DISPERSION):
        """
        Each internal node is placed at the average of the times implied by
        its children's branch lengths, but at least MIN_OFFSET before its
        earliest child. Free leaves start at their initial guess.
        """
        tree = self.tree
        t = self.constraints.leaf_times()
        bl = tree.branch_length
        x = np.zeros(self.size)
        for pos, node in enumerate(self.internal):
            ch = list(tree.children[node])
            latest = t[ch].min()
            t[node] = min(np.mean(t[ch] - bl[ch]/rate), latest - cdconf.MIN_OFFSET)
            x[pos] = latest - t[node]
        self.constraints.check_ordering(t)
        x[self.free_slice] = self.constraints.guess
        if self.rate_index is not None:
            x[self.rate_index] = np.log(rate)
        if self.disp_index is not None:
            x[self.disp_index] = np.log(np.clip(dispersion, cdconf.MIN_DISPERSION, cdconf.MAX_DISPERSION))
        return x

    def jitter(self, x0, rng, scale=cdconf.RESTART_JITTER):
        """random perturbation of a starting point for restarts"""
        x = np.array(x0)
        x[:self.n_offsets] = x0[:self.n_offsets]*np.exp(scale*rng.normal(size=self.n_offsets))
        c = self.constraints
        if c.n_free:
            x[self.free_slice] = np.clip(c.guess + scale*(c.upper-c.lower)*rng.uniform(-0.5, 0.5, size=c.n_free),
                                         c.lower, c.upper)
        if self.rate_index is not None:
            x[self.rate_index] += scale*rng.normal()
        if self.disp_index is not None:
            x[self.disp_index] = np.clip(x[self.disp_index] + scale*rng.normal(),
                                         np.log(cdconf.MIN_DISPERSION), np.log(cdconf.MAX_DISPERSION))
        return x


def _optimize_candidate(task):
    """
    fit node times and rate parameters for one root candidate from one
    starting point. Runs in worker processes, so all input is in `task`.
    """
    objective = ClockObjective(task['tree'], task['clock'])
    root_choice = task['root_choice']
    rooted = objective.rooted_tree(root_choice)
    constraints = TimeConstraints(rooted, task['sample_times'])
    param = TimeParameterization(objective, root_choice, constraints, fixed_rate=task['fixed_rate'])
    x0 = param.initial_state(task['rate'])
    if task['restart']>0:
        rng = np.random.default_rng(task['seed_sequence'])
        x0 = param.jitter(x0, rng)

    sol = minimize(param.value_and_grad, x0, jac=True, method='L-BFGS-B', bounds=param.bounds(),
                   options={'ftol':task['tol'], 'gtol':1e-8, 'maxiter':task['max_iter'],
                            'maxfun':10*task['max_iter']})
    value = float(param.value_and_grad(sol.x)[0])
    times, _ = param.node_times(sol.x)
    # status 1: iteration or evaluation budget exhausted
    converged = bool(sol.status!=1 and np.isfinite(value))
    return {'root_choice':root_choice, 'restart':task['restart'], 'objective':value,
            'times':times, 'rate':param.rate(sol.x), 'dispersion':param.dispersion(sol.x),
            'converged':converged, 'message':str(sol.message), 'n_iter':int(sol.nit),
            'n_params':param.size}


def as_indexed_tree(tree, seq_len=None, rooted=None):
    """
    convert a Bio.Phylo tree to IndexedTree, or adjust an IndexedTree to the
    requested sequence length and rooting
    """
    if isinstance(tree, IndexedTree):
        if seq_len is not None and seq_len!=tree.seq_len:
            tree = IndexedTree(tree.parent, tree.branch_length, tree.names, seq_len, rooted=tree.rooted)
        if rooted is False and tree.rooted:
            tree = tree.merged_root()
        elif rooted is True and not tree.rooted:
            tree = IndexedTree(tree.parent, tree.branch_length, tree.names, tree.seq_len, rooted=True)
        return tree
    if seq_len is None:
        raise ConfigurationError("sequence length is required to convert branch lengths into substitution counts")
    return IndexedTree.from_phylo(tree, seq_len, rooted=rooted)


def regression_seed(tree, constraints):
    """
    root-to-tip regression on the tree: the slope (NaN if not estimable) and,
    for unrooted trees, the optimal root position score of every edge
    """
    reg = TreeRegression(tree, constraints.leaf_dates())
    try:
        if tree.rooted:
            return reg.regression()['slope'], {}
        scores = reg.branch_scores()
    except ValueError:
        return np.nan, {}
    best = min(scores, key=lambda e:(scores[e][1], e))
    slope = scores[best][2] if np.isfinite(scores[best][1]) else np.nan
    return slope, scores


def initial_rate(tree, constraints, options, slope=np.nan, logger=None):
    """starting value of the rate: user value, regression slope, or a crude average"""
    logger = logger or silent_logger()
    if options.fixed_rate is not None:
        return options.fixed_rate
    if options.initial_rate:
        return options.initial_rate
    if np.isfinite(slope) and slope>0:
        logger("initial_rate: using root-to-tip regression slope %1.3e"%slope, 3)
        return slope
    dates = np.array(list(constraints.leaf_dates().values()))
    span = dates.max() - dates.min()
    total = tree.branch_length.sum()
    if span>0 and total>0:
        rate = total/(span*tree.n_leaves)
        logger("initial_rate: regression slope not positive, using %1.3e"%rate, 2, warn=True)
        return rate
    logger("initial_rate: no temporal signal, starting from rate 1.0", 2, warn=True)
    return 1.0


def root_candidates(tree, scores, max_candidates=None):
    """
    Edges of the unrooted tree to evaluate as root positions, ranked by the
    score of the optimal root on each edge in the root-to-tip regression,
    and the reference edge used to break ties (the regression-best edge).
    """
    edges = [int(e) for e in tree.edges()]
    ranked = sorted(edges, key=lambda e:(scores[e][1] if e in scores else np.inf, e))
    if max_candidates is not None:
        ranked = ranked[:max_candidates]
    return ranked, ranked[0]


def select_best(results, tree=None, reference=None):
    """
    pick the best run: lowest objective, restarts of a candidate tie-broken
    by the lower restart index. Candidates whose objectives agree within
    ROOT_TIE_TOL (relative) are tie-broken by the edge distance to the
    reference edge, then by the lower edge index.
    """
    per_candidate = {}
    for res in results:
        c = res['root_choice']
        prev = per_candidate.get(c)
        if prev is None or (res['objective'], res['restart'])<(prev['objective'], prev['restart']):
            per_candidate[c] = res
    finite = [r for r in per_candidate.values() if np.isfinite(r['objective'])]
    if not finite:
        finite = list(per_candidate.values())
    best_value = min(r['objective'] for r in finite)
    tol = cdconf.ROOT_TIE_TOL*max(1.0, abs(best_value)) if np.isfinite(best_value) else 0
    tied = [r for r in finite if r['objective']<=best_value+tol]
    if len(tied)==1 or tree is None or reference is None:
        return min(tied, key=lambda r:(r['objective'], -1 if r['root_choice'] is None else r['root_choice']))
    return min(tied, key=lambda r:(tree.edge_distance(r['root_choice'], reference), r['root_choice']))


def fit(tree, sample_times, seq_len=None, clock=None, logger=None, options=None, **kwargs):
    """
    Date the nodes of a tree under a strict or relaxed molecular clock.

    Parameters
    ----------
     tree : Bio.Phylo tree or IndexedTree
        branch lengths in substitutions per site. Rooted trees keep their
        root unless `rooted=False` is passed, for unrooted trees the root
        is searched.

     sample_times : dict
        leaf name -> scalar, (lower, upper), (lower, upper, guess) or SampleTime

     seq_len : int
        sequence length, optional for IndexedTree input

     clock : str
        'strict' or 'uncorrelated'

     logger : callable, optional
        logger(msg, level, warn=False)

     options : DatingOptions, optional
        base options, updated by keyword arguments (see DatingOptions)

    Returns
    -------
     TimeTreeFit
    """
    logger = logger or silent_logger()
    if clock is not None:
        kwargs['clock'] = clock
    opts = DatingOptions.from_kwargs(options, **kwargs)
    tree = as_indexed_tree(tree, seq_len, opts.rooted)
    constraints = TimeConstraints(tree, sample_times, logger=logger)
    model = make_clock_model(opts.clock)

    slope, scores = regression_seed(tree, constraints)
    rate0 = initial_rate(tree, constraints, opts, slope=slope, logger=logger)
    if tree.rooted:
        candidates, reference = [None], None
    else:
        candidates, reference = root_candidates(tree, scores, opts.max_root_candidates)
        logger("fit: evaluating %d of %d root positions"%(len(candidates), len(tree.edges())), 2)

    # check that every candidate admits a feasible initial assignment before
    # anything is dispatched
    objective = ClockObjective(tree, model)
    for c in candidates:
        TimeParameterization(objective, c, constraints, fixed_rate=opts.fixed_rate).initial_state(rate0)

    seed = 0 if opts.seed is None else opts.seed
    tasks = []
    for c in candidates:
        for restart in range(opts.n_restarts+1):
            tasks.append({'tree':tree, 'sample_times':constraints.sample_times, 'clock':model.name,
                          'root_choice':c, 'restart':restart, 'rate':rate0,
                          'fixed_rate':opts.fixed_rate, 'tol':opts.convergence_tolerance,
                          'max_iter':opts.max_iter,
                          'seed_sequence':np.random.SeedSequence(seed, spawn_key=(0 if c is None else c+1, restart))})
    logger("fit: running %d optimizations of the %s clock model on %d process(es)"
           %(len(tasks), model.name, opts.n_jobs), 2)
    results = map_tasks(_optimize_candidate, tasks, n_jobs=opts.n_jobs)
    best = select_best(results, tree=tree, reference=reference)

    fit_warnings = []
    if not best['converged']:
        msg = ("optimization of the %s clock did not converge within %d iterations (%s), "
               "returning the best point found"%(model.name, opts.max_iter, best['message']))
        w = ConvergenceWarning(msg)
        fit_warnings.append(w)
        warnings.warn(w)
        logger("fit: WARNING: "+msg, 1, warn=True)

    candidate_table = None
    if best['root_choice'] is None:
        final_tree, times = tree, best['times']
        root_edge, root_fraction = None, None
    else:
        rooted = objective.rooted_tree(best['root_choice'])
        t = best['times']
        root_edge = tree.names[best['root_choice']]
        u = rooted.index_of(root_edge)
        v = [c for c in rooted.children[rooted.root] if c!=u][0]
        du, dv = t[u]-t[rooted.root], t[v]-t[rooted.root]
        root_fraction = float(du/(du+dv)) if du+dv>0 else 0.5
        final_tree = tree.reroot(best['root_choice'], root_fraction)
        by_name = dict(zip(rooted.names, t))
        times = np.array([by_name[n] for n in final_tree.names])
        candidate_table = _candidate_table(tree, candidates, results)
        logger("fit: best root on the branch above %s at fraction %1.3f"%(root_edge, root_fraction), 2)

    res = TimeTreeFit(final_tree, times, best['rate'], best['dispersion'], model,
                      best['objective'], best['n_params'], converged=best['converged'],
                      warnings=fit_warnings, options=opts, sample_times=constraints.sample_times,
                      input_tree=tree, root_edge=root_edge, root_fraction=root_fraction,
                      candidates=candidate_table)
    logger("fit: %s clock, rate %1.3e, root at %1.4f, objective %1.4f"
           %(model.name, res.rate, res.root_time, res.objective), 2)
    return res


def _candidate_table(tree, candidates, results):
    rows = []
    for c in candidates:
        runs = [r for r in results if r['root_choice']==c]
        best = min(runs, key=lambda r:(r['objective'], r['restart']))
        rows.append({'edge':tree.names[c], 'objective':best['objective'], 'converged':best['converged']})
    return pd.DataFrame(rows, columns=['edge', 'objective', 'converged'])
