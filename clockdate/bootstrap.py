"""
Parametric bootstrap: substitution counts are simulated on the dated tree
from the fitted clock model and every replicate is refit with the same
options. Confidence intervals are percentiles over the replicates that
could be fit.
"""
import warnings
import numpy as np
import pandas as pd
from clockdate import config as cdconf
from clockdate import ClockDateError, ConfigurationError, ConvergenceWarning, ReplicateFailure
from clockdate.config import DatingOptions
from clockdate.dispatch import map_tasks
from clockdate.optimizer import fit
from clockdate.timetree_fit import TimeTreeFit
from clockdate.utils import silent_logger


def simulate_counts(fit_result, rng):
    """draw substitution counts for every branch of the dated tree"""
    tree = fit_result.tree
    edges = tree.edges()
    counts = np.zeros(tree.n_nodes)
    m = fit_result.expected_mutations()
    counts[edges] = fit_result.clock_model.simulate(m[edges], fit_result.dispersion, rng)
    return counts


def _replicate_task(task):
    """simulate and refit one replicate, failures are returned as ReplicateFailure"""
    index = task['index']
    try:
        rng = np.random.default_rng(task['seed'])
        tree = task['fit'].tree.with_mutations(simulate_counts(task['fit'], rng))
        if task['fit'].searched_root:
            tree = tree.merged_root()
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', ConvergenceWarning)
            res = fit(tree, task['fit'].sample_times, options=task['options'])
    except (ClockDateError, ArithmeticError, ValueError, LookupError, np.linalg.LinAlgError) as e:
        return ReplicateFailure(index, "%s: %s"%(type(e).__name__, e))
    if not res.converged:
        return ReplicateFailure(index, "optimizer did not converge")
    return res


class _FitData(object):
    """the parts of a fit needed to simulate and refit a replicate"""
    def __init__(self, fit_result):
        self.tree = fit_result.tree
        self.times = fit_result.times
        self.rate = fit_result.rate
        self.dispersion = fit_result.dispersion
        self.clock_model = fit_result.clock_model
        self.sample_times = fit_result.sample_times
        self.searched_root = fit_result.searched_root

    def expected_mutations(self):
        dt = self.times - self.times[np.maximum(self.tree.parent, 0)]
        dt[self.tree.root] = 0.0
        return self.rate*self.tree.seq_len*dt


class BootstrapResult(object):
    """
    Confidence intervals from a parametric bootstrap.

    Attributes
    ----------
     rate_ci, root_time_ci, dispersion_ci : tuple
        percentile intervals (dispersion_ci is None for the strict clock)
     node_intervals : pandas.DataFrame
        per internal node of the fitted tree: point estimate, interval,
        median and support (fraction of replicates containing the clade)
     ltt : pandas.DataFrame
        lineages through time of the fit with bands (time, lineages, lower, upper)
     replicates : list of TimeTreeFit
     failures : list of ReplicateFailure
     n_failed : int
     warnings : list
    """
    def __init__(self, fit_result, replicates, failures, quantiles, ltt_points=cdconf.LTT_POINTS):
        self.fit = fit_result
        self.replicates = replicates
        self.failures = failures
        self.n_failed = len(failures)
        self.n_replicates = len(replicates) + len(failures)
        self.quantiles = tuple(quantiles)
        self.warnings = []
        if not replicates:
            msg = "all %d bootstrap replicates failed, intervals are undefined"%self.n_replicates
            self.warnings.append(msg)
            warnings.warn(msg)

        self.rate_ci = self._interval([r.rate for r in replicates])
        self.root_time_ci = self._interval([r.root_time for r in replicates])
        self.dispersion_ci = self._interval([r.dispersion for r in replicates]) \
                             if fit_result.clock_model.relaxed else None
        self.node_intervals = self._node_intervals()
        self.ltt = self._ltt(ltt_points)

    def _interval(self, values):
        if len(values)==0:
            return tuple(np.nan for q in self.quantiles)
        return tuple(float(x) for x in np.quantile(values, self.quantiles))

    def _node_intervals(self):
        tree = self.fit.tree
        replicate_clades = [{c:r.times[n] for n, c in r.tree.clades().items()} for r in self.replicates]
        rows = []
        for node, clade in sorted(self.fit.tree.clades().items(), key=lambda x:tree.tin[x[0]]):
            values = [rc[clade] for rc in replicate_clades if clade in rc]
            interval = self._interval(values)
            rows.append({'node':tree.names[node], 'n_leaves':len(clade), 'numdate':self.fit.times[node],
                         'lower':interval[0], 'upper':interval[-1],
                         'median':float(np.median(values)) if values else np.nan,
                         'support':len(values)/len(self.replicates) if self.replicates else 0.0})
        return pd.DataFrame(rows, columns=['node', 'n_leaves', 'numdate', 'lower', 'upper',
                                           'median', 'support']).set_index('node')

    def _ltt(self, n_points):
        start = min([self.fit.root_time] + [r.root_time for r in self.replicates])
        end = self.fit.times[self.fit.tree.leaves].max()
        grid = np.linspace(start, end, n_points)
        if self.replicates:
            curves = np.array([r.lineages_through_time(grid) for r in self.replicates])
            lower, upper = np.quantile(curves, [self.quantiles[0], self.quantiles[-1]], axis=0)
        else:
            lower = upper = np.full(len(grid), np.nan)
        return pd.DataFrame({'time':grid, 'lineages':self.fit.lineages_through_time(grid),
                             'lower':lower, 'upper':upper})

    def summary(self):
        lo, hi = self.quantiles[0], self.quantiles[-1]
        lines = ["Parametric bootstrap (%d replicates, %d failed):"%(self.n_replicates, self.n_failed),
                 " --rate:\t%1.3e [%1.3e, %1.3e]"%(self.fit.rate, self.rate_ci[0], self.rate_ci[-1]),
                 " --root date:\t%1.4f [%1.4f, %1.4f]"%(self.fit.root_time, self.root_time_ci[0], self.root_time_ci[-1])]
        if self.dispersion_ci is not None:
            lines.append(" --dispersion:\t%1.3e [%1.3e, %1.3e]"%(self.fit.dispersion, self.dispersion_ci[0],
                                                                 self.dispersion_ci[-1]))
        lines.append(" --intervals:\t%1.1f%% to %1.1f%% percentiles"%(100*lo, 100*hi))
        for w in self.warnings:
            lines.append(" --warning:\t%s"%w)
        return "\n".join(lines)+"\n"

    def __str__(self):
        return self.summary()


def parametric_bootstrap(fit_result, n_replicates, n_jobs=1, seed=None, quantiles=cdconf.BOOTSTRAP_QUANTILES,
                         ltt_points=cdconf.LTT_POINTS, logger=None):
    """
    Simulate `n_replicates` data sets from the fitted model and refit each.

    Parameters
    ----------
     fit_result : TimeTreeFit
     n_replicates : int
     n_jobs : int
        number of worker processes for the replicates
     seed : int, optional
        seed of the replicate random streams, None draws fresh entropy
     quantiles : tuple
        percentiles (as fractions) reported as interval bounds

    Returns
    -------
     BootstrapResult
    """
    logger = logger or silent_logger()
    if not isinstance(fit_result, TimeTreeFit):
        raise ConfigurationError("parametric_bootstrap needs a TimeTreeFit, got %r"%type(fit_result))
    opts = DatingOptions.from_kwargs(fit_result.options, n_bootstrap=n_replicates, n_jobs=n_jobs, seed=seed)
    if opts.n_bootstrap<1:
        raise ConfigurationError("option 'n_bootstrap' has to be >= 1, got %r"%n_replicates)
    quantiles = tuple(float(q) for q in quantiles)
    if len(quantiles)<2 or any(q<0 or q>1 for q in quantiles) or list(quantiles)!=sorted(quantiles):
        raise ConfigurationError("option 'quantiles' has to be increasing values in [0,1], got %r"%(quantiles,))

    # refits run sequentially inside each worker, the root is searched again
    # if it was searched in the original fit
    refit_options = opts.replace(n_jobs=1, rooted=not fit_result.searched_root, n_bootstrap=0)
    fit_data = _FitData(fit_result)
    seeds = np.random.SeedSequence(seed).spawn(opts.n_bootstrap)
    tasks = [{'index':i, 'seed':s, 'fit':fit_data, 'options':refit_options} for i, s in enumerate(seeds)]
    logger("parametric_bootstrap: running %d replicates on %d process(es)"%(len(tasks), opts.n_jobs), 2)
    results = map_tasks(_replicate_task, tasks, n_jobs=opts.n_jobs)

    replicates = [r for r in results if isinstance(r, TimeTreeFit)]
    failures = [r for r in results if isinstance(r, ReplicateFailure)]
    if failures:
        logger("parametric_bootstrap: %d of %d replicates failed and are excluded from the intervals"
               %(len(failures), len(results)), 1, warn=True)
    return BootstrapResult(fit_result, replicates, failures, quantiles, ltt_points=ltt_points)
