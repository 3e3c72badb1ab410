"""
Diagnostics of a fitted clock model: per-leaf outlier statistics with
false discovery rate control, the likelihood ratio test of the relaxed
against the strict clock, and root-to-tip regression based checks.
"""
import numpy as np
import pandas as pd
from scipy.stats import poisson, nbinom, chi2
from statsmodels.stats.multitest import fdrcorrection
from clockdate import config as cdconf
from clockdate import ClockDateError
from clockdate.config import DatingOptions
from clockdate.sample_times import TimeConstraints
from clockdate.treeregression import TreeRegression
from clockdate.optimizer import fit, as_indexed_tree
from clockdate.dispatch import map_tasks
from clockdate.utils import silent_logger


def _count_distribution(m, variance):
    """Poisson, or negative binomial with matching mean and variance if overdispersed"""
    if variance<=m*(1+cdconf.TINY_NUMBER):
        return poisson(m)
    p = m/variance
    return nbinom(m*p/(1-p), p)


def outlier_tips(fit_result, logger=None):
    """
    Compare the root-to-tip substitution count of every leaf with the count
    expected from the fitted rate and the time elapsed since the root.

    The expected count is rate*L*(t_leaf - t_root). For the strict clock the
    count is Poisson distributed, for the relaxed clock its distribution is
    approximated by a negative binomial with the mean and variance of the sum
    of the per-branch negative binomials. p-values are two-sided, q-values
    are Benjamini-Hochberg adjusted.

    Returns
    -------
     pandas.DataFrame
        indexed by leaf name with columns statistic (observed minus expected
        root-to-tip distance per site), expected, observed (counts), p, q,
        sorted by ascending q
    """
    logger = logger or silent_logger()
    tree = fit_result.tree
    cm = fit_result.clock_model
    L = tree.seq_len
    m_edge = fit_result.expected_mutations()
    var_edge = np.zeros(tree.n_nodes)
    edges = tree.edges()
    var_edge[edges] = cm.variance(m_edge[edges], fit_result.dispersion)

    observed = tree.dist2root(tree.mutations)
    expected = tree.dist2root(m_edge)
    variance = tree.dist2root(var_edge)

    rows = []
    for leaf in tree.leaves:
        obs, exp = observed[leaf], expected[leaf]
        if abs(obs-exp)<=1e-8*max(1.0, exp):
            p = 1.0
        else:
            m = max(exp, cdconf.MIN_EXPECTED)
            dist = _count_distribution(m, max(variance[leaf], m))
            k = np.round(obs)
            p = min(1.0, 2*min(dist.cdf(k), dist.sf(k-1)))
        rows.append({'name':tree.names[leaf], 'statistic':(obs-exp)/L, 'expected':exp,
                     'observed':obs, 'p':p})

    df = pd.DataFrame(rows, columns=['name', 'statistic', 'expected', 'observed', 'p'])
    df['q'] = fdrcorrection(df['p'].values, alpha=cdconf.ALPHA)[1]
    df = df.sort_values(by=['q', 'name'], kind='mergesort').set_index('name')
    n_sig = (df['q']<cdconf.ALPHA).sum()
    if n_sig:
        logger("outlier_tips: %d leaves deviate from the clock at FDR %1.2f"%(n_sig, cdconf.ALPHA), 2, warn=True)
    return df


class ClockTestResult(object):
    """
    likelihood ratio test of the relaxed against the strict clock. The
    dispersion is zero under the null, on the boundary of its range, so the
    statistic follows a 50:50 mixture of chi-square distributions with zero
    and one degree of freedom.
    """
    def __init__(self, strict, relaxed, alpha=cdconf.ALPHA):
        self.strict = strict
        self.relaxed = relaxed
        self.alpha = alpha
        self.statistic = max(0.0, 2*(strict.objective - relaxed.objective))
        self.p_value = 1.0 if self.statistic<=0 else 0.5*chi2.sf(self.statistic, 1)
        self.aic_strict = strict.aic
        self.aic_relaxed = relaxed.aic
        self.delta_aic = self.aic_strict - self.aic_relaxed
        self.relaxed_supported = bool(self.p_value<alpha)

    def summary(self):
        return ("Relaxed clock test:\n --strict log-lh:\t%1.4f (AIC %1.2f)\n --relaxed log-lh:\t%1.4f (AIC %1.2f)\n"
                " --dispersion:\t%1.3e\n --LR statistic:\t%1.4f\n --p-value:\t%1.3e\n --relaxed clock supported:\t%s\n"
                %(self.strict.log_lh, self.aic_strict, self.relaxed.log_lh, self.aic_relaxed,
                  self.relaxed.dispersion, self.statistic, self.p_value,
                  'yes' if self.relaxed_supported else 'no'))

    def __str__(self):
        return self.summary()


def _fit_task(task):
    return fit(task['tree'], task['sample_times'], options=task['options'])


def relaxed_clock_test(tree, sample_times, seq_len=None, alpha=cdconf.ALPHA, logger=None,
                       options=None, **kwargs):
    """
    Fit the strict and the relaxed clock to the same data and test whether
    rate heterogeneity among branches is supported.

    Returns
    -------
     ClockTestResult
    """
    logger = logger or silent_logger()
    opts = DatingOptions.from_kwargs(options, **kwargs)
    tree = as_indexed_tree(tree, seq_len, opts.rooted)
    constraints = TimeConstraints(tree, sample_times, logger=logger)

    # worker processes can not start pools of their own, each fit runs sequentially
    tasks = [{'tree':tree, 'sample_times':constraints.sample_times,
              'options':opts.replace(clock=c, n_jobs=1)} for c in ['strict', 'uncorrelated']]
    logger("relaxed_clock_test: fitting strict and relaxed clock", 2)
    strict, relaxed = map_tasks(_fit_task, tasks, n_jobs=opts.n_jobs)
    res = ClockTestResult(strict, relaxed, alpha=alpha)
    logger("relaxed_clock_test: LR statistic %1.3f, p=%1.3e"%(res.statistic, res.p_value), 2)
    return res


def root_to_tip(tree, sample_times, seq_len=1, rooted=None):
    """
    Root-to-tip regression of the distance from the root against sampling
    dates (interval midpoints). For unrooted trees, the root position
    minimizing the residuals of the regression is used.

    Returns
    -------
     dict
        slope, intercept, r_val, r2, chisq, root_date, cov (if estimable),
        root_edge and split (unrooted trees), and `points`, a DataFrame with
        date and dist2root of each leaf
    """
    tree = as_indexed_tree(tree, seq_len, rooted)
    constraints = TimeConstraints(tree, sample_times)
    dates = constraints.leaf_dates()
    reg = TreeRegression(tree, dates)
    try:
        if tree.rooted:
            res = reg.regression()
            rooted_tree = tree
        else:
            best = reg.find_best_root()
            if best is None:
                best = reg.find_best_root(force_positive=False)
            if best is None:
                raise ClockDateError("root_to_tip: no root position gives a valid regression")
            rooted_tree = tree.reroot(best["node"], best["split"])
            res = TreeRegression(rooted_tree, dates).regression()
            res["root_edge"] = tree.names[best["node"]]
            res["split"] = best["split"]
    except ValueError as e:
        raise ClockDateError("root_to_tip: %s"%e)
    res['r2'] = res['r_val']**2
    res['root_date'] = -res['intercept']/res['slope'] if res['slope'] else np.nan
    d2r = rooted_tree.dist2root()
    res['points'] = pd.DataFrame({'date':[dates[rooted_tree.names[l]] for l in rooted_tree.leaves],
                                  'dist2root':d2r[rooted_tree.leaves]},
                                 index=pd.Index(rooted_tree.leaf_names, name='name'))
    return res


def residual_filter(fit_result, n_iqd=cdconf.NIQD, logger=None):
    """
    flag leaves whose root-to-tip distance deviates from the root-to-tip
    regression on the dated tree by more than n_iqd interquartile distances
    of all residuals. Leaves attached directly to the root are not flagged.

    Returns
    -------
     pandas.DataFrame
        indexed by leaf name with columns given_date, apparent_date and
        residual (in units of the interquartile distance)
    """
    logger = logger or silent_logger()
    tree = fit_result.tree
    dates = {name:st.mean for name, st in fit_result.sample_times.items()}
    try:
        reg = TreeRegression(tree, dates).regression()
    except ValueError as e:
        raise ClockDateError("residual_filter: %s"%e)
    clock_rate, icpt = reg['slope'], reg['intercept']
    d2r = tree.dist2root()
    res = {}
    for leaf in tree.leaves:
        res[leaf] = d2r[leaf] - clock_rate*dates[tree.names[leaf]] - icpt

    residuals = np.array(list(res.values()))
    # residuals of a perfect clock are zero up to rounding
    iqd = max(np.percentile(residuals,75) - np.percentile(residuals,25), cdconf.TINY_NUMBER)
    outliers = []
    for leaf, r in res.items():
        if abs(r)>n_iqd*iqd and tree.parent[leaf]!=tree.root:
            outliers.append({'name':tree.names[leaf], 'given_date':dates[tree.names[leaf]],
                             'apparent_date':(d2r[leaf] - icpt)/clock_rate if clock_rate else np.nan,
                             'residual':r/iqd})

    outlier_df = pd.DataFrame(outliers, columns=['name', 'given_date', 'apparent_date', 'residual'])\
                   .set_index('name')
    if len(outlier_df):
        logger("residual_filter marked the following outliers: %s"%", ".join(outlier_df.index), 2, warn=True)
    return outlier_df
