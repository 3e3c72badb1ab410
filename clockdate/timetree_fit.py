import numpy as np
import pandas as pd
from clockdate.clock_models import make_clock_model
from clockdate.utils import datestring_from_numeric


class TimeTreeFit(object):
    """
    Result of a molecular clock fit. Holds the rooted dated tree, the node
    times and the rate parameters. Not modified after creation: diagnostics
    and the bootstrap only read it.

    Attributes
    ----------
     tree : IndexedTree
        rooted tree, for searched roots with the root inserted on the chosen edge
     times : np.array
        calendar time of every node of `tree`
     numdate : dict
        node name -> calendar time
     rate, dispersion : float
        global substitution rate per site and unit of time, and the squared
        coefficient of variation of branch rates (0 for the strict clock)
     branch_rates : np.array
        rate estimate of the branch above each node (NaN for the root)
     objective, log_lh, n_params, aic : float
        negative log-likelihood at the optimum and derived quantities
     root_edge, root_fraction :
        name of the node below the root edge in the input tree and the
        fraction of the edge length between that node and the root. None
        if the root of the input tree was kept
     candidates : pandas.DataFrame
        evaluated root edges and their objectives (None for fixed roots)
    """
    def __init__(self, tree, times, rate, dispersion, clock_model, objective, n_params,
                 converged=True, warnings=None, options=None, sample_times=None,
                 input_tree=None, root_edge=None, root_fraction=None, candidates=None):
        self.tree = tree
        self.times = np.array(times, dtype=float)
        self.times.setflags(write=False)
        self.numdate = {name:float(t) for name, t in zip(tree.names, self.times)}
        self.root_time = float(self.times[tree.root])
        self.rate = float(rate)
        self.dispersion = float(dispersion)
        self.clock_model = make_clock_model(clock_model)
        self.clock = self.clock_model.name
        self.objective = float(objective)
        self.log_lh = -self.objective
        self.n_params = int(n_params)
        self.aic = 2*self.n_params + 2*self.objective
        self.converged = bool(converged)
        self.warnings = list(warnings or [])
        self.options = options
        self.sample_times = sample_times
        self.input_tree = input_tree if input_tree is not None else tree
        self.root_edge = root_edge
        self.root_fraction = root_fraction
        self.searched_root = root_edge is not None
        self.candidates = candidates

        edges = tree.edges()
        dt = self.elapsed()
        self.branch_rates = np.full(tree.n_nodes, np.nan)
        self.branch_rates[edges] = self.clock_model.branch_rates(tree.mutations[edges], dt[edges], self.rate,
                                                                 self.dispersion, tree.seq_len)
        self.branch_rates.setflags(write=False)

    def node_time(self, name):
        return self.numdate[name]

    def elapsed(self):
        """duration of the branch above each node (0 for the root)"""
        dt = self.times - self.times[np.maximum(self.tree.parent, 0)]
        dt[self.tree.root] = 0.0
        return dt

    def expected_mutations(self):
        """expected number of substitutions on the branch above each node"""
        return self.rate*self.tree.seq_len*self.elapsed()

    def ltt_grid(self, n_points=50):
        leaf_times = self.times[self.tree.leaves]
        return np.linspace(self.root_time, leaf_times.max(), n_points)

    def lineages_through_time(self, grid=None):
        """
        number of lineages present at each time of the grid, i.e. branches
        with parent time <= t < child time
        """
        grid = self.ltt_grid() if grid is None else np.asarray(grid, dtype=float)
        edges = self.tree.edges()
        t_child = self.times[edges]
        t_parent = self.times[self.tree.parent[edges]]
        g = grid[:,None]
        return ((g>=t_parent) & (g<t_child)).sum(axis=1)

    def date_table(self):
        """pandas DataFrame with the calendar time and date of every node"""
        tree = self.tree
        df = pd.DataFrame({'node':tree.names,
                           'numdate':self.times,
                           'date':[datestring_from_numeric(t) for t in self.times],
                           'is_leaf':tree.is_leaf,
                           'mutation_length':tree.branch_length,
                           'rate':self.branch_rates})
        return df.set_index('node')

    def to_phylo(self):
        """
        Bio.Phylo tree with branch lengths in units of time. Clades carry
        the attributes numdate, date, mutation_length and rate.
        """
        return self.tree.to_phylo(branch_length=self.elapsed(),
                                  attributes={'numdate':self.times,
                                              'date':[datestring_from_numeric(t) for t in self.times],
                                              'mutation_length':self.tree.branch_length,
                                              'rate':self.branch_rates})

    def summary(self):
        lines = ["Molecular clock fit (%s clock):"%self.clock,
                 " --rate:\t%1.3e substitutions per site and unit of time"%self.rate]
        if self.clock_model.relaxed:
            lines.append(" --dispersion:\t%1.3e (squared coefficient of variation of branch rates)"
                         %self.dispersion)
        lines.append(" --root date:\t%1.4f (%s)"%(self.root_time, datestring_from_numeric(self.root_time)))
        if self.searched_root:
            lines.append(" --root edge:\tabove %s at fraction %1.3f, %d candidates evaluated"
                         %(self.root_edge, self.root_fraction, len(self.candidates)))
        lines.append(" --log-lh:\t%1.4f\n --parameters:\t%d\n --AIC:  \t%1.4f"
                     %(self.log_lh, self.n_params, self.aic))
        lines.append(" --converged:\t%s"%self.converged)
        for w in self.warnings:
            lines.append(" --warning:\t%s"%w)
        return "\n".join(lines)+"\n"

    def __str__(self):
        return self.summary()

    def __repr__(self):
        return "TimeTreeFit(clock=%r, rate=%1.3e, root_time=%1.4f, objective=%1.4f)"\
               %(self.clock, self.rate, self.root_time, self.objective)
