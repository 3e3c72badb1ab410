import numpy as np
from clockdate import InfeasibleConstraintError, MalformedTreeError
from clockdate.utils import silent_logger


class SampleTime(object):
    """
    Calendar sampling time of a leaf: either a fixed value, or an interval
    [lower, upper] with an initial guess (default: the midpoint).
    """
    def __init__(self, value=None, lower=None, upper=None, guess=None, name=None):
        self.name = name
        if value is not None:
            if lower is not None or upper is not None:
                raise InfeasibleConstraintError("sample time of %s: specify either a value or bounds"%name)
            value = float(value)
            if not np.isfinite(value):
                raise InfeasibleConstraintError("sample time of %s is not finite: %r"%(name, value))
            self.value = value
            self.lower = self.upper = self.guess = value
        else:
            if lower is None or upper is None:
                raise InfeasibleConstraintError("sample time of %s needs both lower and upper bound"%name)
            lower, upper = float(lower), float(upper)
            if not (np.isfinite(lower) and np.isfinite(upper)):
                raise InfeasibleConstraintError("sample time bounds of %s are not finite: [%r, %r]"
                                                %(name, lower, upper))
            if lower>upper:
                raise InfeasibleConstraintError("sample time interval of %s is empty: lower %r > upper %r"
                                                %(name, lower, upper))
            guess = 0.5*(lower+upper) if guess is None else float(guess)
            if not lower<=guess<=upper:
                raise InfeasibleConstraintError("initial guess %r for the sample time of %s is outside [%r, %r]"
                                                %(guess, name, lower, upper))
            self.value = lower if lower==upper else None
            self.lower, self.upper, self.guess = lower, upper, guess

    @property
    def is_fixed(self):
        return self.value is not None

    @property
    def mean(self):
        return 0.5*(self.lower+self.upper)

    @property
    def bounds(self):
        return (self.lower, self.upper)

    def __repr__(self):
        if self.is_fixed:
            return "SampleTime(%r)"%self.value
        return "SampleTime([%r, %r], guess=%r)"%(self.lower, self.upper, self.guess)

    @classmethod
    def from_value(cls, val, name=None):
        """
        interpret a scalar as fixed time, a pair as interval and a triple as
        interval with initial guess
        """
        if isinstance(val, SampleTime):
            return val
        if np.isscalar(val):
            try:
                return cls(value=float(val), name=name)
            except (TypeError, ValueError):
                raise InfeasibleConstraintError("can't interpret sample time %r of %s"%(val, name))
        try:
            vals = [float(x) for x in val]
        except (TypeError, ValueError):
            raise InfeasibleConstraintError("can't interpret sample time %r of %s"%(val, name))
        if len(vals)==1:
            return cls(value=vals[0], name=name)
        if len(vals)==2:
            return cls(lower=vals[0], upper=vals[1], name=name)
        if len(vals)==3:
            return cls(lower=vals[0], upper=vals[1], guess=vals[2], name=name)
        raise InfeasibleConstraintError("can't interpret sample time %r of %s"%(val, name))


class TimeConstraints(object):
    """
    Sample time constraints of all leaves of a tree. Leaves with fixed times
    are constants, leaves with intervals become bounded free variables of
    the optimizer.

    Parameters
    ----------
     tree : IndexedTree
     sample_times : dict
        leaf name -> scalar, (lower, upper), (lower, upper, guess) or SampleTime
    """
    def __init__(self, tree, sample_times, logger=None):
        logger = logger or silent_logger()
        self.tree = tree
        leaf_names = set(tree.leaf_names)
        unknown = sorted(k for k in sample_times if k not in leaf_names)
        if unknown:
            logger("TimeConstraints: %d sample times refer to names not among the leaves: %s"
                   %(len(unknown), ", ".join(map(str, unknown[:10]))), 1, warn=True)

        self.sample_times = {}
        for leaf in tree.leaves:
            name = tree.names[leaf]
            if name not in sample_times or sample_times[name] is None:
                raise MalformedTreeError("leaf %s has no sample time"%name)
            self.sample_times[name] = SampleTime.from_value(sample_times[name], name=name)

        n = tree.n_nodes
        self.fixed_times = np.full(n, np.nan)
        free = []
        for leaf in tree.leaves:
            st = self.sample_times[tree.names[leaf]]
            if st.is_fixed:
                self.fixed_times[leaf] = st.value
            else:
                free.append(leaf)
        self.free_leaves = np.array(free, dtype=int)
        self.lower = np.array([self.sample_times[tree.names[l]].lower for l in free], dtype=float)
        self.upper = np.array([self.sample_times[tree.names[l]].upper for l in free], dtype=float)
        self.guess = np.array([self.sample_times[tree.names[l]].guess for l in free], dtype=float)

        # latest time compatible with the sample times of the leaves below each node
        self.upper_limit = np.full(n, np.inf)
        for node in tree.postorder:
            if tree.is_leaf[node]:
                self.upper_limit[node] = self.sample_times[tree.names[node]].upper
            else:
                self.upper_limit[node] = min(self.upper_limit[c] for c in tree.children[node])
        for arr in [self.fixed_times, self.free_leaves, self.lower, self.upper, self.guess, self.upper_limit]:
            arr.setflags(write=False)

    @property
    def n_free(self):
        return len(self.free_leaves)

    def for_tree(self, tree):
        """constraints for a tree with the same leaves (e.g. after rerooting)"""
        return TimeConstraints(tree, self.sample_times)

    def leaf_times(self, free_values=None):
        """
        full-length vector with the times of all leaves (NaN for internal
        nodes). Free leaves take `free_values` or their initial guesses.
        """
        t = np.array(self.fixed_times)
        if self.n_free:
            t[self.free_leaves] = self.guess if free_values is None else free_values
        return t

    def leaf_dates(self):
        """dict leaf name -> date used in regressions (interval midpoints)"""
        return {name:st.mean for name, st in self.sample_times.items()}

    def check_ordering(self, times, tol=1e-9):
        """
        raise InfeasibleConstraintError if the time vector violates the
        ancestor-precedes-descendant ordering or a sample time interval.
        """
        tree = self.tree
        for node in tree.edges():
            p = tree.parent[node]
            if times[p]>times[node]+tol:
                raise InfeasibleConstraintError("node %s (time %1.6f) is later than its descendant %s (time %1.6f)"
                                                %(tree.names[p], times[p], tree.names[node], times[node]))
        for leaf in tree.leaves:
            st = self.sample_times[tree.names[leaf]]
            if times[leaf]<st.lower-tol or times[leaf]>st.upper+tol:
                raise InfeasibleConstraintError("time %1.6f of leaf %s is outside its sample time interval [%r, %r]"
                                                %(times[leaf], tree.names[leaf], st.lower, st.upper))
