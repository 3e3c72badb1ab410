import time
from clockdate import config as cdconf
from clockdate import ClockDateError
from clockdate.config import DatingOptions
from clockdate.sample_times import TimeConstraints
from clockdate.optimizer import fit, as_indexed_tree
from clockdate.diagnostics import outlier_tips, relaxed_clock_test, residual_filter, root_to_tip
from clockdate.bootstrap import parametric_bootstrap
from clockdate.utils import Logger


class ClockDater(object):
    """
    ClockDater ties the dating steps together: it validates the tree, the
    sample times and the options once, fits the clock model and runs the
    diagnostics and the bootstrap on the fit. Results of the last call of
    each step are kept as attributes.
    """

    def __init__(self, tree, dates, seq_len, verbose=cdconf.VERBOSE, **kwargs):
        """
        ClockDater constructor

        Parameters
        -----------
         tree : Bio.Phylo tree or IndexedTree
            branch lengths in substitutions per site

         dates : dict
            leaf name -> sample time (scalar, [lower, upper] or SampleTime)

         seq_len : int
            length of the alignment the branch lengths refer to

         verbose : int
            verbosity of the log messages

         **kwargs
            options, see DatingOptions

        """
        self.t_start = time.time()
        self.verbose = verbose
        self._log = Logger(verbose, self.t_start)
        self.options = DatingOptions.from_kwargs(**kwargs)
        self.tree = as_indexed_tree(tree, seq_len, self.options.rooted)
        self.constraints = TimeConstraints(self.tree, dates, logger=self.logger)
        self.logger("ClockDater: %d leaves, %d with uncertain sample times, %s"
                    %(self.tree.n_leaves, self.constraints.n_free,
                      'rooted' if self.tree.rooted else 'unrooted'), 1)

        self.fit_result = None
        self.outlier_table = None
        self.clock_test_result = None
        self.bootstrap_result = None


    def logger(self, msg, level, warn=False, only_once=False):
        """
        Print log message *msg* to stdout.

        Parameters
        -----------

         msg : str
            String to print on the screen

         level : int
            Log-level. Only the messages with a level lower than the
            current verbose level will be shown.

         warn : bool
            Warning flag. If True, the message will be displayed
            if its log-level is equal to the verbose level.

        """
        self._log.verbose = self.verbose
        self._log(msg, level, warn=warn, only_once=only_once)


    @property
    def sample_times(self):
        return self.constraints.sample_times


    def run(self, **kwargs):
        """
        fit the clock model, keyword arguments update the options of this run

        Returns
        -------
         TimeTreeFit
        """
        options = self.options.replace(**kwargs)
        self.logger("###ClockDater.run: fitting the %s clock"%options.clock, 0)
        self.fit_result = fit(self.tree, self.sample_times, options=options, logger=self.logger)
        self.logger(str(self.fit_result), 1)
        return self.fit_result


    def _require_fit(self):
        if self.fit_result is None:
            self.run()
        return self.fit_result


    def outliers(self):
        """per-leaf outlier statistics of the current fit, see outlier_tips"""
        self.logger("###ClockDater.outliers", 0)
        self.outlier_table = outlier_tips(self._require_fit(), logger=self.logger)
        return self.outlier_table


    def clock_test(self, alpha=cdconf.ALPHA):
        """likelihood ratio test of the relaxed against the strict clock"""
        self.logger("###ClockDater.clock_test", 0)
        self.clock_test_result = relaxed_clock_test(self.tree, self.sample_times, alpha=alpha,
                                                    logger=self.logger, options=self.options)
        self.logger(str(self.clock_test_result), 1)
        return self.clock_test_result


    def bootstrap(self, n_replicates=None, quantiles=cdconf.BOOTSTRAP_QUANTILES):
        """parametric bootstrap of the current fit"""
        n = self.options.n_bootstrap if n_replicates is None else n_replicates
        if not n:
            raise ClockDateError("ClockDater.bootstrap: number of replicates has to be positive")
        self.logger("###ClockDater.bootstrap: %d replicates"%n, 0)
        self.bootstrap_result = parametric_bootstrap(self._require_fit(), n, n_jobs=self.options.n_jobs,
                                                     seed=self.options.seed, quantiles=quantiles,
                                                     logger=self.logger)
        self.logger(str(self.bootstrap_result), 1)
        return self.bootstrap_result


    def clock_filter(self, n_iqd=cdconf.NIQD):
        """leaves deviating from the root-to-tip regression of the current fit"""
        self.logger("###ClockDater.clock_filter: n_iqd=%s"%n_iqd, 0)
        return residual_filter(self._require_fit(), n_iqd=n_iqd, logger=self.logger)


    def root_to_tip(self):
        """root-to-tip regression of the input tree"""
        return root_to_tip(self.tree, self.sample_times, seq_len=self.tree.seq_len, rooted=self.tree.rooted)
