import sys
import numpy as np
from clockdate import utils
from clockdate import ClockDateError
from clockdate.clockdater import ClockDater
from clockdate.diagnostics import residual_filter
from clockdate.CLI_io import get_outdir, read_tree, export_timetree, write_table, write_rtt, print_error


def _load_inputs(params):
    """parse dates and tree, both are required for every sub-command"""
    if params.sequence_length is None:
        raise ClockDateError("argument '--sequence-length' is required.")
    dates = utils.parse_dates(params.dates, date_col=params.date_column, name_col=params.name_column)
    tree = read_tree(params.tree)
    return tree, dates


def _dater_options(params):
    return dict(n_jobs=params.jobs, max_root_candidates=params.max_root_candidates,
                convergence_tolerance=params.tol, max_iter=params.max_iter,
                n_restarts=params.restarts, seed=params.seed,
                rooted=True if params.keep_root else False)


def date_tree(params):
    """
    implementing clockdate date: fit the clock model, optionally flag outliers
    and run the parametric bootstrap, and write the results to the output directory
    """
    try:
        tree, dates = _load_inputs(params)
        outdir = get_outdir(params, '_clockdate')

        dater = ClockDater(tree, dates, params.sequence_length, verbose=params.verbose,
                           clock=params.clock, fixed_rate=params.clock_rate,
                           initial_rate=params.initial_rate, n_bootstrap=params.bootstrap,
                           **_dater_options(params))
        fit_result = dater.run()
        if not np.isfinite(fit_result.objective):
            print_error("the clock model could not be fit, the likelihood is not finite.")
            return 1
        print(fit_result)

        if params.outliers:
            write_table(dater.outliers(), outdir + 'outliers.tsv', 'outlier statistics')

        bootstrap = None
        if params.bootstrap:
            bootstrap = dater.bootstrap()
            print(bootstrap)
            write_table(bootstrap.node_intervals, outdir + 'bootstrap_nodes.tsv', 'bootstrap node intervals')
            write_table(bootstrap.ltt.set_index('time'), outdir + 'ltt.tsv', 'lineages through time')

        export_timetree(fit_result, outdir, bootstrap=bootstrap)
    except ClockDateError as e:
        print_error(e)
        return 1
    return 0


def estimate_clock_model(params):
    """
    implementing clockdate clock: root-to-tip regression, relaxed clock test
    and residual based clock filter
    """
    try:
        tree, dates = _load_inputs(params)
        outdir = get_outdir(params, '_clock')

        dater = ClockDater(tree, dates, params.sequence_length, verbose=params.verbose,
                           **_dater_options(params))
        regression = dater.root_to_tip()
        d2d = write_rtt(regression, outdir + 'rtt.csv')
        print(d2d)
        print('--- root-date:\t%3.2f\n\n'%d2d.root_date)
        if 'root_edge' in regression:
            print('--- root placed on branch %s at fraction %1.3f\n'%(regression['root_edge'], regression['split']))

        test = dater.clock_test(alpha=params.alpha)
        print(test)
        with open(outdir + 'clock_test.txt', 'w', encoding='utf-8') as ofile:
            ofile.write(str(test))

        if params.clock_filter:
            outliers = residual_filter(test.strict, n_iqd=params.clock_filter, logger=dater.logger)
            if len(outliers):
                print("--- %d tips deviate more than %1.1f interquartile ranges from the clock"
                      %(len(outliers), params.clock_filter), file=sys.stderr)
            write_table(outliers, outdir + 'clock_filter.tsv', 'clock filter outliers')
    except ClockDateError as e:
        print_error(e)
        return 1
    return 0
