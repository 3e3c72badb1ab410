from io import StringIO
import numpy as np
import pytest
from Bio import Phylo


rooted_nwk = "((A:0,B:1)N1:0,(C:0.5,D:1.5)N2:0.5)R;"
rooted_dates = {'A':0.0, 'B':1.0, 'C':1.0, 'D':2.0}


def test_dating_options_defaults():
    from clockdate import DatingOptions
    from clockdate import config as cdconf
    opts = DatingOptions()
    assert opts.clock=='strict'
    assert opts.n_jobs==1
    assert opts.max_root_candidates is None
    assert opts.convergence_tolerance==cdconf.CONVERGENCE_TOLERANCE
    assert opts.seed is None and opts.rooted is None
    assert 'DatingOptions(' in repr(opts)


def test_dating_options_replace():
    from clockdate import DatingOptions
    opts = DatingOptions(clock='relaxed', n_jobs=4)
    assert opts.clock=='uncorrelated'
    new = opts.replace(n_jobs=1, seed=3)
    assert new.n_jobs==1 and new.seed==3 and new.clock=='uncorrelated'
    assert opts.n_jobs==4
    assert DatingOptions.from_kwargs(opts).as_dict()==opts.as_dict()
    assert DatingOptions(n_jobs=np.int64(2)).n_jobs==2


@pytest.mark.parametrize("kwargs", [
    {'clock':'autocorrelated'}, {'clock':3}, {'n_jobs':0}, {'n_jobs':1.5}, {'n_jobs':True},
    {'initial_rate':-1.0}, {'fixed_rate':0.0}, {'fixed_rate':np.nan}, {'max_root_candidates':0},
    {'convergence_tolerance':0}, {'convergence_tolerance':None}, {'max_iter':0},
    {'n_restarts':-1}, {'n_bootstrap':-2}, {'seed':-1}, {'rooted':'yes'}, {'colour':'red'}])
def test_dating_options_errors(kwargs):
    from clockdate import DatingOptions, ConfigurationError
    with pytest.raises(ConfigurationError):
        DatingOptions.from_kwargs(**kwargs)


def test_map_tasks():
    from clockdate.dispatch import map_tasks
    from clockdate import ConfigurationError
    assert map_tasks(abs, [-1, -2, 3])==[1, 2, 3]
    assert map_tasks(abs, [-1, -2, 3, -4], n_jobs=2)==[1, 2, 3, 4]
    assert map_tasks(abs, [], n_jobs=3)==[]
    with pytest.raises(ConfigurationError):
        map_tasks(abs, [1], n_jobs=0)


def test_clockdater():
    from clockdate import ClockDater
    tree = Phylo.read(StringIO(rooted_nwk), 'newick')
    dater = ClockDater(tree, rooted_dates, 1000, verbose=0)
    assert dater.tree.rooted
    assert sorted(dater.sample_times)==['A', 'B', 'C', 'D']

    res = dater.run()
    assert abs(res.rate-1.0)<0.05
    assert dater.fit_result is res
    relaxed = dater.run(clock='relaxed')
    assert relaxed.clock=='uncorrelated'
    # options of a single run don't change the defaults
    assert dater.options.clock=='strict'

    outliers = dater.outliers()
    assert sorted(outliers.index)==['A', 'B', 'C', 'D']
    assert len(dater.clock_filter())==0
    rtt = dater.root_to_tip()
    assert abs(rtt['slope']-1.0)<1e-6

    boot = dater.bootstrap(n_replicates=2)
    assert boot.n_replicates==2
    assert dater.bootstrap_result is boot


def test_clockdater_errors():
    from clockdate import ClockDater, ClockDateError, ConfigurationError, MalformedTreeError
    tree = Phylo.read(StringIO(rooted_nwk), 'newick')
    with pytest.raises(ConfigurationError):
        ClockDater(tree, rooted_dates, 1000, verbose=0, clock='autocorrelated')
    with pytest.raises(ConfigurationError):
        ClockDater(tree, rooted_dates, None, verbose=0)
    with pytest.raises(MalformedTreeError):
        ClockDater(tree, {'A':0.0}, 1000, verbose=0)
    dater = ClockDater(tree, rooted_dates, 1000, verbose=0)
    with pytest.raises(ClockDateError):
        dater.bootstrap()


def test_logger(capsys):
    from clockdate.utils import Logger
    log = Logger(verbose=2)
    log("shown", 1)
    log("hidden", 3)
    log("warning", 2, warn=True)
    log("once", 1, only_once=True)
    log("once", 1, only_once=True)
    out = capsys.readouterr().out
    assert 'shown' in out and 'warning' in out
    assert 'hidden' not in out
    assert out.count('once')==1
