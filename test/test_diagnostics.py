from io import StringIO
import numpy as np
import pytest
from Bio import Phylo


rooted_nwk = "((A:0,B:1)N1:0,(C:0.5,D:1.5)N2:0.5)R;"
rooted_dates = {'A':0.0, 'B':1.0, 'C':1.0, 'D':2.0}
exact_times = {'R':0.0, 'N1':0.0, 'A':0.0, 'B':1.0, 'N2':0.5, 'C':1.0, 'D':2.0}


def read_newick(nwk):
    return Phylo.read(StringIO(nwk), 'newick')


def exact_fit(nwk=rooted_nwk, rate=1.0, clock='strict', dispersion=0.0):
    """fit result with the true times, without running the optimizer"""
    from clockdate import IndexedTree, TimeTreeFit, TimeConstraints
    tree = IndexedTree.from_phylo(read_newick(nwk), 1000)
    times = [exact_times[n] for n in tree.names]
    constraints = TimeConstraints(tree, rooted_dates)
    return TimeTreeFit(tree, times, rate, dispersion, clock, 0.0, 4,
                       sample_times=constraints.sample_times)


def test_outliers_exact_match():
    from clockdate import outlier_tips
    df = outlier_tips(exact_fit())
    assert list(df.index)==['A', 'B', 'C', 'D']
    assert list(df.columns)==['statistic', 'expected', 'observed', 'p', 'q']
    assert np.all(df['p']==1.0)
    assert np.all(df['q']==1.0)
    assert np.allclose(df['statistic'], 0)


def test_outliers_detects_long_branch():
    from clockdate import outlier_tips
    fit_result = exact_fit("((A:0,B:1)N1:0,(C:0.5,D:3.5)N2:0.5)R;")
    df = outlier_tips(fit_result)
    assert df.index[0]=='D'
    assert df.loc['D', 'q']<0.05
    assert df.loc['D', 'observed']==4000 and df.loc['D', 'expected']==2000
    assert df.loc['D', 'statistic']>0
    # sorted by q, q-values are monotone in p and never below p
    assert np.all(np.diff(df['q'].values)>=0)
    by_p = df.sort_values('p')
    assert np.all(np.diff(by_p['q'].values)>=-1e-12)
    assert np.all(df['q']>=df['p']-1e-12)


def test_outliers_relaxed_clock_is_more_tolerant():
    from clockdate import outlier_tips
    nwk = "((A:0,B:1)N1:0,(C:0.5,D:1.7)N2:0.5)R;"
    strict = outlier_tips(exact_fit(nwk))
    relaxed = outlier_tips(exact_fit(nwk, clock='uncorrelated', dispersion=0.2))
    assert relaxed.loc['D', 'p']>strict.loc['D', 'p']


def test_relaxed_clock_test_strict_data():
    from clockdate import relaxed_clock_test
    res = relaxed_clock_test(read_newick(rooted_nwk), rooted_dates, seq_len=1000)
    assert res.statistic>=0
    assert 0<=res.p_value<=1
    assert not res.relaxed_supported
    assert res.strict.clock=='strict' and res.relaxed.clock=='uncorrelated'
    assert res.delta_aic==res.aic_strict-res.aic_relaxed
    assert 'Relaxed clock test' in str(res)


def test_relaxed_clock_test_overdispersed_data():
    from clockdate import relaxed_clock_test
    # sister branches of equal duration with ten-fold different lengths
    nwk = "((A:0.2,B:2.0)N1:1.0,(C:1.8,D:0.3)N2:1.0)R;"
    dates = {'A':2.0, 'B':2.0, 'C':3.0, 'D':3.0}
    res = relaxed_clock_test(read_newick(nwk), dates, seq_len=1000)
    assert res.statistic>10
    assert res.p_value<0.05
    assert res.relaxed_supported
    assert res.relaxed.dispersion>0.01


def test_clock_test_result_boundary():
    from clockdate.diagnostics import ClockTestResult

    class FakeFit(object):
        def __init__(self, objective, n_params):
            self.objective = objective
            self.log_lh = -objective
            self.aic = 2*n_params + 2*objective
            self.dispersion = 0.0

    # relaxed fit slightly worse than strict: statistic is clipped at zero
    res = ClockTestResult(FakeFit(10.0, 4), FakeFit(10.001, 5))
    assert res.statistic==0 and res.p_value==1.0
    res = ClockTestResult(FakeFit(10.0, 4), FakeFit(8.0, 5))
    assert res.statistic==4.0
    assert abs(res.p_value-0.0227501)<1e-5


def test_root_to_tip_unrooted():
    from clockdate import root_to_tip
    nwk = "(A:0.1,B:0.2,C:0.3,D:0.4)X;"
    dates = {'A':10.0, 'B':20.0, 'C':30.0, 'D':40.0}
    res = root_to_tip(read_newick(nwk), dates)
    assert abs(res['slope']-0.01)<1e-5
    assert abs(res['root_date'])<1e-2
    assert abs(res['r2']-1)<1e-6
    assert res['root_edge'] in ['A', 'B', 'C', 'D']
    assert len(res['points'])==4
    assert list(res['points'].columns)==['date', 'dist2root']


def test_root_to_tip_rooted():
    from clockdate import root_to_tip
    res = root_to_tip(read_newick(rooted_nwk), rooted_dates)
    assert abs(res['slope']-1.0)<1e-6
    assert abs(res['root_date'])<1e-6
    assert 'root_edge' not in res


def test_root_to_tip_without_date_variation():
    from clockdate import root_to_tip, ClockDateError
    with pytest.raises(ClockDateError):
        root_to_tip(read_newick(rooted_nwk), {'A':1.0, 'B':1.0, 'C':1.0, 'D':1.0})


def test_residual_filter():
    from clockdate import residual_filter
    df = residual_filter(exact_fit())
    assert len(df)==0
    assert list(df.columns)==['given_date', 'apparent_date', 'residual']

    # one leaf far off the regression line
    nwk = "(((A:0.1,B:0.2)N1:0.1,(C:0.2,D:0.3)N2:0.1)N3:0.1,((E:0.2,F:0.3)N4:0.1,(G:0.2,H:5.0)N5:0.1)N6:0.1)R;"
    from clockdate import IndexedTree, TimeTreeFit, TimeConstraints
    tree = IndexedTree.from_phylo(read_newick(nwk), 100)
    dates = {'A':3.0, 'B':4.0, 'C':4.0, 'D':5.0, 'E':4.0, 'F':5.0, 'G':4.0, 'H':5.0}
    constraints = TimeConstraints(tree, dates)
    t = np.zeros(tree.n_nodes)
    for node in tree.preorder[1:]:
        t[node] = dates.get(tree.names[node], t[tree.parent[node]]+1)
    res = TimeTreeFit(tree, t, 0.1, 0.0, 'strict', 0.0, 10, sample_times=constraints.sample_times)
    df = residual_filter(res, n_iqd=3)
    assert 'H' in df.index
    assert df['residual'].idxmax()=='H'
    assert df.loc['H', 'residual']>3
    assert df.loc['H', 'given_date']==5.0


def test_relaxed_clock_test_same_result_in_parallel():
    from clockdate import relaxed_clock_test
    nwk = "(A:0.1,B:0.2,(C:0.15,D:0.25)E:0.05)X;"
    dates = {'A':1.0, 'B':2.0, 'C':2.0, 'D':3.0}
    serial = relaxed_clock_test(read_newick(nwk), dates, seq_len=1000, n_jobs=1)
    parallel = relaxed_clock_test(read_newick(nwk), dates, seq_len=1000, n_jobs=4)
    assert parallel.strict.root_edge==serial.strict.root_edge
    assert abs(parallel.statistic-serial.statistic)<1e-9
    assert abs(parallel.p_value-serial.p_value)<1e-9
