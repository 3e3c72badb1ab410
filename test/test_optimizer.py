from io import StringIO
import numpy as np
import pytest
from Bio import Phylo


rooted_nwk = "((A:0,B:1)N1:0,(C:0.5,D:1.5)N2:0.5)R;"
rooted_dates = {'A':0.0, 'B':1.0, 'C':1.0, 'D':2.0}

# clock-like with rate 0.1 and the root at the basal node X at time 0
unrooted_nwk = "(A:0.1,B:0.2,(C:0.15,D:0.25)E:0.05)X;"
unrooted_dates = {'A':1.0, 'B':2.0, 'C':2.0, 'D':3.0}


def read_newick(nwk):
    return Phylo.read(StringIO(nwk), 'newick')


def assert_time_order(res):
    tree = res.tree
    for node in tree.edges():
        assert res.times[tree.parent[node]]<=res.times[node]+1e-9
    for name, st in res.sample_times.items():
        assert st.lower-1e-9<=res.numdate[name]<=st.upper+1e-9


def test_fit_rooted_strict():
    from clockdate import fit
    res = fit(read_newick(rooted_nwk), rooted_dates, seq_len=1000)
    assert res.converged
    assert res.clock=='strict'
    assert abs(res.rate-1.0)<0.05
    assert abs(res.root_time)<0.05
    assert abs(res.numdate['N2']-0.5)<0.05
    assert res.root_edge is None and res.candidates is None
    assert res.n_params==4
    assert np.isfinite(res.log_lh) and res.aic==2*res.n_params+2*res.objective
    assert_time_order(res)
    for name, t in rooted_dates.items():
        assert res.numdate[name]==t


def test_fit_interval_leaf():
    from clockdate import fit
    dates = dict(rooted_dates, C=(1.0, 1.5, 1.2))
    res = fit(read_newick(rooted_nwk), dates, seq_len=1000)
    assert 1.0-1e-9<=res.numdate['C']<=1.5+1e-9
    assert abs(res.numdate['C']-1.0)<0.05
    assert abs(res.rate-1.0)<0.05
    assert res.n_params==5
    assert_time_order(res)


def test_fit_fixed_rate():
    from clockdate import fit
    res = fit(read_newick(rooted_nwk), rooted_dates, seq_len=1000, fixed_rate=0.9)
    assert res.rate==0.9
    assert res.n_params==3
    assert_time_order(res)


def test_fit_relaxed():
    from clockdate import fit
    res = fit(read_newick(rooted_nwk), rooted_dates, seq_len=1000, clock='relaxed')
    assert res.clock=='uncorrelated'
    assert res.dispersion>0
    assert abs(res.rate-1.0)<0.1
    assert np.all(np.isfinite(res.branch_rates[res.tree.edges()]))
    assert np.isnan(res.branch_rates[res.tree.root])
    assert_time_order(res)


def test_fit_root_search():
    from clockdate import fit
    res = fit(read_newick(unrooted_nwk), unrooted_dates, seq_len=1000)
    assert res.searched_root
    assert res.tree.rooted
    assert res.root_edge in ['A', 'B', 'E']
    assert 0<=res.root_fraction<=1
    assert len(res.candidates)==5
    assert abs(res.rate-0.1)<0.005
    assert abs(res.root_time)<0.05
    assert_time_order(res)
    # the tree is rerooted on the chosen edge
    names = sorted(res.tree.names[c] for c in res.tree.children[res.tree.root])
    assert names==sorted([res.root_edge, 'X'])


def test_fit_rooted_input_with_root_search():
    from clockdate import fit
    res = fit(read_newick(rooted_nwk), rooted_dates, seq_len=1000, rooted=False)
    assert res.searched_root
    assert len(res.candidates)==5
    assert_time_order(res)


def test_max_root_candidates():
    from clockdate import fit
    res = fit(read_newick(unrooted_nwk), unrooted_dates, seq_len=1000, max_root_candidates=2)
    assert len(res.candidates)==2


def test_deterministic_across_jobs():
    from clockdate import fit
    kwargs = dict(seq_len=1000, n_restarts=1, seed=5)
    res1 = fit(read_newick(unrooted_nwk), unrooted_dates, n_jobs=1, **kwargs)
    res2 = fit(read_newick(unrooted_nwk), unrooted_dates, n_jobs=2, **kwargs)
    assert res1.root_edge==res2.root_edge
    assert abs(res1.objective-res2.objective)<1e-9
    assert abs(res1.rate-res2.rate)<1e-12
    assert np.allclose(res1.times, res2.times)


def test_non_convergence_is_reported():
    from clockdate import fit, ConvergenceWarning
    with pytest.warns(ConvergenceWarning):
        res = fit(read_newick(rooted_nwk), rooted_dates, seq_len=1000, max_iter=1, initial_rate=50.0)
    assert not res.converged
    assert len(res.warnings)==1
    assert isinstance(res.warnings[0], ConvergenceWarning)
    assert_time_order(res)


def test_fit_errors():
    from clockdate import fit, ConfigurationError, InfeasibleConstraintError, MalformedTreeError
    tree = read_newick(rooted_nwk)
    with pytest.raises(ConfigurationError):
        fit(tree, rooted_dates, seq_len=1000, n_jobs=0)
    with pytest.raises(ConfigurationError):
        fit(tree, rooted_dates, seq_len=1000, clock='autocorrelated')
    with pytest.raises(ConfigurationError):
        fit(tree, rooted_dates, seq_len=1000, unknown_option=3)
    with pytest.raises(ConfigurationError):
        fit(tree, rooted_dates)
    with pytest.raises(InfeasibleConstraintError):
        fit(tree, dict(rooted_dates, C=[2.0, 1.0]), seq_len=1000)
    with pytest.raises(MalformedTreeError):
        fit(tree, {'A':0.0, 'B':1.0, 'C':1.0}, seq_len=1000)


def test_select_best_tie_breaking():
    from clockdate import IndexedTree
    from clockdate.optimizer import select_best
    tree = IndexedTree.from_phylo(read_newick(unrooted_nwk), 100)
    A, B, C, E = [tree.index_of(x) for x in 'ABCE']
    results = [{'root_choice':C, 'restart':0, 'objective':10.0},
               {'root_choice':A, 'restart':0, 'objective':10.0},
               {'root_choice':A, 'restart':1, 'objective':10.0},
               {'root_choice':B, 'restart':0, 'objective':12.0}]
    # tie between C and A: A is closer to the reference edge B
    best = select_best(results, tree=tree, reference=B)
    assert best['root_choice']==A and best['restart']==0
    # without reference the lower objective wins, ties go to the lower index
    best = select_best(results)
    assert best['root_choice']==min(A, C)
    results.append({'root_choice':E, 'restart':0, 'objective':9.0})
    assert select_best(results, tree=tree, reference=B)['root_choice']==E


def test_timetree_fit_outputs():
    from clockdate import fit
    res = fit(read_newick(rooted_nwk), rooted_dates, seq_len=1000)
    table = res.date_table()
    assert list(table.columns)==['numdate', 'date', 'is_leaf', 'mutation_length', 'rate']
    assert len(table)==7
    phylo_tree = res.to_phylo()
    for clade in phylo_tree.find_clades():
        assert clade.numdate==res.numdate[clade.name]
    assert 'strict clock' in str(res)
    assert 'TimeTreeFit' in repr(res)
