from io import StringIO
import numpy as np
import pytest
from Bio import Phylo


def make_tree(seq_len=1000):
    from clockdate import IndexedTree
    nwk = "((A:0,B:1)N1:0,(C:0.5,D:1.5)N2:0.5)R;"
    return IndexedTree.from_phylo(Phylo.read(StringIO(nwk), 'newick'), seq_len)


def test_sample_time_from_value():
    from clockdate import SampleTime
    st = SampleTime.from_value(2000.5)
    assert st.is_fixed and st.value==2000.5 and st.bounds==(2000.5, 2000.5)

    st = SampleTime.from_value([1.0, 1.5])
    assert not st.is_fixed
    assert st.guess==1.25 and st.mean==1.25

    st = SampleTime.from_value((1.0, 1.5, 1.2))
    assert st.bounds==(1.0, 1.5) and st.guess==1.2

    # degenerate interval is a fixed time
    st = SampleTime.from_value([2.0, 2.0])
    assert st.is_fixed and st.value==2.0


def test_sample_time_errors():
    from clockdate import SampleTime, InfeasibleConstraintError
    with pytest.raises(InfeasibleConstraintError):
        SampleTime.from_value([2.0, 1.0])
    with pytest.raises(InfeasibleConstraintError):
        SampleTime.from_value([1.0, 2.0, 3.0])
    with pytest.raises(InfeasibleConstraintError):
        SampleTime.from_value(np.nan)
    with pytest.raises(InfeasibleConstraintError):
        SampleTime.from_value([1.0, 2.0, 1.5, 1.7])
    with pytest.raises(InfeasibleConstraintError):
        SampleTime.from_value("not a date")


def test_time_constraints():
    from clockdate import TimeConstraints
    tree = make_tree()
    tc = TimeConstraints(tree, {'A':0.0, 'B':1.0, 'C':[0.8, 1.5], 'D':2.0, 'Z':5.0})
    assert tc.n_free==1
    assert tree.names[tc.free_leaves[0]]=='C'
    assert np.isnan(tc.fixed_times[tree.index_of('C')])
    assert tc.fixed_times[tree.index_of('D')]==2.0
    assert list(tc.lower)==[0.8] and list(tc.upper)==[1.5]
    # latest admissible time of each node
    assert tc.upper_limit[tree.index_of('N2')]==1.5
    assert tc.upper_limit[tree.root]==0.0

    t = tc.leaf_times()
    assert abs(t[tree.index_of('C')]-1.15)<1e-12
    t = tc.leaf_times(free_values=[1.4])
    assert t[tree.index_of('C')]==1.4
    assert abs(tc.leaf_dates()['C']-1.15)<1e-12


def test_missing_sample_time():
    from clockdate import TimeConstraints, MalformedTreeError
    tree = make_tree()
    with pytest.raises(MalformedTreeError):
        TimeConstraints(tree, {'A':0.0, 'B':1.0, 'C':1.0})
    with pytest.raises(MalformedTreeError):
        TimeConstraints(tree, {'A':0.0, 'B':1.0, 'C':1.0, 'D':None})


def test_check_ordering():
    from clockdate import TimeConstraints, InfeasibleConstraintError
    tree = make_tree()
    tc = TimeConstraints(tree, {'A':0.0, 'B':1.0, 'C':[0.8, 1.5], 'D':2.0})
    times = {'R':-0.1, 'N1':0.0, 'A':0.0, 'B':1.0, 'N2':0.5, 'C':1.0, 'D':2.0}
    t = np.array([times[n] for n in tree.names])
    tc.check_ordering(t)

    bad = t.copy()
    bad[tree.index_of('N2')] = 1.2
    with pytest.raises(InfeasibleConstraintError):
        tc.check_ordering(bad)

    bad = t.copy()
    bad[tree.index_of('C')] = 1.7
    with pytest.raises(InfeasibleConstraintError):
        tc.check_ordering(bad)


def test_parse_dates(tmp_path):
    from clockdate.utils import parse_dates
    fname = tmp_path/"dates.csv"
    fname.write_text("name,date\nA,2000.5\nB,[2001:2002]\nC,2003-07-02\nD,2004-XX-XX\nE,\n")
    dates = parse_dates(str(fname))
    assert dates['A']==2000.5
    assert dates['B']==[2001.0, 2002.0]
    assert 2003.4<dates['C']<2003.6
    assert len(dates['D'])==2 and 2004<=dates['D'][0]<dates['D'][1]<2005
    assert 'E' not in dates


def test_numeric_dates():
    import datetime
    from clockdate.utils import numeric_date, datestring_from_numeric
    assert abs(numeric_date(datetime.datetime(2020, 1, 1)) - (2020+0.5/366))<1e-10
    assert datestring_from_numeric(2019.5)=='2019-07-02'


def test_ambiguous_dates():
    import datetime
    from clockdate.utils import ambiguous_date_to_date_range, parse_date_string
    assert ambiguous_date_to_date_range('2017-XX-XX')==(datetime.date(2017, 1, 1), datetime.date(2017, 12, 31))
    assert ambiguous_date_to_date_range('2017-02-XX')==(datetime.date(2017, 2, 1), datetime.date(2017, 2, 28))
    # an unknown year can not be bounded
    assert ambiguous_date_to_date_range('XXXX-XX-XX')==(None, None)
    assert parse_date_string('XXXX-XX-XX') is None
