from io import StringIO
import numpy as np
import pytest
from Bio import Phylo


def read_newick(nwk):
    return Phylo.read(StringIO(nwk), 'newick')


def test_import_short():
    from clockdate import IndexedTree
    from clockdate import ClockDater
    from clockdate import fit
    from clockdate import parametric_bootstrap


def test_from_phylo_rooted():
    from clockdate import IndexedTree
    tree = IndexedTree.from_phylo(read_newick("((A:0,B:1)N1:0,(C:0.5,D:1.5)N2:0.5)R;"), 1000)
    assert tree.rooted
    assert tree.n_leaves==4 and tree.n_nodes==7
    assert sorted(tree.leaf_names)==['A', 'B', 'C', 'D']
    assert tree.names[tree.root]=='R'
    assert tree.mutations[tree.index_of('D')]==1500
    assert tree.branch_length[tree.root]==0
    # traversal orders
    pos = {n:i for i, n in enumerate(tree.preorder)}
    for node in tree.edges():
        assert pos[tree.parent[node]]<pos[node]
    assert tree.postorder[-1]==tree.root


def test_from_phylo_unrooted():
    from clockdate import IndexedTree
    tree = IndexedTree.from_phylo(read_newick("(A:0.1,B:0.2,(C:0.15,D:0.25)E:0.05)X;"), 100)
    assert not tree.rooted
    assert len(tree.children[tree.root])==3
    assert len(tree.unrooted_edges())==5


def test_arrays_are_readonly():
    from clockdate import IndexedTree
    tree = IndexedTree.from_phylo(read_newick("((A:0,B:1)N1:0,(C:0.5,D:1.5)N2:0.5)R;"), 1000)
    with pytest.raises(ValueError):
        tree.branch_length[1] = 2.0


def test_unary_nodes_are_collapsed():
    from clockdate import IndexedTree
    tree = IndexedTree.from_phylo(read_newick("(((A:1,B:1)N1:1)U:1,C:1)R;"), 10)
    assert 'U' not in tree.names
    assert tree.branch_length[tree.index_of('N1')]==2


def test_unnamed_internal_nodes():
    from clockdate import IndexedTree
    tree = IndexedTree.from_phylo(read_newick("((A:1,B:1):1,(C:1,D:1):1);"), 10)
    internal_names = [tree.names[n] for n in tree.internal]
    assert all(n.startswith('NODE_') for n in internal_names)
    assert len(set(internal_names))==3


def test_merged_root():
    from clockdate import IndexedTree
    tree = IndexedTree.from_phylo(read_newick("((A:0.1,B:0.2)N1:0.3,(C:0.1,D:0.1)N2:0.2)R;"), 100)
    unrooted = tree.merged_root()
    assert not unrooted.rooted
    assert 'R' not in unrooted.names
    assert unrooted.names[unrooted.root]=='N1'
    assert abs(unrooted.branch_length[unrooted.index_of('N2')]-0.5)<1e-12
    assert abs(unrooted.branch_length.sum()-tree.branch_length.sum())<1e-12


def test_reroot():
    from clockdate import IndexedTree
    tree = IndexedTree.from_phylo(read_newick("(A:1,B:2,(C:1,D:1)E:0.5)X;"), 10)
    rerooted = tree.reroot(tree.index_of('E'), 0.4)
    assert rerooted.rooted
    root = rerooted.root
    assert rerooted.names[root]=='ROOT'
    children = {rerooted.names[c]:rerooted.branch_length[c] for c in rerooted.children[root]}
    assert abs(children['E']-0.2)<1e-12
    assert abs(children['X']-0.3)<1e-12
    assert abs(rerooted.branch_length.sum()-tree.branch_length.sum())<1e-12
    assert rerooted.clade(rerooted.index_of('E'))==frozenset(['C', 'D'])
    assert rerooted.clade(rerooted.index_of('X'))==frozenset(['A', 'B'])


def test_reroot_on_leaf():
    from clockdate import IndexedTree
    tree = IndexedTree.from_phylo(read_newick("(A:1,B:2,(C:1,D:1)E:0.5)X;"), 10)
    rerooted = tree.reroot(tree.index_of('A'), 0.5)
    assert sorted(rerooted.names[c] for c in rerooted.children[rerooted.root])==['A', 'X']
    d2r = rerooted.dist2root()
    assert abs(d2r[rerooted.index_of('B')]-2.5)<1e-12


def test_clades_and_distances():
    from clockdate import IndexedTree
    tree = IndexedTree.from_phylo(read_newick("((A:0,B:1)N1:0,(C:0.5,D:1.5)N2:0.5)R;"), 1000)
    clades = tree.clades()
    assert clades[tree.index_of('N2')]==frozenset(['C', 'D'])
    assert clades[tree.root]==frozenset(['A', 'B', 'C', 'D'])
    assert tree.is_ancestor(tree.root, tree.index_of('C'))
    assert not tree.is_ancestor(tree.index_of('N1'), tree.index_of('C'))
    A, B, C = [tree.index_of(x) for x in 'ABC']
    assert tree.edge_distance(A, A)==0
    assert tree.edge_distance(A, B)==2
    assert tree.edge_distance(A, C)==4
    assert tree.dist2root()[tree.index_of('D')]==2.0


def test_to_phylo():
    from clockdate import IndexedTree
    tree = IndexedTree.from_phylo(read_newick("((A:0,B:1)N1:0,(C:0.5,D:1.5)N2:0.5)R;"), 1000)
    values = np.arange(tree.n_nodes, dtype=float)
    phylo_tree = tree.to_phylo(attributes={'value':values})
    assert sorted(t.name for t in phylo_tree.get_terminals())==['A', 'B', 'C', 'D']
    for clade in phylo_tree.find_clades():
        assert clade.value==values[tree.index_of(clade.name)]


def test_from_edges():
    from clockdate import IndexedTree
    edges = [('R', 'N1', 0.0), ('N1', 'A', 0.0), ('N1', 'B', 1.0), ('R', 'N2', 0.5),
             ('N2', 'C', 0.5), ('N2', 'D', 1.5)]
    tree = IndexedTree.from_edges(edges, 1000)
    assert tree.rooted
    assert tree.names[tree.root]=='R'
    assert tree.n_leaves==4


def test_malformed_trees():
    from clockdate import IndexedTree, MalformedTreeError
    with pytest.raises(MalformedTreeError):
        IndexedTree.from_phylo(read_newick("((A:1,A:1)N1:1,C:1)R;"), 10)
    with pytest.raises(MalformedTreeError):
        IndexedTree.from_phylo(read_newick("((A:-1,B:1)N1:1,C:1)R;"), 10)
    with pytest.raises(MalformedTreeError):
        IndexedTree.from_phylo(read_newick("(A:1,B:1)R;"), 10)
    with pytest.raises(MalformedTreeError):
        IndexedTree.from_edges([('R', 'A', 1.0), ('A', 'R', 1.0)], 10)
    with pytest.raises(MalformedTreeError):
        IndexedTree([-1, 0, 0, 0, 5], [0, 1, 1, 1, 1], ['R', 'A', 'B', 'C', 'D'], 10)
    with pytest.raises(MalformedTreeError):
        IndexedTree([-1, 0, 0], [0, 1, 1], ['R', 'A', 'B'], 10, rooted=False)


def test_bad_sequence_length():
    from clockdate import IndexedTree, ConfigurationError
    for seq_len in [0, -5, None, np.inf]:
        with pytest.raises(ConfigurationError):
            IndexedTree.from_phylo(read_newick("((A:0,B:1)N1:0,(C:0.5,D:1.5)N2:0.5)R;"), seq_len)
