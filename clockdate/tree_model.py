"""
Index-addressed tree representation used by the dating engine.

Nodes are integers into flat numpy arrays; the parent of node i is
``parent[i]`` (-1 for the root) and the branch above node i carries
``branch_length[i]`` substitutions per site, or ``mutations[i]`` substitutions
over the whole sequence. Trees are immutable once built: rerooting or
resampling produces a new tree.
"""
import numpy as np
from clockdate import MalformedTreeError, ConfigurationError

ROOT_NAME = "ROOT"


class IndexedTree(object):
    """
    Phylogenetic tree stored as an arena of nodes.

    Parameters
    ----------
     parent : array-like of int
        parent index of every node, exactly one node has parent -1

     branch_length : array-like of float
        length of the branch above each node in substitutions per site.
        The value of the root is ignored.

     names : list of str
        node names. Leaves must be named uniquely, unnamed internal
        nodes are called NODE_0000001 etc.

     seq_len : int
        length of the sequence alignment the branch lengths refer to

     rooted : bool
        if False, the basal node represents an unrooted tree and needs
        at least three children
    """
    def __init__(self, parent, branch_length, names, seq_len, rooted=True):
        if seq_len is None or isinstance(seq_len, bool) or not np.isscalar(seq_len) \
                or not np.isfinite(seq_len) or seq_len<=0:
            raise ConfigurationError("sequence length has to be a positive number, got %r"%(seq_len,))
        self.seq_len = int(seq_len) if float(seq_len).is_integer() else float(seq_len)
        self.rooted = bool(rooted)

        parent = np.asarray(parent, dtype=int)
        branch_length = np.array(branch_length, dtype=float)
        if parent.ndim!=1 or branch_length.shape!=parent.shape or len(names)!=len(parent):
            raise MalformedTreeError("parent, branch length, and name arrays differ in length")
        n = len(parent)
        roots = np.where(parent<0)[0]
        if len(roots)!=1:
            raise MalformedTreeError("tree needs exactly one root, found %d"%len(roots))
        self.root = int(roots[0])
        if np.any(parent>=n):
            raise MalformedTreeError("parent index out of range")
        branch_length[self.root] = 0.0

        children = [[] for i in range(n)]
        for node, p in enumerate(parent):
            if p>=0:
                children[p].append(node)
        self.children = tuple(tuple(c) for c in children)

        # iterative traversal, which also detects cycles and disconnected nodes
        preorder = []
        tin = np.zeros(n, dtype=int)
        tout = np.zeros(n, dtype=int)
        clock = 0
        stack = [(self.root, False)]
        visited = np.zeros(n, dtype=bool)
        while stack:
            node, done = stack.pop()
            if done:
                tout[node] = clock
                clock += 1
                continue
            if visited[node]:
                raise MalformedTreeError("node %s is reached twice, the tree has a cycle"%names[node])
            visited[node] = True
            preorder.append(node)
            tin[node] = clock
            clock += 1
            stack.append((node, True))
            for c in reversed(self.children[node]):
                stack.append((c, False))
        if len(preorder)!=n:
            missing = [names[i] for i in np.where(~visited)[0]]
            raise MalformedTreeError("nodes not connected to the root: %s"%", ".join(map(str, missing[:5])))

        self.parent = parent
        self.preorder = np.array(preorder, dtype=int)
        self.postorder = self.preorder[::-1].copy()
        self.tin, self.tout = tin, tout
        self.is_leaf = np.array([len(c)==0 for c in self.children], dtype=bool)
        self.leaves = np.where(self.is_leaf)[0]
        self.internal = np.where(~self.is_leaf)[0]
        self.depth = np.zeros(n, dtype=int)
        for node in self.preorder[1:]:
            self.depth[node] = self.depth[parent[node]] + 1

        self.names = list(names)
        node_count = 0
        for i in self.preorder:
            if self.names[i] is None or self.names[i]=='':
                if self.is_leaf[i]:
                    raise MalformedTreeError("leaf node without name (child of %s)"%self.names[parent[i]])
                node_count += 1
                self.names[i] = "NODE_%07d"%node_count
        leaf_names = [self.names[i] for i in self.leaves]
        if len(set(leaf_names))!=len(leaf_names):
            dup = sorted(set(x for x in leaf_names if leaf_names.count(x)>1))
            raise MalformedTreeError("duplicate leaf names: %s"%", ".join(dup))
        self._index = {name:i for i, name in enumerate(self.names)}

        bad = [i for i in range(n) if i!=self.root and not (np.isfinite(branch_length[i]) and branch_length[i]>=0)]
        if bad:
            raise MalformedTreeError("negative or non-finite branch length %r on the edge above node %s"
                                     %(branch_length[bad[0]], self.names[bad[0]]))
        if len(self.leaves)<3:
            raise MalformedTreeError("tree has %d leaves, at least 3 are required"%len(self.leaves))
        unary = [i for i in self.internal if len(self.children[i])==1]
        if unary:
            raise MalformedTreeError("internal node %s has a single child"%self.names[unary[0]])
        if not self.rooted and len(self.children[self.root])<3:
            raise MalformedTreeError("unrooted tree needs a basal node with at least three children, "
                                     "node %s has %d"%(self.names[self.root], len(self.children[self.root])))

        self.branch_length = branch_length
        self.mutations = branch_length*self.seq_len
        for arr in [self.parent, self.preorder, self.postorder, self.tin, self.tout, self.is_leaf,
                    self.leaves, self.internal, self.depth, self.branch_length, self.mutations]:
            arr.setflags(write=False)


    def __len__(self):
        return len(self.parent)

    def __repr__(self):
        return "IndexedTree(%d leaves, %d nodes, %s, L=%s)"%(self.n_leaves, self.n_nodes,
                                                            'rooted' if self.rooted else 'unrooted', self.seq_len)

    @property
    def n_nodes(self):
        return len(self.parent)

    @property
    def n_leaves(self):
        return len(self.leaves)

    @property
    def leaf_names(self):
        return [self.names[i] for i in self.leaves]

    def index_of(self, name):
        try:
            return self._index[name]
        except KeyError:
            raise KeyError("no node named %s in the tree"%name)

    def edges(self):
        """indices of all nodes with a parent, each representing the edge above it"""
        return self.preorder[1:]

    def is_ancestor(self, a, b):
        """True if node a is an ancestor of (or identical to) node b"""
        return self.tin[a]<=self.tin[b] and self.tout[b]<=self.tout[a]

    def clade(self, node):
        """frozenset of the names of the leaves below node"""
        return frozenset(self.names[l] for l in self.leaves
                         if self.tin[node]<=self.tin[l] and self.tout[l]<=self.tout[node])

    def clades(self):
        """dict mapping each internal node to the frozenset of leaf names below it"""
        below = {}
        for node in self.postorder:
            if self.is_leaf[node]:
                below[node] = frozenset([self.names[node]])
            else:
                below[node] = frozenset().union(*[below[c] for c in self.children[node]])
        return {node:below[node] for node in self.internal}

    def dist2root(self, branch_values=None):
        """cumulative branch values from the root, defaults to branch length"""
        values = self.branch_length if branch_values is None else branch_values
        d = np.zeros(self.n_nodes)
        for node in self.preorder[1:]:
            d[node] = d[self.parent[node]] + values[node]
        return d

    def edge_distance(self, e1, e2):
        """number of nodes separating the edges above nodes e1 and e2 (0 if identical)"""
        a, b = e1, e2
        steps = 0
        while a!=b:
            if self.depth[a]>=self.depth[b]:
                a = self.parent[a]
            else:
                b = self.parent[b]
            steps += 1
        return steps

    ###########################################################################
    ### construction
    ###########################################################################
    @classmethod
    def from_phylo(cls, tree, seq_len, rooted=None):
        """
        Build from a Bio.Phylo tree (or clade). Missing branch lengths are
        treated as zero, unary nodes are collapsed.

        Parameters
        ----------
         rooted : bool, optional
            If None, a basal node with three or more children is interpreted
            as an unrooted tree and a bifurcating root as rooted.
        """
        root_clade = tree.root if hasattr(tree, 'root') else tree
        parent, bl, names = [-1], [0.0], [root_clade.name]
        stack = [(root_clade, 0)]
        while stack:
            clade, idx = stack.pop()
            for child in clade.clades:
                parent.append(idx)
                bl.append(child.branch_length if child.branch_length is not None else 0.0)
                names.append(child.name)
                stack.append((child, len(parent)-1))
        return cls._build(parent, bl, names, seq_len, rooted)

    @classmethod
    def from_edges(cls, edges, seq_len, rooted=None):
        """
        Build from a list of (parent_name, child_name, branch_length) triples.
        The root is the only parent that never appears as a child.
        """
        names = []
        index = {}
        for p, c, l in edges:
            for x in (p, c):
                if x not in index:
                    index[x] = len(names)
                    names.append(x)
        parent = [-1]*len(names)
        bl = [0.0]*len(names)
        for p, c, l in edges:
            if parent[index[c]]!=-1:
                raise MalformedTreeError("node %s has more than one parent"%c)
            parent[index[c]] = index[p]
            bl[index[c]] = l
        return cls._build(parent, bl, names, seq_len, rooted)

    @classmethod
    def _build(cls, parent, bl, names, seq_len, rooted):
        parent = list(parent)
        bl = [np.nan if x is None else float(x) for x in bl]
        names = list(names)
        n_children = np.bincount([p for p in parent if p>=0], minlength=len(parent))
        root = parent.index(-1) if -1 in parent else None
        if root is None:
            raise MalformedTreeError("tree has no root")
        if rooted is None:
            rooted = n_children[root]<3
        parent, bl, names = _collapse_unary(parent, bl, names)
        tree = cls(parent, bl, names, seq_len, rooted=True)
        if not rooted and len(tree.children[tree.root])<3:
            return tree.merged_root()
        if not rooted:
            return cls(tree.parent, tree.branch_length, tree.names, seq_len, rooted=False)
        return tree

    def _copy_arrays(self):
        return list(self.parent), list(self.branch_length), list(self.names)

    def with_branch_lengths(self, branch_length):
        """same topology and names with new branch lengths"""
        return IndexedTree(self.parent, branch_length, self.names, self.seq_len, rooted=self.rooted)

    def with_mutations(self, counts):
        """same topology with the substitution counts replaced by counts"""
        return self.with_branch_lengths(np.asarray(counts, dtype=float)/self.seq_len)

    def merged_root(self):
        """
        unrooted version of a rooted tree: the two branches of a bifurcating
        root are merged into a single edge. Trees whose root has more than
        two children are returned as unrooted without change.
        """
        if len(self.children[self.root])>2:
            return IndexedTree(self.parent, self.branch_length, self.names, self.seq_len, rooted=False)
        parent, bl, names = self._copy_arrays()
        left, right = self.children[self.root]
        # the internal child becomes the new basal node
        new_base, other = (left, right) if not self.is_leaf[left] else (right, left)
        if self.is_leaf[new_base]:
            raise MalformedTreeError("tree with two leaves at the root can't be unrooted")
        parent[other] = new_base
        bl[other] = self.branch_length[left] + self.branch_length[right]
        parent[new_base] = -1
        bl[new_base] = 0.0
        keep = [i for i in range(len(parent)) if i!=self.root]
        parent, bl, names = _subset(parent, bl, names, keep)
        return IndexedTree(parent, bl, names, self.seq_len, rooted=False)

    def unrooted_edges(self):
        """
        edges of the unrooted tree that are valid root positions. For a
        rooted tree these refer to the tree returned by merged_root().
        """
        base = self if not self.rooted else self.merged_root()
        return base.edges()

    def reroot(self, edge, fraction=0.5, root_name=ROOT_NAME):
        """
        Place a new root node on the branch above node `edge`.

        The new branch from the root to `edge` carries `fraction` of the
        original branch length, the branch to the former parent the rest.
        Branches on the path to the old root change direction, nodes that
        are left with a single child are collapsed.

        Returns
        -------
         IndexedTree
            new rooted tree, the root is named `root_name`
        """
        if edge==self.root or edge<0 or edge>=self.n_nodes:
            raise MalformedTreeError("can't reroot on node %r: not an edge of the tree"%(edge,))
        if not 0<=fraction<=1:
            raise ConfigurationError("root position along the edge has to be in [0,1], got %r"%(fraction,))
        n = self.n_nodes
        new_root = n
        # undirected adjacency with lengths
        adjacency = [[] for i in range(n+1)]
        for node in self.edges():
            p = self.parent[node]
            if node==edge:
                continue
            adjacency[p].append((node, self.branch_length[node]))
            adjacency[node].append((p, self.branch_length[node]))
        l = self.branch_length[edge]
        adjacency[new_root] = [(edge, fraction*l), (self.parent[edge], (1-fraction)*l)]
        adjacency[edge].append((new_root, fraction*l))
        adjacency[self.parent[edge]].append((new_root, (1-fraction)*l))

        parent = [-1]*(n+1)
        bl = [0.0]*(n+1)
        seen = [False]*(n+1)
        seen[new_root] = True
        stack = [new_root]
        while stack:
            node = stack.pop()
            for nb, length in adjacency[node]:
                if not seen[nb]:
                    seen[nb] = True
                    parent[nb] = node
                    bl[nb] = length
                    stack.append(nb)
        name = root_name
        suffix = 0
        while name in self._index:
            suffix += 1
            name = "%s_%d"%(root_name, suffix)
        names = list(self.names) + [name]
        parent, bl, names = _collapse_unary(parent, bl, names)
        return IndexedTree(parent, bl, names, self.seq_len, rooted=True)

    def to_phylo(self, branch_length=None, attributes=None):
        """
        Convert to a Bio.Phylo tree.

        Parameters
        ----------
         branch_length : array-like, optional
            branch lengths to use instead of the substitution lengths
         attributes : dict, optional
            attribute name -> per-node array, set on each clade
        """
        from Bio.Phylo.BaseTree import Clade, Tree
        values = self.branch_length if branch_length is None else branch_length
        clades = [None]*self.n_nodes
        for node in self.preorder:
            clade = Clade(name=self.names[node],
                          branch_length=None if node==self.root else float(values[node]))
            if attributes:
                for key, arr in attributes.items():
                    setattr(clade, key, arr[node])
            clades[node] = clade
            if node!=self.root:
                clades[self.parent[node]].clades.append(clade)
        return Tree(root=clades[self.root], rooted=self.rooted)


def _subset(parent, bl, names, keep):
    remap = {old:new for new, old in enumerate(keep)}
    new_parent = [remap[parent[i]] if parent[i]>=0 else -1 for i in keep]
    return new_parent, [bl[i] for i in keep], [names[i] for i in keep]


def _collapse_unary(parent, bl, names):
    """remove non-root nodes with a single child, merging their branches. A
    unary root is removed and its child becomes the root."""
    parent = list(parent)
    bl = list(bl)
    n = len(parent)
    changed = True
    removed = set()
    while changed:
        changed = False
        children = [[] for i in range(n)]
        for node, p in enumerate(parent):
            if p>=0 and node not in removed:
                children[p].append(node)
        for node in range(n):
            if node in removed or len(children[node])!=1:
                continue
            child = children[node][0]
            if parent[node]>=0:
                parent[child] = parent[node]
                bl[child] = bl[child] + bl[node]
            else:
                parent[child] = -1
                bl[child] = 0.0
            removed.add(node)
            changed = True
            break
    keep = [i for i in range(n) if i not in removed]
    return _subset(parent, bl, names, keep)
