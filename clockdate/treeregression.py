import numpy as np

tavgii, davgii, tsqii, dtavgii, dsqii, sii = 0,1,2,3,4,5

def base_regression(Q, slope=None):
    """
    this function calculates the regression coefficients for a
    given vector containing the averages of tip and branch
    quantities.

    Parameters
    ----------
    Q : numpy.array
        vector with the weighted sums of tip values, branch values,
        their squares and products, and the sum of weights
    slope : None, optional
        if given, only the intercept is fit

    Returns
    -------
    dict
        slope, intercept, chisq and (if the slope was fit) the hessian
        and covariance of the estimator
    """
    if slope is None:
        if (Q[tsqii] - Q[tavgii]**2/Q[sii])>0:
            slope = (Q[dtavgii] - Q[tavgii]*Q[davgii]/Q[sii]) \
                /(Q[tsqii] - Q[tavgii]**2/Q[sii])
        else:
            raise ValueError("No variation in sampling dates! Please specify your clock rate explicitly.")
        only_intercept=False
    else:
        only_intercept=True

    intercept = (Q[davgii] - Q[tavgii]*slope)/Q[sii]
    if (Q[tsqii] - Q[tavgii]**2/Q[sii])>0:
        chisq = 0.5*(Q[dsqii] - Q[davgii]**2/Q[sii] - (Q[dtavgii] - Q[davgii]*Q[tavgii]/Q[sii])**2/(Q[tsqii] - Q[tavgii]**2/Q[sii]))
    else:
        chisq = 0.5*(Q[dsqii] - Q[davgii]**2/Q[sii])

    if only_intercept:
        return {'slope':slope, 'intercept':intercept,
                'chisq': chisq}

    estimator_hessian = np.array([[Q[tsqii], Q[tavgii]], [Q[tavgii], Q[sii]]])

    return {'slope':slope, 'intercept':intercept,
            'chisq':chisq, 'hessian':estimator_hessian,
            'cov':np.linalg.inv(estimator_hessian)}


class TreeRegression(object):
    """TreeRegression
    This class implements an efficient regression method
    for quantity associated with tips and one that changes
    in an additive manner along the branches of the tree,
    e.g. the distance to the root. This implemented
    algorithm take into account the correlation structure
    of the data under the assumptions that variance increase
    linearly along branches as well.

    All quantities are arrays indexed by the nodes of an IndexedTree.
    """
    def __init__(self, tree, tip_value, branch_value=None, branch_variance=None):
        """
        Parameters
        ----------
         tree : IndexedTree
            tree for which the regression is calculated. If the tree is
            rooted, the regression refers to its root. Root positions are
            searched over all branches of the tree.

         tip_value : array or dict
            value of each leaf used in the regression (e.g. the sampling
            date), NaN or missing for leaves to be ignored

         branch_value : array, optional
            contribution of each branch to the value of the subtending
            tips. Defaults to the branch length

         branch_variance : array, optional
            variance increment along each branch. Defaults to the branch
            length plus a small fraction of the average branch length
        """
        self.tree = tree
        self.N = tree.n_leaves
        if isinstance(tip_value, dict):
            tv = np.full(tree.n_nodes, np.nan)
            for leaf in tree.leaves:
                tv[leaf] = tip_value.get(tree.names[leaf], np.nan)
            tip_value = tv
        self.tip_value = np.asarray(tip_value, dtype=float)
        self.branch_value = tree.branch_length if branch_value is None \
                            else np.asarray(branch_value, dtype=float)
        if branch_variance is None:
            # provide a default equal to the branch_length (Poisson) and add
            # a small fraction of the average branch length to avoid division by 0.
            total_bl = tree.branch_length.sum()
            self.branch_variance = tree.branch_length + 0.05*total_bl/self.N
        else:
            self.branch_variance = np.asarray(branch_variance, dtype=float)
        self._averages = False


    def _calculate_averages(self):
        """
        calculate the weighted sums of the tip and branch values and
        their second moments, both for the subtree below each node (Q)
        and for the rest of the tree (O).
        """
        tree = self.tree
        n = tree.n_nodes
        self.Q = np.zeros((n, 6), dtype=float)
        self.O = np.zeros((n, 6), dtype=float)
        self.Qtot = np.zeros((n, 6), dtype=float)
        for node in tree.postorder:
            if tree.is_leaf[node]:
                continue
            for c in tree.children[node]:
                self.Q[node] += self.propagate_averages(c)

        for node in tree.preorder:
            if node==tree.root:
                self.Qtot[node] = self.Q[node]
                continue
            p = tree.parent[node]
            O = np.zeros(6, dtype=float)
            for c in tree.children[p]:
                if c!=node:
                    O += self.propagate_averages(c)
            if p!=tree.root:
                O += self.propagate_averages(p, outgroup=True)
            self.O[node] = O

            if not tree.is_leaf[node]:
                self.Qtot[node] = self.Q[node] + self.propagate_averages(node, outgroup=True)
        self._averages = True


    def propagate_averages(self, node, bv=None, var=None, outgroup=False):
        """
        This function implements the propagation of the means,
        variance, and covariances along a branch. It operates
        both towards the root and tips.

        Parameters
        ----------
         node : int
            the branch connecting this node to its parent is used
            for propagation
         bv : float, optional
            branch value, the increment of the tree associated quantity.
            Defaults to the branch value of node
         var : float, optional
            the variance increment along the branch. Defaults to the branch
            variance of node

        Returns
        -------
         Q : (np.array)
            a vector of length 6 containing the updated quantities
        """
        bv = self.branch_value[node] if bv is None else bv
        var = self.branch_variance[node] if var is None else var
        if self.tree.is_leaf[node] and outgroup==False:
            tv = self.tip_value[node]
            if np.isinf(tv) or np.isnan(tv):
                res = np.zeros(6, dtype=float)
            elif var==0:
                res = np.full(6, np.inf)
            else:
                res = np.array([
                    tv/var,
                    bv/var,
                    tv**2/var,
                    bv*tv/var,
                    bv**2/var,
                    1.0/var], dtype=float)
        else:
            tmpQ = self.O[node] if outgroup else self.Q[node]
            denom = 1.0/(1+var*tmpQ[sii])
            res = np.array([
                tmpQ[tavgii]*denom,
                (tmpQ[davgii] + bv*tmpQ[sii])*denom,
                tmpQ[tsqii] - var*tmpQ[tavgii]**2*denom,
                tmpQ[dtavgii] + tmpQ[tavgii]*bv - var*tmpQ[tavgii]*(tmpQ[davgii] + bv*tmpQ[sii])*denom,
                tmpQ[dsqii] + 2*bv*tmpQ[davgii] + bv**2*tmpQ[sii] - var*(tmpQ[davgii]**2 + 2*bv*tmpQ[davgii]*tmpQ[sii] + bv**2*tmpQ[sii]**2)*denom,
                tmpQ[sii]*denom]
            )

        return res


    def explained_variance(self):
        """calculate standard explained variance

        Returns
        -------
        float
            r-value of the root-to-tip distance and time.
            independent of regression model, but dependent on root choice
        """
        d2r = self.tree.dist2root(self.branch_value)
        leaves = [l for l in self.tree.leaves if np.isfinite(self.tip_value[l])]
        raw = np.array([(self.tip_value[l], d2r[l]) for l in leaves])
        return np.corrcoef(raw.T)[0,1]


    def regression(self, slope=None):
        """regress tip values against branch values

        Parameters
        ----------
        slope : None, optional
            if given, the slope isn't optimized

        Returns
        -------
        dict
            regression parameters
        """
        self._calculate_averages()

        clock_model = base_regression(self.Q[self.tree.root], slope=slope)
        clock_model['r_val'] = self.explained_variance()
        clock_model['valid_confidence'] = 'cov' in clock_model

        return clock_model


    def _split_averages(self, node, x):
        bv = self.branch_value[node]
        var = self.branch_variance[node]
        return self.propagate_averages(node, bv*x, var*x) \
             + self.propagate_averages(node, bv*(1-x), var*(1-x), outgroup=True)


    def branch_scores(self, force_positive=True, slope=None):
        """
        optimal root position on every branch of the tree

        Returns
        -------
         dict
            node -> (split, chisq, slope). Branches on which the best root
            implies a negative slope get chisq=inf if force_positive
        """
        if not self._averages:
            self._calculate_averages()
        scores = {}
        for node in self.tree.edges():
            x, chisq = self._optimal_root_along_branch(node, slope=slope)
            if not np.isfinite(chisq):
                scores[node] = (x, np.inf, np.nan)
                continue
            reg = base_regression(self._split_averages(node, x), slope=slope)
            if reg["slope"]<0 and force_positive:
                chisq = np.inf
            scores[node] = (x, chisq, reg["slope"])
        return scores


    def find_best_root(self, force_positive=True, slope=None):
        """
        determine the position on the tree that minimizes the bilinear
        product of the inverse covariance and the data vectors.

        Returns
        -------
         best_root : (dict)
            dictionary with the node, the fraction `split` at which the branch
            is to be split, and the regression parameters. None if no
            branch results in a valid regression
        """
        scores = self.branch_scores(force_positive=force_positive, slope=slope)
        best_root = {"chisq": np.inf}
        for node in self.tree.edges():
            x, chisq, s = scores[node]
            if chisq<best_root["chisq"]:
                best_root = {"node":node, "split":x}
                best_root.update(base_regression(self._split_averages(node, x), slope=slope))

        if 'node' not in best_root:
            return None
        return best_root


    def _optimal_root_along_branch(self, node, slope=None):
        from scipy.optimize import minimize_scalar
        def chisq(x):
            return base_regression(self._split_averages(node, x), slope=slope)['chisq']

        try:
            chisq_prox = np.inf if self.tree.is_leaf[node] \
                         else base_regression(self.Qtot[node], slope=slope)['chisq']
            chisq_dist = base_regression(self.Qtot[self.tree.parent[node]], slope=slope)['chisq']
            grid = np.linspace(0.001,0.999,6)
            chisq_grid = np.array([chisq(x) for x in grid])
        except ValueError:
            return np.nan, np.inf
        min_chisq = chisq_grid.min()
        if chisq_prox<=min_chisq:
            return 0.0, chisq_prox
        elif chisq_dist<=min_chisq:
            return 1.0, chisq_dist
        else:
            ii = np.argmin(chisq_grid)
            bounds = (0 if ii==0 else grid[ii-1], 1.0 if ii==len(grid)-1 else grid[ii+1])
            sol = minimize_scalar(chisq, bounds=bounds, method="bounded")
            if sol["success"]:
                return sol['x'], sol['fun']
            else:
                return np.nan, np.inf
