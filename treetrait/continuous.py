import numpy as np
from treetrait import config as ttconf
from treetrait import DataError, NotReadyError
from .trait_tree import TraitTree
from .utils import confidence_quantile


def combine_messages(messages):
    """
    Combine independent Gaussian messages about the value of a single node.

    Parameters
    ----------
    messages : list
        list of (mean, variance) tuples. Messages with infinite variance
        carry no information, messages with zero variance fix the value.

    Returns
    -------
    tuple
        (mean, variance) of the precision weighted combination
    """
    if len(messages)==1:
        return messages[0]

    exact = [m for m,v in messages if v==0]
    if len(exact):
        return float(np.mean(exact)), 0.0

    informative = [(m,v) for m,v in messages if np.isfinite(v)]
    if len(informative)==0:
        return np.nan, np.inf
    elif len(informative)==1:
        return informative[0]

    means = np.array([m for m,v in informative], dtype=float)
    weights = 1.0/np.array([v for m,v in informative], dtype=float)
    return float(np.sum(weights*means)/weights.sum()), float(1.0/weights.sum())


class ContinuousAnc(TraitTree):
    """
    Maximum likelihood reconstruction of a continuous trait at the internal
    nodes of a tree assuming Brownian motion, i.e. the variance of the trait
    change along a branch is proportional to its length. The estimates are
    identical to generalized least squares with the covariance structure
    given by shared path lengths, but are calculated in linear time by
    passing Gaussian messages up and down the tree.
    """

    def __init__(self, tree=None, traits=None, **kwargs):
        """
        Parameters
        ----------
        tree : str, Bio.Phylo.Tree
            Phylogenetic tree or name of the file containing it

        traits : dict
            dictionary linking leaf names to trait values

        **kwargs
            passed on to :py:class:`treetrait.TraitTree`
        """
        super(ContinuousAnc, self).__init__(tree=tree, **kwargs)
        self._traits = None
        self.reconstructed = False
        self.root_value = None
        self.sigma2 = None
        self.log_lh = None
        if traits is not None:
            self.traits = traits


    @property
    def traits(self):
        return self._traits


    @traits.setter
    def traits(self, in_traits):
        self.check_trait_coverage(in_traits)
        tmp_traits = {}
        for name, val in in_traits.items():
            try:
                tmp_traits[name] = float(val)
            except (TypeError, ValueError):
                raise DataError("ContinuousAnc: value '%s' of leaf %s is not numeric"%(str(val), name))
            if not np.isfinite(tmp_traits[name]):
                raise DataError("ContinuousAnc: value of leaf %s is not finite"%name)
        self._traits = tmp_traits
        self.reconstructed = False


    def infer_ancestral_values(self, confidence=ttconf.CONFIDENCE_LEVEL, reml=False):
        """
        Reconstruct the ML values of the trait at all internal nodes, the
        Brownian motion rate, and confidence intervals of the node values.

        Parameters
        ----------
        confidence : float
            level of the confidence intervals assigned to nodes as `trait_ci`

        reml : bool
            estimate the rate as restricted maximum likelihood Q/(n-1)
            instead of the ML estimate Q/n

        Returns
        -------
        dict
            internal node name -> ML trait value
        """
        if self.traits is None:
            raise DataError("ContinuousAnc.infer_ancestral_values: no trait values assigned")
        confidence_quantile(confidence)

        self.logger("ContinuousAnc.infer_ancestral_values: Brownian motion reconstruction", 1)
        stats = self._postorder_traversal()
        self._preorder_traversal()
        self._estimate_rate(stats, reml=reml)
        self._assign_confidence(confidence)
        self.reconstructed = True
        self.logger("ContinuousAnc.infer_ancestral_values: root value %1.4g, rate %1.4g, log-likelihood %1.4g"
                    %(self.root_value, self.sigma2, self.log_lh), 2)
        return self.get_ancestral_values()


    def _postorder_traversal(self):
        """
        Propagate leaf values towards the root. Each node receives the value
        and variance of the estimate based on its subtree alone. Returns the
        sums required to evaluate the likelihood.
        """
        self.logger("ContinuousAnc: postorder, combining subtree values...", 3)
        for leaf in self.tree.get_terminals():
            leaf.subtree_value = self.traits[leaf.name]
            leaf.subtree_var = 0.0

        stats = {'sq':0.0, 'logdet':0.0, 'degenerate':False, 'redundant':0}
        for node in self.internal_nodes(order='postorder'):
            msgs = [(c.subtree_value, c.subtree_var + c.branch_length) for c in node.clades]
            node.subtree_value, node.subtree_var = combine_messages(msgs)

            # unary nodes below the root neither add information nor change the likelihood
            if len(msgs)==1 and node.up is not None:
                continue
            variances = np.array([v for m,v in msgs])
            means = np.array([m for m,v in msgs])
            exact = variances==0
            if np.any(exact):
                exact_means = means[exact]
                if node.up is None or np.any(exact_means!=exact_means[0]):
                    stats['degenerate'] = True
                    continue
                # node value is fixed by its exact children, identical exact children count once
                stats['redundant'] += int(exact.sum()) - 1
                stats['sq'] += np.sum((means[~exact] - exact_means[0])**2/variances[~exact])
                stats['logdet'] += np.sum(np.log(variances[~exact]))
                continue

            stats['sq'] += np.sum((means - node.subtree_value)**2/variances)
            stats['logdet'] += np.sum(np.log(variances))
            if node.up is not None:
                stats['logdet'] -= np.log(node.subtree_var)

        return stats


    def _preorder_traversal(self):
        """
        Propagate information from the root towards the leaves. Each node
        receives a message summarizing all data outside of its subtree, which
        is combined with the subtree message into the final estimate.
        """
        self.logger("ContinuousAnc: preorder, combining outgroup values...", 3)
        root = self.tree.root
        root.outgroup_value, root.outgroup_var = np.nan, np.inf
        root.trait_value, root.trait_var = root.subtree_value, root.subtree_var
        self.root_value = root.trait_value

        for node in self.internal_nodes(order='preorder'):
            for c in node.clades:
                msgs = [(s.subtree_value, s.subtree_var + s.branch_length) for s in node.clades if s is not c]
                if node.up is not None:
                    msgs.append((node.outgroup_value, node.outgroup_var))
                val, var = combine_messages(msgs) if len(msgs) else (np.nan, np.inf)
                c.outgroup_value, c.outgroup_var = val, var + c.branch_length
                if c.is_terminal():
                    c.trait_value, c.trait_var = self.traits[c.name], 0.0
                else:
                    c.trait_value, c.trait_var = combine_messages([(c.subtree_value, c.subtree_var),
                                                                   (c.outgroup_value, c.outgroup_var)])

        # a node with a single child carries the value of its child
        for node in self.internal_nodes(order='postorder'):
            if len(node.clades)==1:
                node.trait_value = node.clades[0].trait_value
                node.trait_var = node.clades[0].trait_var


    def _estimate_rate(self, stats, reml=False):
        n = self.n_leaves - stats['redundant']
        if stats['degenerate']:
            self.logger("ContinuousAnc: zero length branches join distinct observations or"
                        " fix the root value, rate and likelihood can not be estimated", 1, warn=True)
            self.sigma2, self.log_lh = np.nan, np.nan
            return

        self.sigma2 = stats['sq']/(n-1 if reml else n)
        if self.sigma2==0:
            self.logger("ContinuousAnc: trait values are compatible with zero rate of evolution", 1, warn=True)
            self.log_lh = np.inf
            return
        self.log_lh = -0.5*n*np.log(2*np.pi*self.sigma2) - 0.5*stats['logdet'] - 0.5*stats['sq']/self.sigma2


    def _assign_confidence(self, confidence):
        z = confidence_quantile(confidence)
        for node in self.tree.find_clades():
            if np.isfinite(self.sigma2):
                half_width = z*np.sqrt(node.trait_var*self.sigma2)
            else:
                half_width = np.nan
            node.trait_ci = (node.trait_value - half_width, node.trait_value + half_width)


    def get_ancestral_values(self, include_tips=False):
        """
        Returns
        -------
        dict
            node name -> trait value for internal nodes (and leaves if requested)
        """
        if not self.reconstructed:
            raise NotReadyError("ContinuousAnc: run infer_ancestral_values first")
        nodes = self.tree.find_clades() if include_tips else self.tree.get_nonterminals()
        return {n.name:n.trait_value for n in nodes}


    def edge_gradient(self, n_points=ttconf.EDGE_GRID_SIZE):
        """
        Linearly interpolate the trait along every branch of the tree.

        Parameters
        ----------
        n_points : int
            number of points along each branch, including both end points

        Returns
        -------
        dict
            node name -> (positions, values). Positions are distances from
            the root running from the parent of the node to the node itself,
            values run from the parent estimate to the node value.
        """
        if not self.reconstructed:
            raise NotReadyError("ContinuousAnc.edge_gradient: run infer_ancestral_values first")
        if n_points<2:
            raise ValueError("ContinuousAnc.edge_gradient: need at least two points per branch")

        gradient = {}
        for node in self.tree.find_clades(order='preorder'):
            if node.up is None:
                continue
            gradient[node.name] = (np.linspace(node.up.dist2root, node.dist2root, n_points),
                                   np.linspace(node.up.trait_value, node.trait_value, n_points))
        return gradient


    def edge_colors(self, cmap='viridis', n_points=ttconf.EDGE_GRID_SIZE, vmin=None, vmax=None):
        """
        Map the interpolated trait values along branches onto a matplotlib colormap.

        Returns
        -------
        dict
            node name -> array of RGBA colors of shape (n_points, 4)
        """
        from matplotlib import colormaps
        from matplotlib.colors import Normalize
        colormap = colormaps[cmap] if isinstance(cmap, str) else cmap

        node_values = np.array([n.trait_value for n in self.tree.find_clades()])
        norm = Normalize(vmin=node_values.min() if vmin is None else vmin,
                         vmax=node_values.max() if vmax is None else vmax)
        return {name:colormap(norm(values))
                for name, (positions, values) in self.edge_gradient(n_points=n_points).items()}
