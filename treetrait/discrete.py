from collections import Counter
import numpy as np
from treetrait import config as ttconf
from treetrait import DataError, ModelError, ConvergenceError, NotReadyError, TreeTraitUnknownError
from .trait_tree import TraitTree
from .mk_model import MkModel
from .utils import normalize_profile, aic, aicc, confidence_quantile


class DiscreteAnc(TraitTree):
    """
    Fit continuous time Markov models to a discrete character observed at the
    leaves of a tree and reconstruct its ancestral states. Likelihoods are
    computed with Felsenstein's pruning algorithm, rates are optimized
    numerically, and ancestral states are assigned either as marginal
    posterior distributions or as the jointly most likely configuration.
    """

    def __init__(self, tree=None, traits=None, model='ER', root_prior='uniform',
                 missing_data=ttconf.MISSING_DATA, alphabet=None, **kwargs):
        """
        Parameters
        ----------
        tree : str, Bio.Phylo.Tree
            Phylogenetic tree or name of the file containing it

        traits : dict
            dictionary linking leaf names to discrete states

        model : str, MkModel
            rate matrix model. Strings are interpreted as the name of a
            standard model ('ER', 'SYM', 'ARD'), which is created once the
            states of the character are known.

        root_prior : str, numpy.array
            distribution of states at the root: 'uniform', 'stationary' (the
            equilibrium distribution of the rate matrix), or a vector of
            probabilities in the order of the alphabet

        missing_data : str
            value marking leaves whose state is unknown

        alphabet : list, optional
            ordered list of states. By default, the sorted observed states are used.

        **kwargs
            passed on to :py:class:`treetrait.TraitTree`
        """
        super(DiscreteAnc, self).__init__(tree=tree, **kwargs)
        self.missing_data = missing_data
        self._in_alphabet = alphabet
        self._in_model = model
        self._model = None
        self._traits = None
        self.root_prior = root_prior
        self.fit_result = None
        self.reconstruction = None
        if traits is not None:
            self.traits = traits


####################################################################
## SET-UP
####################################################################
    @property
    def model(self):
        """
        :setter: Sets the rate matrix model, either by name or as MkModel instance
        :getter: Returns the current MkModel
        """
        return self._model


    @model.setter
    def model(self, value):
        self.set_model(value)


    def set_model(self, in_model, **kwargs):
        """
        Create a new rate matrix model if needed and set it as the model of the analysis.

        Parameters
        -----------
         in_model : str, MkModel
            The model to be assigned. If string is passed, it is taken as the
            name of a standard model created through :code:`MkModel.standard()`.
        """
        self._in_model = in_model
        if self.traits is None:
            return

        if isinstance(in_model, str):
            self._model = MkModel.standard(in_model, alphabet=self.alphabet, logger=self.logger, **kwargs)
        elif isinstance(in_model, MkModel):
            unknown = [s for s in self.alphabet if s not in in_model.state_index]
            if unknown:
                raise ModelError("DiscreteAnc.set_model: states %s are not part of the model alphabet"
                                 %", ".join(map(str, unknown)))
            self._model = in_model
            self._model.logger = self.logger
            self.alphabet = in_model.alphabet.tolist()
        else:
            raise ModelError("DiscreteAnc.set_model: can't interpret model, MkModel or string expected")
        self.fit_result = None
        self.reconstruction = None


    @property
    def root_prior(self):
        """
        :setter: Sets the prior of the root state, 'uniform', 'stationary' or a vector.
                 Discards previous fits and reconstructions.
        :getter: Returns the root prior as given
        """
        return self._root_prior


    @root_prior.setter
    def root_prior(self, value):
        self._root_prior = value
        self.fit_result = None
        self.reconstruction = None


    @property
    def traits(self):
        return self._traits


    @traits.setter
    def traits(self, in_traits):
        self.check_trait_coverage(in_traits)
        tmp_traits = {}
        for name, val in in_traits.items():
            if val is None or (isinstance(val, float) and np.isnan(val)):
                val = self.missing_data
            tmp_traits[name] = val

        observed = {v for v in tmp_traits.values() if v!=self.missing_data}
        if len(observed)==0:
            raise DataError("DiscreteAnc: no leaf has an observed state")
        if self._in_alphabet is not None:
            alphabet = list(self._in_alphabet)
            unknown = sorted(map(str, observed - set(alphabet)))
            if unknown:
                raise DataError("DiscreteAnc: observed states %s are not part of the alphabet"%", ".join(unknown))
        else:
            alphabet = sorted(observed, key=str)
        if len(alphabet)<2:
            raise DataError("DiscreteAnc: only one state found -- need at least two states to fit a model")

        self._traits = tmp_traits
        self.alphabet = alphabet
        self.n_observed = sum(v!=self.missing_data for v in tmp_traits.values())
        self.logger("DiscreteAnc: assigned states to %d out of %d leaves, %d distinct states"
                    %(self.n_observed, self.n_leaves, len(alphabet)), 2)
        self.set_model(self._in_model)


    def _check_ready(self):
        if self.traits is None or self.model is None:
            raise DataError("DiscreteAnc: no trait values assigned")


    def leaf_profile(self, leaf):
        """
        Likelihood of the observed state of a leaf given each possible state.
        Leaves with missing data are compatible with all states.
        """
        state = self.traits[leaf.name]
        if state==self.missing_data:
            return np.ones(self.model.n_states)
        profile = np.zeros(self.model.n_states)
        profile[self.model.state_index[state]] = 1.0
        return profile


    def root_profile(self):
        """
        Prior distribution of states at the root as a normalized vector.
        """
        n = self.model.n_states
        if isinstance(self.root_prior, str):
            if self.root_prior.lower() in ['uniform', 'equal', 'flat']:
                return np.ones(n)/n
            elif self.root_prior.lower() in ['stationary', 'equilibrium']:
                return self.model.stationary_distribution()
            raise ModelError("DiscreteAnc: unknown root prior '%s', use 'uniform', 'stationary' or a vector"
                             %self.root_prior)

        prior = np.array(self.root_prior, dtype=float)
        if prior.shape!=(n,) or np.any(~np.isfinite(prior)) or np.any(prior<0) or prior.sum()<=0:
            raise ModelError("DiscreteAnc: root prior needs to be a non-negative vector of length %d"%n)
        return prior/prior.sum()


###################################################################
### likelihood
###################################################################
    def postorder_traversal(self):
        """
        Compute the conditional likelihood of the subtree below each node for
        every state of the node. Profiles are normalized at every node and the
        log of the normalization is accumulated in `subtree_LH_prefactor`.
        """
        self.logger("DiscreteAnc: postorder, computing subtree likelihoods... ", 4)
        for leaf in self.tree.get_terminals():
            leaf.subtree_LH = self.leaf_profile(leaf)
            leaf.subtree_LH_prefactor = 0.0

        for node in self.internal_nodes(order='postorder'): #leaves -> root
            tmp_log_subtree_LH = np.zeros(self.model.n_states, dtype=float)
            node.subtree_LH_prefactor = 0.0
            for ch in node.clades:
                ch.msg_to_parent = self.model.propagate_profile(ch.subtree_LH, ch.branch_length)
                with np.errstate(divide='ignore'):
                    tmp_log_subtree_LH += np.log(ch.msg_to_parent)
                node.subtree_LH_prefactor += ch.subtree_LH_prefactor

            node.subtree_LH, offset = normalize_profile(tmp_log_subtree_LH, log=True)
            node.subtree_LH_prefactor += offset


    def total_log_likelihood(self):
        """
        Run the postorder traversal with the current rates and combine
        the root profile with the root prior.
        """
        self.postorder_traversal()
        root = self.tree.root
        root_LH = np.sum(self.root_profile()*root.subtree_LH)
        if root_LH<=0 or not np.isfinite(root.subtree_LH_prefactor):
            return -np.inf
        return np.log(root_LH) + root.subtree_LH_prefactor


    def log_likelihood(self, rates=None):
        """return the likelihood of the observed states given the tree and model

        Parameters
        ----------
        rates : numpy.array, optional
            free rates of the model. If given, they are assigned to the model
            before the likelihood is evaluated. Rates different from the
            fitted ones discard the previous fit.

        Returns
        -------
        float
            log-likelihood
        """
        self._check_ready()
        if rates is not None:
            self.model.rates = rates
            # rates other than the fitted ones invalidate the fit and reconstruction
            if self.fit_result is not None and not np.array_equal(self.model.rates, self.fit_result['rates']):
                self.fit_result = None
                self.reconstruction = None
        return self.total_log_likelihood()


    def fitch_changes(self):
        """
        Minimal number of state changes on the tree according to Fitch's
        algorithm (generalized to polytomies). Leaves with missing data
        are compatible with every state.
        """
        self._check_ready()
        all_states = set(self.alphabet)
        for leaf in self.tree.get_terminals():
            state = self.traits[leaf.name]
            leaf.fitch_state = set(all_states) if state==self.missing_data else {state}

        n_changes = 0
        for node in self.internal_nodes(order='postorder'):
            counts = Counter(s for c in node.clades for s in c.fitch_state)
            max_count = max(counts.values())
            node.fitch_state = {s for s,c in counts.items() if c==max_count}
            n_changes += len(node.clades) - max_count

        for node in self.tree.find_clades():
            del node.fitch_state # no need to store Fitch states
        return n_changes


###################################################################
### model fitting
###################################################################
    def fit_model(self, n_restarts=0, rng_seed=None, confidence=ttconf.CONFIDENCE_LEVEL):
        """
        Estimate the free rates of the model by maximizing the likelihood.

        The optimization runs over log-rates with L-BFGS-B. Rates are bounded
        relative to the total tree length. The starting point is derived from the
        parsimony number of changes, additional random starting points can be added.

        Parameters
        ----------
        n_restarts : int
            number of additional optimizations from randomly perturbed starting points

        rng_seed : int, optional
            seed of the random number generator used for restarts

        confidence : float
            level of the confidence intervals of the rates

        Returns
        -------
        dict
            model name, rate matrix `Q`, `rates`, `rates_ci`, `log_lh`, number
            of free parameters `k`, number of observations `n`, `aic`, `aicc`,
            and whether the optimizer reported convergence

        Raises
        ------
        ConvergenceError
            if no finite likelihood optimum is found
        """
        from scipy.optimize import minimize
        self._check_ready()
        k = self.model.n_params
        n = self.n_observed
        old_rates = np.copy(self.model.rates)
        self.logger("DiscreteAnc.fit_model: fitting %s model with %d free rates"%(self.model.constraint, k), 1)

        if k==0:
            log_lh = self.total_log_likelihood()
            if not np.isfinite(log_lh):
                raise ConvergenceError("DiscreteAnc.fit_model: fixed model has zero likelihood")
            return self._store_fit_result(log_lh, k, n, np.zeros((0,2)), True)

        total_length = self.total_branch_length()
        if total_length<=0:
            raise DataError("DiscreteAnc.fit_model: tree has no branch length, rates can not be estimated")

        bounds = (np.log(ttconf.RATE_LOWER_BOUND/total_length), np.log(ttconf.RATE_UPPER_BOUND/total_length))
        n_changes = self.fitch_changes()
        x0 = np.clip(np.log(max(n_changes, 1)/total_length/(self.model.n_states-1)), *bounds)
        self.logger("DiscreteAnc.fit_model: parsimony changes %d, initial rate %1.3e"%(n_changes, np.exp(x0)), 3)

        def cost_func(log_rates):
            self.model.rates = np.exp(log_rates)
            log_lh = self.total_log_likelihood()
            return -log_lh if np.isfinite(log_lh) else ttconf.BIG_NUMBER

        starting_points = [np.ones(k)*x0]
        rng = np.random.default_rng(rng_seed)
        for ri in range(n_restarts):
            starting_points.append(np.clip(x0 + rng.normal(0, 1, size=k), *bounds))

        best = None
        for start in starting_points:
            try:
                sol = minimize(cost_func, start, method='L-BFGS-B', bounds=[bounds]*k,
                               options={'maxiter':ttconf.OPT_MAX_ITER, 'ftol':ttconf.OPT_FTOL})
            except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
                self.logger("DiscreteAnc.fit_model: optimization failed: %s"%str(e), 2, warn=True)
                continue
            self.logger("DiscreteAnc.fit_model: optimization from %s ended at log-likelihood %f"
                        %(str(np.round(np.exp(start), 4)), -sol['fun']), 3)
            if best is None or sol['fun']<best['fun']:
                best = sol

        if best is None or not np.isfinite(best['fun']) or best['fun']>=ttconf.BIG_NUMBER:
            self.model.rates = old_rates
            raise ConvergenceError("DiscreteAnc.fit_model: optimization did not find rates with finite likelihood")
        if not best['success']:
            self.logger("DiscreteAnc.fit_model: optimizer did not report convergence: %s"%str(best['message']), 1, warn=True)

        rates_ci = self._rate_confidence(best['x'], cost_func, confidence, bounds)
        self.model.rates = np.exp(best['x'])
        log_lh = self.total_log_likelihood()
        return self._store_fit_result(log_lh, k, n, rates_ci, bool(best['success']))


    def _store_fit_result(self, log_lh, k, n, rates_ci, converged):
        self.fit_result = {'model':self.model.constraint,
                           'Q':self.model.Q,
                           'rates':np.copy(self.model.rates),
                           'rates_ci':rates_ci,
                           'log_lh':log_lh,
                           'k':k,
                           'n':n,
                           'aic':aic(log_lh, k),
                           'aicc':aicc(log_lh, k, n),
                           'converged':converged}
        self.reconstruction = None
        self.logger("DiscreteAnc.fit_model: %s model, log-likelihood %1.3f, AICc %1.3f"
                    %(self.model.constraint, log_lh, self.fit_result['aicc']), 1)
        return self.fit_result


    def _rate_confidence(self, log_rates, cost_func, confidence, bounds):
        """
        Confidence intervals of the rates. For rates in the interior of the
        allowed range, intervals derive from the curvature of the negative
        log-likelihood in log-rate space, evaluated by finite differences.
        Rates at a bound of the range, or with a flat or non-concave likelihood,
        get likelihood ratio intervals with all other rates held at their optimum.
        These are truncated at the bounds of the range.
        """
        k = len(log_rates)
        h = ttconf.HESSIAN_STEP
        z = confidence_quantile(confidence)
        f0 = cost_func(log_rates)
        rates_ci = np.ones((k,2))*np.nan

        interior = (log_rates - bounds[0]>h) & (bounds[1] - log_rates>h)
        idx = np.where(interior)[0]
        H = np.zeros((len(idx),len(idx)))
        eye = np.eye(k)*h
        for ii,i in enumerate(idx):
            H[ii,ii] = (cost_func(log_rates+eye[i]) - 2*f0 + cost_func(log_rates-eye[i]))/h**2
            for jj in range(ii+1,len(idx)):
                j = idx[jj]
                H[ii,jj] = (cost_func(log_rates+eye[i]+eye[j]) - cost_func(log_rates+eye[i]-eye[j])
                            - cost_func(log_rates-eye[i]+eye[j]) + cost_func(log_rates-eye[i]-eye[j]))/(4*h**2)
                H[jj,ii] = H[ii,jj]

        valid = np.zeros(k, dtype=bool)
        if len(idx):
            try:
                var = np.diag(np.linalg.inv(H))
            except np.linalg.LinAlgError:
                var = np.ones(len(idx))*np.nan
            ok = np.isfinite(var) & (var>0)
            # intervals reaching beyond the allowed range indicate a flat likelihood
            ok[ok] = (log_rates[idx[ok]] - z*np.sqrt(var[ok])>bounds[0]) \
                     & (log_rates[idx[ok]] + z*np.sqrt(var[ok])<bounds[1])
            se = np.sqrt(var[ok])
            rates_ci[idx[ok],0] = np.exp(log_rates[idx[ok]] - z*se)
            rates_ci[idx[ok],1] = np.exp(log_rates[idx[ok]] + z*se)
            valid[idx[ok]] = True

        if not np.all(valid):
            self.logger("DiscreteAnc: %d rates at the boundary or with flat likelihood,"
                        " using likelihood ratio intervals"%(k-valid.sum()), 2)
        threshold = f0 + 0.5*z**2
        for i in np.where(~valid)[0]:
            rates_ci[i] = np.exp(self._likelihood_interval(log_rates, i, cost_func, bounds, threshold))
        return rates_ci


    def _likelihood_interval(self, log_rates, i, cost_func, bounds, threshold):
        """
        Range of log-rate i within the bounds where the negative log-likelihood
        stays below threshold, with all other rates fixed.
        """
        from scipy.optimize import brentq
        def excess(x):
            tmp = np.copy(log_rates)
            tmp[i] = x
            return cost_func(tmp) - threshold

        interval = []
        for bound in bounds:
            if excess(bound)<=0:
                interval.append(bound)
            else:
                interval.append(brentq(excess, min(bound, log_rates[i]), max(bound, log_rates[i])))
        return np.array(interval)



###################################################################
### ancestral reconstruction
###################################################################
    def infer_ancestral_states(self, marginal=True, reconstruct_tip_states=False, debug=False, **kwargs):
        """Reconstruct ancestral states of the character

        Parameters
        ----------
        marginal : bool
            Assign to each node the posterior distribution of states averaged
            over all other nodes. Otherwise, assign the jointly most likely states.

        reconstruct_tip_states : bool
            Also reconstruct leaves, replacing missing data by inferred states

        **kwargs
            passed to :py:meth:`DiscreteAnc.fit_model` if the model has not been fitted

        Returns
        -------
        dict
            node name -> probability vector over the alphabet (marginal),
            or node name -> state (joint)
        """
        self._check_ready()
        if self.fit_result is None:
            self.fit_model(**kwargs)

        self.logger("DiscreteAnc.infer_ancestral_states: %s reconstruction"%('marginal' if marginal else 'joint'), 1)
        if marginal:
            res = self._ml_anc_marginal(reconstruct_tip_states=reconstruct_tip_states)
        else:
            res = self._ml_anc_joint(reconstruct_tip_states=reconstruct_tip_states)

        if not debug:
            for node in self.tree.find_clades():
                for attr in ['msg_to_parent', 'joint_Lx', 'joint_Cx', 'joint_idx']:
                    if hasattr(node, attr):
                        delattr(node, attr)
        return res


    def _ml_anc_marginal(self, reconstruct_tip_states=False):
        """
        Marginal posterior distribution of states at each node: the subtree
        likelihood of the node multiplied by the likelihood of all data outside of
        its subtree, passed down from the root.
        """
        log_lh = self.total_log_likelihood()
        if not np.isfinite(log_lh):
            raise ModelError("DiscreteAnc: observed states have zero likelihood under the current model")

        root = self.tree.root
        root.outgroup_LH = self.root_profile()
        root.marginal_profile = normalize_profile(root.outgroup_LH*root.subtree_LH, return_offset=False)[0]

        self.logger("DiscreteAnc: preorder, computing marginal profiles...", 3)
        for node in self.internal_nodes(order='preorder'):
            for c in node.clades:
                # prior or message from above combined with all siblings of c
                msg = node.outgroup_LH
                for s in node.clades:
                    if s is not c:
                        msg = normalize_profile(msg*s.msg_to_parent, return_offset=False)[0]
                c.outgroup_LH = normalize_profile(self.model.evolve(msg, c.branch_length), return_offset=False)[0]
                if c.is_terminal() and not reconstruct_tip_states:
                    continue
                c.marginal_profile = normalize_profile(c.subtree_LH*c.outgroup_LH, return_offset=False)[0]

        nodes = list(self.tree.find_clades()) if reconstruct_tip_states else self.tree.get_nonterminals()
        for node in nodes:
            if node.marginal_profile.sum()==0:
                raise TreeTraitUnknownError("DiscreteAnc: marginal profile of node %s vanishes although"
                                            " the likelihood is finite"%node.name)
            node.state = self.alphabet[node.marginal_profile.argmax()]
        for leaf in self.tree.get_terminals():
            if not reconstruct_tip_states:
                leaf.state = self.traits[leaf.name]

        self.marginal_log_lh = log_lh
        self.reconstruction = 'marginal'
        self.reconstructed_tip_states = reconstruct_tip_states
        return {n.name:n.marginal_profile for n in nodes}


    def _ml_anc_joint(self, reconstruct_tip_states=False):
        """
        Jointly most likely assignment of states to all nodes. For every node
        and every state of its parent, the best state of the node and the
        likelihood of the subtree given that choice are stored in postorder.
        The states are then resolved from the root down.
        """
        self.logger("DiscreteAnc._ml_anc_joint: Walking up the tree, computing likelihoods... ", 3)
        for node in self.tree.find_clades(order='postorder'):
            if node.up is None:
                continue
            log_transitions = np.log(np.maximum(ttconf.TINY_NUMBER, self.model.expQt(node.branch_length)))
            if node.is_terminal():
                msg_from_children = np.log(np.maximum(self.leaf_profile(node), ttconf.TINY_NUMBER))
            else:
                msg_from_children = np.sum([c.joint_Lx for c in node.clades], axis=0)

            # rows: parent state, columns: state of this node
            msg_to_parent = log_transitions + msg_from_children
            node.joint_Cx = msg_to_parent.argmax(axis=1)
            node.joint_Lx = msg_to_parent.max(axis=1)

        root = self.tree.root
        root_Lx = np.sum([c.joint_Lx for c in root.clades], axis=0) \
                  + np.log(np.maximum(self.root_profile(), ttconf.TINY_NUMBER))
        root.joint_idx = root_Lx.argmax()
        self.joint_log_lh = root_Lx.max()

        self.logger("DiscreteAnc._ml_anc_joint: Walking down the tree, assigning states...", 3)
        for node in self.tree.find_clades(order='preorder'):
            if node.up is not None:
                node.joint_idx = node.joint_Cx[node.up.joint_idx]
            if node.is_terminal() and not reconstruct_tip_states:
                node.state = self.traits[node.name]
            else:
                node.state = self.alphabet[node.joint_idx]

        self.reconstruction = 'joint'
        self.reconstructed_tip_states = reconstruct_tip_states
        nodes = self.tree.find_clades() if reconstruct_tip_states else self.tree.get_nonterminals()
        return {n.name:n.state for n in nodes}


    def get_state_table(self):
        """
        Table of reconstructed states. Rows are nodes, columns the posterior
        probability of each state (marginal reconstruction) and the assigned state.

        Returns
        -------
        pandas.DataFrame
        """
        import pandas as pd
        if self.reconstruction is None:
            raise NotReadyError("DiscreteAnc.get_state_table: run infer_ancestral_states first")

        nodes = list(self.tree.find_clades()) if self.reconstructed_tip_states else self.tree.get_nonterminals()
        if self.reconstruction=='marginal':
            table = pd.DataFrame([n.marginal_profile for n in nodes],
                                 index=[n.name for n in nodes], columns=[str(s) for s in self.alphabet])
        else:
            table = pd.DataFrame(index=[n.name for n in nodes])
        table['state'] = [n.state for n in nodes]
        table.index.name = 'node'
        return table
