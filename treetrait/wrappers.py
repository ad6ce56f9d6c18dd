from copy import deepcopy
import pandas as pd
from treetrait import config as ttconf
from treetrait import TreeTraitError
from .continuous import ContinuousAnc
from .discrete import DiscreteAnc
from .utils import akaike_weights


def reconstruct_continuous_trait(tree, traits, confidence=ttconf.CONFIDENCE_LEVEL, reml=False,
                                 verbose=0):
    """take a set of numeric values associated with tips of a tree and
    reconstruct their ancestral values assuming Brownian motion.

    Parameters
    ----------
    tree : str, Bio.Phylo.Tree
        name of tree file or Biopython tree object
    traits : dict
        dictionary linking tips to values
    confidence : float, optional
        level of the confidence intervals assigned to nodes
    reml : bool, optional
        use the restricted maximum likelihood estimate of the rate
    verbose : int, optional
        level of verbosity in output

    Returns
    -------
    ContinuousAnc
        object holding the annotated tree, root value, rate, and log-likelihood
    """
    anc = ContinuousAnc(tree=tree, traits=traits, verbose=verbose)
    anc.infer_ancestral_values(confidence=confidence, reml=reml)
    return anc


def reconstruct_discrete_trait(tree, traits, model='ER', missing_data=ttconf.MISSING_DATA,
                               root_prior='uniform', marginal=True, reconstruct_tip_states=False,
                               verbose=0, n_restarts=0, rng_seed=None):
    """take a set of discrete states associated with tips of a tree
    and reconstruct their ancestral states along with a rate matrix
    that maximizes the likelihood of the states on the tree.

    Parameters
    ----------
    tree : str, Bio.Phylo.Tree
        name of tree file or Biopython tree object
    traits : dict
        dictionary linking tips to states
    model : str, MkModel, optional
        rate matrix model, 'ER', 'SYM', 'ARD' or a custom MkModel
    missing_data : str, optional
        string indicating missing data
    root_prior : str, numpy.array, optional
        prior distribution of states at the root
    marginal : bool, optional
        marginal (True) or joint (False) reconstruction
    verbose : int, optional
        level of verbosity in output
    n_restarts : int, optional
        number of additional randomized starts of the rate optimization
    rng_seed : int, optional
        seed for the random starts

    Returns
    -------
    DiscreteAnc
        object holding the annotated tree, fitted model, and fit summary
    """
    anc = DiscreteAnc(tree=tree, traits=traits, model=model, root_prior=root_prior,
                      missing_data=missing_data, verbose=verbose)
    anc.fit_model(n_restarts=n_restarts, rng_seed=rng_seed)
    anc.infer_ancestral_states(marginal=marginal, reconstruct_tip_states=reconstruct_tip_states)
    return anc


def compare_discrete_models(tree, traits, models=('ER', 'ARD'), missing_data=ttconf.MISSING_DATA,
                            root_prior='uniform', verbose=0, n_restarts=0, rng_seed=None):
    """
    Fit several rate matrix models to the same discrete trait and rank them by AICc.

    Parameters
    ----------
    tree : str, Bio.Phylo.Tree
        name of tree file or Biopython tree object. Trees are copied for
        every model, the input is not modified.
    traits : dict
        dictionary linking tips to states
    models : iterable
        names of the models to compare or MkModel instances. Instances are
        listed under their constraint, repeated names get the position in
        `models` appended.

    Returns
    -------
    tuple
        pandas.DataFrame with one row per model (log_lh, k, n, aic, aicc,
        delta_aicc, weight, converged) sorted by AICc, and a dictionary
        model name -> fitted DiscreteAnc object
    """
    rows = []
    fits = {}
    failed = []
    for mi, model in enumerate(models):
        name = model if isinstance(model, str) else model.constraint
        if name in fits or name in failed:
            name = '%s_%d'%(name, mi)
        anc = DiscreteAnc(tree=deepcopy(tree), traits=traits, model=model, root_prior=root_prior,
                          missing_data=missing_data, verbose=verbose)
        try:
            res = anc.fit_model(n_restarts=n_restarts, rng_seed=rng_seed)
        except TreeTraitError as e:
            anc.logger("compare_discrete_models: fitting model %s failed: %s"%(name, str(e)), 0, warn=True)
            failed.append(name)
            continue
        fits[name] = anc
        rows.append({'model':name, 'log_lh':res['log_lh'], 'k':res['k'], 'n':res['n'],
                     'aic':res['aic'], 'aicc':res['aicc'], 'converged':res['converged']})

    if len(rows)==0:
        raise TreeTraitError("compare_discrete_models: none of the models could be fitted")

    table = pd.DataFrame(rows).set_index('model')
    table['delta_aicc'] = table['aicc'] - table['aicc'].min()
    table['weight'] = akaike_weights(table['aicc'].values)
    table = table.sort_values('aicc', kind='mergesort')
    return table[['log_lh', 'k', 'n', 'aic', 'aicc', 'delta_aicc', 'weight', 'converged']], fits
