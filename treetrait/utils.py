import numpy as np
from treetrait import config as ttconf


def normalize_profile(in_profile, log=False, return_offset=True):
    """return a normalized version of a profile vector

    Parameters
    ----------
    in_profile : np.array
        vector of length q, will be normalized to one
    log : bool, optional
        treat the input as log probabilities
    return_offset : bool, optional
        return the log of the scale factor

    Returns
    -------
    tuple
        normalized profile (fresh np object) and offset (if return_offset==True).
        A profile without any weight is returned as zeros with offset -inf.
    """
    if log:
        tmp_prefactor = np.max(in_profile)
        if not np.isfinite(tmp_prefactor):
            tmp_prof = np.zeros_like(in_profile, dtype=float)
            return tmp_prof, (-np.inf if return_offset else None)
        tmp_prof = np.exp(in_profile - tmp_prefactor)
    else:
        tmp_prefactor = 0.0
        tmp_prof = np.asarray(in_profile, dtype=float)

    norm = tmp_prof.sum()
    if norm<=0:
        return np.zeros_like(tmp_prof), (-np.inf if return_offset else None)
    return (np.copy(tmp_prof/norm),
            (np.log(norm) + tmp_prefactor) if return_offset else None)


def aic(log_lh, k):
    """
    Akaike information criterion of a model with k free parameters
    and maximized log-likelihood log_lh.
    """
    return 2.0*k - 2.0*log_lh


def aicc(log_lh, k, n):
    """
    Small-sample corrected Akaike information criterion

    :math:`AICc = 2k - 2 \\ln L + 2k(k+1)/(n-k-1)`

    Parameters
    ----------
     log_lh : float
        maximized log-likelihood
     k : int
        number of free parameters
     n : int
        number of observations

    Returns
    -------
     float
        AICc, infinite if the model has too many parameters for
        the number of observations (n-k-1<=0)
    """
    if n-k-1<=0:
        return np.inf
    return aic(log_lh, k) + 2.0*k*(k+1)/(n-k-1)


def akaike_weights(values):
    """
    Convert a collection of information criteria into relative model
    weights that sum to one. Infinite values receive weight zero.
    """
    values = np.array(values, dtype=float)
    finite = np.isfinite(values)
    weights = np.zeros_like(values)
    if finite.sum()==0:
        return weights
    delta = values[finite] - values[finite].min()
    tmp = np.exp(-0.5*delta)
    weights[finite] = tmp/tmp.sum()
    return weights


def confidence_quantile(confidence=ttconf.CONFIDENCE_LEVEL):
    """
    Two-sided standard normal quantile for a central interval
    containing a fraction *confidence* of the probability mass.
    """
    from scipy.stats import norm
    if not 0<confidence<1:
        raise ValueError("confidence level needs to be in (0,1), got %s"%str(confidence))
    return norm.ppf(0.5 + 0.5*confidence)
