import numpy as np
from treetrait import config as ttconf
from treetrait import ModelError

model_synonyms = {
    'ER':  ['er', 'equal', 'equal-rates', 'equal_rates', 'equalrates', 'mk'],
    'SYM': ['sym', 'symmetric', 'symmetrical'],
    'ARD': ['ard', 'all-rates-different', 'all_rates_different', 'allratesdifferent', 'free'],
}


def get_constraint(model):
    """
    Translate a model name into one of the canonical rate matrix
    constraints 'ER', 'SYM', or 'ARD'.
    """
    if isinstance(model, str):
        for constraint, synonyms in model_synonyms.items():
            if model.lower() in synonyms:
                return constraint
    raise ModelError("The rate matrix model '{}' is not in the list of available models: {}"
                     "".format(model, ", ".join(model_synonyms.keys())))


class MkModel(object):
    """
    Continuous time Markov model of a discrete character with k states (Mk model).
    The rate matrix Q has non-negative off-diagonal entries Q_ij, the rate of
    changing from state i to state j, and a diagonal that makes each row sum to zero.
    """

    def __init__(self, alphabet, constraint='ARD', rates=None, logger=None):
        """
        Initialize a rate matrix model.

        Parameters
        ----------

         alphabet : list, numpy.array
            ordered states of the character

         constraint : str
            'ER' (one rate shared by all transitions), 'SYM' (one rate per
            unordered pair of states), or 'ARD' (one rate per ordered pair)

         rates : numpy.array
            initial values of the free rates, defaults to all ones

         logger : callable
            Custom logging function that should take arguments (msg, level, warn=False),
            where msg is a string and level an integer to be compared against verbose.

        """
        self.debug=False
        self.alphabet = np.array(alphabet)
        self.n_states = len(self.alphabet)
        if self.n_states<2:
            raise ModelError("MkModel: need at least two states, got %d"%self.n_states)
        if len(set(self.alphabet.tolist()))!=self.n_states:
            raise ModelError("MkModel: states in the alphabet need to be unique")
        self.state_index = {s:i for i,s in enumerate(self.alphabet)}

        if logger is None:
            def logger_default(*args,**kwargs):
                """standard logging function if none provided"""
                if self.debug:
                    print(*args)
            self.logger = logger_default
        else:
            self.logger = logger

        self.constraint = get_constraint(constraint) if constraint!='custom' else 'custom'
        self.fixed_Q = None
        self.param_index = self._make_param_index()
        self._rates = None
        self.rates = np.ones(self.n_params) if rates is None else rates
        self.logger("MkModel: %s model with %d states and %d free rates"
                    %(self.constraint, self.n_states, self.n_params), 3)


    def _make_param_index(self):
        """
        Matrix assigning to each off-diagonal entry of Q the index of
        the free rate it takes its value from. Diagonal entries are -1.
        """
        k = self.n_states
        index = -np.ones((k,k), dtype=int)
        if self.constraint=='custom':
            return index

        count = 0
        for i in range(k):
            for j in range(k):
                if i==j:
                    continue
                if self.constraint=='ER':
                    index[i,j] = 0
                elif self.constraint=='SYM':
                    if j>i:
                        index[i,j] = count
                        index[j,i] = count
                        count += 1
                else:
                    index[i,j] = count
                    count += 1
        return index


    @property
    def n_params(self):
        """number of free rates of the model"""
        return int(self.param_index.max()+1)


    @property
    def rates(self):
        return self._rates


    @rates.setter
    def rates(self, value):
        value = np.array(value, dtype=float).flatten()
        if value.shape[0]!=self.n_params:
            raise ModelError("MkModel: %s model needs %d rates, got %d"
                             %(self.constraint, self.n_params, value.shape[0]))
        if np.any(~np.isfinite(value)) or np.any(value<0):
            raise ModelError("MkModel: rates need to be finite and non-negative")
        self._rates = value


    @property
    def Q(self):
        """
        Rate matrix, Q_ij is the rate of transitions from state i to state j.
        """
        if self.constraint=='custom':
            return np.copy(self.fixed_Q)
        Q = np.zeros((self.n_states, self.n_states))
        mask = self.param_index>=0
        Q[mask] = self.rates[self.param_index[mask]]
        np.fill_diagonal(Q, -Q.sum(axis=1))
        return Q


######################################################################
## constructor methods
######################################################################

    def __str__(self):
        '''
        String representation of the model for pretty printing
        '''
        Q = self.Q
        outstr = "Rate matrix model: %s (%d free rates)\n"%(self.constraint, self.n_params)
        outstr += "\nRates from i->j (Q_ij):\n"
        outstr += '\t'+'\t'.join(map(str, self.alphabet))+'\n'
        for a,Qi in zip(self.alphabet, Q):
            outstr += '  '+str(a)+'\t'+'\t'.join([str(np.round(p,4)) for p in Qi])+'\n'
        return outstr


    @classmethod
    def standard(cls, model, alphabet, **kwargs):
        """
        Create one of the standard rate matrix models.

        Parameters
        ----------

         model : str
            'ER', 'SYM', or 'ARD' (or one of their synonyms)

         alphabet : list
            ordered states of the character

        **Available models**

        - ER: equal rates. A single rate is shared by all transitions.

        - SYM: symmetric rates. Forward and backward transitions between two
          states share a rate, different pairs of states have different rates.

        - ARD: all rates different. Each ordered pair of states has its own rate.

        """
        return cls(alphabet, constraint=get_constraint(model), **kwargs)


    @classmethod
    def custom(cls, alphabet, Q, **kwargs):
        """
        Create a model with a fixed rate matrix. The diagonal of Q
        is ignored and reset such that rows sum to zero.

        Parameters
        ----------

         alphabet : list
            ordered states of the character

         Q : nxn matrix
            off-diagonal entries are the rates from state i to state j
        """
        Q = np.array(Q, dtype=float)
        n = len(alphabet)
        if Q.shape!=(n,n):
            raise ModelError("MkModel.custom: rate matrix of shape %s does not match alphabet of size %d"
                             %(str(Q.shape), n))
        np.fill_diagonal(Q, 0.0)
        if np.any(~np.isfinite(Q)) or np.any(Q<0):
            raise ModelError("MkModel.custom: off-diagonal rates need to be finite and non-negative")
        np.fill_diagonal(Q, -Q.sum(axis=1))
        model = cls(alphabet, constraint='custom', **kwargs)
        model.fixed_Q = Q
        return model


########################################################################
### evolution functions
########################################################################
    def expQt(self, t):
        '''
        Parameters
        ----------

         t : float
            Time to propagate

        Returns
        --------

         expQt : numpy.array
            Matrix exponential exp(Qt). Entry (i,j) is the probability to be in
            state j after time t when starting in state i.
        '''
        from scipy.linalg import expm
        return np.maximum(0, expm(self.Q*t))


    def propagate_profile(self, profile, t, return_log=False):
        """
        Compute the likelihood of the states of the parent at the start of a
        branch of length t, given the likelihood of states at its end (profile).
        """
        res = self.expQt(t).dot(profile)
        return np.log(np.maximum(res, ttconf.SUPERTINY_NUMBER)) if return_log else res


    def evolve(self, profile, t, return_log=False):
        """
        Compute the distribution of states at the end of a branch of length t,
        given the distribution of states at its start (profile).
        """
        res = profile.dot(self.expQt(t))
        return np.log(np.maximum(res, ttconf.SUPERTINY_NUMBER)) if return_log else res


    def stationary_distribution(self):
        """
        Equilibrium distribution pi of the chain satisfying pi Q = 0 and sum(pi)=1.
        For reducible chains the least squares solution is clipped and renormalized.
        """
        n = self.n_states
        A = np.vstack([self.Q.T, np.ones((1,n))])
        b = np.zeros(n+1)
        b[-1] = 1.0
        pi = np.linalg.lstsq(A, b, rcond=None)[0]
        pi = np.maximum(pi, 0)
        if pi.sum()<=0:
            self.logger("MkModel.stationary_distribution: no valid solution, using uniform", 2, warn=True)
            return np.ones(n)/n
        return pi/pi.sum()
