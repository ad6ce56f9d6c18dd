version="0.1.0"
## Here we define an error class for treetrait errors. DataError, ModelError, ConvergenceError and
## NotReadyError are all due to incorrect calling of treetrait functions or input data that does not
## fit our base assumptions. Errors marked as TreeTraitUnknownError might be due to bugs in treetrait.
class TreeTraitError(Exception):
    """
    TreeTraitError class
    Parent class for more specific errors
    Raised when treetrait is used incorrectly in contrast with `TreeTraitUnknownError`
    `TreeTraitUnknownError` is raised when the reason of the error is unknown, could indicate bug
    """
    pass

class DataError(TreeTraitError):
    """DataError class raised when tree or trait data are malformed or do not match"""
    pass

class ModelError(TreeTraitError):
    """ModelError class raised when an unsupported rate matrix model is requested"""
    pass

class ConvergenceError(TreeTraitError):
    """ConvergenceError class raised when the likelihood optimization fails to reach a finite optimum"""
    pass

class NotReadyError(TreeTraitError):
    """NotReadyError class raised when results are requested before inference"""
    pass

class TreeTraitUnknownError(Exception):
    """TreeTraitUnknownError class raised when treetrait fails during inference due to an unknown reason."""
    pass

import os, sys
recursion_limit = os.environ.get("TREETRAIT_RECURSION_LIMIT")
if recursion_limit:
    sys.setrecursionlimit(int(recursion_limit))
else:
    sys.setrecursionlimit(max(sys.getrecursionlimit(), 10000))

from .trait_tree import TraitTree
from .continuous import ContinuousAnc
from .mk_model import MkModel
from .discrete import DiscreteAnc
from .utils import aic, aicc, akaike_weights
