from io import StringIO
import numpy as np
import pytest
from Bio import Phylo


def make_tree(nwk):
    return Phylo.read(StringIO(nwk), 'newick')

# Tests
def test_import_short():
    print("testing short imports")
    from treetrait import TraitTree
    from treetrait import ContinuousAnc
    from treetrait import DiscreteAnc
    from treetrait import MkModel
    from treetrait import utils


def test_prepare_tree():
    from treetrait import TraitTree
    tt = TraitTree(tree=make_tree("((A:1,B:1):1,C:2.5);"), verbose=0)
    assert tt.n_leaves==3
    assert tt.n_internal==2
    assert tt.tree.root.name=="NODE_0000000"
    assert tt.tree.root.clades[0].name=="NODE_0000001"
    assert tt.leaves_lookup['A'].up is tt.tree.root.clades[0]
    assert tt.tree.root.up is None
    assert [n.name for n in tt.internal_nodes()]==['NODE_0000000', 'NODE_0000001']
    assert np.isclose(tt.leaves_lookup['A'].dist2root, 2.0)
    assert np.isclose(tt.leaves_lookup['C'].dist2root, 2.5)
    assert np.isclose(tt.total_branch_length(), 5.5)


def test_named_internal_nodes_are_kept():
    from treetrait import TraitTree
    tt = TraitTree(tree=make_tree("((A:1,B:1)NODE_0000001:1,C:2);"), verbose=0)
    names = [n.name for n in tt.tree.find_clades()]
    assert len(set(names))==len(names)
    assert tt.tree.root.clades[0].name=="NODE_0000001"


def test_missing_branch_length():
    from treetrait import TraitTree
    tt = TraitTree(tree=make_tree("((A,B):1,C:2);"), verbose=0)
    assert tt.leaves_lookup['A'].branch_length==0.0
    assert tt.leaves_lookup['B'].dist2root==1.0


def test_tree_errors():
    from treetrait import TraitTree, DataError
    with pytest.raises(TypeError):
        TraitTree(verbose=0)
    with pytest.raises(DataError):
        TraitTree(tree=make_tree("((A:1,B:-1):1,C:2);"), verbose=0)
    with pytest.raises(DataError):
        TraitTree(tree=make_tree("((A:1,B:1):1,A:2);"), verbose=0)
    with pytest.raises(DataError):
        TraitTree(tree=make_tree("(A:1);"), verbose=0)
    with pytest.raises(DataError):
        TraitTree(tree="this_file_does_not_exist.nwk", verbose=0)


def test_rejected_tree_is_left_unchanged():
    from treetrait import TraitTree, DataError
    bad = make_tree("((A,B:-1):1,C:2);")
    with pytest.raises(DataError):
        TraitTree(tree=bad, verbose=0)
    assert bad.find_any(name='A').branch_length is None

    tt = TraitTree(tree=make_tree("((A:1,B:1):1,C:2);"), verbose=0)
    old_tree = tt.tree
    with pytest.raises(DataError):
        tt.tree = bad
    assert tt.tree is old_tree
    assert bad.find_any(name='A').branch_length is None


def test_tree_from_file(tmp_path):
    from treetrait import TraitTree
    fname = str(tmp_path/"tree.nwk")
    with open(fname, 'w') as fh:
        fh.write("((A:1,B:1):1,(C:1,D:1):1);\n")
    tt = TraitTree(tree=fname, verbose=0)
    assert sorted(tt.leaves_lookup.keys())==['A', 'B', 'C', 'D']


def test_trait_coverage():
    from treetrait import TraitTree, DataError
    tt = TraitTree(tree=make_tree("((A:1,B:1):1,C:2);"), verbose=0)
    assert tt.check_trait_coverage({'A':1, 'B':2, 'C':3})=="success"
    with pytest.raises(DataError):
        tt.check_trait_coverage({'A':1, 'B':2})
    with pytest.raises(DataError):
        tt.check_trait_coverage({'A':1, 'B':2, 'C':3, 'X':4})
    with pytest.raises(DataError):
        tt.check_trait_coverage({})


def test_information_criteria():
    from treetrait.utils import aic, aicc, akaike_weights
    assert aic(-10.0, 2)==24.0
    assert np.isclose(aicc(-10.0, 2, 10), 24.0 + 12.0/7)
    assert aicc(-10.0, 3, 4)==np.inf

    # for fixed likelihood and sample size, AICc does not decrease with more parameters
    n = 20
    values = [aicc(-15.3, k, n) for k in range(0, n+2)]
    assert all(b>=a for a,b in zip(values[:-1], values[1:]))
    assert values[-1]==np.inf

    w = akaike_weights([10.0, 12.0, np.inf])
    assert np.isclose(w.sum(), 1.0)
    assert w[2]==0
    assert np.isclose(w[0]/w[1], np.exp(1.0))


def test_normalize_profile():
    from treetrait.utils import normalize_profile
    prof, offset = normalize_profile(np.log(np.array([1.0, 3.0])), log=True)
    assert np.allclose(prof, [0.25, 0.75])
    assert np.isclose(offset, np.log(4.0))
    prof, offset = normalize_profile(np.array([0.0, 0.0]))
    assert np.all(prof==0) and offset==-np.inf
