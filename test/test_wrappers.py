from io import StringIO
import numpy as np
import pytest
from Bio import Phylo


def make_tree(nwk):
    return Phylo.read(StringIO(nwk), 'newick')


quartet = "((a:1,b:1):1,(c:1,d:1):1);"


def write_file(path, content):
    with open(path, 'w') as fh:
        fh.write(content)
    return str(path)


def test_read_trait_table(tmp_path):
    from treetrait.io import read_trait_table
    fname = write_file(tmp_path/"meta.csv", "strain,host,size\na,A,1.0\nb,A,2.0\nc,B,3.5\nd,,4.0\n")
    table, name_col = read_trait_table(fname)
    assert name_col=='strain'
    assert list(table.index)==['a', 'b', 'c', 'd']

    fname = write_file(tmp_path/"meta.tsv", "taxon\thost\na\tA\nb\tB\n")
    table, name_col = read_trait_table(fname)
    assert name_col=='taxon'
    assert table.loc['b', 'host']=='B'

    table, name_col = read_trait_table(fname, name_column='taxon')
    assert name_col=='taxon'


def test_read_trait_table_errors(tmp_path):
    from treetrait import DataError
    from treetrait.io import read_trait_table
    with pytest.raises(DataError):
        read_trait_table(str(tmp_path/"does_not_exist.csv"))
    fname = write_file(tmp_path/"meta.csv", "name,host\na,A\na,B\n")
    with pytest.raises(DataError):
        read_trait_table(fname)
    with pytest.raises(DataError):
        read_trait_table(fname, name_column='accession')


def test_traits_from_table(tmp_path):
    from treetrait import DataError
    from treetrait.io import read_trait_table, traits_from_table
    fname = write_file(tmp_path/"meta.csv", "name,host,size\na,A,1.0\nb,A,2.0\nc,B,3.5\nx,B,4.0\nd,,x\n")
    table, name_col = read_trait_table(fname)

    traits = traits_from_table(table, 'host', leaves=['a', 'b', 'c', 'd', 'e'])
    assert traits=={'a':'A', 'b':'A', 'c':'B', 'd':'?', 'e':'?'}

    sizes = traits_from_table(table.loc[['a', 'b', 'c']], 'size', numeric=True)
    assert sizes=={'a':1.0, 'b':2.0, 'c':3.5}
    with pytest.raises(DataError):
        traits_from_table(table, 'size', numeric=True)
    with pytest.raises(DataError):
        traits_from_table(table, 'country')


def test_reconstruct_continuous_trait():
    from treetrait.wrappers import reconstruct_continuous_trait
    anc = reconstruct_continuous_trait(make_tree("(A:1.0,B:1.0);"), {'A':2.0, 'B':4.0})
    assert np.isclose(anc.root_value, 3.0)
    assert np.isclose(anc.sigma2, 1.0)
    anc = reconstruct_continuous_trait(make_tree("(A:1.0,B:1.0);"), {'A':2.0, 'B':4.0}, reml=True)
    assert np.isclose(anc.sigma2, 2.0)


def test_reconstruct_discrete_trait(tmp_path):
    from treetrait.wrappers import reconstruct_discrete_trait
    from treetrait.io import write_annotated_tree, write_state_table
    traits = {'a':'A', 'b':'A', 'c':'B', 'd':'B'}
    anc = reconstruct_discrete_trait(make_tree(quartet), traits, model='ER')
    assert anc.fit_result['model']=='ER'
    assert anc.leaves_lookup['a'].up.state=='A'

    tree_fname = str(tmp_path/"annotated_tree.nexus")
    write_annotated_tree(anc.tree, tree_fname, {'host':'state'})
    with open(tree_fname) as fh:
        content = fh.read()
    assert 'host="A"' in content
    assert 'host="B"' in content
    assert len(list(Phylo.read(tree_fname, 'nexus').get_terminals()))==4

    table_fname = str(tmp_path/"states.csv")
    write_state_table(anc.get_state_table(), table_fname)
    with open(table_fname) as fh:
        header = fh.readline().strip()
    assert header=='node,A,B,state'

    anc = reconstruct_discrete_trait(make_tree(quartet), traits, model='ER', marginal=False)
    assert anc.reconstruction=='joint'


def test_annotated_tree_keeps_support(tmp_path):
    from treetrait.wrappers import reconstruct_discrete_trait
    from treetrait.io import write_annotated_tree
    traits = {'a':'A', 'b':'A', 'c':'B', 'd':'B'}
    anc = reconstruct_discrete_trait(make_tree("((a:1,b:1)0.95:1,(c:1,d:1)0.80:1);"), traits, model='ER')
    left, right = anc.tree.root.clades
    assert np.isclose(left.confidence, 0.95) and np.isclose(right.confidence, 0.80)
    comments = [n.comment for n in anc.tree.find_clades()]

    tree_fname = str(tmp_path/"annotated_tree.nexus")
    write_annotated_tree(anc.tree, tree_fname, {'host':'state'})
    with open(tree_fname) as fh:
        content = fh.read()
    assert 'support=0.95' in content
    assert 'support=0.8' in content
    assert 'host="A"' in content

    # the tree passed in is left untouched and can be written again
    assert np.isclose(left.confidence, 0.95) and np.isclose(right.confidence, 0.80)
    assert [n.comment for n in anc.tree.find_clades()]==comments
    write_annotated_tree(anc.tree, tree_fname, {'host':'state'})
    with open(tree_fname) as fh:
        assert 'support=0.95' in fh.read()


def test_compare_discrete_models():
    from treetrait.wrappers import compare_discrete_models
    tree = make_tree("(((a:0.3,b:0.5):0.2,(c:0.1,d:0.4,e:0.3):0.6):0.1,((f:0.2,g:0.3):0.4,h:1.0):0.3);")
    traits = dict(zip('abcdefgh', ['x', 'x', 'y', 'x', 'y', 'y', 'y', 'x']))
    table, fits = compare_discrete_models(tree, traits, models=['ER', 'ARD'])
    assert sorted(table.index)==['ARD', 'ER']
    assert np.isclose(table['weight'].sum(), 1.0)
    assert np.all(np.diff(table['aicc'].values)>=0)
    assert table['delta_aicc'].iloc[0]==0
    assert table.loc['ER', 'k']==1 and table.loc['ARD', 'k']==2
    assert fits['ER'].tree is not tree
    # the input tree is left untouched
    assert tree.root.name is None


def test_compare_model_instances():
    from treetrait import MkModel
    from treetrait.wrappers import compare_discrete_models
    traits = {'a':'x', 'b':'x', 'c':'y', 'd':'x'}
    Q = np.array([[0.0, 0.5],
                  [0.2, 0.0]])
    fixed = MkModel.custom(['x', 'y'], Q)
    table, fits = compare_discrete_models(make_tree(quartet), traits,
                                          models=[fixed, 'ER', MkModel.standard('ER', alphabet=['x', 'y'])])
    assert sorted(table.index)==['ER', 'ER_2', 'custom']
    assert table.loc['custom', 'k']==0
    assert table.loc['ER', 'k']==1
    assert fits['custom'].model is fixed
    assert np.isclose(table.loc['ER', 'log_lh'], table.loc['ER_2', 'log_lh'])
