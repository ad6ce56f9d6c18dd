import time, sys
import numpy as np
from Bio import Phylo
from treetrait import config as ttconf
from treetrait import DataError


class TraitTree(object):
    """
    Class defines a rooted tree with named leaves and basic interface methods:
    reading trees from files, checking their consistency, and matching them
    against trait data attached to the leaves. The tree topology and branch
    lengths are left untouched once the tree has been set up.
    """

    def __init__(self, tree=None, verbose=ttconf.VERBOSE, **kwargs):
        """
        TraitTree constructor. It loads and validates the tree and sets some
        configuration parameters.

        Parameters
        ----------
        tree : str, Bio.Phylo.Tree
           Phylogenetic tree. String passed is interpreted as a filename with
           a tree in a standard format that can be parsed by the Biopython Phylo module.

        verbose : int
           Verbosity level as number from 0 (lowest) to 10 (highest).

        Raises
        ------
        TypeError
            If no tree is passed in

        DataError
            If the tree can not be loaded or violates the tree invariants
        """
        if tree is None:
            raise TypeError("TraitTree requires a tree!")
        self.t_start = time.time()
        self.verbose = verbose
        self.log_messages = set()
        self._tree = None
        self.tree = tree


    def logger(self, msg, level, warn=False, only_once=False):
        """
        Print log message *msg* to stdout.

        Parameters
        -----------

         msg : str
            String to print on the screen

         level : int
            Log-level. Only the messages with a level higher than the
            current verbose level will be shown.

         warn : bool
            Warning flag. If True, the message will be displayed
            regardless of its log-level.

        """
        if only_once and msg in self.log_messages:
            return

        self.log_messages.add(msg)

        lw=80
        if level<self.verbose or (warn and level<=self.verbose):
            from textwrap import fill
            dt = time.time() - self.t_start
            outstr = '\n' if level<2 else ''
            initial_indent = format(dt, '4.2f')+'\t' + level*'-'
            subsequent_indent = " "*len(format(dt, '4.2f')) + "\t" + " "*level
            outstr += fill(msg, width=lw, initial_indent=initial_indent, subsequent_indent=subsequent_indent)
            print(outstr, file=sys.stdout)


####################################################################
## SET-UP
####################################################################
    @property
    def leaves_lookup(self):
        """
        The :code:`{leaf-name:leaf-node}` dictionary. It enables fast
        search of a tree leaf object by its name.
        """
        return self._leaves_lookup


    @property
    def tree(self):
        """
        The phylogenetic tree the analysis operates on.

        :setter: Sets the tree. Directly if passed as Phylo.Tree, or by reading from \
        file if passed as a str.
        :getter: Returns the tree as a Phylo.Tree object
        """
        return self._tree


    @tree.setter
    def tree(self, in_tree):
        from os.path import isfile
        if isinstance(in_tree, Phylo.BaseTree.Tree):
            tmp_tree = in_tree
        elif isinstance(in_tree, str) and isfile(in_tree):
            try:
                tmp_tree = Phylo.read(in_tree, 'newick')
            except Exception:
                fmt = in_tree.split('.')[-1]
                if fmt not in ['nexus', 'nex']:
                    raise DataError('TraitTree: could not load tree, format needs to be nexus or newick! input was '+str(in_tree))
                try:
                    tmp_tree = Phylo.read(in_tree, 'nexus')
                except Exception as e:
                    raise DataError('TraitTree: could not parse nexus tree %s: %s'%(in_tree, e))
        else:
            raise DataError('TraitTree: could not load tree! input was '+str(in_tree))

        self._validate_tree(tmp_tree)
        self._tree = tmp_tree
        self.prepare_tree()
        return ttconf.SUCCESS


    def _validate_tree(self, tree):
        """
        Check that the tree is a connected rooted tree with uniquely named
        leaves and non-negative finite branch lengths. Missing branch lengths
        are interpreted as zero.
        """
        seen = set()
        stack = [tree.root]
        while stack:
            node = stack.pop()
            if id(node) in seen:
                raise DataError("TraitTree: node %s is reachable along more than one path,"
                                " input is not a tree"%str(node.name))
            seen.add(id(node))
            stack.extend(node.clades)

        leaves = tree.get_terminals()
        if len(leaves)<2:
            raise DataError("TraitTree: tree has only %d tips. Please check your tree!"%len(leaves))

        names = [leaf.name for leaf in leaves]
        if any(name is None or str(name).strip()=='' for name in names):
            raise DataError("TraitTree: all leaves of the tree need to be labeled")
        duplicates = sorted({name for name in names if names.count(name)>1})
        if duplicates:
            raise DataError("TraitTree: leaf labels need to be unique, duplicated: "+", ".join(map(str, duplicates)))

        missing = []
        for node in tree.find_clades():
            if node is tree.root:
                continue
            if node.branch_length is None:
                missing.append(node)
            elif not np.isfinite(node.branch_length) or node.branch_length<0:
                raise DataError("TraitTree: branch leading to node %s has invalid length %s"
                                %(str(node.name), str(node.branch_length)))
        for node in missing:
            node.branch_length = 0.0
        if len(missing):
            self.logger("TraitTree: %d branches without length, set to 0.0"%len(missing), 2, warn=True)


    def prepare_tree(self):
        """
        Set link to parent and calculate distance to root for all tree nodes.
        Unnamed internal nodes are assigned unique names.
        """
        self._prepare_nodes()
        self._leaves_lookup = {node.name:node for node in self.tree.get_terminals()}
        self.logger("TraitTree: tree with %d leaves and %d internal nodes"
                    %(self.n_leaves, self.n_internal), 2)


    def _prepare_nodes(self):
        """
        Set auxilliary parameters to every node of the tree.
        """
        self.tree.root.up = None
        name_set = {n.name for n in self.tree.find_clades() if n.name}
        internal_node_count = 0
        for clade in self.tree.get_nonterminals(order='preorder'): # parents first
            if clade.name is None:
                tmp = "NODE_" + format(internal_node_count, '07d')
                while tmp in name_set:
                    internal_node_count += 1
                    tmp = "NODE_" + format(internal_node_count, '07d')
                clade.name = tmp
                name_set.add(clade.name)
            internal_node_count+=1
            for c in clade.clades:
                c.up = clade

        self._calc_dist2root()


    def _calc_dist2root(self):
        """
        For each node in the tree, set its root-to-node distance as dist2root
        attribute
        """
        self.tree.root.dist2root = 0.0
        for clade in self.tree.get_nonterminals(order='preorder'): # parents first
            for c in clade.clades:
                c.dist2root = clade.dist2root + c.branch_length

####################################################################
## END SET-UP
####################################################################

    @property
    def n_leaves(self):
        return len(self.tree.get_terminals())

    @property
    def n_internal(self):
        return len(self.tree.get_nonterminals())

    def internal_nodes(self, order='preorder'):
        return self.tree.get_nonterminals(order=order)

    def total_branch_length(self):
        return sum(n.branch_length for n in self.tree.find_clades() if n.up is not None)


    def check_trait_coverage(self, traits):
        '''
        Check that every leaf of the tree has a trait value and that all
        trait values belong to leaves of the tree.

        Parameters
        ----------
         traits : dict
            dictionary linking leaf names to trait values

        Raises
        ------
        DataError
            If leaves are missing from the traits or traits name unknown leaves
        '''
        if traits is None or len(traits)==0:
            raise DataError("TraitTree: no trait values provided")

        leaf_names = set(self.leaves_lookup.keys())
        trait_names = set(traits.keys())
        unknown = sorted(map(str, trait_names - leaf_names))
        if unknown:
            raise DataError("TraitTree: trait values given for %d labels that are not leaves of the tree: %s"
                            %(len(unknown), ", ".join(unknown[:10])))
        missing = sorted(leaf_names - trait_names)
        if missing:
            raise DataError("TraitTree: %d leaves have no trait value: %s"
                            %(len(missing), ", ".join(missing[:10])))
        return ttconf.SUCCESS
