import os
from copy import deepcopy
import numpy as np
import pandas as pd
from Bio import Phylo
from treetrait import DataError
from treetrait import config as ttconf


def read_trait_table(fname, name_column=None):
    """
    Read a csv or tsv file with one row per taxon.

    Parameters
    ----------
    fname : str
        file name, tab separated if the name ends with 'tsv'
    name_column : str, optional
        column holding the taxon names. If not given, the first of 'name',
        'strain', 'accession' present in the table is used, otherwise the first column.

    Returns
    -------
    tuple
        pandas.DataFrame indexed by taxon name and the name of the name column
    """
    if not os.path.isfile(fname):
        raise DataError("read_trait_table: file %s does not exist"%fname)
    states = pd.read_csv(fname, sep='\t' if fname[-3:]=='tsv' else ',',
                         skipinitialspace=True)

    if name_column:
        if name_column in states.columns:
            taxon_name = name_column
        else:
            raise DataError("read_trait_table: specified column '%s' for taxon name not found in file with columns: %s"
                            %(name_column, ", ".join(map(str, states.columns))))
    elif 'name' in states.columns: taxon_name = 'name'
    elif 'strain' in states.columns: taxon_name = 'strain'
    elif 'accession' in states.columns: taxon_name = 'accession'
    else:
        taxon_name = states.columns[0]

    states[taxon_name] = states[taxon_name].astype(str)
    if states[taxon_name].duplicated().any():
        dups = states.loc[states[taxon_name].duplicated(), taxon_name].unique()
        raise DataError("read_trait_table: taxon names are duplicated: "+", ".join(dups[:10]))
    return states.set_index(taxon_name), taxon_name


def traits_from_table(states, attribute, leaves=None, missing_data=ttconf.MISSING_DATA, numeric=False, logger=None):
    """
    Extract a dictionary {taxon: value} for one column of a trait table.

    Parameters
    ----------
    states : pandas.DataFrame
        table indexed by taxon name, as returned by :py:func:`read_trait_table`
    attribute : str
        column to extract
    leaves : iterable, optional
        names of the leaves of the tree. Rows that are not leaves are dropped,
        leaves absent from the table are assigned *missing_data* (discrete traits only).
    missing_data : str
        marker of unknown states. Empty cells are mapped to it.
    numeric : bool
        convert values to float. Rows with missing values are not allowed.

    Returns
    -------
    dict
        taxon name -> value
    """
    if attribute not in states.columns:
        raise DataError("traits_from_table: attribute '%s' not found. Available columns are: %s"
                        %(attribute, ", ".join(map(str, states.columns))))

    column = states[attribute]
    if leaves is not None:
        leaves = list(leaves)
        leaf_set = set(leaves)
        is_leaf = [x in leaf_set for x in column.index]
        if not all(is_leaf) and logger is not None:
            logger("traits_from_table: %d taxa in the table are not leaves of the tree and are ignored"
                   %(len(is_leaf)-sum(is_leaf)), 1, warn=True)
        column = column[is_leaf]

    if numeric:
        try:
            values = pd.to_numeric(column)
        except (TypeError, ValueError) as e:
            raise DataError("traits_from_table: attribute '%s' is not numeric: %s"%(attribute, str(e)))
        if values.isna().any():
            raise DataError("traits_from_table: attribute '%s' has missing values for %s"
                            %(attribute, ", ".join(values.index[values.isna()][:10])))
        return {k:float(v) for k,v in values.items()}

    traits = {k:(missing_data if pd.isna(v) or str(v).strip()=='' else str(v)) for k,v in column.items()}
    if leaves is not None:
        missing = [x for x in leaves if x not in traits]
        if len(missing) and logger is not None:
            logger("traits_from_table: %d leaves have no entry and are treated as missing data"%len(missing),
                   1, warn=True)
        for x in missing:
            traits[x] = missing_data
    return traits


def write_annotated_tree(tree, fname, attributes, fmt='nexus'):
    """
    Write a tree with node annotations as nexus comments of the
    form [&attr="value"] understood by common tree viewers.

    Parameters
    ----------
    tree : Bio.Phylo.Tree
        reconstructed tree
    fname : str
        output file name
    attributes : dict
        annotation name -> node attribute. Nodes lacking the attribute are not annotated.

    Notes
    -----
    The tree is written from a copy, support values are kept as `support` annotations.
    """
    tree = deepcopy(tree)
    for n in tree.find_clades():
        annotations = []
        if n.confidence is not None:
            annotations.append('support=%1.6g'%float(n.confidence))
        n.confidence=None
        for label, attr in attributes.items():
            if hasattr(n, attr):
                val = getattr(n, attr)
                if isinstance(val, (float, np.floating)):
                    annotations.append('%s=%1.6g'%(label, val))
                else:
                    annotations.append('%s="%s"'%(label, str(val)))
        n.comment = '&'+','.join(annotations) if len(annotations) else None

    Phylo.write(tree, fname, fmt)
    return ttconf.SUCCESS


def write_state_table(table, fname):
    """Save a table of reconstructed states (pandas.DataFrame) as csv or tsv."""
    table.to_csv(fname, sep='\t' if fname[-3:]=='tsv' else ',')
    return ttconf.SUCCESS
