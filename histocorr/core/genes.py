import logging
import pandas as pd

from histocorr.core.exceptions import GeneNameNotFound

logger = logging.getLogger('histocorr.core.genes')

class GeneLookup:
    """
    Bidirectional mapping between gene identifiers and gene names

    Several identifiers may share a name (e.g. Ensembl ids of paralogous
    loci that resolve to the same symbol), so names resolve back to a
    list of identifiers.

    Example
    -------
    >>> lookup = GeneLookup({'ENSG00000141510': 'TP53'})
    >>> lookup.name_of('ENSG00000141510')
    'TP53'
    >>> lookup.ids_for('TP53')
    ['ENSG00000141510']
    """

    def __init__(self, mapping):
        self._names = {}
        self._ids = {}
        for identifier, name in dict(mapping).items():
            if name is None or pd.isna(name) or str(name).strip() == '':
                continue
            name = str(name)
            self._names[identifier] = name
            self._ids.setdefault(name, []).append(identifier)

    @classmethod
    def from_frame(cls, frame, id_column, name_column):
        """Build a lookup from two columns of a table"""
        for column in (id_column, name_column):
            if column not in frame.columns:
                raise ValueError(f"Column {column} not found in gene table")
        return cls(zip(frame[id_column], frame[name_column]))

    @classmethod
    def from_anndata(cls, adata, id_key='gene_ids'):
        """
        Build a lookup from an AnnData object read from 10x output

        10x readers store gene symbols as ``var_names`` and Ensembl
        identifiers in ``var[id_key]``.
        """
        if id_key not in adata.var:
            raise ValueError(f"Gene id key {id_key} not found in adata.var")
        return cls(zip(adata.var[id_key], adata.var_names))

    def __len__(self):
        return len(self._names)

    def __contains__(self, identifier):
        return identifier in self._names

    def name_of(self, identifier):
        try:
            return self._names[identifier]
        except KeyError:
            raise GeneNameNotFound([identifier]) from None

    def names_for(self, identifiers):
        """Translate identifiers to names, failing on every miss at once"""
        identifiers = list(identifiers)
        missing = [identifier for identifier in identifiers if identifier not in self._names]
        if missing:
            logger.error(f"{len(missing)} gene identifiers have no name")
            raise GeneNameNotFound(missing)
        return [self._names[identifier] for identifier in identifiers]

    def ids_for(self, name):
        try:
            return list(self._ids[name])
        except KeyError:
            raise GeneNameNotFound([name]) from None

    def identifiers_for(self, names):
        """Translate names back to the unique identifiers they cover, in order"""
        names = list(names)
        missing = [name for name in names if name not in self._ids]
        if missing:
            raise GeneNameNotFound(missing)
        identifiers = []
        for name in dict.fromkeys(names):
            identifiers.extend(self._ids[name])
        return identifiers
