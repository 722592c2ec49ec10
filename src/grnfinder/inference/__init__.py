"""
Per-gene regulatory model inference.
"""

from grnfinder.inference.association import (
    RegionGeneAssociation,
    NearestGeneAssociation,
    WindowAssociation,
    RegulatoryDomainAssociation,
    AssociationMethod,
    get_association,
)
from grnfinder.inference.regression import GeneModel, fit_gene, multiple_testing_correction
from grnfinder.inference.fitter import FitResult, ModelFitter

__all__ = [
    'RegionGeneAssociation',
    'NearestGeneAssociation',
    'WindowAssociation',
    'RegulatoryDomainAssociation',
    'AssociationMethod',
    'get_association',
    'GeneModel',
    'fit_gene',
    'multiple_testing_correction',
    'FitResult',
    'ModelFitter',
]
