from .headoffice import Branch
from .branch import BranchModel, Product, Customer, Sale, SaleLineItem, SequenceCounter, BranchSetting

__all__ = [
    'Branch',
    'BranchModel',
    'Product', 'Customer',
    'Sale', 'SaleLineItem',
    'SequenceCounter', 'BranchSetting',
]
