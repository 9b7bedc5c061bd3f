from .series import DocumentSeries, SeriesUserAccess, SeriesSequence
from .registers import CashRegister
from .documents import FiscalDocument, FiscalDocumentLine, FROZEN_COLUMNS
from .postings import CashRegisterPosting, StockPosting, ClientAccountPosting

__all__ = [
    'DocumentSeries', 'SeriesUserAccess', 'SeriesSequence',
    'CashRegister',
    'FiscalDocument', 'FiscalDocumentLine', 'FROZEN_COLUMNS',
    'CashRegisterPosting', 'StockPosting', 'ClientAccountPosting',
]
