# Overview: Closed vocabularies for fiscal documents (types, statuses, payment methods).

from __future__ import annotations

from enum import Enum

from .errors import InvalidDocumentType, ValidationFailure


class DocumentType(str, Enum):
    INVOICE = "FT"
    INVOICE_RECEIPT = "FR"
    SIMPLIFIED_INVOICE = "FS"
    CASH_SALE = "VD"
    RECEIPT = "RC"
    CREDIT_NOTE = "NC"
    DEBIT_NOTE = "ND"
    PROFORMA = "PP"
    QUOTE = "OR"
    DELIVERY_GUIDE = "GE"
    CONSIGNMENT_GUIDE = "GR"
    TRANSPORT_GUIDE = "GT"
    PURCHASE_ORDER = "NE"


class DocumentFlow(str, Enum):
    SALES = "SALES"
    PURCHASES = "PURCHASES"


class DocumentStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class SeriesKind(str, Enum):
    NORMAL = "NORMAL"
    MANUAL = "MANUAL"
    POS = "POS"


class IntegrationStatus(str, Enum):
    EMITTED = "EMITTED"
    VALIDATED = "VALIDATED"


class EffectsStatus(str, Enum):
    NONE = "NONE"        # nothing to post (draft, or no postable effects)
    PENDING = "PENDING"
    POSTED = "POSTED"
    FAILED = "FAILED"
    REVERSED = "REVERSED"  # postings undone by opposite rows (receipt and purchase annulment)


class PaymentMethod(str, Enum):
    CASH = "CASH"
    MULTICAIXA = "MULTICAIXA"
    TRANSFER = "TRANSFER"
    CHECK = "CHECK"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    MCX_EXPRESS = "MCX_EXPRESS"
    OTHERS = "OTHERS"
    CREDIT_ACCOUNT = "CREDIT_ACCOUNT"


class ItemType(str, Enum):
    PRODUCT = "PRODUCT"
    SERVICE = "SERVICE"


class Action(str, Enum):
    CERTIFY = "CERTIFY"
    LIQUIDATE = "LIQUIDATE"
    CANCEL = "CANCEL"


# Printed prefix per type; the allocator refuses types missing from here.
DOCUMENT_PREFIXES = {
    DocumentType.INVOICE: "FT",
    DocumentType.INVOICE_RECEIPT: "FR",
    DocumentType.SIMPLIFIED_INVOICE: "FS",
    DocumentType.CASH_SALE: "VD",
    DocumentType.RECEIPT: "RC",
    DocumentType.CREDIT_NOTE: "NC",
    DocumentType.DEBIT_NOTE: "ND",
    DocumentType.PROFORMA: "PP",
    DocumentType.QUOTE: "OR",
    DocumentType.DELIVERY_GUIDE: "GE",
    DocumentType.CONSIGNMENT_GUIDE: "GR",
    DocumentType.TRANSPORT_GUIDE: "GT",
    DocumentType.PURCHASE_ORDER: "NE",
}

# Supplier documents keep the supplier's own number.
PURCHASE_TYPES = frozenset({
    DocumentType.INVOICE,
    DocumentType.INVOICE_RECEIPT,
    DocumentType.CASH_SALE,
    DocumentType.CREDIT_NOTE,
    DocumentType.DEBIT_NOTE,
    DocumentType.RECEIPT,
})

# Settled on issue: paid_cents == total_cents once certified.
PAID_ON_ISSUE_TYPES = frozenset({
    DocumentType.INVOICE_RECEIPT,
    DocumentType.SIMPLIFIED_INVOICE,
    DocumentType.CASH_SALE,
})

# Corrective and receipt documents are born settled.
SETTLED_TYPES = PAID_ON_ISSUE_TYPES | {
    DocumentType.RECEIPT,
    DocumentType.CREDIT_NOTE,
    DocumentType.DEBIT_NOTE,
}

# No fiscal effect: cancelling them never issues a corrective document.
NON_FISCAL_TYPES = frozenset({
    DocumentType.PROFORMA,
    DocumentType.QUOTE,
    DocumentType.PURCHASE_ORDER,
})

# Sales types that move goods out of (or, for NC, back into) the warehouse.
STOCK_EXIT_TYPES = frozenset({
    DocumentType.INVOICE,
    DocumentType.INVOICE_RECEIPT,
    DocumentType.SIMPLIFIED_INVOICE,
    DocumentType.CASH_SALE,
    DocumentType.DELIVERY_GUIDE,
    DocumentType.DEBIT_NOTE,
})
STOCK_ENTRY_TYPES = frozenset({DocumentType.CREDIT_NOTE})


def parse_document_type(value) -> DocumentType:
    if isinstance(value, DocumentType):
        return value
    try:
        return DocumentType(str(value).strip().upper())
    except ValueError:
        raise InvalidDocumentType(
            f"Unknown document type: {value}",
            details={"document_type": value, "allowed": [t.value for t in DocumentType]},
        )


def parse_payment_method(value) -> PaymentMethod | None:
    if value is None or value == "":
        return None
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value).strip().upper())
    except ValueError:
        raise ValidationFailure(
            f"Unknown payment method: {value}",
            details={"payment_method": value, "allowed": [m.value for m in PaymentMethod]},
        )


def parse_flow(value) -> DocumentFlow:
    if value is None:
        return DocumentFlow.SALES
    try:
        return DocumentFlow(str(value).strip().upper())
    except ValueError:
        raise ValidationFailure(f"Unknown document flow: {value}")


def document_prefix(document_type) -> str:
    document_type = parse_document_type(document_type)
    prefix = DOCUMENT_PREFIXES.get(document_type)
    if not prefix:
        raise InvalidDocumentType(
            f"Document type {document_type.value} has no configured prefix",
            details={"document_type": document_type.value},
        )
    return prefix


def corrective_type_for(document_type) -> DocumentType:
    """Credit note for a sale; debit note when the source is itself a credit note."""
    document_type = parse_document_type(document_type)
    if document_type == DocumentType.CREDIT_NOTE:
        return DocumentType.DEBIT_NOTE
    return DocumentType.CREDIT_NOTE
