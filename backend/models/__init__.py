from models.app_config import AppConfig
from models.audit_log import AuditLog
from models.companies import Company
from models.parts import Part
from models.part_items import PartItem, PartItemStatus, PartItemCondition
from models.stock_transactions import StockTransaction
from models.quotations import Quotation, QuotationStatus
from models.quotation_items import QuotationItem
from models.invoices import Invoice
from models.invoice_items import InvoiceItem

__all__ = ['AppConfig', 'AuditLog', 'Company', 'Invoice', 'InvoiceItem', 'Part', 'PartItem', 'PartItemCondition', 'PartItemStatus', 'Quotation', 'QuotationItem', 'QuotationStatus', 'StockTransaction',]
