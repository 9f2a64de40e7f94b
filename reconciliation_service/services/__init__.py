"""
Services package
"""
from reconciliation_service.services.order_service import OrderService
from reconciliation_service.services.payment_client import MercadoPagoClient
from reconciliation_service.services.reconciliation_engine import ReconciliationEngine

__all__ = ["OrderService", "MercadoPagoClient", "ReconciliationEngine"]
