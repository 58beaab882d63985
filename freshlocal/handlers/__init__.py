"""HTTP handlers"""
from .base_handler import BaseHandler, error_middleware
from .order_handlers import OrderHandler
from .payment_handlers import PaymentHandler
from .realtime_handlers import RealtimeHandler
from .report_handlers import ReportHandler

__all__ = [
    'BaseHandler',
    'OrderHandler',
    'PaymentHandler',
    'RealtimeHandler',
    'ReportHandler',
    'error_middleware',
]
