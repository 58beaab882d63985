from datetime import datetime
from typing import List
from pydantic import BaseModel

class TopSeller(BaseModel):
    meal_id: str
    meal_name: str
    quantity: int
    revenue: int

class PeakHour(BaseModel):
    hour: int  # 0-23 in the reporting timezone
    orders: int

class PayoutReport(BaseModel):
    """Vendor earnings for a window; recomputed on every request, never stored"""
    vendor_id: str
    window_start: datetime
    window_end: datetime
    order_count: int = 0
    gross_sales: int = 0
    platform_commission: int = 0
    processor_fees: int = 0
    net_payout: int = 0
    top_sellers: List[TopSeller] = []
    peak_hours: List[PeakHour] = []
    distinct_customers: int = 0
    repeat_customers: int = 0
    repeat_customer_rate: float = 0.0

    @property
    def has_anomaly(self) -> bool:
        return self.net_payout < 0

class VendorRevenue(BaseModel):
    vendor_id: str
    business_name: str
    revenue: int

class MealPopularity(BaseModel):
    meal_id: str
    meal_name: str
    order_count: int

class PlatformAnalytics(BaseModel):
    """Platform-wide figures for the admin panel"""
    window_start: datetime
    window_end: datetime
    total_orders: int = 0
    gross_sales: int = 0
    platform_commission: int = 0
    service_fees: int = 0
    top_vendors: List[VendorRevenue] = []
    top_meals: List[MealPopularity] = []
