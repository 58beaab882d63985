from datetime import datetime, timedelta
from typing import Tuple

import pytz
from aiohttp import web

from ..errors import InvalidRequest
from ..models.payout import PayoutReport
from ..services.report_service import ReportService
from .base_handler import BaseHandler

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

class ReportHandler(BaseHandler):
    """Vendor payout reports and admin analytics"""

    def __init__(self, report_service: ReportService):
        super().__init__(report_service.store)
        self.report_service = report_service

    def _window(self, request: web.Request) -> Tuple[datetime, datetime]:
        """``start``/``end`` query values; defaults to the last 7 days"""
        end = self.parse_datetime(request.query.get("end"), "end") or datetime.now(pytz.utc)
        start = self.parse_datetime(request.query.get("start"), "start") or end - timedelta(days=7)
        if start >= end:
            raise InvalidRequest("start must be before end")
        return start, end

    async def _report(self, request: web.Request, vendor_id: str) -> PayoutReport:
        period = request.query.get("period")
        if period == "daily":
            return await self.report_service.daily_report(vendor_id)
        if period == "weekly":
            return await self.report_service.weekly_report(vendor_id)
        if period == "monthly":
            return await self.report_service.monthly_report(vendor_id)
        if period:
            raise InvalidRequest("period must be daily, weekly or monthly")
        start, end = self._window(request)
        return await self.report_service.aggregate(vendor_id, start, end)

    async def vendor_payouts(self, request: web.Request) -> web.Response:
        vendor = await self.require_vendor_access(request, request.match_info["vendor_id"])
        report = await self._report(request, vendor.vendor_id)
        data = report.model_dump(mode="json")
        data["has_anomaly"] = report.has_anomaly
        return self.ok({"report": data})

    async def export_payouts(self, request: web.Request) -> web.Response:
        vendor = await self.require_vendor_access(request, request.match_info["vendor_id"])
        start, end = self._window(request)
        content = await self.report_service.export_excel(vendor.vendor_id, start, end)
        filename = f"payouts-{vendor.vendor_id}-{start:%Y%m%d}-{end:%Y%m%d}.xlsx"
        return web.Response(
            body=content,
            content_type=XLSX_CONTENT_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    async def platform_analytics(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        start, end = self._window(request)
        analytics = await self.report_service.platform_analytics(start, end)
        return self.ok({"analytics": analytics.model_dump(mode="json")})
