"""Reporting for purchase plans."""

from .report import build_report_frame, render_plan, render_prices

__all__ = ["build_report_frame", "render_plan", "render_prices"]
