# Application Stats Package
from .metrics_calculator import CardMetrics, MetricsCalculator
from .service import RetentionReport, StatsService

__all__ = ["MetricsCalculator", "CardMetrics", "StatsService", "RetentionReport"]
