"""Models package."""

from .calibration import Calibration
from .experiment import Experiment
from .analytics_summary import AnalyticsSummary
from .audit_log import AuditLog
from .system_metric import SystemMetric
