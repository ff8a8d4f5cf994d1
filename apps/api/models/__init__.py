"""Models package."""

from .monitored_keyword import MonitoredKeyword
from .run_lock import RunLockRecord
from .scheduled_report import ScheduledReport
from .system_setting import SystemSetting
