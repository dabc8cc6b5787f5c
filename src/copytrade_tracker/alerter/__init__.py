"""Alerter module - Formatting and Slack delivery of alerts.

Only the leaf modules are re-exported here. `dispatcher` and `profit_report`
depend on the storage layer, which itself imports `alerter.models`; import
them from their own modules.
"""

from copytrade_tracker.alerter.formatter import AlertFormatter
from copytrade_tracker.alerter.models import Alert, AlertKind, FormattedAlert, WalletStats
from copytrade_tracker.alerter.slack import SlackNotifier

__all__ = [
    "Alert",
    "AlertFormatter",
    "AlertKind",
    "FormattedAlert",
    "SlackNotifier",
    "WalletStats",
]
