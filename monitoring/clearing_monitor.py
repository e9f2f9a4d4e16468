"""
clearing_monitor.py
--------------------
Health monitoring for bill clearing runs.

Three monitoring dimensions:
    1. Record errors: what share of the run was rejected or failed to commit?
    2. Match coverage: how many transactions cleared a bill? A run with
       overdue bills and no matches at all usually means a merchant alias is
       missing.
    3. Overdue bills: how many unpaid bills are past due, and how far
       (p90 of days overdue)?

All thresholds come from config.yaml.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from config.config_loader import get_monitoring_config
from core.models import Bill
from core.recurrence import parse_date

logger = logging.getLogger(__name__)


@dataclass
class MonitorAlert:
    """A single clearing health alert."""
    alert_type: str                  # "ERROR_RATIO" | "UNMATCHED_RATIO" | "NO_MATCHES" | "OVERDUE_BILLS"
    severity: str                    # "INFO" | "WARNING" | "CRITICAL"
    metric_name: str
    metric_value: float
    threshold: float
    message: str
    detected_at: str = ""            # ISO timestamp


@dataclass
class MonitorReport:
    """Full monitoring report: one per clearing run."""
    run_timestamp: str
    alerts: List[MonitorAlert] = field(default_factory=list)
    summary: dict = field(default_factory=dict)


class ClearingMonitor:
    """
    Inspects clearing output and the remaining unpaid bills.

    Usage:
        monitor = ClearingMonitor()
        report = monitor.run(results_df, unpaid_bills, as_of="2024-02-01")
    """

    def __init__(self):
        self.config = get_monitoring_config()
        self.min_transactions = int(self.config["min_transactions"])
        self.unmatched_ratio_info = float(self.config["unmatched_ratio_info"])
        self.error_ratio_warning = float(self.config["error_ratio_warning"])
        self.error_ratio_critical = float(self.config["error_ratio_critical"])
        self.overdue_days_warning = int(self.config["overdue_days_warning"])
        self.overdue_days_critical = int(self.config["overdue_days_critical"])

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(
        self,
        results_df: pd.DataFrame,
        unpaid_bills: Optional[Iterable] = None,
        as_of=None,
    ) -> MonitorReport:
        """
        Run the full monitoring suite.

        Args:
            results_df: Output of BillClearingPipeline.run(). Needs columns
                transaction_id, bill_id and error.
            unpaid_bills: Bills (or records) still unpaid after the run.
            as_of: Reference date for overdue computation. Defaults to today.

        Returns:
            MonitorReport with all alerts and summary metrics.
        """
        now = pd.Timestamp.now()
        reference = parse_date(as_of) or date.today()
        bills = [Bill.from_record(b) for b in (unpaid_bills or [])]
        bills = [b for b in bills if not b.is_paid]

        alerts: List[MonitorAlert] = []

        # --- 1. Record errors ---
        alerts.extend(self._check_error_ratio(results_df, now))

        # --- 2. Match coverage ---
        overdue_days = self._overdue_days(bills, reference)
        alerts.extend(self._check_match_coverage(results_df, overdue_days, now))

        # --- 3. Overdue bills ---
        alerts.extend(self._check_overdue_bills(overdue_days, now))

        matched = int(results_df["bill_id"].notna().sum()) if "bill_id" in results_df.columns else 0
        summary = {
            "transactions": len(results_df),
            "matched": matched,
            "unpaid_bills": len(bills),
            "overdue_bills": int(overdue_days.size),
            "total_alerts": len(alerts),
            "critical_alerts": sum(1 for a in alerts if a.severity == "CRITICAL"),
            "warning_alerts": sum(1 for a in alerts if a.severity == "WARNING"),
            "info_alerts": sum(1 for a in alerts if a.severity == "INFO"),
        }
        logger.info(f"Clearing monitor: {summary['total_alerts']} alert(s), {summary['overdue_bills']} overdue bill(s).")

        return MonitorReport(run_timestamp=now.isoformat(), alerts=alerts, summary=summary)

    # -------------------------------------------------------------------------
    # INTERNAL: RECORD ERRORS
    # -------------------------------------------------------------------------

    def _check_error_ratio(self, df: pd.DataFrame, now) -> List[MonitorAlert]:
        alerts = []
        if "error" not in df.columns or len(df) < self.min_transactions:
            return alerts

        errors = df["error"].fillna("").astype(str).str.len().to_numpy() > 0
        ratio = float(np.mean(errors))

        if ratio >= self.error_ratio_warning:
            critical = ratio >= self.error_ratio_critical
            alerts.append(MonitorAlert(
                alert_type="ERROR_RATIO",
                severity="CRITICAL" if critical else "WARNING",
                metric_name="record_error_ratio",
                metric_value=round(ratio, 3),
                threshold=self.error_ratio_critical if critical else self.error_ratio_warning,
                message=f"{int(errors.sum())}/{len(df)} transactions failed validation or commit ({ratio:.0%}).",
                detected_at=now.isoformat(),
            ))
        return alerts

    # -------------------------------------------------------------------------
    # INTERNAL: MATCH COVERAGE
    # -------------------------------------------------------------------------

    def _check_match_coverage(self, df: pd.DataFrame, overdue_days: np.ndarray, now) -> List[MonitorAlert]:
        """
        Unmatched ratio over valid rows. High coverage gaps are normal (most
        transactions are not bills), so only INFO unless bills are overdue and
        nothing matched.
        """
        alerts = []
        if "bill_id" not in df.columns or len(df) < self.min_transactions:
            return alerts

        valid = df
        if "error" in df.columns:
            valid = df[df["error"].fillna("").astype(str) == ""]
        if valid.empty:
            return alerts

        matched = int(valid["bill_id"].notna().sum())
        ratio = 1.0 - matched / len(valid)

        if matched == 0 and overdue_days.size > 0:
            alerts.append(MonitorAlert(
                alert_type="NO_MATCHES",
                severity="WARNING",
                metric_name="matched_transactions",
                metric_value=0.0,
                threshold=1.0,
                message=(
                    f"No transaction cleared a bill while {overdue_days.size} bill(s) are overdue. "
                    f"Check merchant aliases for the overdue bills."
                ),
                detected_at=now.isoformat(),
            ))
        elif ratio >= self.unmatched_ratio_info:
            alerts.append(MonitorAlert(
                alert_type="UNMATCHED_RATIO",
                severity="INFO",
                metric_name="unmatched_ratio",
                metric_value=round(ratio, 3),
                threshold=self.unmatched_ratio_info,
                message=f"{len(valid) - matched}/{len(valid)} valid transactions matched no bill.",
                detected_at=now.isoformat(),
            ))
        return alerts

    # -------------------------------------------------------------------------
    # INTERNAL: OVERDUE BILLS
    # -------------------------------------------------------------------------

    @staticmethod
    def _overdue_days(bills: List[Bill], reference: date) -> np.ndarray:
        days = np.array([(reference - b.due_date).days for b in bills], dtype=int)
        return days[days > 0]

    def _check_overdue_bills(self, overdue_days: np.ndarray, now) -> List[MonitorAlert]:
        alerts = []
        if overdue_days.size == 0:
            return alerts

        p90 = float(np.percentile(overdue_days, 90))
        if p90 >= self.overdue_days_critical:
            severity, threshold = "CRITICAL", self.overdue_days_critical
        elif p90 >= self.overdue_days_warning:
            severity, threshold = "WARNING", self.overdue_days_warning
        else:
            severity, threshold = "INFO", self.overdue_days_warning

        alerts.append(MonitorAlert(
            alert_type="OVERDUE_BILLS",
            severity=severity,
            metric_name="overdue_days_p90",
            metric_value=round(p90, 1),
            threshold=float(threshold),
            message=(
                f"{overdue_days.size} unpaid bill(s) past due. "
                f"p90 days overdue: {p90:.0f}, max: {int(overdue_days.max())}."
            ),
            detected_at=now.isoformat(),
        ))
        return alerts
