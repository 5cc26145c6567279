"""Report generation for sync runs."""

import json
import csv
import io
from datetime import datetime

from .models import SyncRunReport


class ReportGenerator:
    """Generator for sync run reports in various formats."""

    def __init__(self, report: SyncRunReport):
        """Initialize the report generator.

        Args:
            report: The sync run report to generate output from.
        """
        self.report = report

    def to_json(self, include_details: bool = True, indent: int = 2) -> str:
        """Generate JSON representation of the report.

        Args:
            include_details: If True, include record issues. If False, only summary.
            indent: JSON indentation level.

        Returns:
            JSON string representation of the report.
        """
        if include_details:
            data = self.report.to_full_dict()
        else:
            data = self.report.to_summary_dict()

        def json_serializer(obj):
            if isinstance(obj, datetime):
                return obj.isoformat()
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(data, indent=indent, default=json_serializer)

    def to_csv(self) -> str:
        """Generate CSV of the skipped and failed records of every stage.

        Returns:
            CSV string with a header row and one row per record issue.
        """
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(["stage", "reference", "kind", "message", "detected_at"])
        for stage in self.report.stages:
            for issue in stage.issues:
                writer.writerow([
                    stage.stage.value,
                    issue.reference,
                    issue.kind.value,
                    issue.message,
                    issue.detected_at.isoformat(),
                ])
        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary of the report.

        Returns:
            Formatted text summary of the sync run.
        """
        summary = self.report.to_summary_dict()

        lines = [
            "=" * 60,
            "SYNC RUN SUMMARY",
            "=" * 60,
            f"Run ID: {summary['id']}",
            f"Status: {summary['status']}",
            f"Provider: {summary['provider']}",
            f"Failure Policy: {summary['failure_policy']}",
        ]

        for stage in summary["stages"]:
            stats = stage["statistics"]
            lines.extend([
                "",
                f"Stage: {stage['stage']} ({stage['status']})",
                f"  Fetched: {stats['fetched']}",
                f"  Created: {stats['created']}",
                f"  Updated: {stats['updated']}",
                f"  Unchanged: {stats['unchanged']}",
                f"  Skipped: {stats['skipped']}",
                f"  Failed: {stats['failed']}",
                f"  Orders Created: {stats['orders_created']}",
            ])
            if stats["truncated"]:
                lines.append("  Gateway drain was truncated")
            if stats["vendor_policy_counts"]:
                counts = ", ".join(f"{k}={v}" for k, v in sorted(stats["vendor_policy_counts"].items()))
                lines.append(f"  Vendor Matches: {counts}")
            if stage.get("error_message"):
                lines.append(f"  Error: {stage['error_message']}")

        lines.extend([
            "",
            f"Created At: {summary['created_at']}",
            f"Completed At: {summary['completed_at'] or 'N/A'}",
            "=" * 60,
        ])

        return "\n".join(lines)
