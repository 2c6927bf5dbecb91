#!/usr/bin/env python3
"""
Reporter
Renders a SessionReport into the human-readable summary and summary.json
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, TextIO, Tuple, Union

from .models import RenderedSummary, SessionReport

logger = logging.getLogger(__name__)

BANNER = "=" * 65
RULE = "-" * 72
ROW_FORMAT = "%-20s %-15s %s"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def success_rate(success_count: int, total: int) -> int:
    """Integer percentage; 0 for an empty selection"""
    if total == 0:
        return 0
    return success_count * 100 // total


def overall_status(report: SessionReport) -> str:
    if report.detected_count == 0:
        return "FAILED"
    if report.fail_count == 0:
        return "EXCELLENT"
    if report.success_count > report.fail_count:
        return "GOOD"
    return "NEEDS ATTENTION"


def category_counts(report: SessionReport) -> Tuple[Tuple[str, int], ...]:
    """Detected applications per category, categories in order of first appearance"""
    counts: Dict[str, int] = {}
    for entry in report.results:
        counts.setdefault(entry.spec.category, 0)
        if entry.probe.found:
            counts[entry.spec.category] += 1
    return tuple(counts.items())


def _format_memory(total_bytes) -> str:
    if not total_bytes:
        return "unknown"
    return f"{total_bytes / (1024 ** 3):.1f} GB"


class Reporter:
    """Summary rendering and persistence"""

    def render(self, report: SessionReport) -> RenderedSummary:
        """Pure rendering: the same report always yields the same text"""
        total = len(report.results)
        rate = success_rate(report.success_count, total)
        categories = category_counts(report)
        status = overall_status(report)
        host = report.host

        lines: List[str] = [
            BANNER,
            "           BIOLOGY SOFTWARE TEST SUITE SUMMARY",
            BANNER,
            f"Test Date: {report.started_at.strftime(TIME_FORMAT)}",
            f"Hostname: {host.hostname or 'unknown'}",
            f"User: {host.user or 'unknown'}",
            f"CPUs: {host.cpu_count if host.cpu_count else 'unknown'}",
            f"Memory: {_format_memory(host.memory_total)}",
            f"Execution: {report.strategy.value}",
            BANNER,
            "",
            "APPLICATION RESULTS:",
            "====================",
            ROW_FORMAT % ("APPLICATION", "STATUS", "DETAILS"),
            RULE,
        ]
        for entry in report.results:
            lines.append(ROW_FORMAT % (entry.spec.display_name, entry.outcome.status.value,
                                       entry.outcome.detail_text))

        lines += [
            "",
            "SUMMARY STATISTICS:",
            "==================",
            f"Total applications tested: {total}",
            f"Successfully detected: {report.detected_count}",
            f"Failed detection: {total - report.detected_count}",
            f"Successful tests: {report.success_count}",
            f"Failed tests: {report.fail_count}",
            f"Skipped tests: {report.skip_count}",
            f"Success rate: {rate}%",
            f"Completion time: {report.ended_at.strftime(TIME_FORMAT)}",
            "",
            "CATEGORY BREAKDOWN:",
            "==================",
        ]
        lines += [f"{category}: {count} available" for category, count in categories]

        lines += [
            "",
            "DETAILED TEST SCRIPTS DETECTED:",
            "===============================",
        ]
        detected = [entry for entry in report.results if entry.probe.found]
        for entry in detected:
            test = entry.spec.detailed_test
            if test is not None:
                lines.append(f"{entry.spec.display_name}: {test.name} (Comprehensive testing available)")
            else:
                lines.append(f"{entry.spec.display_name}: Basic testing only")
        if not detected:
            lines.append("(none)")

        lines.append("")
        if status == "FAILED":
            lines.append("OVERALL STATUS: FAILED - No applications available for testing")
        elif status == "EXCELLENT":
            lines.append("OVERALL STATUS: EXCELLENT - All tests passed")
        elif status == "GOOD":
            lines.append(f"OVERALL STATUS: GOOD - Most tests passed ({report.success_count}/{total})")
        else:
            lines.append(f"OVERALL STATUS: NEEDS ATTENTION - Multiple test failures "
                         f"({report.fail_count}/{total} failed)")

        return RenderedSummary(
            text="\n".join(lines) + "\n",
            total=total,
            success_count=report.success_count,
            fail_count=report.fail_count,
            skip_count=report.skip_count,
            success_rate=rate,
            detected_count=report.detected_count,
            category_counts=categories,
            overall_status=status,
        )

    def write(self, summary: RenderedSummary, sink: Union[str, Path, TextIO]) -> None:
        """Write the summary text to a file path or an open text stream"""
        if hasattr(sink, "write"):
            sink.write(summary.text)
            return
        with open(sink, 'w') as f:
            f.write(summary.text)
        logger.info(f"📊 Summary report saved to: {sink}")

    def to_dict(self, report: SessionReport, summary: RenderedSummary) -> Dict[str, Any]:
        return {
            "started_at": report.started_at.isoformat(),
            "ended_at": report.ended_at.isoformat(),
            "strategy": report.strategy.value,
            "host": {
                "hostname": report.host.hostname,
                "user": report.host.user,
                "cpu_count": report.host.cpu_count,
                "memory_total": report.host.memory_total,
            },
            "total": summary.total,
            "success_count": summary.success_count,
            "fail_count": summary.fail_count,
            "skip_count": summary.skip_count,
            "success_rate": summary.success_rate,
            "detected_count": summary.detected_count,
            "category_counts": dict(summary.category_counts),
            "overall_status": summary.overall_status,
            "results": [
                {
                    "key": entry.spec.key,
                    "name": entry.spec.display_name,
                    "category": entry.spec.category,
                    "found": entry.probe.found,
                    "detection_source": entry.probe.detection_source.value,
                    "location": entry.probe.resolved_location,
                    "version": entry.probe.version_string,
                    "status": entry.outcome.status.value,
                    "mode": entry.outcome.mode.value,
                    "details": entry.outcome.detail_text,
                    "job_id": entry.outcome.external_job_handle,
                    "log_path": entry.outcome.log_path,
                }
                for entry in report.results
            ],
        }

    def write_json(self, report: SessionReport, summary: RenderedSummary, path: Union[str, Path]) -> None:
        """Machine-readable summary.json next to the text summary"""
        with open(path, 'w') as f:
            json.dump(self.to_dict(report, summary), f, indent=2, default=str)
        logger.info(f"📊 JSON summary saved to: {path}")

    def counts_line(self, summary: RenderedSummary) -> str:
        return (f"{summary.success_count} passed, {summary.fail_count} failed, "
                f"{summary.skip_count} skipped ({summary.success_rate}% success)")
