"""
Report generator for verification and apply results.

Generates JSON and HTML reports with the per-check findings and, for
apply runs, the per-step outcomes.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from jinja2 import Environment

from ..core.models import ApplyResult, StepOutcome, VerificationReport
from ..version_info import __version__


HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Podman Security Report - {{ distro }}</title>
    <style>
        body { font-family: Arial, sans-serif; margin: 40px; color: #333; }
        h1 { color: #2c3e50; border-bottom: 3px solid #3498db; padding-bottom: 10px; }
        .summary { display: flex; gap: 20px; margin: 20px 0; }
        .card { padding: 15px 25px; border-radius: 6px; background: #ecf0f1; }
        .card .value { font-size: 28px; font-weight: bold; }
        table { border-collapse: collapse; width: 100%; margin-top: 20px; }
        th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
        th { background: #34495e; color: white; }
        .pass { color: #27ae60; font-weight: bold; }
        .fail { color: #c0392b; font-weight: bold; }
        .other { color: #7f8c8d; }
    </style>
</head>
<body>
    <h1>Podman Security Baseline Report</h1>
    <p>Distribution: <strong>{{ distro }}</strong> &middot; Generated {{ generated_at }}</p>
{% if bundle_path %}
    <p>Backup bundle: <code>{{ bundle_path }}</code></p>
{% endif %}

    <div class="summary">
        <div class="card"><div class="value">{{ passed }}</div>passed</div>
        <div class="card"><div class="value">{{ failed }}</div>failed</div>
        <div class="card"><div class="value">{{ "%.0f"|format(score) }}%</div>compliance</div>
    </div>

{% if steps %}
    <h2>Steps</h2>
    <table>
        <tr><th>Step</th><th>Status</th><th>Details</th></tr>
{% for step in steps %}
        <tr>
            <td>{{ step.title }}</td>
            <td class="{{ 'pass' if step.status == 'success' else ('fail' if step.status == 'failed' else 'other') }}">{{ step.status }}</td>
            <td>{{ step.message or '' }}</td>
        </tr>
{% endfor %}
    </table>
{% endif %}

    <h2>Checks</h2>
    <table>
        <tr><th>Check</th><th>Result</th><th>Details</th></tr>
{% for check in checks %}
        <tr>
            <td>{{ check.title }}</td>
            <td class="{{ 'pass' if check.passed else 'fail' }}">{{ 'PASS' if check.passed else 'FAIL' }}</td>
            <td>{{ check.detail or '' }}</td>
        </tr>
{% endfor %}
    </table>

    <p class="other">podman-security {{ version }}</p>
</body>
</html>
"""


class ReportGenerator:
    """
    Generates verification reports in multiple formats.
    """

    def __init__(self):
        self.env = Environment(autoescape=True, trim_blocks=True)

    def generate_report(self, result: Union[VerificationReport, ApplyResult],
                        format: str = "json",
                        output_path: Optional[str] = None) -> str:
        """
        Generate a report.

        Args:
            result: Verification report or apply result to report on
            format: Report format (json, html)
            output_path: Output file path (auto-generated if None)

        Returns:
            str: Path to generated report file
        """
        if format.lower() not in ("json", "html"):
            raise ValueError(f"Unsupported report format: {format}")

        if not output_path:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            output_path = f"podman_security_report_{timestamp}.{format.lower()}"

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)

        context = self._prepare_context(result)
        if format.lower() == "json":
            with open(output_file, 'w') as f:
                json.dump(context, f, indent=2, default=str)
        else:
            html_content = self.env.from_string(HTML_TEMPLATE).render(**context)
            with open(output_file, 'w', encoding='utf-8') as f:
                f.write(html_content)

        return str(output_file)

    def _prepare_context(self, result: Union[VerificationReport, ApplyResult]) -> Dict:
        steps: List[StepOutcome] = []
        bundle_path = None
        if isinstance(result, ApplyResult):
            steps = result.steps
            bundle_path = str(result.bundle_path) if result.bundle_path else None
            report = result.verification or VerificationReport(distro=result.distro)
        else:
            report = result

        total = len(report.results)
        return {
            "report_type": "apply" if isinstance(result, ApplyResult) else "verification",
            "generated_at": datetime.now().isoformat(timespec="seconds"),
            "version": __version__,
            "distro": report.distro,
            "bundle_path": bundle_path,
            "passed": report.passed,
            "failed": report.failed,
            "score": (report.passed / total * 100) if total else 0.0,
            "compliant": report.compliant,
            "steps": [step.model_dump(mode="json") for step in steps],
            "checks": [check.model_dump(mode="json") for check in report.results],
        }
