"""
Command-line audit runner.

Submits a URL to a running audit service, waits for the result with the
backing-off poller and prints the verdict summary.

Usage:
    python scripts/run_audit.py https://example.com
    python scripts/run_audit.py example.com --base-url http://localhost:8000 --max-wait 120
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from client.poller import AuditClient, AuditClientError, PollTimeout

BASE_URL = os.getenv("AUDIT_API_URL", f"http://localhost:{os.getenv('PORT', '8000')}")


def format_report(job: dict) -> str:
    if job["status"] == "failed":
        return f"Audit failed: {job.get('error') or 'unknown error'}"

    result = job["result"]
    lines = [
        f"UX score: {job['score']}/100",
        "",
        result["summary_reasoning"],
        "",
        "Top issues:",
    ]
    for issue in result["top_severe_issues"]:
        lines.append(f"  [{issue['severity']}] {issue['title']}")
        lines.append(f"      fix: {issue['recommended_fix']}")
    lines.append("")
    for category, issues in result["category_breakdown"].items():
        lines.append(f"{category}: {len(issues)} issue(s)")
    return "\n".join(lines)


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run a UX audit against a URL.")
    parser.add_argument("url")
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--max-wait", type=float, default=180.0)
    args = parser.parse_args(argv)

    async with AuditClient(args.base_url) as client:
        try:
            audit_id = await client.submit(args.url)
            print(f"Audit {audit_id} submitted, waiting for result...")
            job = await client.wait_for(audit_id, max_wait=args.max_wait)
        except AuditClientError as exc:
            print(f"Request rejected: {exc.detail}")
            return 2
        except PollTimeout as exc:
            print(str(exc))
            return 3

    print(format_report(job))
    return 0 if job["status"] == "completed" else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
