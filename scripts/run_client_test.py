#!/usr/bin/env python3
"""API client integration test for the surveyor server.

Exercises the run and submission endpoints by acting as a pure HTTP client
against a live local server.  For every cached flow it starts N runs and
answers each wait with a random input chosen from the wait's type and
categories, then checks that completed runs show up as pending
submissions.

Usage::

    # Install deps (first time only)
    pip install -e ".[client]"

    # Quick smoke test (one flow, one run)
    python scripts/run_client_test.py -f <flow uuid> -n 1 -v

    # Every cached flow, 3 runs each
    python scripts/run_client_test.py

    # Reproducible run that also confirms uploads
    python scripts/run_client_test.py --seed 42 --mark-uploaded
"""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import sys
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

import httpx
from rich.console import Console
from rich.table import Table

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Pool of random free-text answers
FREE_TEXT_POOL = [
    "yes",
    "no",
    "not sure",
    "sometimes",
    "every day",
    "only in the morning",
    "none",
]

# Pool of async lookup results; None stands for a failed lookup
ASYNC_RESULT_POOL: list[dict[str, Any] | None] = [
    {"status": "found", "district": "Kigali"},
    {"status": "not_found"},
    None,
]

TERMINAL = {"completed", "abandoned"}


# ---------------------------------------------------------------------------
# APIClient — thin httpx wrapper around the local API
# ---------------------------------------------------------------------------

class APIClient:
    """Async HTTP client for the surveyor server API."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> APIClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    async def health_check(self) -> bool:
        """Check server health. Returns True if server is reachable."""
        try:
            resp = await self._client.get("/health")  # type: ignore[union-attr]
            return resp.status_code == 200 and resp.json().get("status") == "ok"
        except (httpx.ConnectError, httpx.TimeoutException):
            return False

    async def list_flows(self) -> list[dict]:
        return await self._get("/api/v1/flows")

    async def start_run(self, flow_uuid: str, contact: dict) -> dict:
        return await self._post(
            "/api/v1/runs", json={"flow_uuid": flow_uuid, "contact": contact},
        )

    async def get_wait(self, run_uuid: str) -> dict:
        return await self._get(f"/api/v1/runs/{run_uuid}/wait")

    async def resume(self, run_uuid: str, value: str) -> dict:
        return await self._post(f"/api/v1/runs/{run_uuid}/resume", json={"value": value})

    async def resume_async(self, run_uuid: str, result: dict | None) -> dict:
        return await self._post(
            f"/api/v1/runs/{run_uuid}/resume-async",
            json={"result": result, "failed": result is None},
        )

    async def pending(self) -> list[dict]:
        return await self._get("/api/v1/submissions/pending")

    async def mark_uploaded(self, run_uuid: str) -> None:
        resp = await self._client.post(  # type: ignore[union-attr]
            f"/api/v1/submissions/{run_uuid}/uploaded"
        )
        resp.raise_for_status()

    async def _get(self, path: str) -> Any:
        """GET, retry once on timeout."""
        try:
            resp = await self._client.get(path)  # type: ignore[union-attr]
        except httpx.TimeoutException:
            # One retry
            resp = await self._client.get(path)  # type: ignore[union-attr]
        resp.raise_for_status()
        return resp.json()

    async def _post(self, path: str, json: Any) -> Any:
        """POST, retry once on timeout."""
        try:
            resp = await self._client.post(path, json=json)  # type: ignore[union-attr]
        except httpx.TimeoutException:
            resp = await self._client.post(path, json=json)  # type: ignore[union-attr]
        resp.raise_for_status()
        return resp.json()


# ---------------------------------------------------------------------------
# AnswerGenerator — random inputs per wait type
# ---------------------------------------------------------------------------

class AnswerGenerator:
    """Generate random inputs for each kind of waiting rule set."""

    def __init__(self, rng: random.Random):
        self._rng = rng

    def input_for(self, wait: dict) -> str:
        ruleset_type = wait.get("ruleset_type") or "wait_message"
        categories = wait.get("categories") or []

        if ruleset_type == "wait_number":
            return str(self._rng.randint(0, 99))

        if ruleset_type == "wait_date":
            day = date.today() - timedelta(days=self._rng.randint(0, 3650))
            return day.isoformat()

        if ruleset_type == "wait_gps":
            lat = round(self._rng.uniform(-2.8, -1.0), 5)
            lng = round(self._rng.uniform(29.0, 30.9), 5)
            return f"{lat},{lng}"

        if ruleset_type in ("wait_photo", "wait_video", "wait_audio"):
            return f"file:///sdcard/media/{self._rng.randint(1000, 9999)}"

        # Free text: usually pick a category name so a named rule can match
        if categories and self._rng.random() < 0.8:
            return self._rng.choice(categories)
        return self._rng.choice(FREE_TEXT_POOL)

    def async_result(self) -> dict | None:
        return self._rng.choice(ASYNC_RESULT_POOL)


# ---------------------------------------------------------------------------
# RunResult — outcome of one run
# ---------------------------------------------------------------------------

@dataclass
class RunResult:
    """Outcome of a single run."""

    flow_name: str
    run_index: int
    run_uuid: str | None = None
    status: str = "pending"          # final run status, or "failed"
    answers: list[tuple[str, str]] = field(default_factory=list)
    error: str | None = None
    steps: int = 0


# ---------------------------------------------------------------------------
# RunDriver — drives one run from start to a terminal status
# ---------------------------------------------------------------------------

class RunDriver:
    def __init__(
        self,
        client: APIClient,
        answers: AnswerGenerator,
        console: Console,
        *,
        verbosity: int = 0,
        max_waits: int = 100,
    ):
        self._client = client
        self._answers = answers
        self._console = console
        self._verbosity = verbosity
        self._max_waits = max_waits

    async def run(self, flow: dict, run_index: int) -> RunResult:
        result = RunResult(flow_name=flow["name"], run_index=run_index)
        try:
            run = await self._client.start_run(
                flow["uuid"], {"uuid": f"contact-{run_index}", "name": "Test Contact"},
            )
            result.run_uuid = run["run_uuid"]

            waits = 0
            while run["status"] not in TERMINAL:
                if waits >= self._max_waits:
                    result.error = f"Still waiting after {self._max_waits} answers"
                    break
                waits += 1
                wait = await self._client.get_wait(run["run_uuid"])
                if run["status"] == "waiting_for_async":
                    lookup = self._answers.async_result()
                    result.answers.append((wait.get("label") or "webhook", json.dumps(lookup)))
                    run = await self._client.resume_async(run["run_uuid"], lookup)
                else:
                    value = self._answers.input_for(wait)
                    result.answers.append((wait.get("label") or wait["node_id"], value))
                    run = await self._client.resume(run["run_uuid"], value)

                if self._verbosity >= 1:
                    label, value = result.answers[-1]
                    self._console.print(f"    [dim]{label}[/] → {value}")
                if self._verbosity >= 2:
                    self._console.print_json(json.dumps(run["steps"][-1], default=str))

            result.status = run["status"]
            result.steps = len(run["steps"])
        except httpx.HTTPStatusError as exc:
            result.status = "failed"
            result.error = f"{exc.response.status_code}: {exc.response.text}"
        except httpx.HTTPError as exc:
            result.status = "failed"
            result.error = str(exc)
        return result


# ---------------------------------------------------------------------------
# ResultCollector — aggregate outcomes and print the summary
# ---------------------------------------------------------------------------

class ResultCollector:
    def __init__(self) -> None:
        self.results: list[RunResult] = []

    def add(self, result: RunResult) -> None:
        self.results.append(result)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == "failed" or r.error)

    def print_summary(self, console: Console, pending: int) -> None:
        table = Table(title="Run summary")
        table.add_column("Flow")
        table.add_column("Runs", justify="right")
        table.add_column("Completed", justify="right", style="green")
        table.add_column("Abandoned", justify="right", style="yellow")
        table.add_column("Failed", justify="right", style="red")
        table.add_column("Avg steps", justify="right")

        by_flow: dict[str, list[RunResult]] = {}
        for r in self.results:
            by_flow.setdefault(r.flow_name, []).append(r)
        for name, results in sorted(by_flow.items()):
            steps = [r.steps for r in results if r.steps]
            table.add_row(
                name,
                str(len(results)),
                str(sum(1 for r in results if r.status == "completed")),
                str(sum(1 for r in results if r.status == "abandoned")),
                str(sum(1 for r in results if r.status == "failed" or r.error)),
                f"{sum(steps) / len(steps):.1f}" if steps else "-",
            )
        console.print()
        console.print(table)
        console.print(f"Pending submissions on device: [bold]{pending}[/]")

        failures = [r for r in self.results if r.error]
        if failures:
            console.print("\n[bold red]Failures:[/]")
            for r in failures:
                console.print(f"  {r.flow_name} (run {r.run_index}): {r.error}")

        console.print()


# ---------------------------------------------------------------------------
# CLI + async main
# ---------------------------------------------------------------------------

def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="API client integration test for the surveyor server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--base-url",
        default="http://localhost:8080",
        help="Server base URL (default: http://localhost:8080)",
    )
    parser.add_argument(
        "-n", "--runs",
        type=int, default=3,
        help="Number of random runs per flow (default: 3)",
    )
    parser.add_argument(
        "-f", "--flow",
        type=str, default=None,
        help="Only run these flow UUIDs (comma-separated)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count", default=0,
        help="Increase verbosity (-v for answers, -vv for step JSON)",
    )
    parser.add_argument(
        "--seed",
        type=int, default=None,
        help="RNG seed for reproducibility (default: current timestamp)",
    )
    parser.add_argument(
        "--mark-uploaded",
        action="store_true",
        help="Confirm every completed submission as uploaded afterwards",
    )
    parser.add_argument(
        "--max-waits",
        type=int, default=100,
        help="Safety limit: max answers per run (default: 100)",
    )
    parser.add_argument(
        "--timeout",
        type=float, default=30.0,
        help="HTTP request timeout in seconds (default: 30)",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    console = Console()

    # --- Seed ---
    seed = args.seed if args.seed is not None else int(time.time())
    rng = random.Random(seed)
    console.print(f"[dim]RNG seed: {seed}[/]")

    collector = ResultCollector()

    async with APIClient(args.base_url, timeout=args.timeout) as client:
        if not await client.health_check():
            console.print(
                f"[red]Server at {args.base_url} is not reachable. "
                f"Is the server running?[/]"
            )
            sys.exit(1)
        console.print(f"[green]Server health check passed[/] ({args.base_url})")

        # --- Pick flows ---
        flows = await client.list_flows()
        if args.flow:
            wanted = {f.strip() for f in args.flow.split(",")}
            flows = [f for f in flows if f["uuid"] in wanted]
        if not flows:
            console.print("[red]No cached flows match the given filters.[/]")
            sys.exit(1)

        total = len(flows) * args.runs
        console.print(f"[bold]Running {total} runs ({len(flows)} flows x {args.runs} runs)[/]")

        # --- Drive runs ---
        driver = RunDriver(
            client, AnswerGenerator(rng), console,
            verbosity=args.verbose, max_waits=args.max_waits,
        )
        index = 0
        for flow in flows:
            for run_idx in range(1, args.runs + 1):
                index += 1
                console.print(f"\n[bold cyan][{index}/{total}][/] {flow['name']} (run {run_idx}/{args.runs})")
                result = await driver.run(flow, run_idx)
                style = {"completed": "green", "abandoned": "yellow"}.get(result.status, "red")
                console.print(f"  [{style}]{result.status.upper()}[/] after {result.steps} steps")
                collector.add(result)

        # --- Submissions ---
        pending = await client.pending()
        pending_ids = {p["run_uuid"] for p in pending}
        for r in collector.results:
            if r.status == "completed" and r.run_uuid not in pending_ids:
                r.error = "completed run missing from pending submissions"
        if args.mark_uploaded:
            for p in pending:
                await client.mark_uploaded(p["run_uuid"])
            console.print(f"[green]Marked {len(pending)} submissions uploaded[/]")
            pending = await client.pending()

    # --- Summary ---
    collector.print_summary(console, pending=len(pending))

    # Exit code: 1 if any failures
    if collector.failed > 0:
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
