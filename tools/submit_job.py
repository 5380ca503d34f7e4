#!/usr/bin/env python3
# ============================================================================
# CLI CLUSTER JOB SUBMISSION TOOL
# ============================================================================
# STATUS: Tool - Submit cluster jobs over HTTP
# PURPOSE: Submit a job and optionally poll until it ends
# CREATED: 18 MAR 2026
# ============================================================================
"""
Submit cluster jobs to the orchestrator's HTTP API.

Usage:
    # One command
    python tools/submit_job.py /data/p1 'echo hello'

    # Array job, 4 elements, at most 2 at a time
    python tools/submit_job.py /data/p1 'python work.py' --array-size 4 --bundle-size 2

    # Scheduler args and an owner, then poll for completion
    python tools/submit_job.py /data/p1 'make' --arg=--cpus-per-task=4 --owner stage-1 --poll

    # Cancel everything of an owner
    python tools/submit_job.py --cancel-owner stage-1

Requires:
    ORCHESTRATOR_URL env var, or --orchestrator-url
"""

import argparse
import json
import os
import sys
import time
from typing import Optional

import httpx

TERMINAL_STATUSES = ("ended", "abandoned")


def build_request(args: argparse.Namespace) -> dict:
    commands = {"type": "script", "commands": args.commands}
    if args.array_size is not None:
        commands["array_size"] = args.array_size
    if args.bundle_size is not None:
        commands["bundle_size"] = args.bundle_size

    request = {
        "commands": commands,
        "dir": args.dir,
        "args": args.arg or [],
        "deps": args.dep or [],
    }
    if args.owner:
        request["owner_id"] = args.owner
    if args.name:
        request["web_name"] = args.name
        request["cluster_name"] = args.name
    if args.container:
        request["container_id"] = args.container
    return request


def submit_job(client: httpx.Client, orchestrator_url: str, request: dict) -> Optional[str]:
    """Submit a job. Returns its id, or None if nothing was launched."""
    resp = client.post(f"{orchestrator_url}/api/v1/cluster/jobs", json=request)
    if resp.status_code >= 400:
        detail = resp.json().get("detail", resp.text)
        raise RuntimeError(f"submission failed ({resp.status_code}): {detail}")
    return resp.json().get("job_id")


def poll_status(client: httpx.Client, orchestrator_url: str, job_id: str, timeout: int = 120):
    """Poll the job log until the job is terminal."""
    print(f"\nPolling for completion (job_id={job_id})...")
    start = time.time()

    while time.time() - start < timeout:
        try:
            resp = client.get(f"{orchestrator_url}/api/v1/cluster/jobs/{job_id}/log")
            if resp.status_code == 200:
                data = resp.json()
                status = data.get("status")
                elapsed = int(time.time() - start)
                print(f"  [{elapsed:3d}s] {job_id[:12]}... status={status} run_status={data.get('run_status')}")

                if status in TERMINAL_STATUSES:
                    print("\n--- FINAL RESULT ---")
                    print(json.dumps(data, indent=2, default=str))
                    return data

                if status == "launched":
                    reason = client.get(f"{orchestrator_url}/api/v1/cluster/jobs/{job_id}/waiting-reason")
                    if reason.status_code == 200:
                        print(f"          {reason.json().get('reason')}")

        except httpx.HTTPError as e:
            elapsed = int(time.time() - start)
            print(f"  [{elapsed:3d}s] Poll error: {e}")

        time.sleep(5)

    print(f"\nTimeout after {timeout}s")
    return None


def main():
    parser = argparse.ArgumentParser(
        description="Submit a cluster job to the orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s /data/p1 'echo hello'
  %(prog)s /data/p1 'python work.py' --array-size 4 --poll
  %(prog)s --cancel-owner stage-1
        """,
    )
    parser.add_argument("dir", nargs="?", help="Working directory of the job")
    parser.add_argument("commands", nargs="*", help="Commands to run")
    parser.add_argument("--array-size", type=int, help="Run as an array job with this many elements")
    parser.add_argument("--bundle-size", type=int, help="Max array elements running at once")
    parser.add_argument("--arg", action="append", help="Scheduler argument, e.g. --arg=--mem=4G")
    parser.add_argument("--dep", action="append", help="Job id to wait for, e.g. abc123 or abc123_2")
    parser.add_argument("--owner", "-o", help="Owner id grouping this job with others")
    parser.add_argument("--name", "-n", help="Job name")
    parser.add_argument("--container", help="Container profile id")
    parser.add_argument("--cancel-owner", help="Cancel every job of this owner and exit")
    parser.add_argument("--poll", "-p", action="store_true", help="Poll until the job ends")
    parser.add_argument(
        "--orchestrator-url", "-u",
        default=os.environ.get("ORCHESTRATOR_URL", "http://localhost:8000"),
        help="Orchestrator base URL",
    )
    parser.add_argument("--timeout", "-t", type=int, default=120, help="Poll timeout in seconds (default: 120)")

    args = parser.parse_args()
    url = args.orchestrator_url.rstrip("/")

    with httpx.Client(timeout=30.0) as client:

        if args.cancel_owner:
            resp = client.post(f"{url}/api/v1/cluster/owners/{args.cancel_owner}/cancel")
            print(json.dumps(resp.json(), indent=2))
            sys.exit(0 if resp.status_code == 200 else 1)

        if not args.dir or not args.commands:
            parser.error("dir and at least one command are required")

        request = build_request(args)
        print("Submitting cluster job:")
        print(f"  dir:      {args.dir}")
        print(f"  commands: {args.commands}")
        print(f"  args:     {request['args']}")
        print()

        try:
            job_id = submit_job(client, url, request)
        except (RuntimeError, httpx.HTTPError) as e:
            print(f"ERROR: {e}", file=sys.stderr)
            sys.exit(1)

        if job_id is None:
            print("Nothing was launched")
            sys.exit(0)
        print(f"Submitted successfully!")
        print(f"  job_id: {job_id}")

        if args.poll:
            result = poll_status(client, url, job_id, timeout=args.timeout)
            sys.exit(0 if result and result.get("run_status") == "succeeded" else 1)


if __name__ == "__main__":
    main()
