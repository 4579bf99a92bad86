"""
CLI Client for the DevPilot orchestrator

A command-line interface for submitting coding tasks to the orchestrator
API, following them live and inspecting projects and results.
"""

import argparse
import json
import os
import sys
from typing import Iterator, List, Optional

import httpx

# Default API URL
DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_MODEL = "gpt-oss-120b"
TOKEN_ENV_VAR = "DEVPILOT_TOKEN"

TERMINAL_STATUSES = ("done", "error")


def build_client(api_url: str = DEFAULT_API_URL, token: Optional[str] = None) -> httpx.Client:
    """
    Create an HTTP client for the orchestrator API.

    Args:
        api_url: API base URL
        token: Session token sent as a bearer credential

    Returns:
        Configured httpx.Client
    """
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.Client(base_url=api_url, headers=headers, timeout=30.0)


def _fail(action: str, error: httpx.HTTPError) -> None:
    if isinstance(error, httpx.HTTPStatusError):
        try:
            detail = error.response.json().get("detail", error.response.text)
        except ValueError:
            detail = error.response.text
        print(f"Error {action}: {error.response.status_code} {detail}")
    else:
        print(f"Error {action}: {error}")
    sys.exit(1)


def submit_task(
    client: httpx.Client,
    project_id: str,
    prompt: str,
    model_id: str = DEFAULT_MODEL,
    mode: str = "agent"
) -> dict:
    """
    Submit a task to POST /api/tasks.

    Returns:
        The created (pending) task
    """
    try:
        response = client.post(
            "/api/tasks",
            json={"projectId": project_id, "prompt": prompt, "modelId": model_id, "mode": mode}
        )
        response.raise_for_status()
        return response.json()
    except httpx.HTTPError as e:
        _fail("submitting task", e)


def get_task(client: httpx.Client, task_id: str) -> dict:
    try:
        response = client.get(f"/api/tasks/{task_id}")
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 404:
            print(f"Task not found: {task_id}")
            sys.exit(1)
        _fail("getting task", e)
    except httpx.HTTPError as e:
        _fail("getting task", e)


def list_tasks(client: httpx.Client) -> List[dict]:
    try:
        response = client.get("/api/tasks")
        response.raise_for_status()
        return response.json()
    except httpx.HTTPError as e:
        _fail("listing tasks", e)


def list_projects(client: httpx.Client) -> List[dict]:
    try:
        response = client.get("/api/projects")
        response.raise_for_status()
        return response.json()
    except httpx.HTTPError as e:
        _fail("listing projects", e)


def parse_sse_line(line: str) -> Optional[dict]:
    """
    Decode one line of a server-sent event stream.

    Args:
        line: Raw line without the trailing newline

    Returns:
        The decoded data payload, or None for blank lines, comments and
        undecodable data
    """
    if not line.startswith("data:"):
        return None
    try:
        return json.loads(line[len("data:"):].strip())
    except json.JSONDecodeError:
        return None


def stream_events(client: httpx.Client, task_id: str) -> Iterator[dict]:
    """
    Follow a task's status stream.

    Yields every event the server sends, starting with the connection
    acknowledgement. Ends when the server closes the stream.
    """
    try:
        with client.stream("GET", f"/api/tasks/{task_id}/events", timeout=None) as response:
            response.raise_for_status()
            for line in response.iter_lines():
                event = parse_sse_line(line)
                if event is not None:
                    yield event
    except httpx.HTTPError as e:
        _fail("streaming task", e)


def watch_task(client: httpx.Client, task_id: str) -> Optional[dict]:
    """
    Print new log lines as they arrive.

    Returns:
        The last task snapshot received, or None if none arrived
    """
    print("\nStreaming updates...\n")
    printed = 0
    last = None
    for event in stream_events(client, task_id):
        if "id" not in event:
            continue
        last = event
        logs = event.get("logs", [])
        for line in logs[printed:]:
            print(f"  {line}")
        printed = len(logs)
        if event.get("status") in TERMINAL_STATUSES:
            break
    return last


def format_output(task: dict):
    """
    Format and display a task.

    Args:
        task: Task as returned by the API
    """
    print("\n" + "=" * 60)
    print("TASK RESULT")
    print("=" * 60)

    print(f"\nTask ID: {task['id']}")
    print(f"Project: {task.get('projectId')}")
    print(f"Model: {task.get('modelId')} ({task.get('provider') or 'unrouted'})")
    print(f"Status: {task['status']}")

    # Display logs
    if task.get("logs"):
        print(f"\nLog ({len(task['logs'])} lines):")
        for line in task["logs"]:
            print(f"  {line}")

    # Display result
    if task.get("resultSummary"):
        print("\nResult:")
        print(task["resultSummary"])

    print("\n" + "=" * 60)


def format_projects(projects: List[dict]):
    for project in projects:
        print(f"{project['id']:<24} {project.get('name', ''):<32} {project.get('agentId', '-')}")


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="CLI client for the DevPilot orchestrator"
    )

    parser.add_argument(
        "--api-url",
        default=os.getenv("DEVPILOT_API_URL", DEFAULT_API_URL),
        help=f"API base URL (default: {DEFAULT_API_URL})"
    )

    parser.add_argument(
        "--token",
        default=os.getenv(TOKEN_ENV_VAR),
        help=f"Session token (default: ${TOKEN_ENV_VAR})"
    )

    subparsers = parser.add_subparsers(dest="command")

    submit = subparsers.add_parser("submit", help="Submit a coding task")
    submit.add_argument("project_id", help="Project to work in")
    submit.add_argument("prompt", help="Task description")
    submit.add_argument("--model", default=DEFAULT_MODEL, help=f"Model id (default: {DEFAULT_MODEL})")
    submit.add_argument("--mode", default="agent", help="Task mode (default: agent)")
    submit.add_argument("--watch", action="store_true", help="Stream progress until the task ends")

    status = subparsers.add_parser("status", help="Show one task")
    status.add_argument("task_id")

    watch = subparsers.add_parser("watch", help="Stream a task's progress")
    watch.add_argument("task_id")

    subparsers.add_parser("list", help="List your tasks")
    subparsers.add_parser("projects", help="List projects served by live agents")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command in ("submit", "status", "watch", "list") and not args.token:
        print(f"A session token is required (--token or ${TOKEN_ENV_VAR})")
        sys.exit(1)

    with build_client(args.api_url, args.token) as client:
        if args.command == "projects":
            format_projects(list_projects(client))
            return

        if args.command == "list":
            for task in list_tasks(client):
                print(f"{task['id']}  {task['status']:<8} {task['projectId']:<20} {task['prompt'][:50]}")
            return

        if args.command == "status":
            format_output(get_task(client, args.task_id))
            return

        if args.command == "watch":
            watch_task(client, args.task_id)
            format_output(get_task(client, args.task_id))
            return

        print(f"Submitting task: {args.prompt}")
        task = submit_task(client, args.project_id, args.prompt, args.model, args.mode)
        print(f"\nTask ID: {task['id']}")
        print(f"Status: {task['status']}")

        if args.watch:
            watch_task(client, task["id"])
            format_output(get_task(client, task["id"]))
            return

        print(f"\nUse 'devpilot status {task['id']}' to check status later")


if __name__ == "__main__":
    main()
