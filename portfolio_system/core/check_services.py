#!/usr/bin/env python3
"""
check_services.py - Integration Health Validator

Reads configuration from the environment (.env included) and checks that the
integration surfaces are reachable: Project Server REST, the CSOM bridge and
the portfolio API.

Usage:
    portfolio-check-services          # Check all services
    portfolio-check-services --quick  # Shorter timeouts
    portfolio-check-services --json   # Output as JSON for scripting
"""

import argparse
import json
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from portfolio_system.core.config import get_config
from portfolio_system.core.section_logger import ErrorCodes, health_logger
from portfolio_system.project_server.client import ProjectServerClient


@dataclass
class ServiceCheck:
    """One service to probe"""
    name: str
    url: str
    probe: Callable[[float], Tuple[bool, str]]
    description: str = ""
    required: bool = True


def check_http_service(url: str, health_path: str, timeout: float) -> Tuple[bool, str]:
    """GET <url><health_path>; up on 200"""
    try:
        response = requests.get(url.rstrip('/') + health_path, timeout=timeout)
    except requests.exceptions.Timeout:
        return False, "Timeout"
    except requests.exceptions.RequestException as e:
        return False, f"Unreachable: {str(e)[:40]}"

    if response.status_code == 200:
        return True, f"OK ({response.status_code})"
    return False, f"HTTP {response.status_code}"


def check_project_server(config, timeout: float) -> Tuple[bool, str]:
    if not config.ps_live():
        return False, "Disabled (static data)"
    client = ProjectServerClient.from_config(config)
    client.timeout = timeout
    return (True, "OK (connected)") if client.test_connection() else (False, "Unreachable")


def build_checks(config) -> List[ServiceCheck]:
    api_url = f"http://localhost:{config.API_PORT}"
    return [
        ServiceCheck(
            name="Portfolio API",
            url=api_url,
            probe=lambda t: check_http_service(api_url, "/health", t),
            description="FastAPI server - portfolio data and write-back",
            required=True,
        ),
        ServiceCheck(
            name="Project Server",
            url=config.PS_URL,
            probe=lambda t: check_project_server(config, t),
            description="REST reads and checkout/publish writes",
            required=config.ps_live(),
        ),
        ServiceCheck(
            name="PS Bridge",
            url=config.BRIDGE_URL,
            probe=lambda t: check_http_service(config.BRIDGE_URL, "/health", t),
            description="CSOM bulk assignment on the Project Server VM",
            required=False,
        ),
    ]


def run_check(check: ServiceCheck, timeout: float) -> Dict:
    is_up, status = check.probe(timeout)
    if not is_up and check.required:
        health_logger.log_warning(ErrorCodes.HEALTH_SERVICE_DOWN, f"{check.name} down: {status}")
    return {
        "name": check.name,
        "url": check.url,
        "status": status,
        "is_up": is_up,
        "required": check.required,
        "description": check.description,
    }


def run_checks(checks: List[ServiceCheck], timeout: float) -> List[Dict]:
    """Probe every service in parallel; required services sort first"""
    results = []
    with ThreadPoolExecutor(max_workers=len(checks) or 1) as executor:
        futures = [executor.submit(run_check, check, timeout) for check in checks]
        for future in as_completed(futures):
            results.append(future.result())
    results.sort(key=lambda r: (not r["required"], r["name"]))
    return results


def print_results(results: List[Dict], console: Optional[Console] = None, show_description: bool = True):
    console = console or Console()

    table = Table(title="Integration Service Status")
    table.add_column("", width=6)
    table.add_column("Service", style="cyan")
    table.add_column("URL", style="dim")
    table.add_column("Status")
    if show_description:
        table.add_column("Description", style="white")

    for r in results:
        if r["is_up"]:
            indicator = "[green]UP[/green]"
        elif r["required"]:
            indicator = "[red]DOWN[/red]"
        else:
            indicator = "[yellow]OFF[/yellow]"
        name = f"*{r['name']}" if r["required"] else r["name"]
        row = [indicator, name, r["url"], r["status"]]
        if show_description:
            row.append(r["description"])
        table.add_row(*row)

    up_count = sum(1 for r in results if r["is_up"])
    down_required = [r["name"] for r in results if r["required"] and not r["is_up"]]
    if down_required:
        summary = f"[red]Required services down: {', '.join(down_required)}[/red]"
    else:
        summary = "[green]All required services operational.[/green]"

    console.print(table)
    console.print(Panel(f"{up_count}/{len(results)} services responding  (* = required)\n{summary}",
                        border_style="blue"))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check integration service health")
    parser.add_argument("--quick", action="store_true", help="Quick check with short timeouts")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--no-desc", action="store_true", help="Hide service descriptions")
    args = parser.parse_args(argv)

    timeout = 1.0 if args.quick else 3.0
    results = run_checks(build_checks(get_config()), timeout)

    if args.json:
        print(json.dumps(results, indent=2))
    else:
        print_results(results, show_description=not args.no_desc)

    # Exit code: 0 if all required services up, 1 otherwise
    return 1 if any(r["required"] and not r["is_up"] for r in results) else 0


if __name__ == "__main__":
    sys.exit(main())
