#!/usr/bin/env python3
"""Scripted walkthroughs against a running permission admin backend."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

import httpx

DEFAULT_BASE_URL = "http://localhost:8000"


@dataclass(slots=True)
class Walkthrough:
    client: httpx.AsyncClient
    user_id: str
    canton_id: str
    persona_id: str | None


def _show(label: str, response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        body = {"raw": response.text}
    print(f"[{response.status_code}] {label}")
    for note in body.get("notifications", []) if isinstance(body, dict) else []:
        print(f"    {note['level']}: {note['message']}")
    return body if isinstance(body, dict) else {"items": body}


async def scenario_listing(run: Walkthrough) -> None:
    _show("canton cards", await run.client.get("/permissions/cantones"))
    _show("persona cards", await run.client.get("/permissions/personas"))
    _show("collaborators", await run.client.get("/directory/collaborators"))


async def scenario_cascade(run: Walkthrough) -> None:
    """Grant a canton, then a persona inside it, then revoke the canton."""

    _show(
        "assign canton",
        await run.client.post(
            "/permissions/cantones",
            json={"userId": run.user_id, "cantonIds": [run.canton_id], "permissions": {"view": True}},
        ),
    )
    if run.persona_id is None:
        print("    no --persona-id given, skipping persona steps")
    else:
        _show(
            "assign persona",
            await run.client.post(
                "/permissions/personas",
                json={
                    "userId": run.user_id,
                    "personaIds": [run.persona_id],
                    "cantonId": run.canton_id,
                    "viewSpecific": True,
                },
            ),
        )
    _show("revoke canton", await run.client.delete(f"/permissions/cantones/{run.user_id}/{run.canton_id}"))
    body = _show("persona cards after revoke", await run.client.get("/permissions/personas"))
    leftover = [card for card in body.get("cards", []) if card["user_id"] == run.user_id]
    print(f"    persona cards left for {run.user_id}: {len(leftover)}")


async def scenario_editor(run: Walkthrough) -> None:
    body = _show(
        "open editor",
        await run.client.get(
            f"/permissions/personas/{run.user_id}/candidates", params={"cantonId": run.canton_id}
        ),
    )
    print(json.dumps(body.get("candidates", [])[:5], indent=2))
    if run.persona_id is not None:
        _show(
            "toggle and save",
            await run.client.post(
                f"/permissions/personas/{run.user_id}/reconcile",
                json={"cantonId": run.canton_id, "toggles": [run.persona_id]},
            ),
        )


SCENARIOS: dict[str, Callable[[Walkthrough], Awaitable[None]]] = {
    "listing": scenario_listing,
    "cascade": scenario_cascade,
    "editor": scenario_editor,
}


async def run_selected_scenarios(scenarios: Iterable[str], args: argparse.Namespace) -> None:
    headers = {"Authorization": f"Bearer {args.token}"} if args.token else {}
    async with httpx.AsyncClient(base_url=args.base_url.rstrip("/"), headers=headers, timeout=10) as client:
        run = Walkthrough(client, args.user_id, args.canton_id, args.persona_id)
        for name in scenarios:
            print(f"== {name}")
            await SCENARIOS[name](run)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Permission admin walkthroughs")
    parser.add_argument(
        "--base-url",
        default=DEFAULT_BASE_URL,
        help="Base URL for the FastAPI service (default: %(default)s)",
    )
    parser.add_argument(
        "--token",
        default=os.environ.get("PERMISOS_TOKEN"),
        help="Admin bearer token (default: $PERMISOS_TOKEN)",
    )
    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS.keys()) + ["all"],
        default="listing",
        help="Scenario to execute",
    )
    parser.add_argument("--user-id", required=True, help="Collaborator to grant and revoke")
    parser.add_argument("--canton-id", required=True, help="Canton used by the scenarios")
    parser.add_argument("--persona-id", help="Persona inside the canton")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    scenarios = SCENARIOS.keys() if args.scenario == "all" else [args.scenario]
    asyncio.run(run_selected_scenarios(scenarios, args))


if __name__ == "__main__":
    main()
