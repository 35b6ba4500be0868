"""V1 event endpoints: the subscribable allow-list and manual injection."""

from __future__ import annotations

from collections import defaultdict

from fastapi import APIRouter

from webhook_relay.api.dependencies import CallerDep, EngineDep  # noqa: TC001
from webhook_relay.api.v1.schemas import EmitEventRequest, EmitEventResponse
from webhook_relay.notifications.events import WILDCARD, EventType

router = APIRouter(tags=["events"])


@router.get("/events")
async def list_event_types() -> dict:
    """Every subscribable event type, grouped by family."""
    families: defaultdict[str, list[str]] = defaultdict(list)
    for event in EventType:
        families[event.family].append(event.value)
    return {
        "events": [e.value for e in EventType],
        "families": {family: sorted(events) for family, events in sorted(families.items())},
        "wildcards": [WILDCARD, *(f"{family}.*" for family in sorted(families))],
    }


@router.post("/events", status_code=202)
async def emit_event(body: EmitEventRequest, caller: CallerDep, engine: EngineDep) -> dict:
    """Validate an event and queue a delivery for every matching webhook."""
    attempts = await engine.dispatcher.dispatch(caller.workspace_id, body.event, body.data)
    return EmitEventResponse(event=body.event, deliveries=[a.id for a in attempts]).model_dump(
        mode="json"
    )
