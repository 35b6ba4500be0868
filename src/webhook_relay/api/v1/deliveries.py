"""V1 delivery endpoints: attempt history, replay and replay lineage."""

from __future__ import annotations

from fastapi import APIRouter, Query

from webhook_relay.api.dependencies import CallerDep, EngineDep  # noqa: TC001
from webhook_relay.api.v1.schemas import DeliveryResponse, ReplayEligibilityResponse

router = APIRouter(tags=["deliveries"])


def _delivery_resp(attempt: object) -> dict:
    return DeliveryResponse.model_validate(attempt).model_dump(mode="json")


@router.get("/deliveries")
async def list_deliveries(
    caller: CallerDep,
    engine: EngineDep,
    webhook_id: str | None = None,
    status: str | None = None,
    event_type: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
) -> dict:
    """Delivery attempts of the workspace, newest first."""
    attempts = (
        await engine.admin.list_deliveries(
            caller,
            webhook_id=webhook_id,
            status=status,
            event_type=event_type,
            page=page,
            page_size=page_size,
        )
    ).unwrap()
    return {
        "items": [_delivery_resp(a) for a in attempts],
        "page": page,
        "page_size": page_size,
    }


@router.get("/deliveries/{delivery_id}")
async def get_delivery(delivery_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """Get one delivery attempt."""
    return _delivery_resp((await engine.admin.get_delivery(caller, delivery_id)).unwrap())


@router.post("/deliveries/{delivery_id}/replay", status_code=202)
async def replay_delivery(delivery_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """Queue a finished delivery again, signed with the current secret."""
    return _delivery_resp((await engine.admin.replay_delivery(caller, delivery_id)).unwrap())


@router.get("/deliveries/{delivery_id}/replayable")
async def can_replay(delivery_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """Whether the delivery can be replayed now, and why not."""
    eligibility = (await engine.admin.can_replay(caller, delivery_id)).unwrap()
    return ReplayEligibilityResponse.model_validate(eligibility).model_dump(mode="json")


@router.get("/deliveries/{delivery_id}/replays")
async def replay_history(delivery_id: str, caller: CallerDep, engine: EngineDep) -> list[dict]:
    """Replays queued directly from this delivery, newest first."""
    replays = (await engine.admin.replay_history(caller, delivery_id)).unwrap()
    return [_delivery_resp(a) for a in replays]


@router.get("/deliveries/{delivery_id}/chain")
async def replay_chain(delivery_id: str, caller: CallerDep, engine: EngineDep) -> list[dict]:
    """The original delivery followed by every replay descended from it."""
    chain = (await engine.admin.replay_chain(caller, delivery_id)).unwrap()
    return [_delivery_resp(a) for a in chain]
