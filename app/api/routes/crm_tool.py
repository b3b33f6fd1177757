"""Read-only CRM lookups for agents (`POST /tools/crm`)."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.config import get_settings
from app.models.chat import CrmToolRequest
from app.models.crm import ClientRecord
from app.services.client_repository import ClientRepository, ClientStoreError, get_client_repository

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["crm"])


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"error": message})


def _require(params: Dict[str, Any], key: str) -> Any:
    value = params.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise _bad_request(f"Missing required parameter: {key}")
    return value


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise _bad_request(f"Parameter {key} must be an integer")


def _dump(records: List[ClientRecord]) -> List[dict]:
    return [record.model_dump(mode="json") for record in records]


@router.post("/tools/crm")
async def crm_tool(
    payload: CrmToolRequest,
    repository: ClientRepository = Depends(get_client_repository),
) -> dict:
    if not payload.action:
        raise _bad_request("Missing required parameter: action")
    params = payload.params
    action = payload.action

    try:
        if action == "getClientById":
            client_id = _as_int(_require(params, "clientId"), "clientId")
            client = await repository.get_by_id(client_id)
            if client is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail={"error": f"Client with ID {client_id} not found"},
                )
            return {"client": client.model_dump(mode="json")}

        if action == "searchClientsByName":
            return {"clients": _dump(await repository.search_by_name(str(_require(params, "name"))))}

        if action == "searchClientsByEmail":
            return {"clients": _dump(await repository.search_by_email(str(_require(params, "email"))))}

        if action == "getClientsByStatus":
            return {"clients": _dump(await repository.filter_by_status(str(_require(params, "status"))))}

        if action == "getClientsWithUpcomingFollowUps":
            raw_days = params.get("days")
            days = _as_int(raw_days, "days") if raw_days is not None else get_settings().crm_default_follow_up_days
            start = datetime.now(timezone.utc)
            return {"clients": _dump(await repository.filter_by_follow_up_window(start, start + timedelta(days=days)))}
    except ClientStoreError as exc:
        LOGGER.error("Error processing CRM tool request action=%s: %s", action, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "CRM store unavailable"},
        ) from exc

    raise _bad_request(f"Unsupported action: {action}")
