"""pm_session REST endpoints (operational glue over the shared SessionClient).

GET  /session           — lifecycle state, wallet, session key, channel
POST /session/connect   — open + authenticate
GET  /session/balances  — fresh ledger query (raw + display amounts)
POST /session/channel   — ensure a funded channel exists
GET  /session/channel   — re-read the channel list from the node
"""

import time
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from config.settings import settings
from src.pm_common.response import ApiResponse, success_response
from src.pm_common.units import raw_to_display
from src.pm_session.application.client import SessionClient
from src.pm_session.application.service import get_session_client

router = APIRouter(prefix="/session", tags=["session"])

Client = Annotated[SessionClient, Depends(get_session_client)]


def _status(client: SessionClient) -> dict[str, object]:
    channel = client.channels.channel
    session = client.session
    return {
        "state": client.state.value,
        "wallet": client.address,
        "session_key": session.session_key_address if session else None,
        "expires_at": session.params.expires_at if session else None,
        "expired": session.is_expired(int(time.time())) if session else None,
        "channel_id": channel.channel_id,
        "channel_status": channel.status.value,
        "channel_version": channel.off_chain_version,
    }


@router.get("")
async def session_status(request: Request, client: Client) -> ApiResponse:
    resp = success_response(_status(client))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/connect")
async def connect(request: Request, client: Client) -> ApiResponse:
    await client.connect()
    resp = success_response(_status(client))
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/balances")
async def balances(request: Request, client: Client) -> ApiResponse:
    snapshot = await client.query_balances()
    data = {
        asset: {
            "raw": amount,
            "display": raw_to_display(amount, client.assets.decimals(asset), asset),
        }
        for asset, amount in snapshot.balances.items()
    }
    resp = success_response({"observed_at": snapshot.observed_at.isoformat(), "balances": data})
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/channel")
async def ensure_channel(request: Request, client: Client) -> ApiResponse:
    channel_id = await client.ensure_channel()
    resp = success_response(
        {"channel_id": channel_id, "deposit_amount": settings.CHANNEL_DEPOSIT_AMOUNT}
    )
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/channel")
async def channel_status(request: Request, client: Client) -> ApiResponse:
    channel = await client.get_channels()
    resp = success_response(
        {
            "channel_id": channel.channel_id,
            "status": channel.status.value,
            "version": channel.off_chain_version,
        }
    )
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
