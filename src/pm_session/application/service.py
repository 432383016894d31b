# src/pm_session/application/service.py
"""Process-wide SessionClient for the HTTP surface, built from settings on first use."""

from config.settings import settings
from src.pm_channel.domain.models import ChannelConfig
from src.pm_channel.infrastructure.web3_gateway import Web3OnChainGateway
from src.pm_ledger.domain.models import AssetRegistry
from src.pm_session.application.client import SessionClient
from src.pm_session.domain.models import SessionConfig
from src.pm_session.infrastructure.signers import LocalWalletSigner
from src.pm_session.infrastructure.websocket_transport import WebSocketTransport

_client: SessionClient | None = None


def build_session_client() -> SessionClient:
    wallet = LocalWalletSigner(settings.WALLET_PRIVATE_KEY)
    transport = WebSocketTransport(
        settings.CLEARNODE_URL,
        ping_interval=settings.WS_PING_INTERVAL,
        ping_timeout=settings.WS_PING_TIMEOUT,
        open_timeout=settings.CONNECT_TIMEOUT_SECONDS,
    )
    onchain = Web3OnChainGateway(settings.RPC_URL, wallet.private_key, settings.CHAIN_ID)
    assets = AssetRegistry(default_decimals=settings.ASSET_DECIMALS)
    assets.register(settings.ASSET_SYMBOL, settings.ASSET_DECIMALS)
    return SessionClient(
        transport,
        wallet,
        onchain=onchain,
        config=SessionConfig.from_settings(settings),
        channel_config=ChannelConfig.from_settings(settings),
        assets=assets,
    )


def get_session_client() -> SessionClient:
    global _client  # noqa: PLW0603
    if _client is None:
        _client = build_session_client()
    return _client


async def close_session_client() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.disconnect()
        _client = None
