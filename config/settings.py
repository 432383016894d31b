from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Clearing node (defaults match the public sandbox)
    CLEARNODE_URL: str = "wss://clearnet-sandbox.yellow.com/ws"
    WS_PING_INTERVAL: float = 20.0
    WS_PING_TIMEOUT: float = 60.0

    # Session — APPLICATION_NAME is also the EIP-712 domain name of the auth policy
    APPLICATION_NAME: str = "Yellow"
    SESSION_SCOPE: str = "prediction.trading"
    SESSION_TTL_SECONDS: int = 3600
    SESSION_ALLOWANCE_ASSET: str = "ytest.usd"
    SESSION_ALLOWANCE_AMOUNT: int = 1_000_000_000  # raw units

    # Wallet — no usable default, MUST be set in .env before connecting
    WALLET_PRIVATE_KEY: str = ""

    # Chain / custody
    RPC_URL: str = "https://sepolia.base.org"
    CHAIN_ID: int = 84532
    CUSTODY_ADDRESS: str = "0x019B65A265EB3363822f2752141b3dF16131b262"
    ADJUDICATOR_ADDRESS: str = "0x7c7ccbc98469190849BCC6c926307794fDfB11F2"
    TOKEN_ADDRESS: str = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
    CHANNEL_DEPOSIT_AMOUNT: int = 20_000_000  # raw units (20 tokens at 6 decimals)

    # Ledger asset
    ASSET_SYMBOL: str = "ytest.usd"
    ASSET_DECIMALS: int = 6

    # Timeouts (seconds): short for queries, long for chain-confirmed operations
    CONNECT_TIMEOUT_SECONDS: float = 10.0
    QUERY_TIMEOUT_SECONDS: float = 10.0
    TRANSFER_TIMEOUT_SECONDS: float = 30.0
    CHAIN_TIMEOUT_SECONDS: float = 180.0

    # App
    APP_NAME: str = "Prediction Market Settlement Client"
    DEBUG: bool = False  # Safe default for production; set DEBUG=True in .env for local dev


settings = Settings()
