# diploma_app/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    RPC_URL: str = "http://127.0.0.1:8545"
    # when set, the wallet signs locally with this key instead of node-managed accounts
    WALLET_PK: str | None = None

    # optional auto-bind at startup
    CONTRACT_ADDRESS: str | None = None
    CONTRACT_VARIANT: str = "erc721"

    TARGET_CHAIN_ID: int = 11155111
    TARGET_CHAIN_NAME: str = "Ethereum Sepolia"
    TARGET_CHAIN_RPC_URL: str = "https://rpc.sepolia.org"
    TARGET_CHAIN_EXPLORER_URL: str = "https://sepolia.etherscan.io"
    NATIVE_CURRENCY_NAME: str = "SepoliaETH"
    NATIVE_CURRENCY_SYMBOL: str = "ETH"
    NATIVE_CURRENCY_DECIMALS: int = 18

    IPFS_GATEWAY: str = "https://ipfs.io/ipfs/"
    DEFAULT_REVOKE_REASON: str = "revoked"
    # seconds; None waits for inclusion indefinitely
    RECEIPT_TIMEOUT: float | None = None
    WALLET_POLL_SECONDS: int = 5
    LOG_LEVEL: str = "INFO"
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    PINATA_JWT: str | None = None
    PINATA_API_KEY: str | None = None
    PINATA_API_SECRET: str | None = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
