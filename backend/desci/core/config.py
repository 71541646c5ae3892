from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    PORT: int = 3000
    SERVER_URL: str = "http://127.0.0.1:3000"
    LOG_DIR: str = "logs"

    MONGODB_URI: str = "mongodb://localhost:27017/desci"
    MONGODB_DB: str = "desci"
    STORAGE_BACKEND: str = "mongo"  # mongo | memory

    LEDGER_ENABLED: bool = True
    HEDERA_NETWORK: str = "testnet"
    HEDERA_MIRROR_URL: str = "https://testnet.mirrornode.hedera.com"
    OPERATOR_ID: str | None = None
    OPERATOR_ADDRESS: str | None = None
    OPERATOR_KEY: str | None = None
    MAIN_TOPIC_ID: str | None = None

    PLATFORM_TOKEN_NAME: str | None = None
    PLATFORM_TOKEN_SYMBOL: str | None = None
    PLATFORM_TOKEN_ID: str | None = None
    INITIAL_SUPPLY: int = 100000
    TOKEN_DECIMALS: int = 2

    PLATFORM_FEE_PERCENT: float = 5.0
    PAYMENT_MODE: str = "simulated"  # simulated | ledger
    DEFAULT_FEE: float = 10.0
    SEARCH_LIMIT: int = 5

    MAX_UPLOAD_BYTES: int = 30 * 1024 * 1024
    MAX_BODY_BYTES: int = 50 * 1024 * 1024

    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    VLLM_BASE_URL: str = "http://localhost:8001/v1"
    VLLM_MODEL: str = "unsloth/Qwen3-1.7B-unsloth-bnb-4bit"
    USE_VLLM_FALLBACK: bool = False

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    class Config:
        env_file = ".env"


settings = Settings()
