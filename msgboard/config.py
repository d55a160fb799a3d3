import os


# Placeholder shipped for local runs; any real deployment must override it.
DEFAULT_ACCESS_KEY = "c29NZVN1cGVSYW5kb21BbmRTM2NSM3RLM3k="


class Settings:
    def __init__(self, **overrides) -> None:
        self.HOST: str = os.getenv("HOST", "0.0.0.0")
        self.PORT: int = int(os.getenv("PORT", "8081"))
        self.ACCESS_KEY: str = os.getenv("ACCESS_KEY", DEFAULT_ACCESS_KEY)
        # No default datastore: requests fail with 500 until one is configured
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "")
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

        self.REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "5"))
        self.SHUTDOWN_GRACE_PERIOD: float = float(os.getenv("SHUTDOWN_GRACE_PERIOD", "30"))
        self.KEEP_ALIVE_TIMEOUT: int = int(os.getenv("KEEP_ALIVE_TIMEOUT", "15"))

        self.DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
        self.DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "0"))
        self.DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "180"))

        for name, value in overrides.items():
            if not hasattr(self, name):
                raise TypeError(f"unknown setting: {name}")
            if value is not None:
                setattr(self, name, value)
        self.LOG_LEVEL = self.LOG_LEVEL.upper()
