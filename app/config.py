import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./payments.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Gateway: "payos" talks to the real API, "simulated" uses the local mock
GATEWAY_MODE = os.getenv("GATEWAY_MODE", "simulated")
PAYOS_API_URL = os.getenv("PAYOS_API_URL", "https://api-merchant.payos.vn")
PAYOS_CLIENT_ID = os.getenv("PAYOS_CLIENT_ID")
PAYOS_API_KEY = os.getenv("PAYOS_API_KEY")
PAYOS_CHECKSUM_KEY = os.getenv("PAYOS_CHECKSUM_KEY")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

# Reconciliation poller
POLLER_ENABLED = os.getenv("POLLER_ENABLED", "true").lower() == "true"
SYNC_INTERVAL_SECONDS = float(os.getenv("SYNC_INTERVAL_SECONDS", "4"))
SWEEP_PAGE_SIZE = int(os.getenv("SWEEP_PAGE_SIZE", "25"))
SWEEP_CONCURRENCY = int(os.getenv("SWEEP_CONCURRENCY", "4"))
PRIORITY_SET_CAPACITY = 5
PRIORITY_CHECK_DELAY_SECONDS = float(os.getenv("PRIORITY_CHECK_DELAY_SECONDS", "1"))
PRIORITY_CHECK_COOLDOWN_SECONDS = float(os.getenv("PRIORITY_CHECK_COOLDOWN_SECONDS", "30"))
RECOVERY_EVERY_N_TICKS = int(os.getenv("RECOVERY_EVERY_N_TICKS", "15"))

# Circuit breaker
BREAKER_FAILURE_THRESHOLD = 5
BREAKER_COOLDOWN_SECONDS = 30.0

# Orphan recovery
RECOVERY_BATCH_LIMIT = int(os.getenv("RECOVERY_BATCH_LIMIT", "100"))
RECOVERY_MATCH_WINDOW_MINUTES = int(os.getenv("RECOVERY_MATCH_WINDOW_MINUTES", "10"))
