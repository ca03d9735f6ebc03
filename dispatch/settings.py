#Purpose: Environment-driven settings for the matching core.
#Reads .env once (python-dotenv) and exposes a typed Settings object.
#Example .env:
#REDIS_URL=redis://localhost:6379/0
#NOTIFY_WEBHOOK_URL=http://localhost:8080/notify
#RATE_LIMIT_FAIL_MODE=deny
#Unset values fall back to the defaults below (no Redis = process-local rate limiting).

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from ratelimit import FailMode

from .policy import DispatchPolicy

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


@dataclass(frozen=True)
class Settings:
    redis_url: Optional[str] = None
    redis_timeout_s: float = 0.25

    notify_webhook_url: Optional[str] = None
    notify_timeout_s: float = 5.0
    notify_max_workers: int = 4
    notify_max_retries: int = 2
    notify_cap: int = 10

    rate_limit_fail_mode: FailMode = FailMode.DENY
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            redis_url=os.getenv("REDIS_URL") or None,
            redis_timeout_s=_env_float("REDIS_TIMEOUT_S", 0.25),
            notify_webhook_url=os.getenv("NOTIFY_WEBHOOK_URL") or None,
            notify_timeout_s=_env_float("NOTIFY_TIMEOUT_S", 5.0),
            notify_max_workers=_env_int("NOTIFY_MAX_WORKERS", 4),
            notify_max_retries=_env_int("NOTIFY_MAX_RETRIES", 2),
            notify_cap=_env_int("NOTIFY_CAP", 10),
            rate_limit_fail_mode=FailMode((os.getenv("RATE_LIMIT_FAIL_MODE") or "deny").lower()),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )

    def dispatch_policy(self) -> DispatchPolicy:
        policy = DispatchPolicy(
            notify_cap=self.notify_cap,
            max_workers=self.notify_max_workers,
            max_retries=self.notify_max_retries,
            send_timeout_s=self.notify_timeout_s,
        ).with_fail_mode(self.rate_limit_fail_mode)
        policy.validate()
        return policy

    def configure_logging(self) -> None:
        logging.basicConfig(
            level=getattr(logging, self.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
