from __future__ import annotations

# Runtime settings.
#
# Every setting can come from the command line; the environment only supplies
# defaults, so `VQ_MQTT_HOST=broker python -m virtual_queue.app serve` and
# `python -m virtual_queue.app serve --mqtt-host broker` are equivalent.

import argparse
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping

from .mqtt_topics import DEFAULT_NAMESPACE
from .wait_time import NEAR_FRONT_MINUTES

SMS_BACKENDS = ("console", "twilio")


@dataclass(frozen=True)
class Settings:
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    namespace: str = DEFAULT_NAMESPACE
    base_url: str = "http://localhost:5000"
    near_front_minutes: int = NEAR_FRONT_MINUTES
    pending_ttl_minutes: float | None = None
    sweep_every: float = 60.0
    sms_backend: str = "console"
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_phone_number: str | None = None
    log_level: str = "INFO"

    @property
    def pending_ttl(self) -> timedelta | None:
        if self.pending_ttl_minutes is None:
            return None
        return timedelta(minutes=self.pending_ttl_minutes)

    @classmethod
    def from_args(cls, args: argparse.Namespace, env: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            mqtt_host=args.mqtt_host,
            mqtt_port=args.mqtt_port,
            namespace=args.namespace,
            base_url=getattr(args, "base_url", cls.base_url),
            near_front_minutes=getattr(args, "near_front_minutes", cls.near_front_minutes),
            pending_ttl_minutes=getattr(args, "pending_ttl_minutes", None),
            sweep_every=getattr(args, "sweep_every", cls.sweep_every),
            sms_backend=getattr(args, "sms_backend", cls.sms_backend),
            twilio_account_sid=env.get("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=env.get("TWILIO_AUTH_TOKEN"),
            twilio_phone_number=env.get("TWILIO_PHONE_NUMBER"),
            log_level=getattr(args, "log_level", cls.log_level),
        )


def add_mqtt_args(p: argparse.ArgumentParser, env: Mapping[str, str] | None = None) -> None:
    env = os.environ if env is None else env
    p.add_argument("--mqtt-host", default=env.get("VQ_MQTT_HOST", Settings.mqtt_host))
    p.add_argument("--mqtt-port", type=int, default=int(env.get("VQ_MQTT_PORT", Settings.mqtt_port)))
    p.add_argument("--namespace", default=env.get("VQ_NAMESPACE", Settings.namespace))
    p.add_argument("--log-level", default=env.get("VQ_LOG_LEVEL", Settings.log_level))


def add_service_args(p: argparse.ArgumentParser, env: Mapping[str, str] | None = None) -> None:
    env = os.environ if env is None else env
    p.add_argument(
        "--base-url",
        default=env.get("VQ_BASE_URL", Settings.base_url),
        help="public URL used in status-tracking links",
    )
    p.add_argument("--near-front-minutes", type=int, default=Settings.near_front_minutes)
    p.add_argument(
        "--pending-ttl-minutes",
        type=float,
        default=None,
        help="drop pending entries older than this (off by default)",
    )
    p.add_argument("--sweep-every", type=float, default=Settings.sweep_every, help="seconds between TTL sweeps")
    p.add_argument(
        "--sms-backend",
        choices=SMS_BACKENDS,
        default=env.get("VQ_SMS_BACKEND", Settings.sms_backend),
    )
