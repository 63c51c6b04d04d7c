# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Customer and hub seeding from a JSON file.

Format:
    {"customers": [{"name": ..., "email": ..., "time_zone_id": ...,
                    "hubs": [{"bridge_id": ..., "access_token": ...}]}]}

Seeding only inserts. A hub that already exists keeps whatever the token
refresh loop has written to it since.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .hue_model import parse_timestamp
from .models import Customer, Hub, utcnow
from .send_time import parse_time_list
from .store import Store

logger = logging.getLogger(__name__)


@dataclass
class HubSeed:
    bridge_id: str
    application_key: str = ""
    access_token: str = ""
    refresh_token: str = ""
    token_expires_at: datetime | None = None    # None = expired, refreshed on first check

    @classmethod
    def from_dict(cls, d: dict) -> "HubSeed":
        return cls(
            bridge_id=d["bridge_id"],
            application_key=d.get("application_key", ""),
            access_token=d.get("access_token", ""),
            refresh_token=d.get("refresh_token", ""),
            token_expires_at=parse_timestamp(d.get("token_expires_at")),
        )

    def validate(self):
        if not self.bridge_id or not self.bridge_id.strip():
            raise ValueError("Hub entry has an empty bridge_id")

    def to_hub(self, customer_id: int) -> Hub:
        return Hub(
            bridge_id=self.bridge_id,
            customer_id=customer_id,
            application_key=self.application_key,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_expires_at=self.token_expires_at or utcnow(),
        )


@dataclass
class CustomerSeed:
    name: str
    email: str
    cc_emails: str = ""
    bcc_emails: str = ""
    time_zone_id: str = "UTC"
    send_times_local: str = ""
    hubs: list[HubSeed] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> "CustomerSeed":
        return cls(
            name=d["name"],
            email=d["email"],
            cc_emails=d.get("cc_emails", ""),
            bcc_emails=d.get("bcc_emails", ""),
            time_zone_id=d.get("time_zone_id", "UTC"),
            send_times_local=d.get("send_times_local", ""),
            hubs=[HubSeed.from_dict(h) for h in d.get("hubs", [])],
        )

    def validate(self):
        if not self.name or not self.email:
            raise ValueError("Customer entry needs a name and an email")
        try:
            ZoneInfo(self.time_zone_id)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"Customer {self.name!r} has an unknown time_zone_id: {self.time_zone_id!r}")
        if self.send_times_local.strip() and not parse_time_list(self.send_times_local):
            raise ValueError(
                f"Customer {self.name!r} has no valid send_times_local: "
                f"{self.send_times_local!r}")
        for hub in self.hubs:
            hub.validate()


def load_customer_configs(customers_file: str) -> list[CustomerSeed]:
    """Read and validate the customers file. A missing or broken file seeds nothing."""
    path = Path(customers_file)
    if not path.exists():
        logger.info("No customers file at %s, skipping seeding", path)
        return []

    try:
        data = json.loads(path.read_text())
        customers = []
        for d in data.get("customers", []):
            customer = CustomerSeed.from_dict(d)
            customer.validate()
            customers.append(customer)
    except Exception:
        logger.exception("Failed to load %s, skipping seeding", path)
        return []

    logger.info("Loaded %d customer(s) from %s", len(customers), path)
    return customers


def seed_store(store: Store, customers: list[CustomerSeed]) -> tuple[int, int]:
    """Insert customers and hubs that do not exist yet.

    Returns (customers_created, hubs_created).
    """
    customers_created = hubs_created = 0
    with store.session() as db:
        for seed in customers:
            customer = db.find_customer(seed.name, seed.email)
            if customer is None:
                customer = db.add_customer(Customer(
                    name=seed.name,
                    email=seed.email,
                    cc_emails=seed.cc_emails,
                    bcc_emails=seed.bcc_emails,
                    time_zone_id=seed.time_zone_id,
                    send_times_local=seed.send_times_local,
                ))
                customers_created += 1
                logger.info("Created customer: %s (%s)", seed.name, seed.email)

            for hub_seed in seed.hubs:
                existing = db.find_hub_by_bridge_id(hub_seed.bridge_id)
                if existing is not None:
                    if existing.customer_id != customer.id:
                        logger.warning("[%s] Hub already belongs to customer %s, not reassigning",
                                       hub_seed.bridge_id, existing.customer_id)
                    continue
                db.add_hub(hub_seed.to_hub(customer.id))
                hubs_created += 1
                logger.info("[%s] Created hub for customer %s", hub_seed.bridge_id, seed.name)

    return customers_created, hubs_created
