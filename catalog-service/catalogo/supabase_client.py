import os
from functools import partial
from typing import Any, Callable, Optional

from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from .readiness import ReadinessGate

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
PROPERTIES_TABLE = os.getenv("PROPERTIES_TABLE", "properties")
INQUIRIES_TABLE = os.getenv("INQUIRIES_TABLE", "inquiries")
AGENTS_TABLE = os.getenv("AGENTS_TABLE", "agents")
IMAGES_BUCKET = os.getenv("IMAGES_BUCKET", "property-images")


class ClientSlot:
    """Well-known place a client factory gets attached to once credentials exist."""

    def __init__(self):
        self._factory: Optional[Callable[[], Any]] = None

    def attach(self, factory: Callable[[], Any]) -> None:
        self._factory = factory

    def __call__(self) -> Optional[Callable[[], Any]]:
        return self._factory


def supabase_factory(url: str | None = SUPABASE_URL, key: str | None = SUPABASE_KEY):
    if not url or not key:
        return None
    return partial(acreate_client, url, key)


async def new_auth_client(url: str | None = SUPABASE_URL, key: str | None = SUPABASE_KEY) -> AsyncClient:
    # isolated client: signing a user in must not swap the shared client's auth header
    options = AsyncClientOptions(persist_session=False, auto_refresh_token=False)
    return await acreate_client(url, key, options=options)


async def probe_properties(client) -> None:
    await client.table(PROPERTIES_TABLE).select("id").limit(1).execute()


def build_gate(slot: ClientSlot, **kwargs) -> ReadinessGate:
    return ReadinessGate(slot, probe=probe_properties, **kwargs)
