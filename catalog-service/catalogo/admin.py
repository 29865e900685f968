import inspect
import logging
import os
import re
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Optional

from postgrest.exceptions import APIError

from .errors import CatalogError, InvalidFilter, NotFound, RemoteQueryFailed
from .query_builder import ComposedQuery, Predicate, QueryBuilder, fail, ok
from .readiness import ReadinessGate
from .schemas import InquiryIn, PropertyIn, PropertyUpdate, Result, SortKey
from .supabase_client import IMAGES_BUCKET, INQUIRIES_TABLE, PROPERTIES_TABLE

logger = logging.getLogger(__name__)

# PEN per USD; price_usd is stored at write time, never computed on read
USD_EXCHANGE_RATE = float(os.getenv("USD_EXCHANGE_RATE", "3.76"))

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: str) -> datetime:
    """ISO timestamp as returned by PostgREST; fractions of any length, `Z` suffix."""
    text = value.replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def price_in_usd(price: Optional[float]) -> Optional[int]:
    if price is None:
        return None
    return round(price / USD_EXCHANGE_RATE)


class AdminService:
    """Back-office CRUD over one listings table and one image bucket."""

    def __init__(
        self,
        gate: ReadinessGate,
        table: str = PROPERTIES_TABLE,
        bucket: str = IMAGES_BUCKET,
        inquiries_table: str = INQUIRIES_TABLE,
    ):
        self.gate = gate
        self.table = table
        self.bucket = bucket
        self.inquiries_table = inquiries_table
        self.reader = QueryBuilder(gate)

    async def _write(self, action: str, build):
        client = await self.gate.wait_for_ready()
        try:
            return await build(client).execute()
        except APIError as e:
            logger.error("%s failed: %s", action, e.message)
            raise RemoteQueryFailed(e.message or str(e)) from e
        except Exception as e:
            logger.error("%s failed: %s", action, e)
            raise RemoteQueryFailed(str(e)) from e

    async def list_properties(self) -> Result:
        query = ComposedQuery(table=self.table, order=SortKey())
        try:
            response = await self.reader.execute(query)
        except RemoteQueryFailed as e:
            return fail(e)
        return ok(response.data)

    async def create_property(self, payload: PropertyIn) -> Result:
        row = payload.model_dump(exclude_none=True)
        row["price_usd"] = price_in_usd(payload.price)
        row["created_at"] = row["updated_at"] = _now()
        try:
            response = await self._write(
                "Create property", lambda c: c.table(self.table).insert(row)
            )
        except CatalogError as e:
            return fail(e)
        logger.info("Property created: %s", row.get("title"))
        return ok(response.data[0] if response.data else row)

    async def update_property(self, property_id: Any, payload: PropertyUpdate) -> Result:
        changes = payload.model_dump(exclude_unset=True)
        if "price" in changes:
            changes["price_usd"] = price_in_usd(changes["price"])
        changes["updated_at"] = _now()
        try:
            response = await self._write(
                "Update property",
                lambda c: c.table(self.table).update(changes).eq("id", property_id),
            )
            if not response.data:
                raise NotFound(f"Propiedad {property_id} no encontrada")
        except CatalogError as e:
            return fail(e)
        return ok(response.data[0])

    async def delete_property(self, property_id: Any) -> Result:
        try:
            response = await self._write(
                "Delete property",
                lambda c: c.table(self.table).delete().eq("id", property_id),
            )
            if not response.data:
                raise NotFound(f"Propiedad {property_id} no encontrada")
        except CatalogError as e:
            return fail(e)
        logger.info("Property %s deleted", property_id)
        return ok()

    async def dashboard_stats(self) -> Result:
        try:
            total = await self.reader.count(self.table)
            active = await self.reader.count(self.table, Predicate("eq", "status", "active"))
            featured = await self.reader.count(self.table, Predicate("eq", "featured", True))
            prices = await self.reader.execute(ComposedQuery(table=self.table, columns="price"))
            inquiries = await self.reader.execute(
                ComposedQuery(table=self.inquiries_table, columns="id, created_at")
            )
        except RemoteQueryFailed as e:
            return fail(e)

        today = datetime.now(timezone.utc).date()
        new_inquiries = 0
        for inquiry in inquiries.data or []:
            created = inquiry.get("created_at")
            if created and parse_timestamp(created).date() == today:
                new_inquiries += 1

        return ok({
            "total": total,
            "active": active,
            "featured": featured,
            "totalValue": sum(row.get("price") or 0 for row in prices.data or []),
            "newInquiries": new_inquiries,
        })

    async def list_inquiries(self, status: Optional[str] = None, property_id: Any = None) -> Result:
        return await self.reader.get_inquiries(status=status, property_id=property_id)

    async def create_inquiry(self, payload: InquiryIn) -> Result:
        row = payload.model_dump(exclude_none=True)
        row["status"] = "new"
        try:
            response = await self._write(
                "Create inquiry", lambda c: c.table(self.inquiries_table).insert(row)
            )
        except CatalogError as e:
            return fail(e)
        return ok(response.data[0] if response.data else row)

    async def mark_inquiry(self, inquiry_id: Any, status: str) -> Result:
        try:
            response = await self._write(
                "Update inquiry",
                lambda c: c.table(self.inquiries_table).update({"status": status}).eq("id", inquiry_id),
            )
            if not response.data:
                raise NotFound(f"Consulta {inquiry_id} no encontrada")
        except CatalogError as e:
            return fail(e)
        return ok(response.data[0])

    async def upload_image(
        self, filename: str, content: bytes, content_type: str, folder: str = "properties"
    ) -> Result:
        if content_type not in ALLOWED_IMAGE_TYPES:
            return fail(InvalidFilter(f"Tipo de archivo no permitido: {content_type}"))
        if len(content) > MAX_UPLOAD_BYTES:
            return fail(InvalidFilter("El archivo supera el tamaño máximo de 5MB"))

        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else content_type.split("/")[-1]
        path = f"{folder}/{int(time.time() * 1000)}-{secrets.token_hex(6)}.{ext}"

        client = await self.gate.wait_for_ready()
        bucket = client.storage.from_(self.bucket)
        try:
            await bucket.upload(path, content, {"content-type": content_type})
            url = bucket.get_public_url(path)
            if inspect.isawaitable(url):
                url = await url
        except Exception as e:
            logger.error("Image upload failed: %s", e)
            return fail(RemoteQueryFailed(str(e)))
        return ok({"url": url, "path": path})

    async def delete_image(self, path: str) -> Result:
        client = await self.gate.wait_for_ready()
        try:
            await client.storage.from_(self.bucket).remove([path])
        except Exception as e:
            logger.error("Image delete failed: %s", e)
            return fail(RemoteQueryFailed(str(e)))
        return ok()
