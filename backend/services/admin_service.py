# services/admin_service.py
# ============================================================================
# TSF SHOP — ADMIN PRODUCT SERVICE
# ============================================================================
# List / create / update / delete over the catalog document, behind the
# x-admin-token shared secret. Authorization is checked before any store
# access.
# ============================================================================

import hmac
from typing import List, Optional

import structlog
from pydantic import ValidationError as SchemaError

from errors import ConflictError, NotFoundError, Unauthorized, ValidationError
from schemas.catalog import (
    Product,
    ProductCreate,
    ProductUpdate,
    generate_product_id,
    normalize_bool,
)
from storage.catalog_store import CatalogStore, entry_id

logger = structlog.get_logger(component="admin_service")


def _validated(data: dict) -> Product:
    try:
        return Product.model_validate(data)
    except SchemaError as e:
        raise ValidationError(str(e)) from e


class AdminProductService:
    def __init__(self, catalog: CatalogStore, admin_token: str):
        self.catalog = catalog
        self._admin_token = admin_token or ""

    def authorize(self, presented: Optional[str]) -> None:
        # an unconfigured token locks the admin API instead of opening it
        if not self._admin_token or not presented:
            raise Unauthorized()
        if not hmac.compare_digest(presented.encode(), self._admin_token.encode()):
            logger.warning("admin_token_mismatch")
            raise Unauthorized()

    async def list_products(self) -> List[Product]:
        return await self.catalog.get()

    async def create_product(self, payload: ProductCreate) -> Product:
        if not payload.name or not payload.name.strip():
            raise ValidationError("Missing name")
        if not payload.price_cents:
            raise ValidationError("Missing price_cents")

        created: dict = {}

        def mutate(entries: list) -> list:
            existing_ids = {entry_id(e) for e in entries} - {None}
            if payload.id:
                if payload.id in existing_ids:
                    raise ConflictError(f"Product id already exists: {payload.id}")
                product_id = payload.id
            else:
                product_id = generate_product_id(payload.name, existing_ids)

            data = payload.model_dump(mode="json")
            data["id"] = product_id
            data["name"] = payload.name.strip()
            # absent flags keep legacy semantics (visible, featured)
            for flag in ("is_active", "is_featured"):
                raw = getattr(payload, flag)
                data[flag] = True if raw is None else normalize_bool(raw)

            product = _validated(data)
            created["product"] = product
            return entries + [product.model_dump(mode="json")]

        await self.catalog.update(mutate)
        product = created["product"]
        logger.info("product_created", product_id=product.id, name=product.name)
        return product

    async def update_product(self, payload: ProductUpdate) -> Product:
        if not payload.id:
            raise ValidationError("Missing id")
        changes = payload.changes()
        updated: dict = {}

        def mutate(entries: list) -> list:
            for index, entry in enumerate(entries):
                if entry_id(entry) == payload.id:
                    merged = {**entry, **changes}
                    product = _validated(merged)
                    updated["product"] = product
                    # keys outside the model stay on the stored record
                    stored = {**merged, **product.model_dump(mode="json")}
                    return entries[:index] + [stored] + entries[index + 1:]
            raise NotFoundError("Product not found")

        await self.catalog.update(mutate)
        product = updated["product"]
        logger.info("product_updated", product_id=product.id, fields=sorted(changes))
        return product

    async def delete_product(self, product_id: Optional[str]) -> None:
        if not product_id:
            raise ValidationError("Missing id")

        def mutate(entries: list) -> list:
            remaining = [e for e in entries if entry_id(e) != product_id]
            if len(remaining) == len(entries):
                raise NotFoundError("Product not found")
            return remaining

        await self.catalog.update(mutate)
        logger.info("product_deleted", product_id=product_id)
