"""
Inventory Ledger - products, shipments and production logging.

Stock changes go through two stored procedures, each one transaction:

    create_shipment        shipment + items + stock decrements
    log_production_action  log row + stock increment/decrement

Writers apply an optimistic change to the cached catalog first. When the
procedure fails the catalog is re-fetched from the store (full refresh,
no fine-grained undo) and the error is raised to the caller. Stock is
clamped at zero on both sides.
"""

import copy
import logging
import threading
import time
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import psycopg2
from psycopg2.extras import Json

from mutum.models.domain import (
    ActionType,
    Caller,
    Product,
    ProductionRequest,
    RequestStatus,
    Shipment,
    ShipmentItem,
    ShipmentStatus,
)
from mutum.services.exceptions import BackendError, NotFoundError, ValidationError
from mutum.services.goals import GoalTracker, get_goal_tracker, variant_quantities
from mutum.services.payroll import FinanceService, get_finance_service
from mutum.utils.config import settings
from mutum.utils.database import db
from mutum.utils.realtime import RealtimeChannel
from mutum.utils.storage import (
    ObjectStorage,
    StorageError,
    UploadedFile,
    get_object_storage,
    unique_object_path,
)

logger = logging.getLogger(__name__)

PRODUCT_COLUMNS = """
    id, name, technical_name, images, stock_quantity,
    monthly_production_goal, variation_data, is_visible
"""


class ProductCatalog:
    """
    Cached product collection shared by inventory views.

    The cache is kept current by a realtime watch when one is running
    (see start_watching); otherwise entries older than
    PRODUCT_CACHE_SECONDS are re-fetched on the next read. A lookup that
    misses always re-fetches once before giving up, so products created
    elsewhere are found without a restart.

    Route handlers run in a thread pool, so every read and write of the
    cache goes through one re-entrant lock.
    """

    def __init__(self, max_age: Optional[float] = None):
        self._products: Dict[str, Product] = {}
        self._order: List[str] = []
        self._lock = threading.RLock()
        self._fetched_at = 0.0
        self.max_age = settings.PRODUCT_CACHE_SECONDS if max_age is None else max_age
        self.loaded = False
        self.watching = False
        self._stop = threading.Event()
        self._watch_thread: Optional[threading.Thread] = None

    def refresh(self) -> List[Product]:
        """Replace the cache with the store's current products"""
        try:
            rows = db.execute_query(
                f"SELECT {PRODUCT_COLUMNS} FROM products ORDER BY created_at ASC"
            )
        except psycopg2.Error as e:
            logger.error(f"Error fetching products: {e}")
            raise BackendError("Erro ao carregar produtos.", e)

        products = [Product(**row) for row in rows]
        with self._lock:
            self._products = {str(p.id): p for p in products}
            self._order = [str(p.id) for p in products]
            self._fetched_at = time.monotonic()
            self.loaded = True
        return products

    @property
    def products(self) -> List[Product]:
        with self._lock:
            return [self._products[pid] for pid in self._order if pid in self._products]

    @property
    def stale(self) -> bool:
        if not self.loaded:
            return True
        if self.watching:
            return False
        return time.monotonic() - self._fetched_at > self.max_age

    def get(self, product_id) -> Product:
        key = str(product_id)
        with self._lock:
            if self.stale:
                self.refresh()
            product = self._products.get(key)
            if product is None:
                self.refresh()
                product = self._products.get(key)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def in_stock(self) -> List[Product]:
        return [p for p in self.products if p.stock_quantity > 0]

    def snapshot(self, product_ids: Optional[Iterable] = None) -> Dict[str, Product]:
        """Copy of the cached entries for product_ids (all products when omitted)"""
        with self._lock:
            if product_ids is None:
                return copy.deepcopy(self._products)
            keys = {str(pid) for pid in product_ids}
            return {k: copy.deepcopy(p) for k, p in self._products.items() if k in keys}

    def restore(self, snapshot: Dict[str, Product]):
        """Put back the snapshotted entries, leaving other products untouched"""
        with self._lock:
            self._products.update(snapshot)

    def apply_stock_delta(self, product_id, delta: int) -> int:
        """Optimistically change cached stock, clamped at zero"""
        with self._lock:
            product = self.get(product_id)
            new_stock = max(0, product.stock_quantity + delta)
            self._products[str(product_id)] = product.model_copy(update={"stock_quantity": new_stock})
            return new_stock

    def reconcile(self, snapshot: Dict[str, Product]):
        """Re-fetch after a failed write; fall back to the snapshot if that fails too"""
        try:
            self.refresh()
        except BackendError:
            logger.warning("Re-fetch after failed write failed; restoring local snapshot")
            self.restore(snapshot)

    def watch(self) -> RealtimeChannel:
        """Re-fetch the whole catalog whenever a product row changes"""
        return RealtimeChannel("products", self.refresh).subscribe()

    def start_watching(self):
        """Run the realtime watch in a background thread until stop_watching()"""
        if self._watch_thread is not None and self._watch_thread.is_alive():
            return
        self._stop.clear()
        self._watch_thread = threading.Thread(
            target=self._watch_loop, name="product-catalog-watch", daemon=True
        )
        self._watch_thread.start()

    def stop_watching(self, timeout: float = 5.0):
        self._stop.set()
        if self._watch_thread is not None:
            self._watch_thread.join(timeout)
            self._watch_thread = None

    def _watch_loop(self):
        try:
            channel = self.watch()
        except psycopg2.Error as e:
            logger.warning(f"Product realtime watch unavailable, falling back to cache expiry: {e}")
            return

        try:
            self.refresh()
            self.watching = True
            while not self._stop.is_set():
                channel.poll()
        except (psycopg2.Error, BackendError) as e:
            logger.warning(f"Product realtime watch stopped: {e}")
        finally:
            self.watching = False
            channel.unsubscribe()


def clamp_selection(product: Product, current: int, delta: int) -> int:
    """Quantity picked for a shipment, kept within [0, stock]"""
    return max(0, min(product.stock_quantity, current + delta))


def merge_items(items: Iterable[Union[ShipmentItem, Tuple[Any, int], Dict[str, Any]]]) -> List[ShipmentItem]:
    """Normalise item input and sum repeated products"""
    totals: Dict[str, int] = {}
    for item in items:
        if isinstance(item, ShipmentItem):
            product_id, quantity = str(item.product_id), item.quantity
        elif isinstance(item, dict):
            product_id, quantity = str(item["product_id"]), item["quantity"]
        else:
            product_id, quantity = str(item[0]), item[1]
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError("Shipment quantities must be whole numbers >= 1")
        totals[product_id] = totals.get(product_id, 0) + quantity
    return [ShipmentItem(product_id=pid, quantity=qty) for pid, qty in totals.items()]


class InventoryLedger:
    """Stock-changing operations with optimistic update and re-fetch on failure"""

    def __init__(
        self,
        catalog: Optional[ProductCatalog] = None,
        goals: Optional[GoalTracker] = None,
        finance: Optional[FinanceService] = None,
        storage: Optional[ObjectStorage] = None,
    ):
        self.catalog = catalog or get_product_catalog()
        self.goals = goals or get_goal_tracker()
        self.finance = finance or get_finance_service()
        self.storage = storage or get_object_storage()

    def _upload_evidence(self, prefix: str, upload: Optional[UploadedFile]) -> Optional[str]:
        if upload is None:
            return None
        try:
            return self.storage.upload(
                settings.EVIDENCE_BUCKET, unique_object_path(prefix, upload.filename), upload.data
            )
        except StorageError as e:
            raise BackendError("Erro ao enviar foto.", e)

    def create_shipment(
        self,
        description: Optional[str],
        expected_arrival_date: date,
        items: Iterable,
        voucher: Optional[UploadedFile] = None,
        package: Optional[UploadedFile] = None,
    ) -> Dict[str, Any]:
        """
        Record a shipment and decrement stock for its items, atomically.

        Photos are uploaded first; if the transaction then fails they stay
        in storage.

        Returns:
            Row returned by create_shipment (contains the shipment id)
        """
        lines = merge_items(items)
        if not lines:
            raise ValidationError("A shipment needs at least one item")
        if expected_arrival_date is None:
            raise ValidationError("Expected arrival date is required")
        for line in lines:
            self.catalog.get(line.product_id)

        voucher_url = self._upload_evidence("vouchers", voucher)
        package_url = self._upload_evidence("packages", package)

        snapshot = self.catalog.snapshot(line.product_id for line in lines)
        for line in lines:
            self.catalog.apply_stock_delta(line.product_id, -line.quantity)

        try:
            rows = db.call_procedure("create_shipment", {
                "p_description": description,
                "p_voucher_url": voucher_url,
                "p_package_url": package_url,
                "p_expected_arrival_date": expected_arrival_date,
                "p_items": Json([
                    {"product_id": str(line.product_id), "quantity": line.quantity} for line in lines
                ]),
            })
        except psycopg2.Error as e:
            logger.error(f"Error submitting shipment: {e}")
            self.catalog.reconcile(snapshot)
            raise BackendError("Erro ao enviar. Verifique sua conexão e tente novamente.", e)

        result = rows[0] if rows else {}
        logger.info(f"Created shipment {result.get('shipment_id')} with {len(lines)} products")
        return result

    def labor_cost_for(self, user_id) -> Decimal:
        """Current production rate of a worker paid by production, else 0"""
        worker = self.finance.get_worker(str(user_id))
        if worker is None or not worker.active or not worker.payment_type.includes_production:
            return Decimal("0")
        return worker.production_rate

    def log_production_action(
        self,
        caller: Caller,
        product_id,
        action_type: Union[ActionType, str],
        quantity: int,
        description: Optional[str] = None,
        image: Optional[UploadedFile] = None,
        expected_arrival_date: Optional[date] = None,
        per_variant: Optional[Dict[str, int]] = None,
    ) -> Dict[str, Any]:
        """
        Log produced / sent / problem activity for a product.

        produced increments stock and snapshots the worker's rate as
        unit_labor_cost; sent decrements stock; problem changes nothing,
        records quantity 0 and needs a description.
        """
        if caller.user_id is None:
            raise ValidationError("A signed-in user is required")
        action = ActionType(action_type)
        product = self.catalog.get(product_id)

        if action == ActionType.PROBLEM:
            if not description or not description.strip():
                raise ValidationError("Describe the problem")
            quantity, delta = 0, 0
        else:
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
                raise ValidationError("Quantity must be a whole number >= 1")
            delta = quantity if action == ActionType.PRODUCED else -quantity

        unit_labor_cost = self.labor_cost_for(caller.user_id) if action == ActionType.PRODUCED else Decimal("0")
        progress = variant_quantities(product, quantity, per_variant) if action == ActionType.PRODUCED else {}
        if action == ActionType.PRODUCED and product.sizes and not progress:
            if self.goals.active_goals(str(product_id)):
                raise ValidationError(
                    f"{product.name} has an active goal: give the quantity per size "
                    f"({', '.join(product.sizes)})"
                )
        image_url = self._upload_evidence("problems" if action == ActionType.PROBLEM else "logs", image)

        snapshot = self.catalog.snapshot([product_id])
        if delta:
            self.catalog.apply_stock_delta(product_id, delta)

        try:
            rows = db.call_procedure("log_production_action", {
                "p_product_id": str(product_id),
                "p_user_id": str(caller.user_id),
                "p_action_type": action.value,
                "p_quantity": quantity,
                "p_description": description,
                "p_image_url": image_url,
                "p_expected_arrival_date": expected_arrival_date,
                "p_unit_labor_cost": unit_labor_cost,
            })
        except psycopg2.Error as e:
            logger.error(f"Error logging {action.value} for product {product_id}: {e}")
            self.catalog.reconcile(snapshot)
            raise BackendError("Erro ao registrar produção.", e)

        logger.info(f"Logged {action.value} x{quantity} for product {product_id} by {caller.user_id}")

        if progress:
            try:
                self.goals.apply_production(str(product_id), progress)
            except (psycopg2.Error, BackendError) as e:
                logger.warning(f"Goal progress update failed for product {product_id}: {e}")

        return rows[0] if rows else {}


class ShipmentService:
    """Shipment listing and receipt"""

    def list_shipments(self, status: Optional[str] = None) -> List[Shipment]:
        query = """
            SELECT s.id, s.description, s.voucher_photo_url, s.package_photo_url,
                   s.expected_arrival_date, s.status, s.created_at,
                   COALESCE(
                       json_agg(json_build_object('product_id', si.product_id, 'quantity', si.quantity))
                       FILTER (WHERE si.id IS NOT NULL),
                       '[]'
                   ) AS items
            FROM shipments s
            LEFT JOIN shipment_items si ON si.shipment_id = s.id
        """
        params: tuple = ()
        if status:
            try:
                params = (ShipmentStatus(status).value,)
            except ValueError:
                raise ValidationError(f"Unknown shipment status '{status}'")
            query += " WHERE s.status = %s"
        query += " GROUP BY s.id ORDER BY s.created_at DESC"
        try:
            rows = db.execute_query(query, params)
        except psycopg2.Error as e:
            logger.error(f"Error listing shipments: {e}")
            raise BackendError("Erro ao carregar envios.", e)
        return [Shipment(**row) for row in rows]

    def mark_received(self, shipment_id: str) -> None:
        try:
            count = db.execute_update(
                "UPDATE shipments SET status = %s WHERE id = %s",
                (ShipmentStatus.RECEIVED.value, shipment_id),
            )
        except psycopg2.Error as e:
            logger.error(f"Error marking shipment {shipment_id} received: {e}")
            raise BackendError("Erro ao atualizar envio.", e)
        if not count:
            raise NotFoundError(f"Shipment {shipment_id} not found")
        logger.info(f"Shipment {shipment_id} received")


class ProductionRequestService:
    """Admin requests for production batches"""

    COLUMNS = "id, product_id, quantity, needed_date, status"

    def create_request(self, product_id: str, quantity: int, needed_date: date) -> ProductionRequest:
        if not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Quantity must be >= 1")
        if needed_date is None:
            raise ValidationError("Needed date is required")
        try:
            row = db.execute_query(
                f"""
                INSERT INTO production_requests (product_id, quantity, needed_date, status)
                VALUES (%s, %s, %s, %s)
                RETURNING {self.COLUMNS}
                """,
                (product_id, quantity, needed_date, RequestStatus.PENDING.value),
                fetch_one=True,
            )
        except psycopg2.Error as e:
            logger.error(f"Error creating request: {e}")
            raise BackendError("Erro ao criar solicitação.", e)
        return ProductionRequest(**row)

    def list_requests(self, status: Optional[str] = None) -> List[ProductionRequest]:
        """Requests ordered by the date they are needed"""
        query = f"SELECT {self.COLUMNS} FROM production_requests"
        params: tuple = ()
        if status:
            try:
                params = (RequestStatus(status).value,)
            except ValueError:
                raise ValidationError(f"Unknown request status '{status}'")
            query += " WHERE status = %s"
        query += " ORDER BY needed_date ASC"
        try:
            rows = db.execute_query(query, params)
        except psycopg2.Error as e:
            logger.error(f"Error listing requests: {e}")
            raise BackendError("Erro ao carregar solicitações.", e)
        return [ProductionRequest(**row) for row in rows]

    def update_status(self, request_id: str, status: str) -> ProductionRequest:
        try:
            new_status = RequestStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown request status '{status}'")
        try:
            row = db.execute_query(
                f"UPDATE production_requests SET status = %s WHERE id = %s RETURNING {self.COLUMNS}",
                (new_status.value, request_id),
                fetch_one=True,
            )
        except psycopg2.Error as e:
            logger.error(f"Error updating request {request_id}: {e}")
            raise BackendError("Erro ao atualizar solicitação.", e)
        if not row:
            raise NotFoundError(f"Production request {request_id} not found")
        return ProductionRequest(**row)


# Singleton instances
_product_catalog = None
_inventory_ledger = None
_shipment_service = None
_production_request_service = None

def get_product_catalog() -> ProductCatalog:
    """Get singleton instance of ProductCatalog"""
    global _product_catalog
    if _product_catalog is None:
        _product_catalog = ProductCatalog()
    return _product_catalog


def get_inventory_ledger() -> InventoryLedger:
    """Get singleton instance of InventoryLedger"""
    global _inventory_ledger
    if _inventory_ledger is None:
        _inventory_ledger = InventoryLedger()
    return _inventory_ledger


def get_shipment_service() -> ShipmentService:
    """Get singleton instance of ShipmentService"""
    global _shipment_service
    if _shipment_service is None:
        _shipment_service = ShipmentService()
    return _shipment_service


def get_production_request_service() -> ProductionRequestService:
    """Get singleton instance of ProductionRequestService"""
    global _production_request_service
    if _production_request_service is None:
        _production_request_service = ProductionRequestService()
    return _production_request_service
