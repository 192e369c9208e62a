"""Product metadata lookup with caching and request coalescing."""

import logging
import threading
from concurrent.futures import Executor, Future
from typing import Dict, FrozenSet, Iterable, Optional

from .connectors.base import Product, ProductsInfoBase, RetrieveResults
from .errors import StoreError

logger = logging.getLogger(__name__)


class ProductsInfoController:
    """Fetches products through a ProductsInfoBase and remembers them."""

    def __init__(self, products_info: ProductsInfoBase, executor: Executor):
        """Initialize the controller.

        Args:
            products_info: Collaborator performing the actual lookup.
            executor: Executor the lookups run on.
        """
        self.products_info = products_info
        self._executor = executor
        self._lock = threading.Lock()
        self._products: Dict[str, Product] = {}
        self._inflight: Dict[FrozenSet[str], "Future[RetrieveResults]"] = {}

    @property
    def products(self) -> Dict[str, Product]:
        """Snapshot of the cached products keyed by id."""
        with self._lock:
            return dict(self._products)

    def cached(self, product_id: str) -> Optional[Product]:
        with self._lock:
            return self._products.get(product_id)

    def retrieve_products_info(self, product_ids: Iterable[str]) -> "Future[RetrieveResults]":
        """Look up ``product_ids``; identical concurrent lookups share one future.

        Args:
            product_ids: Product identifiers to retrieve.

        Returns:
            Future resolving to RetrieveResults. Collaborator failures are
            reported in ``RetrieveResults.error``, never raised.
        """
        key = frozenset(product_ids)
        with self._lock:
            inflight = self._inflight.get(key)
            if inflight is not None:
                logger.debug(f"Joining in-flight product request for {sorted(key)}")
                return inflight
            future: "Future[RetrieveResults]" = Future()
            self._inflight[key] = future

        try:
            self._executor.submit(self._fetch, key, future)
        except RuntimeError as e:
            logger.error(f"Cannot schedule product request for {sorted(key)}: {e}")
            with self._lock:
                self._inflight.pop(key, None)
            future.set_result(RetrieveResults(error=StoreError.product_fetch_failed(e)))
        return future

    def _fetch(self, key: FrozenSet[str], future: "Future[RetrieveResults]") -> None:
        try:
            results = self.products_info.fetch_products(set(key))
        except Exception as e:
            logger.error(f"Product request for {sorted(key)} failed: {e}")
            results = RetrieveResults(error=StoreError.product_fetch_failed(e))

        with self._lock:
            for product in results.retrieved_products:
                self._products[product.product_id] = product
            self._inflight.pop(key, None)

        if results.invalid_product_ids:
            logger.warning(f"Invalid product ids: {sorted(results.invalid_product_ids)}")
        logger.info(f"Retrieved {len(results.retrieved_products)} product(s)")
        future.set_result(results)
