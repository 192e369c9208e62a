"""
Purchase flow example against the in-memory simulator. An app would pass its
platform payment queue and product catalogue connectors instead.
"""
import logging
from decimal import Decimal

from purchases_sdk import PaymentOptions, PurchaseSuccess, Store
from purchases_sdk.connectors import Product, SimulatorPaymentQueue, SimulatorProductsInfo

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def run():
    catalog = [
        Product(product_id="com.example.pro", localized_title="Pro", price=Decimal("4.99")),
        Product(product_id="com.example.coins", localized_title="100 Coins", price=Decimal("0.99")),
    ]
    with Store(SimulatorPaymentQueue(), SimulatorProductsInfo(catalog)) as store:
        # Deliver anything left unfinished by a previous session.
        store.complete_transactions(lambda purchases: print("Leftover:", purchases))

        result = store.purchase_product("com.example.coins", PaymentOptions(atomically=False)).result()
        if isinstance(result, PurchaseSuccess):
            print("Purchased:", result.purchase.model_dump_json())
            # Credit the coins, then acknowledge the transaction.
            store.finish_transaction(result.purchase)
        else:
            print("Purchase failed:", result.error)

        store.purchase_product("com.example.pro").result()
        restored = store.restore_purchases().result()
        print("Restored:", [p.product_id for p in restored.restored_purchases])


if __name__ == "__main__":
    run()
