from .credential import Credential
from .product import Product
from .product_listing import ProductListing
from .order import Order
from .sync_run import SyncRun
from .sync_event import SyncEvent

# Importing the package registers every table on Base.metadata
__all__ = [
    'Credential',
    'Product',
    'ProductListing',
    'Order',
    'SyncRun',
    'SyncEvent',
]
