from .amazon import AmazonProvider
from .mercadolivre import MercadoLivreProvider
from .shopee import ShopeeProvider
from .shopify import ShopifyProvider
