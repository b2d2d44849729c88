from .ebay import EbayAdapter
from .etsy import EtsyAdapter
from .depop import DepopAdapter
