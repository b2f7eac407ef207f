from storefront.core.config import settings
from storefront.core.database import get_db, Base, Database
from storefront.core.security import create_access_token, decode_token
