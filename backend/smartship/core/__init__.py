from smartship.core.config import settings
from smartship.core.database import Base, AsyncSessionLocal, engine
