from swap_engine.api.routes.orders import router as orders_router
from swap_engine.api.routes.system import router as system_router

__all__ = ["orders_router", "system_router"]
