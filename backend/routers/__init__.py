from .servers import router as servers_router

__all__ = [
    "servers_router",
]
