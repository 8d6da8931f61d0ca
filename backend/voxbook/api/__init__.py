from voxbook.api.routes import router

__all__ = ["router"]
