from subtitler.api.routes import router

__all__ = ["router"]
