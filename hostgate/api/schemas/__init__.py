"""Response schemas."""
from .envelope import ApiResponse, ResponseMeta

__all__ = ["ApiResponse", "ResponseMeta"]
