from poi_share.middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware"]
