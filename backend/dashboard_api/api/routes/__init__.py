from dashboard_api.api.routes import dashboard

__all__ = [
    "dashboard",
]
