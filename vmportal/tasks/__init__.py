from .celery_app import celery, celery_app

__all__ = ["celery", "celery_app"]
