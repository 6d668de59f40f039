from __future__ import annotations

from typing import Optional

from . import db
from .config import Settings, get_settings
from .observability import configure_logging, init_sentry
from .services.product_lookup import ProductLookupService, create_product_lookup_service
from .startup import validate_settings


def create_service(settings: Optional[Settings] = None) -> ProductLookupService:
    """Configure logging, validate the deployment and wire the lookup service."""
    s = settings or get_settings()
    configure_logging(json_logs=s.log_json, level=s.log_level)
    init_sentry(s)
    validate_settings(s)

    db.engine = db.create_engine_from_settings(s)
    return create_product_lookup_service(s, db.get_engine())
