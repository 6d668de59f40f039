from .candidates import build_lookup_candidates
from .models import LookupContext, LookupMatch, RawMatchRow, SchemaSnapshot
from .schema import SchemaSnapshotCache
from .service import (
    ProductLookupService,
    build_product_lookup_service,
    create_product_lookup_service,
)

__all__ = [
    "LookupContext",
    "LookupMatch",
    "ProductLookupService",
    "RawMatchRow",
    "SchemaSnapshot",
    "SchemaSnapshotCache",
    "build_lookup_candidates",
    "build_product_lookup_service",
    "create_product_lookup_service",
]
