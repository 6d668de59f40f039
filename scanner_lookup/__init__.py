"""Schema-adaptive product lookup for retail barcode scanners."""
