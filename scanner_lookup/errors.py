from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Deployment configuration cannot drive a lookup.

    Raised at startup validation or on first use (unresolvable price source,
    identifiers outside the allow-list). Never retried.
    """
