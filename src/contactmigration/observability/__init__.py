"""
Observability utilities for contactmigration.

Provides the composition-based tracer and the standard span attribute
names used by the service, stores and lock managers.

Note:
    OpenTelemetry is an optional dependency (``pip install
    contact-migration[telemetry]``). Without it every component falls
    back to a NullTracer.
"""

from contactmigration.observability.attributes import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    ATTR_DUPLICATE,
    ATTR_ELEMENT_TYPE,
    ATTR_ENTITY_ID,
    ATTR_ENTITY_TYPE,
    ATTR_ITEM_COUNT,
    ATTR_LOCK_ID,
    ATTR_LOCK_KEY,
    ATTR_LOCK_TIMEOUT,
    ATTR_PARENT_ID,
    ATTR_PERSON_ID,
    ATTR_STAGE,
)
from contactmigration.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    RecordedSpan,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracing
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "MockTracer",
    "create_tracer",
    # Attributes
    "ATTR_PERSON_ID",
    "ATTR_ELEMENT_TYPE",
    "ATTR_ITEM_COUNT",
    "ATTR_DUPLICATE",
    "ATTR_STAGE",
    "ATTR_ENTITY_TYPE",
    "ATTR_ENTITY_ID",
    "ATTR_PARENT_ID",
    "ATTR_LOCK_KEY",
    "ATTR_LOCK_ID",
    "ATTR_LOCK_TIMEOUT",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_DB_TABLE",
]
