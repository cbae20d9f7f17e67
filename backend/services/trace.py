from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Nombre de barcodes cités dans un message d'erreur
TRACE_BARCODE_LIMIT = 5


@dataclass
class TraceContext:
    """
    "Ce qu'on faisait quand ça a cassé".

    Construit à l'entrée d'une opération, mis à jour à chaque étape,
    passé à toute construction de message d'erreur. Jamais partagé
    entre deux opérations.
    """

    database_id: str = "NOT_SET"
    current_operation: str = "parsing request"
    waybill_number: str | None = None
    packaging_date: str | None = None
    record_id: str | None = None
    items_barcodes: list[str] = field(default_factory=list)

    def step(self, operation: str) -> None:
        self.current_operation = operation
        logger.debug("[%s] %s", self.record_id or self.waybill_number or "-", operation)

    @property
    def waybill_label(self) -> str:
        return self.waybill_number or "unknown"

    def summary(self) -> str:
        parts = [f"db: {self.database_id}"]
        if self.waybill_number:
            parts.append(f"waybill: {self.waybill_number}")
        if self.packaging_date:
            parts.append(f"date: {self.packaging_date}")
        if self.record_id:
            parts.append(f"record_id: {self.record_id}")
        if self.items_barcodes:
            shown = ", ".join(self.items_barcodes[:TRACE_BARCODE_LIMIT])
            more = "..." if len(self.items_barcodes) > TRACE_BARCODE_LIMIT else ""
            parts.append(f"barcodes: {shown}{more}")
        return ", ".join(parts)

    def describe_failure(self, exc: BaseException | str) -> str:
        return f'Error during "{self.current_operation}" [{self.summary()}]: {exc}'

    def as_dict(self) -> dict[str, Any]:
        return {
            "database_id": self.database_id,
            "waybill_number": self.waybill_number,
            "packaging_date": self.packaging_date,
            "record_id": self.record_id,
            "operation": self.current_operation,
        }
