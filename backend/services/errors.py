from __future__ import annotations

from typing import Any


class PackagingError(Exception):
    status_code = 500

    def __init__(self, message: str, *, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context

    def as_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": self.message}
        if self.context is not None:
            body["context"] = self.context
        return body


class PackagingValidationError(PackagingError):
    """Requête incomplète ou mal formée : aucun effet de bord."""

    status_code = 400


class PackagingOperationError(PackagingError):
    """Échec fatal en cours d'opération ; le message embarque le TraceContext."""

    status_code = 500


class ProductNotFoundError(PackagingError):
    status_code = 404


class ProductConflictError(PackagingError):
    status_code = 409


class ProductCreationError(PackagingError):
    """Écriture de la recette d'un bundle échouée ; le bundle a été retiré."""

    status_code = 500
