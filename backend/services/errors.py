"""
Erreurs métier.

Chaque erreur porte un `kind` lisible par machine; la couche HTTP le
renvoie tel quel avec le message.
"""


class DomainError(Exception):
    kind = "domain_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.message}


class ValidationError(DomainError):
    """Champs manquants/invalides: quantité <= 0, prix négatif, doublon d'article..."""

    kind = "validation_error"
    status_code = 400


class NotFound(DomainError):
    kind = "not_found"
    status_code = 404


class InvalidState(DomainError):
    """Opération interdite depuis le statut courant."""

    kind = "invalid_state"
    status_code = 409


class Conflict(DomainError):
    """Course entre deux écritures (validation concurrente, numéro déjà pris)."""

    kind = "conflict"
    status_code = 409
