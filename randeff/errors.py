"""Exceptions raised by randeff."""
from __future__ import annotations

__all__ = ["MissingEntityModelError", "UnsupportedModelTypeError"]


class UnsupportedModelTypeError(TypeError):
    """A coordinate was handed a model variant it cannot train or score."""

    def __init__(self, operation: str, actual: type, expected: type, coordinate: type):
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"{operation} with model of type {actual.__name__} in {coordinate.__name__} "
            f"is not supported; expected {expected.__name__}.",
        )


class MissingEntityModelError(KeyError):
    """A passive data point refers to an entity with no model."""

    def __init__(self, entity_id: object, random_effect_type: str):
        self.entity_id = entity_id
        self.random_effect_type = random_effect_type
        super().__init__(
            f"No model for {random_effect_type} entity {entity_id!r} while scoring passive data; "
            "dataset and model are out of sync.",
        )

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])
