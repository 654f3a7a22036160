from __future__ import annotations

import types
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Literal, Mapping, Optional, Union, get_args, get_origin

from pydantic import BaseModel, Field
from pydantic_core import PydanticUndefined


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DBSerializableModel(BaseModel):
    """
    Base Pydantic model for everything the ledger persists.

    - `serialize_for_db()` is the single place that controls the stored shape
    - `db_schema()` describes the collection/table in backend-agnostic terms;
      the schema generator turns it into SQL DDL or a document validator
    """

    collection_name: ClassVar[str]
    primary_key: ClassVar[Optional[str]] = "id"

    def serialize_for_db(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="python")

    @classmethod
    def db_schema(cls) -> Dict[str, Any]:
        fields: Mapping[str, Any] = cls.model_fields

        properties: Dict[str, Any] = {}
        required: list[str] = []

        for name, field in fields.items():
            default = field.default
            if default is PydanticUndefined or callable(default):
                default = None
            if isinstance(default, Enum):
                default = default.value

            properties[name] = {
                "type": cls._map_type(field.annotation),
                "nullable": not field.is_required() and default is None,
                "default": default,
                "description": field.description,
            }

            if field.is_required():
                required.append(name)

        return {
            "collection_name": cls.collection_name,
            "primary_key": cls.primary_key,
            "properties": properties,
            "required": required,
        }

    @staticmethod
    def _map_type(annotation: Any) -> str:
        """
        Map a type annotation to a generic logical type.
        Optional[X] is reported as X; enums and literals are strings.
        """
        origin = get_origin(annotation)
        if origin is Union or origin is types.UnionType:
            args = [a for a in get_args(annotation) if a is not type(None)]
            if len(args) == 1:
                return DBSerializableModel._map_type(args[0])
            return "object"
        if origin in (list, tuple, set):
            return "array"
        if origin is dict:
            return "object"
        if origin is Literal:
            return "string"

        if isinstance(annotation, type) and issubclass(annotation, Enum):
            return "string"
        if annotation is dict:
            return "object"
        if annotation is list:
            return "array"
        if annotation is bool:
            return "boolean"
        if annotation is int:
            return "integer"
        if annotation is float:
            return "number"
        if annotation is str:
            return "string"

        name = getattr(annotation, "__name__", "object")
        return name.lower()


class PaginatedResult(BaseModel):
    items: list[Any] = Field(default_factory=list)
    total: int
    limit: int
    offset: int
