from typing import Iterable
from pydantic import BaseModel


def ok(data) -> dict:
    return {"success": True, "data": data}


def dump(schema: type[BaseModel], obj) -> dict:
    return schema.model_validate(obj).model_dump(mode="json")


def dump_all(schema: type[BaseModel], objs: Iterable) -> list[dict]:
    return [dump(schema, o) for o in objs]
