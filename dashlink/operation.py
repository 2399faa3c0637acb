from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Operation:
    query: str
    variables: dict[str, Any] = field(default_factory=dict)
    operation_name: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def headers(self) -> dict[str, str]:
        return dict(self.context.get("headers", {}))

    def with_header(self, name: str, value: str) -> "Operation":
        headers = self.headers
        headers[name] = value
        return dataclasses.replace(self, context={**self.context, "headers": headers})

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"query": self.query, "variables": self.variables}
        if self.operation_name:
            payload["operationName"] = self.operation_name
        return payload


class Link(ABC):
    """One stage of the request pipeline.

    A link receives an operation, may forward it to the next link, and returns
    the execution result (a dict with ``data`` and optionally ``errors``).
    """

    @abstractmethod
    async def request(self, operation: Operation) -> dict | None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
