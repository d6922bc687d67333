from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict

from .config import (
    CLIENT_PORT_BASE,
    CONTROL_PORT_BASE,
    LOOPBACK_ADDRESS,
    PUBLIC_PORT_OFFSET,
)


@dataclass(frozen=True)
class UnitPorts:
    """Port assignments for a proxy unit, derived from its identity."""

    client_port: int
    control_port: int
    public_port: int

    @classmethod
    def for_identity(cls, identity: int) -> "UnitPorts":
        # Past this bound the client band runs into the public band.
        if not 0 <= identity < PUBLIC_PORT_OFFSET:
            raise ValueError(
                f"Unit identity must be within [0, {PUBLIC_PORT_OFFSET}); got {identity}."
            )
        client_port = CLIENT_PORT_BASE + identity
        return cls(
            client_port=client_port,
            control_port=CONTROL_PORT_BASE + identity,
            public_port=client_port + PUBLIC_PORT_OFFSET,
        )

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.client_port, self.control_port, self.public_port)


class Backend(BaseModel):
    """A single load-balancer backend entry."""

    model_config = ConfigDict(frozen=True)

    name: str
    address: str = LOOPBACK_ADDRESS
    port: int
