"""Binary packet rendering hooks.

Combining per-form PDFs into a single filing is delegated to a renderer.
When none is installed the assembler still orders and validates packets and
reports the result as simulated.  A deployment enables real output by
calling ``configure_packet_renderer`` during start-up.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from troflow.domain.packets import AssemblyOptions, PacketForm, PacketMetadata


@dataclass(slots=True)
class RenderedPacket:
    """Container returned by :class:`PacketRenderer` implementations."""

    data: bytes
    total_pages: int
    # (width, height) of every page in inches
    page_sizes: list[tuple[float, float]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class PacketRenderer(Protocol):
    """Contract for binary PDF combination."""

    available: bool

    async def render(
        self,
        forms: Sequence[PacketForm],
        metadata: PacketMetadata,
        options: AssemblyOptions,
    ) -> RenderedPacket:
        """Combine the ordered ``forms`` into one document."""


class RendererUnavailableError(RuntimeError):
    """Raised if an unavailable renderer is asked to render."""


class UnavailablePacketRenderer:
    """Fallback renderer used when no PDF backend is configured."""

    available = False

    async def render(
        self,
        forms: Sequence[PacketForm],
        metadata: PacketMetadata,
        options: AssemblyOptions,
    ) -> RenderedPacket:
        raise RendererUnavailableError("PDF rendering is not configured")


_renderer: PacketRenderer = UnavailablePacketRenderer()


def configure_packet_renderer(renderer: PacketRenderer) -> None:
    """Install the renderer used for packet assembly."""

    global _renderer
    _renderer = renderer


def get_packet_renderer() -> PacketRenderer:
    """Return the currently configured renderer."""

    return _renderer
