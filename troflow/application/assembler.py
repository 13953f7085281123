"""Packet assembly: ordering, page ranges and the hand-off to a PDF renderer."""
from __future__ import annotations

import dataclasses
import logging
import math
import re
import time
from datetime import date, datetime, timezone
from typing import Iterable, Sequence

from troflow.core.config import settings
from troflow.domain.packets import (
    LA_SUPERIOR_COURT_REQUIREMENTS,
    PACKET_FORM_ORDERS,
    UNORDERED_POSITION,
    AssemblyOptions,
    AssemblyResult,
    AssemblyStatus,
    CourtRequirements,
    FilingPacketType,
    FormOrder,
    PacketForm,
    PacketMetadata,
    TROPacket,
    ValidationStatus,
)
from troflow.infrastructure.renderer import PacketRenderer, RenderedPacket, get_packet_renderer

logger = logging.getLogger(__name__)

PAGE_SIZE_TOLERANCE_IN = 0.1


class PacketAssemblyError(ValueError):
    """Inputs that can never produce a packet."""


class UnknownPacketTypeError(PacketAssemblyError):
    pass


def get_form_order(packet_type: FilingPacketType | str) -> tuple[FormOrder, ...]:
    try:
        return PACKET_FORM_ORDERS[FilingPacketType(packet_type)]
    except (KeyError, ValueError) as exc:
        value = getattr(packet_type, "value", packet_type)
        raise UnknownPacketTypeError(f"Unknown packet type: {value}") from exc


def sort_forms_in_order(forms: Iterable[PacketForm], packet_type: FilingPacketType | str) -> list[PacketForm]:
    """Canonical order for the packet type; unknown forms go last in input order."""

    positions = {entry.form_type: entry.position for entry in get_form_order(packet_type)}
    return sorted(forms, key=lambda form: positions.get(form.form_type, UNORDERED_POSITION))


def assign_page_ranges(forms: Sequence[PacketForm], first_page: int = 1) -> list[PacketForm]:
    """Copies of ``forms`` with contiguous start/end pages.

    A form without pages keeps its slot with ``end_page == start_page - 1``.
    """

    cursor = first_page
    ranged: list[PacketForm] = []
    for form in forms:
        count = max(form.page_count or 0, 0)
        ranged.append(dataclasses.replace(form, start_page=cursor, end_page=cursor + count - 1))
        cursor += count
    return ranged


def _check_inputs(forms: Sequence[PacketForm], metadata: PacketMetadata | None) -> None:
    if not forms:
        raise PacketAssemblyError("No forms provided for assembly")
    if metadata is None:
        raise PacketAssemblyError("Packet metadata is required")
    missing = [form.form_type.value for form in forms if not form.pdf_data]
    if missing:
        raise PacketAssemblyError(f"The following forms are missing PDF data: {', '.join(missing)}")


def _check_required_forms(forms: Sequence[PacketForm], packet_type: FilingPacketType) -> None:
    present = {form.form_type for form in forms}
    missing = [
        entry.form_type.value
        for entry in get_form_order(packet_type)
        if entry.required and entry.form_type not in present
    ]
    if missing:
        raise PacketAssemblyError(f"Missing required forms for {packet_type.value}: {', '.join(missing)}")


def check_court_requirements(
    rendered: RenderedPacket,
    requirements: CourtRequirements = LA_SUPERIOR_COURT_REQUIREMENTS,
) -> list[str]:
    errors: list[str] = []
    for index, (width, height) in enumerate(rendered.page_sizes, start=1):
        if (
            abs(width - requirements.page_width_in) > PAGE_SIZE_TOLERANCE_IN
            or abs(height - requirements.page_height_in) > PAGE_SIZE_TOLERANCE_IN
        ):
            errors.append(
                f'Page {index} has incorrect size: {width:.2f}" x {height:.2f}". '
                f'Required: {requirements.page_width_in}" x {requirements.page_height_in}"'
            )
    size = len(rendered.data)
    if size > requirements.max_file_size_bytes:
        errors.append(
            f"PDF file size ({size / 1024 / 1024:.2f} MB) exceeds court maximum of "
            f"{requirements.max_file_size_bytes / 1024 / 1024:.0f} MB"
        )
    return errors


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _failed(errors: list[str], started: float) -> AssemblyResult:
    return AssemblyResult(
        status=AssemblyStatus.FAILED,
        total_pages=0,
        file_size_bytes=0,
        assembled_at=datetime.now(timezone.utc),
        duration_ms=_elapsed_ms(started),
        errors=errors,
    )


async def assemble_packet(
    forms: Sequence[PacketForm],
    metadata: PacketMetadata | None,
    options: AssemblyOptions | None = None,
    renderer: PacketRenderer | None = None,
    *,
    court: CourtRequirements | None = None,
) -> AssemblyResult:
    """Order, validate and combine ``forms`` into one filing.

    Never raises: every failure comes back as a ``FAILED`` result with a
    readable error list.  Without an available renderer the result is
    ``COMPLETED`` but ``simulated`` and carries no bytes.
    """

    started = time.perf_counter()
    options = options or AssemblyOptions()
    renderer = renderer or get_packet_renderer()
    court = court or dataclasses.replace(
        LA_SUPERIOR_COURT_REQUIREMENTS, max_file_size_bytes=settings.MAX_PACKET_BYTES
    )

    try:
        _check_inputs(forms, metadata)
        _check_required_forms(forms, metadata.packet_type)
        ordered = assign_page_ranges(sort_forms_in_order(forms, metadata.packet_type))
    except PacketAssemblyError as exc:
        logger.warning("Packet assembly rejected: %s", exc)
        return _failed([str(exc)], started)

    total_pages = sum(max(form.page_count or 0, 0) for form in ordered)
    if not renderer.available:
        logger.info("No PDF renderer configured, simulating assembly of %s", metadata.packet_id)
        return AssemblyResult(
            status=AssemblyStatus.COMPLETED,
            total_pages=total_pages,
            file_size_bytes=0,
            assembled_at=datetime.now(timezone.utc),
            duration_ms=_elapsed_ms(started),
            simulated=True,
            forms=ordered,
            warnings=["PDF renderer unavailable: assembly was simulated and no file was produced"],
        )

    try:
        rendered = await renderer.render(ordered, metadata, options)
    except Exception as exc:  # renderer backends raise their own error types
        logger.exception("Rendering packet %s failed", metadata.packet_id)
        return _failed([f"PDF rendering failed: {exc}"], started)

    court_errors = check_court_requirements(rendered, court)
    if court_errors:
        logger.warning("Packet %s does not meet %s requirements", metadata.packet_id, court.court_name)
        return _failed(court_errors, started)

    result = AssemblyResult(
        status=AssemblyStatus.COMPLETED,
        total_pages=rendered.total_pages,
        file_size_bytes=len(rendered.data),
        assembled_at=datetime.now(timezone.utc),
        duration_ms=_elapsed_ms(started),
        pdf=rendered.data,
        forms=ordered,
        warnings=list(rendered.warnings),
    )
    logger.info(
        "Assembled packet %s: %s pages, %s bytes in %sms",
        metadata.packet_id,
        result.total_pages,
        result.file_size_bytes,
        result.duration_ms,
    )
    return result


def create_placeholder_packet(forms: Sequence[PacketForm], metadata: PacketMetadata) -> TROPacket:
    """Preview of the packet shape without producing a file."""

    ordered = assign_page_ranges(sort_forms_in_order(forms, metadata.packet_type))
    if ordered:
        completion = math.floor(sum(form.completion_percentage or 0 for form in ordered) / len(ordered) + 0.5)
    else:
        completion = 0
    return TROPacket(
        metadata=metadata,
        forms=ordered,
        assembly_status=AssemblyStatus.NOT_STARTED,
        validation_status=ValidationStatus.NOT_VALIDATED,
        total_pages=sum(max(form.page_count or 0, 0) for form in ordered),
        completion_percentage=completion,
    )


def _short_code(packet_type: FilingPacketType) -> str:
    return packet_type.value.replace("dv_", "", 1).replace("_", "-", 1).upper()


def generate_packet_filename(metadata: PacketMetadata, today: date | None = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    case = re.sub(r"[^A-Za-z0-9]", "", metadata.case_number or "") or "NewCase"
    return f"{case}_{_short_code(metadata.packet_type)}_Packet_{today:%Y%m%d}.pdf"


def estimate_assembly_time(form_count: int) -> int:
    """Rough assembly duration in milliseconds."""

    return 500 + form_count * 200
