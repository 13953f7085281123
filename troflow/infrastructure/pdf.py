"""PDF packet renderer built on pypdf, with reportlab for stamped overlays."""
from __future__ import annotations

import asyncio
import io
import logging
from typing import Sequence

from pypdf import PdfReader, PdfWriter
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from troflow.domain.packets import AssemblyOptions, PacketForm, PacketMetadata

from .renderer import RenderedPacket

logger = logging.getLogger(__name__)

POINTS_PER_INCH = 72.0


class PypdfPacketRenderer:
    """Merges per-form PDFs into one filing document."""

    available = True

    def __init__(self, *, producer: str = "troflow") -> None:
        self._producer = producer

    async def render(
        self,
        forms: Sequence[PacketForm],
        metadata: PacketMetadata,
        options: AssemblyOptions,
    ) -> RenderedPacket:
        return await asyncio.to_thread(self._render, list(forms), metadata, options)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _render(
        self,
        forms: list[PacketForm],
        metadata: PacketMetadata,
        options: AssemblyOptions,
    ) -> RenderedPacket:
        writer = PdfWriter()
        warnings: list[str] = []
        first_pages: list[int] = []

        for form in forms:
            first_pages.append(len(writer.pages))
            reader = PdfReader(io.BytesIO(form.pdf_data or b""))
            for page in reader.pages:
                writer.add_page(page)

        if options.include_page_numbers or options.watermark:
            self._stamp(writer, page_numbers=options.include_page_numbers, watermark=options.watermark)

        offset = 0
        if options.include_table_of_contents:
            writer.insert_page(self._table_of_contents(forms), 0)
            offset = 1

        if options.include_bookmarks:
            for form, first in zip(forms, first_pages):
                if first < len(writer.pages) - offset:
                    writer.add_outline_item(f"{form.form_type.value} {form.display_name}", first + offset)

        title = f"{metadata.packet_type.value} - {metadata.case_number or 'New Case'}"
        writer.add_metadata(
            {
                "/Title": title,
                "/Author": self._producer,
                "/Producer": self._producer,
                "/Subject": f"TRO Packet - {metadata.county or 'Unknown'} County",
                "/Keywords": ", ".join(
                    item for item in (metadata.packet_type.value, metadata.case_number, "TRO", metadata.county) if item
                ),
            }
        )

        if options.compress:
            for page in writer.pages:
                page.compress_content_streams()
        if options.pdfa_compliance:
            warnings.append("PDF/A conversion is not supported; a standard PDF was produced")

        buffer = io.BytesIO()
        writer.write(buffer)
        data = buffer.getvalue()
        sizes = [
            (float(page.mediabox.width) / POINTS_PER_INCH, float(page.mediabox.height) / POINTS_PER_INCH)
            for page in writer.pages
        ]
        logger.info("Rendered packet %s: %s pages, %s bytes", metadata.packet_id, len(sizes), len(data))
        return RenderedPacket(data=data, total_pages=len(sizes), page_sizes=sizes, warnings=warnings)

    @staticmethod
    def _stamp(writer: PdfWriter, *, page_numbers: bool, watermark: str | None) -> None:
        total = len(writer.pages)
        if not total:
            return
        buffer = io.BytesIO()
        overlay = canvas.Canvas(buffer)
        for index, page in enumerate(writer.pages):
            width = float(page.mediabox.width)
            height = float(page.mediabox.height)
            overlay.setPageSize((width, height))
            if page_numbers:
                overlay.setFont("Helvetica", 10)
                overlay.drawCentredString(width / 2, 30, f"Page {index + 1} of {total}")
            if watermark:
                overlay.saveState()
                overlay.setFont("Helvetica-Bold", 48)
                overlay.setFillGray(0.85)
                overlay.translate(width / 2, height / 2)
                overlay.rotate(45)
                overlay.drawCentredString(0, 0, watermark)
                overlay.restoreState()
            overlay.showPage()
        overlay.save()

        stamps = PdfReader(io.BytesIO(buffer.getvalue()))
        for page, stamp in zip(writer.pages, stamps.pages):
            page.merge_page(stamp)

    @staticmethod
    def _table_of_contents(forms: list[PacketForm]):
        buffer = io.BytesIO()
        page = canvas.Canvas(buffer, pagesize=letter)
        _, height = letter
        y = height - 100
        page.setFont("Helvetica-Bold", 16)
        page.drawString(50, y, "Table of Contents")
        y -= 40
        page.setFont("Helvetica", 12)
        for index, form in enumerate(forms, start=1):
            start = form.start_page if form.start_page is not None else "-"
            page.drawString(70, y, f"{index}. {form.form_type.value} {form.display_name} ........ Page {start}")
            y -= 20
        page.showPage()
        page.save()
        return PdfReader(io.BytesIO(buffer.getvalue())).pages[0]
