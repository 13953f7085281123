from __future__ import annotations

import asyncio
import io
import sys
from datetime import date
from pathlib import Path

from pypdf import PdfReader
from reportlab.lib.pagesizes import A4, letter
from reportlab.pdfgen import canvas

sys.path.append(str(Path(__file__).resolve().parents[1]))

from troflow.application.assembler import (
    assemble_packet,
    assign_page_ranges,
    check_court_requirements,
    create_placeholder_packet,
    estimate_assembly_time,
    generate_packet_filename,
    sort_forms_in_order,
)
from troflow.application.packets import PacketArtifact, filing_packet_type, packet_forms_for, packet_metadata_for
from troflow.domain.packets import (
    AssemblyOptions,
    AssemblyStatus,
    FilingPacketType,
    FormCategory,
    PacketForm,
    PacketMetadata,
)
from troflow.domain.workflow import FormStatus, FormType, PacketType, Workflow, WorkflowState
from troflow.infrastructure.pdf import PypdfPacketRenderer
from troflow.infrastructure.renderer import RenderedPacket, UnavailablePacketRenderer


def _pdf(pages: int, pagesize=letter) -> bytes:
    buffer = io.BytesIO()
    page = canvas.Canvas(buffer, pagesize=pagesize)
    for number in range(pages):
        page.drawString(72, 720, f"page {number + 1}")
        page.showPage()
    page.save()
    return buffer.getvalue()


def _form(form_type: FormType, pages: int | None = 1, pdf: bytes | None = b"%PDF", **kwargs) -> PacketForm:
    return PacketForm(
        form_type=form_type,
        category=FormCategory.PRIMARY,
        display_name=form_type.value,
        pdf_data=pdf,
        page_count=pages,
        **kwargs,
    )


def _metadata(packet_type=FilingPacketType.DV_INITIAL_REQUEST, **kwargs) -> PacketMetadata:
    return PacketMetadata(packet_id="packet-1", packet_type=packet_type, **kwargs)


def test_sorting_is_canonical_and_stable():
    forms = [
        _form(FormType.DV101),
        _form(FormType.CLETS001),
        _form(FormType.DV120),
        _form(FormType.DV100),
        _form(FormType.FL150),
    ]
    ordered = sort_forms_in_order(forms, FilingPacketType.DV_INITIAL_REQUEST)
    assert [form.form_type for form in ordered] == [
        FormType.DV100,
        FormType.FL150,
        FormType.CLETS001,
        FormType.DV101,
        FormType.DV120,
    ]


def test_page_ranges_are_contiguous_and_zero_width_for_empty_forms():
    forms = [_form(FormType.DV100, 3), _form(FormType.DV105, 0), _form(FormType.FL150, None), _form(FormType.CLETS001, 2)]
    ranged = assign_page_ranges(forms)
    assert [(form.start_page, form.end_page) for form in ranged] == [(1, 3), (4, 3), (4, 3), (4, 5)]
    # inputs are left alone
    assert forms[0].start_page is None


def test_precondition_failures():
    async def scenario():
        return (
            await assemble_packet([], _metadata()),
            await assemble_packet([_form(FormType.DV100)], None),
            await assemble_packet([_form(FormType.DV100), _form(FormType.CLETS001, pdf=None)], _metadata()),
            await assemble_packet([_form(FormType.DV100)], _metadata()),
            await assemble_packet([_form(FormType.DV100)], _metadata(FilingPacketType.GENERAL_FAMILY_LAW)),
        )

    no_forms, no_metadata, no_pdf, missing_required, unknown_type = asyncio.run(scenario())
    assert no_forms.errors == ["No forms provided for assembly"]
    assert no_metadata.errors == ["Packet metadata is required"]
    assert "missing PDF data" in no_pdf.errors[0] and "CLETS-001" in no_pdf.errors[0]
    assert "Missing required forms" in missing_required.errors[0] and "CLETS-001" in missing_required.errors[0]
    assert unknown_type.errors == ["Unknown packet type: general_family_law"]
    for result in (no_forms, no_metadata, no_pdf, missing_required, unknown_type):
        assert result.status is AssemblyStatus.FAILED
        assert result.total_pages == 0
        assert result.file_size_bytes == 0


def test_without_renderer_assembly_is_simulated():
    forms = [_form(FormType.CLETS001, 1), _form(FormType.DV100, 4)]
    result = asyncio.run(assemble_packet(forms, _metadata(), renderer=UnavailablePacketRenderer()))
    assert result.status is AssemblyStatus.COMPLETED
    assert result.simulated
    assert result.pdf is None
    assert result.total_pages == 5
    assert "simulated" in result.warnings[0]
    assert [form.form_type for form in result.forms] == [FormType.DV100, FormType.CLETS001]


def test_pypdf_renderer_combines_forms():
    forms = [
        _form(FormType.CLETS001, 1, _pdf(1)),
        _form(FormType.DV100, 2, _pdf(2)),
    ]
    options = AssemblyOptions(include_table_of_contents=True, watermark="DRAFT")
    result = asyncio.run(
        assemble_packet(forms, _metadata(case_number="FL-1"), options, renderer=PypdfPacketRenderer())
    )

    assert result.status is AssemblyStatus.COMPLETED, result.errors
    assert not result.simulated
    assert result.total_pages == 4
    assert result.file_size_bytes == len(result.pdf)

    reader = PdfReader(io.BytesIO(result.pdf))
    assert len(reader.pages) == 4
    assert "Table of Contents" in reader.pages[0].extract_text()
    assert "Page 1 of 3" in reader.pages[1].extract_text()
    assert [item.title for item in reader.outline] == ["DV-100 DV-100", "CLETS-001 CLETS-001"]
    assert reader.metadata.title == "dv_initial_request - FL-1"


def test_court_requirements_reject_wrong_page_size():
    forms = [_form(FormType.DV100, 1, _pdf(1, A4)), _form(FormType.CLETS001, 1, _pdf(1))]
    result = asyncio.run(assemble_packet(forms, _metadata(), renderer=PypdfPacketRenderer()))
    assert result.status is AssemblyStatus.FAILED
    assert result.errors[0].startswith("Page 1 has incorrect size")


def test_court_file_size_ceiling():
    rendered = RenderedPacket(data=b"x" * 2048, total_pages=1, page_sizes=[(8.5, 11.0)])
    from troflow.domain.packets import CourtRequirements

    small_court = CourtRequirements("Test", "Test", 8.5, 11.0, (1, 1, 1, 1), max_file_size_bytes=1024)
    errors = check_court_requirements(rendered, small_court)
    assert len(errors) == 1
    assert "exceeds court maximum" in errors[0]


def test_placeholder_packet():
    forms = [
        _form(FormType.CLETS001, 2, completion_percentage=50),
        _form(FormType.DV100, 3, completion_percentage=100),
        _form(FormType.FL150, None),
    ]
    packet = create_placeholder_packet(forms, _metadata())
    assert packet.assembly_status is AssemblyStatus.NOT_STARTED
    assert packet.total_pages == 5
    assert packet.completion_percentage == 50
    assert [form.form_type for form in packet.forms] == [FormType.DV100, FormType.FL150, FormType.CLETS001]
    assert create_placeholder_packet([], _metadata()).completion_percentage == 0


def test_filename_and_estimate():
    today = date(2025, 3, 9)
    assert (
        generate_packet_filename(_metadata(case_number="FL-2025/12345#TEST"), today)
        == "FL202512345TEST_INITIAL-REQUEST_Packet_20250309.pdf"
    )
    assert generate_packet_filename(_metadata(), today) == "NewCase_INITIAL-REQUEST_Packet_20250309.pdf"
    assert "RESPONSE" in generate_packet_filename(_metadata(FilingPacketType.DV_RESPONSE), today)
    assert estimate_assembly_time(0) == 500
    assert estimate_assembly_time(4) == 1300


def test_workflow_bridge():
    workflow = Workflow(
        id="wf-1",
        user_id="user-1",
        packet_type=PacketType.INITIATING_NO_CHILDREN,
        current_state=WorkflowState.REVIEW_IN_PROGRESS,
        form_statuses={
            FormType.DV100: FormStatus.COMPLETE,
            FormType.CLETS001: FormStatus.IN_PROGRESS,
            FormType.FL150: FormStatus.SKIPPED,
            FormType.DV101: FormStatus.SKIPPED,
        },
    )
    data = {
        FormType.DV100: {
            "protectedPersonName": "Jane Doe",
            "restrainedPersonName": "John Doe",
            "caseNumber": "FL-2025-001",
            "county": "Los Angeles",
        }
    }
    metadata = packet_metadata_for(workflow, data)
    assert metadata.packet_type is FilingPacketType.DV_INITIAL_REQUEST
    assert (metadata.petitioner, metadata.respondent) == ("Jane Doe", "John Doe")
    assert metadata.case_number == "FL-2025-001"

    forms = packet_forms_for(workflow, data, {FormType.DV100: PacketArtifact(b"%PDF", 3)})
    assert [form.form_type for form in forms] == [FormType.DV100, FormType.CLETS001]
    assert forms[0].is_required and forms[0].is_complete and forms[0].page_count == 3
    assert forms[1].pdf_data is None and forms[1].completion_percentage == 0
    assert filing_packet_type("modification") is FilingPacketType.ORDER_MODIFICATION
