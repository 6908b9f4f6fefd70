"""
PDF export of a contract.
"""

import textwrap
from io import BytesIO

from reportlab.lib.pagesizes import LETTER
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

from draftsign.models.contract import Contract
from draftsign.services.document import SignatureSegment, render_for_display
from draftsign.services.reconciler import BLANK_LINE

MAX_LINE_CHARS = 95
BODY_FONT = ("Times-Roman", 11)
TITLE_FONT = ("Times-Bold", 16)


def _signature_line(segment: SignatureSegment, contract: Contract) -> str:
    slot = segment.slot
    party = contract.party_for(slot.party)
    label = (party.role or party.name) if party else slot.party
    if not slot.is_signed:
        return f"{BLANK_LINE} ({label}, unsigned)"
    return f"/s/ {slot.signer_name or label}  ({label}, signed {slot.signed_date})"


def contract_export_text(contract: Contract) -> str:
    """Plain-text rendering with signature markers replaced by signer details."""
    parts: list[str] = []
    for block in contract.blocks:
        rendered = []
        for segment in render_for_display(block):
            if isinstance(segment, SignatureSegment):
                rendered.append(_signature_line(segment, contract))
            else:
                rendered.append(segment.text)
        parts.append("".join(rendered))

    roster = [
        f"{party.role or 'Party'}: {party.name}" + (f" <{party.email}>" if party.email else "")
        for party in contract.parties
    ]
    if roster:
        parts.append("Parties\n" + "\n".join(roster))
    return "\n\n".join(parts)


def render_to_pdf(contract: Contract) -> bytes:
    """Render the contract as a letter-size PDF. Does not modify the contract."""
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=LETTER)
    c.setTitle(contract.title)
    width, height = LETTER
    left = 0.75 * inch
    top = height - 0.75 * inch
    bottom = 0.75 * inch

    c.setFont(*TITLE_FONT)
    c.drawString(left, top, contract.title)

    text_obj = c.beginText(left, top - 0.5 * inch)
    text_obj.setFont(*BODY_FONT)

    for line in contract_export_text(contract).splitlines():
        wrapped = textwrap.wrap(line, width=MAX_LINE_CHARS) or [""]
        for wrapped_line in wrapped:
            if text_obj.getY() <= bottom:
                c.drawText(text_obj)
                c.showPage()
                text_obj = c.beginText(left, top)
                text_obj.setFont(*BODY_FONT)
            text_obj.textLine(wrapped_line)

    c.drawText(text_obj)
    c.save()
    buffer.seek(0)
    return buffer.read()
