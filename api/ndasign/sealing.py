# Renders NDA text and the signed artifact using reportlab + pypdf.
# Called from the seal_signed_nda Celery task and by the Dropbox Sign backend
# for text-only NDAs.

from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import simpleSplit
from io import BytesIO
from html import unescape
from pypdf import PdfReader, PdfWriter
from .utils import sha256_bytes, isoformat

MARGIN = 72
LINE_HEIGHT = 14
WRAP_WIDTH = letter[0] - 2 * MARGIN

def _draw_lines(c, lines, font="Helvetica", size=10):
    y = letter[1] - MARGIN
    c.setFont(font, size)
    for line in lines:
        if y < MARGIN:
            c.showPage(); c.setFont(font, size); y = letter[1] - MARGIN
        c.drawString(MARGIN, y, line)
        y -= LINE_HEIGHT

def _wrap(text, font="Helvetica", size=10):
    lines = []
    for paragraph in text.splitlines() or [""]:
        wrapped = simpleSplit(paragraph.replace("\t", "    "), font, size, WRAP_WIDTH)
        lines.extend(wrapped or [""])
    return lines

def render_nda_pdf(title: str, nda_text: str = None, document_url: str = None) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.setTitle(title)
    c.setFont("Helvetica-Bold", 14)
    c.drawString(MARGIN, letter[1] - MARGIN + 24, title[:80])
    if nda_text:
        body = unescape(nda_text)
    else:
        body = f"The agreement text is held at:\n{document_url or '(no document reference)'}"
    _draw_lines(c, _wrap(body))
    c.showPage(); c.save()
    return buf.getvalue()

def render_certificate(info: dict, signers: list) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    lines = [f"{k}: {v}" for k, v in info.items()]
    for s in signers:
        lines.append("")
        lines.append(f"{s.role.title()}: {s.name or s.email or s.user_id}")
        lines.append(f"  Signed at: {isoformat(s.signed_at)}")
        lines.append(f"  Signature: {s.signature_data or ''}"[:95])
        lines.append(f"  IP address: {s.ip_address or 'n/a'}")
        lines.append(f"  User agent: {(s.user_agent or 'n/a')[:80]}")
    c.setFont("Helvetica-Bold", 14)
    c.drawString(MARGIN, letter[1] - MARGIN + 24, "Certificate of Completion")
    _draw_lines(c, [line[:95] for line in lines])
    c.showPage(); c.save()
    return buf.getvalue()

def seal_signed_nda(request, signers) -> tuple:
    """Return (pdf_bytes, sha256) for a completed request: agreement pages plus certificate."""
    agreement = render_nda_pdf(request.title, request.nda_text, request.document_url)
    certificate = render_certificate({
        "Signature request": request.id,
        "Transaction": request.transaction_id,
        "Completed at": isoformat(request.completed_at),
        "Agreement SHA256": sha256_bytes(agreement),
    }, signers)
    writer = PdfWriter()
    for part in (agreement, certificate):
        writer.append_pages_from_reader(PdfReader(BytesIO(part)))
    out = BytesIO(); writer.write(out)
    final_bytes = out.getvalue()
    return final_bytes, sha256_bytes(final_bytes)
