import base64
import io
import time

from PyPDF2 import PdfReader, PdfWriter


def make_pdf(*widths: float, height: float = 200) -> bytes:
    """A PDF with one blank page per width; widths identify pages after merging."""
    writer = PdfWriter()
    for width in widths:
        writer.add_blank_page(width=width, height=height)
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def page_widths(data: bytes) -> list:
    reader = PdfReader(io.BytesIO(data))
    return [round(float(page.mediabox.width)) for page in reader.pages]


def data_uri(data: bytes) -> str:
    return "data:application/pdf;base64," + base64.b64encode(data).decode("ascii")


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.05):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        value = predicate()
        if value:
            return value
        time.sleep(interval)
    raise AssertionError("condition not met before timeout")


def make_pdf_with_broken_resources(width: float = 100) -> bytes:
    """One-page PDF whose /Resources object is not a valid PDF object.

    The page tree and media box parse fine; the damage only surfaces when the
    page is copied.
    """
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 %d 200] /Resources 4 0 R >>" % int(width),
        b"garbage_token >>",
    ]
    out = io.BytesIO()
    out.write(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(out.tell())
        out.write(b"%d 0 obj\n" % number + body + b"\nendobj\n")
    xref_at = out.tell()
    out.write(b"xref\n0 %d\n" % (len(objects) + 1))
    out.write(b"0000000000 65535 f \n")
    for offset in offsets:
        out.write(b"%010d 00000 n \n" % offset)
    out.write(b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at))
    return out.getvalue()
