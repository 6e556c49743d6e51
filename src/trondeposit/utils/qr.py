"""QR code rendering for deposit addresses."""

import base64
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from qrcode.image.svg import SvgPathImage


def render_address_qr(address: str) -> str:
    """Render ``address`` as an SVG QR code data URI."""
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_M,
        box_size=10,
        border=4,
        image_factory=SvgPathImage,
    )
    qr.add_data(address)
    qr.make(fit=True)

    buffer = BytesIO()
    qr.make_image().save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"
