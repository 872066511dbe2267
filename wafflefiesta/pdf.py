"""Printable A4 coupon, drawn with reportlab."""
from __future__ import annotations

from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from . import config
from .helpers import to_iso
from .model.orm import Coupon
from .qr import qr_payload, qr_png

BROWN = (89 / 255, 60 / 255, 31 / 255)
INK = (50 / 255, 40 / 255, 30 / 255)
GREY = (80 / 255, 80 / 255, 80 / 255)
FAINT = (150 / 255, 150 / 255, 150 / 255)


class CouponPdf:
    def __init__(self, coupon: Coupon) -> None:
        self.coupon = coupon
        self.buffer = BytesIO()
        self.canvas = canvas.Canvas(self.buffer, pagesize=A4)
        self.width, self.height = A4

    @property
    def filename(self) -> str:
        return f"Waffle-Coupon-{self.coupon.coupon_id}.pdf"

    def render(self) -> bytes:
        self._header()
        self._details()
        self._qr()
        self._footer()
        self.canvas.showPage()
        self.canvas.save()
        return self.buffer.getvalue()

    # layout uses millimetres from the top edge
    def _y(self, from_top_mm: float) -> float:
        return self.height - from_top_mm * mm

    def _header(self) -> None:
        c = self.canvas
        c.setFillColorRGB(*BROWN)
        c.rect(0, self._y(50), self.width, 50 * mm, stroke=0, fill=1)
        c.setFillColorRGB(1, 1, 1)
        c.setFont("Helvetica-Bold", 28)
        c.drawCentredString(self.width / 2, self._y(25),
                            config.EVENT_NAME.upper())
        c.setFont("Helvetica", 12)
        c.drawCentredString(self.width / 2, self._y(38),
                            config.EVENT_TAGLINE.replace("•", "|"))

    def _details(self) -> None:
        c = self.canvas
        coupon = self.coupon
        c.setFillColorRGB(*INK)
        c.setFont("Helvetica-Bold", 16)
        c.drawCentredString(self.width / 2, self._y(65), "WAFFLE COUPON")

        c.setFillColorRGB(*BROWN)
        c.setFont("Helvetica-Bold", 22)
        c.drawCentredString(self.width / 2, self._y(80), coupon.coupon_id)

        c.setFillColorRGB(*GREY)
        c.setFont("Helvetica", 11)
        c.drawString(30 * mm, self._y(100), f"Name: {coupon.name}")
        c.drawString(30 * mm, self._y(110), f"Phone: {coupon.phone}")
        c.drawString(30 * mm, self._y(120), f"Payment: {coupon.payment_type}")
        c.drawString(30 * mm, self._y(130),
                     f"Date: {to_iso(coupon.created_at)}")

    def _qr(self) -> None:
        png = qr_png(qr_payload(self.coupon.coupon_id))
        self.canvas.drawImage(
            ImageReader(BytesIO(png)),
            65 * mm, self._y(220),
            width=80 * mm, height=80 * mm,
        )

    def _footer(self) -> None:
        c = self.canvas
        c.setFillColorRGB(*FAINT)
        c.setFont("Helvetica", 9)
        c.drawCentredString(
            self.width / 2, self._y(230),
            "Present this coupon at the stall to redeem your waffle",
        )
