"""Contract document for an approved quote.

Only reads the frozen, approved version: the figures printed are the stored
totals, never recomputed here.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from menu_negotiation.durations import format_duration_parts
from menu_negotiation.schemas import CartItem, QuoteDraft

NAVY = HexColor("#1a2744")
GRAY = HexColor("#555555")
RULE = HexColor("#C3C3E0")

MARGIN = 48
LINE = 14


def format_brl(value: Optional[float]) -> str:
    number = float(value or 0)
    text = f"{abs(number):,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"-R$ {text}" if number < 0 else f"R$ {text}"


@dataclass
class ContractDocument:
    request_id: str
    company_name: str
    customer_name: str
    customer_email: str
    customer_phone: str
    version: int
    approved_at: Optional[datetime]
    items: list[CartItem]
    draft: QuoteDraft
    totals: dict
    customer_company_name: Optional[str] = None
    customer_cnpj: Optional[str] = None

    @property
    def filename(self) -> str:
        return f"contrato-{self.request_id}-v{self.version}.pdf"


@dataclass(frozen=True)
class ContractFile:
    filename: str
    media_type: str
    content: bytes


class ContractRenderer(Protocol):
    media_type: str

    def render(self, document: ContractDocument) -> bytes: ...


class PdfContractRenderer:
    media_type = "application/pdf"

    def render(self, document: ContractDocument) -> bytes:
        buffer = io.BytesIO()
        c = canvas.Canvas(buffer, pagesize=A4)
        c.setTitle(document.filename)
        width, height = A4
        y = height - MARGIN

        def ensure_room(lines: int = 1) -> None:
            nonlocal y
            if y - lines * LINE < MARGIN:
                c.showPage()
                y = height - MARGIN

        def text(value: str, x: float = MARGIN, font: str = "Helvetica", size: int = 10, color=None) -> None:
            nonlocal y
            c.setFont(font, size)
            c.setFillColor(color or HexColor("#000000"))
            for chunk in simpleSplit(value, font, size, width - x - MARGIN) or [""]:
                ensure_room()
                c.drawString(x, y, chunk)
                y -= LINE

        def row(label: str, amount: str, bold: bool = False) -> None:
            nonlocal y
            ensure_room()
            font = "Helvetica-Bold" if bold else "Helvetica"
            c.setFont(font, 10)
            c.setFillColor(HexColor("#000000"))
            c.drawString(MARGIN, y, label[:90])
            c.drawRightString(width - MARGIN, y, amount)
            y -= LINE

        def section(title: str) -> None:
            nonlocal y
            ensure_room(3)
            y -= LINE / 2
            c.setStrokeColor(RULE)
            c.line(MARGIN, y + LINE - 2, width - MARGIN, y + LINE - 2)
            text(title, font="Helvetica-Bold", size=11, color=NAVY)

        text("Contrato de veiculação", font="Helvetica-Bold", size=16, color=NAVY)
        text(f"{document.company_name} • Solicitação {document.request_id} • Proposta v{document.version}", color=GRAY)
        if document.approved_at:
            text(f"Aprovada em {document.approved_at.strftime('%d/%m/%Y %H:%M')} (UTC)", color=GRAY)

        section("Contratante")
        text(document.customer_name)
        if document.customer_company_name:
            text(document.customer_company_name)
        if document.customer_cnpj:
            text(f"CNPJ {document.customer_cnpj}")
        text(f"{document.customer_email} • {document.customer_phone}")

        breakdown_items = {i.get("itemId"): i for i in document.totals.get("breakdown", {}).get("items", [])}
        section("Pontos e faces")
        for item in document.items:
            snap = item.snapshot
            label = snap.point_name
            if snap.unit_label:
                label = f"{label} • {snap.unit_label}"
            price = breakdown_items.get(item.id, {}).get("referencePrice", 0)
            row(f"{label} ({format_duration_parts(item.duration.model_dump())})", format_brl(price))
            if snap.address_line:
                text(snap.address_line, x=MARGIN + 12, size=9, color=GRAY)

        if document.draft.services or document.draft.manual_service_value:
            section("Serviços")
            for line in document.draft.services:
                row(line.name, format_brl(line.value))
            if document.draft.manual_service_value:
                row("Serviço manual", format_brl(document.draft.manual_service_value))

        if document.draft.costs:
            section("Custos de produção")
            for line in document.draft.costs:
                row(line.name, format_brl(line.value))

        applied = document.totals.get("breakdown", {}).get("appliedDiscounts", [])
        if applied:
            section("Descontos")
            for entry in applied:
                row(entry.get("label") or entry.get("id", ""), format_brl(-float(entry.get("amount") or 0)))

        if document.draft.gifts:
            section("Bonificações (sem custo)")
            for gift in document.draft.gifts:
                row(
                    f"{gift.label or gift.scope.value} ({format_duration_parts(gift.duration.model_dump())})",
                    format_brl(0),
                )

        section("Totais")
        row("Base", format_brl(document.totals.get("base")))
        row("Serviços", format_brl(document.totals.get("services")))
        row("Custos", format_brl(document.totals.get("costs")))
        row("Descontos", format_brl(-float(document.totals.get("discount") or 0)))
        row("Total", format_brl(document.totals.get("total")), bold=True)

        if document.draft.message:
            section("Observações")
            text(document.draft.message)

        c.showPage()
        c.save()
        return buffer.getvalue()
