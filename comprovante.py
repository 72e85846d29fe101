# comprovante.py
"""
Geração do comprovante em PDF de um pagamento Pix concluído.

Layout fixo de uma página A4. Para as mesmas entradas o PDF só muda no
carimbo de data/hora da emissão (o canvas é gerado em modo invariante).
"""

import io
import re
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import qrcode
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from config import Config
from pagamentos import KeyType, PaymentInstruction, TIMEZONE

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

STATUS_LABELS = {
    "PROCESSADO": "Pagamento realizado",
    "AGENDADO": "Pagamento agendado",
    "APROVACAO": "Aguardando aprovação",
}

TRANSACTION_FIELDS = (
    ("endToEndId", "ID da transação (E2E)"),
    ("codigoSolicitacao", "Código da solicitação"),
    ("dataPagamento", "Data do pagamento"),
    ("dataOperacao", "Data da operação"),
)

DISCLAIMER = (
    "Este comprovante foi gerado automaticamente a partir da resposta do banco",
    "e não substitui o extrato oficial da conta.",
)


class RenderError(Exception):
    """Faltam dados para montar o comprovante. Só suprime o comprovante."""


@dataclass(frozen=True)
class ReceiptDocument:
    content: bytes
    filename: str
    content_type: str = PDF_CONTENT_TYPE


class Design:
    PRIMARY = '#FF7A00'      # Laranja (faixa do cabeçalho)
    DARK = '#343a40'         # Cinza escuro (textos)
    GRAY = '#6c757d'         # Cinza (rótulos)
    LINE = '#dee2e6'

    FONT_BOLD = "Helvetica-Bold"
    FONT_REGULAR = "Helvetica"
    FONT_ITALIC = "Helvetica-Oblique"

    MARGIN_LEFT = 2.0*cm
    MARGIN_RIGHT = 2.0*cm
    MARGIN_TOP = 2.0*cm
    MARGIN_BOTTOM = 2.0*cm

    LINE_HEIGHT = 0.6*cm
    SECTION_GAP = 0.9*cm
    QR_SIZE = 3.5*cm


def format_brl(value) -> str:
    """Decimal('1234.5') -> 'R$ 1.234,50'"""
    text = f"{Decimal(value):,.2f}"
    return "R$ " + text.replace(',', '_').replace('.', ',').replace('_', '.')


def mask_document(document: str, key_type: KeyType) -> str:
    digits = re.sub(r'[^0-9]', '', document or '')
    if key_type == KeyType.CPF and len(digits) == 11:
        return f"***.{digits[3:6]}.{digits[6:9]}-**"
    if key_type == KeyType.CNPJ and len(digits) == 14:
        return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"
    return document


def status_label(provider_response) -> str:
    return STATUS_LABELS.get(str(provider_response.get("tipoRetorno", "")).upper(), "Pagamento enviado")


def _draw_line(c, y_pos):
    largura = A4[0]
    c.setStrokeColor(HexColor(Design.LINE))
    c.setLineWidth(0.8)
    c.line(Design.MARGIN_LEFT, y_pos, largura - Design.MARGIN_RIGHT, y_pos)
    return y_pos - Design.LINE_HEIGHT


def _draw_section(c, y_pos, title, rows):
    """Título da seção seguido de pares rótulo/valor."""
    c.setFont(Design.FONT_BOLD, 11)
    c.setFillColor(HexColor(Design.DARK))
    c.drawString(Design.MARGIN_LEFT, y_pos, title)
    y_pos -= Design.LINE_HEIGHT
    for label, value in rows:
        c.setFont(Design.FONT_REGULAR, 9)
        c.setFillColor(HexColor(Design.GRAY))
        c.drawString(Design.MARGIN_LEFT, y_pos, label)
        c.setFont(Design.FONT_BOLD, 9)
        c.setFillColor(HexColor(Design.DARK))
        c.drawString(Design.MARGIN_LEFT + 5.5*cm, y_pos, str(value))
        y_pos -= Design.LINE_HEIGHT
    return y_pos - (Design.SECTION_GAP - Design.LINE_HEIGHT)


def _qr_image(data: str) -> ImageReader:
    qr = qrcode.QRCode(box_size=10, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffered = io.BytesIO()
    img.save(buffered, format="PNG")
    buffered.seek(0)
    return ImageReader(buffered)


class ReceiptRenderer:
    def __init__(self, config: Config, clock=None):
        self.config = config
        self.clock = clock or (lambda: datetime.now(TIMEZONE))

    def _validate(self, instruction, provider_response):
        if instruction is None:
            raise RenderError("Instrução de pagamento ausente")
        if getattr(instruction, 'amount', None) is None:
            raise RenderError("Instrução sem valor")
        if not getattr(instruction, 'key', None):
            raise RenderError("Instrução sem chave Pix")
        if not isinstance(provider_response, dict):
            raise RenderError("Resposta do banco ausente ou em formato inesperado")

    def filename_for(self, provider_response, issued_at: datetime) -> str:
        ident = provider_response.get("endToEndId") or provider_response.get("codigoSolicitacao") or "pix"
        ident = re.sub(r'[^A-Za-z0-9]', '', str(ident))[:32] or "pix"
        return f"comprovante-pix-{issued_at.strftime('%Y%m%d%H%M%S')}-{ident}.pdf"

    def render(self, instruction: PaymentInstruction, provider_response) -> ReceiptDocument:
        self._validate(instruction, provider_response)

        issued_at = self.clock().astimezone(TIMEZONE)
        key_type = instruction.resolved_key_type
        largura, altura = A4

        buffer = io.BytesIO()
        c = canvas.Canvas(buffer, pagesize=A4, invariant=1)
        c.setTitle("Comprovante de Pagamento Pix")
        c.setAuthor(self.config.sender_institution)

        # Cabeçalho
        c.setFillColor(HexColor(Design.PRIMARY))
        c.rect(0, altura - 3.0*cm, largura, 3.0*cm, stroke=0, fill=1)
        c.setFillColor(HexColor('#ffffff'))
        c.setFont(Design.FONT_BOLD, 18)
        c.drawString(Design.MARGIN_LEFT, altura - 1.9*cm, "Comprovante de Pagamento Pix")
        c.setFont(Design.FONT_REGULAR, 10)
        c.drawRightString(largura - Design.MARGIN_RIGHT, altura - 1.9*cm, self.config.sender_institution)

        # Status e valor
        y = altura - 3.0*cm - Design.MARGIN_TOP
        c.setFillColor(HexColor(Design.DARK))
        c.setFont(Design.FONT_BOLD, 13)
        c.drawString(Design.MARGIN_LEFT, y, status_label(provider_response))
        c.setFont(Design.FONT_REGULAR, 9)
        c.setFillColor(HexColor(Design.GRAY))
        c.drawRightString(largura - Design.MARGIN_RIGHT, y,
                          f"Emitido em {issued_at.strftime('%d/%m/%Y %H:%M:%S')} (horário de Brasília)")
        y -= Design.SECTION_GAP
        c.setFont(Design.FONT_REGULAR, 10)
        c.drawString(Design.MARGIN_LEFT, y, "Valor")
        y -= Design.LINE_HEIGHT
        c.setFillColor(HexColor(Design.DARK))
        c.setFont(Design.FONT_BOLD, 22)
        c.drawString(Design.MARGIN_LEFT, y - 0.2*cm, format_brl(instruction.amount))
        y -= Design.SECTION_GAP + 0.2*cm
        y = _draw_line(c, y)

        y = _draw_section(c, y, "Dados do pagador", [
            ("Instituição", self.config.sender_institution),
            ("Nome", self.config.sender_name or "-"),
            ("Documento", self.config.sender_document or "-"),
            ("Agência", self.config.sender_agency or "-"),
            ("Conta", self.config.conta_corrente or "-"),
        ])
        y = _draw_line(c, y)

        recipient_rows = [
            ("Chave Pix", mask_document(instruction.key, key_type)
             if key_type in (KeyType.CPF, KeyType.CNPJ) else instruction.key),
            ("Tipo de chave", key_type.label),
            ("Descrição", instruction.description),
        ]
        y = _draw_section(c, y, "Dados do recebedor", recipient_rows)
        y = _draw_line(c, y)

        transaction_rows = [(label, provider_response[name])
                            for name, label in TRANSACTION_FIELDS if provider_response.get(name)]
        y_transaction = y
        _draw_section(c, y, "Dados da transação", transaction_rows or [("Identificador", "-")])

        end_to_end = provider_response.get("endToEndId")
        if end_to_end:
            c.drawImage(_qr_image(str(end_to_end)),
                        largura - Design.MARGIN_RIGHT - Design.QR_SIZE,
                        y_transaction - Design.QR_SIZE,
                        width=Design.QR_SIZE, height=Design.QR_SIZE)

        # Rodapé
        c.setStrokeColor(HexColor(Design.LINE))
        c.line(Design.MARGIN_LEFT, Design.MARGIN_BOTTOM + 0.8*cm,
               largura - Design.MARGIN_RIGHT, Design.MARGIN_BOTTOM + 0.8*cm)
        c.setFont(Design.FONT_ITALIC, 8)
        c.setFillColor(HexColor(Design.GRAY))
        c.drawString(Design.MARGIN_LEFT, Design.MARGIN_BOTTOM + 0.3*cm, DISCLAIMER[0])
        c.drawString(Design.MARGIN_LEFT, Design.MARGIN_BOTTOM - 0.2*cm, DISCLAIMER[1])
        c.drawRightString(largura - Design.MARGIN_RIGHT, Design.MARGIN_BOTTOM - 0.2*cm, "Página 1 de 1")

        c.showPage()
        c.save()

        return ReceiptDocument(
            content=buffer.getvalue(),
            filename=self.filename_for(provider_response, issued_at),
        )
