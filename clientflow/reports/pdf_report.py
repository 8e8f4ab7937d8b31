from io import BytesIO
from datetime import date, datetime
from typing import Optional, Dict, List, Tuple
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib import colors
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle


BRAND_COLOR = colors.HexColor('#1f3a8a')


def _text(value: Optional[str]) -> str:
    if not value:
        return "<i>Not provided</i>"
    return escape(value).replace("\n", "<br/>")


def create_weekly_report_pdf(
    client_name: str,
    service_name: str,
    employee_name: str,
    week_start_date: date,
    sections: List[Tuple[str, Optional[str]]],
    status: str,
    approved_at: Optional[datetime] = None,
    metrics: Optional[Dict[str, float]] = None,
) -> BytesIO:
    """
    Render one weekly report as a single PDF document.

    Args:
        sections: (heading, body) pairs, in display order
        metrics: Optional totals of the week's daily metrics, shown as a table

    Returns:
        BytesIO buffer positioned at the start of the PDF
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=54,
        leftMargin=54,
        topMargin=54,
        bottomMargin=54,
        title=f"{client_name} - Week of {week_start_date.isoformat()}",
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'ReportTitle',
        parent=styles['Heading1'],
        fontSize=22,
        textColor=BRAND_COLOR,
        spaceAfter=6,
        fontName='Helvetica-Bold',
    )
    meta_style = ParagraphStyle(
        'ReportMeta',
        parent=styles['Normal'],
        fontSize=10,
        textColor=colors.HexColor('#555555'),
        spaceAfter=2,
    )
    heading_style = ParagraphStyle(
        'SectionHeading',
        parent=styles['Heading2'],
        fontSize=13,
        textColor=BRAND_COLOR,
        spaceBefore=12,
        spaceAfter=4,
    )
    body_style = ParagraphStyle(
        'SectionBody',
        parent=styles['Normal'],
        fontSize=10.5,
        leading=14,
    )

    story = [
        Paragraph(escape(client_name), title_style),
        Paragraph(f"{escape(service_name)} &middot; Week of {week_start_date.strftime('%B %d, %Y')}", meta_style),
        Paragraph(f"Prepared by {escape(employee_name)}", meta_style),
    ]
    status_line = f"Status: {escape(status.title())}"
    if approved_at:
        status_line += f" on {approved_at.strftime('%B %d, %Y')}"
    story.append(Paragraph(status_line, meta_style))
    story.append(Spacer(1, 0.2 * inch))

    for heading, body in sections:
        story.append(Paragraph(escape(heading), heading_style))
        story.append(Paragraph(_text(body), body_style))

    if metrics:
        story.append(Paragraph("Activity This Week", heading_style))
        rows = [["Metric", "Total"]]
        for label, value in metrics.items():
            rows.append([label, f"{value:g}"])
        table = Table(rows, colWidths=[4 * inch, 1.5 * inch])
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), BRAND_COLOR),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -1), 0.25, colors.HexColor('#cccccc')),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#f3f4f6')]),
        ]))
        story.append(table)

    doc.build(story)
    buffer.seek(0)
    return buffer
