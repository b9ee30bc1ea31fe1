"""Printable FNSKU label sheets for products that have no inbound shipment yet."""

from datetime import date
from html import escape
from typing import Optional

from pydantic import BaseModel

JSBARCODE_URL = "https://cdn.jsdelivr.net/npm/jsbarcode@3.11.6/dist/JsBarcode.all.min.js"
MAX_TITLE_LENGTH = 60

LABEL_SIZES = {
    # page type: (width, height)
    "plain": ("3.5in", "1.15in"),
    "letter-6": ("3.5in", "1.25in"),
}


class LabelItem(BaseModel):
    """One product to print a label for."""

    sku: str
    title: str
    fnsku: Optional[str] = None
    asin: Optional[str] = None
    condition: str = "New"

    @property
    def barcode(self) -> str:
        return self.fnsku or self.sku


def label_size(page_type: Optional[str]) -> str:
    return "letter-6" if page_type == "PackageLabel_Letter_6" else "plain"


def _truncate(title: str) -> str:
    if len(title) > MAX_TITLE_LENGTH:
        return title[: MAX_TITLE_LENGTH - 3] + "..."
    return title


def _summary_row(index: int, item: LabelItem) -> str:
    cells = [str(index), item.title, item.sku, item.barcode, item.asin or "-", item.condition]
    return "<tr>" + "".join(f"<td>{escape(cell)}</td>" for cell in cells) + "</tr>"


def _label(index: int, item: LabelItem, width: str, height: str) -> str:
    asin = f" | ASIN: {escape(item.asin)}" if item.asin else ""
    barcode = escape(item.barcode)
    return f"""
    <div class="label-wrapper">
      <div class="label-id no-print">Label #{index} - SKU: {escape(item.sku)}{asin} | {escape(item.condition)}</div>
      <div class="label" style="width: {width}; height: {height};">
        <div class="label-title">{escape(_truncate(item.title))}</div>
        <div class="label-barcode"><svg class="barcode" data-value="{barcode}"></svg></div>
        <div class="label-footer"><span class="label-code">{barcode}</span><span>{escape(item.condition)}</span></div>
      </div>
    </div>"""


def render_fnsku_labels(
    items: list[LabelItem], page_type: Optional[str] = None, today: Optional[date] = None
) -> str:
    """
    Render an HTML page with a summary table and one CODE128 label per item.

    Barcodes are drawn client-side by JsBarcode from each label's data-value.
    """
    width, height = LABEL_SIZES[label_size(page_type)]
    today = today or date.today()
    plural = "s" if len(items) != 1 else ""
    rows = "".join(_summary_row(i, item) for i, item in enumerate(items, start=1))
    labels = "".join(_label(i, item, width, height) for i, item in enumerate(items, start=1))

    return f"""<!DOCTYPE html>
<html>
<head>
  <title>FNSKU Labels - {len(items)} Product{plural}</title>
  <script src="{JSBARCODE_URL}"></script>
  <style>
    @media print {{ body {{ margin: 0; }} .no-print {{ display: none !important; }} }}
    @media screen {{ body {{ font-family: Arial, sans-serif; padding: 20px; max-width: 800px; margin: 0 auto; }} }}
    .summary-table {{ width: 100%; border-collapse: collapse; margin-bottom: 24px; }}
    .summary-table td, .summary-table th {{ padding: 4px 8px; border-bottom: 1px solid #e5e5e5; font-size: 12px; text-align: left; }}
    .label-wrapper {{ page-break-inside: avoid; margin-bottom: 12px; }}
    .label-id {{ font-size: 10px; color: #999; }}
    .label {{ border: 1px solid #000; padding: 6px 8px; font-family: Arial, sans-serif; overflow: hidden; box-sizing: border-box; }}
    .label-title {{ font-size: 8px; font-weight: bold; white-space: nowrap; overflow: hidden; text-overflow: ellipsis; }}
    .label-barcode {{ text-align: center; margin: 3px 0; }}
    .label-footer {{ display: flex; justify-content: space-between; font-size: 7px; }}
    .label-code {{ font-weight: bold; font-family: monospace; }}
  </style>
</head>
<body>
  <div class="no-print">
    <h1>FNSKU Product Labels</h1>
    <p>{len(items)} label{plural} generated - {today.strftime("%B %d, %Y")}</p>
    <button onclick="window.print()">Print All Labels</button>
    <table class="summary-table">
      <thead><tr><th>#</th><th>Product Title</th><th>SKU</th><th>FNSKU / Barcode</th><th>ASIN</th><th>Condition</th></tr></thead>
      <tbody>{rows}</tbody>
    </table>
  </div>
  <div class="labels-section">{labels}
  </div>
  <script>
    document.querySelectorAll('.barcode').forEach(function (el) {{
      try {{
        JsBarcode(el, el.dataset.value, {{ format: "CODE128", width: 1.8, height: 35, displayValue: false, margin: 0 }});
      }} catch (e) {{ console.log('Barcode error:', e); }}
    }});
  </script>
</body>
</html>"""
