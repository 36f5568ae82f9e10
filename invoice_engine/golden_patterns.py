from __future__ import annotations

from typing import Any

from schemas.extraction_schema import PatternCategory, RuleDraft

GOLDEN_CREATED_BY = "SYSTEM_GOLDEN"

_CUR = r"(?:\$|USD|€|EUR|£|GBP|¥|JPY|₹|INR)"
_AMT = r"([0-9]{1,3}(?:,[0-9]{3})+(?:\.[0-9]{2})?|[0-9]+(?:\.[0-9]{2})?)"
_DATE_ANY = r"([A-Za-z]{3,9}\s+\d{1,2},?\s+\d{4}|\d{4}-\d{2}-\d{2}|\d{1,2}[/.]\d{1,2}[/.]\d{4})"

# Empty flags mean case-sensitive; None falls back to IGNORECASE.
GOLDEN_PATTERNS: tuple[dict[str, Any], ...] = (
    {
        "name": "Receipt_InvoiceHash",
        "category": PatternCategory.INVOICE_NUMBER,
        "regex": r"(?i)INVOICE\s*#\s*([0-9]{4,})",
        "priority": 4,
        "confidence_weight": 0.92,
        "description": "INVOICE # 12345 on receipts",
    },
    {
        "name": "InvoiceNumber_Labelled",
        "category": PatternCategory.INVOICE_NUMBER,
        "regex": r"(?i)invoice\s+number\s+([A-Z0-9-]{3,})",
        "priority": 5,
        "confidence_weight": 1.0,
        "description": "Invoice Number INV-3337",
    },
    {
        "name": "OrderNumber_AsInvoiceNumber",
        "category": PatternCategory.INVOICE_NUMBER,
        "regex": r"(?i)order\s+number\s+([A-Z0-9-]{3,})",
        "priority": 8,
        "confidence_weight": 0.8,
        "description": "Order Number used when no invoice number is printed",
    },
    {
        "name": "InvoiceNumber_WithColon",
        "category": PatternCategory.INVOICE_NUMBER,
        "regex": r"(?i)invoice\s+(?:number|no\.?)\s*:\s*([A-Z0-9-]{3,})",
        "priority": 15,
        "confidence_weight": 0.9,
        "description": "Invoice Number: INV-001 / Invoice No.: 001",
    },
    {
        "name": "InvoiceNumber_Hash",
        "category": PatternCategory.INVOICE_NUMBER,
        "regex": r"(?i)(?:invoice|inv)\s*[-#:]?\s*([A-Z0-9]{3,}-?[0-9]{3,})",
        "priority": 20,
        "confidence_weight": 0.8,
        "description": "INV#2024-001 and similar compact forms",
    },
    {
        "name": "Receipt_BalanceDue",
        "category": PatternCategory.AMOUNT,
        "regex": r"(?i)balance\s+due:?\s*\$?\s*" + _AMT,
        "priority": 4,
        "confidence_weight": 0.95,
    },
    {
        "name": "TotalDue_CurrencyFirst",
        "category": PatternCategory.AMOUNT,
        "regex": r"(?i)total\s+due\s+" + _CUR + r"\s*" + _AMT,
        "priority": 5,
        "confidence_weight": 1.0,
        "description": "Total Due $93.50",
    },
    {
        "name": "Total_EndOfLine",
        "category": PatternCategory.AMOUNT,
        "regex": r"^total\s+" + _CUR + r"?\s*" + _AMT + r"\s*$",
        "flags": "IGNORECASE,MULTILINE",
        "priority": 6,
        "confidence_weight": 0.95,
    },
    {
        "name": "Total_Colon_Dollar",
        "category": PatternCategory.AMOUNT,
        "regex": r"(?i)\btotal\s*:\s*\$\s*" + _AMT,
        "priority": 7,
        "confidence_weight": 0.98,
        "description": "Total: $6,590.50",
    },
    {
        "name": "Amount_WithColon",
        "category": PatternCategory.AMOUNT,
        "regex": r"(?i)\b(?:grand\s+total|amount\s+due|total\s+amount|final\s+amount|total)\s*:\s*"
        + _CUR
        + r"?\s*"
        + _AMT,
        "priority": 20,
        "confidence_weight": 0.8,
    },
    {
        "name": "Amount_CurrencyFirst",
        "category": PatternCategory.AMOUNT,
        "regex": _CUR + r"\s*" + _AMT,
        "priority": 30,
        "confidence_weight": 0.7,
    },
    {
        "name": "Subtotal_Labelled",
        "category": PatternCategory.SUBTOTAL_AMOUNT,
        "regex": r"(?i)sub[\s-]?total\s*:?\s*" + _CUR + r"?\s*" + _AMT,
        "priority": 5,
        "confidence_weight": 0.9,
    },
    {
        "name": "Subtotal_NetAmount",
        "category": PatternCategory.SUBTOTAL_AMOUNT,
        "regex": r"(?i)net\s+amount\s*:?\s*" + _CUR + r"?\s*" + _AMT,
        "priority": 20,
        "confidence_weight": 0.8,
    },
    {
        "name": "Tax_Labelled",
        "category": PatternCategory.TAX_AMOUNT,
        "regex": r"(?i)\b(?:sales\s+)?(?:tax|vat|gst)(?:\s+amount)?\s*(?:\([0-9.]+%\))?\s*:?\s*"
        + _CUR
        + r"?\s*"
        + _AMT,
        "priority": 5,
        "confidence_weight": 0.9,
        "description": "Tax: $10.00 / VAT (20%): 12.00",
    },
    {
        "name": "InvoiceDate_Labelled",
        "category": PatternCategory.INVOICE_DATE,
        "regex": r"(?i)(?:invoice\s+date|bill\s+date|date\s+issued|issued)\s*:?\s*" + _DATE_ANY,
        "priority": 3,
        "confidence_weight": 1.0,
    },
    {
        "name": "European_DateDots",
        "category": PatternCategory.INVOICE_DATE,
        "regex": r"(\d{1,2}\.\d{1,2}\.\d{4})",
        "date_format": "%d.%m.%Y",
        "priority": 4,
        "confidence_weight": 0.9,
    },
    {
        "name": "Date_MonthDayYear",
        "category": PatternCategory.INVOICE_DATE,
        "regex": r"([A-Za-z]{3,9}\s+\d{1,2},?\s+\d{4})",
        "date_format": "%B %d, %Y",
        "priority": 5,
        "confidence_weight": 1.0,
        "description": "January 5, 2026",
    },
    {
        "name": "Date_ISO",
        "category": PatternCategory.INVOICE_DATE,
        "regex": r"(\d{4}-\d{2}-\d{2})",
        "date_format": "%Y-%m-%d",
        "priority": 15,
        "confidence_weight": 0.9,
    },
    {
        "name": "Date_MMDDYYYY",
        "category": PatternCategory.INVOICE_DATE,
        "regex": r"(\d{1,2}/\d{1,2}/\d{4})",
        "date_format": "%m/%d/%Y",
        "priority": 20,
        "confidence_weight": 0.8,
    },
    {
        "name": "Date_DDMMYYYY",
        "category": PatternCategory.INVOICE_DATE,
        "regex": r"(\d{1,2}/\d{1,2}/\d{4})",
        "date_format": "%d/%m/%Y",
        "priority": 25,
        "confidence_weight": 0.7,
    },
    {
        "name": "DueDate_Labelled",
        "category": PatternCategory.DUE_DATE,
        "regex": r"(?i)(?:due\s+date|payment\s+due|pay\s+by|payment\s+date)\s*:?\s*" + _DATE_ANY,
        "priority": 5,
        "confidence_weight": 1.0,
    },
    {
        "name": "Vendor_From",
        "category": PatternCategory.VENDOR,
        "regex": r"from:[ \t]*([A-Za-z0-9 \t\-,.&]+?)"
        r"(?=[ \t]*(?:\b(?:suite|street|avenue|road|po[ \t]+box)\b|\d+|$))",
        "flags": "IGNORECASE,MULTILINE",
        "priority": 5,
        "confidence_weight": 1.0,
    },
    {
        "name": "Vendor_Company",
        "category": PatternCategory.VENDOR,
        "regex": r"(?i)(?:company|vendor|supplier)[ \t]*:[ \t]*([A-Za-z0-9 \t\-,.&]+)",
        "priority": 20,
        "confidence_weight": 0.8,
    },
    {
        "name": "Vendor_LegalSuffix",
        "category": PatternCategory.VENDOR,
        "regex": r"\b([A-Z][A-Za-z0-9&.\- \t]*?[ \t](?:GmbH|AG|Ltd|LLC|Inc|Corp)\b\.?)",
        "flags": "",
        "priority": 25,
        "confidence_weight": 0.75,
    },
    {
        "name": "Email_Standard",
        "category": PatternCategory.EMAIL,
        "regex": r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})",
        "priority": 10,
        "confidence_weight": 0.9,
    },
    {
        "name": "Customer_BillTo",
        "category": PatternCategory.CUSTOMER,
        "regex": r"(?:bill(?:ed)?[ \t]+to|sold[ \t]+to|customer)[ \t]*:?[ \t]*\n?[ \t]*"
        r"([A-Za-z][A-Za-z0-9 \t&.,'-]{2,})",
        "priority": 10,
        "confidence_weight": 0.8,
    },
    {
        "name": "Phone_Standard",
        "category": PatternCategory.PHONE,
        "regex": r"(\(?\d{3}\)?[-\s.]?\d{3}[-\s.]?\d{4})",
        "priority": 10,
        "confidence_weight": 0.7,
    },
    {
        "name": "Address_Standard",
        "category": PatternCategory.ADDRESS,
        "regex": r"([A-Za-z0-9 \t,.-]+),[ \t]*([A-Za-z \t]+),?[ \t]*([A-Z]{2})[ \t]+([0-9]{5}(?:-[0-9]{4})?)",
        "flags": "",
        "capture_group": 0,
        "priority": 10,
        "confidence_weight": 0.9,
    },
    {
        "name": "Currency_Code",
        "category": PatternCategory.CURRENCY,
        "regex": r"\b(USD|EUR|GBP|CAD|AUD|JPY|CHF|CNY|INR)\b",
        "flags": "",
        "priority": 5,
        "confidence_weight": 0.9,
    },
    {
        "name": "Currency_Symbol",
        "category": PatternCategory.CURRENCY,
        "regex": r"[$€£¥₹]",
        "capture_group": 0,
        "priority": 10,
        "confidence_weight": 0.8,
    },
    {
        "name": "PaymentTerms_Net",
        "category": PatternCategory.PAYMENT_TERMS,
        "regex": r"\b(net[ \t]*[-/]?[ \t]*\d{1,3}(?:[ \t]+days)?|due[ \t]+(?:on|upon)[ \t]+receipt)\b",
        "priority": 10,
        "confidence_weight": 0.85,
    },
)

EXPECTED_GOLDEN_PATTERNS = 12


def golden_drafts() -> list[RuleDraft]:
    return [RuleDraft(created_by=GOLDEN_CREATED_BY, **entry) for entry in GOLDEN_PATTERNS]
