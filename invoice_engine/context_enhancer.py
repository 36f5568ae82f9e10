from __future__ import annotations

import logging
from datetime import date

from invoice_engine.extraction_engine import FieldExtractionEngine
from invoice_engine.normalization import PUBLIC_EMAIL_PROVIDERS, email_domain_label, names_consistent
from invoice_engine.pattern_registry import RegistrySnapshot
from schemas.extraction_schema import ExtractedInvoiceData, FieldExtraction

logger = logging.getLogger(__name__)

EMAIL_VENDOR_CONFIDENCE = 0.8
SUBJECT_INVOICE_NUMBER_CONFIDENCE = 0.7
LOW_VENDOR_CONFIDENCE = 0.7


def vendor_from_sender(sender_email: str | None) -> str | None:
    label = email_domain_label(sender_email)
    if not label or label.lower() in PUBLIC_EMAIL_PROVIDERS:
        return None
    return label[:1].upper() + label[1:].lower()


class ContextEnhancer:
    """Fills gaps from the email envelope. Never replaces a value already present."""

    def __init__(self, engine: FieldExtractionEngine, *, default_currency: str = "USD") -> None:
        self._engine = engine
        self._default_currency = default_currency

    def enhance(
        self,
        data: ExtractedInvoiceData,
        snapshot: RegistrySnapshot,
        *,
        email_subject: str | None = None,
        sender_email: str | None = None,
        today: date | None = None,
    ) -> ExtractedInvoiceData:
        updates: dict[str, object] = {}
        added: list[FieldExtraction] = []

        derived_vendor = vendor_from_sender(sender_email)
        if derived_vendor:
            if data.vendor_name is None:
                updates["vendor_name"] = derived_vendor
                added.append(self._email_record("vendor_name", derived_vendor, sender_email))
            elif data.confidence_for("vendor_name") < LOW_VENDOR_CONFIDENCE and names_consistent(
                data.vendor_name, derived_vendor
            ):
                # sender domain corroborates the weak match; the extracted text stays
                added.append(self._email_record("vendor_name", data.vendor_name, sender_email))

        if data.invoice_number is None and email_subject and email_subject.strip():
            found = self._engine.extract_field("invoice_number", email_subject, snapshot, today=today)
            if found is not None:
                updates["invoice_number"] = found.value
                added.append(
                    found.model_copy(
                        update={
                            "confidence": SUBJECT_INVOICE_NUMBER_CONFIDENCE,
                            "method": "email-enhancement",
                            "line_number": None,
                        }
                    )
                )

        if data.currency is None:
            updates["currency"] = self._default_currency

        if added:
            logger.info("Email context added %s", ", ".join(item.field_name for item in added))
        if not updates and not added:
            return data
        updates["field_extractions"] = data.field_extractions + tuple(added)
        return data.model_copy(update=updates)

    @staticmethod
    def _email_record(field_name: str, value: str, sender_email: str | None) -> FieldExtraction:
        return FieldExtraction(
            field_name=field_name,
            value=value,
            confidence=EMAIL_VENDOR_CONFIDENCE,
            method="email-enhancement",
            source_text=sender_email,
        )
