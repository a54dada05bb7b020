# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Plain-text mail templates and user-facing result messages.

Confirmation mails summarise the fields relevant to each form; operator
notifications list every submitted field. Both are rendered from ordered
``(label, value)`` pairs. Supported locales are ``pl`` (default) and ``en``.
"""

from __future__ import annotations

from typing import Any

DEFAULT_LOCALE = "pl"
LOCALES = ("pl", "en")

SERVICE_NAMES: dict[str, dict[str, str]] = {
    "virtual-office": {"pl": "biuro wirtualne", "en": "virtual office"},
    "coworking": {"pl": "coworking", "en": "coworking"},
    "meeting-room": {"pl": "sala konferencyjna", "en": "meeting room"},
    "advertising": {"pl": "reklama", "en": "advertising"},
    "special-deals": {"pl": "oferty specjalne", "en": "special deals"},
    "contact": {"pl": "kontakt", "en": "contact"},
}

CONFIRMATION_SUBJECTS: dict[str, dict[str, str]] = {
    "pl": {
        "virtual-office": "Potwierdzenie zapytania o biuro wirtualne - Gliwicka 111",
        "coworking": "Potwierdzenie zapytania o coworking - Gliwicka 111",
        "meeting-room": "Potwierdzenie rezerwacji sali - Gliwicka 111",
        "advertising": "Potwierdzenie zapytania o reklamę - Gliwicka 111",
        "special-deals": "Potwierdzenie zapytania o oferty specjalne - Gliwicka 111",
        "contact": "Potwierdzenie wiadomości - Gliwicka 111",
    },
    "en": {
        "virtual-office": "Virtual Office Inquiry Confirmation - Gliwicka 111",
        "coworking": "Coworking Inquiry Confirmation - Gliwicka 111",
        "meeting-room": "Meeting Room Booking Confirmation - Gliwicka 111",
        "advertising": "Advertising Inquiry Confirmation - Gliwicka 111",
        "special-deals": "Special Deals Inquiry Confirmation - Gliwicka 111",
        "contact": "Message Confirmation - Gliwicka 111",
    },
}
FALLBACK_SUBJECT = {"pl": "Potwierdzenie - Gliwicka 111", "en": "Confirmation - Gliwicka 111"}

# Fields echoed back to the submitter, in display order
CONFIRMATION_FIELDS: dict[str, tuple[str, ...]] = {
    "virtual-office": ("companyName", "startDate", "package", "businessType"),
    "coworking": ("companyName", "startDate", "workspaceType", "duration", "teamSize"),
    "meeting-room": ("companyName", "date", "startTime", "endTime", "attendees", "roomType"),
    "advertising": ("companyName", "startDate", "campaignType", "duration", "budget"),
    "special-deals": ("companyName", "timeline", "dealType", "budget"),
    "contact": ("subject",),
}

FIELD_LABELS: dict[str, dict[str, str]] = {
    "firstName": {"pl": "Imię", "en": "First name"},
    "lastName": {"pl": "Nazwisko", "en": "Last name"},
    "email": {"pl": "E-mail", "en": "Email"},
    "phone": {"pl": "Telefon", "en": "Phone"},
    "companyName": {"pl": "Nazwa firmy", "en": "Company name"},
    "startDate": {"pl": "Data rozpoczęcia", "en": "Start date"},
    "package": {"pl": "Pakiet", "en": "Package"},
    "businessType": {"pl": "Forma działalności", "en": "Business type"},
    "workspaceType": {"pl": "Typ przestrzeni", "en": "Workspace type"},
    "duration": {"pl": "Okres", "en": "Duration"},
    "teamSize": {"pl": "Wielkość zespołu", "en": "Team size"},
    "date": {"pl": "Data", "en": "Date"},
    "startTime": {"pl": "Godzina rozpoczęcia", "en": "Start time"},
    "endTime": {"pl": "Godzina zakończenia", "en": "End time"},
    "attendees": {"pl": "Liczba uczestników", "en": "Attendees"},
    "roomType": {"pl": "Typ sali", "en": "Room type"},
    "campaignType": {"pl": "Typ kampanii", "en": "Campaign type"},
    "budget": {"pl": "Budżet", "en": "Budget"},
    "timeline": {"pl": "Harmonogram", "en": "Timeline"},
    "dealType": {"pl": "Typ oferty", "en": "Deal type"},
    "subject": {"pl": "Temat", "en": "Subject"},
    "message": {"pl": "Wiadomość", "en": "Message"},
}

RESULT_MESSAGES: dict[str, dict[str, str]] = {
    "success": {
        "pl": "Formularz został wysłany pomyślnie. Skontaktujemy się z Tobą wkrótce.",
        "en": "Form submitted successfully. We will contact you soon.",
    },
    "rate_limited": {
        "pl": "Zbyt wiele zgłoszeń. Spróbuj ponownie za chwilę.",
        "en": "Too many requests. Please try again later.",
    },
    "server_error": {
        "pl": "Wystąpił błąd podczas wysyłania formularza. Spróbuj ponownie.",
        "en": "An error occurred while submitting the form. Please try again.",
    },
}


def normalize_locale(locale: str | None) -> str:
    if locale and locale.lower()[:2] in LOCALES:
        return locale.lower()[:2]
    return DEFAULT_LOCALE


def service_name(form_type: str, locale: str) -> str:
    names = SERVICE_NAMES.get(form_type)
    return names[normalize_locale(locale)] if names else form_type


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(item) for item in value)
    return str(value)


def summary_pairs(
    data: dict[str, Any], form_type: str, locale: str, *, all_fields: bool = False
) -> list[tuple[str, str]]:
    """Ordered (label, value) pairs of the non-empty fields of a submission.

    With ``all_fields`` every field is listed in submission order, otherwise
    only the fields relevant to ``form_type``.
    """
    locale = normalize_locale(locale)
    keys = list(data) if all_fields else CONFIRMATION_FIELDS.get(form_type, tuple(data))
    pairs = []
    for key in keys:
        value = data.get(key)
        if value in (None, "", [], ()):
            continue
        label = FIELD_LABELS.get(key, {}).get(locale, key)
        pairs.append((label, _format_value(value)))
    return pairs


def render_summary(pairs: list[tuple[str, str]]) -> str:
    return "\n".join(f"{label}: {value}" for label, value in pairs)


def confirmation_subject(form_type: str, locale: str) -> str:
    locale = normalize_locale(locale)
    return CONFIRMATION_SUBJECTS[locale].get(form_type, FALLBACK_SUBJECT[locale])


def confirmation_body(data: dict[str, Any], form_type: str, locale: str) -> str:
    locale = normalize_locale(locale)
    service = service_name(form_type, locale)
    if locale == "en":
        intro, outro = f"Thank you for your {service} inquiry.", "We will contact you soon."
    else:
        intro, outro = f"Dziękujemy za zgłoszenie dotyczące {service}.", "Skontaktujemy się wkrótce."
    summary = render_summary(summary_pairs(data, form_type, locale))
    parts = [intro, summary, outro] if summary else [intro, outro]
    return "\n\n".join(parts)


def notification_subject(form_type: str, locale: str) -> str:
    locale = normalize_locale(locale)
    service = service_name(form_type, locale)
    return f"New submission: {service}" if locale == "en" else f"Nowe zgłoszenie: {service}"


def notification_body(data: dict[str, Any], form_type: str, locale: str) -> str:
    locale = normalize_locale(locale)
    service = service_name(form_type, locale)
    email = data.get("email", "-")
    if locale == "en":
        intro = f"New submission from {email} regarding {service}."
    else:
        intro = f"Nowe zgłoszenie od {email} dotyczące {service}."
    summary = render_summary(summary_pairs(data, form_type, locale, all_fields=True))
    return f"{intro}\n\n{summary}" if summary else intro


def escalation_subject(channel: str) -> str:
    return f"Email retry failed: {channel}"


def escalation_body(record_id: int, retry_count: int, error: str) -> str:
    return f"Email with ID {record_id} failed after {retry_count} attempts. Last error: {error}"


def result_message(key: str, locale: str | None) -> str:
    return RESULT_MESSAGES[key][normalize_locale(locale)]
