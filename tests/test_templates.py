from inquiry_relay import templates

DATA = {"companyName": "Test Co", "startDate": "2024-01-01", "package": "basic"}


def test_confirmation_subjects():
    assert templates.confirmation_subject("virtual-office", "pl") == "Potwierdzenie zapytania o biuro wirtualne - Gliwicka 111"
    assert templates.confirmation_subject("virtual-office", "en") == "Virtual Office Inquiry Confirmation - Gliwicka 111"
    assert templates.confirmation_subject("meeting-room", "en") == "Meeting Room Booking Confirmation - Gliwicka 111"
    assert templates.confirmation_subject("advertising", "pl") == "Potwierdzenie zapytania o reklamę - Gliwicka 111"
    assert templates.confirmation_subject("unknown", "pl") == "Potwierdzenie - Gliwicka 111"


def test_confirmation_body_english():
    assert templates.confirmation_body(DATA, "virtual-office", "en") == (
        "Thank you for your virtual office inquiry.\n\n"
        "Company name: Test Co\n"
        "Start date: 2024-01-01\n"
        "Package: basic\n\n"
        "We will contact you soon."
    )


def test_confirmation_body_polish():
    assert templates.confirmation_body(DATA, "virtual-office", "pl") == (
        "Dziękujemy za zgłoszenie dotyczące biuro wirtualne.\n\n"
        "Nazwa firmy: Test Co\n"
        "Data rozpoczęcia: 2024-01-01\n"
        "Pakiet: basic\n\n"
        "Skontaktujemy się wkrótce."
    )


def test_meeting_room_summary_uses_form_fields():
    data = {"email": "a@b.c", "companyName": "X", "date": "2024-02-02", "startTime": "10:00", "endTime": ""}
    pairs = templates.summary_pairs(data, "meeting-room", "en")
    assert pairs == [("Company name", "X"), ("Date", "2024-02-02"), ("Start time", "10:00")]


def test_notification_lists_every_field():
    data = {"email": "anna@example.com", "phone": "123", "services": ["mail", "desk"], "custom": "x"}
    assert templates.notification_subject("coworking", "en") == "New submission: coworking"
    assert templates.notification_subject("special-deals", "pl") == "Nowe zgłoszenie: oferty specjalne"
    assert templates.notification_body(data, "coworking", "en") == (
        "New submission from anna@example.com regarding coworking.\n\n"
        "Email: anna@example.com\n"
        "Phone: 123\n"
        "services: mail, desk\n"
        "custom: x"
    )


def test_locale_fallback_and_messages():
    assert templates.normalize_locale(None) == "pl"
    assert templates.normalize_locale("en-GB") == "en"
    assert templates.normalize_locale("de") == "pl"
    assert templates.result_message("success", "fr").startswith("Formularz")
    assert templates.result_message("rate_limited", "en") == "Too many requests. Please try again later."


def test_escalation_text():
    assert templates.escalation_subject("notification") == "Email retry failed: notification"
    assert templates.escalation_body(7, 3, "timeout") == "Email with ID 7 failed after 3 attempts. Last error: timeout"
