import pytest

from attendance_service.models import Event, User
from attendance_service.services.errors import EmailDeliveryFailedError


def test_token_email_contains_code_and_qr(notifier, email_client):
    user = User(id=1, email="guest@example.com")
    event = Event(id=7, title="Rust & <Python>")

    notifier.send_check_in_token(user, event, "AB12CD34EF", validity_minutes=15)

    [message] = email_client.sent
    assert message["to"] == "guest@example.com"
    assert "Rust &amp; &lt;Python&gt;" in message["body"]
    assert "data:image/png;base64," in message["body"]
    assert "15 minutes" in message["body"]
    assert email_client.last_token() == "AB12CD34EF"


def test_delivery_failures_are_typed(notifier, email_client):
    event = Event(id=7, title="Meetup")

    with pytest.raises(EmailDeliveryFailedError):
        notifier.send_check_in_token(User(id=1, email="not-an-address"), event, "X", validity_minutes=5)

    email_client.fail = True
    with pytest.raises(EmailDeliveryFailedError):
        notifier.send_check_in_token(User(id=2, email="a@example.com"), event, "X", validity_minutes=5)
    assert email_client.sent == []
