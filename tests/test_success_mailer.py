import pytest

from services.shared.contracts import TopicDelivery
from services.shared.errors import NotificationDeliveryFailure
from services.success_mailer.handler import SuccessMailer

from tests.helpers import FailingNotifier, RecordingNotifier, delivery


def test_mails_every_record_regardless_of_type() -> None:
    notifier = RecordingNotifier()
    SuccessMailer(notifier, ["owner@example.com"])(delivery("cat.jpeg", "doc.pdf"))

    assert notifier.subjects() == ["New image upload", "New image upload"]
    assert "'cat.jpeg'" in notifier.sent[0][2]
    assert "'imgs'" in notifier.sent[0][2]
    assert "'doc.pdf'" in notifier.sent[1][2]


def test_mail_uses_decoded_file_name() -> None:
    notifier = RecordingNotifier()
    SuccessMailer(notifier, ["owner@example.com"])(delivery("space+name.png"))
    assert "'space name.png'" in notifier.sent[0][2]


def test_malformed_message_is_skipped() -> None:
    notifier = RecordingNotifier()
    broken = TopicDelivery(MessageId="m1", TopicName="t", Message="nope", Timestamp="now")
    SuccessMailer(notifier, ["owner@example.com"])(broken)
    assert notifier.sent == []


def test_delivery_failure_propagates_to_the_topic() -> None:
    with pytest.raises(NotificationDeliveryFailure):
        SuccessMailer(FailingNotifier(), ["owner@example.com"])(delivery("cat.jpeg"))


def test_undecodable_key_is_mailed_under_its_raw_form() -> None:
    notifier = RecordingNotifier()
    SuccessMailer(notifier, ["owner@example.com"])(delivery("a%FF.png"))
    assert "'a%FF.png'" in notifier.sent[0][2]
