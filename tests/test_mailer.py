import os
import base64

import pytest
import requests

from rocket.core.exceptions import MailSendError, TemplateNotFoundError
from rocket.core.mailer import Mailer, Message

HTML_TEMPLATE = """{% block body %}
<html><head><style>
p { color: red !important; }
.note { font-weight: bold; }
</style></head><body>
<p class="note">Hello {{ name }}</p>
</body></html>
{% endblock %}
"""

PLAIN_TEMPLATE = "{% block body %}Hello {{ name }}{% endblock %}\n"


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {'Messages': [{'Status': 'success'}]}
        self.text = str(self._payload)

    def json(self):
        return self._payload


class FakeSend:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.payloads = []

    def create(self, data):
        self.payloads.append(data)
        if self.error:
            raise self.error
        return self.response


class FakeClient:
    def __init__(self, send):
        self.send = send


@pytest.fixture
def mail_dir(root):
    path = os.path.join(root, 'mail')
    os.makedirs(path)
    with open(os.path.join(path, 'welcome.html.tmpl'), 'w') as fh:
        fh.write(HTML_TEMPLATE)
    with open(os.path.join(path, 'welcome.plain.tmpl'), 'w') as fh:
        fh.write(PLAIN_TEMPLATE)
    return path


@pytest.fixture
def mailer(mail_dir):
    return Mailer(mail_dir, from_name='Rocket', from_address='noreply@example.com',
                  public_api='pub', private_api='priv')


def use_send(monkeypatch, mailer, send):
    monkeypatch.setattr(mailer, 'client', lambda: FakeClient(send))
    return send


def test_send_posts_both_parts(monkeypatch, mailer):
    send = use_send(monkeypatch, mailer, FakeSend())

    result = mailer.send(Message(to='ada@example.com', subject='Hi', template='welcome',
                                 data={'name': 'Ada'}))

    assert result == {'Messages': [{'Status': 'success'}]}
    assert len(send.payloads) == 1
    message = send.payloads[0]['Messages'][0]
    assert message['From'] == {'Email': 'noreply@example.com', 'Name': 'Rocket'}
    assert message['To'][0]['Email'] == 'ada@example.com'
    assert message['Subject'] == 'Hi'
    assert message['TextPart'] == 'Hello Ada'
    assert 'Hello Ada' in message['HTMLPart']


def test_html_part_is_css_inlined(mailer):
    html = mailer.build_html_message(Message(to='x', subject='s', template='welcome',
                                             data={'name': 'Ada'}))

    assert 'style="' in html
    assert '!important' in html
    assert 'class="note"' in html


def test_message_sender_overrides_defaults(monkeypatch, mailer):
    send = use_send(monkeypatch, mailer, FakeSend())

    mailer.send(Message(to='x@example.com', subject='s', template='welcome', data={'name': 'A'},
                        from_address='team@example.com', from_name='Team'))

    assert send.payloads[0]['Messages'][0]['From'] == {'Email': 'team@example.com', 'Name': 'Team'}


def test_attachments_are_base64(monkeypatch, mailer, root):
    attachment = os.path.join(root, 'report.txt')
    with open(attachment, 'wb') as fh:
        fh.write(b'numbers')
    send = use_send(monkeypatch, mailer, FakeSend())

    mailer.send(Message(to='x@example.com', subject='s', template='welcome', data={'name': 'A'},
                        attachments=[attachment]))

    sent = send.payloads[0]['Messages'][0]['Attachments'][0]
    assert sent['Filename'] == 'report.txt'
    assert sent['ContentType'] == 'text/plain'
    assert base64.b64decode(sent['Base64Content']) == b'numbers'


def test_missing_template(monkeypatch, mailer):
    send = use_send(monkeypatch, mailer, FakeSend())

    with pytest.raises(TemplateNotFoundError):
        mailer.send(Message(to='x@example.com', subject='s', template='goodbye'))

    assert send.payloads == []


def test_provider_rejection(monkeypatch, mailer):
    use_send(monkeypatch, mailer, FakeSend(response=FakeResponse(401, {'ErrorMessage': 'denied'})))

    with pytest.raises(MailSendError):
        mailer.send(Message(to='x@example.com', subject='s', template='welcome', data={'name': 'A'}))


def test_provider_unreachable(monkeypatch, mailer):
    use_send(monkeypatch, mailer, FakeSend(error=requests.ConnectionError('down')))

    with pytest.raises(MailSendError):
        mailer.send(Message(to='x@example.com', subject='s', template='welcome', data={'name': 'A'}))


def test_client_uses_v31_credentials(mailer):
    client = mailer.client()

    assert client.auth == ('pub', 'priv')
    assert client.config.version == 'v3.1'
