# rocket/core/mailer.py
"""
Transactional mail

Each message is rendered twice from ``mail/<template>.html.tmpl`` and
``mail/<template>.plain.tmpl`` (the ``body`` block of each), the HTML part
gets its CSS inlined for mail clients, and both parts go out in a single
Mailjet v3.1 send.
"""

import os
import base64
import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import premailer
import requests
from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from jinja2.exceptions import TemplateError, TemplateNotFound
from mailjet_rest import Client

from rocket.core.exceptions import MailSendError, TemplateNotFoundError, TemplateRenderError

logger = logging.getLogger(__name__)

MAILJET_API_VERSION = 'v3.1'

# Premailer would otherwise copy these CSS properties onto HTML attributes
CSS_ATTRIBUTE_CONVERSIONS = ['align', 'valign', 'bgcolor', 'width', 'height']


@dataclass
class Message:
    """An email message"""
    to: str
    subject: str
    template: str
    from_address: str = ''
    from_name: str = ''
    to_name: str = ''
    attachments: List[str] = field(default_factory=list)
    data: Any = None


class Mailer:
    """Renders and sends transactional mail through the provider API"""

    def __init__(self, templates: str, from_name: str = '', from_address: str = '',
                 public_api: str = '', private_api: str = '',
                 error_log: Optional[logging.Logger] = None):
        self.templates = templates
        self.from_name = from_name
        self.from_address = from_address
        self.public_api = public_api
        self.private_api = private_api
        self.error_log = error_log or logger

        self.env = Environment(
            loader=FileSystemLoader(templates),
            autoescape=select_autoescape(['html.tmpl']),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def client(self) -> Client:
        return Client(auth=(self.public_api, self.private_api), version=MAILJET_API_VERSION)

    def send(self, msg: Message) -> Dict[str, Any]:
        """
        Render and send a message

        Returns:
            The provider's decoded JSON response

        Raises:
            TemplateNotFoundError / TemplateRenderError: if rendering fails
            MailSendError: if the provider rejects the message or is unreachable
        """
        try:
            html_part = self.build_html_message(msg)
            text_part = self.build_plain_text_message(msg)
            payload = self._payload(msg, html_part, text_part)
        except (TemplateNotFoundError, TemplateRenderError, MailSendError) as e:
            self.error_log.error(f"Mail {msg.template!r} to {msg.to} not built: {e}")
            raise

        try:
            result = self.client().send.create(data=payload)
        except requests.RequestException as e:
            self.error_log.error(f"Mail provider unreachable: {e}")
            raise MailSendError(f"mail provider unreachable: {e}") from e

        if not 200 <= result.status_code < 300:
            self.error_log.error(f"Mail provider rejected message ({result.status_code}): {result.text}")
            raise MailSendError(f"mail provider returned {result.status_code}: {result.text}")

        logger.info(f"Mail {msg.template!r} sent to {msg.to}")
        return result.json()

    def _payload(self, msg: Message, html_part: str, text_part: str) -> Dict[str, Any]:
        message = {
            'From': {
                'Email': msg.from_address or self.from_address,
                'Name': msg.from_name or self.from_name,
            },
            'To': [{'Email': msg.to, 'Name': msg.to_name}],
            'Subject': msg.subject,
            'TextPart': text_part,
            'HTMLPart': html_part,
        }
        if msg.attachments:
            message['Attachments'] = [self._attachment(path) for path in msg.attachments]
        return {'Messages': [message]}

    def _attachment(self, path: str) -> Dict[str, str]:
        content_type = mimetypes.guess_type(path)[0] or 'application/octet-stream'
        try:
            with open(path, 'rb') as fh:
                content = base64.b64encode(fh.read()).decode('ascii')
        except OSError as e:
            raise MailSendError(f"cannot read attachment {path}: {e}") from e
        return {
            'ContentType': content_type,
            'Filename': os.path.basename(path),
            'Base64Content': content,
        }

    def _render_body(self, name: str, data: Any) -> str:
        try:
            template = self.env.get_template(name)
        except TemplateNotFound as e:
            raise TemplateNotFoundError(f"mail template not found: {name}") from e
        except TemplateError as e:
            raise TemplateRenderError(f"mail template {name} failed to parse: {e}") from e

        if 'body' not in template.blocks:
            raise TemplateRenderError(f"mail template {name} has no body block")

        variables = dict(data) if isinstance(data, dict) else {}
        variables['data'] = data
        try:
            context = template.new_context(variables)
            return ''.join(template.blocks['body'](context))
        except TemplateError as e:
            raise TemplateRenderError(f"mail template {name} failed to render: {e}") from e

    def build_html_message(self, msg: Message) -> str:
        """Render the HTML part and inline its CSS"""
        html = self._render_body(f"{msg.template}.html.tmpl", msg.data)
        return self.inline_css(html)

    def build_plain_text_message(self, msg: Message) -> str:
        return self._render_body(f"{msg.template}.plain.tmpl", msg.data)

    def inline_css(self, html: str) -> str:
        """Inline <style> rules into style attributes, keeping classes and !important"""
        try:
            p = premailer.Premailer(
                html,
                remove_classes=False,
                strip_important=False,
                disable_basic_attributes=CSS_ATTRIBUTE_CONVERSIONS,
                allow_network=False,
                cssutils_logging_level=logging.CRITICAL,
            )
            return p.transform()
        except Exception as e:
            raise TemplateRenderError(f"CSS inlining failed: {e}") from e
