# rocket/core/render.py
"""
View rendering with two interchangeable engines

- simple: ``views/<view>.page.tmpl`` parsed fresh on every request and
  rendered against the TemplateData the handler passes in
- jet-like: ``views/<name>.jet`` from a pre-built view set, rendered with
  the handler's variables plus a TemplateData filled from the request
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Mapping, Optional

from flask import Response, session
from jinja2 import Environment, FileSystemLoader, select_autoescape
from jinja2.exceptions import TemplateError, TemplateNotFound

from rocket.core.exceptions import TemplateNotFoundError, TemplateRenderError
from rocket.middleware.security import csrf_token

logger = logging.getLogger(__name__)

SIMPLE_ENGINES = ('simple', 'go')
VIEW_SET_ENGINES = ('jet-like', 'jet')

AUTOESCAPE_EXTENSIONS = ('html', 'tmpl', 'jet')


@dataclass
class TemplateData:
    """Fixed payload every rendered view receives"""
    is_authenticated: bool = False
    int_map: Dict[str, int] = field(default_factory=dict)
    string_map: Dict[str, str] = field(default_factory=dict)
    float_map: Dict[str, float] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)
    csrf_token: str = ''
    port: str = ''
    server_name: str = ''
    secure: bool = False
    error: str = ''
    flash: str = ''

    def as_context(self) -> Dict[str, Any]:
        return asdict(self)


def create_view_set(views_path: str, development: bool = False) -> Environment:
    """
    Build the cached collection of view templates

    In development mode nothing is cached and templates are re-read from
    disk whenever they change.
    """
    return Environment(
        loader=FileSystemLoader(views_path),
        autoescape=select_autoescape(AUTOESCAPE_EXTENSIONS),
        auto_reload=development,
        cache_size=0 if development else 400,
    )


class Renderer:
    """Renders a named view into an HTML response"""

    def __init__(self, renderer: str, root_path: str, view_set: Environment,
                 port: str = '', server_name: str = '', secure: bool = False,
                 error_log: Optional[logging.Logger] = None):
        self.renderer = renderer
        self.root_path = root_path
        self.view_set = view_set
        self.port = port
        self.server_name = server_name
        self.secure = secure
        self.error_log = error_log or logger

        # Fresh parse per call for the simple engine
        self._simple_env = Environment(
            loader=FileSystemLoader(f"{root_path}/views"),
            autoescape=select_autoescape(AUTOESCAPE_EXTENSIONS),
            cache_size=0,
        )

    def default_data(self, td: TemplateData) -> TemplateData:
        """Fill request-level values; error and flash are consumed from the session"""
        td.secure = self.secure
        td.server_name = self.server_name
        td.csrf_token = csrf_token()
        td.port = self.port
        if 'userID' in session:
            td.is_authenticated = True
        td.error = session.pop('error', '')
        td.flash = session.pop('flash', '')
        return td

    def page(self, view: str, variables: Optional[Mapping[str, Any]] = None,
             data: Optional[TemplateData] = None) -> Response:
        engine = self.renderer.lower()
        if engine in SIMPLE_ENGINES:
            return self.simple_page(view, data)
        if engine in VIEW_SET_ENGINES:
            return self.jet_page(view, variables, data)

        self.error_log.error(f"Unsupported renderer {self.renderer!r}")
        raise TemplateRenderError(f"unsupported renderer {self.renderer!r}")

    def simple_page(self, view: str, data: Optional[TemplateData] = None) -> Response:
        template_data = data if data is not None else TemplateData()
        body = self._render(self._simple_env, f"{view}.page.tmpl", template_data.as_context())
        return Response(body, mimetype='text/html')

    def jet_page(self, template_name: str, variables: Optional[Mapping[str, Any]] = None,
                 data: Optional[TemplateData] = None) -> Response:
        template_data = self.default_data(data if data is not None else TemplateData())

        # Payload fields take precedence over same-named variables
        context = dict(variables or {})
        context.update(template_data.as_context())

        body = self._render(self.view_set, f"{template_name}.jet", context)
        return Response(body, mimetype='text/html')

    def _render(self, env: Environment, name: str, context: Dict[str, Any]) -> str:
        try:
            template = env.get_template(name)
        except TemplateNotFound as e:
            self.error_log.error(f"Template not found: {name}")
            raise TemplateNotFoundError(f"template not found: {name}") from e
        except TemplateError as e:
            self.error_log.error(f"Template {name} failed to parse: {e}")
            raise TemplateRenderError(f"template {name} failed to parse: {e}") from e

        try:
            return template.render(**context)
        except TemplateError as e:
            self.error_log.error(f"Template {name} failed to render: {e}")
            raise TemplateRenderError(f"template {name} failed to render: {e}") from e
