import logging

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from supply_portal.config import settings
from supply_portal.routers import auth, management, site
from supply_portal.security.middleware import install_csrf_cookie_middleware, install_security_headers
from supply_portal.security.sessions import install_auth_session_middleware


def _setup_logging(level_name: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format='%(asctime)s  %(levelname)-8s  %(name)s  %(message)s',
    )
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)


_setup_logging(settings.log_level)

app = FastAPI(title='Site Supply Portal')

install_security_headers(app)
install_csrf_cookie_middleware(app)
install_auth_session_middleware(app)

app.include_router(auth.router)
app.include_router(site.router)
app.include_router(management.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
