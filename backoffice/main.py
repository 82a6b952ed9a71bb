from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backoffice.config import settings
from backoffice.errors import install_exception_handlers
from backoffice.logging_setup import configure_logging
from backoffice.routers import (
    accounting,
    auth,
    claims,
    customers,
    dashboard,
    employees,
    installments,
    inventory,
    notifications,
    recovery,
    reports,
    sales,
)
from backoffice.routers import settings as settings_router
from backoffice.security.csrf import install_csrf_cookie_middleware
from backoffice.security.headers import install_security_headers
from backoffice.security.sessions import install_auth_session_middleware

configure_logging()

app = FastAPI(title='Furniture Back Office')

install_security_headers(app)
install_csrf_cookie_middleware(app)
install_auth_session_middleware(app)
# Outermost middleware; preflight requests never reach the session check.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)
install_exception_handlers(app)

app.include_router(auth.router)
app.include_router(dashboard.router)
app.include_router(customers.router)
app.include_router(installments.router)
app.include_router(inventory.router)
app.include_router(sales.router)
app.include_router(claims.router)
app.include_router(employees.router)
app.include_router(notifications.router)
app.include_router(settings_router.router)
app.include_router(reports.router)
app.include_router(recovery.router)
app.include_router(accounting.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}
