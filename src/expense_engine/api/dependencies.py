"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator, Callable, Coroutine
from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from expense_engine.config import Settings
from expense_engine.database import init_db
from expense_engine.errors import AuthenticationError, AuthorizationError
from expense_engine.models import User, UserRole
from expense_engine.services.country_service import CountryService
from expense_engine.services.currency_service import CurrencyService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency.

    Routes commit explicitly; anything left uncommitted when the request
    fails is rolled back.
    """
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


async def get_current_user(
    db: DbSession,
    x_user_id: Annotated[str | None, Header()] = None,
) -> User:
    """Resolve the acting user from the X-User-ID header."""
    if not x_user_id:
        raise AuthenticationError("X-User-ID header is required")
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise AuthenticationError("Invalid X-User-ID format")

    user = await db.get(User, user_id)
    if user is None:
        raise AuthenticationError("User not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def require_roles(*roles: UserRole) -> Callable[..., Coroutine[Any, Any, User]]:
    """Dependency factory restricting a route to the given roles."""
    allowed = {role.value for role in roles}

    async def dependency(user: CurrentUser) -> User:
        if user.role not in allowed:
            raise AuthorizationError(
                "Access denied. Insufficient permissions.",
                required_roles=sorted(allowed),
            )
        return user

    return dependency


ApproverUser = Annotated[User, Depends(require_roles(UserRole.MANAGER, UserRole.ADMIN))]
AdminUser = Annotated[User, Depends(require_roles(UserRole.ADMIN))]


def get_currency_service(request: Request) -> CurrencyService:
    """Currency service bound to the app's HTTP client and rate cache."""
    state = request.app.state
    return CurrencyService(state.http_client, state.rate_cache, state.settings.exchange_rate_api_url)


def get_country_service(request: Request) -> CountryService:
    """Country service bound to the app's HTTP client and country cache."""
    state = request.app.state
    return CountryService(state.http_client, state.country_cache, state.settings.countries_api_url)


Currencies = Annotated[CurrencyService, Depends(get_currency_service)]
Countries = Annotated[CountryService, Depends(get_country_service)]


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


AppSettings = Annotated[Settings, Depends(get_app_settings)]
