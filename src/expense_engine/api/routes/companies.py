"""Company registration endpoint."""

from fastapi import APIRouter, status

from expense_engine.api.dependencies import Countries, DbSession
from expense_engine.api.schemas import (
    CompanyCreate,
    CompanyResponse,
    CompanySignupResponse,
    ErrorResponse,
    UserResponse,
)
from expense_engine.services.user_service import UserService

router = APIRouter(prefix="/companies", tags=["companies"])


@router.post(
    "",
    response_model=CompanySignupResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_company(
    db: DbSession,
    countries: Countries,
    payload: CompanyCreate,
) -> CompanySignupResponse:
    """Register a company and its first admin.

    The company's base currency is looked up from its country.
    """
    service = UserService(db, countries)
    company, admin = await service.create_company(
        name=payload.company_name,
        admin_name=payload.admin_name,
        admin_email=payload.admin_email,
        country=payload.country,
    )
    await db.commit()
    return CompanySignupResponse(
        company=CompanyResponse.model_validate(company),
        admin=UserResponse.model_validate(admin),
    )
