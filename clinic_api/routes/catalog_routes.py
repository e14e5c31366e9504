from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from clinic_api.core.errors import NotFoundError
from clinic_api.database import get_db, parse_record_id
from clinic_api.models.catalog import Department, Service

router = APIRouter(tags=['catalog'])


class DepartmentResponse(BaseModel):
    id: int
    name: str
    slug: str

    class Config:
        from_attributes = True


class ServiceResponse(BaseModel):
    id: int
    name: str
    department_id: int | None = None
    price: float
    description: str | None = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class DepartmentListEnvelope(BaseModel):
    success: bool = True
    count: int
    data: list[DepartmentResponse]


class ServiceListEnvelope(BaseModel):
    success: bool = True
    count: int
    data: list[ServiceResponse]


class ServiceEnvelope(BaseModel):
    success: bool = True
    data: dict[str, ServiceResponse]


@router.get('/departments', response_model=DepartmentListEnvelope)
def list_departments(db: Session = Depends(get_db)):
    departments = db.query(Department).filter(Department.is_active.is_(True)).order_by(Department.name).all()
    return DepartmentListEnvelope(
        count=len(departments),
        data=[DepartmentResponse.model_validate(department) for department in departments],
    )


@router.get('/services', response_model=ServiceListEnvelope)
def list_services(
    department: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    query = db.query(Service).filter(Service.is_active.is_(True))
    if department:
        department_id = parse_record_id(department)
        if department_id is not None:
            query = query.filter(Service.department_id == department_id)
        else:
            query = query.join(Department, Department.id == Service.department_id).filter(
                Department.slug == department.strip().lower()
            )
    services = query.order_by(Service.name).all()
    return ServiceListEnvelope(
        count=len(services),
        data=[ServiceResponse.model_validate(service) for service in services],
    )


@router.get('/services/{service_id}', response_model=ServiceEnvelope)
def get_service(service_id: int, db: Session = Depends(get_db)):
    service = db.query(Service).filter(Service.id == service_id, Service.is_active.is_(True)).first()
    if service is None:
        raise NotFoundError('Service not found')
    return ServiceEnvelope(data={'service': ServiceResponse.model_validate(service)})
