from fastapi import APIRouter

from clinicdesk.api import (
    routes_admin,
    routes_dispenses,
    routes_patient_allergies,
    routes_patient_diagnoses,
    routes_queue,
)

api_router = APIRouter()

api_router.include_router(routes_queue.router, prefix="/queue", tags=["Queue"])
api_router.include_router(routes_dispenses.router,
                          prefix="/dispenses",
                          tags=["Dispenses"])
api_router.include_router(routes_patient_diagnoses.router,
                          prefix="/patient-diagnoses",
                          tags=["Patient Diagnoses"])
api_router.include_router(routes_patient_allergies.router,
                          prefix="/patient-allergies",
                          tags=["Patient Allergies"])
api_router.include_router(routes_admin.router, prefix="/admin", tags=["Admin"])
