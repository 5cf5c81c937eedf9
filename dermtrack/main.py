"""
DermTrack - Backend
FastAPI server for lesion analysis, patient history and image comparison
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware

from dermtrack.errors import (
    DuplicateEmailError,
    ImageNotFoundError,
    InvalidCredentialsError,
    PatientNotFoundError,
)
from dermtrack.inference import InferenceClient
from dermtrack.schemas import CamelModel, ComparisonResult, LesionImage, PatientCreate, User
from dermtrack.session import SessionState
from dermtrack.storage import JsonFileStore, KeyValueStore, PersistenceAdapter
from dermtrack.workflows import ComparisonWorkflow, UploadWorkflow

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ============================================================================
# Modelos de respuesta
# ============================================================================

class UploadResponse(CamelModel):
    success: bool
    result: Optional[LesionImage] = None
    error: Optional[str] = None


class ComparisonResponse(CamelModel):
    success: bool
    result: Optional[ComparisonResult] = None
    error: Optional[str] = None


def public_user(user: User) -> dict:
    return user.model_dump(by_alias=True, exclude={"password"})


# ============================================================================
# Dependencias
# ============================================================================

def get_session(request: Request) -> SessionState:
    return request.app.state.session


def get_client(request: Request) -> InferenceClient:
    return request.app.state.client


def require_patient(patient_id: str, session: SessionState = Depends(get_session)):
    try:
        return session.get_patient(patient_id)
    except PatientNotFoundError:
        raise HTTPException(status_code=404, detail="Patient not found")


# ============================================================================
# Aplicación FastAPI
# ============================================================================

def create_app(store: Optional[KeyValueStore] = None, client: Optional[InferenceClient] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Loads the session snapshot on startup and saves it on shutdown"""
        logger.info("Starting DermTrack backend...")
        app.state.session = SessionState.load(PersistenceAdapter(store or JsonFileStore()))
        app.state.client = client or InferenceClient()

        yield

        logger.info("Shutting down...")
        app.state.session.close()

    app = FastAPI(
        title="DermTrack",
        description="Skin lesion analysis and progression tracking backed by a vision model",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {"status": "Online", "message": "DermTrack Backend Running"}

    @app.get("/api/health")
    async def health_check():
        """Endpoint de comprobación de salud"""
        return {"status": "healthy"}

    # Endpoints de sesión
    @app.post("/api/auth/signup", status_code=status.HTTP_201_CREATED)
    async def sign_up(
        name: str = Form(...),
        email: str = Form(...),
        password: str = Form(...),
        session: SessionState = Depends(get_session),
    ):
        try:
            user = session.sign_up(name, email, password)
        except DuplicateEmailError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        return {"success": True, "user": public_user(user)}

    @app.post("/api/auth/login")
    async def login(
        email: str = Form(...),
        password: str = Form(...),
        session: SessionState = Depends(get_session),
    ):
        try:
            user = session.authenticate(email, password)
        except InvalidCredentialsError as e:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
        return {"success": True, "user": public_user(user)}

    @app.post("/api/auth/logout")
    async def logout(session: SessionState = Depends(get_session)):
        session.logout()
        return {"success": True}

    @app.get("/api/session")
    async def get_session_status(session: SessionState = Depends(get_session)):
        return {"isLoggedIn": session.is_logged_in, "users": len(session.users)}

    # Endpoints de pacientes
    @app.get("/api/patients")
    async def get_patients(session: SessionState = Depends(get_session)):
        """Obtener todos los pacientes"""
        return {"patients": [p.model_dump(mode="json", by_alias=True) for p in session.patients]}

    @app.post("/api/patients", status_code=status.HTTP_201_CREATED)
    async def create_patient(data: PatientCreate, session: SessionState = Depends(get_session)):
        """Crear un nuevo paciente"""
        patient = session.add_patient(data)
        return {"success": True, "patient": patient.model_dump(mode="json", by_alias=True)}

    @app.get("/api/patients/{patient_id}")
    async def get_patient(patient=Depends(require_patient)):
        """Obtener un paciente específico"""
        return {"patient": patient.model_dump(mode="json", by_alias=True)}

    @app.get("/api/patients/{patient_id}/images/{image_id}")
    async def get_image(patient_id: str, image_id: str, session: SessionState = Depends(get_session)):
        try:
            image = session.get_image(patient_id, image_id)
        except (PatientNotFoundError, ImageNotFoundError) as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"image": image.model_dump(mode="json", by_alias=True)}

    # Análisis de una imagen nueva
    @app.post("/api/patients/{patient_id}/images", response_model=UploadResponse)
    async def upload_image(
        patient_id: str,
        file: UploadFile = File(...),
        patient=Depends(require_patient),
        session: SessionState = Depends(get_session),
        client: InferenceClient = Depends(get_client),
    ):
        """Upload a lesion image, analyze it and add it to the patient's history"""
        contents = await file.read()
        if not contents:
            raise HTTPException(status_code=400, detail="Empty image file")

        workflow = UploadWorkflow(session, client, patient.id)
        image = await workflow.run(contents, file.filename or "upload", file.content_type)
        if image is None:
            return UploadResponse(success=False, error=workflow.error)
        return UploadResponse(success=True, result=image)

    # Comparación de dos imágenes
    @app.post("/api/patients/{patient_id}/compare", response_model=ComparisonResponse)
    async def compare_images(
        patient_id: str,
        before_id: str = Form(...),
        after_id: str = Form(...),
        patient=Depends(require_patient),
        session: SessionState = Depends(get_session),
        client: InferenceClient = Depends(get_client),
    ):
        """Compare two images of the patient; the result is not stored"""
        workflow = ComparisonWorkflow(session, client, patient.id)
        result = await workflow.run(before_id, after_id)
        if result is None:
            return ComparisonResponse(success=False, error=workflow.error)
        return ComparisonResponse(success=True, result=result)

    return app


app = create_app()


# ============================================================================
# Run server
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
