"""
DermTrack - Session state
Users, patients and lesion history held in memory and saved on every mutation.
"""

import logging
import uuid
from typing import Iterable, List, Optional, Union

from dermtrack.config import Config
from dermtrack.errors import (
    DuplicateEmailError,
    ImageNotFoundError,
    InvalidCredentialsError,
    PatientNotFoundError,
)
from dermtrack.schemas import LesionImage, Patient, PatientCreate, User
from dermtrack.storage import PersistenceAdapter

logger = logging.getLogger(__name__)


def new_id(prefix: str, taken: Iterable[str] = ()) -> str:
    """Short random id, guaranteed not to collide with `taken`"""
    taken = set(taken)
    while True:
        candidate = f"{prefix}{uuid.uuid4().hex[:8]}"
        if candidate not in taken:
            return candidate


def seed_patients() -> List[Patient]:
    return [Patient.model_validate(p) for p in Config.SEED_PATIENTS]


class SessionState:
    """
    Owns the users, the patients and the login flag.

    Collections are never edited in place: every mutation builds a new list
    and assigns it, then saves the affected slice before returning.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        users: Optional[List[User]] = None,
        patients: Optional[List[Patient]] = None,
        is_logged_in: bool = False,
    ):
        self.persistence = persistence
        self.users: List[User] = list(users or [])
        self.patients: List[Patient] = list(patients if patients is not None else seed_patients())
        self.is_logged_in = is_logged_in

    @classmethod
    def load(cls, persistence: PersistenceAdapter) -> "SessionState":
        """Builds the session from the stored snapshot, falling back to the seed data"""
        users = persistence.load(Config.USERS_KEY, [])
        patients = persistence.load(Config.PATIENTS_KEY, None)
        if patients is None:
            patients = seed_patients()
        is_logged_in = bool(persistence.load(Config.LOGGED_IN_KEY, False))

        session = cls(persistence, users=users, patients=patients, is_logged_in=is_logged_in)
        session.ensure_default_user()
        logger.info(f"Session loaded: {len(session.users)} users, {len(session.patients)} patients")
        return session

    def close(self):
        """Final save of the whole snapshot"""
        self._save_users()
        self._save_patients()
        self._save_login()

    # Persistencia por porción
    def _save_users(self):
        self.persistence.save(Config.USERS_KEY, self.users)

    def _save_patients(self):
        self.persistence.save(Config.PATIENTS_KEY, self.patients)

    def _save_login(self):
        self.persistence.save(Config.LOGGED_IN_KEY, self.is_logged_in)

    # ------------------------------------------------------------------
    # Usuarios
    # ------------------------------------------------------------------

    def find_user(self, email: str) -> Optional[User]:
        # Exact, case-sensitive match
        return next((u for u in self.users if u.email == email), None)

    def ensure_default_user(self) -> User:
        default = Config.DEFAULT_USER
        user = self.find_user(default["email"])
        if user is None:
            user = User.model_validate(default)
            self.users = [*self.users, user]
        self._save_users()
        return user

    def add_user(self, name: str, email: str, password: str) -> User:
        if self.find_user(email) is not None:
            raise DuplicateEmailError("An account with this email already exists.")
        user = User(id=new_id("u", (u.id for u in self.users)), name=name, email=email, password=password)
        self.users = [*self.users, user]
        self._save_users()
        return user

    def sign_up(self, name: str, email: str, password: str) -> User:
        """Creates the account and opens the session with it"""
        user = self.add_user(name, email, password)
        self.set_logged_in(True)
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = next((u for u in self.users if u.email == email and u.password == password), None)
        if user is None:
            raise InvalidCredentialsError("Invalid credentials. Please try again.")
        self.set_logged_in(True)
        return user

    def logout(self):
        self.set_logged_in(False)

    def set_logged_in(self, value: bool):
        self.is_logged_in = value
        self._save_login()

    # ------------------------------------------------------------------
    # Pacientes
    # ------------------------------------------------------------------

    def add_patient(self, data: Union[PatientCreate, dict]) -> Patient:
        """
        Registers a new patient at the top of the list.

        Raises:
            ValueError: if name or date of birth is empty
        """
        if isinstance(data, PatientCreate):
            data = data.model_dump()
        else:
            data = PatientCreate.model_validate(data).model_dump()
        patient = Patient(
            **data,
            id=new_id("p", (p.id for p in self.patients)),
            lesion_images=[],
        )
        self.patients = [patient, *self.patients]
        self._save_patients()
        return patient

    def get_patient(self, patient_id: str) -> Patient:
        patient = next((p for p in self.patients if p.id == patient_id), None)
        if patient is None:
            raise PatientNotFoundError(f"Patient {patient_id} not found")
        return patient

    def get_image(self, patient_id: str, image_id: str) -> LesionImage:
        patient = self.get_patient(patient_id)
        image = next((img for img in patient.lesion_images if img.id == image_id), None)
        if image is None:
            raise ImageNotFoundError(f"Image {image_id} not found for patient {patient_id}")
        return image

    def image_ids(self) -> List[str]:
        return [img.id for p in self.patients for img in p.lesion_images]

    def append_image(self, patient_id: str, image: LesionImage) -> Patient:
        """Prepends an analyzed image to the patient's history"""
        patient = self.get_patient(patient_id)
        updated = patient.model_copy(update={"lesion_images": [image, *patient.lesion_images]})
        self.patients = [updated if p.id == patient_id else p for p in self.patients]
        self._save_patients()
        return updated
