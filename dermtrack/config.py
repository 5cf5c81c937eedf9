"""
DermTrack - Configuration
Paths, inference settings and seed data for the session.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


PROJECT_ROOT = Path(__file__).parent.parent


class Config:
    DATA_DIR = Path(os.getenv("DERMTRACK_DATA_DIR", PROJECT_ROOT / "data"))
    STORE_PATH = DATA_DIR / "session.json"

    # Claves del almacén
    USERS_KEY = "users"
    PATIENTS_KEY = "patients"
    LOGGED_IN_KEY = "isLoggedIn"

    # Inferencia
    API_KEY_ENV = "OPENAI_API_KEY"
    MODEL = os.getenv("DERMTRACK_MODEL", "gpt-4.1-mini")
    INFERENCE_TIMEOUT = float(os.getenv("DERMTRACK_INFERENCE_TIMEOUT", "60"))
    TEMPERATURE = 0.2

    DISCLAIMER = (
        "This is not a medical diagnosis. Always consult a qualified "
        "dermatologist for an accurate diagnosis and treatment plan."
    )

    ANALYSIS_INSTRUCTION = f"""You are a specialized AI assistant for dermatology. Your task is to analyze images of skin conditions.
Provide a potential identification, a confidence level, a brief description, and helpful, safe next steps.
Your response must be in JSON format according to the provided schema.

Under no circumstances should you ever suggest or prescribe any specific medications, treatments, or drugs.
Instead, your recommendations MUST focus on three areas:
1. Detailed, non-medical care and lifestyle tips (e.g., 'Keep the area clean and dry', 'Avoid scratching').
2. When to see a doctor (e.g., 'Consult a professional if the condition worsens, becomes painful, or shows signs of infection').
3. A list of relevant questions the user could ask their doctor to facilitate a productive consultation.

CRITICAL: You MUST always include the following disclaimer as the last item in the recommendations array: "{DISCLAIMER}"
The confidence level should be a string like "High", "Medium", or "Low"."""

    COMPARISON_INSTRUCTION = """You are a specialized AI assistant for dermatology. Your task is to compare two images of the same skin lesion taken at different times.
Analyze the differences in size, color, shape, and texture.
Provide a summary of changes, key observations, an updated condition assessment, and a safe recommendation.
After your analysis, explicitly state the most likely name for the condition based on the comparison.
The recommendation MUST NOT be medical advice or a prescription. It should be a general next step.
CRITICAL: You MUST strongly advise the user to consult a qualified dermatologist to discuss any observed changes. This comparison is not a substitute for professional medical follow-up. Your response must be in JSON format according to the provided schema."""

    # Usuario sembrado al arrancar la sesión
    DEFAULT_USER = {
        "id": "user_default_doctor",
        "name": "Dr. Clinic",
        "email": "doctor@clinic.com",
        "password": "12345",
    }

    # Pacientes iniciales cuando no existe instantánea previa
    SEED_PATIENTS = [
        {
            "id": "p1",
            "name": "John Doe",
            "dob": "1985-05-23",
            "patientId": "JD-001",
            "gender": "Male",
            "bloodType": "O+",
            "existingConditions": "None reported",
            "lesionImages": [],
        },
        {
            "id": "p2",
            "name": "Jane Smith",
            "dob": "1992-11-14",
            "lesionImages": [],
        },
    ]
