from patient_recon.models.base import Base
from patient_recon.models.user import User
from patient_recon.models.patient import Gender, Patient

__all__ = ["Base", "Gender", "Patient", "User"]
