from sqlmodel import Field, SQLModel


class Clinic(SQLModel, table=True):
    __tablename__ = "clinics"
    id: int | None = Field(default=None, primary_key=True)
    name: str
    # IANA zone; day boundaries and wall-clock display are computed here
    timezone: str | None = None


class Patient(SQLModel, table=True):
    __tablename__ = "patients"
    id: int | None = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinics.id", index=True)
    user_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    full_name: str
    phone: str | None = None
    email: str | None = None
